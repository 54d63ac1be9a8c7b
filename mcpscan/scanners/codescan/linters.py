"""
Linter integrations: semgrep for C#, ESLint for the JavaScript capabilities.

Each linter only runs when its executable is on PATH; when it is missing the
adapter falls back to its pattern rules alone. Reports are read as JSON from
stdout and mapped onto findings by the parse_* functions.
"""

import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional

from mcpscan.errors import AdapterError
from mcpscan.protocol import Finding, Severity

from .scanner import _snippet

logger = logging.getLogger(__name__)

SEMGREP_TIMEOUT = 300
ESLINT_TIMEOUT = 300

CSHARP_SEMGREP_RULES = """\
rules:
  - id: csharp-sql-injection
    patterns:
      - pattern-either:
          - pattern: new SqlCommand("..." + $VAR, ...)
          - pattern: $CMD.CommandText = "..." + $VAR
    message: Potential SQL injection through string concatenation
    languages: [csharp]
    severity: ERROR
    metadata:
      recommendation: Use parameterized queries with SqlParameter objects.
  - id: csharp-xss
    pattern: Response.Write($VAR)
    message: Potential XSS through unencoded response output
    languages: [csharp]
    severity: ERROR
    metadata:
      recommendation: HTML-encode user input before writing it to the response.
  - id: csharp-insecure-deserialization
    pattern: (BinaryFormatter $F).Deserialize(...)
    message: Insecure deserialization with BinaryFormatter
    languages: [csharp]
    severity: ERROR
    metadata:
      recommendation: Avoid BinaryFormatter; use a safe serializer with an explicit type.
  - id: csharp-weak-hash
    pattern-either:
      - pattern: MD5.Create()
      - pattern: SHA1.Create()
    message: Weak hashing algorithm
    languages: [csharp]
    severity: WARNING
    metadata:
      recommendation: Use SHA-256 or stronger.
"""

ESLINT_RULES = ("no-eval", "no-implied-eval", "no-new-func", "no-script-url")

ESLINT_RECOMMENDATIONS = {
    "no-eval": "Avoid eval(); parse data with JSON.parse or use a lookup table.",
    "no-implied-eval": "Pass a function, not a string, to setTimeout and setInterval.",
    "no-new-func": "Avoid the Function constructor with dynamic code.",
    "no-script-url": "Do not build javascript: URLs; attach event handlers instead.",
}

_SEMGREP_SEVERITY = {
    "ERROR": Severity.CRITICAL,
    "WARNING": Severity.HIGH,
    "INFO": Severity.MEDIUM,
}

_ESLINT_SEVERITY = {
    2: Severity.HIGH,
    1: Severity.MEDIUM,
}


def find_tool(name: str) -> Optional[str]:
    """Executable path for a linter, or None when it is not installed."""
    return shutil.which(name)


def _run_tool(tool: str, cmd: List[str], cwd: Path, timeout: int) -> Any:
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise AdapterError(f"{tool} failed: {e}") from e

    # both tools exit 1 when they report problems
    if proc.returncode not in (0, 1):
        raise AdapterError(f"{tool} exited {proc.returncode}: {proc.stderr.strip()[:500]}")
    try:
        return json.loads(proc.stdout)
    except ValueError as e:
        raise AdapterError(f"{tool} produced unreadable output (exit {proc.returncode})") from e


def _relative(path: str, root: Path) -> str:
    pure = PurePath(path)
    if pure.is_absolute():
        try:
            pure = pure.relative_to(root)
        except ValueError:
            pass
    return pure.as_posix()


def run_semgrep(root: Path, scanner: str = "csharp") -> List[Finding]:
    root = Path(root).resolve()
    semgrep = find_tool("semgrep")
    if semgrep is None:
        logger.info("semgrep not available, using pattern rules only")
        return []

    with tempfile.TemporaryDirectory(prefix="mcpscan-semgrep-") as config_dir:
        config = Path(config_dir) / "csharp.yml"
        config.write_text(CSHARP_SEMGREP_RULES, encoding="utf-8")
        report = _run_tool(
            "semgrep",
            [semgrep, "--config", str(config), "--json", "--quiet", "--metrics=off", "."],
            root,
            SEMGREP_TIMEOUT,
        )
    return parse_semgrep_report(report, root, scanner=scanner)


def parse_semgrep_report(report: Dict[str, Any], root: Path, scanner: str = "csharp") -> List[Finding]:
    """Map a `semgrep --json` report to findings."""
    findings: List[Finding] = []
    for result in report.get("results") or []:
        extra = result.get("extra") or {}
        metadata = extra.get("metadata") or {}
        # check ids carry the config file's path as a dotted prefix
        check = str(result.get("check_id") or "semgrep").rsplit(".", 1)[-1]
        findings.append(
            Finding(
                rule_id=f"SEMGREP-{check.upper()}",
                severity=_SEMGREP_SEVERITY.get(str(extra.get("severity") or "").upper(), Severity.LOW),
                file_path=_relative(result.get("path") or "", Path(root)),
                line_number=int((result.get("start") or {}).get("line") or 0),
                description=extra.get("message") or "",
                code_snippet=(extra.get("lines") or "").strip("\n"),
                recommendation=metadata.get("recommendation") or "Review the code for security issues.",
                scanner=scanner,
            )
        )
    return findings


def run_eslint(root: Path, scanner: str = "node") -> List[Finding]:
    root = Path(root).resolve()
    eslint = find_tool("eslint")
    if eslint is None:
        logger.info("eslint not available, using pattern rules only")
        return []

    cmd = [eslint, "--format", "json", "--no-config-lookup"]
    for rule in ESLINT_RULES:
        cmd.extend(["--rule", f"{rule}: error"])
    cmd.append(".")
    report = _run_tool("eslint", cmd, root, ESLINT_TIMEOUT)
    return parse_eslint_report(report, root, scanner=scanner)


def parse_eslint_report(report: List[Dict[str, Any]], root: Path, scanner: str = "node") -> List[Finding]:
    """Map an `eslint --format json` report to findings. Parse errors are skipped."""
    findings: List[Finding] = []
    for entry in report or []:
        file_path = _relative(entry.get("filePath") or "", Path(root))
        source = entry.get("source")
        lines = source.split("\n") if source else []
        for message in entry.get("messages") or []:
            rule = message.get("ruleId")
            if message.get("fatal") or not rule:
                continue
            line_number = int(message.get("line") or 0)
            findings.append(
                Finding(
                    rule_id=f"ESLINT-{rule.upper()}",
                    severity=_ESLINT_SEVERITY.get(message.get("severity"), Severity.MEDIUM),
                    file_path=file_path,
                    line_number=line_number,
                    description=message.get("message") or "",
                    code_snippet=_snippet(lines, line_number) if lines else "",
                    recommendation=ESLINT_RECOMMENDATIONS.get(
                        rule, "Review the flagged code for security issues."
                    ),
                    scanner=scanner,
                )
            )
    return findings
