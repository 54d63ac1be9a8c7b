"""
Dependency checks: `npm audit --json` plus a table of known vulnerable
package versions declared in package.json.
npm audit only runs against trees that ship a lockfile; nothing is installed.
"""

import json
import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Tuple

from mcpscan.errors import AdapterError
from mcpscan.protocol import Finding, Severity

from .detector import read_package_json

logger = logging.getLogger(__name__)

NPM_AUDIT_TIMEOUT = 120

_NPM_SEVERITY = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "moderate": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.INFO,
}


def run_npm_audit(root: Path, scanner: str = "node") -> List[Finding]:
    root = Path(root)
    if not (root / "package-lock.json").is_file():
        logger.info("No package-lock.json in %s, skipping npm audit", root)
        return []
    npm = shutil.which("npm")
    if npm is None:
        logger.info("npm not available, skipping npm audit")
        return []

    try:
        proc = subprocess.run(
            [npm, "audit", "--json"],
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=NPM_AUDIT_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise AdapterError(f"npm audit failed: {e}") from e

    # npm audit exits non-zero when it finds vulnerabilities
    try:
        report = json.loads(proc.stdout or "{}")
    except ValueError as e:
        raise AdapterError(f"npm audit produced unreadable output (exit {proc.returncode})") from e

    return parse_npm_audit(report, scanner=scanner)


def parse_npm_audit(report: Dict[str, Any], scanner: str = "node") -> List[Finding]:
    """Map an npm audit v7+ JSON report to findings."""
    findings: List[Finding] = []
    vulnerabilities = report.get("vulnerabilities") or {}

    for package_name, vulnerability in vulnerabilities.items():
        raw_severity = str(vulnerability.get("severity") or "info").lower()
        severity = _NPM_SEVERITY.get(raw_severity, Severity.INFO)
        version_range = vulnerability.get("range") or "unknown"
        details = [v for v in vulnerability.get("via") or [] if isinstance(v, dict)]
        fix = vulnerability.get("fixAvailable")
        recommendation = (
            f"Upgrade {package_name} to a patched version (npm audit fix)."
            if fix
            else f"No fix available for {package_name}; consider replacing the package."
        )

        if not details:
            details = [{"title": vulnerability.get("title") or "Known vulnerability"}]

        for detail in details:
            cwe = ", ".join(detail.get("cwe") or []) or "No CWE"
            findings.append(
                Finding(
                    rule_id=f"NPM-AUDIT-{raw_severity.upper()}",
                    severity=severity,
                    file_path="package.json",
                    line_number=1,
                    description=f"{package_name}: {detail.get('title') or 'Known vulnerability'} ({cwe})",
                    code_snippet=f'"{package_name}": "{version_range}"',
                    recommendation=recommendation,
                    scanner=scanner,
                )
            )

    return findings


KNOWN_VULNERABLE_PACKAGES: Dict[str, Dict[str, Any]] = {
    "lodash": {
        "vulnerable": "<4.17.21",
        "severity": Severity.HIGH,
        "description": "Prototype pollution",
        "safe_version": "4.17.21",
    },
    "handlebars": {
        "vulnerable": "<4.7.7",
        "severity": Severity.HIGH,
        "description": "Remote code execution",
        "safe_version": "4.7.7",
    },
    "serialize-javascript": {
        "vulnerable": "<3.1.0",
        "severity": Severity.HIGH,
        "description": "Cross-site scripting",
        "safe_version": "3.1.0",
    },
    "node-serialize": {
        "vulnerable": "<=0.0.4",
        "severity": Severity.CRITICAL,
        "description": "Remote code execution via untrusted deserialization",
        "safe_version": None,
    },
    "express": {
        "vulnerable": "<4.17.3",
        "severity": Severity.MEDIUM,
        "description": "Open redirect and query parsing issues",
        "safe_version": "4.17.3",
    },
    "minimist": {
        "vulnerable": "<1.2.6",
        "severity": Severity.HIGH,
        "description": "Prototype pollution",
        "safe_version": "1.2.6",
    },
    "node-fetch": {
        "vulnerable": "<2.6.7",
        "severity": Severity.HIGH,
        "description": "Exposure of sensitive headers on redirect",
        "safe_version": "2.6.7",
    },
    "axios": {
        "vulnerable": "<0.21.2",
        "severity": Severity.HIGH,
        "description": "Regular expression denial of service",
        "safe_version": "0.21.2",
    },
    "request": {
        "vulnerable": "*",
        "severity": Severity.MEDIUM,
        "description": "Deprecated and unmaintained",
        "safe_version": None,
    },
}

_DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies")


def _version_tuple(version: str) -> Tuple[int, int, int]:
    parts = []
    for piece in version.strip().split(".")[:3]:
        digits = re.match(r"\d+", piece)
        parts.append(int(digits.group()) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def is_version_vulnerable(declared: str, vulnerable: str) -> bool:
    """
    Compare a declared package.json version against a range such as "<4.17.21".
    Range prefixes (^, ~, >=) are dropped from the declared version, so the
    lowest version it allows is what gets compared.
    """
    if vulnerable == "*":
        return True
    version = re.sub(r"^[\^~>=<v\s]+", "", declared)
    if not re.match(r"\d", version):
        # tags, urls and workspace references cannot be compared
        return False
    current = _version_tuple(version)
    for op in ("<=", ">=", "<", ">"):
        if vulnerable.startswith(op):
            bound = _version_tuple(vulnerable[len(op):])
            return {
                "<=": current <= bound,
                ">=": current >= bound,
                "<": current < bound,
                ">": current > bound,
            }[op]
    return current == _version_tuple(vulnerable)


def check_known_vulnerable_packages(root: Path, scanner: str = "node") -> List[Finding]:
    """Flag package.json dependencies pinned to versions with known issues."""
    package = read_package_json(root)
    findings: List[Finding] = []
    for section in _DEPENDENCY_SECTIONS:
        deps = package.get(section)
        if not isinstance(deps, dict):
            continue
        for name, declared in deps.items():
            known = KNOWN_VULNERABLE_PACKAGES.get(name)
            if known is None or not isinstance(declared, str):
                continue
            if not is_version_vulnerable(declared, known["vulnerable"]):
                continue
            safe = known["safe_version"]
            findings.append(
                Finding(
                    rule_id="KNOWN-VULNERABLE-PACKAGE",
                    severity=known["severity"],
                    file_path="package.json",
                    line_number=1,
                    description=f"Known vulnerable package: {name}@{declared} - {known['description']}",
                    code_snippet=f'"{name}": "{declared}"',
                    recommendation=(
                        f"Update {name} to {safe} or later."
                        if safe
                        else f"Replace {name} with a maintained alternative."
                    ),
                    scanner=scanner,
                )
            )
    return findings
