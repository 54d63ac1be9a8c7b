"""
Rule application across a checked-out tree.
Walks the tree once per adapter and turns rule matches into findings.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set

from mcpscan.protocol import Finding

from .rules import VulnerabilityRule

logger = logging.getLogger(__name__)

# Directories to skip during traversal
SKIP_DIRS = {
    ".git", "node_modules", ".venv", "venv", "env",
    "__pycache__", "dist", "build", "coverage",
    "bin", "obj", ".vs", ".idea", "vendor",
}

SNIPPET_CONTEXT_LINES = 2


def iter_source_files(
    root: Path,
    extensions: Set[str],
    names: Optional[Set[str]] = None,
) -> Iterator[Path]:
    """
    Yield files under root whose suffix (or exact name) is wanted.
    Symlinked files are skipped so nothing outside the tree is ever read.
    """
    names = names or set()
    for current, dirs, files in os.walk(root):
        # Prevent traverse into skip directories
        dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
        for name in sorted(files):
            path = Path(current) / name
            if path.is_symlink():
                logger.debug("Skipping symlink %s", path)
                continue
            if path.suffix.lower() in extensions or name in names:
                yield path


def scan_tree(
    root: Path,
    rules: Iterable[VulnerabilityRule],
    extensions: Set[str],
    scanner: str,
) -> List[Finding]:
    """
    Apply rules to every matching source file under root.

    Args:
        root: Checked-out repository root
        rules: Rule table of one capability
        extensions: File suffixes the rules apply to
        scanner: Capability tag stamped on every finding

    Returns:
        Findings grouped by file, then by rule, in line order
    """
    root = Path(root).resolve()
    rules = list(rules)
    findings: List[Finding] = []
    scanned = 0

    for file_path in iter_source_files(root, extensions):
        scanned += 1
        try:
            content = file_path.read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.debug("Error reading %s: %s", file_path, e)
            continue

        lines = content.split("\n")
        relative_path = file_path.relative_to(root).as_posix()
        for rule in rules:
            for match in rule.check(content):
                findings.append(
                    Finding(
                        rule_id=rule.rule_id,
                        severity=rule.severity,
                        file_path=relative_path,
                        line_number=match["line_number"],
                        description=rule.description,
                        code_snippet=_snippet(lines, match["line_number"]),
                        recommendation=rule.recommendation,
                        scanner=scanner,
                    )
                )

    logger.debug("%s: scanned %d files, %d findings", scanner, scanned, len(findings))
    return findings


def _snippet(lines: List[str], line_number: int) -> str:
    start = max(0, line_number - 1 - SNIPPET_CONTEXT_LINES)
    end = min(len(lines), line_number + SNIPPET_CONTEXT_LINES)
    return "\n".join(lines[start:end])
