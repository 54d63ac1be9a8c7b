"""
Scanner adapters: one per capability, all behind scan(tree_root).
run_adapter() is the boundary that keeps one adapter's failure local.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from mcpscan.errors import AdapterError
from mcpscan.protocol import Finding

from .dependency_audit import check_known_vulnerable_packages, run_npm_audit
from .linters import run_eslint, run_semgrep
from .rules import RULES_BY_CAPABILITY, VulnerabilityRule
from .scanner import scan_tree

logger = logging.getLogger(__name__)

# (tree_root, scanner) -> findings
Linter = Callable[..., List[Finding]]


class ScannerAdapter:
    """Produces findings for a checked-out tree."""

    capability: str = ""

    def scan(self, tree_root: Path) -> List[Finding]:
        raise NotImplementedError


class PatternAdapter(ScannerAdapter):
    """
    Regex rule table applied to files with the given suffixes, optionally
    preceded by an external linter. A failing linter is logged and the
    pattern rules still run.
    """

    def __init__(
        self,
        capability: str,
        rules: List[VulnerabilityRule],
        extensions: Set[str],
        linter: Optional[Linter] = None,
    ) -> None:
        self.capability = capability
        self.rules = rules
        self.extensions = extensions
        self.linter = linter

    def scan(self, tree_root: Path) -> List[Finding]:
        findings: List[Finding] = []
        if self.linter is not None:
            try:
                findings.extend(self.linter(tree_root, scanner=self.capability))
            except AdapterError as e:
                logger.warning("%s linter failed, using pattern rules only: %s", self.capability, e)
        findings.extend(scan_tree(tree_root, self.rules, self.extensions, scanner=self.capability))
        return findings


class NodeAdapter(PatternAdapter):
    """Node.js patterns and ESLint plus npm audit and the known-vulnerable package table."""

    def __init__(self, linter: Optional[Linter] = run_eslint) -> None:
        super().__init__("node", RULES_BY_CAPABILITY["node"], {".js", ".ts", ".mjs", ".cjs"}, linter)

    def scan(self, tree_root: Path) -> List[Finding]:
        findings = run_npm_audit(tree_root, scanner=self.capability)
        findings.extend(check_known_vulnerable_packages(tree_root, scanner=self.capability))
        findings.extend(super().scan(tree_root))
        return findings


def build_adapters() -> Dict[str, ScannerAdapter]:
    return {
        "csharp": PatternAdapter(
            "csharp", RULES_BY_CAPABILITY["csharp"], {".cs", ".config", ".cshtml"}, run_semgrep
        ),
        "angular": PatternAdapter(
            "angular", RULES_BY_CAPABILITY["angular"], {".ts", ".html"}, run_eslint
        ),
        "react": PatternAdapter(
            "react", RULES_BY_CAPABILITY["react"], {".js", ".jsx", ".ts", ".tsx"}, run_eslint
        ),
        "jquery": PatternAdapter(
            "jquery", RULES_BY_CAPABILITY["jquery"], {".js", ".html"}
        ),
        "node": NodeAdapter(),
    }


def select_adapters(
    detected: Iterable[str],
    advertised: Iterable[str],
    adapters: Dict[str, ScannerAdapter],
) -> List[ScannerAdapter]:
    """Adapters for capabilities both detected in the tree and advertised by the agent."""
    wanted = set(detected) & set(advertised)
    return [adapter for tag, adapter in adapters.items() if tag in wanted]


def run_adapter(adapter: ScannerAdapter, tree_root: Path) -> List[Finding]:
    """Run one adapter; any failure is logged and contributes no findings."""
    try:
        findings = adapter.scan(tree_root)
    except Exception as e:
        logger.error("Scanner %s failed: %s", adapter.capability, e)
        return []
    logger.info("Scanner %s: %d findings", adapter.capability, len(findings))
    return list(findings)
