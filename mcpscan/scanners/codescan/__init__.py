"""
CodeScan - pattern and tool based vulnerability detection.
Capability detection, per-capability rule tables and scanner adapters.
"""

from .adapters import ScannerAdapter, build_adapters, run_adapter, select_adapters
from .detector import detect_capabilities
from .rules import RULES_BY_CAPABILITY

__all__ = [
    "ScannerAdapter",
    "build_adapters",
    "run_adapter",
    "select_adapters",
    "detect_capabilities",
    "RULES_BY_CAPABILITY",
]
