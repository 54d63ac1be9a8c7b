"""
Project-type detection.

detect_capabilities() is a pure function of the directory contents: it
returns the capability tags whose marker files or dependencies are present.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Set

from .scanner import iter_source_files

logger = logging.getLogger(__name__)

CSHARP_EXTENSIONS = {".cs", ".csproj", ".sln"}
NODE_EXTENSIONS = {".js", ".ts", ".mjs"}
JQUERY_SCAN_EXTENSIONS = {".js", ".html"}
JQUERY_MARKERS = ("jQuery", "jquery", "$(")


def read_package_json(root: Path) -> Dict[str, Any]:
    """Parsed package.json at the tree root, or {} when absent or unreadable."""
    package_json = Path(root) / "package.json"
    if package_json.is_symlink() or not package_json.is_file():
        return {}
    try:
        data = json.loads(package_json.read_text(encoding="utf-8", errors="ignore"))
    except ValueError as e:
        logger.warning("Unreadable package.json in %s: %s", root, e)
        return {}
    return data if isinstance(data, dict) else {}


def has_dependency(package: Dict[str, Any], name: str) -> bool:
    for section in ("dependencies", "devDependencies"):
        deps = package.get(section)
        if isinstance(deps, dict) and name in deps:
            return True
    return False


def _any_file(root: Path, extensions: Set[str]) -> bool:
    return next(iter_source_files(root, extensions), None) is not None


def _mentions_jquery(root: Path) -> bool:
    for path in iter_source_files(root, JQUERY_SCAN_EXTENSIONS):
        try:
            content = path.read_text(encoding="utf-8", errors="ignore")
        except OSError:
            continue
        if any(marker in content for marker in JQUERY_MARKERS):
            return True
    return False


def detect_capabilities(root: Path) -> Set[str]:
    """Capability tags that apply to the tree at root."""
    root = Path(root)
    detected: Set[str] = set()
    package = read_package_json(root)

    if _any_file(root, CSHARP_EXTENSIONS):
        detected.add("csharp")

    if (root / "angular.json").is_file() or (
        has_dependency(package, "@angular/core") and (root / "tsconfig.json").is_file()
    ):
        detected.add("angular")

    if has_dependency(package, "react"):
        detected.add("react")

    if has_dependency(package, "jquery") or _mentions_jquery(root):
        detected.add("jquery")

    if (root / "package.json").is_file() or _any_file(root, NODE_EXTENSIONS):
        detected.add("node")

    return detected
