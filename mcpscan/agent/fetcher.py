"""
Repository fetcher.

file:// URLs and existing local directories are copied (without .git and
node_modules); anything else is shallow-cloned with git.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from mcpscan.errors import FetchError


logger = logging.getLogger(__name__)

GIT_CLONE_TIMEOUT = 600
COPY_IGNORE = shutil.ignore_patterns(".git", "node_modules")


def local_source(repository_url: str) -> Optional[Path]:
    """Filesystem path behind a file:// URL or a local directory, else None."""
    if repository_url.startswith("file://"):
        return Path(url2pathname(unquote(urlparse(repository_url).path)))
    candidate = Path(repository_url).expanduser()
    if candidate.is_dir():
        return candidate
    return None


def normalize_git_url(repository_url: str) -> str:
    url = repository_url.strip()
    if not url.startswith(("http://", "https://", "git@", "ssh://")):
        url = "https://" + url
    if not url.endswith(".git") and "github.com" not in url and "gitlab.com" not in url:
        url = url + ".git"
    return url


def fetch_repository(repository_url: str, branch: str, target_dir: Path) -> Path:
    """
    Materialize repository_url at target_dir.

    Raises:
        FetchError: source missing, copy failed, or git clone failed
    """
    target_dir = Path(target_dir)
    source = local_source(repository_url)
    if source is not None:
        return _copy_local(source, target_dir)
    return _clone(normalize_git_url(repository_url), branch or "main", target_dir)


def _copy_local(source: Path, target_dir: Path) -> Path:
    if not source.is_dir():
        raise FetchError(f"Local repository path does not exist: {source}")
    logger.info("Copying local repository %s to %s", source, target_dir)
    try:
        # links are copied as links; the scanners skip them
        shutil.copytree(source, target_dir, symlinks=True, ignore=COPY_IGNORE, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        raise FetchError(f"Copy of {source} failed: {e}") from e
    return target_dir


def _clone(url: str, branch: str, target_dir: Path) -> Path:
    git = shutil.which("git")
    if git is None:
        raise FetchError("git is not installed")
    target_dir.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Cloning %s (branch: %s) to %s", url, branch, target_dir)
    try:
        proc = subprocess.run(
            [git, "clone", "--branch", branch, "--single-branch", "--depth", "1", url, str(target_dir)],
            capture_output=True,
            text=True,
            timeout=GIT_CLONE_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise FetchError(f"git clone of {url} failed: {e}") from e
    if proc.returncode != 0:
        raise FetchError(f"git clone of {url} failed: {proc.stderr.strip()[:300]}")
    return target_dir


def remove_tree(path: Path) -> None:
    """Delete a working directory; a missing path is fine."""
    path = Path(path)
    if not path.exists():
        return
    shutil.rmtree(path, ignore_errors=False)
    logger.info("Cleaned up working directory %s", path)
