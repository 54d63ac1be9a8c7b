"""
Scan pipeline for one claimed request:
fetch -> detect -> run adapters -> summarize -> submit -> clean up.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from mcpscan.config import AgentSettings
from mcpscan.errors import PipelineError, TransportError
from mcpscan.protocol import AgentStatus, Finding, ScanStatus, SEVERITY_ORDER
from mcpscan.scanners.codescan import (
    ScannerAdapter,
    build_adapters,
    detect_capabilities,
    run_adapter,
    select_adapters,
)

from .client import CoordinatorClient
from .fetcher import fetch_repository, remove_tree
from .results import SubmissionOutcome, submit_results
from .session import AgentSession


logger = logging.getLogger(__name__)

Fetcher = Callable[[str, str, Path], Path]


def build_summary(findings: Sequence[Finding]) -> str:
    if not findings:
        return "No issues found."
    counts = Counter(f.severity for f in findings)
    parts = ", ".join(f"{counts.get(sev, 0)} {sev.value}" for sev in SEVERITY_ORDER)
    return f"Found {len(findings)} issues: {parts}."


def run_adapters(adapters: Sequence[ScannerAdapter], tree_root: Path) -> List[Finding]:
    findings: List[Finding] = []
    for adapter in adapters:
        findings.extend(run_adapter(adapter, tree_root))
    return findings


def workdir_for(settings: AgentSettings, request_id: str) -> Path:
    return Path(settings.temp_dir) / f"scan-{request_id}"


def process_scan_request(
    session: AgentSession,
    client: CoordinatorClient,
    settings: AgentSettings,
    request_id: str,
    repository_url: str,
    branch: str = "main",
    adapters: Optional[Dict[str, ScannerAdapter]] = None,
    fetcher: Fetcher = fetch_repository,
    sleep: Callable[[float], None] = time.sleep,
) -> SubmissionOutcome:
    """
    Run the full pipeline for a request this agent has already claimed.

    Raises:
        PipelineError: anything failed before the terminal status was set;
            the request is marked Failed (best effort) first
    """
    agent_id = session.agent_id
    if not agent_id:
        raise PipelineError(request_id, RuntimeError("agent is not registered"))

    adapters = adapters if adapters is not None else build_adapters()
    workdir = workdir_for(settings, request_id)
    session.set_status(AgentStatus.SCANNING)
    logger.info("Processing scan %s: %s@%s", request_id, repository_url, branch)

    try:
        tree_root = fetcher(repository_url, branch, workdir)
        detected = detect_capabilities(tree_root)
        selected = select_adapters(detected, settings.capabilities, adapters)
        logger.info(
            "Scan %s: detected %s, running %s",
            request_id,
            sorted(detected),
            [a.capability for a in selected],
        )
        findings = run_adapters(selected, tree_root)
        summary = build_summary(findings)
        logger.info("Scan %s: %s", request_id, summary)
        outcome = submit_results(client, settings, request_id, agent_id, findings, summary, sleep=sleep)
    except Exception as e:
        logger.exception("Scan %s failed", request_id)
        session.set_status(AgentStatus.ERROR)
        _mark_failed(client, request_id)
        raise PipelineError(request_id, e) from e
    finally:
        _cleanup(workdir)

    session.set_status(AgentStatus.IDLE)
    return outcome


def _mark_failed(client: CoordinatorClient, request_id: str) -> None:
    try:
        client.update_status(request_id, ScanStatus.FAILED)
    except TransportError as e:
        logger.error("Error updating scan %s status to Failed: %s", request_id, e)


def _cleanup(workdir: Path) -> None:
    try:
        remove_tree(workdir)
    except OSError as e:
        logger.error("Error cleaning up %s: %s", workdir, e)
