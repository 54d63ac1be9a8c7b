"""
Pull-mode dispatch: find Pending requests addressed to this agent, claim
them and hand them to a single worker that runs them one after another.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List

from mcpscan.errors import PipelineError, TransportError
from mcpscan.protocol import ScanStatus

from .client import CoordinatorClient
from .session import AgentSession


logger = logging.getLogger(__name__)

# (request_id, repository_url, branch) -> runs the pipeline
ScanProcessor = Callable[[str, str, str], object]


class ScanWorker:
    """
    Runs claimed requests on one background thread, in the order they were
    handed over. Calling the worker only enqueues, so a poll tick never
    waits for a scan.
    """

    def __init__(self, process: ScanProcessor) -> None:
        self._process = process
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scan-worker")

    def __call__(self, request_id: str, repository_url: str, branch: str) -> Future:
        return self._executor.submit(self._run, request_id, repository_url, branch)

    def _run(self, request_id: str, repository_url: str, branch: str) -> None:
        try:
            self._process(request_id, repository_url, branch)
        except PipelineError as e:
            logger.error("Error processing scan request %s: %s", request_id, e.cause)
        except Exception:
            logger.exception("Unexpected error processing scan request %s", request_id)

    def shutdown(self, wait: bool = False) -> None:
        # queued requests stay InProgress on the coordinator
        self._executor.shutdown(wait=wait, cancel_futures=True)


def pending_for(requests: List[dict], agent_id: str) -> List[dict]:
    return [
        r for r in requests
        if r.get("status") == ScanStatus.PENDING.value and r.get("agentId") == agent_id
    ]


def poll_once(session: AgentSession, client: CoordinatorClient, process: ScanProcessor) -> int:
    """
    One poll tick. Requests are claimed then handed to process in listing
    order. With a ScanWorker as process the tick only enqueues; a plain
    callable runs each request inline. Returns how many requests were
    handed over.
    """
    if not session.is_registered:
        logger.warning("Cannot poll for scan requests: agent is not registered")
        return 0
    agent_id = session.agent_id

    try:
        listing = client.list_scan_requests()
    except TransportError as e:
        logger.error("Error polling for scan requests: %s", e)
        return 0

    pending = pending_for(listing, agent_id)
    if not pending:
        logger.debug("No pending scan requests found")
        return 0
    logger.info("Found %d pending scan requests", len(pending))

    handed = 0
    for request in pending:
        request_id = request.get("id")
        if not request_id:
            continue
        try:
            if not client.claim(request_id, agent_id):
                logger.info("Scan request %s was claimed elsewhere, skipping", request_id)
                continue
        except TransportError as e:
            logger.error("Error claiming scan request %s: %s", request_id, e)
            continue

        try:
            process(request_id, request.get("repositoryUrl", ""), request.get("branch") or "main")
        except PipelineError as e:
            logger.error("Error processing scan request %s: %s", request_id, e.cause)
        handed += 1

    return handed
