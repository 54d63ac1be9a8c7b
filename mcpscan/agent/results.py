"""
Result aggregator: batched submission of one scan's findings.

Priority-scanner findings go first in small batches, the rest follow in
larger ones, then a final summary call and an explicit terminal status.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Sequence, Tuple

from mcpscan.config import AgentSettings
from mcpscan.errors import TransportError
from mcpscan.protocol import BatchInfo, Finding, ScanResultSubmission, ScanStatus

from .client import CoordinatorClient


logger = logging.getLogger(__name__)

PRIORITY_GROUP = "priority"
STANDARD_GROUP = "standard"


@dataclass
class SubmissionOutcome:
    status: ScanStatus
    batches_sent: int
    batches_failed: int
    summary_sent: bool
    priority_findings: int
    other_findings: int

    @property
    def all_submitted(self) -> bool:
        return self.batches_failed == 0 and self.summary_sent


def partition(findings: Sequence[Finding], priority_capability: str) -> Tuple[List[Finding], List[Finding]]:
    """Split into (priority, other), preserving order within each group."""
    priority = [f for f in findings if f.scanner == priority_capability]
    other = [f for f in findings if f.scanner != priority_capability]
    return priority, other


def batches(items: Sequence[Finding], size: int) -> Iterator[List[Finding]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _send_group(
    client: CoordinatorClient,
    request_id: str,
    agent_id: str,
    findings: Sequence[Finding],
    size: int,
    group: str,
    delay: float,
    sleep: Callable[[float], None],
) -> Tuple[int, int]:
    chunks = list(batches(findings, size))
    total = len(chunks)
    sent = failed = 0
    logger.info("Submitting %d %s findings in %d batches of %d", len(findings), group, total, size)

    for number, chunk in enumerate(chunks, start=1):
        submission = ScanResultSubmission(
            scan_request_id=request_id,
            agent_id=agent_id,
            findings=chunk,
            summary=f"Batch {number}/{total}",
            is_batch=True,
            batch_info=BatchInfo(
                batch_number=number,
                total_batches=total,
                batch_size=len(chunk),
                group=group,
            ),
        )
        try:
            client.submit_result(submission)
            sent += 1
            logger.debug("Batch %d/%d (%s) submitted", number, total, group)
        except TransportError as e:
            failed += 1
            logger.error("Error submitting %s batch %d/%d: %s", group, number, total, e)
        if number < total:
            sleep(delay)

    return sent, failed


def submit_results(
    client: CoordinatorClient,
    settings: AgentSettings,
    request_id: str,
    agent_id: str,
    findings: Sequence[Finding],
    summary: str,
    sleep: Callable[[float], None] = time.sleep,
) -> SubmissionOutcome:
    """
    Deliver findings for request_id and set its terminal status.

    A failed batch or summary is logged and skipped; the request then ends
    CompletedWithErrors. Failure of the closing status update propagates.
    """
    priority, other = partition(findings, settings.priority_capability)
    logger.info(
        "Scan %s: %d %s findings, %d other findings",
        request_id,
        len(priority),
        settings.priority_capability,
        len(other),
    )

    sent = failed = 0
    for group_findings, size, group in (
        (priority, settings.priority_batch_size, PRIORITY_GROUP),
        (other, settings.batch_size, STANDARD_GROUP),
    ):
        if not group_findings:
            continue
        ok, bad = _send_group(
            client, request_id, agent_id, group_findings, size, group, settings.batch_delay, sleep
        )
        sent += ok
        failed += bad

    status = ScanStatus.COMPLETED if failed == 0 else ScanStatus.COMPLETED_WITH_ERRORS
    summary_sent = True
    try:
        client.submit_result(
            ScanResultSubmission(
                scan_request_id=request_id,
                agent_id=agent_id,
                findings=[],
                summary=summary,
                is_final_summary=True,
                total_findings=len(findings),
                priority_findings=len(priority),
                other_findings=len(other),
                final_status=status,
            )
        )
    except TransportError as e:
        summary_sent = False
        status = ScanStatus.COMPLETED_WITH_ERRORS
        logger.error("Error submitting final summary for scan %s: %s", request_id, e)

    client.update_status(request_id, status)
    logger.info("Scan %s results submission finished with status %s", request_id, status.value)
    return SubmissionOutcome(
        status=status,
        batches_sent=sent,
        batches_failed=failed,
        summary_sent=summary_sent,
        priority_findings=len(priority),
        other_findings=len(other),
    )
