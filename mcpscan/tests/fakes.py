"""In-process stand-ins for the coordinator used by agent tests."""

from typing import List, Optional, Set

from mcpscan.app.store import CoordinatorStore
from mcpscan.errors import NotFoundError, TransportError
from mcpscan.protocol import (
    AgentRegistration,
    AgentStatus,
    ScanResultSubmission,
    ScanStatus,
)


class StoreBackedClient:
    """
    In-process stand-in for CoordinatorClient that talks straight to a
    CoordinatorStore. Individual submissions can be made to fail.
    """

    def __init__(self, store: CoordinatorStore, fail_batches: Optional[Set[int]] = None,
                 fail_summary: bool = False) -> None:
        self.store = store
        self.fail_batches = fail_batches or set()
        self.fail_summary = fail_summary
        self.submissions: List[ScanResultSubmission] = []
        self.status_updates: List[tuple] = []
        self.heartbeats: List[tuple] = []
        self.claims: List[tuple] = []

    def register(self, registration: AgentRegistration) -> str:
        return self.store.register_agent(registration).id

    def heartbeat(self, agent_id: str, status: AgentStatus) -> None:
        self.heartbeats.append((agent_id, status))
        self.store.touch_agent(agent_id, status=status)

    def list_scan_requests(self) -> List[dict]:
        return [r.to_wire() for r in self.store.list_scan_requests()]

    def claim(self, request_id: str, agent_id: str) -> bool:
        self.claims.append((request_id, agent_id))
        return self.store.claim_scan_request(request_id, agent_id) is not None

    def update_status(self, request_id: str, status: ScanStatus) -> None:
        self.status_updates.append((request_id, status))
        try:
            self.store.update_status(request_id, status)
        except (NotFoundError, ValueError) as e:
            raise TransportError(str(e), status_code=409) from e

    def submit_result(self, submission: ScanResultSubmission) -> dict:
        self.submissions.append(submission)
        if submission.is_batch and len(self.submissions) in self.fail_batches:
            raise TransportError("HTTP 500", status_code=500)
        if submission.is_final_summary and self.fail_summary:
            raise TransportError("HTTP 500", status_code=500)
        return self.store.submit_result(submission).to_wire()
