"""HTTP client for the coordinator REST surface."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import requests

from mcpscan.config import AgentSettings
from mcpscan.errors import TransportError
from mcpscan.protocol import (
    AgentRegistration,
    AgentStatus,
    ClaimRequest,
    HeartbeatMessage,
    ScanResultSubmission,
    ScanStatus,
)


logger = logging.getLogger(__name__)


class CoordinatorClient:
    """
    Thin wrapper over a requests.Session.

    Every call applies the configured timeout; network errors and non-2xx
    responses surface as TransportError.
    """

    def __init__(
        self,
        settings: AgentSettings,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = settings.server_url.rstrip("/")
        self.timeout = settings.request_timeout
        self.http = http or requests.Session()
        self.http.verify = settings.verify_tls

    def _call(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(
                f"{method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from coordinator: {e}") from e

    def register(self, registration: AgentRegistration) -> str:
        """Register and return the assigned agent id."""
        resp = self._call("POST", "/api/agents/register", json=registration.to_wire())
        body = self._json(resp)
        agent_id = body.get("id") if isinstance(body, dict) else None
        if not agent_id:
            raise TransportError("Registration response carried no agent id")
        return str(agent_id)

    def heartbeat(self, agent_id: str, status: AgentStatus) -> None:
        message = HeartbeatMessage(agent_id=agent_id, status=status)
        self._call("POST", "/api/communication/heartbeat", json=message.to_wire())

    def list_scan_requests(self) -> List[dict]:
        body = self._json(self._call("GET", "/api/Scans/requests"))
        if not isinstance(body, list):
            raise TransportError("Scan request listing is not a JSON array")
        return body

    def claim(self, request_id: str, agent_id: str) -> bool:
        """True when this agent won the request, False when someone else did."""
        try:
            self._call(
                "POST",
                f"/api/Scans/requests/{request_id}/claim",
                json=ClaimRequest(agent_id=agent_id).to_wire(),
            )
        except TransportError as e:
            if e.status_code == 409:
                return False
            raise
        return True

    def update_status(self, request_id: str, status: ScanStatus) -> None:
        self._call("PUT", f"/api/Scans/requests/{request_id}/status", json=status.value)

    def submit_result(self, submission: ScanResultSubmission) -> dict:
        resp = self._call("POST", "/api/Scans/results", json=submission.to_wire())
        return self._json(resp)
