from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from mcpscan.protocol import Finding, ScanStatus, Severity, WireModel


class AgentOut(WireModel):
    id: str
    name: str
    ip_address: str
    capabilities: str
    status: str
    is_active: bool
    last_seen: datetime
    registered_at: Optional[datetime] = None
    is_live: bool = False


class ScanRequestOut(WireModel):
    id: str
    repository_url: str
    branch: str
    agent_id: str
    status: ScanStatus
    requested_at: datetime
    updated_at: datetime


class ScanResultOut(WireModel):
    id: str
    scan_request_id: str
    agent_id: str
    completed_at: datetime
    summary: str
    batches_received: int
    is_final: bool
    findings: List[Finding] = []


class RuleOut(WireModel):
    rule_id: str
    category: str
    severity: Severity
    description: str
    recommendation: str
    patterns: List[str] = []
