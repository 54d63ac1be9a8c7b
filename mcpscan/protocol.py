"""
Wire models shared by the coordinator and the agents.
Field names travel as camelCase JSON (ruleId, scanRequestId, ...).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFO = "Info"


SEVERITY_ORDER: List[Severity] = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
]


class ScanStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ScanStatus.COMPLETED, ScanStatus.COMPLETED_WITH_ERRORS, ScanStatus.FAILED}
)


class AgentStatus(str, Enum):
    IDLE = "Idle"
    SCANNING = "Scanning"
    ERROR = "Error"


class Finding(WireModel):
    rule_id: str
    severity: Severity
    file_path: str
    line_number: int = 0
    description: str = ""
    code_snippet: str = ""
    recommendation: str = ""
    scanner: str = "unknown"

    model_config = ConfigDict(frozen=True)

    def dedup_key(self) -> Tuple[str, str, int, str]:
        return (self.rule_id, self.file_path, self.line_number, self.scanner)


class AgentRegistration(WireModel):
    name: str = Field(min_length=1)
    ip_address: str = Field(min_length=1)
    capabilities: str = ""


class ScanRequestCreate(WireModel):
    repository_url: str = Field(min_length=1)
    branch: str = "main"
    agent_id: str = Field(min_length=1)


class ClaimRequest(WireModel):
    agent_id: str = Field(min_length=1)


class BatchInfo(WireModel):
    batch_number: int
    total_batches: int
    batch_size: int
    group: str = "standard"


class ScanResultSubmission(WireModel):
    scan_request_id: str = Field(min_length=1)
    agent_id: str = Field(min_length=1)
    findings: List[Finding] = Field(default_factory=list)
    summary: str = ""
    is_batch: bool = False
    batch_info: Optional[BatchInfo] = None
    is_final_summary: bool = False
    total_findings: Optional[int] = None
    priority_findings: Optional[int] = None
    other_findings: Optional[int] = None
    final_status: Optional[ScanStatus] = None


# Typed envelope messages (/api/communication/*)


class AgentMessage(WireModel):
    message_type: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    agent_id: str = ""


class AgentRegistrationMessage(AgentMessage):
    message_type: str = "AgentRegistration"
    name: str = Field(min_length=1)
    ip_address: str = Field(min_length=1)
    capabilities: str = ""


class HeartbeatMessage(AgentMessage):
    message_type: str = "Heartbeat"
    status: AgentStatus = AgentStatus.IDLE


class ScanRequestMessage(AgentMessage):
    message_type: str = "ScanRequest"
    scan_id: str = ""
    repository_url: str = ""
    branch: str = "main"


class ScanResultMessage(AgentMessage):
    message_type: str = "ScanResult"
    scan_id: str = Field(min_length=1)
    findings: List[Finding] = Field(default_factory=list)
    summary: str = ""
