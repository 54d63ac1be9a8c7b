from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .db import Base


class Agent(Base):
    __tablename__ = "agents"
    id = Column(String(32), primary_key=True)
    name = Column(String(128), nullable=False)
    ip_address = Column(String(128), nullable=False)
    capabilities = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False, default="Idle")
    is_active = Column(Boolean, nullable=False, default=True)
    last_seen = Column(DateTime(timezone=True), nullable=False)
    registered_at = Column(DateTime(timezone=True), nullable=False)


class ScanRequest(Base):
    __tablename__ = "scan_requests"
    id = Column(String(32), primary_key=True)
    repository_url = Column(Text, nullable=False)
    branch = Column(String(255), nullable=False, default="main")
    agent_id = Column(String(32), ForeignKey("agents.id"), index=True, nullable=False)
    status = Column(String(32), index=True, nullable=False, default="Pending")
    requested_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ScanResult(Base):
    __tablename__ = "scan_results"
    id = Column(String(32), primary_key=True)
    scan_request_id = Column(
        String(32), ForeignKey("scan_requests.id"), unique=True, index=True, nullable=False
    )
    agent_id = Column(String(32), ForeignKey("agents.id"), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=False)
    summary = Column(Text, nullable=False, default="")
    batches_received = Column(Integer, nullable=False, default=0)
    is_final = Column(Boolean, nullable=False, default=False)

    findings = relationship(
        "StoredFinding",
        order_by="StoredFinding.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StoredFinding(Base):
    __tablename__ = "findings"
    id = Column(Integer, primary_key=True, autoincrement=True)
    result_id = Column(String(32), ForeignKey("scan_results.id"), index=True, nullable=False)
    position = Column(Integer, nullable=False)
    rule_id = Column(String(128), nullable=False)
    severity = Column(String(16), index=True, nullable=False)
    file_path = Column(Text, nullable=False)
    line_number = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False, default="")
    code_snippet = Column(Text, nullable=False, default="")
    recommendation = Column(Text, nullable=False, default="")
    scanner = Column(String(32), nullable=False, default="unknown")
