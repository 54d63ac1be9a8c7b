from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Union
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from mcpscan.config import CoordinatorSettings
from mcpscan.errors import InvalidStatusError, InvalidTransitionError, NotFoundError
from mcpscan.protocol import (
    AgentRegistration,
    AgentStatus,
    ScanRequestCreate,
    ScanResultSubmission,
    ScanStatus,
    utcnow,
)

from . import models
from .schemas import AgentOut, ScanRequestOut, ScanResultOut
from .state import allowed, parse_status


logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid4().hex


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_agent_live(
    is_active: bool,
    last_seen: datetime,
    heartbeat_timeout: float,
    now: Optional[datetime] = None,
) -> bool:
    """An agent is live iff it is active and was seen within the timeout."""
    if not is_active:
        return False
    now = now or utcnow()
    return (now - _as_utc(last_seen)).total_seconds() < heartbeat_timeout


class CoordinatorStore:
    """Durable copy of agents, scan requests and scan results."""

    def __init__(self, session_factory: sessionmaker, settings: CoordinatorSettings) -> None:
        self._session_factory = session_factory
        self.settings = settings

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Agents

    def register_agent(self, registration: AgentRegistration) -> AgentOut:
        now = utcnow()
        agent = models.Agent(
            id=_new_id(),
            name=registration.name,
            ip_address=registration.ip_address,
            capabilities=registration.capabilities,
            status=AgentStatus.IDLE.value,
            is_active=True,
            last_seen=now,
            registered_at=now,
        )
        with self._session() as session:
            session.add(agent)
            session.flush()
            logger.info("Agent registered: %s (%s) id=%s", agent.name, agent.ip_address, agent.id)
            return self._agent_out(agent)

    def list_agents(self) -> List[AgentOut]:
        with self._session() as session:
            rows = session.scalars(select(models.Agent).order_by(models.Agent.registered_at)).all()
            return [self._agent_out(row) for row in rows]

    def get_agent(self, agent_id: str) -> AgentOut:
        with self._session() as session:
            return self._agent_out(self._require_agent(session, agent_id))

    def touch_agent(self, agent_id: str, status: Optional[AgentStatus] = None) -> None:
        with self._session() as session:
            agent = self._require_agent(session, agent_id)
            agent.last_seen = utcnow()
            if status is not None:
                agent.status = status.value

    def deactivate_agent(self, agent_id: str) -> None:
        with self._session() as session:
            agent = self._require_agent(session, agent_id)
            agent.is_active = False
            logger.info("Agent deactivated: %s", agent_id)

    # Scan requests

    def create_scan_request(self, dto: ScanRequestCreate) -> ScanRequestOut:
        with self._session() as session:
            self._require_agent(session, dto.agent_id)
            now = utcnow()
            request = models.ScanRequest(
                id=_new_id(),
                repository_url=dto.repository_url,
                branch=dto.branch or "main",
                agent_id=dto.agent_id,
                status=ScanStatus.PENDING.value,
                requested_at=now,
                updated_at=now,
            )
            session.add(request)
            session.flush()
            logger.info(
                "Scan request %s created for %s@%s (agent %s)",
                request.id,
                request.repository_url,
                request.branch,
                request.agent_id,
            )
            return ScanRequestOut.model_validate(request)

    def list_scan_requests(
        self,
        status: Optional[ScanStatus] = None,
        agent_id: Optional[str] = None,
    ) -> List[ScanRequestOut]:
        query = select(models.ScanRequest).order_by(models.ScanRequest.requested_at)
        if status is not None:
            query = query.where(models.ScanRequest.status == status.value)
        if agent_id:
            query = query.where(models.ScanRequest.agent_id == agent_id)
        with self._session() as session:
            return [ScanRequestOut.model_validate(row) for row in session.scalars(query).all()]

    def get_scan_request(self, request_id: str) -> ScanRequestOut:
        with self._session() as session:
            return ScanRequestOut.model_validate(self._require_request(session, request_id))

    def update_status(self, request_id: str, status: Union[str, ScanStatus]) -> ScanRequestOut:
        """
        Write a new status. With enforce_transitions off this is a plain
        overwrite (last write wins); otherwise illegal moves raise
        InvalidTransitionError.
        """
        requested = parse_status(status)
        with self._session() as session:
            request = self._require_request(session, request_id)
            self._transition(session, request, requested)
            return ScanRequestOut.model_validate(request)

    def claim_scan_request(self, request_id: str, agent_id: str) -> Optional[ScanRequestOut]:
        """
        Move a Pending request owned by agent_id to InProgress in one
        conditional update. Returns None when another caller got there first.
        """
        with self._session() as session:
            self._require_request(session, request_id)
            now = utcnow()
            outcome = session.execute(
                update(models.ScanRequest)
                .where(
                    models.ScanRequest.id == request_id,
                    models.ScanRequest.status == ScanStatus.PENDING.value,
                    models.ScanRequest.agent_id == agent_id,
                )
                .values(status=ScanStatus.IN_PROGRESS.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                logger.info("Claim of scan request %s by agent %s lost", request_id, agent_id)
                return None
            agent = session.get(models.Agent, agent_id)
            if agent is not None:
                agent.last_seen = now
            session.expire_all()
            request = session.get(models.ScanRequest, request_id)
            logger.info("Scan request %s claimed by agent %s", request_id, agent_id)
            return ScanRequestOut.model_validate(request)

    # Scan results

    def submit_result(self, dto: ScanResultSubmission) -> ScanResultOut:
        """
        Append findings to the single result of a scan request.

        Batch calls only add findings. Any other call (a one-shot submission
        or the final summary) records the summary, marks the result final and
        moves the request to final_status, Completed by default.
        """
        with self._session() as session:
            request = self._require_request(session, dto.scan_request_id)
            self._require_agent(session, dto.agent_id)

            result = session.scalars(
                select(models.ScanResult).where(
                    models.ScanResult.scan_request_id == dto.scan_request_id
                )
            ).first()
            now = utcnow()
            if result is None:
                result = models.ScanResult(
                    id=_new_id(),
                    scan_request_id=dto.scan_request_id,
                    agent_id=dto.agent_id,
                    completed_at=now,
                    summary="",
                    batches_received=0,
                    is_final=False,
                )
                session.add(result)

            position = len(result.findings)
            for finding in dto.findings:
                result.findings.append(
                    models.StoredFinding(
                        position=position,
                        rule_id=finding.rule_id,
                        severity=finding.severity.value,
                        file_path=finding.file_path,
                        line_number=finding.line_number,
                        description=finding.description,
                        code_snippet=finding.code_snippet,
                        recommendation=finding.recommendation,
                        scanner=finding.scanner,
                    )
                )
                position += 1
            result.completed_at = now

            if dto.is_batch:
                result.batches_received += 1
                info = dto.batch_info
                logger.info(
                    "Scan %s: batch %s/%s received (%d findings)",
                    dto.scan_request_id,
                    info.batch_number if info else "?",
                    info.total_batches if info else "?",
                    len(dto.findings),
                )
            else:
                target = dto.final_status or ScanStatus.COMPLETED
                if not target.is_terminal:
                    raise InvalidStatusError(f"finalStatus must be a terminal status, got {target.value}")
                result.summary = dto.summary
                result.is_final = True
                if ScanStatus(request.status) == ScanStatus.PENDING and target != ScanStatus.FAILED:
                    # a result implies the work was picked up
                    self._transition(session, request, ScanStatus.IN_PROGRESS)
                self._transition(session, request, target)
                logger.info(
                    "Scan %s: result recorded (%d findings total), status %s",
                    dto.scan_request_id,
                    len(result.findings),
                    target.value,
                )

            session.flush()
            return ScanResultOut.model_validate(result)

    def list_results(self) -> List[ScanResultOut]:
        with self._session() as session:
            rows = session.scalars(
                select(models.ScanResult).order_by(models.ScanResult.completed_at)
            ).all()
            return [ScanResultOut.model_validate(row) for row in rows]

    def get_result(self, result_id: str) -> ScanResultOut:
        with self._session() as session:
            result = session.get(models.ScanResult, result_id)
            if result is None:
                raise NotFoundError("Scan result", result_id)
            return ScanResultOut.model_validate(result)

    def get_result_for_request(self, request_id: str) -> ScanResultOut:
        with self._session() as session:
            result = session.scalars(
                select(models.ScanResult).where(models.ScanResult.scan_request_id == request_id)
            ).first()
            if result is None:
                raise NotFoundError("Scan result", request_id)
            return ScanResultOut.model_validate(result)

    # Helpers

    def _transition(self, session: Session, request: models.ScanRequest, requested: ScanStatus) -> None:
        current = ScanStatus(request.status)
        if self.settings.enforce_transitions and not allowed(current, requested):
            raise InvalidTransitionError(request.id, current.value, requested.value)
        if current == requested:
            return
        request.status = requested.value
        request.updated_at = utcnow()
        logger.info("Scan request %s: %s -> %s", request.id, current.value, requested.value)

    def _require_agent(self, session: Session, agent_id: str) -> models.Agent:
        agent = session.get(models.Agent, agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        return agent

    def _require_request(self, session: Session, request_id: str) -> models.ScanRequest:
        request = session.get(models.ScanRequest, request_id)
        if request is None:
            raise NotFoundError("Scan request", request_id)
        return request

    def _agent_out(self, agent: models.Agent) -> AgentOut:
        out = AgentOut.model_validate(agent)
        out.is_live = is_agent_live(
            agent.is_active, agent.last_seen, self.settings.heartbeat_timeout
        )
        return out
