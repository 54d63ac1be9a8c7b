from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response

from mcpscan.errors import NotFoundError
from mcpscan.protocol import (
    AgentRegistration,
    AgentRegistrationMessage,
    ClaimRequest,
    HeartbeatMessage,
    ScanRequestCreate,
    ScanResultMessage,
    ScanResultSubmission,
)
from mcpscan.scanners.codescan.rules import RULES_BY_CAPABILITY, VulnerabilityRule, iter_rules

from .schemas import AgentOut, RuleOut, ScanRequestOut, ScanResultOut
from .state import parse_status
from .store import CoordinatorStore


logger = logging.getLogger(__name__)

agents_router = APIRouter(prefix="/api/agents", tags=["agents"])
scans_router = APIRouter(prefix="/api/Scans", tags=["scans"])
communication_router = APIRouter(prefix="/api/communication", tags=["communication"])
rules_router = APIRouter(prefix="/api/Rules", tags=["rules"])


def get_store(request: Request) -> CoordinatorStore:
    return request.app.state.store


# Agents


@agents_router.post("/register", response_model=AgentOut, status_code=201)
def register_agent(body: AgentRegistration, store: CoordinatorStore = Depends(get_store)):
    return store.register_agent(body)


@agents_router.get("", response_model=List[AgentOut])
def list_agents(store: CoordinatorStore = Depends(get_store)):
    return store.list_agents()


@agents_router.get("/{agent_id}", response_model=AgentOut)
def get_agent(agent_id: str, store: CoordinatorStore = Depends(get_store)):
    return store.get_agent(agent_id)


@agents_router.put("/{agent_id}/heartbeat", status_code=204, response_class=Response)
def agent_heartbeat(agent_id: str, store: CoordinatorStore = Depends(get_store)):
    store.touch_agent(agent_id)
    return Response(status_code=204)


@agents_router.put("/{agent_id}/deactivate", status_code=204, response_class=Response)
def deactivate_agent(agent_id: str, store: CoordinatorStore = Depends(get_store)):
    store.deactivate_agent(agent_id)
    return Response(status_code=204)


# Scan requests and results


@scans_router.post("/requests", response_model=ScanRequestOut, status_code=201)
def create_scan_request(body: ScanRequestCreate, store: CoordinatorStore = Depends(get_store)):
    return store.create_scan_request(body)


@scans_router.get("/requests", response_model=List[ScanRequestOut])
def list_scan_requests(
    status: Optional[str] = None,
    agentId: Optional[str] = None,
    store: CoordinatorStore = Depends(get_store),
):
    wanted = parse_status(status) if status else None
    return store.list_scan_requests(status=wanted, agent_id=agentId)


@scans_router.get("/requests/{request_id}", response_model=ScanRequestOut)
def get_scan_request(request_id: str, store: CoordinatorStore = Depends(get_store)):
    return store.get_scan_request(request_id)


@scans_router.put("/requests/{request_id}/status", status_code=204, response_class=Response)
def update_scan_status(
    request_id: str,
    status: str = Body(...),
    store: CoordinatorStore = Depends(get_store),
):
    store.update_status(request_id, status)
    return Response(status_code=204)


@scans_router.post("/requests/{request_id}/claim", response_model=ScanRequestOut)
def claim_scan_request(
    request_id: str,
    body: ClaimRequest,
    store: CoordinatorStore = Depends(get_store),
):
    claimed = store.claim_scan_request(request_id, body.agent_id)
    if claimed is None:
        raise HTTPException(status_code=409, detail="scan request already claimed")
    return claimed


@scans_router.get("/requests/{request_id}/result", response_model=ScanResultOut)
def get_result_for_request(request_id: str, store: CoordinatorStore = Depends(get_store)):
    return store.get_result_for_request(request_id)


@scans_router.post("/results", response_model=ScanResultOut, status_code=201)
def submit_result(body: ScanResultSubmission, store: CoordinatorStore = Depends(get_store)):
    return store.submit_result(body)


@scans_router.get("/results", response_model=List[ScanResultOut])
def list_results(store: CoordinatorStore = Depends(get_store)):
    return store.list_results()


@scans_router.get("/results/{result_id}", response_model=ScanResultOut)
def get_result(result_id: str, store: CoordinatorStore = Depends(get_store)):
    return store.get_result(result_id)


# Typed envelope path


@communication_router.post("/register", response_model=AgentOut)
def communication_register(
    message: AgentRegistrationMessage,
    store: CoordinatorStore = Depends(get_store),
):
    return store.register_agent(
        AgentRegistration(
            name=message.name,
            ip_address=message.ip_address,
            capabilities=message.capabilities,
        )
    )


@communication_router.post("/heartbeat")
def communication_heartbeat(
    message: HeartbeatMessage,
    store: CoordinatorStore = Depends(get_store),
) -> dict:
    store.touch_agent(message.agent_id, status=message.status)
    logger.debug("Heartbeat from agent %s, status %s", message.agent_id, message.status.value)
    return {"status": "ok"}


@communication_router.post("/scan-result", response_model=ScanResultOut)
def communication_scan_result(
    message: ScanResultMessage,
    store: CoordinatorStore = Depends(get_store),
):
    return store.submit_result(
        ScanResultSubmission(
            scan_request_id=message.scan_id,
            agent_id=message.agent_id,
            findings=message.findings,
            summary=message.summary,
        )
    )


# Rule catalogue (read-only view of the agent rule tables)


def _rule_out(capability: str, rule: VulnerabilityRule) -> RuleOut:
    return RuleOut(
        rule_id=rule.rule_id,
        category=capability,
        severity=rule.severity,
        description=rule.description,
        recommendation=rule.recommendation,
        patterns=list(rule.patterns),
    )


@rules_router.get("", response_model=List[RuleOut])
def list_rules():
    return [_rule_out(capability, rule) for capability, rule in iter_rules()]


@rules_router.get("/category/{capability}", response_model=List[RuleOut])
def list_rules_for_capability(capability: str):
    tag = capability.lower()
    if tag not in RULES_BY_CAPABILITY:
        raise NotFoundError("Rule category", capability)
    return [_rule_out(tag, rule) for rule in RULES_BY_CAPABILITY[tag]]


@rules_router.get("/{rule_id}", response_model=RuleOut)
def get_rule(rule_id: str):
    for capability, rule in iter_rules():
        if rule.rule_id.upper() == rule_id.upper():
            return _rule_out(capability, rule)
    raise NotFoundError("Rule", rule_id)
