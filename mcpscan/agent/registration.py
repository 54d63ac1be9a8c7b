"""
Registration, heartbeat and poll loops.

Each loop is a coroutine; blocking HTTP work runs in a worker thread so the
agent's own HTTP surface stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Optional

from mcpscan.config import AgentSettings
from mcpscan.errors import TransportError
from mcpscan.protocol import AgentRegistration

from .client import CoordinatorClient
from .poller import ScanProcessor, ScanWorker, poll_once
from .session import AgentSession


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def get_ip_address() -> str:
    """First non-loopback IPv4 address of this host, else 127.0.0.1."""
    try:
        _, _, addresses = socket.gethostbyname_ex(socket.gethostname())
    except OSError:
        addresses = []
    for address in addresses:
        if not address.startswith("127."):
            return address
    try:
        # no packets are sent for a UDP connect
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("10.255.255.255", 1))
            address = sock.getsockname()[0]
            if not address.startswith("127."):
                return address
    except OSError:
        pass
    logger.info("No external IPv4 address found, using localhost")
    return "127.0.0.1"


def build_registration(settings: AgentSettings, ip_address: Optional[str] = None) -> AgentRegistration:
    return AgentRegistration(
        name=settings.name,
        ip_address=f"{ip_address or get_ip_address()}:{settings.port}",
        capabilities=",".join(settings.capabilities),
    )


def register_once(session: AgentSession, client: CoordinatorClient, settings: AgentSettings) -> bool:
    """One registration attempt; True on success."""
    session.begin_registration()
    logger.info("Registering agent %s with coordinator at %s", settings.name, settings.server_url)
    try:
        agent_id = client.register(build_registration(settings))
    except TransportError as e:
        session.registration_failed()
        logger.error("Registration failed: %s", e)
        return False
    session.registered(agent_id)
    logger.info("Agent registered successfully with ID: %s", agent_id)
    return True


def send_heartbeat(session: AgentSession, client: CoordinatorClient) -> bool:
    if not session.is_registered:
        logger.warning("Cannot send heartbeat: agent is not registered")
        return False
    try:
        client.heartbeat(session.agent_id, session.status)
    except TransportError as e:
        logger.error("Failed to send heartbeat: %s", e)
        return False
    logger.debug("Heartbeat sent")
    return True


async def register_until_success(
    session: AgentSession,
    client: CoordinatorClient,
    settings: AgentSettings,
    sleep: Sleep = asyncio.sleep,
) -> str:
    while not await asyncio.to_thread(register_once, session, client, settings):
        logger.info("Will retry registration in %s seconds", settings.registration_retry_seconds)
        await sleep(settings.registration_retry_seconds)
    return session.agent_id


async def heartbeat_loop(
    session: AgentSession,
    client: CoordinatorClient,
    interval: float,
    sleep: Sleep = asyncio.sleep,
) -> None:
    # first beat goes out immediately
    while True:
        try:
            await asyncio.to_thread(send_heartbeat, session, client)
        except Exception:
            logger.exception("Heartbeat tick failed")
        await sleep(interval)


async def poll_loop(
    session: AgentSession,
    client: CoordinatorClient,
    process: ScanProcessor,
    interval: float,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """
    Fetch on a fixed schedule. Claimed requests queue on a single worker,
    so a slow scan delays the next request's start but not the next fetch.
    """
    worker = ScanWorker(process)
    try:
        while True:
            try:
                await asyncio.to_thread(poll_once, session, client, worker)
            except Exception:
                logger.exception("Poll tick failed")
            await sleep(interval)
    finally:
        worker.shutdown()


async def run_agent(
    session: AgentSession,
    client: CoordinatorClient,
    settings: AgentSettings,
    process: ScanProcessor,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Register (retrying forever), then run heartbeat and poll loops together."""
    await register_until_success(session, client, settings, sleep=sleep)
    logger.info(
        "Starting heartbeat every %ss and polling every %ss",
        settings.heartbeat_interval,
        settings.poll_interval,
    )
    await asyncio.gather(
        heartbeat_loop(session, client, settings.heartbeat_interval, sleep=sleep),
        poll_loop(session, client, process, settings.poll_interval, sleep=sleep),
    )
