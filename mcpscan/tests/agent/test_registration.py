"""Tests for registration, heartbeat and the combined agent loops."""

import asyncio
from dataclasses import replace

import pytest

from mcpscan.agent.registration import (
    build_registration,
    get_ip_address,
    heartbeat_loop,
    register_once,
    register_until_success,
    run_agent,
    send_heartbeat,
)
from mcpscan.agent.session import AgentSession, RegistrationState
from mcpscan.errors import TransportError
from mcpscan.protocol import AgentStatus


class FlakyClient:
    """Registration fails a set number of times before succeeding."""

    def __init__(self, failures=0):
        self.failures = failures
        self.attempts = 0
        self.heartbeats = []
        self.polls = 0

    def register(self, registration):
        self.attempts += 1
        self.last_registration = registration
        if self.attempts <= self.failures:
            raise TransportError("connection refused")
        return "agent-42"

    def heartbeat(self, agent_id, status):
        self.heartbeats.append((agent_id, status))

    def list_scan_requests(self):
        self.polls += 1
        return []


class RecordingSleep:
    def __init__(self, stop_after=None):
        self.calls = []
        self.stop_after = stop_after

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.stop_after is not None and len(self.calls) >= self.stop_after:
            raise asyncio.CancelledError()


class TestRegistration:

    def test_registration_payload(self, agent_settings):
        registration = build_registration(agent_settings, ip_address="192.168.1.20")
        assert registration.name == "OWASP_Scanner_Agent"
        assert registration.ip_address == "192.168.1.20:3000"
        assert registration.capabilities == "csharp,angular,react,jquery,node"

    def test_ip_address_is_ipv4(self):
        assert get_ip_address().count(".") == 3

    def test_register_once_success(self, agent_settings):
        session = AgentSession()
        assert register_once(session, FlakyClient(), agent_settings)
        assert session.agent_id == "agent-42"
        assert session.registration == RegistrationState.REGISTERED
        assert session.status == AgentStatus.IDLE

    def test_register_once_failure(self, agent_settings):
        session = AgentSession()
        assert not register_once(session, FlakyClient(failures=1), agent_settings)
        assert session.registration == RegistrationState.UNREGISTERED
        assert not session.is_registered

    @pytest.mark.asyncio
    async def test_retries_until_success(self, agent_settings):
        session = AgentSession()
        client = FlakyClient(failures=2)
        sleep = RecordingSleep()

        agent_id = await register_until_success(session, client, agent_settings, sleep=sleep)

        assert agent_id == "agent-42"
        assert client.attempts == 3
        assert sleep.calls == [agent_settings.registration_retry_seconds] * 2


class TestHeartbeat:

    def test_skipped_while_unregistered(self):
        client = FlakyClient()
        assert not send_heartbeat(AgentSession(), client)
        assert client.heartbeats == []

    def test_failure_is_dropped(self):
        class DownClient(FlakyClient):
            def heartbeat(self, agent_id, status):
                raise TransportError("timeout")

        session = AgentSession()
        session.registered("agent-1")
        assert not send_heartbeat(session, DownClient())

    def test_reports_session_status(self):
        session = AgentSession()
        session.registered("agent-1")
        session.set_status(AgentStatus.SCANNING)
        client = FlakyClient()
        assert send_heartbeat(session, client)
        assert client.heartbeats == [("agent-1", AgentStatus.SCANNING)]

    @pytest.mark.asyncio
    async def test_first_beat_is_immediate(self):
        session = AgentSession()
        session.registered("agent-1")
        client = FlakyClient()
        sleep = RecordingSleep(stop_after=3)

        with pytest.raises(asyncio.CancelledError):
            await heartbeat_loop(session, client, 30.0, sleep=sleep)

        assert len(client.heartbeats) == 3
        assert sleep.calls == [30.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_loop_alive(self):
        class BrokenClient(FlakyClient):
            def heartbeat(self, agent_id, status):
                self.heartbeats.append((agent_id, status))
                raise RuntimeError("unexpected payload")

        session = AgentSession()
        session.registered("agent-1")
        client = BrokenClient()
        sleep = RecordingSleep(stop_after=3)

        with pytest.raises(asyncio.CancelledError):
            await heartbeat_loop(session, client, 30.0, sleep=sleep)

        assert len(client.heartbeats) == 3


class TestRunAgent:

    @pytest.mark.asyncio
    async def test_registers_then_beats_and_polls(self, agent_settings):
        settings = replace(
            agent_settings,
            registration_retry_seconds=0.01,
            heartbeat_interval=0.01,
            poll_interval=0.01,
        )
        session = AgentSession()
        client = FlakyClient(failures=1)

        task = asyncio.create_task(run_agent(session, client, settings, lambda *args: None))
        for _ in range(200):
            if client.heartbeats and client.polls:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.attempts == 2
        assert session.agent_id == "agent-42"
        assert client.heartbeats[0] == ("agent-42", AgentStatus.IDLE)
        assert client.polls >= 1
