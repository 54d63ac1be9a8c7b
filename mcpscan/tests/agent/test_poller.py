"""Tests for the pull-mode dispatch tick and the scan worker."""

import asyncio
import json
import threading
from functools import partial

import pytest

from mcpscan.agent.pipeline import process_scan_request, workdir_for
from mcpscan.agent.poller import ScanWorker, pending_for, poll_once
from mcpscan.agent.registration import poll_loop
from mcpscan.agent.session import AgentSession
from mcpscan.errors import PipelineError, TransportError
from mcpscan.protocol import AgentRegistration, ScanRequestCreate, ScanStatus
from mcpscan.protocol import AgentRegistration, ScanRequestCreate, ScanStatus


def _create(store, agent_id, url="https://github.com/acme/app"):
    return store.create_scan_request(ScanRequestCreate(repository_url=url, agent_id=agent_id))


class Recorder:
    def __init__(self, fail_ids=()):
        self.calls = []
        self.fail_ids = set(fail_ids)

    def __call__(self, request_id, repository_url, branch):
        self.calls.append((request_id, repository_url, branch))
        if request_id in self.fail_ids:
            raise PipelineError(request_id, RuntimeError("boom"))


class TestPendingFilter:

    def test_only_pending_for_this_agent(self):
        listing = [
            {"id": "1", "status": "Pending", "agentId": "me"},
            {"id": "2", "status": "InProgress", "agentId": "me"},
            {"id": "3", "status": "Pending", "agentId": "you"},
        ]
        assert [r["id"] for r in pending_for(listing, "me")] == ["1"]


class TestPollOnce:

    def test_claims_and_processes_in_order(self, store, store_client, agent):
        first = _create(store, agent.id, "https://github.com/acme/one")
        second = _create(store, agent.id, "https://github.com/acme/two")
        other_agent = store.register_agent(AgentRegistration(name="b", ip_address="10.0.0.6:3000"))
        foreign = _create(store, other_agent.id)

        session = AgentSession()
        session.registered(agent.id)
        process = Recorder()

        assert poll_once(session, store_client, process) == 2
        assert [c[0] for c in process.calls] == [first.id, second.id]
        assert process.calls[0][1:] == ("https://github.com/acme/one", "main")
        assert store.get_scan_request(first.id).status == ScanStatus.IN_PROGRESS
        assert store.get_scan_request(foreign.id).status == ScanStatus.PENDING

    def test_already_claimed_requests_are_not_reprocessed(self, store, store_client, agent):
        _create(store, agent.id)
        session = AgentSession()
        session.registered(agent.id)
        process = Recorder()

        poll_once(session, store_client, process)
        poll_once(session, store_client, process)
        assert len(process.calls) == 1

    def test_lost_claim_is_skipped(self, store, store_client, agent):
        req = _create(store, agent.id)
        session = AgentSession()
        session.registered(agent.id)
        process = Recorder()

        store_client.claim = lambda request_id, agent_id: False
        assert poll_once(session, store_client, process) == 0
        assert process.calls == []
        assert store.get_scan_request(req.id).status == ScanStatus.PENDING

    def test_pipeline_failure_does_not_stop_the_tick(self, store, store_client, agent):
        bad = _create(store, agent.id)
        good = _create(store, agent.id)
        session = AgentSession()
        session.registered(agent.id)
        process = Recorder(fail_ids={bad.id})

        assert poll_once(session, store_client, process) == 2
        assert [c[0] for c in process.calls] == [bad.id, good.id]

    def test_unregistered_session_does_nothing(self, store_client):
        process = Recorder()
        assert poll_once(AgentSession(), store_client, process) == 0
        assert process.calls == []

    def test_listing_failure_is_logged(self, store_client, agent):
        def broken():
            raise TransportError("connection refused")

        store_client.list_scan_requests = broken
        session = AgentSession()
        session.registered(agent.id)
        assert poll_once(session, store_client, Recorder()) == 0


class TestScanWorker:

    def test_runs_in_handover_order(self):
        process = Recorder(fail_ids={"a"})
        worker = ScanWorker(process)
        futures = [worker(request_id, "https://x/y", "main") for request_id in ("a", "b", "c")]
        for future in futures:
            future.result(timeout=5)
        worker.shutdown(wait=True)

        assert [c[0] for c in process.calls] == ["a", "b", "c"]

    def test_one_scan_at_a_time(self):
        running = []
        overlap = []
        lock = threading.Lock()

        def process(request_id, repository_url, branch):
            with lock:
                running.append(request_id)
                if len(running) > 1:
                    overlap.append(request_id)
            threading.Event().wait(0.05)
            with lock:
                running.remove(request_id)

        worker = ScanWorker(process)
        futures = [worker(str(i), "https://x/y", "main") for i in range(3)]
        for future in futures:
            future.result(timeout=5)
        worker.shutdown(wait=True)
        assert overlap == []

    def test_unexpected_error_does_not_kill_worker(self):
        calls = []

        def process(request_id, repository_url, branch):
            calls.append(request_id)
            if request_id == "bad":
                raise RuntimeError("boom")

        worker = ScanWorker(process)
        worker("bad", "https://x/y", "main").result(timeout=5)
        worker("good", "https://x/y", "main").result(timeout=5)
        worker.shutdown(wait=True)
        assert calls == ["bad", "good"]


class TestPollLoop:

    @pytest.mark.asyncio
    async def test_slow_scan_does_not_delay_next_fetch(self, store, store_client, agent):
        _create(store, agent.id)
        session = AgentSession()
        session.registered(agent.id)

        started = threading.Event()
        release = threading.Event()

        def slow_process(request_id, repository_url, branch):
            started.set()
            release.wait(5)

        fetches = []
        listing = store_client.list_scan_requests

        def counting_listing():
            fetches.append(1)
            return listing()

        store_client.list_scan_requests = counting_listing

        task = asyncio.create_task(poll_loop(session, store_client, slow_process, 0.1))
        try:
            await asyncio.sleep(0.6)
            assert started.is_set()
            assert len(fetches) >= 3
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            release.set()

    @pytest.mark.asyncio
    async def test_claimed_request_is_claimed_once_while_scanning(self, store, store_client, agent):
        req = _create(store, agent.id)
        session = AgentSession()
        session.registered(agent.id)
        release = threading.Event()

        task = asyncio.create_task(
            poll_loop(session, store_client, lambda *args: release.wait(5), 0.05)
        )
        try:
            await asyncio.sleep(0.3)
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            release.set()

        assert store_client.claims == [(req.id, agent.id)]


class TestPollEndToEnd:

    def test_package_json_only_tree_runs_node_scan_to_completion(
        self, store, store_client, agent, agent_settings, tmp_path
    ):
        repo = tmp_path / "deps-only"
        repo.mkdir()
        (repo / "package.json").write_text(
            json.dumps({"name": "deps-only", "dependencies": {"lodash": "^4.17.15"}})
        )
        req = _create(store, agent.id, str(repo))

        session = AgentSession()
        session.registered(agent.id)
        status_at_start = []
        pipeline = partial(
            process_scan_request, session, store_client, agent_settings, sleep=lambda seconds: None
        )

        def process(request_id, repository_url, branch):
            status_at_start.append(store.get_scan_request(request_id).status)
            return pipeline(request_id, repository_url, branch)

        assert poll_once(session, store_client, process) == 1

        assert status_at_start == [ScanStatus.IN_PROGRESS]
        assert store.get_scan_request(req.id).status == ScanStatus.COMPLETED
        findings = store.get_result_for_request(req.id).findings
        assert findings
        assert {f.scanner for f in findings} == {"node"}
        assert any(f.rule_id == "KNOWN-VULNERABLE-PACKAGE" for f in findings)
        assert not workdir_for(agent_settings, req.id).exists()
