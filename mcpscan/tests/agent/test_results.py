"""
Tests for batched result submission.
"""

import pytest

from mcpscan.agent.results import batches, partition, submit_results
from mcpscan.errors import TransportError
from mcpscan.protocol import Finding, ScanStatus, Severity


class RecordingClient:
    """Captures submissions; chosen call numbers (1-based) fail."""

    def __init__(self, fail_calls=(), fail_status=False):
        self.fail_calls = set(fail_calls)
        self.fail_status = fail_status
        self.submissions = []
        self.statuses = []

    def submit_result(self, submission):
        self.submissions.append(submission)
        if len(self.submissions) in self.fail_calls:
            raise TransportError("HTTP 503", status_code=503)
        return {}

    def update_status(self, request_id, status):
        if self.fail_status:
            raise TransportError("connection refused")
        self.statuses.append((request_id, status))


def _findings(count, scanner):
    return [
        Finding(
            rule_id=f"{scanner.upper()}-RULE",
            severity=Severity.MEDIUM,
            file_path=f"f{i}.txt",
            line_number=i,
            scanner=scanner,
        )
        for i in range(count)
    ]


@pytest.fixture
def mixed_findings():
    # interleave so partitioning has to preserve order
    csharp = _findings(30, "csharp")
    other = _findings(90, "node")
    return other[:45] + csharp + other[45:]


class TestPartitioning:

    def test_partition_preserves_order(self, mixed_findings):
        priority, other = partition(mixed_findings, "csharp")
        assert len(priority) == 30
        assert len(other) == 90
        assert [f.line_number for f in priority] == list(range(30))
        assert [f.line_number for f in other] == list(range(90))

    def test_batches(self):
        sizes = [len(b) for b in batches(_findings(120, "node"), 50)]
        assert sizes == [50, 50, 20]
        assert list(batches([], 50)) == []

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            list(batches(_findings(1, "node"), 0))


class TestSubmitResults:

    def test_priority_first_then_others(self, agent_settings, mixed_findings):
        client = RecordingClient()
        sleeps = []
        outcome = submit_results(
            client, agent_settings, "req-1", "agent-1", mixed_findings, "summary", sleep=sleeps.append
        )

        batch_calls = [s for s in client.submissions if s.is_batch]
        assert [len(s.findings) for s in batch_calls] == [25, 5, 50, 40]
        assert [s.batch_info.group for s in batch_calls] == ["priority", "priority", "standard", "standard"]
        assert [(s.batch_info.batch_number, s.batch_info.total_batches) for s in batch_calls] == [
            (1, 2), (2, 2), (1, 2), (2, 2),
        ]
        assert all(f.scanner == "csharp" for s in batch_calls[:2] for f in s.findings)
        # one pause between consecutive batches of each group
        assert sleeps == [agent_settings.batch_delay, agent_settings.batch_delay]

        final = client.submissions[-1]
        assert final.is_final_summary
        assert final.findings == []
        assert final.summary == "summary"
        assert (final.total_findings, final.priority_findings, final.other_findings) == (120, 30, 90)
        assert final.final_status == ScanStatus.COMPLETED

        assert outcome.status == ScanStatus.COMPLETED
        assert outcome.batches_sent == 4
        assert outcome.all_submitted
        assert client.statuses == [("req-1", ScanStatus.COMPLETED)]

    def test_failed_batch_gives_completed_with_errors(self, agent_settings, mixed_findings):
        client = RecordingClient(fail_calls={2})
        outcome = submit_results(
            client, agent_settings, "req-1", "agent-1", mixed_findings, "summary", sleep=lambda s: None
        )
        # the failing batch is skipped, the rest still go out
        assert len([s for s in client.submissions if s.is_batch]) == 4
        assert outcome.batches_failed == 1
        assert client.submissions[-1].final_status == ScanStatus.COMPLETED_WITH_ERRORS
        assert client.statuses == [("req-1", ScanStatus.COMPLETED_WITH_ERRORS)]

    def test_failed_summary_gives_completed_with_errors(self, agent_settings):
        client = RecordingClient(fail_calls={2})
        outcome = submit_results(
            client, agent_settings, "req-1", "agent-1", _findings(3, "node"), "s", sleep=lambda s: None
        )
        assert outcome.summary_sent is False
        assert outcome.status == ScanStatus.COMPLETED_WITH_ERRORS
        assert client.statuses == [("req-1", ScanStatus.COMPLETED_WITH_ERRORS)]

    def test_no_findings_sends_only_summary(self, agent_settings):
        client = RecordingClient()
        outcome = submit_results(
            client, agent_settings, "req-1", "agent-1", [], "No issues found.", sleep=lambda s: None
        )
        assert len(client.submissions) == 1
        assert client.submissions[0].is_final_summary
        assert outcome.status == ScanStatus.COMPLETED

    def test_status_update_failure_propagates(self, agent_settings):
        client = RecordingClient(fail_status=True)
        with pytest.raises(TransportError):
            submit_results(client, agent_settings, "req-1", "agent-1", [], "s", sleep=lambda s: None)
