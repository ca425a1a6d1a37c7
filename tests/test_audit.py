"""Tests for the audit log."""

import json
from unittest.mock import MagicMock

import pytest
from changeguard.audit.log import AuditLog, JsonlAuditSink
from changeguard.audit.models import AuditLogQuery, AuditOutcome
from changeguard.core.errors import ValidationError


def _record(log, **overrides):
    fields = {
        "actor_id": "alice",
        "actor_name": "Alice",
        "action": "delete",
        "service": "ec2",
        "resource_ids": ["i-1"],
        "environment": "production",
        "region": "us-east-1",
        "outcome": AuditOutcome.SUCCESS,
    }
    fields.update(overrides)
    return log.record(**fields)


@pytest.fixture
def log(clock):
    return AuditLog(clock=clock)


class TestRecord:
    """Test appending entries."""

    def test_assigns_id_and_timestamp(self, log, clock):
        entry = _record(log)

        assert entry.id
        assert entry.timestamp == clock.now
        assert entry.outcome == AuditOutcome.SUCCESS
        assert len(log) == 1

    def test_string_outcome_is_coerced(self, log):
        assert _record(log, outcome="blocked").outcome == AuditOutcome.BLOCKED

    def test_retention_prunes_old_entries(self, clock):
        log = AuditLog(retention_days=1, clock=clock)
        _record(log)
        clock.advance(days=2)
        _record(log)

        assert len(log) == 1

    def test_retention_handles_backdated_entries(self, clock):
        log = AuditLog(retention_days=7, clock=clock)
        _record(log)
        # Older than retention, recorded after a newer entry
        _record(log, timestamp=clock.now.replace(year=2023))
        _record(log)

        assert len(log) == 2

    def test_sink_receives_entries(self, clock):
        sink = MagicMock()
        log = AuditLog(sink=sink, clock=clock)

        entry = _record(log)

        sink.write.assert_called_once_with(entry)

    def test_sink_failure_does_not_fail_write(self, clock):
        sink = MagicMock()
        sink.write.side_effect = OSError("disk full")
        log = AuditLog(sink=sink, clock=clock)

        entry = _record(log)

        assert entry.id
        assert len(log) == 1


class TestQuery:
    """Test filtering and pagination."""

    def test_newest_first(self, log, clock):
        first = _record(log)
        clock.advance(minutes=1)
        second = _record(log)

        page = log.query()
        assert [e.id for e in page.entries] == [second.id, first.id]
        assert page.total_count == 2
        assert page.next_token is None

    def test_filters_are_conjunctive(self, log, clock):
        _record(log, actor_id="alice", service="ec2")
        _record(log, actor_id="alice", service="rds")
        _record(log, actor_id="bob", service="ec2")

        page = log.query(AuditLogQuery(actor_id="alice", services=["ec2"]))
        assert page.total_count == 1

    def test_filter_by_outcome_action_environment(self, log):
        _record(log, outcome="blocked", action="terminate", environment="production")
        _record(log, outcome="success", action="terminate", environment="production")
        _record(log, outcome="blocked", action="stop", environment="staging")

        page = log.query(
            AuditLogQuery(
                outcomes=[AuditOutcome.BLOCKED],
                actions=["terminate"],
                environments=["production"],
            )
        )
        assert page.total_count == 1

    def test_filter_by_resource_and_time(self, log, clock):
        start = clock.now
        _record(log, resource_ids=["i-1", "i-2"])
        clock.advance(hours=2)
        _record(log, resource_ids=["i-2"])

        assert log.query(AuditLogQuery(resource_id="i-2")).total_count == 2
        assert log.query(AuditLogQuery(resource_id="i-1")).total_count == 1
        window = AuditLogQuery(start_time=start, end_time=start.replace(hour=13))
        assert log.query(window).total_count == 1

    def test_pagination(self, log, clock):
        for _ in range(5):
            _record(log)
            clock.advance(seconds=1)

        first = log.query(AuditLogQuery(max_results=2))
        assert len(first.entries) == 2
        assert first.total_count == 5
        assert first.next_token == "2"

        second = log.query(AuditLogQuery(max_results=2, next_token=first.next_token))
        third = log.query(AuditLogQuery(max_results=2, next_token=second.next_token))

        assert len(third.entries) == 1
        assert third.next_token is None
        seen = [e.id for page in (first, second, third) for e in page.entries]
        assert len(set(seen)) == 5

    def test_invalid_token(self, log):
        with pytest.raises(ValidationError):
            log.query(AuditLogQuery(next_token="abc"))
        with pytest.raises(ValidationError):
            log.query(AuditLogQuery(next_token="-1"))


class TestSummarize:
    """Test aggregation over a window."""

    def test_summary_counts(self, log, clock):
        start = clock.now
        _record(log, actor_id="alice", resource_ids=["i-1", "i-2"])
        _record(log, actor_id="alice", outcome="blocked", resource_ids=["i-1"])
        _record(log, actor_id="bob", service="rds", action="modify", outcome="pending_approval")
        _record(log, actor_id="bob", outcome="failure")

        summary = log.summarize(start, clock.now, top_n=2)

        assert summary.total_actions == 4
        assert summary.successful_actions == 1
        assert summary.blocked_actions == 1
        assert summary.pending_approvals == 1
        assert summary.failed_actions == 1
        assert summary.by_service == {"ec2": 3, "rds": 1}
        assert summary.by_actor == {"alice": 2, "bob": 2}
        assert summary.top_resources[0] == ("i-1", 4)
        assert summary.top_operations == [("ec2:delete", 3), ("rds:modify", 1)]
        assert len(summary.top_actors) == 2

    def test_summary_window_excludes_outside(self, log, clock):
        _record(log)
        clock.advance(days=1)
        start = clock.now
        _record(log)

        assert log.summarize(start, clock.now).total_actions == 1

    def test_to_dict(self, log, clock):
        _record(log)
        data = log.summarize(clock.now, clock.now).to_dict()

        assert data["total_actions"] == 1
        assert data["top_resources"] == [{"resource_id": "i-1", "count": 1}]


class TestJsonlAuditSink:
    """Test the JSON-lines sink."""

    def test_appends_lines(self, tmp_path, clock):
        path = tmp_path / "audit" / "log.jsonl"
        log = AuditLog(sink=JsonlAuditSink(path), clock=clock)

        _record(log)
        _record(log, action="stop")

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["action"] == "stop"
        assert json.loads(lines[0])["outcome"] == "success"
