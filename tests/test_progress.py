"""Tests for progress sinks, time budgets and the audit logger."""

import logging
from unittest.mock import patch

from checkcell.progress import LoggingProgress, NullProgress, ProgressSink, TimeBudget
from checkcell.workflow.audit import AuditEntry, AuditLogger


class TestProgressSinks:
    """Test the progress sinks."""

    def test_sinks_satisfy_protocol(self):
        """Test both sinks are progress sinks."""
        assert isinstance(NullProgress(), ProgressSink)
        assert isinstance(LoggingProgress(), ProgressSink)

    def test_logging_progress_steps(self, caplog):
        """Test progress is logged once per step."""
        progress = LoggingProgress(step_percent=50)

        with caplog.at_level(logging.INFO, logger="checkcell.progress"):
            for tick in range(1, 11):
                progress.report_progress(tick, 10)

        # buckets 0, 1 and 2 (at 100%)
        assert caplog.text.count("Bootstrap progress") == 3
        assert progress.current == 10

    def test_cancel(self):
        """Test cancellation is sticky."""
        progress = LoggingProgress()
        assert not progress.is_cancelled()

        progress.cancel()

        assert progress.is_cancelled()


class TestTimeBudget:
    """Test the wall-clock budget."""

    def test_no_limit(self):
        """Test a missing limit never expires."""
        assert not TimeBudget(None).expired()

    def test_zero_expires_immediately(self):
        """Test a zero budget is already spent."""
        assert TimeBudget(0).expired()

    def test_expires_after_limit(self):
        """Test the budget expires once the limit has passed."""
        with patch("checkcell.progress.time.monotonic", side_effect=[100.0, 100.5, 102.0]):
            budget = TimeBudget(1000)
            assert not budget.expired()
            assert budget.expired()


class TestAuditLogger:
    """Test the in-memory audit trail."""

    def test_recent_operations_newest_first(self):
        """Test entries come back newest first, filtered by action."""
        audit = AuditLogger()
        audit.log_operation(AuditEntry(action="analyze", state="analyzed", status="success"))
        audit.log_operation(AuditEntry(action="flag", state="flagged", status="success", cell="Sheet1!A2"))
        audit.log_operation(AuditEntry(action="reset", state="idle", status="success"))

        assert [e.action for e in audit.get_recent_operations()] == ["reset", "flag", "analyze"]
        assert [e.cell for e in audit.get_recent_operations(action="flag")] == ["Sheet1!A2"]
        assert len(audit.get_recent_operations(limit=1)) == 1

    def test_max_entries(self):
        """Test old entries are dropped past the limit."""
        audit = AuditLogger(max_entries=2)
        for action in ["analyze", "flag", "mark_ok"]:
            audit.log_operation(AuditEntry(action=action, state="idle", status="success"))

        assert len(audit) == 2
        assert [e.action for e in audit.get_recent_operations()] == ["mark_ok", "flag"]

    def test_entry_to_dict(self):
        """Test entries serialize with an ID and timestamp."""
        entry = AuditEntry(action="flag", state="flagged", status="success", cell="Sheet1!A2")

        data = entry.to_dict()

        assert data["action"] == "flag"
        assert data["cell"] == "Sheet1!A2"
        assert len(data["id"]) == 12
        assert "timestamp" in data
