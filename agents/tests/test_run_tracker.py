"""
Tests for agents/enrichment/run_tracker.py and audit_log.py

Every invocation writes one pipeline_runs row at start and updates it once
at finish, including when the tracked block raises.
"""

from datetime import datetime, timedelta, timezone

import pytest

from agents.enrichment.audit_log import AUDIT_TABLE, AuditLog
from agents.enrichment.errors import RunTrackingError
from agents.enrichment.run_tracker import RUNS_TABLE, RunTracker
from config.logging_filters import get_correlation_id


T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, *times):
        self.times = list(times)

    def __call__(self):
        return self.times.pop(0) if len(self.times) > 1 else self.times[0]


class TestRunTracker:

    def test_start_inserts_running_row(self, store):
        tracker = RunTracker(store, "media-engine", clock=_Clock(T0))
        run_id = tracker.start("run_pipeline")

        [row] = store.rows(RUNS_TABLE)
        assert row["id"] == run_id
        assert row["pipeline"] == "media-engine"
        assert row["run_type"] == "run_pipeline"
        assert row["status"] == "running"
        assert row["started_at"] == T0
        assert row["stats"] == {}

    def test_finish_updates_same_row(self, store):
        tracker = RunTracker(store, "media-engine", clock=_Clock(T0, T0 + timedelta(seconds=5)))
        run_id = tracker.start("run_pipeline")
        tracker.finish(run_id, "completed", {"processed": 2})

        [row] = store.rows(RUNS_TABLE)
        assert row["status"] == "completed"
        assert row["stats"] == {"processed": 2}
        assert row["finished_at"] == T0 + timedelta(seconds=5)
        assert row["error_message"] is None

    def test_finished_at_never_before_started_at(self, store):
        tracker = RunTracker(store, "p", clock=_Clock(T0, T0 - timedelta(seconds=30)))
        run_id = tracker.start("status")
        tracker.finish(run_id, "completed")
        assert store.rows(RUNS_TABLE)[0]["finished_at"] == T0

    def test_double_finish_raises(self, store):
        tracker = RunTracker(store, "p")
        run_id = tracker.start("status")
        tracker.finish(run_id, "completed")
        with pytest.raises(RunTrackingError):
            tracker.finish(run_id, "failed")

    def test_invalid_final_status(self, store):
        tracker = RunTracker(store, "p")
        run_id = tracker.start("status")
        with pytest.raises(RunTrackingError):
            tracker.finish(run_id, "running")

    def test_finish_unknown_run(self, store):
        with pytest.raises(RunTrackingError):
            RunTracker(store, "p").finish("missing", "completed")

    def test_finish_from_another_tracker_reads_row(self, store):
        run_id = RunTracker(store, "p", clock=_Clock(T0)).start("status")
        RunTracker(store, "p", clock=_Clock(T0 + timedelta(seconds=1))).finish(run_id, "completed")
        assert store.rows(RUNS_TABLE)[0]["status"] == "completed"


class TestTrack:

    def test_success_path(self, store):
        tracker = RunTracker(store, "p")
        with tracker.track("enrich") as run:
            run.stats = {"processed": 1}
        row = store.rows(RUNS_TABLE)[0]
        assert row["status"] == "completed"
        assert row["stats"] == {"processed": 1}

    def test_exception_marks_failed_and_propagates(self, store):
        tracker = RunTracker(store, "p")
        with pytest.raises(ValueError):
            with tracker.track("enrich") as run:
                run.stats = {"processed": 1, "failed": 1}
                raise ValueError("boom")
        row = store.rows(RUNS_TABLE)[0]
        assert row["status"] == "failed"
        assert row["error_message"] == "boom"
        assert row["stats"] == {"processed": 1, "failed": 1}

    def test_handled_failure_via_fail(self, store):
        tracker = RunTracker(store, "p")
        with tracker.track("enrich") as run:
            run.fail("nothing to do")
        row = store.rows(RUNS_TABLE)[0]
        assert row["status"] == "failed"
        assert row["error_message"] == "nothing to do"

    def test_correlation_id_is_run_id_inside_block(self, store):
        tracker = RunTracker(store, "p")
        with tracker.track("enrich") as run:
            assert get_correlation_id() == run.run_id
        assert get_correlation_id() != run.run_id


class TestAuditLog:

    def test_record_inserts_row(self, store):
        entry = AuditLog(store, "artist-label-agent").record(
            "find_managers", "artist", "x1", {"managers": 2},
        )
        [row] = store.rows(AUDIT_TABLE)
        assert row["action"] == "find_managers"
        assert row["entity_type"] == "artist"
        assert row["entity_id"] == "x1"
        assert row["data_extracted"] == {"managers": 2}
        assert row["pipeline"] == "artist-label-agent"
        assert entry.action == "find_managers"

    def test_no_update_api(self, store):
        log = AuditLog(store, "p")
        assert not hasattr(log, "update")
        assert not hasattr(log, "delete")
