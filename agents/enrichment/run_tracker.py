"""
Run tracking for pipeline invocations.

Every invocation writes exactly one ``pipeline_runs`` row at start
(status ``running``) and updates it exactly once at finish, on the
exception path too. ``track()`` wraps both calls so handlers cannot forget
either half.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Optional

from agents.enrichment.errors import RunTrackingError
from agents.enrichment.records import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_RUNNING,
    RUN_STATUSES,
    utcnow,
)
from config.logging_filters import correlation_scope

logger = logging.getLogger(__name__)

RUNS_TABLE = "pipeline_runs"


@dataclass
class TrackedRun:
    """Mutable handle the handler fills in while a tracked run is open."""
    run_id: str
    run_type: str
    stats: dict = field(default_factory=dict)
    status: str = RUN_COMPLETED
    error: Optional[str] = None

    def fail(self, message: str) -> None:
        """Finish as failed without raising (a handled, reportable failure)."""
        self.status = RUN_FAILED
        self.error = message


class RunTracker:
    def __init__(self, store, pipeline: str, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.pipeline = pipeline
        self._clock = clock
        self._started: dict[str, datetime] = {}
        self._finished: set[str] = set()

    def start(self, run_type: str) -> str:
        run_id = str(uuid.uuid4())
        started_at = self._clock()
        self.store.insert(RUNS_TABLE, {
            "id": run_id,
            "pipeline": self.pipeline,
            "run_type": run_type,
            "status": RUN_RUNNING,
            "started_at": started_at,
            "stats": {},
        })
        self._started[run_id] = started_at
        logger.info("Run %s started: %s/%s", run_id, self.pipeline, run_type)
        return run_id

    def _started_at(self, run_id: str) -> datetime:
        if run_id in self._started:
            return self._started[run_id]
        rows = self.store.select(RUNS_TABLE, filters={"id": run_id}, limit=1)
        if not rows:
            raise RunTrackingError(f"No run row for {run_id}")
        if rows[0].get("status") != RUN_RUNNING:
            raise RunTrackingError(f"Run {run_id} already finished")
        return rows[0]["started_at"]

    def finish(self, run_id: str, status: str, stats: Optional[dict] = None, error: Optional[str] = None) -> None:
        if run_id in self._finished:
            raise RunTrackingError(f"Run {run_id} already finished")
        if status not in (RUN_COMPLETED, RUN_FAILED):
            raise RunTrackingError(f"Invalid final status '{status}' (expected one of {RUN_STATUSES[1:]})")

        started_at = self._started_at(run_id)
        finished_at = self._clock()
        if started_at is not None and finished_at < started_at:
            finished_at = started_at

        self.store.update(
            RUNS_TABLE,
            {
                "status": status,
                "finished_at": finished_at,
                "stats": stats or {},
                "error_message": error,
            },
            {"id": run_id},
        )
        self._finished.add(run_id)
        self._started.pop(run_id, None)

        if status == RUN_FAILED:
            logger.error("Run %s failed: %s", run_id, error)
        else:
            logger.info("Run %s completed", run_id)

    @contextmanager
    def track(self, run_type: str) -> Iterator[TrackedRun]:
        """Start a run, yield its handle, and finish it however the block exits."""
        run = TrackedRun(run_id=self.start(run_type), run_type=run_type)
        with correlation_scope(run.run_id):
            try:
                yield run
            except Exception as e:
                self.finish(run.run_id, RUN_FAILED, run.stats, error=str(e) or type(e).__name__)
                raise
            self.finish(run.run_id, run.status, run.stats, error=run.error)
