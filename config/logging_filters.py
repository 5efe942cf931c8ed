"""
Logging filters for structured log output.

Carries a correlation ID across a request and across the pipeline run it
triggers, so every log line of one invocation can be grepped together.
"""
import logging
import threading
from contextlib import contextmanager

_local = threading.local()


def get_correlation_id() -> str:
    """Get the current correlation ID (empty string if not set)."""
    return getattr(_local, "correlation_id", "")


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current thread."""
    _local.correlation_id = cid


@contextmanager
def correlation_scope(cid: str):
    """Use *cid* for the duration of the block, then restore the previous ID."""
    previous = get_correlation_id()
    set_correlation_id(cid)
    try:
        yield cid
    finally:
        set_correlation_id(previous)


class CorrelationIdFilter(logging.Filter):
    """Attach correlation_id to every log record."""

    def filter(self, record):
        record.correlation_id = get_correlation_id() or "-"
        return True
