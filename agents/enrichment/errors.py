"""
Error taxonomy for the enrichment pipelines.

Per-entity errors (UpstreamError, ParseError, PersistenceError) are caught
by the BatchOrchestrator and counted as ``failed``. Invocation-level errors
propagate to the pipeline handler, which finalizes the run as failed and
lets the view map the error to an HTTP status.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the enrichment pipelines."""

    http_status = 500


class ConfigurationError(PipelineError):
    """A required provider credential or setting is missing."""


class UpstreamError(PipelineError):
    """An external API call failed before returning a usable response."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None, body: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def http_status(self) -> int:
        if self.status_code in (402, 429):
            return self.status_code
        return 500


class UpstreamHttpError(UpstreamError):
    """An external API answered with a non-2xx status."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        snippet = (body or "")[:300]
        super().__init__(
            provider,
            f"{provider} returned HTTP {status_code}: {snippet}",
            status_code=status_code,
            body=body,
        )

    @property
    def quota_exhausted(self) -> bool:
        if self.status_code == 402:
            return True
        lowered = (self.body or "").lower()
        return "credits" in lowered or "insufficient_quota" in lowered

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def http_status(self) -> int:
        if self.quota_exhausted:
            return 402
        if self.rate_limited:
            return 429
        return 500


class CircuitOpenError(UpstreamError):
    """Raised when the circuit breaker is open for a service."""

    def __init__(self, service: str, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            service,
            f"Circuit breaker open for {service} ({remaining_seconds}s remaining)",
        )


class ParseError(PipelineError):
    """Model output did not contain extractable JSON."""

    def __init__(self, message: str, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message)


class PersistenceError(PipelineError):
    """A datastore read or write failed."""


class RunTrackingError(PipelineError):
    """The run tracking row is missing or was finalized twice."""


class UnknownActionError(PipelineError):
    """The requested action is not handled by the pipeline."""

    http_status = 400

    def __init__(self, pipeline: str, action: str):
        self.pipeline = pipeline
        self.action = action
        super().__init__(f"Unknown action: {action}")


class EntityNotFoundError(PipelineError):
    """The entity targeted by a single-entity action does not exist."""

    http_status = 404


class UnknownPipelineError(PipelineError):
    """No pipeline is registered under the requested name."""

    http_status = 404

    def __init__(self, pipeline: str):
        self.pipeline = pipeline
        super().__init__(f"Unknown pipeline: {pipeline}")


class InvalidParamsError(PipelineError):
    """A required action parameter is missing or malformed."""

    http_status = 400
