"""
Shared plumbing for the action-dispatched pipelines.

A pipeline is a named set of actions (``status``, ``run_pipeline``,
``find_contacts``, ...). ``Pipeline.handle`` resolves the action, wraps it
in a tracked run, and turns the handler's return value into the
``{success, stats?, ...}`` response body. Invocation-level errors finish
the run as failed, raise an operator alert, and propagate to the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from agents.enrichment.ai_client import AIClient
from agents.enrichment.audit_log import AuditLog
from agents.enrichment.consensus import ConsensusValidator
from agents.enrichment.discovery import FirecrawlSource
from agents.enrichment.errors import (
    ConfigurationError,
    InvalidParamsError,
    ParseError,
    PersistenceError,
    PipelineError,
    UnknownActionError,
)
from agents.enrichment.orchestrator import BatchOrchestrator
from agents.enrichment.provider_config import ProviderConfig
from agents.enrichment.rate_limiter import RateLimiter
from agents.enrichment.records import CandidateDocument, RunStats, utcnow
from agents.enrichment.run_tracker import RunTracker, TrackedRun
from config.alerting import send_alert, severity_for_status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

@dataclass
class PipelineContext:
    """Collaborators resolved once per request and shared by every action."""

    store: Any
    config: ProviderConfig
    ai: AIClient
    discovery: Any
    rate_limiter: Any
    settings: dict = field(default_factory=dict)

    @classmethod
    def from_settings(cls, store=None, config: Optional[ProviderConfig] = None) -> "PipelineContext":
        from django.conf import settings as django_settings

        from agents.enrichment.datastore import get_store

        config = config or ProviderConfig.from_settings(django_settings)
        return cls(
            store=store if store is not None else get_store(),
            config=config,
            ai=AIClient(config),
            discovery=FirecrawlSource(config),
            rate_limiter=RateLimiter(config.rate_limits),
            settings=dict(getattr(django_settings, "PIPELINE_CONFIG", {}) or {}),
        )


# ---------------------------------------------------------------------------
# Param helpers
# ---------------------------------------------------------------------------

def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def param(params: dict, name: str, default=None):
    """Read ``name`` from params, accepting the camelCase spelling too."""
    if name in params:
        return params[name]
    return params.get(_camel(name), default)


def int_param(params: dict, name: str, default: int, minimum: int = 0, maximum: int = 500) -> int:
    value = param(params, name, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidParamsError(f"{name} must be an integer") from None
    return max(minimum, min(maximum, value))


def bool_param(params: dict, name: str, default: bool = False) -> bool:
    value = param(params, name, default)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def list_param(params: dict, name: str) -> list:
    value = param(params, name)
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def required_param(params: dict, name: str):
    value = param(params, name)
    if value is None or value == "":
        raise InvalidParamsError(f"{name} is required")
    return value


def rows_as_candidates(rows: list[dict], source: str, text_fields: Optional[list[str]] = None) -> list[CandidateDocument]:
    """Wrap stored rows as candidates so stored data can feed the extractor."""
    candidates = []
    for row in rows:
        body = {k: row.get(k) for k in text_fields} if text_fields else row
        candidates.append(CandidateDocument(
            url=f"{source}:{row.get('id', '')}",
            markdown=json.dumps(body, default=str),
        ))
    return candidates


def candidates_block(candidates: list[CandidateDocument], max_items: int = 5, max_chars: int = 1500) -> str:
    return json.dumps([c.as_prompt_dict(max_chars) for c in candidates[:max_items]], indent=2)


# ---------------------------------------------------------------------------
# Pipeline base class
# ---------------------------------------------------------------------------

class Pipeline:
    """Base class. Subclasses set ``name`` and implement ``action_<name>`` methods."""

    name = ""
    # Legacy spellings accepted from older callers: {"run-pipeline": "run_pipeline"}
    aliases: dict[str, str] = {}

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self.store = ctx.store
        self.ai = ctx.ai
        self.discovery = ctx.discovery
        self.tracker = RunTracker(ctx.store, self.name)
        self.audit = AuditLog(ctx.store, self.name)

    # -- configuration ------------------------------------------------------

    def setting(self, key: str, default=None):
        return self.ctx.settings.get(key, default)

    @property
    def min_confidence(self) -> int:
        return int(self.setting("min_confidence", 60))

    def orchestrator(self, consensus: bool = False) -> BatchOrchestrator:
        validator = None
        if consensus:
            validator = ConsensusValidator(
                self.ai,
                agreement_fields=self.setting("consensus_agreement_fields", {}).get(self.name, ()),
            )
        return BatchOrchestrator(
            ai=self.ai,
            discovery=self.discovery,
            rate_limiter=self.ctx.rate_limiter,
            audit=self.audit,
            consensus=validator,
        )

    def require_ai(self) -> None:
        if not self.ai.available:
            raise ConfigurationError("AI_API_KEY not configured")

    def ask_json(
        self,
        role: str,
        system_prompt: str,
        user_prompt: str,
        expect: type = dict,
        image_url: Optional[str] = None,
    ):
        """Single AI call whose JSON answer is required; raises ParseError otherwise."""
        self.ctx.rate_limiter.acquire("ai")
        parsed, raw = self.ai.invoke_json(role, system_prompt, user_prompt, image_url=image_url)
        if parsed is None or (expect is not None and not isinstance(parsed, expect)):
            kind = expect.__name__ if expect is not None else "value"
            raise ParseError(f"Expected JSON {kind} from {role} model", raw)
        return parsed

    # -- dispatch -----------------------------------------------------------

    @classmethod
    def normalize_action(cls, action: str) -> str:
        action = (action or "").strip()
        action = cls.aliases.get(action, action)
        return action.replace("-", "_")

    @classmethod
    def actions(cls) -> list[str]:
        return sorted(n[len("action_"):] for n in dir(cls) if n.startswith("action_"))

    def _resolve(self, action: str) -> Callable[[dict, TrackedRun], dict]:
        handler = getattr(self, f"action_{self.normalize_action(action)}", None)
        if handler is None:
            raise UnknownActionError(self.name, action)
        return handler

    def handle(self, action: str, params: Optional[dict] = None) -> dict:
        """Run one action as a tracked invocation and return the response body."""
        handler = self._resolve(action)
        params = params or {}
        run_type = self.normalize_action(action)
        logger.info("%s action: %s %s", self.name, run_type, params)

        try:
            with self.tracker.track(run_type) as run:
                body = handler(params, run) or {}
                run.stats = body.get("stats") or {k: v for k, v in body.items() if k != "records"}
                run_id = run.run_id
        except Exception as e:
            status = getattr(e, "http_status", 500) if isinstance(e, PipelineError) else 500
            severity = severity_for_status(status)
            if severity:
                send_alert(severity, f"{self.name} {run_type} failed", str(e))
            raise

        return {"success": True, "run_id": run_id, **body}

    # -- shared helpers -----------------------------------------------------

    def now(self):
        return utcnow()

    def batch_response(self, result, message: str, **extra) -> dict:
        body = {
            "stats": result.stats.as_dict(),
            "outcomes": [o.as_dict() for o in result.outcomes],
            "message": message,
        }
        body.update(extra)
        return body

    def empty_stats(self) -> dict:
        return RunStats().as_dict()

    def update_one(self, table: str, values: dict, filters: dict) -> dict:
        """Update the row matching *filters*; raise if nothing was written."""
        rows = self.store.update(table, values, filters)
        if not rows:
            raise PersistenceError(f"No {table} row matched {filters}")
        return rows[0]
