"""
Techno archive enrichment agents.

Provides:
- AIClient / FirecrawlSource: external AI caller and discovery source
- ConsensusValidator: dual-model validation with field-wise merge
- EntityQueue: idempotent selection of entities still lacking output
- BatchOrchestrator / StageConfig: fetch -> extract -> validate -> persist
- RunTracker / AuditLog: pipeline_runs and pipeline_audit_log bookkeeping
- pipelines: the action-dispatched media, artist-label, collectives and
  consolidation agents
"""

from .ai_client import AIClient
from .audit_log import AuditLog
from .consensus import ConsensusResult, ConsensusValidator, merge_outputs
from .discovery import FirecrawlSource
from .entity_queue import EntityQueue, QueueSelection, keys_from_rows
from .errors import (
    ConfigurationError,
    EntityNotFoundError,
    ParseError,
    PersistenceError,
    PipelineError,
    UnknownActionError,
    UnknownPipelineError,
    UpstreamError,
    UpstreamHttpError,
)
from .json_extraction import extract_json
from .orchestrator import BatchOrchestrator, BatchResult, StageConfig
from .provider_config import ProviderConfig
from .rate_limiter import NullRateLimiter, RateLimiter
from .records import CandidateDocument, Entity, ExtractedRecord, RunStats
from .run_tracker import RunTracker

__all__ = [
    "AIClient",
    "AuditLog",
    "BatchOrchestrator",
    "BatchResult",
    "CandidateDocument",
    "ConfigurationError",
    "ConsensusResult",
    "ConsensusValidator",
    "Entity",
    "EntityNotFoundError",
    "EntityQueue",
    "ExtractedRecord",
    "FirecrawlSource",
    "NullRateLimiter",
    "ParseError",
    "PersistenceError",
    "PipelineError",
    "ProviderConfig",
    "QueueSelection",
    "RateLimiter",
    "RunStats",
    "RunTracker",
    "StageConfig",
    "UnknownActionError",
    "UnknownPipelineError",
    "UpstreamError",
    "UpstreamHttpError",
    "extract_json",
    "keys_from_rows",
    "merge_outputs",
]
