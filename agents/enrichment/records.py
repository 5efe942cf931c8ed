"""
Value types shared by the enrichment pipelines.

These are plain dataclasses in the same spirit as the flow result
summaries: they carry data between the queue, the orchestrator and the
datastore and never talk to the outside world themselves.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_STATUSES = (RUN_RUNNING, RUN_COMPLETED, RUN_FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def entity_key(entity_type: str, entity_id: Any) -> str:
    return f"{entity_type}:{entity_id}"


@dataclass(frozen=True)
class Entity:
    """A real-world subject (artist, label, collective, brand, ...) to enrich."""
    id: str
    type: str
    display_name: str
    attributes: dict = field(default_factory=dict, compare=False, hash=False, repr=False)
    # Primary key as stored in the source table (int for serial ids).
    source_id: Any = field(default=None, compare=False, hash=False, repr=False)

    @property
    def key(self) -> str:
        return entity_key(self.type, self.id)

    @property
    def row_id(self) -> Any:
        """Id to filter the source table by; ``id`` is its string form."""
        return self.id if self.source_id is None else self.source_id

    @classmethod
    def from_row(
        cls,
        row: dict,
        entity_type: str,
        id_column: str = "id",
        name_column: str = "name",
    ) -> "Entity":
        return cls(
            id=str(row[id_column]),
            type=entity_type,
            display_name=str(row.get(name_column) or ""),
            attributes=dict(row),
            source_id=row[id_column],
        )


@dataclass
class CandidateDocument:
    """A fetched page or search hit that may contain facts about an entity."""
    url: str
    markdown: str = ""
    title: str = ""
    confidence: Optional[float] = None

    def as_prompt_dict(self, max_chars: int = 2000) -> dict:
        return {
            "url": self.url,
            "title": self.title,
            "content": (self.markdown or "")[:max_chars],
        }


@dataclass
class ExtractedRecord:
    """Structured facts extracted from candidates, awaiting the acceptance gate."""
    kind: str
    data: dict
    confidence_score: int = 0
    source_refs: list[str] = field(default_factory=list)
    consensus_validated: bool = False

    def __post_init__(self):
        self.confidence_score = max(0, min(100, int(self.confidence_score or 0)))

    def accepted(self, min_confidence: int) -> bool:
        return self.consensus_validated or self.confidence_score >= min_confidence


@dataclass
class RunStats:
    """Independent stage counters. Not a funnel: verified may exceed enriched."""
    processed: int = 0
    fetched: int = 0
    verified: int = 0
    enriched: int = 0
    generated: int = 0
    failed: int = 0
    skipped: int = 0

    def add(self, other: "RunStats") -> "RunStats":
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class AuditEntry:
    """Append-only record of what an action extracted."""
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    extracted_summary: Optional[dict] = None
    timestamp: datetime = field(default_factory=utcnow)

    def as_row(self) -> dict:
        return {
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "data_extracted": self.extracted_summary or {},
            "created_at": self.timestamp,
        }
