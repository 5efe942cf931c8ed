"""
Batch orchestrator: fetch -> extract -> validate -> persist, one entity at a time.

Each entity walks a small state machine::

    pending -> fetching -> extracting -> validating -> persisted
                        -> no_candidates -> generating -> persisted
    any step -> failed
    unparseable output, nothing accepted, or nothing to generate -> skipped

A failure aborts only the current entity. Its stage counters are thrown
away and it contributes ``processed`` and ``failed`` only; entities that
end persisted or skipped commit every stage counter they reached. Nothing
is rolled back across entities: each accepted record is written as soon as
it is accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from agents.enrichment.consensus import ConsensusValidator
from agents.enrichment.errors import ConfigurationError, ParseError
from agents.enrichment.json_extraction import extract_json
from agents.enrichment.rate_limiter import NullRateLimiter
from agents.enrichment.records import CandidateDocument, Entity, ExtractedRecord, RunStats

logger = logging.getLogger(__name__)

PERSISTED = "persisted"
SKIPPED = "skipped"
FAILED = "failed"

PARSE_SKIP = "skip"
PARSE_RAW_TEXT = "raw_text"

DEFAULT_MIN_CONFIDENCE = 60


# ---------------------------------------------------------------------------
# Stage configuration and results
# ---------------------------------------------------------------------------

@dataclass
class StageConfig:
    """What one batch does to each entity.

    ``build_prompt`` returns ``(system_prompt, user_prompt)``; ``to_records``
    turns the parsed model JSON into ExtractedRecords and may raise
    ParseError when the JSON has the wrong shape.
    """

    name: str
    build_prompt: Callable[[Entity, list[CandidateDocument]], tuple[str, str]]
    to_records: Callable[[Entity, Any, list[CandidateDocument]], list[ExtractedRecord]]
    persist: Callable[[Entity, ExtractedRecord], Any]

    query: Optional[Callable[[Entity], str]] = None
    fetch: Optional[Callable[[Entity], list[CandidateDocument]]] = None
    search_limit: int = 5

    extraction_role: str = "extraction"
    use_consensus: bool = False
    require_consensus: bool = False
    validate: Optional[Callable[[Entity, ExtractedRecord], ExtractedRecord]] = None
    min_confidence: int = DEFAULT_MIN_CONFIDENCE
    parse_fallback: str = PARSE_SKIP

    generate: Optional[Callable[[Entity], Optional[ExtractedRecord]]] = None

    fetch_provider: str = "discovery"
    ai_provider: str = "ai"
    generation_provider: str = "image_generation"

    on_start: Optional[Callable[[Entity], None]] = None
    on_finish: Optional[Callable[[Entity, "EntityOutcome"], None]] = None

    def __post_init__(self):
        if self.parse_fallback not in (PARSE_SKIP, PARSE_RAW_TEXT):
            raise ValueError(f"Unknown parse fallback policy: {self.parse_fallback}")
        if self.fetch is None and self.query is None:
            raise ValueError(f"Stage '{self.name}' needs either fetch or query")

    def accepts(self, record: ExtractedRecord) -> bool:
        if self.require_consensus:
            return record.consensus_validated
        return record.accepted(self.min_confidence)


@dataclass
class EntityOutcome:
    entity_key: str
    display_name: str
    state: str
    reason: str = ""
    records_persisted: int = 0
    error: Optional[str] = None

    def as_dict(self) -> dict:
        data = {
            "entity": self.entity_key,
            "name": self.display_name,
            "state": self.state,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.records_persisted:
            data["records"] = self.records_persisted
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    """Summary of one run_batch call."""
    stats: RunStats = field(default_factory=RunStats)
    outcomes: list[EntityOutcome] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "stats": self.stats.as_dict(),
            "outcomes": [o.as_dict() for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class BatchOrchestrator:
    def __init__(
        self,
        ai=None,
        discovery=None,
        rate_limiter=None,
        audit=None,
        consensus: Optional[ConsensusValidator] = None,
    ):
        self.ai = ai
        self.discovery = discovery
        self.rate_limiter = rate_limiter or NullRateLimiter()
        self.audit = audit
        self.consensus = consensus

    def plan(self, entities: list[Entity], preview: int = 20) -> dict:
        """Dry run: what would be processed, without calling any provider."""
        return {
            "dry_run": True,
            "entities_to_process": [
                {"id": e.id, "type": e.type, "name": e.display_name}
                for e in entities[:preview]
            ],
            "total": len(entities),
        }

    def run_batch(self, entities: list[Entity], stage: StageConfig) -> BatchResult:
        result = BatchResult()
        logger.info("Batch %s: %d entities", stage.name, len(entities))

        for entity in entities:
            result.stats.processed += 1
            local = RunStats()
            try:
                if stage.on_start:
                    stage.on_start(entity)
                outcome = self._process(entity, stage, local)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning("Entity %s failed in %s: %s", entity.key, stage.name, e)
                result.stats.failed += 1
                outcome = EntityOutcome(
                    entity.key, entity.display_name, FAILED,
                    reason=type(e).__name__, error=str(e),
                )
            else:
                if outcome.state == SKIPPED:
                    local.skipped += 1
                result.stats.add(local)

            result.outcomes.append(outcome)
            self._notify(stage, entity, outcome)

        logger.info("Batch %s done: %s", stage.name, result.stats.as_dict())
        return result

    def _notify(self, stage: StageConfig, entity: Entity, outcome: EntityOutcome) -> None:
        if not stage.on_finish:
            return
        try:
            stage.on_finish(entity, outcome)
        except Exception:
            logger.exception("on_finish hook failed for %s", entity.key)

    # ------------------------------------------------------------------
    # Per-entity steps
    # ------------------------------------------------------------------

    def _fetch(self, entity: Entity, stage: StageConfig) -> list[CandidateDocument]:
        self.rate_limiter.acquire(stage.fetch_provider)
        if stage.fetch is not None:
            return list(stage.fetch(entity) or [])
        if self.discovery is None:
            return []
        return self.discovery.search(stage.query(entity), stage.search_limit)

    def _process(self, entity: Entity, stage: StageConfig, local: RunStats) -> EntityOutcome:
        candidates = self._fetch(entity, stage)

        if not candidates:
            if stage.generate is None:
                return EntityOutcome(entity.key, entity.display_name, SKIPPED, reason="no_candidates")
            return self._generate(entity, stage, local)

        local.fetched += 1
        try:
            records, validated_step = self._extract(entity, candidates, stage)
        except ParseError as e:
            return self._parse_fallback(entity, stage, e)

        accepted = [r for r in records if stage.accepts(r)]
        if validated_step and accepted:
            local.verified += 1

        persisted = 0
        for record in accepted:
            stage.persist(entity, record)
            persisted += 1

        if not persisted:
            reason = "below_threshold" if records else "no_records"
            return EntityOutcome(entity.key, entity.display_name, SKIPPED, reason=reason)

        local.enriched += 1
        return EntityOutcome(entity.key, entity.display_name, PERSISTED, records_persisted=persisted)

    def _extract(
        self,
        entity: Entity,
        candidates: list[CandidateDocument],
        stage: StageConfig,
    ) -> tuple[list[ExtractedRecord], bool]:
        system_prompt, user_prompt = stage.build_prompt(entity, candidates)
        self.rate_limiter.acquire(stage.ai_provider)

        if stage.use_consensus:
            if self.consensus is None:
                raise ConfigurationError(f"Stage '{stage.name}' needs a consensus validator")
            outcome = self.consensus.validate(user_prompt, system_prompt)
            if outcome.merged is None:
                raise ParseError("Consensus models returned no usable JSON", outcome.model_a_output)
            records = stage.to_records(entity, outcome.merged, candidates)
            for record in records:
                record.consensus_validated = outcome.validated
            return records, True

        raw = self.ai.invoke_role(stage.extraction_role, system_prompt, user_prompt)
        parsed = extract_json(raw)
        if parsed is None:
            raise ParseError("No JSON found in extraction response", raw)
        try:
            records = stage.to_records(entity, parsed, candidates)
        except ParseError as e:
            raise ParseError(str(e), e.raw_text or raw) from e

        if stage.validate is None:
            return records, False

        validated = []
        for record in records:
            self.rate_limiter.acquire(stage.ai_provider)
            validated.append(stage.validate(entity, record))
        return validated, True

    def _generate(self, entity: Entity, stage: StageConfig, local: RunStats) -> EntityOutcome:
        self.rate_limiter.acquire(stage.generation_provider)
        record = stage.generate(entity)
        if record is None or not stage.accepts(record):
            return EntityOutcome(entity.key, entity.display_name, SKIPPED, reason="generation_empty")

        stage.persist(entity, record)
        local.generated += 1
        return EntityOutcome(entity.key, entity.display_name, PERSISTED, reason="generated", records_persisted=1)

    def _parse_fallback(self, entity: Entity, stage: StageConfig, error: ParseError) -> EntityOutcome:
        logger.info("Unparseable %s output for %s: %s", stage.name, entity.key, error)
        if stage.parse_fallback == PARSE_RAW_TEXT and self.audit is not None:
            self.audit.record(
                f"{stage.name}_unparsed",
                entity.type,
                entity.id,
                {"raw_text": (error.raw_text or "")[:4000], "reason": str(error)},
            )
            return EntityOutcome(entity.key, entity.display_name, SKIPPED, reason="raw_text_logged")
        return EntityOutcome(entity.key, entity.display_name, SKIPPED, reason="unparseable")
