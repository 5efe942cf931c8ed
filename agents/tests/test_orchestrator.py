"""
Tests for agents/enrichment/orchestrator.py

Covers:
    - happy path: fetch -> extract -> persist with stats
    - partial failure: one entity's error does not stop the batch
    - soft-disabled discovery falls through to generation
    - parse fallback policies (skip / raw_text)
    - validation step and consensus stages
    - configuration errors abort the whole batch
    - mixed batch: one fetched, one generated, one failed
"""

import pytest

from agents.enrichment.consensus import ConsensusValidator
from agents.enrichment.errors import ConfigurationError, ParseError, UpstreamHttpError
from agents.enrichment.orchestrator import (
    FAILED,
    PERSISTED,
    SKIPPED,
    BatchOrchestrator,
    StageConfig,
)
from agents.enrichment.audit_log import AUDIT_TABLE, AuditLog
from agents.enrichment.records import CandidateDocument, Entity, ExtractedRecord
from agents.tests.fakes import FakeDiscovery, ScriptedAI


# =========================================================================
# Helpers
# =========================================================================

A = Entity("1", "artist", "Alpha")
B = Entity("2", "artist", "Bravo")
C = Entity("3", "artist", "Charlie")


def _prompt(entity, candidates):
    return "system", f"Find facts about {entity.display_name}"


def _records(entity, parsed, candidates):
    if not isinstance(parsed, dict):
        raise ParseError("expected object")
    return [ExtractedRecord("fact", parsed, confidence_score=parsed.get("confidence", 0),
                            source_refs=[c.url for c in candidates])]


class _Sink:
    def __init__(self):
        self.rows = []

    def __call__(self, entity, record):
        self.rows.append((entity.id, record))


def _stage(sink, **kwargs):
    defaults = dict(
        name="test_stage",
        query=lambda e: f"{e.display_name} techno",
        build_prompt=_prompt,
        to_records=_records,
        persist=sink,
    )
    defaults.update(kwargs)
    return StageConfig(**defaults)


def _hits(*names):
    return {n: [{"url": f"https://example.com/{n.lower()}", "markdown": f"{n} page"}] for n in names}


# =========================================================================
# StageConfig
# =========================================================================

class TestStageConfig:

    def test_needs_fetch_or_query(self):
        with pytest.raises(ValueError):
            StageConfig(name="x", build_prompt=_prompt, to_records=_records, persist=_Sink())

    def test_unknown_parse_fallback(self):
        with pytest.raises(ValueError):
            _stage(_Sink(), parse_fallback="explode")

    def test_require_consensus_ignores_confidence(self):
        stage = _stage(_Sink(), require_consensus=True)
        assert not stage.accepts(ExtractedRecord("x", {}, confidence_score=100))
        assert stage.accepts(ExtractedRecord("x", {}, consensus_validated=True))


# =========================================================================
# run_batch
# =========================================================================

class TestRunBatch:

    def test_happy_path(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "Tresor resident", "confidence": 80}'})
        sink = _Sink()
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha")))

        result = orch.run_batch([A], _stage(sink))

        assert result.stats.as_dict() == {
            "processed": 1, "fetched": 1, "verified": 0, "enriched": 1,
            "generated": 0, "failed": 0, "skipped": 0,
        }
        assert sink.rows[0][0] == "1"
        assert sink.rows[0][1].source_refs == ["https://example.com/alpha"]
        assert result.outcomes[0].state == PERSISTED
        assert result.outcomes[0].as_dict()["records"] == 1

    def test_below_threshold_is_skipped(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "maybe", "confidence": 30}'})
        sink = _Sink()
        result = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha"))).run_batch([A], _stage(sink))
        assert sink.rows == []
        assert result.stats.fetched == 1
        assert result.stats.skipped == 1
        assert result.outcomes[0].reason == "below_threshold"

    def test_empty_records_reason(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": "[]"})
        stage = _stage(_Sink(), to_records=lambda e, parsed, c: [])
        result = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha"))).run_batch([A], stage)
        assert result.outcomes[0].reason == "no_records"

    def test_no_candidates_without_generation_is_skipped(self, provider_config):
        ai = ScriptedAI(provider_config)
        result = BatchOrchestrator(ai=ai, discovery=FakeDiscovery()).run_batch([A], _stage(_Sink()))
        assert result.outcomes[0].state == SKIPPED
        assert result.outcomes[0].reason == "no_candidates"
        assert ai.calls == []

    def test_partial_failure_continues(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": [
            UpstreamHttpError("ai", 500, "boom"),
            '{"fact": "ok", "confidence": 90}',
        ]})
        sink = _Sink()
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha", "Bravo")))

        result = orch.run_batch([A, B], _stage(sink))

        assert result.stats.processed == 2
        assert result.stats.failed == 1
        assert result.stats.enriched == 1
        # a failed entity keeps none of its stage counters
        assert result.stats.fetched == 1
        assert [o.state for o in result.outcomes] == [FAILED, PERSISTED]
        assert result.outcomes[0].reason == "UpstreamHttpError"
        assert [row[0] for row in sink.rows] == ["2"]

    def test_persist_error_fails_only_that_entity(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "x", "confidence": 90}'})
        calls = []

        def persist(entity, record):
            calls.append(entity.id)
            if entity.id == "1":
                raise RuntimeError("constraint violation")

        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha", "Bravo")))
        result = orch.run_batch([A, B], _stage(persist))
        assert calls == ["1", "2"]
        assert result.stats.failed == 1
        assert result.stats.enriched == 1

    def test_configuration_error_aborts_batch(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": ConfigurationError("AI_API_KEY not configured")})
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha", "Bravo")))
        with pytest.raises(ConfigurationError):
            orch.run_batch([A, B], _stage(_Sink()))
        assert len(ai.calls) == 1

    def test_hooks_called_and_on_finish_errors_swallowed(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "x", "confidence": 90}'})
        started, finished = [], []

        def on_finish(entity, outcome):
            finished.append((entity.id, outcome.state))
            raise RuntimeError("job table unavailable")

        stage = _stage(_Sink(), on_start=lambda e: started.append(e.id), on_finish=on_finish)
        result = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha"))).run_batch([A], stage)
        assert started == ["1"]
        assert finished == [("1", PERSISTED)]
        assert result.stats.enriched == 1

    def test_custom_fetch_and_rate_limit_providers(self, provider_config):
        acquired = []

        class _Recorder:
            def acquire(self, provider_id):
                acquired.append(provider_id)
                return 0.0

        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "x", "confidence": 90}'})
        stage = _stage(
            _Sink(),
            query=None,
            fetch=lambda e: [CandidateDocument(url="claims:1", markdown="- fact")],
            fetch_provider="store",
        )
        BatchOrchestrator(ai=ai, rate_limiter=_Recorder()).run_batch([A], stage)
        assert acquired == ["store", "ai"]


# =========================================================================
# Generation fallback
# =========================================================================

class TestGeneration:

    def test_soft_disabled_discovery_falls_through_to_generation(self, provider_config):
        ai = ScriptedAI(provider_config)
        sink = _Sink()
        stage = _stage(sink, generate=lambda e: ExtractedRecord("image", {"url": "gen.png"}, confidence_score=70))
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha"), available=False))

        result = orch.run_batch([A], stage)

        assert result.stats.generated == 1
        assert result.stats.fetched == 0
        assert result.outcomes[0].reason == "generated"
        assert sink.rows[0][1].data == {"url": "gen.png"}

    def test_generation_returning_nothing(self, provider_config):
        stage = _stage(_Sink(), generate=lambda e: None)
        result = BatchOrchestrator(ai=ScriptedAI(provider_config), discovery=FakeDiscovery()).run_batch([A], stage)
        assert result.outcomes[0].reason == "generation_empty"
        assert result.stats.skipped == 1


# =========================================================================
# Parse fallback
# =========================================================================

class TestParseFallback:

    def test_skip_policy(self, provider_config, store):
        ai = ScriptedAI(provider_config, {"extraction": "I could not find anything useful."})
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha")), audit=AuditLog(store, "p"))
        result = orch.run_batch([A], _stage(_Sink()))
        assert result.outcomes[0].reason == "unparseable"
        assert result.stats.skipped == 1
        assert result.stats.failed == 0
        assert store.rows(AUDIT_TABLE) == []

    def test_raw_text_policy_logs_audit_row(self, provider_config, store):
        ai = ScriptedAI(provider_config, {"extraction": "Manager: Jane, no JSON sorry"})
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha")), audit=AuditLog(store, "p"))
        result = orch.run_batch([A], _stage(_Sink(), parse_fallback="raw_text"))

        assert result.outcomes[0].reason == "raw_text_logged"
        [row] = store.rows(AUDIT_TABLE)
        assert row["action"] == "test_stage_unparsed"
        assert row["entity_id"] == "1"
        assert row["data_extracted"]["raw_text"] == "Manager: Jane, no JSON sorry"

    def test_wrong_shape_from_to_records_is_parse_error(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": "[1, 2, 3]"})
        result = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha"))).run_batch([A], _stage(_Sink()))
        assert result.outcomes[0].reason == "unparseable"


# =========================================================================
# Validation and consensus
# =========================================================================

class TestValidation:

    def test_validate_step_counts_verified(self, provider_config):
        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "x", "confidence": 40}'})

        def validate(entity, record):
            record.confidence_score = 95
            return record

        result = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha"))).run_batch(
            [A], _stage(_Sink(), validate=validate),
        )
        assert result.stats.verified == 1
        assert result.stats.enriched == 1

    def test_consensus_stage_requires_validator(self, provider_config):
        stage = _stage(_Sink(), use_consensus=True)
        orch = BatchOrchestrator(ai=ScriptedAI(provider_config), discovery=FakeDiscovery(_hits("Alpha")))
        with pytest.raises(ConfigurationError):
            orch.run_batch([A], stage)

    def test_consensus_validated_record_is_persisted(self, provider_config):
        ai = ScriptedAI(provider_config, {
            "consensus_a": '{"fact": "Tresor"}',
            "consensus_b": '{"fact": "Tresor Berlin"}',
        })
        sink = _Sink()
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha")), consensus=ConsensusValidator(ai))
        result = orch.run_batch([A], _stage(sink, use_consensus=True, require_consensus=True))

        assert result.stats.verified == 1
        assert sink.rows[0][1].data == {"fact": "Tresor Berlin"}
        assert sink.rows[0][1].consensus_validated is True

    def test_consensus_failure_is_unparseable(self, provider_config):
        ai = ScriptedAI(provider_config, {"consensus_a": '{"fact": "x"}', "consensus_b": "no idea"})
        orch = BatchOrchestrator(ai=ai, discovery=FakeDiscovery(_hits("Alpha")), consensus=ConsensusValidator(ai))
        result = orch.run_batch([A], _stage(_Sink(), use_consensus=True, require_consensus=True))
        assert result.outcomes[0].reason == "unparseable"


# =========================================================================
# Mixed batch
# =========================================================================

class TestMixedBatch:

    def test_fetched_generated_and_failed(self, provider_config):
        """Alpha has a search hit, Bravo has none, Charlie's search errors."""
        discovery = FakeDiscovery({
            "Alpha": [{"url": "https://example.com/alpha", "markdown": "Alpha"}],
            "Charlie": UpstreamHttpError("discovery", 500, "server error"),
        })
        ai = ScriptedAI(provider_config, {"extraction": '{"fact": "x", "confidence": 85}'})
        sink = _Sink()
        stage = _stage(sink, generate=lambda e: ExtractedRecord("image", {"generated": True}, confidence_score=70))

        result = BatchOrchestrator(ai=ai, discovery=discovery).run_batch([A, B, C], stage)

        stats = result.stats
        assert (stats.processed, stats.fetched, stats.enriched, stats.generated, stats.failed) == (3, 1, 1, 1, 1)
        assert [o.state for o in result.outcomes] == [PERSISTED, PERSISTED, FAILED]
        assert [row[0] for row in sink.rows] == ["1", "2"]

    def test_plan_calls_nothing(self, provider_config):
        ai = ScriptedAI(provider_config)
        plan = BatchOrchestrator(ai=ai).plan([A, B, C], preview=2)
        assert plan == {
            "dry_run": True,
            "entities_to_process": [
                {"id": "1", "type": "artist", "name": "Alpha"},
                {"id": "2", "type": "artist", "name": "Bravo"},
            ],
            "total": 3,
        }
        assert ai.calls == []
