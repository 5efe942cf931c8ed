"""
Tests for the collectives-agent pipeline (agents/enrichment/pipelines/collectives.py)

Covers:
    - calculate_scores
    - discover: web mode, AI-only degrade, dedupe, confidence gate
    - enrich: scraped website, stored-row fallback, unparseable output
    - status / export filters
    - find_key_people, generate_outreach, verify_activity
    - activity_status
"""

import json

import pytest

from agents.enrichment.audit_log import AUDIT_TABLE
from agents.enrichment.errors import EntityNotFoundError, InvalidParamsError, UpstreamHttpError
from agents.enrichment.pipelines.collectives import (
    COLLECTIVES_TABLE,
    KEY_PEOPLE_TABLE,
    CollectivesPipeline,
    activity_status,
    calculate_scores,
)


@pytest.fixture
def pipeline(ctx):
    return CollectivesPipeline(ctx)


# =========================================================================
# calculate_scores
# =========================================================================

class TestCalculateScores:

    def test_no_signals_is_baseline(self):
        assert calculate_scores({}) == {
            "activity_score": 50,
            "credibility_score": 50,
            "techno_doc_fit_score": 50,
            "verification_confidence": 50,
        }

    def test_bonuses_add_per_score(self):
        scores = calculate_scores({"recent_events": True, "official_website": True, "community_driven": True})
        assert scores["activity_score"] == 70
        assert scores["credibility_score"] == 70
        assert scores["techno_doc_fit_score"] == 65
        assert scores["verification_confidence"] == 50

    def test_capped_at_100(self):
        scores = calculate_scores({
            "recent_events": True, "active_social_media": True, "recent_releases": True,
            "official_sources": True, "multiple_sources": True, "recent_verification": True,
        })
        assert scores["activity_score"] == 100
        assert scores["verification_confidence"] == 100

    def test_false_signals_ignored(self):
        assert calculate_scores({"recent_events": False})["activity_score"] == 50


# =========================================================================
# discover
# =========================================================================

FOUND = json.dumps([
    {"collective_name": "Herrensauna", "collective_type": ["techno_collective"], "region": "Europe",
     "city": "Berlin", "website_url": "https://herrensauna.test", "activity_evidence": "monthly events"},
    {"name": "herrensauna", "region": "Europe"},
    {"collective_name": "Algorave", "collective_type": "live_coding_collective", "region": "UK"},
    {"collective_name": "Known Crew", "region": "UK"},
])


class TestDiscover:

    @pytest.fixture(autouse=True)
    def existing(self, store):
        store.tables[COLLECTIVES_TABLE] = [{"id": 1, "collective_name": "Known Crew", "status": "active"}]

    def test_web_mode_uses_search_evidence(self, pipeline, ai, discovery, store):
        discovery.results = {"techno collective": [{"url": "https://ra.co/crews", "markdown": "crews"}]}
        ai.script["extraction"] = FOUND

        body = pipeline.handle("discover", {"regions": ["Europe"], "collective_types": ["techno_collective"]})

        assert body["mode"] == "web"
        assert body["discovered"] == 4
        assert body["inserted"] == 2
        assert body["stats"]["fetched"] == 1
        assert body["stats"]["skipped"] == 2
        assert discovery.queries == ["techno collective crew underground electronic music Europe active"]
        assert ai.calls_for("discovery") == []
        assert "https://ra.co/crews" in ai.calls_for("extraction")[0]

        herrensauna = next(r for r in store.rows(COLLECTIVES_TABLE) if r["collective_name"] == "Herrensauna")
        assert herrensauna["status"] == "uncertain"
        assert herrensauna["sources_json"] == ["https://ra.co/crews"]
        assert herrensauna["verification_confidence"] == 75
        assert herrensauna["activity_score"] == 70
        assert "discover" in [r["action"] for r in store.rows(AUDIT_TABLE)]

    def test_max_queries_caps_search(self, pipeline, ai, discovery):
        ai.script["extraction"] = "[]"
        ai.script["discovery"] = "[]"
        pipeline.handle("discover", {"max_queries": 3})
        assert len(discovery.queries) == 3

    def test_ai_only_when_discovery_disabled(self, pipeline, ai, discovery, store):
        discovery.available = False
        ai.script["discovery"] = FOUND

        body = pipeline.handle("discover")

        assert body["mode"] == "ai_only"
        assert body["inserted"] == 2
        assert discovery.queries == []
        algorave = next(r for r in store.rows(COLLECTIVES_TABLE) if r["collective_name"] == "Algorave")
        assert algorave["verification_confidence"] == 50
        assert algorave["sources_json"] == []

    def test_confidence_gate(self, pipeline, ai, discovery, store, pipeline_settings):
        discovery.available = False
        pipeline_settings["collective_min_confidence"] = 60
        ai.script["discovery"] = FOUND
        body = pipeline.handle("discover")
        assert body["inserted"] == 0
        assert len(store.rows(COLLECTIVES_TABLE)) == 1

    def test_unparseable_output_is_audited(self, pipeline, ai, discovery, store):
        discovery.available = False
        ai.script["discovery"] = "Here are some collectives: Herrensauna, Algorave."
        body = pipeline.handle("discover")
        assert body["inserted"] == 0
        assert store.rows(AUDIT_TABLE)[0]["action"] == "discover_unparsed"


# =========================================================================
# enrich
# =========================================================================

ANALYSIS = json.dumps({
    "philosophy_summary": "- queer-led\n- club as safe space",
    "what_they_like": "long-term residencies",
    "what_they_dislike": "corporate sponsorship",
    "activity_evidence": "events every month",
    "is_active": True,
    "recent_events": True,
    "community_driven": True,
    "educational_content": False,
    "confidence": 80,
})


class TestEnrich:

    @pytest.fixture(autouse=True)
    def collectives(self, store):
        store.tables[COLLECTIVES_TABLE] = [
            {"id": 1, "collective_name": "Herrensauna", "collective_type": ["techno_collective"],
             "city": "Berlin", "country": "Germany", "website_url": "https://herrensauna.test",
             "last_verified_at": None, "status": "uncertain"},
            {"id": 2, "collective_name": "Algorave", "collective_type": ["live_coding_collective"],
             "website_url": None, "last_verified_at": "2026-01-01", "status": "uncertain"},
        ]

    def test_scraped_website_is_analyzed(self, pipeline, ai, discovery, store):
        discovery.pages = {"https://herrensauna.test": "# Herrensauna\nOur manifesto"}
        ai.script["validation"] = ANALYSIS

        body = pipeline.handle("enrich", {"collective_ids": [1]})

        assert body["enriched"] == 1
        assert body["stats"]["fetched"] == 1
        assert discovery.scraped == ["https://herrensauna.test"]
        assert "Our manifesto" in ai.calls_for("validation")[0]
        row = next(r for r in store.rows(COLLECTIVES_TABLE) if r["id"] == 1)
        assert row["status"] == "active"
        assert row["what_they_like"] == "long-term residencies"
        assert row["activity_score"] == 70
        assert row["credibility_score"] == 70
        assert row["techno_doc_fit_score"] == 65
        assert row["verification_confidence"] == 90
        assert row["last_verified_at"] is not None
        [audit] = [r for r in store.rows(AUDIT_TABLE) if r["action"] == "enrich"]
        assert audit["entity_id"] == "1"
        assert audit["data_extracted"]["source_url"] == "https://herrensauna.test"

    def test_stored_row_fallback_when_scrape_fails(self, pipeline, ai, discovery, store):
        discovery.pages = {"https://herrensauna.test": UpstreamHttpError("discovery", 500, "boom")}
        ai.script["validation"] = ANALYSIS

        body = pipeline.handle("enrich", {"collective_ids": [1]})

        assert body["enriched"] == 1
        assert "Herrensauna" in ai.calls_for("validation")[0]
        row = next(r for r in store.rows(COLLECTIVES_TABLE) if r["id"] == 1)
        assert row["verification_confidence"] == 65

    def test_default_selection_is_oldest_first(self, pipeline, ai, discovery):
        discovery.available = False
        ai.script["validation"] = ANALYSIS
        pipeline.handle("enrich", {"batch_size": 1})
        assert "Herrensauna" in ai.calls_for("validation")[0]
        assert len(ai.calls_for("validation")) == 1

    def test_inactive_keeps_status(self, pipeline, ai, discovery, store):
        discovery.available = False
        ai.script["validation"] = json.dumps({"is_active": False, "confidence": 40})
        pipeline.handle("enrich", {"collective_id": 2})
        row = next(r for r in store.rows(COLLECTIVES_TABLE) if r["id"] == 2)
        assert row["status"] == "uncertain"
        assert row["verification_confidence"] == 65

    def test_missing_row_counts_failed(self, pipeline, ai, discovery, store, monkeypatch):
        discovery.available = False
        ai.script["validation"] = ANALYSIS
        monkeypatch.setattr(store, "update", lambda table, values, filters: [])

        body = pipeline.handle("enrich", {"collective_ids": [1]})

        assert body["enriched"] == 0
        assert body["stats"]["failed"] == 1
        assert [r for r in store.rows(AUDIT_TABLE) if r["action"] == "enrich"] == []

    def test_unparseable_analysis_logs_raw_text(self, pipeline, ai, discovery, store):
        discovery.available = False
        ai.script["validation"] = "A great collective."
        body = pipeline.handle("enrich", {"collective_ids": [1]})
        assert body["enriched"] == 0
        assert body["outcomes"][0]["reason"] == "raw_text_logged"
        assert "enrich_unparsed" in [r["action"] for r in store.rows(AUDIT_TABLE)]

    def test_nothing_to_enrich(self, pipeline, store, ai):
        store.tables[COLLECTIVES_TABLE] = []
        body = pipeline.handle("enrich")
        assert body["message"] == "No collectives to enrich"
        assert ai.calls == []


# =========================================================================
# status / export
# =========================================================================

class TestStatusExport:

    @pytest.fixture(autouse=True)
    def rows(self, store):
        store.tables[COLLECTIVES_TABLE] = [
            {"id": 1, "collective_name": "B", "region": "Europe", "status": "active", "techno_doc_fit_score": 80},
            {"id": 2, "collective_name": "A", "region": "UK", "status": "active", "techno_doc_fit_score": 50},
            {"id": 3, "collective_name": "C", "region": "Europe", "status": None, "techno_doc_fit_score": None},
        ]

    def test_status(self, pipeline):
        status = pipeline.handle("status")["status"]
        assert status["total"] == 3
        assert status["by_status"] == {"active": 2, "uncertain": 1}
        assert status["discovery_ready"] is True
        assert status["ai_ready"] is True

    def test_export_filters(self, pipeline):
        body = pipeline.handle("export", {"filters": {"region": "Europe", "min_fit_score": 60}, "format": "csv"})
        assert body["format"] == "csv"
        assert [r["id"] for r in body["records"]] == [1]

    def test_export_all_sorted_by_name(self, pipeline):
        body = pipeline.handle("export")
        assert [r["collective_name"] for r in body["records"]] == ["A", "B", "C"]
        assert body["format"] == "json"

    def test_export_rejects_non_numeric_fit_score(self, pipeline):
        with pytest.raises(InvalidParamsError):
            pipeline.handle("export", {"filters": {"min_fit_score": "high"}})


# =========================================================================
# find_key_people / generate_outreach
# =========================================================================

PEOPLE = json.dumps([
    {"person_name": "Nadine", "role_title": "founder", "email": "n@herrensauna.test",
     "social_links": ["https://instagram.com/nadine"], "preferred_contact_method": "email"},
    {"role_title": "resident"},
])

OUTREACH = json.dumps({
    "email_subject": "Archive feature",
    "email_body": "Hi Nadine",
    "dm_text": "Hey!",
    "proposal_summary": "A feature on the archive.",
    "next_steps": "reply by email",
})


@pytest.fixture
def herrensauna(store):
    store.tables[COLLECTIVES_TABLE] = [
        {"id": 1, "collective_name": "Herrensauna", "city": "Berlin", "country": "Germany",
         "philosophy_summary": "queer-led", "status": "active"},
    ]


class TestFindKeyPeople:

    def test_people_are_upserted(self, pipeline, ai, discovery, store, herrensauna):
        discovery.results = {"Herrensauna organizer": [{"url": "https://ra.co/hs", "markdown": "Nadine founded it"}]}
        ai.script["extraction"] = PEOPLE

        body = pipeline.handle("find_key_people", {"collective_id": 1})

        assert body["added"] == 1
        assert discovery.queries == ["Herrensauna organizer founder contact"]
        [person] = store.rows(KEY_PEOPLE_TABLE)
        assert person["collective_id"] == 1
        assert person["person_name"] == "Nadine"
        assert person["social_links_json"] == {"0": "https://instagram.com/nadine"}
        assert person["enrichment_confidence"] == 60

    def test_rerun_updates_existing_person(self, pipeline, ai, discovery, store, herrensauna):
        discovery.results = {"Herrensauna": [{"url": "https://ra.co/hs", "markdown": "Nadine"}]}
        ai.script["extraction"] = PEOPLE
        pipeline.handle("find_key_people", {"collective_id": 1})
        pipeline.handle("find_key_people", {"collective_id": 1})
        assert len(store.rows(KEY_PEOPLE_TABLE)) == 1

    def test_no_search_results(self, pipeline, ai, herrensauna):
        body = pipeline.handle("find_key_people", {"collective_id": 1})
        assert body["added"] == 0
        assert body["outcomes"][0]["reason"] == "no_candidates"
        assert ai.calls == []

    def test_unknown_collective(self, pipeline, store):
        with pytest.raises(EntityNotFoundError):
            pipeline.handle("find_key_people", {"collective_id": 99})

    def test_collective_id_required(self, pipeline):
        with pytest.raises(InvalidParamsError):
            pipeline.handle("find_key_people")


class TestGenerateOutreach:

    def test_outreach_uses_key_people(self, pipeline, ai, store, herrensauna):
        store.tables[KEY_PEOPLE_TABLE] = [
            {"id": 5, "collective_id": 1, "person_name": "Nadine", "role_title": "founder"},
            {"id": 6, "collective_id": 2, "person_name": "Someone Else", "role_title": "booker"},
        ]
        ai.script["drafting"] = OUTREACH

        body = pipeline.handle("generate_outreach", {"collective_id": 1, "goal": "interview"})

        assert body["outreach"]["email_subject"] == "Archive feature"
        assert body["outreach"]["next_steps"] == ["reply by email"]
        assert body["stats"]["generated"] == 1
        prompt = ai.calls_for("drafting")[0]
        assert "Nadine (founder)" in prompt
        assert "Someone Else" not in prompt
        assert "Goal: interview" in prompt
        assert "Tone: scene-native" in prompt
        [audit] = [r for r in store.rows(AUDIT_TABLE) if r["action"] == "generate_outreach"]
        assert audit["entity_id"] == "1"

    def test_unparseable_draft_returns_raw_content(self, pipeline, ai, herrensauna):
        ai.script["drafting"] = "Dear Herrensauna, we love your work."
        body = pipeline.handle("generate_outreach", {"collective_id": 1})
        assert body["outreach"] == {"raw_content": "Dear Herrensauna, we love your work."}
        assert body["stats"]["generated"] == 0


# =========================================================================
# verify_activity
# =========================================================================

class TestActivityStatus:

    @pytest.mark.parametrize("answer, expected", [
        ("ACTIVE - events every month", "active"),
        ("Inactive since 2019.", "inactive"),
        ("INACTIVE. No events since the club closed.", "inactive"),
        ("Uncertain, no recent posts", "uncertain"),
        ("They seem to be doing well", "uncertain"),
        ("", "uncertain"),
    ])
    def test_maps_answer(self, answer, expected):
        assert activity_status(answer) == expected


class TestVerifyActivity:

    @pytest.fixture(autouse=True)
    def collectives(self, store):
        store.tables[COLLECTIVES_TABLE] = [
            {"id": 1, "collective_name": "Herrensauna", "region": "Europe", "status": "active",
             "verification_confidence": 90, "last_verified_at": "2026-05-01"},
            {"id": 2, "collective_name": "Algorave", "region": "UK", "status": "uncertain",
             "verification_confidence": 50, "last_verified_at": None},
            {"id": 3, "collective_name": "Gone Crew", "region": "Europe", "status": "inactive",
             "verification_confidence": 80, "last_verified_at": None},
        ]

    def test_status_changes_are_reported(self, pipeline, ai, store):
        ai.script["discovery"] = ["ACTIVE, algorave last month", "INACTIVE, no events since 2024"]

        body = pipeline.handle("verify_activity")

        assert body["verified"] == 2
        assert "Algorave" in ai.calls_for("discovery")[0]
        assert body["status_changes"] == [
            {"id": 2, "name": "Algorave", "old_status": "uncertain", "new_status": "active"},
            {"id": 1, "name": "Herrensauna", "old_status": "active", "new_status": "inactive"},
        ]
        rows = {r["id"]: r for r in store.rows(COLLECTIVES_TABLE)}
        assert rows[1]["status"] == "inactive"
        assert rows[1]["activity_evidence"] == "INACTIVE, no events since 2024"
        assert rows[1]["last_verified_at"] is not None
        assert rows[3]["last_verified_at"] is None

    def test_region_and_confidence_filters(self, pipeline, ai):
        ai.script["discovery"] = "ACTIVE"
        body = pipeline.handle("verify_activity", {"region": "Europe", "min_confidence": 60})
        assert body["verified"] == 1
        assert "Herrensauna" in ai.calls_for("discovery")[0]
        assert body["status_changes"] == []

    def test_one_failure_does_not_stop_batch(self, pipeline, ai):
        ai.script["discovery"] = [UpstreamHttpError("discovery", 502, "bad gateway"), "ACTIVE"]
        body = pipeline.handle("verify_activity")
        assert body["stats"]["failed"] == 1
        assert body["verified"] == 1

    def test_nothing_to_verify(self, pipeline, store, ai):
        store.tables[COLLECTIVES_TABLE] = []
        body = pipeline.handle("verify_activity")
        assert body["verified"] == 0
        assert ai.calls == []
