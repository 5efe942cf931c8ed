"""
Collectives agent: techno collectives, sound systems and live coding crews.

discover finds new collectives (web search when Firecrawl is configured,
model knowledge otherwise) and inserts the ones not already known.
enrich scrapes each collective's website and asks the validation model for
a structured read of its philosophy, preferences and activity.
find_key_people records organizers, verify_activity re-checks whether a
collective is still running, and generate_outreach drafts a first contact.
"""

from __future__ import annotations

import logging
import re

from pydantic import ValidationError

from agents.enrichment.datastore import Order, gte, in_
from agents.enrichment.errors import (
    ConfigurationError,
    EntityNotFoundError,
    ParseError,
    UpstreamError,
)
from agents.enrichment.orchestrator import PARSE_RAW_TEXT, StageConfig
from agents.enrichment.pipelines.base import (
    Pipeline,
    candidates_block,
    int_param,
    list_param,
    param,
    required_param,
    rows_as_candidates,
)
from agents.enrichment.records import Entity, ExtractedRecord
from agents.enrichment.schemas import (
    CollectiveAnalysis,
    CollectiveCandidate,
    CollectiveOutreach,
    KeyPersonCandidate,
)

logger = logging.getLogger(__name__)

COLLECTIVES_TABLE = "collectives"
KEY_PEOPLE_TABLE = "collective_key_people"

KEY_PERSON_CONFIDENCE = 60
OUTREACH_PEOPLE = 5

_ACTIVITY_WORD = re.compile(r"\b(INACTIVE|ACTIVE|UNCERTAIN)\b")

DEFAULT_REGIONS = ["Europe", "UK", "North America"]

TYPE_QUERIES = {
    "techno_collective": "techno collective crew underground electronic music",
    "sound_system": "sound system crew rave free party tekno",
    "open_source_collective": "open source music technology collective hackerspace",
    "live_coding_collective": "live coding algorave SuperCollider TidalCycles music collective",
    "hybrid_art_tech": "art technology collective electronic music installation",
}

# signal -> (score field, bonus)
SCORE_SIGNALS = {
    "recent_events": ("activity_score", 20),
    "active_social_media": ("activity_score", 15),
    "recent_releases": ("activity_score", 15),
    "official_website": ("credibility_score", 20),
    "established_history": ("credibility_score", 15),
    "press_features": ("credibility_score", 15),
    "open_source_focus": ("techno_doc_fit_score", 20),
    "community_driven": ("techno_doc_fit_score", 15),
    "educational_content": ("techno_doc_fit_score", 15),
    "official_sources": ("verification_confidence", 25),
    "multiple_sources": ("verification_confidence", 15),
    "recent_verification": ("verification_confidence", 10),
}
BASE_SCORE = 50


def calculate_scores(signals: dict) -> dict:
    """Activity, credibility, fit and confidence scores from boolean signals.

    Every score starts at 50; each present signal adds its bonus; all scores
    are capped at 100.
    """
    scores = {
        "activity_score": BASE_SCORE,
        "credibility_score": BASE_SCORE,
        "techno_doc_fit_score": BASE_SCORE,
        "verification_confidence": BASE_SCORE,
    }
    for signal, (score, bonus) in SCORE_SIGNALS.items():
        if signals.get(signal):
            scores[score] += bonus
    return {k: min(100, v) for k, v in scores.items()}


def activity_status(answer: str) -> str:
    """Map a free-text ACTIVE / INACTIVE / UNCERTAIN answer to a status."""
    match = _ACTIVITY_WORD.search((answer or "").upper())
    return match.group(1).lower() if match else "uncertain"


# ────────────────────────────────────────────────────────────────
# Prompts
# ────────────────────────────────────────────────────────────────

DISCOVERY_SYSTEM_PROMPT = (
    "You are a scene intelligence agent specializing in techno collectives, sound systems, "
    "and open-source music communities. Provide current, accurate information about active "
    "collectives in Europe, UK, and North America. Output valid JSON only."
)

DISCOVERY_USER_PROMPT = """List currently active techno collectives, sound systems, and live coding communities in {regions}.
Focus on: {types}.
{evidence}
Tag collective_type from: techno_collective, sound_system, open_source_collective, live_coding_collective, hybrid_art_tech.
Region must be one of: Europe, UK, North America.

Return JSON array:
[{{
  "collective_name": "string",
  "collective_type": ["array"],
  "region": "Europe|UK|North America",
  "country": "string",
  "city": "string",
  "website_url": "string",
  "activity_evidence": "string"
}}]"""

ANALYSIS_SYSTEM_PROMPT = (
    "You are a cultural analyst specializing in underground electronic music communities. "
    "Extract structured insights about collectives for relationship building. "
    "Be accurate and evidence-based. Return valid JSON."
)

ANALYSIS_USER_PROMPT = """Analyze this collective:

Collective: {name}
Location: {city}, {country}
Sources:
{candidates}

Return JSON:
{{
  "philosophy_summary": "3-5 bullet points on their philosophy or manifesto",
  "what_they_like": "what they value in partnerships",
  "what_they_dislike": "what they avoid",
  "key_people": ["name (role)"],
  "activity_evidence": "recent events, releases",
  "is_active": true|false,
  "recent_events": true|false,
  "community_driven": true|false,
  "educational_content": true|false,
  "confidence": 0-100
}}"""

KEY_PEOPLE_SYSTEM_PROMPT = "Extract only people clearly tied to the collective. Return valid JSON array."

KEY_PEOPLE_USER_PROMPT = """Find the organizers, founders and key contacts of the collective "{name}" in these search results:
{candidates}

Return JSON array:
[{{
  "person_name": "string",
  "role_title": "founder|organizer|resident|booker|press",
  "email": "string or null",
  "social_links": {{"platform": "url"}},
  "preferred_contact_method": "email|instagram|form|in_person"
}}]"""

ACTIVITY_SYSTEM_PROMPT = "You are a fast scene intelligence scanner. Answer in one short paragraph."

ACTIVITY_USER_PROMPT = """Is {name} techno collective still active?
Look for: recent events, social media activity, releases, or announcements.
Answer: ACTIVE, INACTIVE, or UNCERTAIN with brief evidence."""

COLLECTIVE_OUTREACH_SYSTEM_PROMPT = (
    "You write outreach to underground collectives. Be respectful of their values, brief and "
    "concrete. Never sound like marketing. Return valid JSON."
)

COLLECTIVE_OUTREACH_USER_PROMPT = """Collective: {collective}

Key people:
{people}

Proposal: {proposal}
Goal: {goal}
Tone: {tone}

Return JSON:
{{
  "email_subject": "string",
  "email_body": "string",
  "dm_text": "short direct message",
  "proposal_summary": "one paragraph",
  "next_steps": ["array"]
}}"""


class CollectivesPipeline(Pipeline):
    name = "collectives-agent"

    def _known_names(self) -> set[str]:
        rows = self.store.select(COLLECTIVES_TABLE, columns=["collective_name"])
        return {(r.get("collective_name") or "").casefold() for r in rows}

    # ------------------------------------------------------------------
    # status / export
    # ------------------------------------------------------------------

    def action_status(self, params, run) -> dict:
        rows = self.store.select(COLLECTIVES_TABLE, columns=["status"])
        by_status: dict[str, int] = {}
        for row in rows:
            status = row.get("status") or "uncertain"
            by_status[status] = by_status.get(status, 0) + 1
        return {"status": {
            "total": len(rows),
            "by_status": by_status,
            "discovery_ready": self.discovery.available,
            "ai_ready": self.ai.available,
        }}

    def action_export(self, params, run) -> dict:
        filters = dict(param(params, "filters") or {})
        query = {}
        if param(filters, "region"):
            query["region"] = param(filters, "region")
        if param(filters, "status"):
            query["status"] = param(filters, "status")
        if param(filters, "min_fit_score") not in (None, ""):
            query["techno_doc_fit_score"] = gte(int_param(filters, "min_fit_score", 0, maximum=100))

        rows = self.store.select(COLLECTIVES_TABLE, filters=query, order_by=["collective_name"])
        return {"format": param(params, "format") or "json", "count": len(rows), "records": rows}

    # ------------------------------------------------------------------
    # discover
    # ------------------------------------------------------------------

    def _search_queries(self, regions: list[str], types: list[str]) -> list[str]:
        return [
            f"{TYPE_QUERIES.get(kind, kind)} {region} active"
            for region in regions
            for kind in types
        ]

    def action_discover(self, params, run) -> dict:
        regions = list_param(params, "regions") or DEFAULT_REGIONS
        types = list_param(params, "collective_types")
        max_queries = int_param(params, "max_queries", 10, minimum=1, maximum=50)
        self.require_ai()

        stats = self.empty_stats()
        docs = []
        mode = "web" if self.discovery.available else "ai_only"
        if mode == "web":
            for query in self._search_queries(regions, types or list(TYPE_QUERIES))[:max_queries]:
                self.ctx.rate_limiter.acquire("discovery")
                docs.extend(self.discovery.search(query, 5))
            stats["fetched"] = len(docs)
        else:
            logger.info("Discovery source not configured, using model knowledge only")

        evidence = ""
        role = "discovery"
        if docs:
            evidence = f"Use these search results as evidence:\n{candidates_block(docs, max_items=20, max_chars=800)}"
            role = "extraction"

        try:
            parsed = self.ask_json(role, DISCOVERY_SYSTEM_PROMPT, DISCOVERY_USER_PROMPT.format(
                regions=", ".join(regions), types=", ".join(types) or "all types", evidence=evidence,
            ), expect=list)
        except ParseError as e:
            self.audit.record("discover_unparsed", "collective", summary={
                "raw_text": (e.raw_text or "")[:4000], "reason": str(e),
            })
            return {"stats": stats, "mode": mode, "discovered": 0, "inserted": 0}

        known = self._known_names()
        min_conf = int(self.setting("collective_min_confidence", 50))
        inserted = 0
        for item in parsed:
            try:
                candidate = CollectiveCandidate.model_validate(item)
            except ValidationError:
                continue
            stats["processed"] += 1
            name_key = candidate.collective_name.strip().casefold()
            if not name_key or name_key in known:
                stats["skipped"] += 1
                continue

            scores = calculate_scores({
                "recent_events": "event" in candidate.activity_evidence.lower(),
                "official_website": bool(candidate.website_url),
                "official_sources": bool(docs),
                "open_source_focus": "open_source_collective" in candidate.collective_type,
                "community_driven": True,
            })
            if scores["verification_confidence"] < min_conf:
                stats["skipped"] += 1
                continue

            self.store.insert(COLLECTIVES_TABLE, {
                **candidate.model_dump(),
                "status": "uncertain",
                "sources_json": [d.url for d in docs[:10]],
                **scores,
            })
            known.add(name_key)
            inserted += 1

        stats["enriched"] = inserted
        self.audit.record("discover", "collective", summary={
            "count": len(parsed), "inserted": inserted, "mode": mode,
        })
        return {"stats": stats, "mode": mode, "discovered": len(parsed), "inserted": inserted}

    # ------------------------------------------------------------------
    # enrich
    # ------------------------------------------------------------------

    def _fetch_sources(self, entity: Entity) -> list:
        website = entity.attributes.get("website_url")
        if website and self.discovery.available:
            try:
                page = self.discovery.scrape(website)
            except UpstreamError as e:
                logger.warning("Scrape failed for %s: %s", website, e)
                page = None
            if page is not None and page.markdown:
                page.confidence = 1.0
                return [page]
        return rows_as_candidates([entity.attributes], COLLECTIVES_TABLE, [
            "collective_name", "collective_type", "city", "country", "website_url", "activity_evidence",
        ])

    def _analysis_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        attrs = entity.attributes
        return ANALYSIS_SYSTEM_PROMPT, ANALYSIS_USER_PROMPT.format(
            name=entity.display_name,
            city=attrs.get("city") or "unknown",
            country=attrs.get("country") or "unknown",
            candidates=candidates_block(candidates, max_chars=3000),
        )

    def _analysis_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if not isinstance(parsed, dict):
            raise ParseError("Collective analysis must be a JSON object")
        analysis = CollectiveAnalysis.model_validate(parsed)
        scraped = any(c.confidence for c in candidates)
        types = entity.attributes.get("collective_type") or []

        scores = calculate_scores({
            "recent_events": analysis.recent_events,
            "official_website": bool(entity.attributes.get("website_url")),
            "official_sources": scraped,
            "open_source_focus": "open_source_collective" in types,
            "community_driven": analysis.community_driven,
            "educational_content": analysis.educational_content,
            "multiple_sources": True,
        })
        data = {
            "philosophy_summary": analysis.philosophy_summary[:1000],
            "what_they_like": analysis.what_they_like[:500],
            "what_they_dislike": analysis.what_they_dislike[:500],
            "activity_evidence": analysis.activity_evidence[:500],
            **scores,
        }
        if analysis.is_active:
            data["status"] = "active"
        return [ExtractedRecord(
            kind="collective_profile",
            data=data,
            confidence_score=scores["verification_confidence"],
            source_refs=[c.url for c in candidates if c.confidence],
        )]

    def _persist_analysis(self, entity: Entity, record: ExtractedRecord) -> None:
        values = {**record.data, "last_verified_at": self.now()}
        self.update_one(COLLECTIVES_TABLE, values, {"id": entity.row_id})
        self.audit.record("enrich", "collective", entity.id, {
            "source_url": entity.attributes.get("website_url"),
            **record.data,
        })

    def action_enrich(self, params, run) -> dict:
        ids = list_param(params, "collective_ids") or list_param(params, "collective_id")
        batch_size = int_param(params, "batch_size", 5, minimum=1, maximum=50)
        if ids:
            rows = self.store.select(COLLECTIVES_TABLE, filters={"id": in_(ids)}, order_by=["id"])
        else:
            rows = self.store.select(
                COLLECTIVES_TABLE,
                order_by=[Order("last_verified_at", nulls_first=True), "id"],
                limit=batch_size,
            )
        if not rows:
            return {"stats": self.empty_stats(), "enriched": 0, "message": "No collectives to enrich"}

        self.require_ai()
        entities = [Entity.from_row(r, "collective", name_column="collective_name") for r in rows]
        stage = StageConfig(
            name="enrich",
            fetch=self._fetch_sources,
            extraction_role="validation",
            build_prompt=self._analysis_prompt,
            to_records=self._analysis_records,
            persist=self._persist_analysis,
            min_confidence=self.min_confidence,
            parse_fallback=PARSE_RAW_TEXT,
        )
        result = self.orchestrator().run_batch(entities, stage)
        return self.batch_response(
            result,
            f"Enriched {result.stats.enriched} collectives",
            enriched=result.stats.enriched,
        )

    # ------------------------------------------------------------------
    # key people / outreach
    # ------------------------------------------------------------------

    def _collective(self, collective_id) -> dict:
        rows = self.store.select(COLLECTIVES_TABLE, filters={"id": collective_id}, limit=1)
        if not rows:
            raise EntityNotFoundError(f"Collective {collective_id} not found")
        return rows[0]

    def _key_people_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if isinstance(parsed, dict):
            parsed = parsed.get("people", [parsed])
        if not isinstance(parsed, list):
            raise ParseError("Key people extraction must be a JSON array")

        records = []
        for item in parsed:
            try:
                person = KeyPersonCandidate.model_validate(item)
            except ValidationError:
                continue
            if not person.person_name:
                continue
            records.append(ExtractedRecord(
                kind="key_person",
                data=person.model_dump(),
                confidence_score=KEY_PERSON_CONFIDENCE,
                source_refs=[c.url for c in candidates[:3]],
            ))
        return records

    def _persist_key_person(self, entity: Entity, record: ExtractedRecord) -> None:
        data = dict(record.data)
        self.store.upsert(KEY_PEOPLE_TABLE, {
            "collective_id": entity.row_id,
            "person_name": data["person_name"],
            "role_title": data.get("role_title"),
            "email": data.get("email"),
            "social_links_json": data.get("social_links") or {},
            "preferred_contact_method": data.get("preferred_contact_method"),
            "enrichment_confidence": record.confidence_score,
            "last_verified_at": self.now(),
        }, conflict=["collective_id", "person_name"])

    def action_find_key_people(self, params, run) -> dict:
        collective = self._collective(required_param(params, "collective_id"))
        self.require_ai()

        entity = Entity.from_row(collective, "collective", name_column="collective_name")
        stage = StageConfig(
            name="find_key_people",
            query=lambda e: f"{e.display_name} organizer founder contact",
            build_prompt=lambda e, c: (
                KEY_PEOPLE_SYSTEM_PROMPT,
                KEY_PEOPLE_USER_PROMPT.format(name=e.display_name, candidates=candidates_block(c)),
            ),
            to_records=self._key_people_records,
            persist=self._persist_key_person,
            min_confidence=0,
            parse_fallback=PARSE_RAW_TEXT,
        )
        result = self.orchestrator().run_batch([entity], stage)
        added = sum(o.records_persisted for o in result.outcomes)
        return self.batch_response(result, f"Added {added} key people", added=added)

    def action_generate_outreach(self, params, run) -> dict:
        collective_id = required_param(params, "collective_id")
        collective = self._collective(collective_id)
        self.require_ai()

        people = self.store.select(
            KEY_PEOPLE_TABLE,
            columns=["person_name", "role_title", "preferred_contact_method"],
            filters={"collective_id": collective["id"]},
            order_by=["person_name"],
            limit=OUTREACH_PEOPLE,
        )
        context = {
            "proposal": param(params, "proposal") or "feature on techno.dog",
            "goal": param(params, "goal") or "collaboration",
            "tone": param(params, "tone") or "scene-native",
        }
        prompt = COLLECTIVE_OUTREACH_USER_PROMPT.format(
            collective=", ".join(str(collective.get(k) or "") for k in (
                "collective_name", "city", "country", "philosophy_summary", "what_they_like", "what_they_dislike",
            )),
            people="\n".join(
                f"- {p.get('person_name')} ({p.get('role_title') or 'unknown role'})" for p in people
            ) or "none on file",
            **context,
        )

        stats = self.empty_stats()
        stats["processed"] = 1
        try:
            outreach = CollectiveOutreach.model_validate(
                self.ask_json("drafting", COLLECTIVE_OUTREACH_SYSTEM_PROMPT, prompt)
            ).model_dump()
            stats["generated"] = 1
        except ParseError as e:
            logger.info("Unparseable outreach for collective %s", collective_id)
            outreach = {"raw_content": e.raw_text or ""}
            stats["skipped"] = 1

        self.audit.record("generate_outreach", "collective", str(collective["id"]), {
            "email_subject": outreach.get("email_subject"), **context,
        })
        return {"stats": stats, "collective_id": collective["id"], "outreach": outreach}

    # ------------------------------------------------------------------
    # verify_activity
    # ------------------------------------------------------------------

    def action_verify_activity(self, params, run) -> dict:
        batch_size = int_param(params, "batch_size", 20, minimum=1, maximum=100)
        filters = {"status": in_(["uncertain", "active"])}
        if param(params, "region"):
            filters["region"] = param(params, "region")
        min_confidence = int_param(params, "min_confidence", 0, maximum=100)
        if min_confidence > 0:
            filters["verification_confidence"] = gte(min_confidence)

        rows = self.store.select(
            COLLECTIVES_TABLE,
            filters=filters,
            order_by=[Order("last_verified_at", nulls_first=True), "id"],
            limit=batch_size,
        )
        if not rows:
            return {"stats": self.empty_stats(), "verified": 0, "status_changes": []}

        self.require_ai()
        stats = self.empty_stats()
        changes = []
        for row in rows:
            stats["processed"] += 1
            name = row.get("collective_name") or ""
            try:
                self.ctx.rate_limiter.acquire("ai")
                answer = self.ai.invoke_role("discovery", ACTIVITY_SYSTEM_PROMPT, ACTIVITY_USER_PROMPT.format(name=name))
                status = activity_status(answer)
                self.update_one(COLLECTIVES_TABLE, {
                    "status": status,
                    "activity_evidence": (answer or "")[:500],
                    "last_verified_at": self.now(),
                }, {"id": row["id"]})
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning("Activity check failed for %s: %s", name, e)
                stats["failed"] += 1
                continue

            stats["verified"] += 1
            if status != row.get("status"):
                changes.append({"id": row["id"], "name": name, "old_status": row.get("status"), "new_status": status})

        return {"stats": stats, "verified": stats["verified"], "status_changes": changes}
