"""
Artist / label intelligence agent.

Builds the working set of active artists from the canonical artist table,
finds their managers, booking agents and labels, enriches label and
manager contacts, keeps verification timestamps fresh, and drafts
outreach for a chosen contact.

Model roles:
  - extraction: normalization of canonical rows, manager, label and contact
    extraction
  - validation: manager verification and label collaboration policy
  - discovery:  fast freshness scan
  - drafting:   outreach copy
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from agents.enrichment.datastore import Order, in_
from agents.enrichment.errors import (
    EntityNotFoundError,
    InvalidParamsError,
    ParseError,
    PersistenceError,
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
from agents.enrichment.records import Entity, ExtractedRecord, RunStats
from agents.enrichment.schemas import (
    FreshnessScan,
    LabelCandidate,
    LabelContactCandidate,
    LabelPolicy,
    ManagerCandidate,
    ManagerValidation,
    NormalizedArtist,
    OutreachDraft,
)

logger = logging.getLogger(__name__)

CANONICAL_TABLE = "canonical_artists"
ARTISTS_TABLE = "artists_active"
MANAGERS_TABLE = "artist_managers"
LABELS_TABLE = "labels"
LABEL_CONTACTS_TABLE = "label_contacts"
ARTIST_LABELS_TABLE = "artist_labels"

SUPPORTED_REGIONS = ("EU", "UK", "North America", "both")
NORMALIZE_SAMPLE = 20
MANAGER_MIN_CONFIDENCE = 50
DEFAULT_OPENNESS = 50
LABEL_CONTACT_CONFIDENCE = 60

DEFAULT_OUTREACH = {
    "collaboration_type": "interview",
    "tone": "scene-native",
    "project_context": "techno.dog - underground techno knowledge platform",
    "goal": "collaboration",
}


# ────────────────────────────────────────────────────────────────
# Prompts
# ────────────────────────────────────────────────────────────────

NORMALIZE_SYSTEM_PROMPT = "You are a music industry data specialist. Return only valid JSON."

NORMALIZE_USER_PROMPT = """You are an expert music industry data analyst. Extract and normalize artist information for EU/UK/North America electronic/techno artists.

Input data:
{rows}

For each artist, determine:
1. Normalized name (handle aliases, stage names)
2. Region focus (EU, UK, North America, or both)
3. Active status based on evidence
4. Activity score (0-100)

Return JSON array with structure:
[{{
  "artist_name": "string",
  "artist_aliases": ["array"],
  "region_focus": "EU|UK|North America|both",
  "country_base": "string",
  "city_base": "string",
  "active_status": "active|uncertain|inactive",
  "evidence_of_activity": "string",
  "verification_confidence": 0-100
}}]

Only include artists relevant to techno/electronic scene in EU, UK, or North America."""

MANAGER_SYSTEM_PROMPT = "Extract only verified manager info. Return valid JSON array."

MANAGER_USER_PROMPT = """Extract manager/agent information for artist "{name}" from these search results:
{candidates}

Return JSON array of managers found:
[{{
  "manager_name": "string",
  "manager_role": "manager|agent|booking|PR|label_manager",
  "management_company": "string",
  "company_website": "string",
  "email": "string or null",
  "phone": "string or null",
  "contact_form_url": "string or null",
  "region_coverage": "EU|North America|global|UK",
  "data_source_url": "string"
}}]"""

VALIDATE_SYSTEM_PROMPT = (
    "You are a music industry relationships expert. Be thorough but concise. Return valid JSON."
)

VALIDATE_USER_PROMPT = """You are an expert music industry relationships analyst with deep knowledge of electronic music management.

Analyze this manager/agent information:
{manager}

Artist context: {artist}

Provide:
1. Is this the current/primary manager? (confidence 0-100)
2. What do they like in collaborations?
3. What should we avoid?
4. Best approach strategy
5. Preferred outreach channel
6. Red flags to watch for

Return JSON:
{{
  "is_primary_manager": boolean,
  "confidence": 0-100,
  "what_they_like": "string",
  "what_they_dislike": "string",
  "best_approach_notes": "string",
  "outreach_channel_preference": "email|phone|form|intro",
  "collaboration_policy_summary": "string",
  "red_flags": ["array"]
}}"""

FRESHNESS_SYSTEM_PROMPT = "You are a fast intelligence scanner. Be quick and accurate. Return valid JSON."

FRESHNESS_USER_PROMPT = """You are a fast-scanning music industry intelligence agent. Check freshness signals for this {type}:

{candidates}

Quickly assess:
1. Is this information current? (recent activity indicators)
2. Any recent changes detected? (role changes, new projects, roster updates)
3. Current activity level (high/medium/low/inactive)
4. Freshness confidence (0-100)

Return JSON:
{{
  "is_current": boolean,
  "activity_level": "high|medium|low|inactive",
  "recent_changes_detected": ["array"],
  "freshness_confidence": 0-100,
  "needs_update": boolean,
  "update_priority": "high|medium|low"
}}"""

LABEL_SYSTEM_PROMPT = "Extract only verified label info. Return valid JSON array."

LABEL_USER_PROMPT = """Extract record labels that artist "{name}" has released on, from these search results:
{candidates}

Return JSON array of labels found:
[{{
  "label_name": "string",
  "label_type": "independent|major|artist-run|sublabel",
  "label_website_url": "string",
  "headquarters_country": "string",
  "general_email": "string or null",
  "relationship_type": "signed|recent|past|own_label",
  "evidence_url": "string"
}}]"""

LABEL_POLICY_SYSTEM_PROMPT = (
    "You are a music industry relationships expert focused on record labels. Return valid JSON."
)

LABEL_POLICY_USER_PROMPT = """Analyze how open this techno label is to collaborations, interviews and features:
{label}

Artist context: {artist}

Return JSON:
{{
  "collaboration_openness_score": 0-100,
  "preferred_collaboration_types": ["array"],
  "what_they_like": "string",
  "what_they_dislike": "string",
  "best_approach_notes": "string",
  "red_flags": ["array"]
}}"""

LABEL_CONTACT_SYSTEM_PROMPT = "Extract only verified label staff contacts. Return valid JSON array."

LABEL_CONTACT_USER_PROMPT = """Extract A&R, PR and press contacts for the label "{name}" from these search results:
{candidates}

Return JSON array:
[{{
  "contact_person_name": "string",
  "role_title": "string",
  "department": "A&R|PR|press|management|general",
  "email": "string or null",
  "phone": "string or null",
  "source_url": "string"
}}]"""

OUTREACH_SYSTEM_PROMPT = (
    "You are a music industry PR professional. Write authentic, non-spammy outreach. Return valid JSON."
)

OUTREACH_USER_PROMPT = """You are an expert PR professional for techno.dog, an underground techno knowledge platform.

Generate outreach content for:
Target: {target}
Target Type: {target_type}
Collaboration Type: {collaboration_type}
Tone: {tone}
Project Context: {project_context}
Goal: {goal}

Create:
1. Email subject line
2. Email body (professional, scene-aware, not spammy)
3. Short DM version (if appropriate)
4. Follow-up email (shorter)
5. Key talking points

Return JSON:
{{
  "email_subject": "string",
  "email_body": "string",
  "dm_script": "string",
  "follow_up_email": "string",
  "key_talking_points": ["array"],
  "recommended_timing": "string",
  "follow_up_cadence": "string"
}}"""


def _dump(value) -> str:
    return json.dumps(value, indent=2, default=str)


class ArtistLabelPipeline(Pipeline):
    name = "artist-label-agent"
    aliases = {
        "ingest_artists": "ingest",
        "find_managers": "find_contacts",
    }

    # ------------------------------------------------------------------
    # status / export
    # ------------------------------------------------------------------

    def action_status(self, params, run) -> dict:
        recent = self.store.select(
            "pipeline_runs",
            columns=["id", "run_type", "status", "started_at", "finished_at"],
            filters={"pipeline": self.name},
            order_by=["-started_at"],
            limit=5,
        )
        return {"status": {
            "artists": self.store.count(ARTISTS_TABLE),
            "active_artists": self.store.count(ARTISTS_TABLE, {"active_status": "active"}),
            "managers": self.store.count(MANAGERS_TABLE),
            "labels": self.store.count(LABELS_TABLE),
            "label_contacts": self.store.count(LABEL_CONTACTS_TABLE),
            "recent_runs": recent,
        }}

    def action_export(self, params, run) -> dict:
        limit = int_param(params, "limit", 500, minimum=1, maximum=5000)
        artists = self.store.select(ARTISTS_TABLE, order_by=["artist_name"], limit=limit)
        managers = self.store.select(MANAGERS_TABLE, order_by=["artist_id", "manager_name"], limit=limit)
        return {
            "records": {"artists": artists, "managers": managers},
            "count": len(artists) + len(managers),
        }

    # ------------------------------------------------------------------
    # ingest
    # ------------------------------------------------------------------

    def action_ingest(self, params, run) -> dict:
        batch_size = int_param(params, "batch_size", 50, minimum=1)
        canonical = self.store.select(CANONICAL_TABLE, order_by=["artist_id"], limit=batch_size)
        stats = self.empty_stats()

        if not canonical:
            return {"stats": stats, "ingested": 0, "total": 0, "message": "No artists to ingest"}

        self.require_ai()
        stats["fetched"] = len(canonical)
        try:
            normalized = self.ask_json(
                "extraction",
                NORMALIZE_SYSTEM_PROMPT,
                NORMALIZE_USER_PROMPT.format(rows=_dump(canonical[:NORMALIZE_SAMPLE])),
                expect=list,
            )
        except ParseError as e:
            self.audit.record("ingest_unparsed", ARTISTS_TABLE, summary={
                "raw_text": (e.raw_text or "")[:4000], "reason": str(e),
            })
            stats["skipped"] = len(canonical)
            return {"stats": stats, "ingested": 0, "total": len(canonical), "message": "Normalization output unparseable"}

        regions = set(list_param(params, "region_focus")) | set(SUPPORTED_REGIONS)
        min_conf = int(self.setting("ingest_min_confidence", self.min_confidence))
        by_name = {
            (row.get("canonical_name") or "").casefold(): row.get("artist_id")
            for row in canonical
        }

        ingested = 0
        for item in normalized:
            stats["processed"] += 1
            try:
                artist = NormalizedArtist.model_validate(item)
            except ValidationError:
                logger.info("Dropping malformed normalized artist: %s", item)
                stats["skipped"] += 1
                continue

            if artist.region_focus not in regions or artist.verification_confidence < min_conf:
                stats["skipped"] += 1
                continue

            try:
                self.store.upsert(ARTISTS_TABLE, {
                    **artist.model_dump(),
                    "canonical_artist_id": by_name.get(artist.artist_name.casefold()),
                    "source_urls_json": ["canonical_artists_import"],
                    "last_verified_at": self.now(),
                }, conflict=["artist_name"])
            except PersistenceError as e:
                logger.warning("Failed to ingest %s: %s", artist.artist_name, e)
                stats["failed"] += 1
                continue
            ingested += 1

        stats["enriched"] = ingested
        self.audit.record("ingest_artists", ARTISTS_TABLE, summary={
            "count": ingested, "source": CANONICAL_TABLE,
        })
        logger.info("Ingested %d/%d artists", ingested, len(canonical))
        return {"stats": stats, "ingested": ingested, "total": len(canonical)}

    # ------------------------------------------------------------------
    # find_contacts (managers)
    # ------------------------------------------------------------------

    def _manager_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        return MANAGER_SYSTEM_PROMPT, MANAGER_USER_PROMPT.format(
            name=entity.display_name, candidates=candidates_block(candidates),
        )

    def _manager_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if isinstance(parsed, dict):
            parsed = parsed.get("managers", [parsed])
        if not isinstance(parsed, list):
            raise ParseError("Manager extraction must be a JSON array")

        records = []
        for item in parsed:
            try:
                manager = ManagerCandidate.model_validate(item)
            except ValidationError:
                continue
            if not manager.manager_name:
                continue
            records.append(ExtractedRecord(
                kind="manager",
                data=manager.model_dump(),
                source_refs=[manager.data_source_url] if manager.data_source_url else [],
            ))
        return records

    def _validate_manager(self, entity: Entity, record: ExtractedRecord) -> ExtractedRecord:
        try:
            verdict = self.ask_json("validation", VALIDATE_SYSTEM_PROMPT, VALIDATE_USER_PROMPT.format(
                manager=_dump(record.data), artist=entity.display_name,
            ))
            validation = ManagerValidation.model_validate(verdict)
        except (ParseError, ValidationError) as e:
            logger.info("Manager validation unusable for %s: %s", entity.key, e)
            record.confidence_score = 0
            return record

        record.data.update(validation.model_dump())
        record.confidence_score = validation.confidence
        return record

    def _persist_manager(self, entity: Entity, record: ExtractedRecord) -> None:
        self.store.upsert(MANAGERS_TABLE, {
            "artist_id": entity.row_id,
            **record.data,
            "enrichment_confidence": record.confidence_score,
            "last_verified_at": self.now(),
        }, conflict=["artist_id", "manager_name"])

    def action_find_contacts(self, params, run) -> dict:
        batch_size = int_param(params, "batch_size", 10, minimum=1, maximum=100)
        filters = {"active_status": "active"}
        artist_ids = list_param(params, "artist_ids")
        if artist_ids:
            filters["id"] = in_(artist_ids)

        rows = self.store.select(ARTISTS_TABLE, filters=filters, order_by=["id"], limit=batch_size)
        if not rows:
            return {"stats": self.empty_stats(), "found": 0, "message": "No artists to process"}

        self.require_ai()
        entities = [Entity.from_row(r, "artist", name_column="artist_name") for r in rows]
        stage = StageConfig(
            name="find_managers",
            query=lambda e: f'"{e.display_name}" techno DJ manager booking agent contact',
            search_limit=10,
            build_prompt=self._manager_prompt,
            to_records=self._manager_records,
            validate=self._validate_manager,
            persist=self._persist_manager,
            min_confidence=int(self.setting("manager_min_confidence", MANAGER_MIN_CONFIDENCE)),
            parse_fallback=PARSE_RAW_TEXT,
        )
        result = self.orchestrator().run_batch(entities, stage)
        found = sum(o.records_persisted for o in result.outcomes)

        self.audit.record("find_managers", MANAGERS_TABLE, summary={"managers_found": found})
        return self.batch_response(result, f"Found {found} managers", found=found)

    # ------------------------------------------------------------------
    # find_labels
    # ------------------------------------------------------------------

    def _label_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        return LABEL_SYSTEM_PROMPT, LABEL_USER_PROMPT.format(
            name=entity.display_name, candidates=candidates_block(candidates),
        )

    def _label_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if isinstance(parsed, dict):
            parsed = parsed.get("labels", [parsed])
        if not isinstance(parsed, list):
            raise ParseError("Label extraction must be a JSON array")

        records = []
        for item in parsed:
            try:
                label = LabelCandidate.model_validate(item)
            except ValidationError:
                continue
            if not label.label_name:
                continue
            records.append(ExtractedRecord(
                kind="label",
                data=label.model_dump(),
                source_refs=[label.evidence_url] if label.evidence_url else [],
            ))
        return records

    def _label_policy(self, entity: Entity, record: ExtractedRecord) -> ExtractedRecord:
        try:
            parsed = self.ask_json("validation", LABEL_POLICY_SYSTEM_PROMPT, LABEL_POLICY_USER_PROMPT.format(
                label=_dump(record.data), artist=entity.display_name,
            ))
            policy = LabelPolicy.model_validate(parsed)
        except (ParseError, ValidationError) as e:
            logger.info("Label policy unusable for %s: %s", record.data.get("label_name"), e)
            policy = LabelPolicy()

        record.data["policy"] = policy.model_dump()
        record.confidence_score = policy.collaboration_openness_score or DEFAULT_OPENNESS
        return record

    def _persist_label(self, entity: Entity, record: ExtractedRecord) -> bool:
        """Link the artist to the label, creating the label row if needed.

        Returns True when the label itself is new.
        """
        data = record.data
        policy = data.get("policy") or {}
        existing = self.store.select(LABELS_TABLE, filters={"label_name": data["label_name"]}, limit=1)
        if existing:
            label_id, created = existing[0]["id"], False
        else:
            [label] = self.store.insert(LABELS_TABLE, {
                "label_name": data["label_name"],
                "label_type": data.get("label_type"),
                "label_website_url": data.get("label_website_url"),
                "headquarters_country": data.get("headquarters_country"),
                "general_email": data.get("general_email"),
                "notes": policy.get("best_approach_notes"),
                "verification_confidence": record.confidence_score,
                "sources_json": record.source_refs,
                "last_verified_at": self.now(),
            })
            label_id, created = label["id"], True

        self.store.upsert(ARTIST_LABELS_TABLE, {
            "artist_id": entity.row_id,
            "label_id": label_id,
            "relationship_type": data.get("relationship_type") or "recent",
            "evidence_url": data.get("evidence_url"),
        }, conflict=["artist_id", "label_id"])
        return created

    def action_find_labels(self, params, run) -> dict:
        batch_size = int_param(params, "batch_size", 10, minimum=1, maximum=100)
        filters = {"active_status": "active"}
        artist_ids = list_param(params, "artist_ids")
        if artist_ids:
            filters["id"] = in_(artist_ids)

        rows = self.store.select(ARTISTS_TABLE, filters=filters, order_by=["id"], limit=batch_size)
        if not rows:
            return {"stats": self.empty_stats(), "found": 0, "message": "No artists to process"}

        self.require_ai()
        new_labels = []

        def persist(entity: Entity, record: ExtractedRecord) -> None:
            if self._persist_label(entity, record):
                new_labels.append(record.data["label_name"])

        stage = StageConfig(
            name="find_labels",
            query=lambda e: f'"{e.display_name}" techno record label releases discography',
            search_limit=10,
            build_prompt=self._label_prompt,
            to_records=self._label_records,
            validate=self._label_policy,
            persist=persist,
            min_confidence=int(self.setting("label_min_confidence", 0)),
            parse_fallback=PARSE_RAW_TEXT,
        )
        entities = [Entity.from_row(r, "artist", name_column="artist_name") for r in rows]
        result = self.orchestrator().run_batch(entities, stage)

        self.audit.record("find_labels", LABELS_TABLE, summary={"labels_found": len(new_labels)})
        return self.batch_response(
            result, f"Found {len(new_labels)} new labels", found=len(new_labels),
        )

    # ------------------------------------------------------------------
    # enrich_contacts (label staff, manager refresh)
    # ------------------------------------------------------------------

    def _label_contact_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if isinstance(parsed, dict):
            parsed = parsed.get("contacts", [parsed])
        if not isinstance(parsed, list):
            raise ParseError("Contact extraction must be a JSON array")

        records = []
        for item in parsed:
            try:
                contact = LabelContactCandidate.model_validate(item)
            except ValidationError:
                continue
            if not (contact.contact_person_name or contact.email):
                continue
            records.append(ExtractedRecord(
                kind="label_contact",
                data=contact.model_dump(),
                confidence_score=LABEL_CONTACT_CONFIDENCE,
                source_refs=[contact.source_url] if contact.source_url else [],
            ))
        return records

    def _persist_label_contact(self, entity: Entity, record: ExtractedRecord) -> None:
        self.store.upsert(LABEL_CONTACTS_TABLE, {
            "label_id": entity.row_id,
            **record.data,
            "enrichment_confidence": record.confidence_score,
            "last_verified_at": self.now(),
        }, conflict=["label_id", "contact_person_name"])

    def _recheck_manager(self, entity: Entity, record: ExtractedRecord) -> ExtractedRecord:
        company = entity.attributes.get("management_company") or ""
        self.ctx.rate_limiter.acquire("discovery")
        hits = self.discovery.search(f'"{entity.display_name}" "{company}" music manager contact', 5)
        record.source_refs = [hit.url for hit in hits]
        # Stale and nothing new found: leave the row alone.
        record.confidence_score = max(record.confidence_score, 1) if hits else 0
        return record

    def _refresh_manager(self, entity: Entity, record: ExtractedRecord) -> None:
        self.update_one(MANAGERS_TABLE, {
            "last_verified_at": self.now(),
            "enrichment_confidence": record.confidence_score,
        }, {"id": entity.row_id})

    def action_enrich_contacts(self, params, run) -> dict:
        label_ids = list_param(params, "label_ids")
        manager_ids = list_param(params, "manager_ids")
        if not label_ids and not manager_ids:
            raise InvalidParamsError("label_ids or manager_ids is required")

        self.require_ai()
        orchestrator = self.orchestrator()
        stats = RunStats()
        outcomes = []

        if label_ids:
            rows = self.store.select(LABELS_TABLE, filters={"id": in_(label_ids)}, order_by=["id"])
            result = orchestrator.run_batch(
                [Entity.from_row(r, "label", name_column="label_name") for r in rows],
                StageConfig(
                    name="label_contacts",
                    query=lambda e: f'"{e.display_name}" A&R PR contact email press',
                    build_prompt=lambda e, c: (
                        LABEL_CONTACT_SYSTEM_PROMPT,
                        LABEL_CONTACT_USER_PROMPT.format(name=e.display_name, candidates=candidates_block(c)),
                    ),
                    to_records=self._label_contact_records,
                    persist=self._persist_label_contact,
                    min_confidence=0,
                    parse_fallback=PARSE_RAW_TEXT,
                ),
            )
            stats.add(result.stats)
            outcomes.extend(result.outcomes)

        if manager_ids:
            rows = self.store.select(MANAGERS_TABLE, filters={"id": in_(manager_ids)}, order_by=["id"])
            result = orchestrator.run_batch(
                [Entity.from_row(r, "manager", name_column="manager_name") for r in rows],
                StageConfig(
                    name="manager_refresh",
                    fetch=lambda e: rows_as_candidates([e.attributes], MANAGERS_TABLE),
                    fetch_provider="ai",
                    extraction_role="discovery",
                    build_prompt=self._freshness_prompt,
                    to_records=lambda e, parsed, c: [
                        r for r in self._freshness_records(e, parsed, c) if r.data["needs_update"]
                    ],
                    validate=self._recheck_manager,
                    persist=self._refresh_manager,
                    min_confidence=1,
                ),
            )
            stats.add(result.stats)
            outcomes.extend(result.outcomes)

        enriched = sum(o.records_persisted for o in outcomes)
        return {
            "stats": stats.as_dict(),
            "outcomes": [o.as_dict() for o in outcomes],
            "enriched": enriched,
            "message": f"Enriched {enriched} contacts",
        }

    # ------------------------------------------------------------------
    # verify_freshness
    # ------------------------------------------------------------------

    def _freshness_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        return FRESHNESS_SYSTEM_PROMPT, FRESHNESS_USER_PROMPT.format(
            type=entity.type, candidates=candidates_block(candidates, max_chars=4000),
        )

    def _freshness_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if not isinstance(parsed, dict):
            raise ParseError("Freshness scan must be a JSON object")
        scan = FreshnessScan.model_validate(parsed)
        return [ExtractedRecord("freshness", scan.model_dump(), scan.freshness_confidence)]

    def action_verify_freshness(self, params, run) -> dict:
        batch_size = int_param(params, "batch_size", 20, minimum=1)
        rows = self.store.select(
            ARTISTS_TABLE,
            order_by=[Order("last_verified_at", nulls_first=True), "id"],
            limit=batch_size,
        )
        if not rows:
            return {"stats": self.empty_stats(), "verified": 0, "needs_update": 0}

        self.require_ai()
        needs_update = []

        def persist(entity: Entity, record: ExtractedRecord) -> None:
            existing = entity.attributes.get("verification_confidence")
            self.update_one(ARTISTS_TABLE, {
                "last_verified_at": self.now(),
                "verification_confidence": record.confidence_score or existing,
            }, {"id": entity.row_id})
            if record.data.get("needs_update"):
                needs_update.append(entity.id)

        stage = StageConfig(
            name="verify_freshness",
            fetch=lambda e: rows_as_candidates([e.attributes], ARTISTS_TABLE),
            fetch_provider="ai",
            extraction_role="discovery",
            build_prompt=self._freshness_prompt,
            to_records=self._freshness_records,
            persist=persist,
            min_confidence=0,
        )
        entities = [Entity.from_row(r, "artist", name_column="artist_name") for r in rows]
        result = self.orchestrator().run_batch(entities, stage)
        return self.batch_response(
            result,
            f"Verified {result.stats.enriched} artists",
            verified=result.stats.enriched,
            needs_update=len(needs_update),
        )

    # ------------------------------------------------------------------
    # generate_outreach
    # ------------------------------------------------------------------

    def _outreach_target(self, contact_id: str) -> tuple[dict, str]:
        managers = self.store.select(MANAGERS_TABLE, filters={"id": contact_id}, limit=1)
        if managers:
            target = dict(managers[0])
            artists = self.store.select(ARTISTS_TABLE, filters={"id": target.get("artist_id")}, limit=1)
            target["artists_active"] = artists[0] if artists else None
            return target, "manager"

        contacts = self.store.select(LABEL_CONTACTS_TABLE, filters={"id": contact_id}, limit=1)
        if contacts:
            target = dict(contacts[0])
            labels = self.store.select(LABELS_TABLE, filters={"id": target.get("label_id")}, limit=1)
            target["labels"] = labels[0] if labels else None
            return target, "label_contact"

        raise EntityNotFoundError("Contact not found")

    def action_generate_outreach(self, params, run) -> dict:
        contact_id = str(required_param(params, "contact_id"))
        target, target_type = self._outreach_target(contact_id)
        self.require_ai()

        context = {key: param(params, key) or default for key, default in DEFAULT_OUTREACH.items()}
        parsed = self.ask_json("drafting", OUTREACH_SYSTEM_PROMPT, OUTREACH_USER_PROMPT.format(
            target=_dump(target), target_type=target_type, **context,
        ))
        draft = OutreachDraft.model_validate(parsed)

        self.audit.record("generate_outreach", target_type, contact_id, {
            "email_subject": draft.email_subject,
            **context,
        })
        stats = self.empty_stats()
        stats["processed"] = stats["generated"] = 1
        return {
            "stats": stats,
            "contact_id": contact_id,
            "target_type": target_type,
            "outreach": draft.model_dump(),
        }
