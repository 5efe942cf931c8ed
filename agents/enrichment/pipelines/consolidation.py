"""
Database consolidation engine.

generate_profiles writes artist profiles from verified claims, and only
when two independent models produce a consensus. expand_documents rewrites
very short artist documents into full paragraphs with a single model.
fix_duplicates drops repeated dj_artists entries, generate_aliases asks both
models for alternate names and create_gear_docs renders artist_gear rows
into a markdown document. full_consolidation runs fix_duplicates and then
the other four stages.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

from pydantic import ValidationError

from agents.enrichment.audit_log import AUDIT_TABLE
from agents.enrichment.datastore import in_, not_in
from agents.enrichment.errors import ConfigurationError, ParseError, PersistenceError
from agents.enrichment.orchestrator import FAILED, StageConfig
from agents.enrichment.pipelines.base import Pipeline, bool_param, int_param
from agents.enrichment.records import CandidateDocument, Entity, ExtractedRecord, RunStats
from agents.enrichment.schemas import AliasSuggestion, ArtistProfileDraft

logger = logging.getLogger(__name__)

CANONICAL_TABLE = "canonical_artists"
CLAIMS_TABLE = "artist_claims"
PROFILES_TABLE = "artist_profiles"
DOCUMENTS_TABLE = "artist_documents"
DJ_ARTISTS_TABLE = "dj_artists"
ALIASES_TABLE = "artist_aliases"
GEAR_TABLE = "artist_gear"

SOURCE_SYSTEM = "consolidation_engine"
PROFILE_CONFIDENCE = 0.9
MIN_CLAIMS = 3
MAX_CLAIMS = 20
SHORT_DOCUMENT_CHARS = 100
MIN_EXPANSION_CHARS = 150
MAX_ALIASES = 3
ALIAS_CLAIMS = 10
ALIAS_CONFIDENCE = 90

PROFILE_SYSTEM_PROMPT = """You are a techno music expert database curator. Generate accurate artist profiles from verified claims.
Return ONLY valid JSON with these exact fields:
{
  "bio_short": "1-2 sentence summary",
  "bio_long": "3-5 paragraph detailed bio",
  "subgenres": ["array", "of", "subgenres"],
  "labels": ["array", "of", "record", "labels"],
  "known_for": "what they're most famous for",
  "career_highlights": ["notable", "achievements"],
  "influences": ["musical", "influences"],
  "collaborators": ["known", "collaborators"]
}"""

PROFILE_USER_PROMPT = (
    'Generate a comprehensive profile for techno artist "{name}" based on these verified claims:\n\n{claims}'
)

EXPAND_SYSTEM_PROMPT = """You are a techno music expert. Expand brief artist information into detailed, factual content.
Return ONLY the expanded text, no JSON wrapper. Keep it factual and relevant to electronic/techno music.
Length: 200-400 words."""

EXPAND_USER_PROMPT = 'Expand this brief information about techno artist "{name}":\n\n"{content}"\n\nDocument type: {document_type}'

ALIAS_SYSTEM_PROMPT = """You are a techno music expert. Extract artist aliases and alternate names.
Return ONLY valid JSON: { "aliases": [{ "name": "Alias Name", "type": "alias|aka|project|collaboration" }] }
Only include REAL aliases you're confident about. No made-up names."""

ALIAS_USER_PROMPT = "Extract all known aliases and alternate names for this artist:\n\nArtist: {name}\n{context}"


class ConsolidationPipeline(Pipeline):
    name = "database-consolidation"

    def _profiled_ids(self) -> list:
        rows = self.store.select(PROFILES_TABLE, columns=["artist_id"])
        return sorted({r["artist_id"] for r in rows if r.get("artist_id") is not None}, key=str)

    def action_status(self, params, run) -> dict:
        return {"status": {
            "profiles": self.store.count(PROFILES_TABLE),
            "documents": self.store.count(DOCUMENTS_TABLE),
            "gaps": {
                "missing_profiles": self.store.count(
                    CANONICAL_TABLE, {"artist_id": not_in(self._profiled_ids())},
                ),
            },
        }}

    # ------------------------------------------------------------------
    # generate_profiles
    # ------------------------------------------------------------------

    def _claims(self, entity: Entity) -> list[CandidateDocument]:
        rows = self.store.select(
            CLAIMS_TABLE,
            columns=["claim_type", "claim_text", "confidence_score"],
            filters={"artist_id": entity.row_id, "verification_status": "verified"},
            order_by=["-confidence_score"],
            limit=MAX_CLAIMS,
        )
        if len(rows) < MIN_CLAIMS:
            logger.info("%s has %d verified claims, need %d", entity.display_name, len(rows), MIN_CLAIMS)
            return []
        return [
            CandidateDocument(
                url=f"{CLAIMS_TABLE}:{entity.id}",
                markdown=f"- {r.get('claim_type')}: {r.get('claim_text')}",
                confidence=r.get("confidence_score"),
            )
            for r in rows
        ]

    def _profile_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        claims = "\n".join(c.markdown for c in candidates)
        return PROFILE_SYSTEM_PROMPT, PROFILE_USER_PROMPT.format(name=entity.display_name, claims=claims)

    def _profile_records(self, entity: Entity, merged, candidates) -> list[ExtractedRecord]:
        if not isinstance(merged, dict):
            raise ParseError("Profile must be a JSON object")
        profile = ArtistProfileDraft.model_validate(merged)
        if not profile.bio_short and not profile.bio_long:
            return []
        return [ExtractedRecord(
            kind="artist_profile",
            data=profile.model_dump(),
            confidence_score=int(PROFILE_CONFIDENCE * 100),
            source_refs=[candidates[0].url] if candidates else [],
        )]

    def _persist_profile(self, entity: Entity, record: ExtractedRecord) -> None:
        self.store.upsert(PROFILES_TABLE, {
            "artist_id": entity.row_id,
            "source_system": SOURCE_SYSTEM,
            **record.data,
            "confidence_score": PROFILE_CONFIDENCE,
            "last_synced_at": self.now(),
        }, conflict=["artist_id", "source_system"])

    def _profile_queue(self, limit: int) -> tuple[list[Entity], int]:
        """Unprofiled artists with enough verified claims, plus the count of those without."""
        claims = Counter(
            r["artist_id"]
            for r in self.store.select(CLAIMS_TABLE, columns=["artist_id"], filters={"verification_status": "verified"})
            if r.get("artist_id") is not None
        )
        profiled = self._profiled_ids()
        done = set(profiled)
        eligible = sorted((a for a, n in claims.items() if n >= MIN_CLAIMS and a not in done), key=str)
        insufficient = self.store.count(CANONICAL_TABLE, {"artist_id": not_in(profiled + eligible)})

        rows = self.store.select(
            CANONICAL_TABLE,
            columns=["artist_id", "canonical_name"],
            filters={"artist_id": in_(eligible)},
            order_by=["artist_id"],
            limit=limit,
        )
        entities = [
            Entity.from_row(r, "artist", id_column="artist_id", name_column="canonical_name")
            for r in rows
        ]
        return entities, insufficient

    def action_generate_profiles(self, params, run) -> dict:
        limit = int_param(params, "limit", 10, minimum=1, maximum=100)
        entities, insufficient = self._profile_queue(limit)

        if bool_param(params, "dry_run"):
            return {**self.orchestrator().plan(entities), "insufficient_claims": insufficient}
        if not entities:
            message = (
                f"{insufficient} artists need {MIN_CLAIMS} verified claims"
                if insufficient else "Every artist already has a profile"
            )
            return {"stats": self.empty_stats(), "insufficient_claims": insufficient, "message": message}

        self.require_ai()
        stage = StageConfig(
            name="generate_profiles",
            fetch=self._claims,
            fetch_provider="store",
            ai_provider="consensus",
            use_consensus=True,
            require_consensus=True,
            build_prompt=self._profile_prompt,
            to_records=self._profile_records,
            persist=self._persist_profile,
        )
        result = self.orchestrator(consensus=True).run_batch(entities, stage)
        for outcome in result.outcomes:
            if outcome.reason == "no_candidates":
                outcome.reason = "insufficient_claims"
            elif outcome.reason == "below_threshold":
                outcome.reason = "dual_model_validation_failed"

        return self.batch_response(
            result, f"Generated {result.stats.enriched} profiles", insufficient_claims=insufficient,
        )

    # ------------------------------------------------------------------
    # expand_documents
    # ------------------------------------------------------------------

    def _short_documents(self, limit: int) -> list[dict]:
        rows = self.store.select(
            DOCUMENTS_TABLE,
            columns=["document_id", "artist_id", "document_type", "content", "metadata"],
            order_by=["document_id"],
            limit=int(self.setting("document_scan_limit", 1000)),
        )
        short = [r for r in rows if len(r.get("content") or "") < SHORT_DOCUMENT_CHARS]
        return short[:limit]

    def _artist_names(self, docs: list[dict]) -> dict:
        ids = sorted({d["artist_id"] for d in docs if d.get("artist_id") is not None}, key=str)
        if not ids:
            return {}
        rows = self.store.select(CANONICAL_TABLE, columns=["artist_id", "canonical_name"],
                                 filters={"artist_id": in_(ids)})
        return {r["artist_id"]: r.get("canonical_name") for r in rows}

    def _expand(self, doc: dict, artist_name: str) -> str:
        self.ctx.rate_limiter.acquire("ai")
        return self.ai.invoke_role("extraction", EXPAND_SYSTEM_PROMPT, EXPAND_USER_PROMPT.format(
            name=artist_name, content=doc.get("content") or "", document_type=doc.get("document_type") or "bio",
        )).strip()

    def action_expand_documents(self, params, run) -> dict:
        limit = int_param(params, "limit", 10, minimum=1, maximum=100)
        docs = self._short_documents(limit)
        names = self._artist_names(docs)

        if bool_param(params, "dry_run"):
            return {
                "dry_run": True,
                "documents_to_expand": [
                    {"document_id": d["document_id"], "artist_name": names.get(d.get("artist_id"), "Unknown")}
                    for d in docs
                ],
                "total": len(docs),
            }
        if not docs:
            return {"stats": self.empty_stats(), "results": [], "message": "No short documents"}

        self.require_ai()
        model = self.ctx.config.model_for("extraction")
        stats = RunStats()
        results = []
        for doc in docs:
            stats.processed += 1
            artist_name = names.get(doc.get("artist_id")) or "Unknown"
            entry = {"document_id": doc["document_id"], "artist_name": artist_name}
            try:
                expanded = self._expand(doc, artist_name)
                if len(expanded) < MIN_EXPANSION_CHARS:
                    stats.skipped += 1
                    results.append({**entry, "success": False, "reason": "expansion_too_short"})
                    continue

                now = self.now()
                self.update_one(DOCUMENTS_TABLE, {
                    "content": expanded,
                    "updated_at": now,
                    "metadata": {
                        **(doc.get("metadata") or {}),
                        "expanded_at": now.isoformat(),
                        "expansion_model": model,
                    },
                }, {"document_id": doc["document_id"]})
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning("Expanding document %s failed: %s", doc["document_id"], e)
                stats.failed += 1
                results.append({**entry, "success": False, "error": str(e)})
                continue

            stats.enriched += 1
            results.append({
                **entry,
                "success": True,
                "original_length": len(doc.get("content") or ""),
                "new_length": len(expanded),
            })

        return {
            "stats": stats.as_dict(),
            "results": results,
            "message": f"Expanded {stats.enriched} documents",
        }

    # ------------------------------------------------------------------
    # fix_duplicates
    # ------------------------------------------------------------------

    @staticmethod
    def _keep_order(row: dict) -> tuple:
        # lowest rank is the most significant entry; unranked rows last
        rank = row.get("rank")
        return rank is None, rank if rank is not None else 0, row["id"]

    def action_fix_duplicates(self, params, run) -> dict:
        dry_run = bool_param(params, "dry_run")
        groups = defaultdict(list)
        for row in self.store.select(DJ_ARTISTS_TABLE, columns=["id", "artist_name", "rank"], order_by=["id"]):
            name = (row.get("artist_name") or "").strip().casefold()
            if name:
                groups[name].append(row)

        stats = RunStats()
        fixed = []
        for rows in groups.values():
            if len(rows) < 2:
                continue
            stats.processed += 1
            keep, *drop = sorted(rows, key=self._keep_order)
            drop_ids = [r["id"] for r in drop]
            if not dry_run:
                try:
                    self.store.delete(DJ_ARTISTS_TABLE, {"id": in_(drop_ids)})
                except PersistenceError as e:
                    logger.warning("Removing duplicates of %s failed: %s", keep.get("artist_name"), e)
                    stats.failed += 1
                    continue
                stats.enriched += 1
            fixed.append({
                "artist_name": keep.get("artist_name"),
                "kept_id": keep["id"],
                "deleted_ids": drop_ids,
                "reason": "Duplicate entry - kept lower rank",
            })

        if fixed and not dry_run:
            self.audit.record("fix_duplicates", "artist", summary={"fixed": fixed})
        verb = "Found" if dry_run else "Fixed"
        return {
            "stats": stats.as_dict(),
            "fixed": fixed,
            "dry_run": dry_run,
            "message": f"{verb} {len(fixed)} duplicate artists",
        }

    # ------------------------------------------------------------------
    # generate_aliases
    # ------------------------------------------------------------------

    def _alias_queue(self, limit: int) -> list[Entity]:
        """Artists with fewer than MAX_ALIASES aliases that have not been checked yet."""
        counts = Counter(
            r["artist_id"] for r in self.store.select(ALIASES_TABLE, columns=["artist_id"])
            if r.get("artist_id") is not None
        )
        checked = {
            r.get("entity_id") for r in self.store.select(AUDIT_TABLE, columns=["entity_id"], filters={
                "pipeline": self.name, "action": "generate_aliases", "entity_type": "artist",
            })
        }
        entities = []
        for row in self.store.select(CANONICAL_TABLE, columns=["artist_id", "canonical_name"], order_by=["artist_id"]):
            if counts[row["artist_id"]] >= MAX_ALIASES or str(row["artist_id"]) in checked:
                continue
            entities.append(Entity.from_row(row, "artist", id_column="artist_id", name_column="canonical_name"))
            if len(entities) >= limit:
                break
        return entities

    def _alias_context(self, entity: Entity) -> list[CandidateDocument]:
        docs = []
        profiles = self.store.select(
            PROFILES_TABLE, columns=["bio_long"], filters={"artist_id": entity.row_id}, limit=1,
        )
        if profiles and profiles[0].get("bio_long"):
            docs.append(CandidateDocument(url=f"{PROFILES_TABLE}:{entity.id}", markdown=f"Bio: {profiles[0]['bio_long']}"))
        claims = self.store.select(
            CLAIMS_TABLE,
            columns=["claim_text"],
            filters={"artist_id": entity.row_id},
            order_by=["-confidence_score"],
            limit=ALIAS_CLAIMS,
        )
        docs.extend(
            CandidateDocument(url=f"{CLAIMS_TABLE}:{entity.id}", markdown=r["claim_text"])
            for r in claims if r.get("claim_text")
        )
        return docs

    def _alias_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        context = "\n".join(c.markdown for c in candidates)
        return ALIAS_SYSTEM_PROMPT, ALIAS_USER_PROMPT.format(name=entity.display_name, context=context)

    def _alias_records(self, entity: Entity, merged, candidates) -> list[ExtractedRecord]:
        if not isinstance(merged, dict):
            raise ParseError("Aliases must be a JSON object")
        records = []
        seen = {entity.display_name.casefold()}
        for item in merged.get("aliases") or []:
            try:
                alias = AliasSuggestion.model_validate(item if isinstance(item, dict) else {"name": item})
            except ValidationError:
                continue
            name = alias.name.strip()
            if not name or name.casefold() in seen:
                continue
            seen.add(name.casefold())
            records.append(ExtractedRecord(
                kind="alias",
                data={"alias_name": name, "alias_type": alias.type or "alias"},
                confidence_score=ALIAS_CONFIDENCE,
                source_refs=[candidates[0].url] if candidates else [],
            ))
        return records

    def _persist_alias(self, entity: Entity, record: ExtractedRecord) -> None:
        existing = self.store.select(
            ALIASES_TABLE,
            columns=["artist_id"],
            filters={"artist_id": entity.row_id, "alias_name": record.data["alias_name"]},
            limit=1,
        )
        if existing:
            return
        self.store.insert(ALIASES_TABLE, {
            "artist_id": entity.row_id,
            **record.data,
            "source_system": SOURCE_SYSTEM,
        })

    def _mark_alias_checked(self, entity: Entity, outcome) -> None:
        if outcome.state != FAILED:
            self.audit.record("generate_aliases", "artist", entity.id, {
                "aliases_found": outcome.records_persisted, "reason": outcome.reason,
            })

    def action_generate_aliases(self, params, run) -> dict:
        limit = int_param(params, "limit", 10, minimum=1, maximum=100)
        entities = self._alias_queue(limit)

        if bool_param(params, "dry_run"):
            return self.orchestrator().plan(entities)
        if not entities:
            return {"stats": self.empty_stats(), "total_aliases": 0, "message": "No artists need aliases"}

        self.require_ai()
        stage = StageConfig(
            name="generate_aliases",
            fetch=self._alias_context,
            fetch_provider="store",
            ai_provider="consensus",
            use_consensus=True,
            require_consensus=True,
            build_prompt=self._alias_prompt,
            to_records=self._alias_records,
            persist=self._persist_alias,
            on_finish=self._mark_alias_checked,
        )
        result = self.orchestrator(consensus=True).run_batch(entities, stage)
        total = sum(o.records_persisted for o in result.outcomes)
        return self.batch_response(result, f"Generated {total} aliases", total_aliases=total)

    # ------------------------------------------------------------------
    # create_gear_docs
    # ------------------------------------------------------------------

    def _gear_document(self, artist_name: str, gear: list[dict]) -> tuple[str, dict]:
        by_category: dict[str, list] = {}
        for g in gear:
            items = by_category.setdefault(g.get("gear_category") or "other", [])
            items.extend(g.get("gear_items") or [])

        lines = [f"# {artist_name} - Equipment & Gear", ""]
        for category, items in by_category.items():
            lines.append(f"## {category[:1].upper()}{category[1:]} Setup")
            lines.extend(f"- {item}" for item in items)
        rider = next((g["rider_notes"] for g in gear if g.get("rider_notes")), None)
        if rider:
            lines.extend(["", "## Technical Rider Notes", rider])

        metadata = {
            "gear_categories": list(by_category),
            "item_count": sum(len(items) for items in by_category.values()),
        }
        return "\n".join(lines), metadata

    def action_create_gear_docs(self, params, run) -> dict:
        limit = int_param(params, "limit", 10, minimum=1, maximum=100)
        dry_run = bool_param(params, "dry_run")

        documented = {
            r["artist_id"] for r in self.store.select(
                DOCUMENTS_TABLE, columns=["artist_id"], filters={"document_type": "gear"},
            )
        }
        gear_by_artist = defaultdict(list)
        for row in self.store.select(GEAR_TABLE, order_by=["artist_id"]):
            if row.get("artist_id") is not None and row["artist_id"] not in documented:
                gear_by_artist[row["artist_id"]].append(row)
        pending = list(gear_by_artist)[:limit]

        names = {}
        if pending:
            rows = self.store.select(CANONICAL_TABLE, columns=["artist_id", "canonical_name"],
                                     filters={"artist_id": in_(pending)})
            names = {r["artist_id"]: r.get("canonical_name") for r in rows}

        stats = RunStats()
        results = []
        for artist_id in pending:
            stats.processed += 1
            artist_name = names.get(artist_id) or "Unknown"
            content, metadata = self._gear_document(artist_name, gear_by_artist[artist_id])
            entry = {"artist_name": artist_name, "content_length": len(content),
                     "categories": metadata["gear_categories"]}
            if not dry_run:
                try:
                    self.store.insert(DOCUMENTS_TABLE, {
                        "artist_id": artist_id,
                        "document_type": "gear",
                        "title": f"{artist_name} Equipment & Gear",
                        "content": content,
                        "source_system": SOURCE_SYSTEM,
                        "metadata": metadata,
                    })
                except PersistenceError as e:
                    logger.warning("Gear document for %s failed: %s", artist_name, e)
                    stats.failed += 1
                    results.append({**entry, "success": False, "error": str(e)})
                    continue
                stats.generated += 1
            results.append({**entry, "success": True})

        return {
            "stats": stats.as_dict(),
            "results": results,
            "dry_run": dry_run,
            "message": f"Created {stats.generated} gear documents",
        }

    # ------------------------------------------------------------------
    # full_consolidation
    # ------------------------------------------------------------------

    def action_full_consolidation(self, params, run) -> dict:
        """Run every consolidation stage in order within this run."""
        stages = (
            ("duplicates", self.action_fix_duplicates),
            ("profiles", self.action_generate_profiles),
            ("documents", self.action_expand_documents),
            ("aliases", self.action_generate_aliases),
            ("gear_docs", self.action_create_gear_docs),
        )
        results = {}
        for key, stage in stages:
            logger.info("Consolidation stage: %s", key)
            results[key] = stage(params, run)

        if bool_param(params, "dry_run"):
            return {"dry_run": True, **results}

        stats = RunStats()
        for body in results.values():
            stats.add(RunStats(**body.get("stats", {})))
        return {"stats": stats.as_dict(), **results, "message": "Consolidation complete"}
