"""
Media engine: find (or generate) a selected image for every artist.

run_pipeline queues artists that have no ``final_selected`` media asset and
no queued/running job, then for each one:

  1. searches the web for press photos (Firecrawl)
  2. asks the extraction model to pick the best image and describe it
  3. optionally asks the validation model whether the image really shows
     the artist
  4. writes the pick to ``media_assets`` as the selected asset

When discovery finds nothing (or is not configured) the image generation
model produces a fallback asset instead.

Maintenance batches work on assets already written: verify_batch re-checks
unverified picks, enrich_batch has the vision model describe selected
images, and generate_batch goes straight to generation for the queue.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from pydantic import ValidationError

from agents.enrichment.datastore import in_, is_null, ne, not_null
from agents.enrichment.entity_queue import EntityQueue, keys_from_rows
from agents.enrichment.errors import ConfigurationError, EntityNotFoundError, ParseError
from agents.enrichment.orchestrator import FAILED, PERSISTED, StageConfig
from agents.enrichment.pipelines.base import (
    Pipeline,
    bool_param,
    candidates_block,
    int_param,
    param,
    required_param,
)
from agents.enrichment.records import Entity, ExtractedRecord, RunStats
from agents.enrichment.schemas import AssetEnrichment, ImageVerdict, MediaPick

logger = logging.getLogger(__name__)

ASSETS_TABLE = "media_assets"
JOBS_TABLE = "media_pipeline_jobs"
ARTISTS_TABLE = "dj_artists"

GENERATED_QUALITY_SCORE = 70
GENERATED_MATCH_SCORE = 80

GENERATION_PROMPTS = {
    "artist": (
        "Professional portrait of a techno DJ/producer named {name}. Dark moody lighting, "
        "underground club atmosphere, studio headphones or DJ equipment visible. "
        "Artistic, editorial quality photo. No text or watermarks."
    ),
    "venue": (
        "Interior of an underground techno club called {name}. Dark atmospheric lighting, "
        "industrial aesthetics, DJ booth, smoke/haze, professional event photography style. "
        "No text or watermarks."
    ),
    "festival": (
        "Outdoor techno festival stage at {name}. Large crowd, dramatic lighting, industrial "
        "stage design, night time atmosphere. Professional event photography. No text or watermarks."
    ),
    "label": (
        "Abstract artistic representation of a techno record label aesthetic. Minimal, industrial, "
        "dark tones, geometric shapes, vinyl records, studio equipment. No text or logos."
    ),
}
DEFAULT_GENERATION_PROMPT = (
    "Professional photo related to techno music scene. Dark, atmospheric, underground "
    "aesthetic. No text or watermarks."
)

PICK_SYSTEM_PROMPT = """You are an image curator for a techno music encyclopedia.
From the search results, choose the single best image of the subject: a press photo,
live shot or official portrait. Prefer official and editorial sources.
Always respond with valid JSON only, no markdown."""

PICK_USER_PROMPT = """Subject: "{name}" ({type})

Search results:
{candidates}

Return JSON:
{{
  "image_url": "direct URL of the chosen image, or empty string if none fits",
  "source_url": "page the image was found on",
  "alt_text": "descriptive alt text, max 150 chars",
  "tags": ["5-10 relevant tags"],
  "license_status": "press|editorial|creative-commons|unknown",
  "confidence": 0-100
}}"""

VERIFY_SYSTEM_PROMPT = """You verify images for a techno music encyclopedia.
Be strict: only confirm when the evidence ties the image to the subject. Return valid JSON."""

VERIFY_USER_PROMPT = """Does this image show "{name}" ({type})?

Image URL: {image_url}
Found on: {source_url}
Alt text: {alt_text}

Return JSON:
{{"matches": true|false, "confidence": 0-100, "reason": "short explanation"}}"""

ENRICH_SYSTEM_PROMPT = """You describe images for a techno music encyclopedia.
Always respond with valid JSON only, no markdown."""

ENRICH_USER_PROMPT = """Analyze this image of "{name}" ({type}) and provide:
{{
  "altText": "descriptive alt text, max 150 chars",
  "tags": ["5-10 relevant tags"],
  "description": "one or two sentences",
  "mood": "dark|energetic|minimal|...",
  "era": "approximate decade or period",
  "equipment": ["visible gear, if any"],
  "setting": "club|festival|studio|portrait|..."
}}"""


def generation_prompt(entity: Entity) -> str:
    return GENERATION_PROMPTS.get(entity.type, DEFAULT_GENERATION_PROMPT).format(name=entity.display_name)


class MediaEnginePipeline(Pipeline):
    name = "media-engine"
    aliases = {
        "run-pipeline": "run_pipeline",
        "process-single": "process_single",
        "verify": "verify_batch",
    }

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _queue(self) -> EntityQueue:
        return EntityQueue(
            self.store,
            ARTISTS_TABLE,
            "artist",
            name_column="artist_name",
            page_size=int(self.setting("queue_page_size", 500)),
        )

    def _done_keys(self) -> set[str]:
        rows = self.store.select(
            ASSETS_TABLE, columns=["entity_type", "entity_id"], filters={"final_selected": True},
        )
        return keys_from_rows(rows)

    def _in_flight_keys(self) -> set[str]:
        rows = self.store.select(
            JOBS_TABLE, columns=["entity_type", "entity_id"], filters={"status": in_(["queued", "running"])},
        )
        return keys_from_rows(rows)

    # ------------------------------------------------------------------
    # Stage
    # ------------------------------------------------------------------

    def _build_prompt(self, entity: Entity, candidates) -> tuple[str, str]:
        return PICK_SYSTEM_PROMPT, PICK_USER_PROMPT.format(
            name=entity.display_name, type=entity.type, candidates=candidates_block(candidates),
        )

    def _to_records(self, entity: Entity, parsed, candidates) -> list[ExtractedRecord]:
        if not isinstance(parsed, dict):
            raise ParseError("Image pick must be a JSON object")
        try:
            pick = MediaPick.model_validate(parsed)
        except ValidationError as e:
            raise ParseError(f"Invalid image pick: {e}") from e
        if not pick.image_url:
            return []
        return [ExtractedRecord(
            kind="media_asset",
            data={**pick.model_dump(), "alt_text": pick.alt_text[:150], "provider": "web-discovery"},
            confidence_score=pick.confidence,
            source_refs=[ref for ref in (pick.source_url, pick.image_url) if ref],
        )]

    def _verdict(self, entity: Entity, image_url: str, source_url: str = "", alt_text: str = "") -> ImageVerdict:
        parsed = self.ask_json("validation", VERIFY_SYSTEM_PROMPT, VERIFY_USER_PROMPT.format(
            name=entity.display_name,
            type=entity.type,
            image_url=image_url or "",
            source_url=source_url or "",
            alt_text=alt_text or "",
        ))
        try:
            return ImageVerdict.model_validate(parsed)
        except ValidationError as e:
            raise ParseError(f"Invalid image verdict: {e}") from e

    def _verify(self, entity: Entity, record: ExtractedRecord) -> ExtractedRecord:
        try:
            verdict = self._verdict(
                entity,
                record.data.get("image_url", ""),
                record.data.get("source_url", ""),
                record.data.get("alt_text", ""),
            )
        except ParseError:
            logger.info("Unparseable image verification for %s", entity.key)
            record.confidence_score = 0
            return record

        record.data["openai_verified"] = verdict.matches
        record.confidence_score = min(record.confidence_score, verdict.confidence) if verdict.matches else 0
        return record

    def _generate(self, entity: Entity) -> Optional[ExtractedRecord]:
        prompt = generation_prompt(entity)
        logger.info("No images found for %s, attempting AI generation", entity.display_name)
        image_url = self.ai.generate_image(prompt)
        if not image_url:
            return None
        return ExtractedRecord(
            kind="media_asset",
            data={
                "image_url": image_url,
                "source_url": image_url,
                "provider": "ai-generation",
                "license_status": "ai-generated",
                "license_name": "AI Generated",
                "alt_text": f"AI-generated image of {entity.display_name}",
                "tags": [],
                "openai_verified": True,
                "match_score": GENERATED_MATCH_SCORE,
                "meta": {"generated": True, "prompt": prompt},
            },
            confidence_score=GENERATED_QUALITY_SCORE,
            source_refs=[image_url],
        )

    def _persist(self, entity: Entity, record: ExtractedRecord) -> None:
        # Insert before deselecting, so a failed write keeps the old selection.
        data = record.data
        key_filters = {"entity_type": entity.type, "entity_id": entity.id}
        inserted = self.store.insert(ASSETS_TABLE, {
            **key_filters,
            "entity_name": entity.display_name,
            "source_url": data.get("source_url") or data.get("image_url"),
            "storage_url": data.get("image_url"),
            "provider": data.get("provider", "web-discovery"),
            "license_status": data.get("license_status", "unknown"),
            "license_name": data.get("license_name"),
            "alt_text": data.get("alt_text"),
            "tags": data.get("tags") or [],
            "final_selected": True,
            "openai_verified": bool(data.get("openai_verified", False)),
            "quality_score": record.confidence_score,
            "match_score": data.get("match_score", record.confidence_score),
            "meta": {
                **(data.get("meta") or {}),
                "source_refs": record.source_refs,
                "selected_at": self.now().isoformat(),
            },
        })
        self.store.update(
            ASSETS_TABLE,
            {"final_selected": False},
            {**key_filters, "final_selected": True, "id": ne(inserted[0]["id"])},
        )

    def _job_started(self, entity: Entity) -> None:
        self.store.upsert(JOBS_TABLE, {
            "entity_type": entity.type,
            "entity_id": entity.id,
            "entity_name": entity.display_name,
            "status": "running",
            "updated_at": self.now(),
        }, conflict=["entity_type", "entity_id"])

    def _job_finished(self, entity: Entity, outcome) -> None:
        status = {PERSISTED: "completed", FAILED: "failed"}.get(outcome.state, "skipped")
        self.store.update(
            JOBS_TABLE,
            {"status": status, "last_error": outcome.error or outcome.reason or None, "updated_at": self.now()},
            {"entity_type": entity.type, "entity_id": entity.id},
        )

    def stage(self) -> StageConfig:
        verify = bool(self.setting("media_verify_images", True))
        return StageConfig(
            name="media_pick",
            query=lambda e: f'"{e.display_name}" techno DJ press photo',
            search_limit=int(self.setting("media_search_limit", 5)),
            build_prompt=self._build_prompt,
            to_records=self._to_records,
            validate=self._verify if verify else None,
            persist=self._persist,
            generate=self._generate,
            min_confidence=self.min_confidence,
            on_start=self._job_started,
            on_finish=self._job_finished,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def action_status(self, params, run) -> dict:
        jobs = self.store.select(JOBS_TABLE, columns=["status"])
        by_status: dict[str, int] = {}
        for job in jobs:
            by_status[job.get("status")] = by_status.get(job.get("status"), 0) + 1

        return {"status": {
            "total_assets": self.store.count(ASSETS_TABLE),
            "selected_assets": self.store.count(ASSETS_TABLE, {"final_selected": True}),
            "enriched_assets": self.store.count(ASSETS_TABLE, {"alt_text": not_null()}),
            "queued_jobs": by_status.get("queued", 0),
            "running_jobs": by_status.get("running", 0),
            "failed_jobs": by_status.get("failed", 0),
            "engine_ready": self.ai.available,
            "discovery_ready": self.discovery.available,
        }}

    def action_run_pipeline(self, params, run) -> dict:
        batch_size = int_param(params, "batch_size", int(self.setting("media_batch_size", 5)), maximum=50)
        selection = self._queue().select(self._done_keys(), self._in_flight_keys(), batch_size)

        if bool_param(params, "dry_run"):
            plan = self.orchestrator().plan(selection.entities)
            plan["total_missing"] = selection.total_missing
            return plan

        if not selection.entities:
            stats = self.empty_stats()
            stats["skipped"] = selection.skipped
            return {"stats": stats, "remaining": 0, "message": "No entities need images"}

        self.require_ai()
        result = self.orchestrator().run_batch(selection.entities, self.stage())
        result.stats.skipped += selection.skipped
        return self.batch_response(
            result,
            f"Processed {result.stats.processed} entities",
            remaining=selection.remaining,
        )

    def action_process_single(self, params, run) -> dict:
        entity_id = str(required_param(params, "entity_id"))
        entity_type = param(params, "entity_type") or "artist"
        entity_name = param(params, "entity_name")

        if not entity_name:
            if entity_type != "artist":
                raise EntityNotFoundError(f"entity_name is required for {entity_type}:{entity_id}")
            rows = self.store.select(ARTISTS_TABLE, filters={"id": entity_id}, limit=1)
            if not rows:
                raise EntityNotFoundError(f"Artist {entity_id} not found")
            entity_name = rows[0].get("artist_name") or ""

        self.require_ai()
        entity = Entity(id=entity_id, type=entity_type, display_name=entity_name)
        result = self.orchestrator().run_batch([entity], self.stage())

        selected = self.store.select(
            ASSETS_TABLE,
            filters={"entity_type": entity_type, "entity_id": entity_id, "final_selected": True},
            limit=1,
        )
        return self.batch_response(
            result,
            f"Pipeline complete for {entity_name}",
            selected_asset=selected[0] if selected else None,
        )

    def action_export(self, params, run) -> dict:
        limit = int_param(params, "limit", 500, minimum=1, maximum=5000)
        rows = self.store.select(
            ASSETS_TABLE,
            filters={"final_selected": True},
            order_by=["entity_type", "entity_id"],
            limit=limit,
        )
        return {"records": rows, "count": len(rows)}

    # ------------------------------------------------------------------
    # Asset maintenance batches
    # ------------------------------------------------------------------

    def _asset_entity(self, asset: dict) -> Entity:
        return Entity(
            id=str(asset.get("entity_id")),
            type=asset.get("entity_type") or "artist",
            display_name=asset.get("entity_name") or "",
            attributes=asset,
        )

    def action_verify_batch(self, params, run) -> dict:
        """Re-check unverified assets with the validation model, one per entity."""
        batch_size = int_param(params, "batch_size", int(self.setting("media_batch_size", 5)), maximum=50)
        rows = self.store.select(
            ASSETS_TABLE, filters={"openai_verified": False, "verified_at": is_null()}, order_by=["id"],
        )
        assets, seen = [], set()
        for row in rows:
            key = (row.get("entity_type"), row.get("entity_id"))
            if key not in seen:
                seen.add(key)
                assets.append(row)

        self.require_ai()
        stats = RunStats()
        confirmed = 0
        for asset in assets[:batch_size]:
            stats.processed += 1
            entity = self._asset_entity(asset)
            try:
                verdict = self._verdict(
                    entity, asset.get("storage_url"), asset.get("source_url"), asset.get("alt_text"),
                )
                self.update_one(ASSETS_TABLE, {
                    "openai_verified": verdict.matches,
                    "match_score": verdict.confidence if verdict.matches else 0,
                    "verified_at": self.now(),
                    "updated_at": self.now(),
                }, {"id": asset["id"]})
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning("Verification failed for asset %s: %s", asset.get("id"), e)
                stats.failed += 1
                continue
            stats.verified += 1
            confirmed += int(verdict.matches)

        return {
            "stats": stats.as_dict(),
            "confirmed": confirmed,
            "remaining": max(len(assets) - batch_size, 0),
            "message": f"Verified {stats.verified} entities",
        }

    def action_enrich_batch(self, params, run) -> dict:
        """Describe selected images that are missing alt text or tags."""
        batch_size = int_param(params, "batch_size", int(self.setting("media_batch_size", 5)), maximum=50)
        rows = self.store.select(
            ASSETS_TABLE,
            filters={"final_selected": True, "enriched_at": is_null()},
            order_by=["id"],
        )
        assets = [r for r in rows if not r.get("alt_text") or not r.get("tags")]

        self.require_ai()
        stats = RunStats()
        for asset in assets[:batch_size]:
            stats.processed += 1
            entity = self._asset_entity(asset)
            try:
                parsed = self.ask_json(
                    "vision",
                    ENRICH_SYSTEM_PROMPT,
                    ENRICH_USER_PROMPT.format(name=entity.display_name, type=entity.type),
                    image_url=asset.get("storage_url") or asset.get("source_url"),
                )
                try:
                    enrichment = AssetEnrichment.model_validate(parsed)
                except ValidationError as e:
                    raise ParseError(f"Invalid image description: {e}") from e
                self.update_one(ASSETS_TABLE, {
                    "alt_text": enrichment.alt_text[:150] or asset.get("alt_text"),
                    "tags": enrichment.tags or asset.get("tags") or [],
                    "meta": {**(asset.get("meta") or {}), "ai_enrichment": enrichment.model_dump()},
                    "enriched_at": self.now(),
                    "updated_at": self.now(),
                }, {"id": asset["id"]})
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning("Enrichment failed for asset %s: %s", asset.get("id"), e)
                stats.failed += 1
                continue
            stats.enriched += 1

        return {
            "stats": stats.as_dict(),
            "remaining": max(len(assets) - batch_size, 0),
            "message": f"Enriched {stats.enriched} assets",
        }

    def action_generate_batch(self, params, run) -> dict:
        """Generate fallback images for artists without a selected asset, skipping search."""
        batch_size = int_param(params, "batch_size", int(self.setting("media_batch_size", 5)), maximum=50)
        selection = self._queue().select(self._done_keys(), self._in_flight_keys(), batch_size)
        if not selection.entities:
            return {"stats": self.empty_stats(), "remaining": 0, "message": "No entities need images"}

        self.require_ai()
        stage = replace(self.stage(), name="media_generate", fetch=lambda entity: [], validate=None)
        result = self.orchestrator().run_batch(selection.entities, stage)
        return self.batch_response(
            result,
            f"Generated {result.stats.generated} images",
            remaining=selection.remaining,
        )
