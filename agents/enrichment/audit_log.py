"""Append-only audit log of what each action extracted."""

import logging
from typing import Optional

from agents.enrichment.records import AuditEntry

logger = logging.getLogger(__name__)

AUDIT_TABLE = "pipeline_audit_log"


class AuditLog:
    """Inserts AuditEntry rows. No update or delete API."""

    def __init__(self, store, pipeline: str):
        self.store = store
        self.pipeline = pipeline

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        summary: Optional[dict] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            extracted_summary=summary or {},
        )
        row = entry.as_row()
        row["pipeline"] = self.pipeline
        self.store.insert(AUDIT_TABLE, row)
        logger.debug("Audit %s/%s %s", action, entity_type, entity_id or "")
        return entry
