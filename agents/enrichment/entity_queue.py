"""
Entity selection for batch runs.

Reads candidate entities from a source table and drops any whose key is
already done (has accepted output) or in flight (queued/running job).
Ordering is stable, ordered by the source's order column and then id, so
two calls with no persistence in between return the same batch. That is
what makes an interrupted run safe to repeat: finished entities fall out
of the queue on the next pass.

The source is read in pages of ``page_size`` rows until it is exhausted,
so a backlog of done entities at the head of the order never hides the
pending ones behind it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from agents.enrichment.records import Entity, entity_key

logger = logging.getLogger(__name__)


@dataclass
class QueueSelection:
    entities: list[Entity] = field(default_factory=list)
    skipped_done: int = 0
    skipped_in_flight: int = 0
    remaining: int = 0

    @property
    def total_missing(self) -> int:
        return len(self.entities) + self.remaining

    @property
    def skipped(self) -> int:
        return self.skipped_done + self.skipped_in_flight


def keys_from_rows(
    rows: Iterable[dict],
    type_column: str = "entity_type",
    id_column: str = "entity_id",
) -> set[str]:
    """Build ``type:id`` keys from rows such as media assets or pipeline jobs."""
    return {
        entity_key(row[type_column], row[id_column])
        for row in rows
        if row.get(type_column) is not None and row.get(id_column) is not None
    }


class EntityQueue:
    """Pending entities of one type, read from ``source_table``."""

    def __init__(
        self,
        store,
        source_table: str,
        entity_type: str,
        id_column: str = "id",
        name_column: str = "name",
        order_column: Optional[str] = None,
        filters: Optional[dict] = None,
        page_size: int = 500,
    ):
        self.store = store
        self.source_table = source_table
        self.entity_type = entity_type
        self.id_column = id_column
        self.name_column = name_column
        self.order_column = order_column
        self.filters = dict(filters or {})
        self.page_size = max(int(page_size), 1)

    def candidates(self) -> list[Entity]:
        order: Sequence[str] = [self.id_column]
        if self.order_column and self.order_column != self.id_column:
            order = [self.order_column, self.id_column]
        entities: list[Entity] = []
        offset = 0
        while True:
            rows = self.store.select(
                self.source_table,
                filters=self.filters,
                order_by=order,
                limit=self.page_size,
                offset=offset,
            )
            entities.extend(
                Entity.from_row(row, self.entity_type, self.id_column, self.name_column)
                for row in rows
            )
            if len(rows) < self.page_size:
                return entities
            offset += self.page_size

    def select(
        self,
        exclude_done: Iterable[str] = (),
        exclude_in_flight: Iterable[str] = (),
        limit: int = 5,
    ) -> QueueSelection:
        done, in_flight = set(exclude_done), set(exclude_in_flight)
        selection = QueueSelection()
        eligible: list[Entity] = []

        for entity in self.candidates():
            if entity.key in done:
                selection.skipped_done += 1
            elif entity.key in in_flight:
                selection.skipped_in_flight += 1
            else:
                eligible.append(entity)

        selection.entities = eligible[:max(limit, 0)]
        selection.remaining = len(eligible) - len(selection.entities)
        logger.info(
            "Queue %s: %d selected, %d done, %d in flight, %d remaining",
            self.source_table, len(selection.entities),
            selection.skipped_done, selection.skipped_in_flight, selection.remaining,
        )
        return selection

    def pending(
        self,
        entity_type: Optional[str] = None,
        exclude_done: Iterable[str] = (),
        exclude_in_flight: Iterable[str] = (),
        limit: int = 5,
    ) -> list[Entity]:
        if entity_type is not None and entity_type != self.entity_type:
            return []
        return self.select(exclude_done, exclude_in_flight, limit).entities
