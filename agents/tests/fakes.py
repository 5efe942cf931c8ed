"""
In-memory stand-ins for the datastore and the external providers.

FakeStore implements the PostgresStore surface with the same filter and
ordering semantics (``row_matches`` / ``Order.sort_key``), so pipelines run
unchanged against it.
"""

import copy
import itertools
from collections import defaultdict

from agents.enrichment.datastore import Order, row_matches
from agents.enrichment.errors import PersistenceError
from agents.enrichment.records import CandidateDocument


class FakeStore:
    def __init__(self, tables=None):
        self.tables = defaultdict(list)
        self._ids = itertools.count(1000)
        for name, rows in (tables or {}).items():
            self.tables[name] = [dict(r) for r in rows]
        self.fail_on = {}

    def _check(self, op, table):
        if (op, table) in self.fail_on:
            raise PersistenceError(self.fail_on[(op, table)])

    @staticmethod
    def _project(row, columns):
        if columns == "*" or not columns:
            return copy.deepcopy(row)
        if isinstance(columns, str):
            columns = [c.strip() for c in columns.split(",")]
        return {c: copy.deepcopy(row.get(c)) for c in columns}

    def select(self, table, columns="*", filters=None, order_by=None, limit=None, offset=None):
        self._check("select", table)
        rows = [r for r in self.tables[table] if row_matches(r, filters)]
        for spec in reversed(list(order_by or [])):
            order = Order.parse(spec)
            rows.sort(key=order.sort_key, reverse=order.descending)
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [self._project(r, columns) for r in rows]

    def count(self, table, filters=None):
        return len([r for r in self.tables[table] if row_matches(r, filters)])

    def insert(self, table, rows):
        self._check("insert", table)
        rows = [rows] if isinstance(rows, dict) else list(rows)
        written = []
        for row in rows:
            row = copy.deepcopy(row)
            row.setdefault("id", next(self._ids))
            self.tables[table].append(row)
            written.append(copy.deepcopy(row))
        return written

    def upsert(self, table, rows, conflict):
        self._check("upsert", table)
        rows = [rows] if isinstance(rows, dict) else list(rows)
        conflict = [conflict] if isinstance(conflict, str) else list(conflict)
        written = []
        for row in rows:
            key = {c: row.get(c) for c in conflict}
            existing = [r for r in self.tables[table] if all(r.get(c) == v for c, v in key.items())]
            if existing:
                existing[0].update(copy.deepcopy(row))
                written.append(copy.deepcopy(existing[0]))
            else:
                written.extend(self.insert(table, row))
        return written

    def update(self, table, values, filters):
        self._check("update", table)
        if not filters:
            raise PersistenceError(f"Refusing unfiltered update on {table}")
        updated = []
        for row in self.tables[table]:
            if row_matches(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table, filters):
        if not filters:
            raise PersistenceError(f"Refusing unfiltered delete on {table}")
        before = len(self.tables[table])
        self.tables[table] = [r for r in self.tables[table] if not row_matches(r, filters)]
        return before - len(self.tables[table])

    def ping(self):
        return True

    def rows(self, table):
        return self.tables[table]


class ScriptedAI:
    """AIClient stand-in answering from a per-role script.

    A script entry is a string (returned every time), a list (consumed in
    order), a callable ``(system, user) -> str``, or an exception instance
    (raised). Consensus calls arrive by model id and are mapped back to
    their role through ``config.model_roles``.
    """

    def __init__(self, config, script=None, image_url=None, available=True):
        self.config = config
        self.script = dict(script or {})
        self.image_url = image_url
        self._available = available
        self.calls = []
        self.image_prompts = []
        self.image_inputs = []

    @property
    def available(self):
        return self._available

    def _role_for(self, model_id):
        for role, model in self.config.model_roles.items():
            if model == model_id:
                return role
        return model_id

    def _answer(self, role, system_prompt, user_prompt):
        self.calls.append((role, user_prompt))
        entry = self.script.get(role, "")
        if isinstance(entry, list):
            entry = entry.pop(0) if entry else ""
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            entry = entry(system_prompt, user_prompt)
            if isinstance(entry, Exception):
                raise entry
        return entry

    def invoke(self, system_prompt, user_prompt, model_id, image_url=None):
        return self.invoke_role(self._role_for(model_id), system_prompt, user_prompt, image_url)

    def invoke_role(self, role, system_prompt, user_prompt, image_url=None):
        if image_url:
            self.image_inputs.append((role, image_url))
        return self._answer(role, system_prompt, user_prompt)

    def invoke_json(self, role, system_prompt, user_prompt, image_url=None):
        from agents.enrichment.json_extraction import extract_json

        raw = self.invoke_role(role, system_prompt, user_prompt, image_url)
        return extract_json(raw), raw

    def generate_image(self, prompt, model_id=None):
        self.image_prompts.append(prompt)
        if isinstance(self.image_url, Exception):
            raise self.image_url
        return self.image_url

    def calls_for(self, role):
        return [user for r, user in self.calls if r == role]


class FakeDiscovery:
    """DiscoverySource stand-in. ``results`` maps a query substring to hits."""

    def __init__(self, results=None, pages=None, available=True):
        self.results = dict(results or {})
        self.pages = dict(pages or {})
        self.available = available
        self.queries = []
        self.scraped = []

    def search(self, query, limit=5):
        self.queries.append(query)
        if not self.available:
            return []
        for needle, hits in self.results.items():
            if needle in query:
                if isinstance(hits, Exception):
                    raise hits
                return [
                    h if isinstance(h, CandidateDocument) else CandidateDocument(**h)
                    for h in hits[:limit]
                ]
        return []

    def scrape(self, url):
        self.scraped.append(url)
        if not self.available:
            return None
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            return None
        return CandidateDocument(url=url, markdown=page)
