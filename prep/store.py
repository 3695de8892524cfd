"""
Prep — record store backends.

Two interchangeable backends behind one small table API:

  SupabaseStore   hosted Postgres through the supabase-py query builder
  LocalStore      single JSON file on disk (or memory only), used for
                  development and tests when Supabase is not configured

Rows are plain dicts.  Every backend understands equality filters
(`where`), lower-bound filters (`gte`), ordering and a row limit.
"""

import os
import json
import uuid
import threading
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import create_client, Client

from prep.structured_logging import logger, Timer


class SupabaseStore:
    """Store backed by a Supabase project."""

    name = "supabase"

    def __init__(self, url: str, key: str):
        if not url or "your-project-ref" in url:
            raise RuntimeError(
                "SUPABASE_URL not set. Paste your project URL into .env\n"
                "  It looks like: https://xxxxxxxxxxxx.supabase.co"
            )
        if not key:
            raise RuntimeError("SUPABASE_KEY not set in .env")
        self.client: Client = create_client(url, key)

    def select(self, table: str, where: Optional[dict] = None, gte: Optional[dict] = None,
               order_by: Optional[str] = None, desc: bool = False,
               limit: Optional[int] = None) -> list[dict]:
        with Timer() as t:
            query = self.client.table(table).select("*")
            for col, val in (where or {}).items():
                query = query.eq(col, val)
            for col, val in (gte or {}).items():
                query = query.gte(col, val)
            if order_by:
                query = query.order(order_by, desc=desc)
            if limit:
                query = query.limit(limit)
            rows = query.execute().data or []
        logger.log_database_query(table, "select", len(rows), t.elapsed_ms)
        return rows

    def insert(self, table: str, row: dict) -> dict:
        with Timer() as t:
            result = self.client.table(table).insert(row).execute()
        logger.log_database_query(table, "insert", len(result.data or []), t.elapsed_ms)
        return result.data[0] if result.data else dict(row)

    def upsert(self, table: str, row: dict, on_conflict: list[str]) -> dict:
        with Timer() as t:
            result = (
                self.client.table(table)
                .upsert(row, on_conflict=",".join(on_conflict))
                .execute()
            )
        logger.log_database_query(table, "upsert", len(result.data or []), t.elapsed_ms)
        return result.data[0] if result.data else dict(row)

    def update(self, table: str, values: dict, where: dict) -> list[dict]:
        with Timer() as t:
            query = self.client.table(table).update(values)
            for col, val in where.items():
                query = query.eq(col, val)
            rows = query.execute().data or []
        logger.log_database_query(table, "update", len(rows), t.elapsed_ms)
        return rows

    def delete(self, table: str, where: dict) -> int:
        with Timer() as t:
            query = self.client.table(table).delete()
            for col, val in where.items():
                query = query.eq(col, val)
            rows = query.execute().data or []
        logger.log_database_query(table, "delete", len(rows), t.elapsed_ms)
        return len(rows)

    def ping(self) -> bool:
        self.client.table("users").select("id").limit(1).execute()
        return True


class LocalStore:
    """
    Store kept in one JSON document: {table_name: [row, ...]}.
    Pass path=None for a purely in-memory store.
    """

    name = "local"

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._tables: dict[str, list[dict]] = {}
        if path and os.path.exists(path):
            with open(path) as fh:
                data = json.load(fh)
            if isinstance(data, dict):
                self._tables = data

    # ── internals ──────────────────────────────────

    def _flush(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w") as fh:
            json.dump(self._tables, fh, indent=2, default=str)
        os.replace(tmp, self.path)

    @staticmethod
    def _matches(row: dict, where: Optional[dict], gte: Optional[dict]) -> bool:
        for col, val in (where or {}).items():
            if row.get(col) != val:
                return False
        for col, val in (gte or {}).items():
            cell = row.get(col)
            if cell is None or cell < val:
                return False
        return True

    # ── table API ──────────────────────────────────

    def select(self, table: str, where: Optional[dict] = None, gte: Optional[dict] = None,
               order_by: Optional[str] = None, desc: bool = False,
               limit: Optional[int] = None) -> list[dict]:
        with self._lock:
            rows = [deepcopy(r) for r in self._tables.get(table, [])
                    if self._matches(r, where, gte)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=desc)
        if limit:
            rows = rows[:limit]
        logger.log_database_query(table, "select", len(rows), 0.0)
        return rows

    def insert(self, table: str, row: dict) -> dict:
        new_row = deepcopy(row)
        new_row.setdefault("id", str(uuid.uuid4()))
        new_row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        with self._lock:
            self._tables.setdefault(table, []).append(new_row)
            self._flush()
        logger.log_database_query(table, "insert", 1, 0.0)
        return deepcopy(new_row)

    def upsert(self, table: str, row: dict, on_conflict: list[str]) -> dict:
        key = {col: row.get(col) for col in on_conflict}
        with self._lock:
            rows = self._tables.setdefault(table, [])
            for existing in rows:
                if self._matches(existing, key, None):
                    existing.update(deepcopy(row))
                    self._flush()
                    logger.log_database_query(table, "upsert", 1, 0.0)
                    return deepcopy(existing)
        return self.insert(table, row)

    def update(self, table: str, values: dict, where: dict) -> list[dict]:
        changed = []
        with self._lock:
            for existing in self._tables.get(table, []):
                if self._matches(existing, where, None):
                    existing.update(deepcopy(values))
                    changed.append(deepcopy(existing))
            if changed:
                self._flush()
        logger.log_database_query(table, "update", len(changed), 0.0)
        return changed

    def delete(self, table: str, where: dict) -> int:
        with self._lock:
            rows = self._tables.get(table, [])
            kept = [r for r in rows if not self._matches(r, where, None)]
            removed = len(rows) - len(kept)
            self._tables[table] = kept
            if removed:
                self._flush()
        logger.log_database_query(table, "delete", removed, 0.0)
        return removed

    def ping(self) -> bool:
        return True


def create_store(settings) -> Any:
    """Pick the backend described by the settings."""
    if settings.use_supabase:
        return SupabaseStore(settings.supabase_url, settings.supabase_key)
    return LocalStore(settings.data_file)
