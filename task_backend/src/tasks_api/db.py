from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generator, List, Mapping, Optional, Sequence, Tuple

from pydantic import TypeAdapter

from .aggregation import Stage, run_pipeline
from .models import SYSTEM_ACTOR, TaskEntity, apply_changes, new_task, utcnow
from .query import MATCH_ALL, Predicate, SortSpec, count, select
from .repositories import Repository


@dataclass(frozen=True)
class _Cols:
    table: str = "tasks"
    id: str = "id"
    created_at: str = "created_at"
    document: str = "document"


_COLS = _Cols()

_TASK_ADAPTER = TypeAdapter(TaskEntity)


class SQLiteRepository(Repository):
    """
    Document store on sqlite: each task is one JSON document keyed by id.
    Filtering, ordering and grouping run over the decoded documents in
    rowid (insertion) order.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} TEXT PRIMARY KEY,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.document} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_created_at ON {_COLS.table}({_COLS.created_at})"
            )

    def _now(self) -> datetime:
        return utcnow()

    @staticmethod
    def _encode(entity: TaskEntity) -> str:
        return _TASK_ADAPTER.dump_json(entity).decode("utf-8")

    @staticmethod
    def _decode(raw: str) -> TaskEntity:
        return _TASK_ADAPTER.validate_json(raw)

    def _insert(self, conn: sqlite3.Connection, entity: TaskEntity) -> None:
        conn.execute(
            f"INSERT INTO {_COLS.table} ({_COLS.id}, {_COLS.created_at}, {_COLS.document}) VALUES (?, ?, ?)",
            (entity["id"], entity["created_at"].isoformat(), self._encode(entity)),
        )

    def _load(self, conn: sqlite3.Connection, task_id: str) -> Optional[TaskEntity]:
        row = conn.execute(
            f"SELECT {_COLS.document} FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,)
        ).fetchone()
        return self._decode(row[_COLS.document]) if row else None

    def _store(self, conn: sqlite3.Connection, entity: TaskEntity) -> None:
        conn.execute(
            f"UPDATE {_COLS.table} SET {_COLS.document} = ? WHERE {_COLS.id} = ?",
            (self._encode(entity), entity["id"]),
        )

    def _documents(self) -> List[TaskEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLS.document} FROM {_COLS.table} ORDER BY rowid"
            ).fetchall()
        return [self._decode(r[_COLS.document]) for r in rows]

    def create(self, fields: Mapping[str, Any]) -> TaskEntity:
        entity = new_task(fields, self._now())
        with self._conn() as conn:
            self._insert(conn, entity)
        return entity

    def create_many(self, items: Sequence[Mapping[str, Any]]) -> List[TaskEntity]:
        now = self._now()
        entities = [new_task(fields, now) for fields in items]
        with self._conn() as conn:
            for entity in entities:
                self._insert(conn, entity)
        return entities

    def get(self, task_id: str) -> Optional[TaskEntity]:
        with self._conn() as conn:
            return self._load(conn, task_id)

    def update(
        self, task_id: str, changes: Mapping[str, Any], changed_by: str = SYSTEM_ACTOR
    ) -> Optional[TaskEntity]:
        with self._conn() as conn:
            current = self._load(conn, task_id)
            if current is None:
                return None
            updated, changed = apply_changes(current, changes, self._now(), changed_by)
            if changed:
                self._store(conn, updated)
            return updated

    def update_many(
        self, task_ids: Sequence[str], changes: Mapping[str, Any], changed_by: str = SYSTEM_ACTOR
    ) -> Tuple[int, int]:
        matched = modified = 0
        now = self._now()
        with self._conn() as conn:
            for task_id in dict.fromkeys(task_ids):
                current = self._load(conn, task_id)
                if current is None:
                    continue
                matched += 1
                updated, changed = apply_changes(current, changes, now, changed_by)
                if changed:
                    self._store(conn, updated)
                    modified += 1
        return matched, modified

    def push(self, task_id: str, field: str, item: Mapping[str, Any]) -> Optional[TaskEntity]:
        with self._conn() as conn:
            current = self._load(conn, task_id)
            if current is None:
                return None
            current[field].append(dict(item))  # type: ignore[literal-required]
            current["updated_at"] = self._now()
            self._store(conn, current)
            return current

    def delete(self, task_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,))
            return cur.rowcount > 0

    def delete_many(self, task_ids: Sequence[str]) -> int:
        deleted = 0
        with self._conn() as conn:
            for task_id in dict.fromkeys(task_ids):
                cur = conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,))
                deleted += cur.rowcount
        return deleted

    def find(
        self,
        predicate: Predicate = MATCH_ALL,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[TaskEntity]:
        return select(self._documents(), predicate, sort, skip, limit)

    def count(self, predicate: Predicate = MATCH_ALL) -> int:
        return count(self._documents(), predicate)

    def aggregate(self, pipeline: Sequence[Stage]) -> List[Dict[str, Any]]:
        return run_pipeline(self._documents(), pipeline)
