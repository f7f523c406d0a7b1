from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .aggregation import Stage, run_pipeline
from .models import SYSTEM_ACTOR, TaskEntity, apply_changes, clone, new_task, utcnow
from .query import MATCH_ALL, Predicate, SortSpec, count, select
from .settings import get_settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class Repository(ABC):
    """
    Abstract document collection of tasks.

    Every method may block on I/O; callers treat each call as a suspension
    point and make no atomicity assumption across calls.
    """

    @abstractmethod
    def create(self, fields: Mapping[str, Any]) -> TaskEntity:
        """Create and return a new task from validated fields."""

    @abstractmethod
    def create_many(self, items: Sequence[Mapping[str, Any]]) -> List[TaskEntity]:
        """Create several tasks; returns them in input order."""

    @abstractmethod
    def get(self, task_id: str) -> Optional[TaskEntity]:
        """Return a task by id, or None if not found."""

    @abstractmethod
    def update(
        self, task_id: str, changes: Mapping[str, Any], changed_by: str = SYSTEM_ACTOR
    ) -> Optional[TaskEntity]:
        """
        Apply a partial update, maintaining completion state and history.
        Return the updated task or None if not found.
        """

    @abstractmethod
    def update_many(
        self, task_ids: Sequence[str], changes: Mapping[str, Any], changed_by: str = SYSTEM_ACTOR
    ) -> Tuple[int, int]:
        """Apply the same update to each id. Returns (matched, modified)."""

    @abstractmethod
    def push(self, task_id: str, field: str, item: Mapping[str, Any]) -> Optional[TaskEntity]:
        """Append ``item`` to a list field (comments, attachments)."""

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        """Delete a task by id. Return True if deleted, False if not found."""

    @abstractmethod
    def delete_many(self, task_ids: Sequence[str]) -> int:
        """Delete every listed task; returns how many existed."""

    @abstractmethod
    def find(
        self,
        predicate: Predicate = MATCH_ALL,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[TaskEntity]:
        """Return matching tasks, ordered by ``sort`` and sliced by skip/limit."""

    @abstractmethod
    def count(self, predicate: Predicate = MATCH_ALL) -> int:
        """Number of tasks matching ``predicate``."""

    @abstractmethod
    def aggregate(self, pipeline: Sequence[Stage]) -> List[Dict[str, Any]]:
        """Run a grouping pipeline over the whole collection."""


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    Iteration order is insertion order.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, TaskEntity] = {}

    def _now(self) -> datetime:
        return utcnow()

    def _documents(self) -> Iterable[TaskEntity]:
        return list(self._items.values())

    def create(self, fields: Mapping[str, Any]) -> TaskEntity:
        entity = new_task(fields, self._now())
        with self._lock:
            self._items[entity["id"]] = entity
        return clone(entity)

    def create_many(self, items: Sequence[Mapping[str, Any]]) -> List[TaskEntity]:
        now = self._now()
        entities = [new_task(fields, now) for fields in items]
        with self._lock:
            for entity in entities:
                self._items[entity["id"]] = entity
        return [clone(e) for e in entities]

    def get(self, task_id: str) -> Optional[TaskEntity]:
        with self._lock:
            item = self._items.get(task_id)
            return None if item is None else clone(item)

    def update(
        self, task_id: str, changes: Mapping[str, Any], changed_by: str = SYSTEM_ACTOR
    ) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None:
                return None
            updated, _ = apply_changes(existing, changes, self._now(), changed_by)
            self._items[task_id] = updated
            return clone(updated)

    def update_many(
        self, task_ids: Sequence[str], changes: Mapping[str, Any], changed_by: str = SYSTEM_ACTOR
    ) -> Tuple[int, int]:
        matched = modified = 0
        now = self._now()
        with self._lock:
            for task_id in dict.fromkeys(task_ids):
                existing = self._items.get(task_id)
                if existing is None:
                    continue
                matched += 1
                updated, changed = apply_changes(existing, changes, now, changed_by)
                if changed:
                    self._items[task_id] = updated
                    modified += 1
        return matched, modified

    def push(self, task_id: str, field: str, item: Mapping[str, Any]) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None:
                return None
            existing[field].append(dict(item))  # type: ignore[literal-required]
            existing["updated_at"] = self._now()
            return clone(existing)

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._items.pop(task_id, None) is not None

    def delete_many(self, task_ids: Sequence[str]) -> int:
        with self._lock:
            return sum(1 for t in dict.fromkeys(task_ids) if self._items.pop(t, None) is not None)

    def find(
        self,
        predicate: Predicate = MATCH_ALL,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[TaskEntity]:
        with self._lock:
            page = select(self._documents(), predicate, sort, skip, limit)
            # Return copies to avoid external mutation
            return [clone(t) for t in page]

    def count(self, predicate: Predicate = MATCH_ALL) -> int:
        with self._lock:
            return count(self._documents(), predicate)

    def aggregate(self, pipeline: Sequence[Stage]) -> List[Dict[str, Any]]:
        with self._lock:
            return run_pipeline(self._documents(), pipeline)


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Process-wide repository selected by settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository (JSON documents in a sqlite3 table)
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        logger.info("Using sqlite document store at %s", settings.sqlite_db_path)
        return SQLiteRepository(settings.sqlite_db_path)
    logger.info("Using in-memory task store")
    return InMemoryRepository()
