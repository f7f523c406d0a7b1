from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic.alias_generators import to_camel
from typing_extensions import TypedDict

TaskStatus = Literal["pending", "in-progress", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high", "urgent"]


class CommentEntity(TypedDict):
    content: str
    author: str
    created_at: datetime


class AttachmentEntity(TypedDict):
    filename: str
    original_name: str
    mime_type: str
    size: int
    url: str
    uploaded_at: datetime


class HistoryEntry(TypedDict):
    field: str
    old_value: Any
    new_value: Any
    changed_by: str
    changed_at: datetime


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    Task document as held by the storage backends.

    Keys are snake_case; the API renders them in camelCase. Timestamps are
    timezone-aware UTC. Derived values (overdue, progress, time remaining) are
    computed at read time and never stored.
    """

    id: str
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    category: Optional[str]
    project: Optional[str]
    assignee: Optional[str]
    reporter: Optional[str]
    due_date: Optional[datetime]
    reminder_date: Optional[datetime]
    estimated_hours: Optional[float]
    actual_hours: Optional[float]
    tags: List[str]
    dependencies: List[str]
    is_completed: bool
    completed_at: Optional[datetime]
    comments: List[CommentEntity]
    attachments: List[AttachmentEntity]
    history: List[HistoryEntry]
    is_template: bool
    template_name: Optional[str]
    created_at: datetime
    updated_at: datetime


# Keys that never produce history entries.
UNTRACKED_FIELDS = frozenset(
    {"id", "history", "comments", "attachments", "created_at", "updated_at"}
)

SYSTEM_ACTOR = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return uuid.uuid4().hex


def clone(task: TaskEntity) -> TaskEntity:
    """Deep copy so callers never share nested lists with the store."""
    return copy.deepcopy(task)


# PUBLIC_INTERFACE
def new_task(fields: Mapping[str, Any], now: datetime) -> TaskEntity:
    """Build a fresh document from validated create fields."""
    task: TaskEntity = {
        "id": new_task_id(),
        "title": fields["title"],
        "description": fields.get("description"),
        "status": fields.get("status") or "pending",
        "priority": fields.get("priority") or "medium",
        "category": fields.get("category"),
        "project": fields.get("project"),
        "assignee": fields.get("assignee"),
        "reporter": fields.get("reporter"),
        "due_date": fields.get("due_date"),
        "reminder_date": fields.get("reminder_date"),
        "estimated_hours": fields.get("estimated_hours"),
        "actual_hours": fields.get("actual_hours"),
        "tags": list(fields.get("tags") or []),
        "dependencies": list(fields.get("dependencies") or []),
        "is_completed": bool(fields.get("is_completed", False)),
        "completed_at": None,
        "comments": [],
        "attachments": [],
        "history": [],
        "is_template": bool(fields.get("is_template", False)),
        "template_name": fields.get("template_name"),
        "created_at": now,
        "updated_at": now,
    }
    apply_completion(task, now)
    return task


def apply_completion(task: TaskEntity, now: datetime) -> None:
    """Keep completed_at in step with is_completed."""
    if task["is_completed"]:
        if task.get("completed_at") is None:
            task["completed_at"] = now
    else:
        task["completed_at"] = None


# PUBLIC_INTERFACE
def diff_history(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    now: datetime,
    changed_by: str = SYSTEM_ACTOR,
) -> List[HistoryEntry]:
    """
    Return one history entry per tracked field whose value differs between
    the two documents. Field names are recorded in their API (camelCase) form.
    """
    entries: List[HistoryEntry] = []
    for key, new_value in new.items():
        if key in UNTRACKED_FIELDS:
            continue
        old_value = old.get(key)
        if old_value == new_value:
            continue
        entries.append(
            {
                "field": to_camel(key),
                "old_value": copy.deepcopy(old_value),
                "new_value": copy.deepcopy(new_value),
                "changed_by": changed_by,
                "changed_at": now,
            }
        )
    return entries


# PUBLIC_INTERFACE
def apply_changes(
    existing: TaskEntity,
    changes: Mapping[str, Any],
    now: datetime,
    changed_by: str = SYSTEM_ACTOR,
) -> Tuple[TaskEntity, bool]:
    """
    Apply a partial update to a copy of ``existing``.

    The completion invariant is enforced on the result and every changed
    tracked field is appended to its history. Returns the updated document
    and whether anything changed. The diff is taken against ``existing`` as
    loaded by the caller, so concurrent writers can record stale old values.
    """
    updated = clone(existing)
    for key, value in changes.items():
        if key in UNTRACKED_FIELDS:
            continue
        updated[key] = copy.deepcopy(value)  # type: ignore[literal-required]
    apply_completion(updated, now)

    entries = diff_history(existing, updated, now, changed_by)
    if not entries:
        return updated, False
    updated["history"].extend(entries)
    updated["updated_at"] = now
    return updated, True


def is_overdue(task: Mapping[str, Any], now: datetime) -> bool:
    due = task.get("due_date")
    if due is None or task.get("is_completed"):
        return False
    return due < now


def progress_percentage(task: Mapping[str, Any]) -> int:
    if task.get("is_completed"):
        return 100
    if task.get("status") == "in-progress":
        return 50
    return 0


def time_remaining_ms(task: Mapping[str, Any], now: datetime) -> Optional[int]:
    """Milliseconds until the due date, floored at zero."""
    due = task.get("due_date")
    if due is None or task.get("is_completed"):
        return None
    return max(int((due - now).total_seconds() * 1000), 0)


def derived_fields(task: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    return {
        "is_overdue": is_overdue(task, now),
        "progress_percentage": progress_percentage(task),
        "time_remaining": time_remaining_ms(task, now),
    }
