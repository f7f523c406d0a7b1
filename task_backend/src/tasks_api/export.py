from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Any, Iterable

from .models import TaskEntity

# (header, document key) in output order.
CSV_COLUMNS = (
    ("id", "id"),
    ("title", "title"),
    ("description", "description"),
    ("status", "status"),
    ("priority", "priority"),
    ("category", "category"),
    ("project", "project"),
    ("dueDate", "due_date"),
    ("assignee", "assignee"),
    ("reporter", "reporter"),
    ("isCompleted", "is_completed"),
    ("createdAt", "created_at"),
    ("updatedAt", "updated_at"),
)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


# PUBLIC_INTERFACE
def tasks_to_csv(tasks: Iterable[TaskEntity]) -> str:
    """
    Render tasks as CSV: a header row of column names, then one row per task
    with every value double-quoted. Nulls become empty strings.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for task in tasks:
        writer.writerow([_cell(task.get(key)) for _, key in CSV_COLUMNS])
    return buffer.getvalue()
