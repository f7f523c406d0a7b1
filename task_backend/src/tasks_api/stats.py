from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .aggregation import Group, Limit, Match, SortBy, Stage, one, value_or_zero, when
from .models import utcnow
from .query import IsSet, Predicate
from .repositories import Repository

logger = logging.getLogger(__name__)

BREAKDOWN_LIMIT = 10

EMPTY_OVERVIEW: Dict[str, Any] = {
    "total_tasks": 0,
    "completed_tasks": 0,
    "pending_tasks": 0,
    "in_progress_tasks": 0,
    "overdue_tasks": 0,
    "total_estimated_hours": 0,
    "total_actual_hours": 0,
}


def _due_after(now: datetime):
    # Counts open tasks whose due date is still ahead. The list endpoint's
    # overdue filter uses the opposite comparison; see DESIGN.md.
    def test(doc: Mapping[str, Any]) -> bool:
        due = doc.get("due_date")
        return due is not None and due > now and doc.get("is_completed") is not True

    return test


def _scoped(predicate: Optional[Predicate], stages: List[Stage]) -> List[Stage]:
    if predicate:
        return [Match(predicate), *stages]
    return stages


def overview_pipeline(now: datetime, predicate: Optional[Predicate] = None) -> List[Stage]:
    return _scoped(
        predicate,
        [
            Group(
                key=None,
                accumulators={
                    "total_tasks": one,
                    "completed_tasks": when(lambda d: bool(d.get("is_completed"))),
                    "pending_tasks": when(lambda d: d.get("status") == "pending"),
                    "in_progress_tasks": when(lambda d: d.get("status") == "in-progress"),
                    "overdue_tasks": when(_due_after(now)),
                    "total_estimated_hours": value_or_zero("estimated_hours"),
                    "total_actual_hours": value_or_zero("actual_hours"),
                },
            )
        ],
    )


def breakdown_pipeline(
    field: str, predicate: Optional[Predicate] = None, top: Optional[int] = None
) -> List[Stage]:
    """
    Count per distinct ``field`` value. With ``top`` set, documents lacking the
    field are skipped and only the ``top`` largest groups are kept.
    """
    if top is None:
        return _scoped(predicate, [Group(key=field, accumulators={"count": one})])
    return _scoped(
        predicate,
        [
            Match(Predicate((IsSet(field),))),
            Group(key=field, accumulators={"count": one}),
            SortBy("count", descending=True),
            Limit(top),
        ],
    )


# PUBLIC_INTERFACE
def collect_statistics(
    repo: Repository,
    predicate: Optional[Predicate] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Overview counts plus priority, category and project breakdowns.

    The four pipelines run as separate scans; under concurrent writes they may
    reflect slightly different states of the collection.
    """
    current = now or utcnow()

    overview_rows = repo.aggregate(overview_pipeline(current, predicate))
    if overview_rows:
        overview = {k: v for k, v in overview_rows[0].items() if k != "_id"}
    else:
        overview = dict(EMPTY_OVERVIEW)

    priority = repo.aggregate(breakdown_pipeline("priority", predicate))
    category = repo.aggregate(breakdown_pipeline("category", predicate, top=BREAKDOWN_LIMIT))
    project = repo.aggregate(breakdown_pipeline("project", predicate, top=BREAKDOWN_LIMIT))

    logger.debug(
        "Collected statistics over %d tasks (%d priority groups)",
        overview["total_tasks"],
        len(priority),
    )
    return {
        "overview": overview,
        "priority_breakdown": priority,
        "category_breakdown": category,
        "project_breakdown": project,
    }
