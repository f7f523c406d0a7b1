"""
Grouping pipelines over task documents.

A pipeline is a sequence of stages handed to ``Repository.aggregate``.
``run_pipeline`` is the evaluator the bundled repositories use.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .query import MATCH_ALL, Predicate

Accumulator = Callable[[Mapping[str, Any]], float]


@dataclass(frozen=True)
class Match:
    predicate: Predicate = MATCH_ALL


@dataclass(frozen=True)
class Group:
    """
    Bucket documents by ``key`` (None puts everything in one bucket) and sum
    each accumulator per bucket. Output rows are ``{"_id": bucket, name: total}``
    in first-seen bucket order.
    """

    key: Optional[str]
    accumulators: Mapping[str, Accumulator] = field(default_factory=dict)


@dataclass(frozen=True)
class SortBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    count: int


Stage = Union[Match, Group, SortBy, Limit]


def one(_: Mapping[str, Any]) -> int:
    return 1


def when(test: Callable[[Mapping[str, Any]], bool]) -> Accumulator:
    """Counts 1 for documents passing ``test``."""
    return lambda doc: 1 if test(doc) else 0


def value_or_zero(name: str) -> Accumulator:
    return lambda doc: doc.get(name) or 0


def _group(rows: Iterable[Mapping[str, Any]], stage: Group) -> List[Dict[str, Any]]:
    buckets: Dict[Any, Dict[str, Any]] = {}
    for row in rows:
        bucket_id = row.get(stage.key) if stage.key is not None else None
        bucket = buckets.get(bucket_id)
        if bucket is None:
            bucket = {"_id": bucket_id, **{name: 0 for name in stage.accumulators}}
            buckets[bucket_id] = bucket
        for name, acc in stage.accumulators.items():
            bucket[name] += acc(row)
    return list(buckets.values())


# PUBLIC_INTERFACE
def run_pipeline(docs: Iterable[Mapping[str, Any]], stages: Sequence[Stage]) -> List[Dict[str, Any]]:
    """Evaluate ``stages`` in order over ``docs`` and return the output rows."""
    rows: List[Any] = list(docs)
    for stage in stages:
        if isinstance(stage, Match):
            rows = [r for r in rows if stage.predicate.matches(r)]
        elif isinstance(stage, Group):
            rows = _group(rows, stage)
        elif isinstance(stage, SortBy):
            rows = sorted(rows, key=lambda r: r.get(stage.field), reverse=stage.descending)
        elif isinstance(stage, Limit):
            rows = rows[: max(stage.count, 0)]
        else:
            raise TypeError(f"Unsupported pipeline stage: {stage!r}")
    return [dict(r) for r in rows]
