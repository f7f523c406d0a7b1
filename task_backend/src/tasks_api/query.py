"""
Query construction for task collections.

Raw query-string inputs are turned into a ``Predicate`` (a conjunction of
tagged clauses) and a single-key ``SortSpec``. Both are plain values that any
repository can evaluate with :func:`select`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Callable,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from .errors import ValidationFailure
from .schemas import parse_datetime

# Wire name -> document key for every field a list can be ordered by.
SORTABLE_FIELDS = {
    "title": "title",
    "status": "status",
    "priority": "priority",
    "dueDate": "due_date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "category": "category",
    "project": "project",
    "assignee": "assignee",
}

TEXT_SEARCH_FIELDS = ("title", "description", "category", "project", "assignee")


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return doc.get(self.field) == self.value


@dataclass(frozen=True)
class AnyOf:
    """Scalar membership, or non-empty intersection when the field is a list."""

    field: str
    values: FrozenSet[Any]

    def matches(self, doc: Mapping[str, Any]) -> bool:
        current = doc.get(self.field)
        if isinstance(current, (list, tuple, set, frozenset)):
            return any(v in self.values for v in current)
        return current in self.values


@dataclass(frozen=True)
class Range:
    """Bounds on a comparable field; a missing value never matches."""

    field: str
    gte: Any = None
    lte: Any = None
    lt: Any = None

    def matches(self, doc: Mapping[str, Any]) -> bool:
        current = doc.get(self.field)
        if current is None:
            return False
        if self.gte is not None and not current >= self.gte:
            return False
        if self.lte is not None and not current <= self.lte:
            return False
        if self.lt is not None and not current < self.lt:
            return False
        return True


@dataclass(frozen=True)
class IsSet:
    field: str

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return doc.get(self.field) is not None


@dataclass(frozen=True)
class NotEmpty:
    field: str

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return bool(doc.get(self.field))


@dataclass(frozen=True)
class TextSearch:
    """Case-insensitive substring match on any of ``fields``."""

    fields: Tuple[str, ...]
    needle: str

    def matches(self, doc: Mapping[str, Any]) -> bool:
        needle = self.needle.casefold()
        for name in self.fields:
            value = doc.get(name)
            if isinstance(value, str) and needle in value.casefold():
                return True
        return False


Clause = Union[Equals, AnyOf, Range, IsSet, NotEmpty, TextSearch]


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Predicate:
    """AND of clauses. An empty predicate matches every document."""

    clauses: Tuple[Clause, ...] = ()

    def matches(self, doc: Mapping[str, Any]) -> bool:
        return all(clause.matches(doc) for clause in self.clauses)

    def __and__(self, other: "Predicate") -> "Predicate":
        return Predicate(self.clauses + other.clauses)

    def __bool__(self) -> bool:
        return bool(self.clauses)


MATCH_ALL = Predicate()


def _present(value: Optional[str]) -> bool:
    return value is not None and value != ""


def _as_bool(value: str) -> bool:
    return value.strip().lower() == "true"


def split_tags(raw: str) -> List[str]:
    """Split a comma-separated tag list, dropping blank entries."""
    return [t.strip() for t in raw.split(",") if t.strip()]


class PredicateBuilder:
    """
    Accumulates clauses from optional inputs. Every ``add_*`` method is a
    no-op when its input is absent or empty, so inputs can be fed in any order.
    """

    def __init__(self, params: Optional[Mapping[str, Optional[str]]] = None) -> None:
        self._params = params or {}
        self._clauses: List[Clause] = []

    def _get(self, name: str) -> Optional[str]:
        value = self._params.get(name)
        return value if _present(value) else None

    def add(self, clause: Clause) -> "PredicateBuilder":
        self._clauses.append(clause)
        return self

    def exact(self, *names: str) -> "PredicateBuilder":
        for name in names:
            value = self._get(name)
            if value is not None:
                self.add(Equals(_document_key(name), value))
        return self

    def flag(self, *names: str) -> "PredicateBuilder":
        for name in names:
            value = self._get(name)
            if value is not None:
                self.add(Equals(_document_key(name), _as_bool(value)))
        return self

    def text(self, name: str) -> "PredicateBuilder":
        value = self._get(name)
        if value is not None:
            self.add(TextSearch(TEXT_SEARCH_FIELDS, value))
        return self

    def tags(self, name: str = "tags") -> "PredicateBuilder":
        value = self._get(name)
        if value is not None:
            tags = split_tags(value)
            if tags:
                self.add(AnyOf("tags", frozenset(tags)))
        return self

    def overdue(self, now: datetime, name: str = "overdue") -> "PredicateBuilder":
        value = self._get(name)
        if value is not None and _as_bool(value):
            self.add(IsSet("due_date"))
            self.add(Range("due_date", lt=now))
            self.add(Equals("is_completed", False))
        return self

    def created_between(self, start: str = "dateFrom", end: str = "dateTo") -> "PredicateBuilder":
        lower = _parse_bound(start, self._get(start))
        upper = _parse_bound(end, self._get(end))
        if lower is not None or upper is not None:
            self.add(Range("created_at", gte=lower, lte=upper))
        return self

    def has_items(self, name: str, document_key: str) -> "PredicateBuilder":
        value = self._get(name)
        if value is not None and _as_bool(value):
            self.add(NotEmpty(document_key))
        return self

    def build(self) -> Predicate:
        return Predicate(tuple(self._clauses))


_PARAM_KEYS = {
    "isCompleted": "is_completed",
    "isTemplate": "is_template",
}


def _document_key(name: str) -> str:
    return _PARAM_KEYS.get(name, name)


def _parse_bound(name: str, raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    try:
        return parse_datetime(raw)
    except ValueError as exc:
        raise ValidationFailure.single(name, str(exc), raw) from exc


# PUBLIC_INTERFACE
def list_predicate(params: Mapping[str, Optional[str]], now: datetime) -> Predicate:
    """Filters accepted by the paginated list endpoint."""
    return (
        PredicateBuilder(params)
        .exact("status", "priority", "category", "project", "assignee", "reporter")
        .flag("isCompleted", "isTemplate")
        .text("search")
        .tags()
        .overdue(now)
        .build()
    )


# PUBLIC_INTERFACE
def search_predicate(params: Mapping[str, Optional[str]]) -> Predicate:
    """Filters accepted by advanced search."""
    return (
        PredicateBuilder(params)
        .text("query")
        .exact("status", "priority", "category", "project", "assignee")
        .flag("isCompleted")
        .tags()
        .created_between()
        .has_items("hasAttachments", "attachments")
        .has_items("hasComments", "comments")
        .build()
    )


# PUBLIC_INTERFACE
def export_predicate(params: Mapping[str, Optional[str]]) -> Predicate:
    """Filters accepted by export."""
    return (
        PredicateBuilder(params)
        .exact("status", "priority", "category", "project")
        .flag("isCompleted")
        .build()
    )


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class SortSpec:
    """
    A single ordering key. There is no tie-break key: equal values keep the
    order the storage backend produced them in.
    """

    field: str = "created_at"
    descending: bool = True


DEFAULT_SORT = SortSpec()


def sort_spec(sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> SortSpec:
    """
    Build the ordering for a list request. Without ``sort_by`` the default is
    newest first; with a field but no order the direction is ascending.
    Values compare as stored, so priorities order alphabetically
    (high < low < medium < urgent), not by severity.
    """
    if not sort_by:
        return DEFAULT_SORT
    key = SORTABLE_FIELDS.get(sort_by)
    if key is None:
        raise ValidationFailure.single("sortBy", "Invalid sort field", sort_by)
    return SortSpec(field=key, descending=(sort_order or "").lower() == "desc")


def _sort_key(field_name: str) -> Callable[[Mapping[str, Any]], Tuple[bool, Any]]:
    # Missing values order before present ones.
    def key(doc: Mapping[str, Any]) -> Tuple[bool, Any]:
        value = doc.get(field_name)
        return (value is not None, value)

    return key


# PUBLIC_INTERFACE
def select(
    docs: Iterable[Mapping[str, Any]],
    predicate: Predicate = MATCH_ALL,
    sort: Optional[SortSpec] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[Any]:
    """Filter, order and slice documents the way every repository does."""
    items = [d for d in docs if predicate.matches(d)]
    if sort is not None:
        items.sort(key=_sort_key(sort.field), reverse=sort.descending)
    start = max(skip, 0)
    if limit is None:
        return items[start:]
    return items[start:start + max(limit, 0)]


def count(docs: Iterable[Mapping[str, Any]], predicate: Predicate = MATCH_ALL) -> int:
    return sum(1 for d in docs if predicate.matches(d))
