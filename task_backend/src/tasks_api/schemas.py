from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from .models import TaskEntity, TaskPriority, TaskStatus, derived_fields, utcnow

DateInput = Union[date, datetime, str]

_CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# PUBLIC_INTERFACE
def parse_datetime(value: Optional[DateInput]) -> Optional[datetime]:
    """
    Normalize a date/datetime/ISO8601 string into an aware UTC datetime.
    - Strings are parsed with datetime.fromisoformat; a trailing 'Z' is accepted.
    - Plain dates become midnight.
    - Naive values are taken to be UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        s = value.strip()
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            try:
                d = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(
                    "Invalid date format. Use ISO8601 date or datetime string "
                    "(e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e
            parsed = datetime(d.year, d.month, d.day)
    else:
        raise ValueError("Invalid type for date; expected date, datetime, or ISO8601 string.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


_TEXT_FIELDS = (
    "title",
    "description",
    "category",
    "project",
    "assignee",
    "reporter",
    "template_name",
)


class _TaskFields(BaseModel):
    """Validators shared by every schema that carries task fields."""

    model_config = _CAMEL_CONFIG

    @field_validator(*_TEXT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags", mode="before", check_fields=False)
    @classmethod
    def strip_tags(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [t.strip() if isinstance(t, str) else t for t in v]
        return v

    @field_validator("due_date", "reminder_date", mode="before", check_fields=False)
    @classmethod
    def parse_dates(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("due_date", "reminder_date", check_fields=False)
    @classmethod
    def not_in_past(cls, v: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        """Due and reminder dates are rejected when already past."""
        if v is not None and v < utcnow():
            label = "Due date" if info.field_name == "due_date" else "Reminder date"
            raise ValueError(f"{label} cannot be in the past")
        return v

    @field_validator("tags", check_fields=False)
    @classmethod
    def tag_length(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        for tag in v or []:
            if len(tag) > 20:
                raise ValueError("Each tag cannot be more than 20 characters")
        return v


# PUBLIC_INTERFACE
class TaskCreate(_TaskFields):
    """
    Schema for creating a task (and, with isTemplate, a template).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "title": "Implement user authentication",
                "description": "Add JWT-based authentication to the application",
                "status": "pending",
                "priority": "high",
                "category": "Development",
                "project": "User Management System",
                "dueDate": "2099-02-01T17:00:00Z",
                "estimatedHours": 8,
                "tags": ["authentication", "security"],
                "assignee": "John Doe",
                "reporter": "Jane Smith",
            }
        },
    )

    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    category: Optional[str] = Field(default=None, max_length=50)
    project: Optional[str] = Field(default=None, max_length=100)
    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0, le=1000)
    actual_hours: Optional[float] = Field(default=None, ge=0, le=1000)
    tags: List[str] = Field(default_factory=list, max_length=10)
    dependencies: List[str] = Field(default_factory=list)
    assignee: Optional[str] = Field(default=None, max_length=100)
    reporter: Optional[str] = Field(default=None, max_length=100)
    is_completed: bool = False
    is_template: bool = False
    template_name: Optional[str] = Field(default=None, max_length=100)


# Keys that can be omitted from an update but never set to null.
_NON_NULLABLE = frozenset(
    {"title", "status", "priority", "tags", "dependencies", "is_completed", "is_template"}
)


# PUBLIC_INTERFACE
class TaskUpdate(_TaskFields):
    """
    Partial update; only fields present in the payload are applied.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category: Optional[str] = Field(default=None, max_length=50)
    project: Optional[str] = Field(default=None, max_length=100)
    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0, le=1000)
    actual_hours: Optional[float] = Field(default=None, ge=0, le=1000)
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    dependencies: Optional[List[str]] = None
    assignee: Optional[str] = Field(default=None, max_length=100)
    reporter: Optional[str] = Field(default=None, max_length=100)
    is_completed: Optional[bool] = None
    is_template: Optional[bool] = None
    template_name: Optional[str] = Field(default=None, max_length=100)

    def changes(self) -> Dict[str, Any]:
        """Document keys explicitly sent, minus nulls for required fields."""
        data = self.model_dump(exclude_unset=True)
        return {k: v for k, v in data.items() if not (v is None and k in _NON_NULLABLE)}


class TemplateCustomizations(_TaskFields):
    """Overrides applied when instantiating a template; empty values fall back."""

    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    priority: Optional[TaskPriority] = None
    category: Optional[str] = Field(default=None, max_length=50)
    project: Optional[str] = Field(default=None, max_length=100)
    estimated_hours: Optional[float] = Field(default=None, ge=0, le=1000)
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    due_date: Optional[datetime] = None
    assignee: Optional[str] = Field(default=None, max_length=100)
    reporter: Optional[str] = Field(default=None, max_length=100)


class FromTemplateRequest(BaseModel):
    model_config = _CAMEL_CONFIG

    template_id: str
    customizations: TemplateCustomizations = Field(default_factory=TemplateCustomizations)


class CommentCreate(BaseModel):
    model_config = _CAMEL_CONFIG

    content: str = Field(..., min_length=1, max_length=1000)
    author: str = Field(..., min_length=1, max_length=100)

    @field_validator("content", "author", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class AttachmentCreate(BaseModel):
    model_config = _CAMEL_CONFIG

    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=100)
    size: int = Field(..., ge=1, description="File size in bytes")
    url: HttpUrl


class BulkCreateRequest(BaseModel):
    tasks: List[TaskCreate] = Field(..., min_length=1)


class BulkUpdateRequest(BaseModel):
    model_config = _CAMEL_CONFIG

    task_ids: List[str] = Field(..., min_length=1)
    updates: TaskUpdate


class BulkDeleteRequest(BaseModel):
    model_config = _CAMEL_CONFIG

    task_ids: List[str] = Field(..., min_length=1)


class CommentOut(BaseModel):
    model_config = _CAMEL_CONFIG

    content: str
    author: str
    created_at: datetime


class AttachmentOut(BaseModel):
    model_config = _CAMEL_CONFIG

    filename: str
    original_name: str
    mime_type: str
    size: int
    url: str
    uploaded_at: datetime


class HistoryOut(BaseModel):
    model_config = _CAMEL_CONFIG

    field: str
    old_value: Any = None
    new_value: Any = None
    changed_by: str
    changed_at: datetime


class DependencyOut(BaseModel):
    """Summary of a task this one depends on."""

    model_config = _CAMEL_CONFIG

    id: str
    title: str
    status: TaskStatus
    is_completed: bool


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Task as returned by the API, including the values derived at read time.
    """

    model_config = _CAMEL_CONFIG

    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    category: Optional[str] = None
    project: Optional[str] = None
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    dependencies: List[DependencyOut] = Field(default_factory=list)
    is_completed: bool
    completed_at: Optional[datetime] = None
    comments: List[CommentOut] = Field(default_factory=list)
    attachments: List[AttachmentOut] = Field(default_factory=list)
    history: List[HistoryOut] = Field(default_factory=list)
    is_template: bool
    template_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_overdue: bool
    progress_percentage: int
    time_remaining: Optional[int] = Field(
        default=None, description="Milliseconds until the due date, 0 once passed"
    )

    @classmethod
    def from_entity(
        cls,
        entity: TaskEntity,
        now: Optional[datetime] = None,
        dependencies: Optional[Mapping[str, TaskEntity]] = None,
    ) -> "TaskOut":
        """
        Render a stored task. Dependency ids are expanded from ``dependencies``
        (id -> task); ids missing from it are left out.
        """
        current = now or utcnow()
        lookup = dependencies or {}
        resolved = [lookup[dep] for dep in entity["dependencies"] if dep in lookup]
        return cls.model_validate(
            {**entity, **derived_fields(entity, current), "dependencies": resolved}
        )


class PaginationOut(BaseModel):
    model_config = _CAMEL_CONFIG

    current_page: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_prev_page: bool


class TaskListEnvelope(BaseModel):
    status: str = "success"
    results: int
    pagination: PaginationOut
    data: List[TaskOut]


class TaskCollectionEnvelope(BaseModel):
    status: str = "success"
    results: int
    data: List[TaskOut]


class TaskEnvelope(BaseModel):
    status: str = "success"
    message: Optional[str] = None
    data: TaskOut


class TaskBatchEnvelope(BaseModel):
    status: str = "success"
    message: str
    data: List[TaskOut]


class CountsEnvelope(BaseModel):
    status: str = "success"
    message: str
    data: Dict[str, int]


class MessageEnvelope(BaseModel):
    status: str = "success"
    message: str


class OverviewOut(BaseModel):
    model_config = _CAMEL_CONFIG

    total_tasks: int = 0
    completed_tasks: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    overdue_tasks: int = 0
    total_estimated_hours: float = 0
    total_actual_hours: float = 0


class BreakdownEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    count: int


class StatsOut(BaseModel):
    model_config = _CAMEL_CONFIG

    overview: OverviewOut
    priority_breakdown: List[BreakdownEntry]
    category_breakdown: List[BreakdownEntry]
    project_breakdown: List[BreakdownEntry]


class StatsEnvelope(BaseModel):
    status: str = "success"
    data: StatsOut
