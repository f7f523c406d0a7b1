from __future__ import annotations

from typing import List, Literal, Optional, Sequence, Union

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response

from ..models import TaskEntity, TaskPriority, TaskStatus, utcnow
from ..schemas import (
    AttachmentCreate,
    BulkCreateRequest,
    BulkDeleteRequest,
    BulkUpdateRequest,
    CommentCreate,
    CountsEnvelope,
    FromTemplateRequest,
    MessageEnvelope,
    StatsEnvelope,
    TaskBatchEnvelope,
    TaskCollectionEnvelope,
    TaskCreate,
    TaskEnvelope,
    TaskListEnvelope,
    TaskOut,
    TaskUpdate,
)
from ..services import (
    TaskCommandService,
    TaskQueryService,
    get_command_service,
    get_query_service,
)
from ..utils import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT, Page

TaskService = Union[TaskQueryService, TaskCommandService]

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)

BoolString = Literal["true", "false"]
SortField = Literal[
    "title", "status", "priority", "dueDate", "createdAt", "updatedAt", "category", "project", "assignee"
]

_NOT_FOUND = {404: {"description": "Task not found"}}
_WITHOUT_HISTORY = {"data": {"__all__": {"history"}}}
_TEMPLATE_EXCLUDE = {"data": {"__all__": {"history", "comments", "attachments"}}}


def _out(service: TaskService, tasks: Sequence[TaskEntity]) -> List[TaskOut]:
    now = utcnow()
    lookup = service.dependency_lookup(tasks)
    return [TaskOut.from_entity(t, now, lookup) for t in tasks]


def _one(service: TaskService, task: TaskEntity) -> TaskOut:
    return _out(service, [task])[0]


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TaskListEnvelope,
    summary="List Tasks",
    description=(
        "List tasks with optional filters, single-key sorting and pagination.\n\n"
        "All filters combine with AND; `search` matches title, description, category, "
        "project or assignee (case-insensitive substring); `tags` matches any listed tag; "
        "`overdue=true` keeps open tasks whose due date has passed. Without `sortBy` the "
        "newest tasks come first; with `sortBy` and no `sortOrder` the order is ascending. "
        "Values compare as stored, so `priority` sorts alphabetically."
    ),
    responses={400: {"description": "Invalid query parameters"}},
)
def list_tasks(
    page: int = Query(DEFAULT_PAGE, ge=1, description="1-based page number"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Page size"),
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = Query(None),
    category: Optional[str] = Query(None, max_length=50),
    project: Optional[str] = Query(None, max_length=100),
    assignee: Optional[str] = Query(None, max_length=100),
    reporter: Optional[str] = Query(None, max_length=100),
    is_completed: Optional[BoolString] = Query(None, alias="isCompleted"),
    is_template: Optional[BoolString] = Query(None, alias="isTemplate"),
    overdue: Optional[BoolString] = Query(None),
    search: Optional[str] = Query(None, min_length=1, max_length=50),
    tags: Optional[str] = Query(None, max_length=200, description="Comma-separated tags"),
    sort_by: Optional[SortField] = Query(None, alias="sortBy"),
    sort_order: Optional[Literal["asc", "desc"]] = Query(None, alias="sortOrder"),
    service: TaskQueryService = Depends(get_query_service),
) -> TaskListEnvelope:
    params = {
        "status": task_status,
        "priority": priority,
        "category": category,
        "project": project,
        "assignee": assignee,
        "reporter": reporter,
        "isCompleted": is_completed,
        "isTemplate": is_template,
        "overdue": overdue,
        "search": search.strip() if search else None,
        "tags": tags,
    }
    result = service.list_tasks(params, Page(page, limit), sort_by, sort_order)
    return TaskListEnvelope(
        results=result["results"],
        pagination=result["pagination"],
        data=_out(service, result["data"]),
    )


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    responses={400: {"description": "Validation error"}},
)
def create_task(
    payload: TaskCreate, service: TaskCommandService = Depends(get_command_service)
) -> TaskEnvelope:
    task = service.create_task(payload)
    return TaskEnvelope(message="Task created successfully", data=_one(service, task))


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=StatsEnvelope,
    summary="Task Statistics",
    description=(
        "Overview counts over all tasks plus breakdowns by priority, and by category and "
        "project (top 10 by count)."
    ),
)
def get_stats(service: TaskQueryService = Depends(get_query_service)) -> StatsEnvelope:
    return StatsEnvelope(data=service.statistics())


# PUBLIC_INTERFACE
@router.get(
    "/search",
    response_model=TaskCollectionEnvelope,
    summary="Advanced Search",
    description=(
        "Unpaginated search, newest first. `query` is a free-text match; `dateFrom`/`dateTo` "
        "bound the creation time; `hasAttachments`/`hasComments` require non-empty lists."
    ),
)
def advanced_search(
    query: Optional[str] = Query(None, max_length=100),
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = Query(None),
    category: Optional[str] = Query(None, max_length=50),
    project: Optional[str] = Query(None, max_length=100),
    assignee: Optional[str] = Query(None, max_length=100),
    tags: Optional[str] = Query(None, max_length=200),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    is_completed: Optional[BoolString] = Query(None, alias="isCompleted"),
    has_attachments: Optional[BoolString] = Query(None, alias="hasAttachments"),
    has_comments: Optional[BoolString] = Query(None, alias="hasComments"),
    service: TaskQueryService = Depends(get_query_service),
) -> TaskCollectionEnvelope:
    params = {
        "query": query,
        "status": task_status,
        "priority": priority,
        "category": category,
        "project": project,
        "assignee": assignee,
        "tags": tags,
        "dateFrom": date_from,
        "dateTo": date_to,
        "isCompleted": is_completed,
        "hasAttachments": has_attachments,
        "hasComments": has_comments,
    }
    tasks = service.advanced_search(params)
    return TaskCollectionEnvelope(results=len(tasks), data=_out(service, tasks))


# PUBLIC_INTERFACE
@router.get(
    "/export",
    response_model=TaskCollectionEnvelope,
    response_model_exclude=_WITHOUT_HISTORY,
    summary="Export Tasks",
    description="Export filtered tasks as JSON (default) or as a CSV attachment.",
    responses={200: {"content": {"text/csv": {}}}},
)
def export_tasks(
    export_format: Literal["json", "csv"] = Query("json", alias="format"),
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = Query(None),
    category: Optional[str] = Query(None, max_length=50),
    project: Optional[str] = Query(None, max_length=100),
    is_completed: Optional[BoolString] = Query(None, alias="isCompleted"),
    service: TaskQueryService = Depends(get_query_service),
):
    params = {
        "status": task_status,
        "priority": priority,
        "category": category,
        "project": project,
        "isCompleted": is_completed,
    }
    if export_format == "csv":
        return Response(
            content=service.export_csv(params),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=tasks.csv"},
        )
    tasks = service.export_tasks(params)
    return TaskCollectionEnvelope(results=len(tasks), data=_out(service, tasks))


# PUBLIC_INTERFACE
@router.get(
    "/templates",
    response_model=TaskCollectionEnvelope,
    response_model_exclude=_TEMPLATE_EXCLUDE,
    summary="List Templates",
)
def list_templates(service: TaskQueryService = Depends(get_query_service)) -> TaskCollectionEnvelope:
    templates = service.list_templates()
    return TaskCollectionEnvelope(results=len(templates), data=_out(service, templates))


# PUBLIC_INTERFACE
@router.post(
    "/templates",
    response_model=TaskEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create Template",
)
def create_template(
    payload: TaskCreate, service: TaskCommandService = Depends(get_command_service)
) -> TaskEnvelope:
    template = service.create_template(payload)
    return TaskEnvelope(
        message="Task template created successfully", data=_one(service, template)
    )


# PUBLIC_INTERFACE
@router.post(
    "/from-template",
    response_model=TaskEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task From Template",
    responses={404: {"description": "Template not found"}},
)
def create_from_template(
    payload: FromTemplateRequest, service: TaskCommandService = Depends(get_command_service)
) -> TaskEnvelope:
    task = service.create_from_template(payload)
    return TaskEnvelope(
        message="Task created from template successfully", data=_one(service, task)
    )


# PUBLIC_INTERFACE
@router.post(
    "/bulk",
    response_model=TaskBatchEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Bulk Create Tasks",
)
def bulk_create(
    payload: BulkCreateRequest, service: TaskCommandService = Depends(get_command_service)
) -> TaskBatchEnvelope:
    tasks = service.bulk_create(payload.tasks)
    return TaskBatchEnvelope(
        message=f"{len(tasks)} tasks created successfully", data=_out(service, tasks)
    )


# PUBLIC_INTERFACE
@router.patch("/bulk", response_model=CountsEnvelope, summary="Bulk Update Tasks")
def bulk_update(
    payload: BulkUpdateRequest, service: TaskCommandService = Depends(get_command_service)
) -> CountsEnvelope:
    counts = service.bulk_update(payload.task_ids, payload.updates)
    return CountsEnvelope(
        message=f"{counts['modifiedCount']} tasks updated successfully", data=counts
    )


# PUBLIC_INTERFACE
@router.delete("/bulk", response_model=CountsEnvelope, summary="Bulk Delete Tasks")
def bulk_delete(
    payload: BulkDeleteRequest, service: TaskCommandService = Depends(get_command_service)
) -> CountsEnvelope:
    counts = service.bulk_delete(payload.task_ids)
    return CountsEnvelope(
        message=f"{counts['deletedCount']} tasks deleted successfully", data=counts
    )


# PUBLIC_INTERFACE
@router.get("/{task_id}", response_model=TaskEnvelope, summary="Get Task", responses=_NOT_FOUND)
def get_task(task_id: str, service: TaskQueryService = Depends(get_query_service)) -> TaskEnvelope:
    return TaskEnvelope(data=_one(service, service.get_task(task_id)))


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}",
    response_model=TaskEnvelope,
    summary="Update Task",
    description="Same partial-update semantics as PATCH: omitted fields are left unchanged.",
    responses=_NOT_FOUND,
)
@router.patch("/{task_id}", response_model=TaskEnvelope, summary="Update Task", responses=_NOT_FOUND)
def update_task(
    task_id: str, payload: TaskUpdate, service: TaskCommandService = Depends(get_command_service)
) -> TaskEnvelope:
    task = service.update_task(task_id, payload)
    return TaskEnvelope(message="Task updated successfully", data=_one(service, task))


# PUBLIC_INTERFACE
@router.delete("/{task_id}", response_model=MessageEnvelope, summary="Delete Task", responses=_NOT_FOUND)
def delete_task(
    task_id: str, service: TaskCommandService = Depends(get_command_service)
) -> MessageEnvelope:
    service.delete_task(task_id)
    return MessageEnvelope(message="Task deleted successfully")


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}/complete", response_model=TaskEnvelope, summary="Complete Task", responses=_NOT_FOUND
)
def complete_task(
    task_id: str, service: TaskCommandService = Depends(get_command_service)
) -> TaskEnvelope:
    task = service.complete_task(task_id)
    return TaskEnvelope(message="Task marked as completed", data=_one(service, task))


# PUBLIC_INTERFACE
@router.post(
    "/{task_id}/comments", response_model=TaskEnvelope, summary="Add Comment", responses=_NOT_FOUND
)
def add_comment(
    task_id: str,
    payload: CommentCreate,
    service: TaskCommandService = Depends(get_command_service),
) -> TaskEnvelope:
    task = service.add_comment(task_id, payload)
    return TaskEnvelope(message="Comment added successfully", data=_one(service, task))


# PUBLIC_INTERFACE
@router.post(
    "/{task_id}/attachments",
    response_model=TaskEnvelope,
    summary="Add Attachment",
    responses=_NOT_FOUND,
)
def add_attachment(
    task_id: str,
    payload: AttachmentCreate,
    service: TaskCommandService = Depends(get_command_service),
) -> TaskEnvelope:
    task = service.add_attachment(task_id, payload)
    return TaskEnvelope(message="Attachment added successfully", data=_one(service, task))
