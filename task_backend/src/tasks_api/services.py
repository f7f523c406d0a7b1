"""
Request-scoped orchestration between the HTTP layer and a Repository.

Services hold no state beyond their repository. Any unexpected repository
error surfaces as StorageFailure carrying the original message; nothing is
retried.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from fastapi import Depends
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from .errors import StorageFailure, TaskNotFound, TaskServiceError, ValidationFailure
from .export import tasks_to_csv
from .models import TaskEntity, utcnow
from .query import (
    DEFAULT_SORT,
    AnyOf,
    Equals,
    Predicate,
    export_predicate,
    list_predicate,
    search_predicate,
    sort_spec,
)
from .repositories import Repository, get_repository
from .schemas import (
    AttachmentCreate,
    CommentCreate,
    FromTemplateRequest,
    TaskCreate,
    TaskUpdate,
)
from .stats import collect_statistics
from .utils import Page

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = (
    "title",
    "description",
    "priority",
    "category",
    "project",
    "estimated_hours",
    "tags",
    "due_date",
    "assignee",
    "reporter",
)

_TEMPLATES = Predicate((Equals("is_template", True),))


@contextmanager
def storage_errors(message: str) -> Iterator[None]:
    """Re-raise anything unexpected from storage as StorageFailure(message)."""
    try:
        yield
    except TaskServiceError:
        raise
    except Exception as exc:
        logger.exception("%s", message)
        raise StorageFailure(message, exc) from exc


class _TaskService:
    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def dependency_lookup(self, tasks: Iterable[TaskEntity]) -> Dict[str, TaskEntity]:
        """
        Tasks referenced by the dependencies of ``tasks``, keyed by id. Ids
        that no longer exist are absent from the result.
        """
        ids = frozenset(dep for task in tasks for dep in task.get("dependencies") or [])
        if not ids:
            return {}
        with storage_errors("Failed to fetch task dependencies"):
            found = self._repo.find(Predicate((AnyOf("id", ids),)))
        return {t["id"]: t for t in found}


# PUBLIC_INTERFACE
class TaskQueryService(_TaskService):
    """Read side: list, search, export, statistics and single lookups."""

    def list_tasks(
        self,
        params: Mapping[str, Optional[str]],
        page: Page,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One page of tasks matching the list filters plus its pagination
        summary. The page and the total are read with the same predicate.
        """
        predicate = list_predicate(params, utcnow())
        sort = sort_spec(sort_by, sort_order)
        with storage_errors("Failed to fetch tasks"):
            items = self._repo.find(predicate, sort, page.skip, page.limit)
            total = self._repo.count(predicate)
        return {"results": len(items), "pagination": page.summary(total), "data": items}

    def get_task(self, task_id: str) -> TaskEntity:
        with storage_errors("Failed to fetch task"):
            task = self._repo.get(task_id)
        if task is None:
            raise TaskNotFound()
        return task

    def advanced_search(self, params: Mapping[str, Optional[str]]) -> List[TaskEntity]:
        predicate = search_predicate(params)
        with storage_errors("Failed to perform advanced search"):
            return self._repo.find(predicate, DEFAULT_SORT)

    def export_tasks(self, params: Mapping[str, Optional[str]]) -> List[TaskEntity]:
        """Every task matching the export filters, unpaginated."""
        predicate = export_predicate(params)
        with storage_errors("Failed to export tasks"):
            return self._repo.find(predicate)

    def export_csv(self, params: Mapping[str, Optional[str]]) -> str:
        return tasks_to_csv(self.export_tasks(params))

    def list_templates(self) -> List[TaskEntity]:
        with storage_errors("Failed to fetch templates"):
            return self._repo.find(_TEMPLATES)

    def statistics(self, predicate: Optional[Predicate] = None) -> Dict[str, Any]:
        with storage_errors("Failed to fetch task statistics"):
            return collect_statistics(self._repo, predicate)


# PUBLIC_INTERFACE
class TaskCommandService(_TaskService):
    """Write side: creation, partial updates, appends and deletion."""

    def create_task(self, payload: TaskCreate) -> TaskEntity:
        with storage_errors("Failed to create task"):
            task = self._repo.create(payload.model_dump())
        logger.info("Created task %s", task["id"])
        return task

    def create_template(self, payload: TaskCreate) -> TaskEntity:
        fields = payload.model_dump()
        fields["is_template"] = True
        with storage_errors("Failed to create template"):
            task = self._repo.create(fields)
        logger.info("Created template %s", task["id"])
        return task

    def bulk_create(self, payloads: Sequence[TaskCreate]) -> List[TaskEntity]:
        with storage_errors("Failed to create tasks"):
            tasks = self._repo.create_many([p.model_dump() for p in payloads])
        logger.info("Bulk created %d tasks", len(tasks))
        return tasks

    def create_from_template(self, request: FromTemplateRequest) -> TaskEntity:
        """
        New task from a template. A customization replaces the template value
        only when it is non-empty.
        """
        with storage_errors("Failed to create task from template"):
            template = self._repo.get(request.template_id)
        if template is None or not template["is_template"]:
            raise TaskNotFound("Template not found")

        custom = request.customizations.model_dump()
        merged = {name: custom.get(name) or template.get(name) for name in TEMPLATE_FIELDS}
        # Template values are re-checked as a new task; a stored due date may have passed.
        try:
            payload = TaskCreate.model_validate(
                {to_camel(name): value for name, value in merged.items() if value is not None}
            )
        except ValidationError as exc:
            raise ValidationFailure.from_pydantic(exc.errors()) from exc
        with storage_errors("Failed to create task from template"):
            task = self._repo.create(payload.model_dump())
        logger.info("Created task %s from template %s", task["id"], request.template_id)
        return task

    def update_task(self, task_id: str, payload: TaskUpdate) -> TaskEntity:
        changes = payload.changes()
        if task_id in (changes.get("dependencies") or []):
            raise ValidationFailure.single(
                "dependencies", "Task cannot depend on itself", changes["dependencies"]
            )
        with storage_errors("Failed to update task"):
            task = self._repo.update(task_id, changes)
        if task is None:
            raise TaskNotFound()
        logger.info("Updated task %s (%s)", task_id, ", ".join(sorted(changes)) or "no fields")
        return task

    def complete_task(self, task_id: str) -> TaskEntity:
        with storage_errors("Failed to complete task"):
            task = self._repo.update(task_id, {"is_completed": True, "status": "completed"})
        if task is None:
            raise TaskNotFound()
        logger.info("Completed task %s", task_id)
        return task

    def add_comment(self, task_id: str, payload: CommentCreate) -> TaskEntity:
        comment = {"content": payload.content, "author": payload.author, "created_at": utcnow()}
        with storage_errors("Failed to add comment"):
            task = self._repo.push(task_id, "comments", comment)
        if task is None:
            raise TaskNotFound()
        return task

    def add_attachment(self, task_id: str, payload: AttachmentCreate) -> TaskEntity:
        attachment = {
            "filename": payload.filename,
            "original_name": payload.original_name,
            "mime_type": payload.mime_type,
            "size": payload.size,
            "url": str(payload.url),
            "uploaded_at": utcnow(),
        }
        with storage_errors("Failed to add attachment"):
            task = self._repo.push(task_id, "attachments", attachment)
        if task is None:
            raise TaskNotFound()
        return task

    def delete_task(self, task_id: str) -> None:
        with storage_errors("Failed to delete task"):
            deleted = self._repo.delete(task_id)
        if not deleted:
            raise TaskNotFound()
        logger.info("Deleted task %s", task_id)

    def bulk_update(self, task_ids: Sequence[str], payload: TaskUpdate) -> Dict[str, int]:
        """Not atomic: the counts report how far the batch got."""
        changes = payload.changes()
        with storage_errors("Failed to update tasks"):
            matched, modified = self._repo.update_many(task_ids, changes)
        logger.info("Bulk update matched %d, modified %d", matched, modified)
        return {"matchedCount": matched, "modifiedCount": modified}

    def bulk_delete(self, task_ids: Sequence[str]) -> Dict[str, int]:
        with storage_errors("Failed to delete tasks"):
            deleted = self._repo.delete_many(task_ids)
        logger.info("Bulk deleted %d tasks", deleted)
        return {"deletedCount": deleted}


def get_query_service(repo: Repository = Depends(get_repository)) -> TaskQueryService:
    return TaskQueryService(repo)


def get_command_service(repo: Repository = Depends(get_repository)) -> TaskCommandService:
    return TaskCommandService(repo)
