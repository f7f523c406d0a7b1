from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

# Request parts FastAPI prefixes to error locations.
_LOCATION_ROOTS = frozenset({"body", "query", "path"})


class TaskServiceError(Exception):
    """Base class for errors the API renders as a JSON error envelope."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_content(self) -> Dict[str, Any]:
        return {"status": "error", "message": self.message}


class TaskNotFound(TaskServiceError):
    status_code = 404

    def __init__(self, message: str = "Task not found") -> None:
        super().__init__(message)


class ValidationFailure(TaskServiceError):
    """
    Input rejected before reaching storage.

    ``errors`` holds one ``{"field", "message", "value"}`` entry per problem.
    """

    status_code = 400

    def __init__(self, errors: List[Dict[str, Any]], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str, value: Any = None) -> "ValidationFailure":
        return cls([{"field": field, "message": message, "value": value}])

    @classmethod
    def from_pydantic(cls, raw_errors: Iterable[Mapping[str, Any]]) -> "ValidationFailure":
        """One entry per pydantic error, located by its dotted field path."""
        errors = []
        for err in raw_errors:
            loc = [str(p) for p in err.get("loc", ()) if p not in _LOCATION_ROOTS]
            errors.append(
                {"field": ".".join(loc), "message": err.get("msg", ""), "value": err.get("input")}
            )
        return cls(errors)

    def to_content(self) -> Dict[str, Any]:
        content = super().to_content()
        content["errors"] = self.errors
        return content


class StorageFailure(TaskServiceError):
    """Unexpected storage error; ``error`` keeps the original message."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.error = str(cause) if cause is not None else None

    def to_content(self) -> Dict[str, Any]:
        content = super().to_content()
        content["error"] = self.error
        return content
