import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import TaskServiceError, ValidationFailure
from .logging_setup import RequestIdMiddleware, configure_logging
from .models import utcnow
from .routers import tasks as tasks_router
from .settings import get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "tasks",
        "description": (
            "Tasks with filtering, sorting, pagination, statistics, templates, comments, "
            "attachments, bulk operations and export."
        ),
    },
]

_settings = get_settings()
configure_logging(_settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Management API",
    description="REST API for managing tasks backed by a pluggable document store.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)

allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Report request validation errors as a 400 with one entry per field.

    Response format:
        {
            "status": "error",
            "message": "Validation failed",
            "errors": [{"field": "dueDate", "message": "...", "value": ...}, ...]
        }
    """
    failure = ValidationFailure.from_pydantic(exc.errors())
    return JSONResponse(status_code=failure.status_code, content=jsonable_encoder(failure.to_content()))


@app.exception_handler(TaskServiceError)
async def task_error_handler(request: Request, exc: TaskServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_content()))


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health and the active storage backend.
    """
    return {
        "status": "success",
        "message": "Task API is running",
        "backend": _settings.persistence_backend,
        "timestamp": utcnow().isoformat(),
    }


app.include_router(tasks_router.router)
logger.debug("Routes registered under %s", tasks_router.router.prefix)
