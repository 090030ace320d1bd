from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import ErrorKind, TaskOperationError
from .logging_setup import setup_logging
from .repositories import build_repository
from .routers import tasks as tasks_router
from .service import TaskService
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "Create, list, update, complete and delete tasks.",
    },
]

ERROR_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORAGE: 503,
}


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The repository and the TaskService are constructed once here and shared by
    every request through app.state.task_service. The repository is closed
    when the application shuts down.

    Run with: uvicorn tasklist.main:create_app --factory
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    repository = build_repository(settings)
    service = TaskService(repository)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            repository.close()

    app = FastAPI(
        title="Task List",
        description="Single-user task list with durable storage.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.task_service = service

    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return the common error body for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": [... pydantic/fastapi error details ...]
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": ErrorKind.VALIDATION.value,
                "message": "Request validation failed",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(TaskOperationError)
    async def task_error_handler(request: Request, exc: TaskOperationError) -> JSONResponse:
        """Map a failed service result onto its HTTP status and the common error body."""
        return JSONResponse(
            status_code=ERROR_STATUS[exc.kind],
            content={
                "error": exc.kind.value,
                "message": exc.error.message,
                "detail": jsonable_encoder(exc.error.detail),
            },
        )

    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    app.include_router(tasks_router.router)
    logger.info("Task List app ready backend=%s", settings.persistence_backend)
    return app
