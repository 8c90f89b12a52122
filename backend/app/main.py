"""FastAPI application entrypoint."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from ingest.errors import IngestError, TemplateNotFound

from .api import api_router
from .core.config import AppSettings, get_settings
from .core.db import get_session, init_models, reset_engine
from .core.logging import get_logger, setup_logging
from .services.jobs import InvalidTransition, JobNotFound
from .services.orchestrator import AssistantUnavailable, DuplicateUpload, PeriodBusy
from .services.templates import TemplateRepository

logger = get_logger(__name__)


def _configure_tracing(settings: AppSettings) -> None:
    """Propagate LangSmith settings into LangChain environment variables."""

    if not settings.enable_tracing:
        return

    if settings.langsmith_api_key:
        os.environ.setdefault("LANGCHAIN_API_KEY", settings.langsmith_api_key)
    if settings.langsmith_endpoint:
        os.environ.setdefault("LANGCHAIN_ENDPOINT", settings.langsmith_endpoint)
    if settings.langsmith_project:
        os.environ.setdefault("LANGCHAIN_PROJECT", settings.langsmith_project)

    if os.environ.get("LANGCHAIN_API_KEY"):
        os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifecycle hooks for startup and shutdown."""

    settings = get_settings()
    _configure_tracing(settings)
    setup_logging(settings.log_level, fmt=settings.log_format)
    await init_models()
    if settings.seed_builtin_templates:
        async with get_session() as session:
            await TemplateRepository(session).seed_builtin()

    logger.info(
        "application.startup",
        environment=settings.environment,
        version=settings.version,
        tracing_enabled=settings.enable_tracing,
    )

    try:
        yield
    finally:
        await reset_engine()
        logger.info("application.shutdown")


def _error(status_code: int, exc: Exception, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


def _register_exception_handlers(application: FastAPI) -> None:
    """Map domain errors raised below the routes onto HTTP responses."""

    @application.exception_handler(IngestError)
    async def handle_ingest_error(_: Request, exc: IngestError) -> JSONResponse:
        if isinstance(exc, TemplateNotFound):
            return _error(status.HTTP_404_NOT_FOUND, exc)
        return _error(status.HTTP_400_BAD_REQUEST, exc, code=exc.code)

    @application.exception_handler(JobNotFound)
    async def handle_job_not_found(_: Request, exc: JobNotFound) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc)

    @application.exception_handler(InvalidTransition)
    async def handle_invalid_transition(_: Request, exc: InvalidTransition) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, status=exc.current.value)

    @application.exception_handler(PeriodBusy)
    async def handle_period_busy(_: Request, exc: PeriodBusy) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, job_id=exc.job_id)

    @application.exception_handler(DuplicateUpload)
    async def handle_duplicate(_: Request, exc: DuplicateUpload) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, job_id=exc.job_id)

    @application.exception_handler(AssistantUnavailable)
    async def handle_assistant_unavailable(_: Request, exc: AssistantUnavailable) -> JSONResponse:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Construct the FastAPI application instance."""

    settings = settings or get_settings()

    application = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    if settings.cors_allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _register_exception_handlers(application)
    application.include_router(api_router, prefix="/v1")

    @application.get("/", tags=["meta"], summary="Service metadata")
    async def root() -> dict[str, str]:
        """Service metadata root endpoint."""

        return {"service": settings.project_name, "version": settings.version}

    return application


app = create_app()
