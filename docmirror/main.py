"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from docmirror.api.health import router as health_router
from docmirror.api.repositories import router as repositories_router
from docmirror.config import Settings
from docmirror.database import create_engine, ensure_sqlite_directory
from docmirror.exceptions import (
    AggregationError,
    InternalServerError,
    PolicyViolationError,
    RepositoryAlreadyExistsError,
    RepositoryNotFoundError,
    SyncError,
    SyncTimeoutError,
)
from docmirror.git.github_manager import GitHubClientCache
from docmirror.git.registry import create_git_manager
from docmirror.models.base import Base
from docmirror.services.repository_service import RepositoryService
from docmirror.services.repository_store import SqlRepositoryStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_repository_service(
    settings: Settings,
    store: SqlRepositoryStore,
    client_cache: GitHubClientCache | None = None,
) -> RepositoryService:
    """Wire the configured git manager into the repository use cases."""
    git_manager = create_git_manager(settings, client_cache=client_cache)
    return RepositoryService(
        store,
        git_manager,
        allowed_hosts=settings.allowed_git_hosts,
        sync_timeout=settings.sync_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info(
        "Starting docmirror (debug=%s, git_manager=%s)", settings.debug, settings.git_manager
    )

    try:
        ensure_sqlite_directory(settings.database_url)
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    encryptor = settings.build_encryptor()
    store = SqlRepositoryStore(session_factory, encryptor)

    client_cache: GitHubClientCache | None = None
    if settings.git_manager == "github":
        client_cache = GitHubClientCache(
            api_url=settings.github_api_url,
            timeout=settings.http_timeout_seconds,
        )
    app.state.github_client_cache = client_cache

    try:
        app.state.repository_service = build_repository_service(settings, store, client_cache)
    except Exception as exc:
        logger.critical(
            "Failed to initialize git manager at %s: %s.", settings.clone_base_path, exc
        )
        raise

    yield

    if client_cache is not None:
        try:
            await client_cache.aclose()
        except Exception as exc:
            logger.error("Error while closing GitHub clients: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("docmirror stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="docmirror",
        description="Mirror documentation from Git repositories and export selected Markdown",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(repositories_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(PolicyViolationError)
    async def policy_violation_handler(
        request: Request, exc: PolicyViolationError
    ) -> JSONResponse:
        logger.warning(
            "%s in %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
        )
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RepositoryNotFoundError)
    async def not_found_handler(request: Request, exc: RepositoryNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": "Repository not found"})

    @app.exception_handler(RepositoryAlreadyExistsError)
    async def already_exists_handler(
        request: Request, exc: RepositoryAlreadyExistsError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(AggregationError)
    async def aggregation_error_handler(request: Request, exc: AggregationError) -> JSONResponse:
        logger.error(
            "AggregationError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=422,
            content={"detail": f"Failed to read content of file '{exc.path}'"},
        )

    @app.exception_handler(SyncTimeoutError)
    async def sync_timeout_handler(request: Request, exc: SyncTimeoutError) -> JSONResponse:
        logger.error("SyncTimeoutError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=504,
            content={"detail": "Repository synchronization timed out"},
        )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        logger.error(
            "%s in %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Repository synchronization failed"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(UnicodeDecodeError)
    async def unicode_error_handler(request: Request, exc: UnicodeDecodeError) -> JSONResponse:
        logger.error(
            "UnicodeDecodeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=422,
            content={"detail": "Invalid content encoding"},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "docmirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
