"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Load plugins (factories, configured modules, entry points)
4. Create the LLM client and the turn runtime
5. Include all routers

Shutdown order:
1. Unload every plugin, most recently registered first
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatspace.agent.llm import LLMClient
from chatspace.agent.runtime import TurnRuntime
from chatspace.api.router import api_v1_router, public_router
from chatspace.config import Environment, get_settings
from chatspace.plugins.exceptions import (
    DuplicateIdentifierError,
    InvalidStateTransition,
    PluginNotFoundError,
)
from chatspace.plugins.manager import PluginManager
from chatspace.telemetry.logging import configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings = get_settings()

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.use_json_logs,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        litellm_base_url=settings.litellm_base_url,
    )

    manager = PluginManager(settings)
    report = await manager.load_plugins()
    if not report.ok:
        log.warning("app.plugins_failed", failed=list(report.failed), errors=dict(report.errors))

    llm_client = LLMClient(settings)
    app.state.plugin_manager = manager
    app.state.llm_client = llm_client
    app.state.turn_runtime = TurnRuntime(manager, llm_client, settings)

    log.info("app.ready", plugins=list(report.loaded))
    yield

    await manager.shutdown()
    log.info("app.shutdown")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    is_dev = settings.environment == Environment.DEV

    app = FastAPI(
        title="Chatspace Plugin Runtime",
        description=(
            "Chat workspace backend with message interceptors, tool plugins "
            "and UI extensions."
        ),
        version="0.1.0",
        docs_url="/docs" if is_dev else None,
        redoc_url="/redoc" if is_dev else None,
        openapi_url="/openapi.json" if is_dev else None,
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------ #
    # Middleware
    # ------------------------------------------------------------------ #

    # In dev mode, allow all origins for easier development
    cors_origins = ["*"] if is_dev else settings.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.is_prod,
        allow_methods=["*"],
        allow_headers=["Authorization", "Content-Type"],
    )

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(public_router)
    app.include_router(api_v1_router)

    # ------------------------------------------------------------------ #
    # Exception handlers
    # ------------------------------------------------------------------ #

    @app.exception_handler(PluginNotFoundError)
    async def plugin_not_found_handler(request: Request, exc: PluginNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DuplicateIdentifierError)
    async def duplicate_plugin_handler(
        request: Request, exc: DuplicateIdentifierError
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidStateTransition)
    async def invalid_transition_handler(
        request: Request, exc: InvalidStateTransition
    ) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Module-level app instance for uvicorn
app = create_app()
