"""FastAPI application exposing the chat, knowledge and ticket APIs."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import Settings, load_settings
from ..errors import ConfigurationError, HelpdeskError
from ..logging_utils import configure_logging
from ..services import Services, build_services, initialize_builtin_knowledge
from . import chat_routes, knowledge_routes, ticket_routes, validate_routes

logger = logging.getLogger(__name__)


async def _configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error during %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal_server_error", "detail": "服务器内部错误"})


async def _auto_initialize(services: Services) -> None:
    settings = services.settings
    if not settings.auto_init_builtin or not settings.api_key:
        return
    if len(services.index) > 0:
        logger.info("Vector index already holds %d chunks", len(services.index))
        return
    logger.info("Vector index is empty, loading built-in knowledge")
    try:
        added = await initialize_builtin_knowledge(services, settings.api_key)
    except HelpdeskError as exc:
        logger.error("Automatic built-in knowledge initialisation failed: %s", exc)
        return
    logger.info("Indexed %d built-in chunks", added)


def create_app(settings: Settings | None = None, *, services: Services | None = None) -> FastAPI:
    """Instantiate the FastAPI app around shared services.

    Tests pass prebuilt ``services`` with fake model clients; otherwise
    settings are loaded from the environment and the snapshots on disk.
    """

    configure_logging()
    if services is None:
        services = build_services(settings or load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting support desk with %d indexed chunks", len(services.index))
        await _auto_initialize(services)
        yield

    app = FastAPI(title="Support Desk", version="1.0.0", lifespan=lifespan)
    app.state.services = services

    app.add_exception_handler(ConfigurationError, _configuration_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    app.include_router(chat_routes.router)
    app.include_router(knowledge_routes.router)
    app.include_router(ticket_routes.router)
    app.include_router(validate_routes.router)

    @app.get("/api/health")
    async def health() -> Dict[str, object]:
        return {
            "status": "ok",
            "vectors": len(services.index),
            "tickets": len(services.tickets),
        }

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    return app
