# =============================================================================
# connect_core/server/app.py
# FastAPI application factory for the Connect remote API
# =============================================================================

from __future__ import annotations
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

from connect_core.config import ServerConfig
from connect_core.errors import ConnectError, ServerFault
from connect_core.logging import get_logger
from connect_core.server.database import ensure_admin, init_collections
from connect_core.server.repositories import Repositories
from connect_core.server.routes import groups_router, health_router, messages_router, users_router

logger = get_logger(__name__)


def _field_of(error: dict) -> str:
    """Last named segment of a pydantic error location."""
    names = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    return names[-1] if names else "body"


def _error_response(exc: ConnectError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.message, "details": exc.details},
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConnectError)
    async def connect_error_handler(request: Request, exc: ConnectError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = _field_of(errors[0]) if errors else "body"
        reason = errors[0].get("msg", "invalid value") if errors else "invalid request"
        return JSONResponse(
            status_code=400,
            content={
                "error": f"Invalid or missing field: {field}",
                "details": {"field": field, "reason": reason},
            },
        )

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        logger.error(f"{request.method} {request.url.path}: database error: {exc}")
        return _error_response(ServerFault(
            "Database error", operation=f"{request.method} {request.url.path}"
        ))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return _error_response(ServerFault(
            "Internal server error", operation=f"{request.method} {request.url.path}"
        ))


def create_app(database: Database, config: Optional[ServerConfig] = None) -> FastAPI:
    """
    Build the API around an open database.

    Args:
        database: pymongo (or compatible) Database
        config: Server settings; defaults apply when omitted

    Returns:
        FastAPI application
    """
    config = config or ServerConfig()

    init_collections(database)
    ensure_admin(database, config.admin_email)

    app = FastAPI(title="Connect Messaging API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.repositories = Repositories.for_database(
        database, history_limit=config.message_history_limit
    )

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(messages_router)
    app.include_router(groups_router)
    return app
