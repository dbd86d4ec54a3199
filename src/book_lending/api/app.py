"""Book lending API - FastAPI application factory.

Registers middleware, exception handlers, routers and the lifecycle hook that
creates the schema. Routes live under ``config.api_prefix``; ``/health`` sits at
the root for load balancers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config import LendingConfig, get_config
from ..database.session import DatabaseManager
from ..engine import TransactionEngine
from ..errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InfrastructureError,
    LendingError,
    NotFoundError,
    ValidationError,
)
from ..observability import initialize_observability
from .routes import all_routers

logger = logging.getLogger(__name__)

# ConflictError is a 400 like the other client mistakes
STATUS_CODES: dict[type[LendingError], int] = {
    ValidationError: 400,
    ConflictError: 400,
    AuthenticationError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    InfrastructureError: 500,
}


def status_code_for(error: LendingError) -> int:
    for error_class in type(error).__mro__:
        if error_class in STATUS_CODES:
            return STATUS_CODES[error_class]
    return 500


def error_body(message: str, errors: list[dict[str, str]] | None = None) -> dict:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body


async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.message, [e.to_dict() for e in exc.errors]),
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database errors that reached a route without being translated by a repository."""
    if isinstance(exc, IntegrityError):
        logger.warning("%s %s violated a constraint: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(
            status_code=STATUS_CODES[ConflictError],
            content=error_body("Request conflicts with existing data"),
        )
    logger.error("%s %s database failure: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=error_body("Database operation failed, please retry"))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # noqa: ARG001
    """Malformed payloads: one entry per offending field, named as on the wire."""
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "path", "query")]
        errors.append(
            {
                "field": ".".join(location) or "body",
                "message": error.get("msg", "Invalid value"),
            }
        )
    return JSONResponse(status_code=400, content=error_body("Validation failed", errors))


def create_app(
    config: LendingConfig | None = None, db_manager: DatabaseManager | None = None
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        config: Settings; the global configuration when omitted
        db_manager: Database to serve from; built from ``config`` when omitted
    """
    config = config or get_config()
    owns_database = db_manager is None
    if db_manager is None:
        db_manager = DatabaseManager(config.get_database_url(), config.lock_timeout_seconds)

    initialize_observability(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.db_manager.init_database()
        logger.info("%s %s API started", config.server_name, config.server_version)
        yield
        if owns_database:
            app.state.db_manager.close()
        logger.info("%s API shutting down", config.server_name)

    app = FastAPI(
        title="Book Lending",
        description="Peer-to-peer book lending: listings and the request/approval workflow",
        version=config.server_version,
        lifespan=lifespan,
        debug=config.debug,
    )
    app.state.config = config
    app.state.db_manager = db_manager
    app.state.engine = TransactionEngine(db_manager, config.max_conflict_retries)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LendingError, lending_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    for router in all_routers:
        app.include_router(router, prefix=config.api_prefix)

    @app.get("/health")
    def health():
        connected = app.state.db_manager.verify_connection()
        return {
            "status": "healthy" if connected else "degraded",
            "version": config.server_version,
            "database": "connected" if connected else "unavailable",
        }

    return app
