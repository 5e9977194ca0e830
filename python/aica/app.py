"""FastAPI application creation and configuration.

This module creates and configures the blob store API. It registers
exception handlers, org auth middleware, request-id middleware, and routes.

The server never sees plaintext: it stores per-organization salts, hashed
auth tokens, and (nonce, ciphertext) rows.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. OrgAuthMiddleware (verifies bearer token on /conversations, sets principal)
3. Route handler
4. OrgAuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)
"""

import json
from collections.abc import Generator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from aica import __version__
from aica.api.routes import create_api_router
from aica.auth.middleware import Authenticator, OrgAuthMiddleware, OrgPrincipal
from aica.db.session import get_db, get_session_factory
from aica.errors import ApiError, ApiErrorCode
from aica.logging import configure_logging, get_logger
from aica.middleware.request_id import RequestIDMiddleware
from aica.responses import (
    api_error_handler,
    error_json,
    http_exception_handler,
    unhandled_exception_handler,
)
from aica.services.orgs import authenticate_org

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_authenticator(session_factory: sessionmaker[Session] | None = None) -> Authenticator:
    """Create an authenticator callback that opens its own database session.

    The callback is called by the auth middleware for each protected request.
    """
    if session_factory is None:
        session_factory = get_session_factory()

    def authenticate(slug: str, token: str) -> OrgPrincipal:
        db = session_factory()
        try:
            return authenticate_org(db, slug, token)
        finally:
            db.close()

    return authenticate


def create_app(
    session_factory: sessionmaker[Session] | None = None,
    skip_auth_middleware: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        session_factory: Optional session factory (for testing). When given,
            it backs both the get_db dependency and the authenticator.
        skip_auth_middleware: If True, skip adding auth middleware (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="AICA Blob Store API",
        description="Opaque encrypted conversation store for shared AI chat archives",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (missing fields, bad query params)."""
        return error_json(ApiErrorCode.E_INVALID_REQUEST, "Missing required fields")

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return error_json(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body")
        return await call_next(request)

    app.include_router(create_api_router())

    if session_factory is not None:

        def override_get_db() -> Generator[Session, None, None]:
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db

    if not skip_auth_middleware:
        app.add_middleware(
            OrgAuthMiddleware,
            authenticator=create_authenticator(session_factory),
        )
        logger.info("auth_middleware_enabled")

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
