"""Authentication middleware for FastAPI.

Provides:
- OrgAuthMiddleware: Bearer token + X-Org-Slug verification for protected paths
- get_principal: Dependency for accessing the authenticated organization

Order of checks:
1. Skip if the path is not protected
2. Extract the bearer token
3. Read the X-Org-Slug header
4. Resolve the organization and verify the token via the authenticator callback
5. Attach OrgPrincipal to request state
"""

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from aica.errors import ApiError, ApiErrorCode
from aica.logging import get_logger, set_org_context
from aica.responses import error_json

logger = get_logger(__name__)

# Header names
AUTHORIZATION_HEADER = "authorization"
ORG_SLUG_HEADER = "x-org-slug"

_MISSING_HEADERS = "Missing Authorization or X-Org-Slug header"
_BAD_HEADER_FORMAT = "Invalid authorization header format"

# Paths that require organization credentials
PROTECTED_PATH_PREFIXES = ("/conversations",)


@dataclass(frozen=True)
class OrgPrincipal:
    """Authenticated organization identity.

    Attributes:
        org_id: The organization's ID.
        org_slug: The organization's slug.
    """

    org_id: UUID
    org_slug: str


# (slug, token) -> OrgPrincipal; raises ApiError on failure
Authenticator = Callable[[str, str], OrgPrincipal]


def is_protected_path(path: str) -> bool:
    """Whether a request path requires organization credentials."""
    return any(
        path == prefix or path.startswith(prefix + "/") for prefix in PROTECTED_PATH_PREFIXES
    )


class OrgAuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for organization-scoped routes.

    Enforces bearer token authentication on protected paths. Any failure
    (missing header, unknown org, wrong token) is a 401 with the same
    public message so callers cannot probe which slugs exist.
    """

    def __init__(self, app: ASGIApp, authenticator: Authenticator):
        """Initialize the auth middleware.

        Args:
            app: The ASGI application.
            authenticator: Function(slug, token) -> OrgPrincipal.
        """
        super().__init__(app)
        self.authenticator = authenticator

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        """Process the request through auth checks."""
        if not is_protected_path(request.url.path):
            return await call_next(request)

        token, error_reply = self._extract_bearer_token(request)
        if error_reply:
            return error_reply

        org_slug = (request.headers.get(ORG_SLUG_HEADER) or "").strip()
        if not org_slug:
            logger.warning("auth_failure", reason="missing_org_slug")
            return error_json(ApiErrorCode.E_UNAUTHENTICATED, _MISSING_HEADERS)

        try:
            principal = self.authenticator(org_slug, token)
        except ApiError as e:
            return error_json(e.code, e.message, e.status_code)
        except Exception as e:
            logger.exception("authenticator_failed", error_type=type(e).__name__)
            return error_json(ApiErrorCode.E_INTERNAL, "Internal server error")

        set_org_context(principal.org_slug)
        request.state.principal = principal

        return await call_next(request)

    def _extract_bearer_token(self, request: Request) -> tuple[str, JSONResponse | None]:
        """Extract bearer token from Authorization header.

        Returns:
            Tuple of (token, error response). Token is empty string if error.
        """
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            logger.warning("auth_failure", reason="missing_header")
            return "", error_json(ApiErrorCode.E_UNAUTHENTICATED, _MISSING_HEADERS)

        if not auth_header.lower().startswith("bearer "):
            logger.warning("auth_failure", reason="invalid_header_format")
            return "", error_json(ApiErrorCode.E_UNAUTHENTICATED, _BAD_HEADER_FORMAT)

        token = auth_header[7:].strip()

        if not token:
            logger.warning("auth_failure", reason="invalid_header_format")
            return "", error_json(ApiErrorCode.E_UNAUTHENTICATED, _BAD_HEADER_FORMAT)

        return token, None


def get_principal(request: Request) -> OrgPrincipal:
    """FastAPI dependency to get the authenticated organization.

    Raises:
        ApiError: If principal is not set (middleware didn't run or path is public).
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return principal
