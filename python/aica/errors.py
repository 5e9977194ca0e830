"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Client-side errors (sync, crypto, persistence) live in aica.client.errors.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_ORG_NOT_FOUND = "E_ORG_NOT_FOUND"

    # Conflict errors (409)
    E_SLUG_TAKEN = "E_SLUG_TAKEN"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_SLUG_INVALID = "E_SLUG_INVALID"
    E_INVALID_CURSOR = "E_INVALID_CURSOR"

    # Server errors
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_ORG_NOT_FOUND: 404,
    ApiErrorCode.E_SLUG_TAKEN: 409,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_SLUG_INVALID: 400,
    ApiErrorCode.E_INVALID_CURSOR: 400,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class UnauthenticatedError(ApiError):
    """Missing or invalid organization credentials."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED, message: str = "Unauthenticated"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """Unique resource already exists."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_SLUG_TAKEN, message: str = "Conflict"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)
