"""Error bodies for the blob store.

Successful responses are the bare protocol shapes ({"salt": ...},
{"id": ...}, {"conversations": [...], "has_more": ...}) rendered from the
pydantic schemas. Every failure, whichever layer produced it, renders as:

    { "error": { "code": "E_...", "message": "...", "request_id": "..." } }

request_id is omitted only when no request context is bound.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from aica.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from aica.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised HTTP errors (unknown route, wrong method) by status
_HTTP_STATUS_CODES = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def error_body(code: ApiErrorCode, message: str, request_id: str | None = None) -> dict[str, Any]:
    """Build the error envelope; request_id defaults to the bound request's id."""
    error = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def error_json(code: ApiErrorCode, message: str, status_code: int | None = None) -> JSONResponse:
    """Error envelope as a response; status defaults to the code's mapping."""
    if status_code is None:
        status_code = ERROR_CODE_TO_STATUS[code]
    return JSONResponse(status_code=status_code, content=error_body(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_json(exc.code, exc.message, exc.status_code)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return error_json(code, str(exc.detail or "Request failed"), exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 E_INTERNAL; the traceback is logged, never returned."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return error_json(ApiErrorCode.E_INTERNAL, "Internal server error")
