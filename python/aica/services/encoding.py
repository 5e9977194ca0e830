"""Wire encoding helpers shared by the blob store services.

- Binary fields are standard base64 with padding.
- Timestamps are ISO-8601 strings in UTC with microseconds.
"""

import base64
import binascii
from datetime import UTC, datetime

from aica.errors import ApiErrorCode, InvalidRequestError


def decode_base64_field(value: str, field: str, expected_len: int | None = None) -> bytes:
    """Decode a base64 request field.

    Args:
        value: The base64 text.
        field: Field name, used in the error message.
        expected_len: If set, the decoded length must match exactly.

    Raises:
        InvalidRequestError: If the value is not valid base64 or has the wrong length.
    """
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"{field} must be valid base64"
        ) from None

    if expected_len is not None and len(raw) != expected_len:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"{field} must decode to {expected_len} bytes"
        )
    return raw


def encode_base64(raw: bytes) -> str:
    """Encode bytes as standard base64 text."""
    return base64.b64encode(raw).decode("ascii")


def format_timestamp(value: datetime) -> str:
    """Render a stored timestamp as a wire cursor.

    SQLite returns naive datetimes; every stored value is UTC, so naive
    values are tagged as UTC before formatting.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse a wire cursor into an aware UTC datetime.

    Raises:
        InvalidRequestError: If the value is not an ISO-8601 timestamp.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
