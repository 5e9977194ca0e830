"""HTTP client for the encrypted blob store.

RemoteStore wraps a shared httpx.AsyncClient and speaks the blob store's
JSON protocol:

- GET  /org/{slug}/salt            public salt lookup
- POST /org                        create an organization
- POST /conversations              upload one encrypted conversation
- GET  /conversations?after&limit  one replication page

Authenticated calls send Authorization: Bearer <token> and X-Org-Slug.

Rules:
- No retries here; callers decide (sync aborts the cycle on TransportError)
- No logging of request or response bodies
- HTTP failures are mapped onto the client error taxonomy:
    401 -> AuthError, 404 on salt -> OrgNotFoundError, 409 -> ConflictError,
    400 -> ValidationError, anything else (5xx, timeout, network,
    unexpected body) -> TransportError
"""

import httpx
import pydantic

from aica.client.codec import from_base64, to_base64
from aica.client.errors import (
    AuthError,
    ConflictError,
    CryptoError,
    OrgNotFoundError,
    TransportError,
    ValidationError,
)
from aica.client.models import EncryptedPayload, OrgCredentials, OrgInfo
from aica.logging import get_logger
from aica.schemas.conversation import ImportResultOut, SyncPageOut
from aica.schemas.org import OrgOut, SaltOut

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 30.0


def create_http_client(base_url: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the shared HTTP client used by RemoteStore."""
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_s, connect=10.0),
        headers={"Accept": "application/json"},
    )


def _error_detail(response: httpx.Response) -> tuple[str | None, str]:
    """Extract (code, message) from an error envelope, tolerating bad bodies."""
    try:
        error = response.json().get("error", {})
        return error.get("code"), error.get("message") or response.reason_phrase
    except (ValueError, AttributeError):
        return None, response.reason_phrase or f"HTTP {response.status_code}"


def _auth_headers(credentials: OrgCredentials) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {credentials.token}",
        "X-Org-Slug": credentials.slug,
    }


class RemoteStore:
    """Async client for the blob store API."""

    def __init__(self, client: httpx.AsyncClient):
        """Initialize with a shared HTTP client.

        Args:
            client: httpx.AsyncClient whose base_url points at the server.
        """
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("remote_timeout", method=method, url=url)
            raise TransportError(f"Request timed out: {method} {url}") from e
        except httpx.HTTPError as e:
            logger.warning("remote_network_error", method=method, url=url, error_type=type(e).__name__)
            raise TransportError(f"Network error: {method} {url}: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        code, message = _error_detail(response)
        status = response.status_code
        if status == 401:
            raise AuthError(message)
        if status == 404 and code == "E_ORG_NOT_FOUND":
            raise OrgNotFoundError(message)
        if status == 409:
            raise ConflictError(message)
        if status == 400:
            raise ValidationError(message)
        raise TransportError(f"Server returned {status}: {message}", status_code=status)

    def _parse(self, response: httpx.Response, model: type[pydantic.BaseModel]):
        try:
            return model.model_validate_json(response.content)
        except pydantic.ValidationError as e:
            raise TransportError(
                f"Unexpected response body from {response.request.url.path}",
                status_code=response.status_code,
            ) from e

    # =========================================================================
    # Organizations
    # =========================================================================

    async def get_salt(self, slug: str) -> bytes:
        """Fetch an organization's key derivation salt.

        Raises:
            OrgNotFoundError: No organization with this slug.
            TransportError: Network or server failure.
        """
        response = await self._request("GET", f"/org/{slug}/salt")
        self._raise_for_status(response)
        salt = self._parse(response, SaltOut).salt
        try:
            return from_base64(salt)
        except CryptoError as e:
            raise TransportError("Server returned a malformed salt") from e

    async def create_org(self, name: str, slug: str, salt: bytes, auth_key_hash: str) -> OrgInfo:
        """Register a new organization.

        Raises:
            ConflictError: The slug is taken.
            ValidationError: The server rejected a field (e.g. slug format).
            TransportError: Network or server failure.
        """
        response = await self._request(
            "POST",
            "/org",
            json={
                "name": name,
                "slug": slug,
                "salt": to_base64(salt),
                "auth_key_hash": auth_key_hash,
            },
        )
        self._raise_for_status(response)
        org = self._parse(response, OrgOut)
        return OrgInfo(id=str(org.id), name=org.name, slug=org.slug, salt=salt)

    # =========================================================================
    # Conversations
    # =========================================================================

    async def upload_conversation(
        self,
        credentials: OrgCredentials,
        payload: EncryptedPayload,
        platform: str,
        external_id: str,
    ) -> ImportResultOut:
        """Upload one encrypted conversation.

        A repeat upload of the same (platform, external_id) is reported as
        deduplicated, not as an error.
        """
        response = await self._request(
            "POST",
            "/conversations",
            headers=_auth_headers(credentials),
            json={
                "nonce": to_base64(payload.nonce),
                "ciphertext": to_base64(payload.ciphertext),
                "platform": platform,
                "external_id": external_id,
            },
        )
        self._raise_for_status(response)
        return self._parse(response, ImportResultOut)

    async def fetch_page(
        self,
        credentials: OrgCredentials,
        after: str | None = None,
        limit: int = 100,
    ) -> SyncPageOut:
        """Fetch rows imported after the cursor, ascending by imported_at.

        Args:
            credentials: Org slug and bearer token.
            after: Exclusive imported_at cursor; None starts from the beginning.
            limit: Page size (the server clamps to 100).
        """
        params: dict[str, str | int] = {"limit": limit}
        if after is not None:
            params["after"] = after

        response = await self._request(
            "GET",
            "/conversations",
            headers=_auth_headers(credentials),
            params=params,
        )
        self._raise_for_status(response)
        return self._parse(response, SyncPageOut)

    async def check_auth(self, credentials: OrgCredentials) -> None:
        """Verify credentials with a one-row fetch.

        Raises:
            AuthError: The password (and so the token) is wrong.
        """
        await self.fetch_page(credentials, after=None, limit=1)
