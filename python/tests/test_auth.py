"""Tests for organization authentication.

Tests cover:
- Token format and digest-of-digest storage scheme
- Which paths the middleware protects
- Middleware behavior with a stub authenticator (header parsing, error
  envelope, principal on request state, unexpected authenticator failures)
- authenticate_org against the database
"""

import hashlib
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from aica.app import create_app
from aica.auth.middleware import OrgAuthMiddleware, OrgPrincipal, is_protected_path
from aica.auth.tokens import hash_bearer_token, is_valid_token_format, verify_bearer_token
from aica.errors import ApiError, ApiErrorCode, UnauthenticatedError
from aica.services.orgs import authenticate_org
from tests.helpers import create_org_via_api

TOKEN = hashlib.sha256(b"auth key material").hexdigest()


class TestTokens:
    def test_stored_hash_is_sha256_of_token_text(self):
        assert hash_bearer_token(TOKEN) == hashlib.sha256(TOKEN.encode("utf-8")).hexdigest()

    def test_verify(self):
        stored = hash_bearer_token(TOKEN)

        assert verify_bearer_token(TOKEN, stored)
        assert not verify_bearer_token(stored, stored)
        assert not verify_bearer_token("0" * 64, stored)

    @pytest.mark.parametrize(
        "token,valid",
        [(TOKEN, True), (TOKEN.upper(), False), (TOKEN[:-1], False), ("g" * 64, False)],
    )
    def test_token_format(self, token, valid):
        assert is_valid_token_format(token) is valid


class TestProtectedPaths:
    @pytest.mark.parametrize(
        "path,protected",
        [
            ("/conversations", True),
            ("/conversations/", True),
            ("/conversations/abc", True),
            ("/conversationsx", False),
            ("/org", False),
            ("/org/acme/salt", False),
            ("/health", False),
        ],
    )
    def test_is_protected_path(self, path, protected):
        assert is_protected_path(path) is protected


class TestAuthMiddleware:
    """Middleware behavior with a stub authenticator."""

    @pytest.fixture
    def calls(self):
        return []

    @pytest.fixture
    def stub_client(self, session_factory, calls):
        principal = OrgPrincipal(org_id=uuid4(), org_slug="acme")

        def authenticate(slug: str, token: str) -> OrgPrincipal:
            calls.append((slug, token))
            if token == "boom":
                raise RuntimeError("database unavailable")
            if token != TOKEN:
                raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid credentials")
            return principal

        app = create_app(session_factory=session_factory, skip_auth_middleware=True)
        app.add_middleware(OrgAuthMiddleware, authenticator=authenticate)
        return TestClient(app)

    def test_valid_credentials_reach_route(self, stub_client, calls):
        response = stub_client.get(
            "/conversations", headers={"Authorization": f"Bearer {TOKEN}", "X-Org-Slug": "acme"}
        )

        # The stub principal's org has no rows in the database
        assert response.status_code == 200
        assert calls == [("acme", TOKEN)]

    def test_missing_header_never_calls_authenticator(self, stub_client, calls):
        response = stub_client.get("/conversations", headers={"X-Org-Slug": "acme"})

        assert response.status_code == 401
        assert calls == []

    def test_blank_bearer_token(self, stub_client, calls):
        response = stub_client.get(
            "/conversations", headers={"Authorization": "Bearer   ", "X-Org-Slug": "acme"}
        )

        assert response.status_code == 401
        assert calls == []

    def test_rejected_token_envelope(self, stub_client):
        response = stub_client.get(
            "/conversations", headers={"Authorization": "Bearer nope", "X-Org-Slug": "acme"}
        )

        assert response.status_code == 401
        error = response.json()["error"]
        assert error["code"] == "E_UNAUTHENTICATED"
        assert error["message"] == "Invalid credentials"

    def test_authenticator_crash_is_500(self, stub_client):
        response = stub_client.get(
            "/conversations", headers={"Authorization": "Bearer boom", "X-Org-Slug": "acme"}
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"

    def test_public_paths_skip_auth(self, stub_client, calls):
        assert stub_client.get("/health").status_code == 200
        assert calls == []


class TestAuthenticateOrg:
    def test_valid_token(self, client: TestClient, db_session):
        create_org_via_api(client, slug="acme", token=TOKEN)

        principal = authenticate_org(db_session, "acme", TOKEN)

        assert principal.org_slug == "acme"

    def test_unknown_org_and_wrong_token_are_both_unauthenticated(
        self, client: TestClient, db_session
    ):
        create_org_via_api(client, slug="acme", token=TOKEN)

        with pytest.raises(UnauthenticatedError):
            authenticate_org(db_session, "globex", TOKEN)
        with pytest.raises(UnauthenticatedError):
            authenticate_org(db_session, "acme", "0" * 64)
