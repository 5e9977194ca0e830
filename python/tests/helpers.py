"""Test helpers for organizations, credentials, and conversation payloads.

Provides:
- A fixed test password and salt (keys derived once in conftest)
- Org creation and auth header helpers for route tests
- Conversation builders and encrypted upload helpers for sync tests
"""

import base64

from fastapi.testclient import TestClient

from aica.client.codec import encrypt_conversation
from aica.client.models import Conversation, Message, OrgCredentials

TEST_PASSWORD = "correct horse battery staple"
TEST_SALT = bytes(range(16))


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def auth_headers(credentials: OrgCredentials) -> dict[str, str]:
    """Generate headers for an authenticated blob store request."""
    return {
        "Authorization": f"Bearer {credentials.token}",
        "X-Org-Slug": credentials.slug,
    }


def create_org_via_api(
    client: TestClient,
    slug: str,
    token: str,
    name: str = "Acme Research",
    salt: bytes = TEST_SALT,
) -> dict:
    """Create an organization through POST /org and return the body."""
    response = client.post(
        "/org",
        json={"name": name, "slug": slug, "salt": b64(salt), "auth_key_hash": token},
    )
    assert response.status_code == 201, response.text
    return response.json()


def make_conversation(
    external_id: str,
    platform: str = "chatgpt",
    title: str | None = None,
    messages: list[tuple[str, str]] | None = None,
    created_at: str = "2026-01-15T10:00:00Z",
) -> Conversation:
    """Build a conversation; messages are (role, content) pairs in order."""
    if messages is None:
        messages = [("user", f"question {external_id}"), ("assistant", f"answer {external_id}")]
    return Conversation(
        platform=platform,
        external_id=external_id,
        title=title or f"Conversation {external_id}",
        model="gpt-4o",
        source_url=f"https://chat.example.com/c/{external_id}",
        created_at=created_at,
        exported_at="2026-01-20T08:00:00Z",
        metadata={"exporter": "test", "version": 1},
        messages=[
            Message(role=role, content=content, position=i)
            for i, (role, content) in enumerate(messages)
        ],
    )


def upload_encrypted(
    client: TestClient,
    credentials: OrgCredentials,
    key: bytes,
    conversation: Conversation,
) -> dict:
    """Encrypt a conversation and POST it; returns the response body."""
    payload = encrypt_conversation(conversation, key)
    return upload_raw(
        client,
        credentials,
        nonce=payload.nonce,
        ciphertext=payload.ciphertext,
        platform=conversation.platform,
        external_id=conversation.external_id,
    )


def upload_raw(
    client: TestClient,
    credentials: OrgCredentials,
    nonce: bytes,
    ciphertext: bytes,
    platform: str,
    external_id: str,
) -> dict:
    """POST an arbitrary (possibly corrupt) encrypted row."""
    response = client.post(
        "/conversations",
        headers=auth_headers(credentials),
        json={
            "nonce": b64(nonce),
            "ciphertext": b64(ciphertext),
            "platform": platform,
            "external_id": external_id,
        },
    )
    assert response.status_code in (200, 201), response.text
    return response.json()
