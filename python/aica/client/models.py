"""Client data models.

Conversation and Message mirror the JSON produced by the chat exporter; they
are the plaintext inside every ciphertext. metadata is an opaque key-value
bag owned by the exporter and is stored and returned verbatim.
"""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant", "system"]


class Message(BaseModel):
    """One message in a conversation; position defines render order."""

    role: MessageRole
    content: str
    position: int
    created_at: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Conversation(BaseModel):
    """A decrypted conversation as exported from a chat platform."""

    platform: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1)
    title: str
    model: str | None = None
    source_url: str = ""
    created_at: str
    exported_at: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    messages: list[Message] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class DerivedKeys:
    """Key material derived from an org password and salt.

    encryption_key never leaves the client. auth_key_material is only ever
    hashed into the bearer token; it is never used to decrypt.
    """

    encryption_key: bytes
    auth_key_material: bytes

    def __repr__(self) -> str:
        return "DerivedKeys(<redacted>)"


@dataclass(frozen=True)
class EncryptedPayload:
    """Output of one encryption: a fresh 24-byte nonce and its ciphertext."""

    nonce: bytes
    ciphertext: bytes


@dataclass(frozen=True)
class OrgCredentials:
    """What every authenticated request carries: the slug and bearer token."""

    slug: str
    token: str

    def __repr__(self) -> str:
        return f"OrgCredentials(slug={self.slug!r}, token=<redacted>)"


@dataclass(frozen=True)
class OrgInfo:
    """Organization identity as known to the client."""

    id: str
    name: str
    slug: str
    salt: bytes


# =============================================================================
# Local mirror read models
# =============================================================================


class ConversationSummary(BaseModel):
    """A conversation row as listed by the mirror (no messages)."""

    id: str
    platform: str
    external_id: str
    title: str
    model: str | None = None
    source_url: str | None = None
    message_count: int
    created_at: str
    imported_at: str


class StoredMessage(BaseModel):
    """A message as read back from the mirror."""

    role: str
    content: str
    position: int
    created_at: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationDetail(ConversationSummary):
    """A conversation with its parsed metadata and ordered messages."""

    exported_at: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    messages: list[StoredMessage] = Field(default_factory=list)


class SearchHit(BaseModel):
    """One full-text match with its parent conversation's context."""

    conversation_id: str
    title: str
    platform: str
    snippet: str
    role: str
