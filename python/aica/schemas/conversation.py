"""Encrypted conversation Pydantic schemas.

Shared by the server routes and by the client's RemoteStore, so both sides
parse the same wire shapes.

Binary fields (nonce, ciphertext) travel as standard base64 with padding.
imported_at travels as an ISO-8601 string with explicit UTC offset and
microseconds; clients treat it as an opaque cursor.
"""

from pydantic import BaseModel, Field


class ImportConversationRequest(BaseModel):
    """Request schema for POST /conversations."""

    nonce: str = Field(..., min_length=1)
    ciphertext: str = Field(..., min_length=1)
    platform: str = Field(..., min_length=1, max_length=100)
    external_id: str = Field(..., min_length=1, max_length=500)


class ImportResultOut(BaseModel):
    """Response schema for POST /conversations.

    Exactly one of id (201, first insert) or deduplicated (200) is set.
    """

    id: str | None = None
    deduplicated: bool = False


class EncryptedConversationOut(BaseModel):
    """One encrypted row in a sync page."""

    id: str
    nonce: str
    ciphertext: str
    platform: str
    external_id: str
    imported_at: str


class SyncPageOut(BaseModel):
    """Response schema for GET /conversations."""

    conversations: list[EncryptedConversationOut] = Field(default_factory=list)
    has_more: bool = False
