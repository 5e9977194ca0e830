"""Organization Pydantic schemas.

Contains request and response models for the org endpoints.

- salt is standard base64 (with padding) of 16 random bytes
- auth_key_hash is the client's bearer token: hex SHA-256 of auth key material
- Responses never include the stored auth hash
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CreateOrgRequest(BaseModel):
    """Request schema for POST /org.

    Field formats (slug pattern, salt length, hash format) are checked by the
    service layer so each failure maps to a specific error code.
    """

    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=100)
    salt: str = Field(..., min_length=1)
    auth_key_hash: str = Field(..., min_length=1)


class OrgOut(BaseModel):
    """Response schema for a created organization."""

    id: UUID
    name: str
    slug: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SaltOut(BaseModel):
    """Response schema for GET /org/{slug}/salt."""

    salt: str
