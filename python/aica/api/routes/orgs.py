"""Organization API routes.

- GET /org/{slug}/salt: Public salt lookup for key derivation
- POST /org: Create an organization

Both routes are public; the salt is not secret and signup carries its own
credentials. Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from aica.api.deps import get_db
from aica.schemas.org import CreateOrgRequest
from aica.services import orgs as orgs_service

router = APIRouter(tags=["orgs"])


@router.get("/org/{slug}/salt")
def get_salt(
    slug: str,
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Return the key derivation salt for an organization.

    Returns:
        {"salt": "<base64>"}

    Errors:
        E_ORG_NOT_FOUND (404): Unknown slug.
    """
    return orgs_service.get_org_salt(db=db, slug=slug).model_dump(mode="json")


@router.post("/org", status_code=201)
def create_org(
    body: CreateOrgRequest,
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create an organization.

    Returns:
        201 Created: {"id", "name", "slug", "created_at"}

    Errors:
        E_INVALID_REQUEST (400): Missing fields, bad salt or hash format.
        E_SLUG_INVALID (400): Slug does not match ^[a-z0-9-]+$.
        E_SLUG_TAKEN (409): Slug already exists.
    """
    org = orgs_service.create_org(
        db=db,
        name=body.name,
        slug=body.slug,
        salt_b64=body.salt,
        auth_key_hash=body.auth_key_hash,
    )
    return org.model_dump(mode="json")
