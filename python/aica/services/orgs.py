"""Organization service layer.

Handles organization signup, salt lookup, and request authentication:
- Slugs are unique, lowercase alphanumeric plus hyphen
- The salt is public; it is returned to anyone who knows the slug
- The stored auth hash is hex(SHA-256(client token)); see aica.auth.tokens

Security invariants:
- Never log tokens or stored hashes
- Unknown slug and wrong token both surface as 401 on authenticated routes
"""

import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aica.auth.middleware import OrgPrincipal
from aica.auth.tokens import hash_bearer_token, is_valid_token_format, verify_bearer_token
from aica.db.models import Organization
from aica.errors import (
    ApiErrorCode,
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    UnauthenticatedError,
)
from aica.logging import get_logger
from aica.schemas.org import OrgOut, SaltOut
from aica.services.encoding import decode_base64_field, encode_base64

logger = get_logger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")

# Argon2id salt size used by clients
SALT_BYTES = 16


def validate_slug(slug: str) -> None:
    """Reject slugs outside ^[a-z0-9-]+$.

    Raises:
        InvalidRequestError: E_SLUG_INVALID.
    """
    if not SLUG_PATTERN.match(slug):
        raise InvalidRequestError(
            ApiErrorCode.E_SLUG_INVALID, "Slug must be lowercase alphanumeric with hyphens"
        )


def get_org_by_slug(db: Session, slug: str) -> Organization | None:
    """Look up an organization by slug."""
    return db.scalars(select(Organization).where(Organization.slug == slug)).first()


def create_org(db: Session, name: str, slug: str, salt_b64: str, auth_key_hash: str) -> OrgOut:
    """Create an organization.

    Args:
        db: Database session.
        name: Display name.
        slug: Unique slug.
        salt_b64: Base64 of the 16-byte key derivation salt.
        auth_key_hash: The client's hex token; stored only as its own digest.

    Returns:
        OrgOut for the new organization.

    Raises:
        InvalidRequestError: Bad slug, salt, or token format.
        ConflictError: E_SLUG_TAKEN if the slug already exists.
    """
    name = name.strip()
    if not name:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Missing required fields")
    validate_slug(slug)
    salt = decode_base64_field(salt_b64, "salt", expected_len=SALT_BYTES)

    token = auth_key_hash.strip().lower()
    if not is_valid_token_format(token):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "auth_key_hash must be a hex SHA-256 digest"
        )

    if get_org_by_slug(db, slug) is not None:
        raise ConflictError(ApiErrorCode.E_SLUG_TAKEN, "Organization slug already taken")

    org = Organization(
        name=name,
        slug=slug,
        salt=salt,
        auth_key_hash=hash_bearer_token(token),
    )
    db.add(org)
    try:
        db.flush()
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent signup for the same slug
        db.rollback()
        raise ConflictError(ApiErrorCode.E_SLUG_TAKEN, "Organization slug already taken") from None

    db.refresh(org)
    logger.info("org_created", org_id=str(org.id), org_slug=slug)

    return OrgOut.model_validate(org)


def get_org_salt(db: Session, slug: str) -> SaltOut:
    """Return the base64 salt for an organization.

    Raises:
        NotFoundError: E_ORG_NOT_FOUND if the slug is unknown.
    """
    org = get_org_by_slug(db, slug)
    if org is None:
        raise NotFoundError(ApiErrorCode.E_ORG_NOT_FOUND, "Not found")
    return SaltOut(salt=encode_base64(org.salt))


def authenticate_org(db: Session, slug: str, token: str) -> OrgPrincipal:
    """Verify a bearer token for an organization.

    Raises:
        UnauthenticatedError: Unknown slug or token mismatch.
    """
    org = get_org_by_slug(db, slug)
    if org is None:
        logger.warning("auth_failure", reason="org_not_found")
        raise UnauthenticatedError(ApiErrorCode.E_UNAUTHENTICATED, "Organization not found")

    if not verify_bearer_token(token, org.auth_key_hash):
        logger.warning("auth_failure", reason="token_mismatch", org_slug=slug)
        raise UnauthenticatedError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid credentials")

    return OrgPrincipal(org_id=org.id, org_slug=org.slug)
