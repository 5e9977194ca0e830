"""Encrypted conversation service layer.

Handles ingestion and replication of opaque conversation blobs:
- Ingestion is insert-or-ignore keyed by (org_id, platform, external_id)
- Replication lists rows with imported_at > cursor, ascending, one page at a time
- has_more is true exactly when the page is full

imported_at is assigned here, not by the database, so that it is strictly
increasing within one server process. Two rows never share a timestamp, so a
page boundary can never fall between tied rows and skip one.

Stamping and committing happen under one per-org critical section (the
organization row is locked FOR UPDATE, and an in-process lock covers
databases without row locks). A row therefore never becomes visible with a
timestamp older than a row a reader has already seen.
"""

import threading
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aica.db.models import EncryptedConversation, Organization
from aica.logging import get_logger
from aica.schemas.conversation import EncryptedConversationOut, ImportResultOut, SyncPageOut
from aica.services.encoding import (
    decode_base64_field,
    encode_base64,
    format_timestamp,
    parse_timestamp,
)

logger = get_logger(__name__)

# XSalsa20-Poly1305 nonce size used by clients
NONCE_BYTES = 24

_clock_lock = threading.Lock()
_ingest_lock = threading.Lock()
_last_imported_at: datetime | None = None


def next_imported_at() -> datetime:
    """Return a UTC timestamp strictly greater than any previously returned."""
    global _last_imported_at
    with _clock_lock:
        now = datetime.now(UTC)
        if _last_imported_at is not None and now <= _last_imported_at:
            now = _last_imported_at + timedelta(microseconds=1)
        _last_imported_at = now
        return now


def _find_existing(
    db: Session, org_id: UUID, platform: str, external_id: str
) -> EncryptedConversation | None:
    stmt = select(EncryptedConversation).where(
        EncryptedConversation.org_id == org_id,
        EncryptedConversation.platform == platform,
        EncryptedConversation.external_id == external_id,
    )
    return db.scalars(stmt).first()


def import_conversation(
    db: Session,
    org_id: UUID,
    nonce_b64: str,
    ciphertext_b64: str,
    platform: str,
    external_id: str,
) -> tuple[ImportResultOut, bool]:
    """Store an encrypted conversation unless it already exists.

    Args:
        db: Database session.
        org_id: The authenticated organization.
        nonce_b64: Base64 of the 24-byte nonce.
        ciphertext_b64: Base64 ciphertext (includes the MAC).
        platform: Source platform (e.g. "chatgpt", "claude").
        external_id: The platform's conversation id.

    Returns:
        Tuple of (ImportResultOut, is_created).

    Raises:
        InvalidRequestError: If nonce or ciphertext are malformed.
    """
    nonce = decode_base64_field(nonce_b64, "nonce", expected_len=NONCE_BYTES)
    ciphertext = decode_base64_field(ciphertext_b64, "ciphertext")

    if _find_existing(db, org_id, platform, external_id) is not None:
        logger.info("conversation_deduplicated", platform=platform)
        return ImportResultOut(deduplicated=True), False

    with _ingest_lock:
        # Serializes stamp + commit per org across processes
        db.execute(select(Organization.id).where(Organization.id == org_id).with_for_update())

        row = EncryptedConversation(
            org_id=org_id,
            nonce=nonce,
            ciphertext=ciphertext,
            platform=platform,
            external_id=external_id,
            imported_at=next_imported_at(),
        )
        db.add(row)
        try:
            db.flush()
            db.commit()
        except IntegrityError:
            # Lost a race: a concurrent request inserted the same key
            db.rollback()
            logger.info("conversation_deduplicated", platform=platform, race=True)
            return ImportResultOut(deduplicated=True), False

    logger.info(
        "conversation_imported",
        conversation_id=str(row.id),
        platform=platform,
        ciphertext_bytes=len(ciphertext),
    )
    return ImportResultOut(id=str(row.id)), True


def list_conversations_after(
    db: Session,
    org_id: UUID,
    after: str | None,
    limit: int,
) -> SyncPageOut:
    """List one page of encrypted rows after a cursor.

    Args:
        db: Database session.
        org_id: The authenticated organization.
        after: imported_at cursor (exclusive); None or "" means from the beginning.
        limit: Page size (already clamped by the caller).

    Returns:
        SyncPageOut ordered by imported_at ascending.

    Raises:
        InvalidRequestError: E_INVALID_CURSOR if after is not a timestamp.
    """
    stmt = select(EncryptedConversation).where(EncryptedConversation.org_id == org_id)
    if after:
        stmt = stmt.where(EncryptedConversation.imported_at > parse_timestamp(after))
    stmt = stmt.order_by(
        EncryptedConversation.imported_at.asc(), EncryptedConversation.id.asc()
    ).limit(limit)

    rows = db.scalars(stmt).all()

    conversations = [
        EncryptedConversationOut(
            id=str(row.id),
            nonce=encode_base64(row.nonce),
            ciphertext=encode_base64(row.ciphertext),
            platform=row.platform,
            external_id=row.external_id,
            imported_at=format_timestamp(row.imported_at),
        )
        for row in rows
    ]

    return SyncPageOut(conversations=conversations, has_more=len(conversations) == limit)
