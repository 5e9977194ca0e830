"""SQLAlchemy ORM models for the blob store.

The server holds only opaque ciphertext. Organizations carry the public
salt used for client-side key derivation and the digest-of-digest of the
client's auth token; conversations are (nonce, ciphertext) pairs keyed by
(org_id, platform, external_id).

Types are kept portable (Uuid, LargeBinary, DateTime) so the same models
run on Postgres in production and on SQLite in tests.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Organization(Base):
    """A group sharing one password and one encryption key.

    Attributes:
        salt: 16 random bytes chosen by the creating client.
        auth_key_hash: hex SHA-256 of the client's bearer token.
    """

    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    salt: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    auth_key_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    conversations: Mapped[list["EncryptedConversation"]] = relationship(
        "EncryptedConversation", back_populates="organization", cascade="all, delete-orphan"
    )


class EncryptedConversation(Base):
    """An encrypted conversation row.

    imported_at is assigned by the server and used as the replication cursor.
    """

    __tablename__ = "encrypted_conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    nonce: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    platform: Mapped[str] = mapped_column(Text, nullable=False)
    external_id: Mapped[str] = mapped_column(Text, nullable=False)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="conversations"
    )

    __table_args__ = (
        UniqueConstraint(
            "org_id", "platform", "external_id", name="uq_encrypted_conversations_dedup"
        ),
        Index("ix_encrypted_conversations_org_imported_at", "org_id", "imported_at"),
    )
