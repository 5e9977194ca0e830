"""Blob store schema - organizations, encrypted_conversations

Revision ID: 0001
Revises:
Create Date: 2026-10-19

The server stores only public salts, hashed auth tokens, and opaque
(nonce, ciphertext) rows. Column types are portable so the same migration
runs on Postgres and SQLite.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ==========================================================================
    # organizations table
    # ==========================================================================
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("salt", sa.LargeBinary(), nullable=False),
        sa.Column("auth_key_hash", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_organizations_slug"),
    )

    # ==========================================================================
    # encrypted_conversations table
    # ==========================================================================
    op.create_table(
        "encrypted_conversations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("org_id", sa.Uuid(), nullable=False),
        sa.Column("nonce", sa.LargeBinary(), nullable=False),
        sa.Column("ciphertext", sa.LargeBinary(), nullable=False),
        sa.Column("platform", sa.Text(), nullable=False),
        sa.Column("external_id", sa.Text(), nullable=False),
        sa.Column("imported_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["org_id"],
            ["organizations.id"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "org_id", "platform", "external_id", name="uq_encrypted_conversations_dedup"
        ),
    )

    # Replication reads: WHERE org_id = ? AND imported_at > ? ORDER BY imported_at
    op.create_index(
        "ix_encrypted_conversations_org_imported_at",
        "encrypted_conversations",
        ["org_id", "imported_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_encrypted_conversations_org_imported_at", table_name="encrypted_conversations"
    )
    op.drop_table("encrypted_conversations")
    op.drop_table("organizations")
