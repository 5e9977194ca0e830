"""Local mirror of decrypted conversations.

An embedded SQLite database (in memory, restored from and exported to a
snapshot blob) holding decrypted conversations, their messages, and an FTS5
index over message content. It is the only thing UI and CLI queries read.

Schema invariants:
- conversation.id is the server-assigned record id; external_id is unique
- message rows reference a conversation and carry a render position
- every message insert writes its FTS row in the same transaction, so the
  index never holds an entry whose conversation does not exist

All user-influenced values (ids, titles, search text) are bound parameters.
Search text is additionally quoted as a single FTS5 phrase so query syntax
characters typed by a user are matched literally.

The mirror is an explicitly owned handle: create one per session with
LocalMirror.open() and pass it to the sync engine and to query callers.
"""

import hashlib
import json
import re
import sqlite3
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from aica.client.errors import StorageError
from aica.client.models import (
    Conversation,
    ConversationDetail,
    ConversationSummary,
    SearchHit,
    StoredMessage,
)
from aica.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

DEFAULT_LIST_LIMIT = 50
MAX_SEARCH_RESULTS = 50

# snippet() window in tokens (FTS5 allows at most 64)
SNIPPET_TOKENS = 40
HIGHLIGHT_OPEN = "<mark>"
HIGHLIGHT_CLOSE = "</mark>"
SNIPPET_ELLIPSIS = "..."

_WORD_PATTERN = re.compile(r"\w")

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS conversation (
        id TEXT PRIMARY KEY,
        platform TEXT NOT NULL,
        external_id TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        model TEXT,
        source_url TEXT,
        message_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        exported_at TEXT NOT NULL,
        imported_at TEXT NOT NULL,
        metadata TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id TEXT NOT NULL REFERENCES conversation(id),
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        position INTEGER NOT NULL,
        created_at TEXT,
        metadata TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_msg_conv ON message(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_conv_created ON conversation(created_at)",
)

FTS_STATEMENT = """
    CREATE VIRTUAL TABLE message_fts USING fts5(
        content,
        conversation_id UNINDEXED,
        message_id UNINDEXED
    )
"""


def build_fts_phrase(query: str) -> str | None:
    """Turn raw user text into a single quoted FTS5 phrase.

    Returns None when the text has no word characters (nothing to match).
    Embedded double quotes are doubled, which is the only escape FTS5
    recognizes inside a phrase string.
    """
    query = query.strip()
    if not _WORD_PATTERN.search(query):
        return None
    return '"' + query.replace('"', '""') + '"'


def hash_query(q: str) -> str:
    """Hash a normalized query for logging (privacy-safe)."""
    return hashlib.sha256(q.strip().lower().encode("utf-8")).hexdigest()[:16]


def _load_json(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    return json.loads(value)


class LocalMirror:
    """Queryable local copy of an organization's conversations."""

    def __init__(self, connection: sqlite3.Connection):
        """Wrap an open SQLite connection and ensure the schema exists.

        Prefer LocalMirror.open().
        """
        self._raw = connection
        self._engine: Engine = create_engine(
            "sqlite://",
            creator=lambda: connection,
            poolclass=StaticPool,
        )
        self._ensure_schema()

    @classmethod
    def open(cls, snapshot: bytes | None = None) -> "LocalMirror":
        """Open an in-memory mirror, optionally restored from a snapshot.

        Raises:
            StorageError: If the snapshot is not a usable mirror database.
        """
        connection = sqlite3.connect(":memory:", check_same_thread=False)
        if snapshot:
            try:
                connection.deserialize(snapshot)
                version = connection.execute("PRAGMA user_version").fetchone()[0]
            except sqlite3.DatabaseError as e:
                connection.close()
                raise StorageError(f"Snapshot is not a valid mirror database: {e}") from e
            if version != SCHEMA_VERSION:
                connection.close()
                raise StorageError(
                    f"Snapshot schema version {version} does not match {SCHEMA_VERSION}"
                )
        return cls(connection)

    def _ensure_schema(self) -> None:
        with self._engine.begin() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(text(statement))

            fts_exists = conn.execute(
                text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'message_fts'")
            ).first()
            if fts_exists is None:
                conn.execute(text(FTS_STATEMENT))
                logger.debug("mirror_fts_created")

            conn.execute(text(f"PRAGMA user_version = {SCHEMA_VERSION}"))

    # =========================================================================
    # Writes
    # =========================================================================

    def insert_conversation(
        self, conversation: Conversation, server_id: str, imported_at: str
    ) -> bool:
        """Insert a conversation with its messages and search index entries.

        Idempotent: if the server id or external_id is already present,
        nothing is written. Otherwise one conversation row, N message rows,
        and N index rows are written in a single transaction.

        Args:
            conversation: The decrypted conversation.
            server_id: The blob store record id (local primary key).
            imported_at: The server cursor timestamp for the record.

        Returns:
            True if inserted, False if it was already present.
        """
        with self._engine.begin() as conn:
            result = conn.execute(
                text("""
                    INSERT OR IGNORE INTO conversation (
                        id, platform, external_id, title, model, source_url,
                        message_count, created_at, exported_at, imported_at, metadata
                    )
                    VALUES (
                        :id, :platform, :external_id, :title, :model, :source_url,
                        :message_count, :created_at, :exported_at, :imported_at, :metadata
                    )
                """),
                {
                    "id": server_id,
                    "platform": conversation.platform,
                    "external_id": conversation.external_id,
                    "title": conversation.title,
                    "model": conversation.model,
                    "source_url": conversation.source_url,
                    "message_count": len(conversation.messages),
                    "created_at": conversation.created_at,
                    "exported_at": conversation.exported_at,
                    "imported_at": imported_at,
                    "metadata": json.dumps(conversation.metadata),
                },
            )
            if result.rowcount == 0:
                logger.debug("mirror_conversation_exists", conversation_id=server_id)
                return False

            for message in conversation.messages:
                self._insert_message(conn, server_id, message)

        return True

    def _insert_message(self, conn: Connection, conversation_id: str, message) -> None:
        result = conn.execute(
            text("""
                INSERT INTO message (conversation_id, role, content, position, created_at, metadata)
                VALUES (:conversation_id, :role, :content, :position, :created_at, :metadata)
            """),
            {
                "conversation_id": conversation_id,
                "role": message.role,
                "content": message.content,
                "position": message.position,
                "created_at": message.created_at,
                "metadata": json.dumps(message.metadata),
            },
        )
        conn.execute(
            text("""
                INSERT INTO message_fts (content, conversation_id, message_id)
                VALUES (:content, :conversation_id, :message_id)
            """),
            {
                "content": message.content,
                "conversation_id": conversation_id,
                "message_id": result.lastrowid,
            },
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def count_conversations(self) -> int:
        """Number of conversations in the mirror."""
        with self._engine.connect() as conn:
            return conn.execute(text("SELECT COUNT(*) FROM conversation")).scalar_one()

    def is_empty(self) -> bool:
        return self.count_conversations() == 0

    def list_platforms(self) -> list[str]:
        """Distinct platforms present, for filter menus."""
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("SELECT DISTINCT platform FROM conversation ORDER BY platform")
            ).fetchall()
        return [row[0] for row in rows]

    def list_conversations(
        self,
        platform: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[ConversationSummary]:
        """List conversations, most recently created first.

        Args:
            platform: Only return conversations from this platform.
            limit: Page size.
            offset: Rows to skip (page-based pagination).
        """
        where = "WHERE platform = :platform" if platform else ""
        params: dict[str, Any] = {"limit": max(0, limit), "offset": max(0, offset)}
        if platform:
            params["platform"] = platform

        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT id, platform, external_id, title, model, source_url,
                           message_count, created_at, imported_at
                    FROM conversation
                    {where}
                    ORDER BY created_at DESC, id ASC
                    LIMIT :limit OFFSET :offset
                """),
                params,
            ).mappings().all()

        return [ConversationSummary(**row) for row in rows]

    def get_conversation(self, conversation_id: str) -> ConversationDetail | None:
        """Return a conversation with ordered messages, or None if not synced."""
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT id, platform, external_id, title, model, source_url,
                           message_count, created_at, exported_at, imported_at, metadata
                    FROM conversation
                    WHERE id = :id
                """),
                {"id": conversation_id},
            ).mappings().first()
            if row is None:
                return None

            messages = conn.execute(
                text("""
                    SELECT role, content, position, created_at, metadata
                    FROM message
                    WHERE conversation_id = :id
                    ORDER BY position ASC, id ASC
                """),
                {"id": conversation_id},
            ).mappings().all()

        detail = dict(row)
        detail["metadata"] = _load_json(detail["metadata"])
        detail["messages"] = [
            StoredMessage(**{**m, "metadata": _load_json(m["metadata"])}) for m in messages
        ]
        return ConversationDetail(**detail)

    def search_messages(self, query: str, limit: int = MAX_SEARCH_RESULTS) -> list[SearchHit]:
        """Full-text search over message content.

        Matching is case-insensitive. Each hit carries a snippet with the
        match wrapped in <mark>...</mark> and its conversation's title and
        platform.

        Args:
            query: Raw user text; matched literally as one phrase.
            limit: Maximum hits (capped at 50).
        """
        phrase = build_fts_phrase(query)
        if phrase is None:
            return []

        limit = min(max(1, limit), MAX_SEARCH_RESULTS)
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT message_fts.conversation_id AS conversation_id,
                           c.title AS title,
                           c.platform AS platform,
                           snippet(message_fts, 0, :hl_open, :hl_close, :ellipsis, :tokens)
                               AS snippet,
                           msg.role AS role
                    FROM message_fts
                    JOIN conversation c ON c.id = message_fts.conversation_id
                    JOIN message msg ON msg.id = message_fts.message_id
                    WHERE message_fts MATCH :phrase
                    ORDER BY rank
                    LIMIT :limit
                """),
                {
                    "phrase": phrase,
                    "hl_open": HIGHLIGHT_OPEN,
                    "hl_close": HIGHLIGHT_CLOSE,
                    "ellipsis": SNIPPET_ELLIPSIS,
                    "tokens": SNIPPET_TOKENS,
                    "limit": limit,
                },
            ).mappings().all()

        logger.debug("mirror_search", query_hash=hash_query(query), results=len(rows))
        return [SearchHit(**row) for row in rows]

    # =========================================================================
    # Snapshot
    # =========================================================================

    def export_snapshot(self) -> bytes:
        """Serialize the whole mirror to a SQLite database image.

        Used for persistence after every sync page and for user backups.
        """
        return self._raw.serialize()

    def close(self) -> None:
        self._engine.dispose()
        self._raw.close()
