"""Cursor-driven incremental replication from the blob store.

One SyncEngine per session. A sync run:

1. Resets the stored cursor when the local mirror is empty, so a wiped
   cache with a stale cursor refetches everything.
2. Fetches pages of encrypted rows with imported_at > cursor, ascending.
3. Decrypts each row and inserts it into the mirror. A row that fails to
   decrypt is counted and skipped; it never blocks the rest of the page.
   A row the mirror already holds counts as a duplicate, not an import.
4. Persists the mirror snapshot after every page.
5. Advances the persisted cursor only after that page's snapshot is saved:
   to the last successfully imported row, or to the last row of the page
   when every row on it failed (so an unreadable row cannot loop forever).
6. Reports progress after every page; repeats while has_more.

Pages are processed strictly one after another. A TransportError or
StorageError aborts the run with the cursor still pointing at the last
durable page, so retrying later is safe.

If every row a run processed failed to decrypt, it raises SyncFailedError.
Partial success is not an error.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from aica.client.codec import decrypt_conversation, from_base64
from aica.client.errors import CryptoError, SyncFailedError
from aica.client.mirror import LocalMirror
from aica.client.models import OrgCredentials
from aica.client.persistence import SNAPSHOT_KEY, CursorStore, PersistenceAdapter
from aica.client.remote import RemoteStore
from aica.logging import clear_sync_context, get_logger, set_sync_context
from aica.schemas.conversation import EncryptedConversationOut

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DECRYPTING = "decrypting"
    PERSISTING = "persisting"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class SyncProgress:
    """Running totals for one sync run, reported after every page.

    Attributes:
        fetched: Rows received from the server so far
        decrypted: Rows decrypted and newly written to the mirror so far
        failed: Rows that failed to decrypt so far
        done: True once the server has no more pages
        duplicates: Rows decrypted but already in the mirror (not counted
            in decrypted)
    """

    fetched: int
    decrypted: int
    failed: int
    done: bool
    duplicates: int = 0


ProgressCallback = Callable[[SyncProgress], None]


class SyncEngine:
    """Replicates one organization's encrypted rows into a LocalMirror."""

    def __init__(
        self,
        remote: RemoteStore,
        mirror: LocalMirror,
        store: PersistenceAdapter,
        cursors: CursorStore,
        credentials: OrgCredentials,
        encryption_key: bytes,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.remote = remote
        self.mirror = mirror
        self.store = store
        self.cursors = cursors
        self.credentials = credentials
        self._encryption_key = encryption_key
        self.page_size = page_size
        self.state = SyncState.IDLE
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def load_cursor(self) -> str | None:
        """The persisted cursor for this organization."""
        return await self.cursors.get(self.credentials.slug)

    async def sync(self, on_progress: ProgressCallback | None = None) -> int:
        """Run one sync until caught up.

        Returns:
            Number of conversations decrypted and written to the mirror.
            0 without doing anything if a sync is already in flight.

        Raises:
            SyncFailedError: Every row processed in this run failed to decrypt.
            AuthError: The server rejected the credentials.
            TransportError: A page fetch failed; the cursor is unchanged.
            StorageError: Persisting a page failed; the cursor is unchanged.
        """
        if self._running:
            logger.info("sync_already_running")
            return 0

        self._running = True
        set_sync_context(uuid4().hex[:12], self.credentials.slug)
        try:
            imported = await self._run(on_progress)
        except Exception as e:
            self.state = SyncState.ERROR
            logger.warning("sync_failed", error_type=type(e).__name__)
            raise
        finally:
            self._running = False
            clear_sync_context()

        self.state = SyncState.DONE
        return imported

    async def _run(self, on_progress: ProgressCallback | None) -> int:
        slug = self.credentials.slug

        if self.mirror.is_empty():
            await self.cursors.clear(slug)

        cursor = await self.cursors.get(slug)
        logger.info("sync_started", resume=cursor is not None)

        fetched = 0
        decrypted = 0
        failed = 0
        duplicates = 0
        first_error: str | None = None

        while True:
            self.state = SyncState.FETCHING
            page = await self.remote.fetch_page(self.credentials, after=cursor, limit=self.page_size)
            rows = page.conversations

            if not rows:
                self._report(
                    on_progress,
                    SyncProgress(fetched, decrypted, failed, done=True, duplicates=duplicates),
                )
                break

            self.state = SyncState.DECRYPTING
            last_success: str | None = None
            for row in rows:
                try:
                    inserted = self._import_row(row)
                except CryptoError as e:
                    logger.warning(
                        "sync_row_decrypt_failed",
                        conversation_id=row.id,
                        error_type=type(e).__name__,
                    )
                    failed += 1
                    if first_error is None:
                        first_error = e.message
                    continue
                last_success = row.imported_at
                if inserted:
                    decrypted += 1
                else:
                    duplicates += 1
            fetched += len(rows)

            self.state = SyncState.PERSISTING
            await self.store.save(SNAPSHOT_KEY, self.mirror.export_snapshot())

            cursor = last_success if last_success is not None else rows[-1].imported_at
            await self.cursors.set(slug, cursor)

            logger.info(
                "sync_page_complete",
                rows=len(rows),
                decrypted=decrypted,
                duplicates=duplicates,
                failed=failed,
                has_more=page.has_more,
            )
            self._report(
                on_progress,
                SyncProgress(
                    fetched, decrypted, failed, done=not page.has_more, duplicates=duplicates
                ),
            )

            if not page.has_more:
                break

        if failed > 0 and decrypted == 0 and duplicates == 0:
            raise SyncFailedError(failed, first_error)

        logger.info(
            "sync_completed",
            fetched=fetched,
            decrypted=decrypted,
            duplicates=duplicates,
            failed=failed,
        )
        return decrypted

    def _import_row(self, row: EncryptedConversationOut) -> bool:
        """Decrypt one row into the mirror; False if it was already there.

        Raises:
            CryptoError: The row could not be decrypted or decoded.
        """
        conversation = decrypt_conversation(
            from_base64(row.ciphertext),
            from_base64(row.nonce),
            self._encryption_key,
        )
        return self.mirror.insert_conversation(conversation, row.id, row.imported_at)

    def _report(self, on_progress: ProgressCallback | None, progress: SyncProgress) -> None:
        if on_progress is not None:
            on_progress(progress)
