"""Tests for the sync engine.

The engine runs against the real app in-process: rows are uploaded through
the API, then replicated by SyncEngine via RemoteStore over ASGITransport.

Tests cover:
- Full replication into the mirror and snapshot persistence
- Cursor monotonicity and no-op re-sync
- Per-row decrypt failures: skipped, counted, never blocking the page
- SyncFailedError when nothing decrypts
- Cursor reset when the mirror is empty
- Paging and progress reports, with rows already mirrored counted apart
- Concurrency guard
- Cursor left unchanged when a fetch or a snapshot save fails
"""

import asyncio

import pytest

from aica.client.codec import encrypt, encrypt_conversation
from aica.client.errors import StorageError, SyncFailedError, TransportError
from aica.client.mirror import LocalMirror
from aica.client.persistence import SNAPSHOT_KEY, CursorStore, MemoryBlobStore
from aica.client.sync import SyncEngine, SyncProgress, SyncState
from aica.logging import sync_id_var
from tests.helpers import make_conversation, upload_encrypted, upload_raw

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mirror():
    mirror = LocalMirror.open()
    yield mirror
    mirror.close()


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def cursors():
    return CursorStore()


@pytest.fixture
def make_engine(remote, mirror, store, cursors, org_credentials, derived_keys):
    """Build an engine for the test org; keyword overrides replace defaults."""

    def _make(**overrides) -> SyncEngine:
        kwargs = {
            "remote": remote,
            "mirror": mirror,
            "store": store,
            "cursors": cursors,
            "credentials": org_credentials,
            "encryption_key": derived_keys.encryption_key,
        }
        kwargs.update(overrides)
        return SyncEngine(**kwargs)

    return _make


@pytest.fixture
def upload(client, org_credentials, derived_keys):
    """Upload conversations ext-0..ext-(n-1) encrypted with the org key."""

    def _upload(count: int, prefix: str = "ext") -> list[dict]:
        return [
            upload_encrypted(
                client, org_credentials, derived_keys.encryption_key, make_conversation(f"{prefix}-{i}")
            )
            for i in range(count)
        ]

    return _upload


@pytest.fixture
def upload_corrupt(client, org_credentials):
    """Upload a row encrypted under a key the org does not have."""

    def _upload(external_id: str) -> dict:
        payload = encrypt_conversation(make_conversation(external_id), bytes(32))
        return upload_raw(
            client, org_credentials, payload.nonce, payload.ciphertext, "chatgpt", external_id
        )

    return _upload


class FlakyRemote:
    """Delegates to a real RemoteStore; fails the Nth fetch with TransportError."""

    def __init__(self, remote, fail_on_call: int):
        self.remote = remote
        self.fail_on_call = fail_on_call
        self.calls = 0

    async def fetch_page(self, credentials, after=None, limit=100):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise TransportError("connection reset")
        return await self.remote.fetch_page(credentials, after=after, limit=limit)


class FailingSaveStore(MemoryBlobStore):
    async def save(self, key, data):
        raise StorageError("quota exceeded")


# =============================================================================
# Replication
# =============================================================================


class TestSyncReplication:
    @pytest.mark.asyncio
    async def test_sync_imports_everything(self, make_engine, upload, mirror, store):
        upload(3)
        engine = make_engine()

        imported = await engine.sync()

        assert imported == 3
        assert mirror.count_conversations() == 3
        assert engine.state == SyncState.DONE
        assert len(mirror.search_messages("answer")) == 3

    @pytest.mark.asyncio
    async def test_snapshot_saved_and_restorable(self, make_engine, upload, store):
        upload(2)

        await make_engine().sync()

        snapshot = await store.load(SNAPSHOT_KEY)
        restored = LocalMirror.open(snapshot)
        try:
            assert restored.count_conversations() == 2
        finally:
            restored.close()

    @pytest.mark.asyncio
    async def test_cursor_is_last_imported_at(self, make_engine, upload, remote, org_credentials):
        upload(3)
        engine = make_engine()

        await engine.sync()

        page = await remote.fetch_page(org_credentials)
        assert await engine.load_cursor() == page.conversations[-1].imported_at

    @pytest.mark.asyncio
    async def test_second_sync_is_a_no_op(self, make_engine, upload, mirror):
        upload(2)
        engine = make_engine()
        await engine.sync()
        cursor = await engine.load_cursor()

        assert await engine.sync() == 0
        assert await engine.load_cursor() == cursor
        assert mirror.count_conversations() == 2

    @pytest.mark.asyncio
    async def test_incremental_sync_fetches_only_new_rows(self, make_engine, upload, mirror):
        upload(2)
        engine = make_engine()
        await engine.sync()
        first_cursor = await engine.load_cursor()

        upload(3, prefix="later")

        assert await engine.sync() == 3
        assert (await engine.load_cursor()) > first_cursor
        assert mirror.count_conversations() == 5

    @pytest.mark.asyncio
    async def test_empty_org(self, make_engine, mirror):
        engine = make_engine()

        assert await engine.sync() == 0
        assert await engine.load_cursor() is None
        assert mirror.is_empty()


# =============================================================================
# Decrypt failures
# =============================================================================


class TestSyncFailures:
    @pytest.mark.asyncio
    async def test_corrupt_row_is_skipped(self, make_engine, upload, upload_corrupt, mirror):
        """One bad row among five: four imported, one counted, no error."""
        upload(2)
        upload_corrupt("bad")
        upload(2, prefix="tail")
        reports = []

        imported = await make_engine().sync(reports.append)

        assert imported == 4
        assert mirror.count_conversations() == 4
        assert reports[-1] == SyncProgress(fetched=5, decrypted=4, failed=1, done=True)

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_skipped(
        self, make_engine, upload, client, org_credentials, derived_keys, mirror
    ):
        """Authentic ciphertext whose plaintext is not a conversation."""
        upload(1)
        payload = encrypt("not a conversation", derived_keys.encryption_key)
        upload_raw(client, org_credentials, payload.nonce, payload.ciphertext, "chatgpt", "junk")

        assert await make_engine().sync() == 1
        assert mirror.count_conversations() == 1

    @pytest.mark.asyncio
    async def test_all_rows_failing_raises(self, make_engine, upload_corrupt, remote, org_credentials):
        upload_corrupt("bad-1")
        upload_corrupt("bad-2")
        engine = make_engine()

        with pytest.raises(SyncFailedError) as exc_info:
            await engine.sync()

        assert exc_info.value.failed == 2
        assert exc_info.value.first_error
        assert engine.state == SyncState.ERROR
        page = await remote.fetch_page(org_credentials)
        # the cursor moves past unreadable rows so they do not loop forever
        assert await engine.load_cursor() == page.conversations[-1].imported_at

    @pytest.mark.asyncio
    async def test_cursor_stops_at_last_success(
        self, make_engine, upload, upload_corrupt, remote, org_credentials
    ):
        upload(1)
        upload_corrupt("bad")
        engine = make_engine()

        await engine.sync()

        page = await remote.fetch_page(org_credentials)
        assert await engine.load_cursor() == page.conversations[0].imported_at

    @pytest.mark.asyncio
    async def test_wrong_key_fails_every_row(self, make_engine, upload):
        upload(2)

        with pytest.raises(SyncFailedError):
            await make_engine(encryption_key=bytes(32)).sync()


# =============================================================================
# Cursor handling
# =============================================================================


class TestSyncCursor:
    @pytest.mark.asyncio
    async def test_stale_cursor_reset_when_mirror_empty(
        self, make_engine, upload, cursors, org_credentials, mirror
    ):
        """A wiped cache with a surviving cursor refetches from the start."""
        upload(3)
        await cursors.set(org_credentials.slug, "2999-01-01T00:00:00.000000+00:00")

        assert await make_engine().sync() == 3
        assert mirror.count_conversations() == 3

    @pytest.mark.asyncio
    async def test_cursor_kept_when_mirror_has_data(
        self, make_engine, upload, cursors, org_credentials, mirror
    ):
        upload(1)
        engine = make_engine()
        await engine.sync()
        upload(1, prefix="later")
        await cursors.set(org_credentials.slug, "2999-01-01T00:00:00.000000+00:00")

        assert await engine.sync() == 0
        assert mirror.count_conversations() == 1

    @pytest.mark.asyncio
    async def test_transport_error_leaves_cursor_at_last_page(
        self, make_engine, upload, remote, org_credentials
    ):
        upload(3)
        engine = make_engine(remote=FlakyRemote(remote, fail_on_call=2), page_size=2)

        with pytest.raises(TransportError):
            await engine.sync()

        page = await remote.fetch_page(org_credentials, limit=2)
        assert await engine.load_cursor() == page.conversations[-1].imported_at
        assert engine.is_running is False

    @pytest.mark.asyncio
    async def test_retry_after_transport_error_completes(self, make_engine, upload, remote, mirror):
        upload(3)
        flaky = FlakyRemote(remote, fail_on_call=2)
        engine = make_engine(remote=flaky, page_size=2)

        with pytest.raises(TransportError):
            await engine.sync()

        assert await engine.sync() == 1
        assert mirror.count_conversations() == 3

    @pytest.mark.asyncio
    async def test_storage_error_leaves_cursor_unchanged(self, make_engine, upload):
        upload(2)
        engine = make_engine(store=FailingSaveStore())

        with pytest.raises(StorageError):
            await engine.sync()

        assert await engine.load_cursor() is None
        assert engine.state == SyncState.ERROR

    @pytest.mark.asyncio
    async def test_sync_context_cleared_after_failure(self, make_engine, upload):
        upload(1)
        engine = make_engine(store=FailingSaveStore())

        with pytest.raises(StorageError):
            await engine.sync()

        assert sync_id_var.get() is None


# =============================================================================
# Paging and progress
# =============================================================================


class TestSyncPaging:
    @pytest.mark.asyncio
    async def test_multi_page_progress(self, make_engine, upload):
        upload(5)
        reports: list[SyncProgress] = []

        imported = await make_engine(page_size=2).sync(reports.append)

        assert imported == 5
        assert reports == [
            SyncProgress(fetched=2, decrypted=2, failed=0, done=False),
            SyncProgress(fetched=4, decrypted=4, failed=0, done=False),
            SyncProgress(fetched=5, decrypted=5, failed=0, done=True),
        ]

    @pytest.mark.asyncio
    async def test_exact_page_multiple_ends_on_empty_page(self, make_engine, upload):
        upload(4)
        reports: list[SyncProgress] = []

        await make_engine(page_size=2).sync(reports.append)

        assert reports[-1] == SyncProgress(fetched=4, decrypted=4, failed=0, done=True)
        assert len(reports) == 3

    @pytest.mark.asyncio
    async def test_empty_org_reports_done(self, make_engine):
        reports: list[SyncProgress] = []

        await make_engine().sync(reports.append)

        assert reports == [SyncProgress(fetched=0, decrypted=0, failed=0, done=True)]

    @pytest.mark.asyncio
    async def test_rows_already_in_mirror_count_as_duplicates(self, make_engine, upload, mirror):
        mirror.insert_conversation(
            make_conversation("ext-1"), "restored-1", "2026-01-01T00:00:00.000000+00:00"
        )
        upload(3)
        reports: list[SyncProgress] = []

        imported = await make_engine().sync(reports.append)

        assert imported == 2
        assert reports[-1] == SyncProgress(
            fetched=3, decrypted=2, failed=0, done=True, duplicates=1
        )
        assert mirror.count_conversations() == 3


# =============================================================================
# Concurrency
# =============================================================================


class TestSyncConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_sync_returns_zero(self, make_engine, upload, remote):
        upload(2)
        release = asyncio.Event()
        entered = asyncio.Event()

        class SlowRemote:
            async def fetch_page(self, credentials, after=None, limit=100):
                entered.set()
                await release.wait()
                return await remote.fetch_page(credentials, after=after, limit=limit)

        engine = make_engine(remote=SlowRemote())
        first = asyncio.create_task(engine.sync())
        await entered.wait()

        assert engine.is_running
        assert await engine.sync() == 0

        release.set()
        assert await first == 2
        assert not engine.is_running
