"""Vault session: one unlocked organization on this machine.

A VaultSession is constructed once per login (create_org or join) and owns
everything the sync engine and query callers share:

- the derived keys (held in memory only, never persisted)
- the LocalMirror handle
- the persistence adapter and cursor store
- the SyncEngine

Query callers read session.mirror directly; sync runs through
session.sync(). Call close() when done.

On-disk layout under the data directory, per organization slug:

    <data_dir>/<slug>/blobs/aica-sqlite-db     mirror snapshot (primary)
    <data_dir>/<slug>/fallback.sqlite3         key-value fallback store
    <data_dir>/<slug>/cursors.json             aica-last-synced-<slug>
"""

import asyncio
from datetime import UTC, datetime
from pathlib import Path

from aica.client.errors import StorageError, ValidationError
from aica.client.keys import derive_keys, generate_salt, hash_auth_key, validate_password
from aica.client.mirror import LocalMirror
from aica.client.models import DerivedKeys, OrgCredentials
from aica.client.persistence import (
    SNAPSHOT_KEY,
    CursorStore,
    MemoryBlobStore,
    PersistenceAdapter,
    create_default_store,
    write_file_atomic,
)
from aica.client.remote import RemoteStore
from aica.client.sync import DEFAULT_PAGE_SIZE, ProgressCallback, SyncEngine, SyncProgress
from aica.logging import get_logger
from aica.services.orgs import SLUG_PATTERN

logger = get_logger(__name__)


def validate_slug(slug: str) -> None:
    """Reject slugs the server would refuse, before deriving any keys.

    Raises:
        ValidationError: If the slug does not match ^[a-z0-9-]+$.
    """
    if not SLUG_PATTERN.match(slug):
        raise ValidationError("Slug must be lowercase alphanumeric with hyphens")


async def _derive(password: str, salt: bytes) -> DerivedKeys:
    # Argon2id with 64 MiB of memory; keep it off the event loop
    return await asyncio.to_thread(derive_keys, password, salt)


class VaultSession:
    """An unlocked organization: keys, local mirror, and sync engine."""

    def __init__(
        self,
        remote: RemoteStore,
        slug: str,
        keys: DerivedKeys,
        mirror: LocalMirror,
        store: PersistenceAdapter,
        cursors: CursorStore,
        page_size: int = DEFAULT_PAGE_SIZE,
        last_synced_at: str | None = None,
    ):
        self.remote = remote
        self.slug = slug
        self.keys = keys
        self.mirror = mirror
        self.store = store
        self.cursors = cursors
        self.credentials = OrgCredentials(slug=slug, token=hash_auth_key(keys.auth_key_material))
        self.engine = SyncEngine(
            remote=remote,
            mirror=mirror,
            store=store,
            cursors=cursors,
            credentials=self.credentials,
            encryption_key=keys.encryption_key,
            page_size=page_size,
        )
        self.last_synced_at = last_synced_at
        self.last_progress: SyncProgress | None = None

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    async def create_org(
        cls,
        remote: RemoteStore,
        name: str,
        slug: str,
        password: str,
        data_dir: Path | str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> "VaultSession":
        """Create a new organization and open a session for it.

        Raises:
            ValidationError: Short password, empty name, or bad slug.
            ConflictError: The slug is taken.
            TransportError: The server could not be reached.
        """
        validate_password(password)
        validate_slug(slug)
        if not name.strip():
            raise ValidationError("Organization name is required")

        salt = generate_salt()
        keys = await _derive(password, salt)
        org = await remote.create_org(name.strip(), slug, salt, hash_auth_key(keys.auth_key_material))
        logger.info("org_created", org_slug=org.slug)

        return await cls._open(remote, slug, keys, data_dir, page_size)

    @classmethod
    async def join(
        cls,
        remote: RemoteStore,
        slug: str,
        password: str,
        data_dir: Path | str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> "VaultSession":
        """Unlock an existing organization with its shared password.

        The password is verified against the server with a one-row fetch
        before anything local is opened.

        Raises:
            ValidationError: Short password or bad slug.
            OrgNotFoundError: No organization with this slug.
            AuthError: Wrong password.
            TransportError: The server could not be reached.
        """
        validate_password(password)
        validate_slug(slug)

        salt = await remote.get_salt(slug)
        keys = await _derive(password, salt)
        await remote.check_auth(OrgCredentials(slug=slug, token=hash_auth_key(keys.auth_key_material)))
        logger.info("org_joined", org_slug=slug)

        return await cls._open(remote, slug, keys, data_dir, page_size)

    @classmethod
    async def _open(
        cls,
        remote: RemoteStore,
        slug: str,
        keys: DerivedKeys,
        data_dir: Path | str | None,
        page_size: int,
    ) -> "VaultSession":
        if data_dir is None:
            store: PersistenceAdapter = MemoryBlobStore()
            cursors = CursorStore()
        else:
            org_dir = Path(data_dir) / slug
            store = create_default_store(org_dir)
            cursors = CursorStore(org_dir / "cursors.json")

        snapshot = await store.load(SNAPSHOT_KEY)
        try:
            mirror = LocalMirror.open(snapshot)
        except StorageError as e:
            # Start empty; the next sync resets the cursor and refetches
            logger.warning("mirror_snapshot_unusable", error=e.message)
            mirror = LocalMirror.open()

        return cls(
            remote=remote,
            slug=slug,
            keys=keys,
            mirror=mirror,
            store=store,
            cursors=cursors,
            page_size=page_size,
            last_synced_at=await cursors.get(slug),
        )

    # =========================================================================
    # Operations
    # =========================================================================

    @property
    def is_syncing(self) -> bool:
        return self.engine.is_running

    async def sync(self, on_progress: ProgressCallback | None = None) -> int:
        """Sync from the server; see SyncEngine.sync.

        last_synced_at is set to the current time when the run reports done.
        """

        def track(progress: SyncProgress) -> None:
            self.last_progress = progress
            if progress.done:
                self.last_synced_at = datetime.now(UTC).isoformat()
            if on_progress is not None:
                on_progress(progress)

        return await self.engine.sync(track)

    async def backup(self, path: Path | str) -> int:
        """Write the mirror snapshot to a file the user chose.

        Returns:
            Bytes written.

        Raises:
            StorageError: The file could not be written.
        """
        path = Path(path)
        data = self.mirror.export_snapshot()
        try:
            await asyncio.to_thread(write_file_atomic, path, data)
        except OSError as e:
            raise StorageError(f"Failed to write backup {path.name}: {e}") from e
        logger.info("backup_written", bytes=len(data))
        return len(data)

    def close(self) -> None:
        self.mirror.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
