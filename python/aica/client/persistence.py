"""Durable storage for the mirror snapshot and the sync cursor.

PersistenceAdapter is the contract the sync engine depends on: save and
load opaque byte blobs under string keys. Concrete adapters:

- FileBlobStore: one file per key in a private directory, written
  atomically (temp file + replace). Primary store.
- SqliteKeyValueStore: a single-table SQLite key-value file. Fallback store.
- MemoryBlobStore: process memory only (tests, ephemeral sessions).
- FallbackBlobStore: tries the primary and falls back on failure.

CursorStore keeps the small per-organization cursor strings in a JSON file.

All adapters raise StorageError on failure. Blocking file and database I/O
runs in a worker thread so callers on the event loop are not stalled.
"""

import asyncio
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from sqlalchemy import Column, LargeBinary, MetaData, String, Table, create_engine, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from aica.client.errors import StorageError
from aica.logging import get_logger

logger = get_logger(__name__)

SNAPSHOT_KEY = "aica-sqlite-db"
CURSOR_KEY_PREFIX = "aica-last-synced-"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def cursor_key(slug: str) -> str:
    """Storage key for an organization's sync cursor."""
    return f"{CURSOR_KEY_PREFIX}{slug}"


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.match(key) or key in (".", ".."):
        raise StorageError(f"Invalid storage key: {key!r}")
    return key


def write_file_atomic(path: Path, data: bytes) -> None:
    """Write data to path via a temp file in the same directory and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


@runtime_checkable
class PersistenceAdapter(Protocol):
    """Durable byte-blob storage keyed by string."""

    async def save(self, key: str, data: bytes) -> None: ...

    async def load(self, key: str) -> bytes | None: ...

    async def delete(self, key: str) -> None: ...


class MemoryBlobStore:
    """In-process blob store. Nothing survives the process."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def save(self, key: str, data: bytes) -> None:
        self._blobs[_check_key(key)] = bytes(data)

    async def load(self, key: str) -> bytes | None:
        return self._blobs.get(_check_key(key))

    async def delete(self, key: str) -> None:
        self._blobs.pop(_check_key(key), None)


class FileBlobStore:
    """One file per key under a private directory.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a reader sees either the old or the new blob.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / _check_key(key)

    def _save_sync(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            write_file_atomic(path, data)
        except OSError as e:
            raise StorageError(f"Failed to write {path.name}: {e}") from e

    def _load_sync(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {path.name}: {e}") from e

    def _delete_sync(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {path.name}: {e}") from e

    async def save(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._save_sync, key, data)

    async def load(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._load_sync, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)


class SqliteKeyValueStore:
    """Single-table SQLite key-value file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._metadata = MetaData()
        self._table = Table(
            "kv",
            self._metadata,
            Column("key", String, primary_key=True),
            Column("value", LargeBinary, nullable=False),
        )
        self._engine = None

    def _get_engine(self):
        if self._engine is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{self.path}",
                connect_args={"check_same_thread": False},
            )
            self._metadata.create_all(self._engine)
        return self._engine

    def _save_sync(self, key: str, data: bytes) -> None:
        stmt = sqlite_insert(self._table).values(key=_check_key(key), value=data)
        stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"value": data})
        try:
            with self._get_engine().begin() as conn:
                conn.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Failed to write key {key}: {e}") from e

    def _load_sync(self, key: str) -> bytes | None:
        stmt = select(self._table.c.value).where(self._table.c.key == _check_key(key))
        try:
            with self._get_engine().connect() as conn:
                return conn.execute(stmt).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Failed to read key {key}: {e}") from e

    def _delete_sync(self, key: str) -> None:
        stmt = delete(self._table).where(self._table.c.key == _check_key(key))
        try:
            with self._get_engine().begin() as conn:
                conn.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Failed to delete key {key}: {e}") from e

    async def save(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._save_sync, key, data)

    async def load(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._load_sync, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


class FallbackBlobStore:
    """Primary store with a fallback used when the primary fails.

    At most one of the two stores holds a given key: a save that lands in
    one store deletes the key from the other, so a load can never return a
    snapshot older than the last successful save. A load checks the primary
    first and falls through to the fallback on a miss or failure.
    StorageError is raised when the primary fails and the fallback cannot
    supply the key.
    """

    def __init__(self, primary: PersistenceAdapter, fallback: PersistenceAdapter):
        self.primary = primary
        self.fallback = fallback

    async def save(self, key: str, data: bytes) -> None:
        try:
            await self.primary.save(key, data)
        except StorageError as e:
            logger.warning("primary_store_save_failed", key=key, error=e.message)
        else:
            await self._discard(self.fallback, key, "fallback_store_delete_failed")
            return

        try:
            await self.fallback.save(key, data)
        except StorageError as e:
            logger.error("fallback_store_save_failed", key=key, error=e.message)
            raise StorageError(f"All stores failed to save {key}: {e.message}") from e

        await self._discard(self.primary, key, "primary_store_delete_failed")

    async def _discard(self, store: PersistenceAdapter, key: str, event: str) -> None:
        try:
            await store.delete(key)
        except StorageError as e:
            logger.warning(event, key=key, error=e.message)

    async def load(self, key: str) -> bytes | None:
        primary_error: StorageError | None = None
        try:
            data = await self.primary.load(key)
            if data is not None:
                return data
        except StorageError as e:
            logger.warning("primary_store_load_failed", key=key, error=e.message)
            primary_error = e

        try:
            data = await self.fallback.load(key)
        except StorageError as e:
            if primary_error is not None:
                raise StorageError(f"All stores failed to load {key}: {e.message}") from e
            logger.warning("fallback_store_load_failed", key=key, error=e.message)
            return None

        if data is None and primary_error is not None:
            raise StorageError(f"Failed to load {key}: {primary_error.message}") from primary_error
        return data

    async def delete(self, key: str) -> None:
        errors = []
        for store in (self.primary, self.fallback):
            try:
                await store.delete(key)
            except StorageError as e:
                errors.append(e)
        if len(errors) == 2:
            raise StorageError(f"All stores failed to delete {key}: {errors[-1].message}")

    def close(self) -> None:
        for store in (self.primary, self.fallback):
            close = getattr(store, "close", None)
            if close is not None:
                close()


def create_default_store(directory: Path | str) -> FallbackBlobStore:
    """File store under directory/blobs with a SQLite key-value fallback."""
    directory = Path(directory)
    return FallbackBlobStore(
        primary=FileBlobStore(directory / "blobs"),
        fallback=SqliteKeyValueStore(directory / "fallback.sqlite3"),
    )


class CursorStore:
    """Per-organization sync cursors in a small JSON file.

    Keys are aica-last-synced-<slug>; values are the last imported_at
    processed. Writes replace the file atomically so a crash never leaves a
    half-written cursor. Without a path the cursors live in memory only.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        self._values: dict[str, str] = {}

    def _read_all(self) -> dict[str, str]:
        if self.path is None:
            return self._values
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageError(f"Failed to read cursor file: {e}") from e
        try:
            values = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("cursor_file_corrupt", path=str(self.path))
            return {}
        return values if isinstance(values, dict) else {}

    def _write_all(self, values: dict[str, str]) -> None:
        if self.path is None:
            self._values = values
            return
        try:
            write_file_atomic(self.path, json.dumps(values, indent=2, sort_keys=True).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"Failed to write cursor file: {e}") from e

    def _set_sync(self, slug: str, cursor: str | None) -> None:
        values = dict(self._read_all())
        if cursor is None:
            if values.pop(cursor_key(slug), None) is None:
                return
        else:
            values[cursor_key(slug)] = cursor
        self._write_all(values)

    async def get(self, slug: str) -> str | None:
        """Last successful cursor for the org, or None if never synced."""
        values = await asyncio.to_thread(self._read_all)
        return values.get(cursor_key(slug))

    async def set(self, slug: str, cursor: str) -> None:
        await asyncio.to_thread(self._set_sync, slug, cursor)

    async def clear(self, slug: str) -> None:
        await asyncio.to_thread(self._set_sync, slug, None)
