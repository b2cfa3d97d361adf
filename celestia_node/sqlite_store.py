"""Persistent header store kept in an SQLite database."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

import platformdirs

from celestia_node.store import (
    BackingStoreError,
    HashExists,
    HeightExists,
    NonContinuousAppend,
    NotFound,
    OpenFailed,
    Store,
    StoreError,
    StoredDataError,
)

logger = logging.getLogger(__name__)

HEAD_HEIGHT_KEY = "KEY.HEAD_HEIGHT"
DB_FILE_NAME = "headers.sqlite3"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS headers (
    hash BLOB PRIMARY KEY,
    data BLOB NOT NULL
);
CREATE TABLE IF NOT EXISTS height_to_hash (
    height BLOB PRIMARY KEY,
    hash BLOB NOT NULL
);
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
);
"""

Decoder = Callable[[bytes], Any]


def _height_to_key(height: int) -> bytes:
    # Big-endian keeps numeric order when keys are compared as bytes.
    return height.to_bytes(8, "big")


def _translate(error: sqlite3.Error) -> StoreError:
    if isinstance(error, sqlite3.DatabaseError) and not isinstance(
        error, (sqlite3.OperationalError, sqlite3.ProgrammingError)
    ):
        return StoredDataError(str(error))
    return BackingStoreError(str(error))


@contextlib.contextmanager
def _sqlite_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise _translate(e) from e


def _connect(directory: Path) -> sqlite3.Connection:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(directory / DB_FILE_NAME, check_same_thread=False)
        conn.executescript(_SCHEMA)
        return conn
    except (sqlite3.Error, OSError) as e:
        raise OpenFailed(str(e)) from e


class SqliteStore(Store):
    """Header store persisted in SQLite.

    Headers are written with their ``encode()`` method and read back with
    the ``decode`` callable given when the store is opened.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        decode: Decoder,
        tempdir: Optional[tempfile.TemporaryDirectory] = None,
    ) -> None:
        self._conn = conn
        self._decode = decode
        self._tempdir = tempdir
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def open(cls, network_id: str, decode: Decoder) -> SqliteStore:
        """Open the store for a network in the user's cache directory."""
        cache_dir = platformdirs.user_cache_dir("celestia", "eiger")
        if not cache_dir:
            raise OpenFailed("Unable to get system cache path to open header store")
        conn = await asyncio.to_thread(_connect, Path(cache_dir) / network_id)
        return cls(conn, decode)

    @classmethod
    async def temp(cls, decode: Decoder) -> SqliteStore:
        """Open a fresh store that is removed when closed."""
        try:
            tempdir = tempfile.TemporaryDirectory(prefix="celestia")
        except OSError as e:
            raise OpenFailed(str(e)) from e
        try:
            conn = await asyncio.to_thread(_connect, Path(tempdir.name))
        except OpenFailed:
            tempdir.cleanup()
            raise
        return cls(conn, decode, tempdir)

    @classmethod
    async def in_path(
        cls, path: Union[str, Path], decode: Decoder
    ) -> SqliteStore:
        """Open (or create) the store kept in the given directory."""
        conn = await asyncio.to_thread(_connect, Path(path))
        return cls(conn, decode)

    # Blocking helpers, run in a worker thread.

    def _read_head_height(self) -> int:
        row = self._conn.execute(
            "SELECT value FROM meta WHERE key = ?", (HEAD_HEIGHT_KEY,)
        ).fetchone()
        if row is None or len(row[0]) != 8:
            raise NotFound()
        return int.from_bytes(row[0], "big")

    def _read_hash(self, height: int) -> bytes:
        row = self._conn.execute(
            "SELECT hash FROM height_to_hash WHERE height = ?",
            (_height_to_key(height),),
        ).fetchone()
        if row is None:
            raise NotFound()
        return bytes(row[0])

    def _read_header(self, hash: bytes) -> Any:
        row = self._conn.execute(
            "SELECT data FROM headers WHERE hash = ?", (hash,)
        ).fetchone()
        if row is None:
            raise NotFound()
        try:
            return self._decode(bytes(row[0]))
        except StoreError:
            raise
        except Exception as e:
            raise StoredDataError(f"Failed to decode header: {e}") from e

    def _head_height_sync(self) -> int:
        with _sqlite_errors():
            return self._read_head_height()

    def _get_by_hash_sync(self, hash: bytes) -> Any:
        with _sqlite_errors():
            return self._read_header(hash)

    def _get_by_height_sync(self, height: int) -> Any:
        with _sqlite_errors():
            return self._read_header(self._read_hash(height))

    def _get_head_sync(self) -> Any:
        with _sqlite_errors():
            return self._read_header(self._read_hash(self._read_head_height()))

    def _has_sync(self, hash: bytes) -> bool:
        try:
            row = self._conn.execute(
                "SELECT 1 FROM headers WHERE hash = ?", (hash,)
            ).fetchone()
        except sqlite3.Error:
            return False
        return row is not None

    def _has_at_sync(self, height: int) -> bool:
        try:
            row = self._conn.execute(
                "SELECT 1 FROM height_to_hash WHERE height = ?",
                (_height_to_key(height),),
            ).fetchone()
        except (sqlite3.Error, OverflowError):
            return False
        return row is not None

    def _append_sync(self, hash: bytes, height: int, data: bytes) -> None:
        with _sqlite_errors():
            try:
                head_height = self._read_head_height()
            except NotFound:
                head_height = 0

            if head_height > 0 and height <= head_height:
                raise HeightExists(height)
            if head_height + 1 != height:
                raise NonContinuousAppend(head_height, height)

            height_key = _height_to_key(height)
            # The connection context commits on success and rolls back on error.
            with self._conn:
                inserted = self._conn.execute(
                    "INSERT OR IGNORE INTO height_to_hash (height, hash) VALUES (?, ?)",
                    (height_key, hash),
                ).rowcount
                if inserted == 0:
                    raise HeightExists(height)

                self._conn.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                    (HEAD_HEIGHT_KEY, height_key),
                )

                inserted = self._conn.execute(
                    "INSERT OR IGNORE INTO headers (hash, data) VALUES (?, ?)",
                    (hash, data),
                ).rowcount
                if inserted == 0:
                    raise HashExists(hash)

    def _flush_sync(self) -> None:
        with _sqlite_errors():
            self._conn.commit()

    # Store interface.

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    async def head_height(self) -> int:
        return await self._run(self._head_height_sync)

    async def get_by_hash(self, hash: bytes) -> Any:
        return await self._run(self._get_by_hash_sync, bytes(hash))

    async def get_by_height(self, height: int) -> Any:
        return await self._run(self._get_by_height_sync, height)

    async def get_head(self) -> Any:
        return await self._run(self._get_head_sync)

    async def has(self, hash: bytes) -> bool:
        return await self._run(self._has_sync, bytes(hash))

    async def has_at(self, height: int) -> bool:
        return await self._run(self._has_at_sync, height)

    async def append_single_unchecked(self, header: Any) -> None:
        hash = bytes(header.hash)
        height = header.height
        data = header.encode()
        await self._run(self._append_sync, hash, height, data)
        logger.debug("Inserting header %s with height %d", hash.hex(), height)

    async def flush(self) -> None:
        """Make sure everything written so far is on disk."""
        await self._run(self._flush_sync)

    def close(self) -> None:
        """Close the database; a temporary store is deleted."""
        if self._closed:
            return
        self._closed = True
        self._conn.close()
        if self._tempdir is not None:
            self._tempdir.cleanup()

    def __enter__(self) -> SqliteStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()