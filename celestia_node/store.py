"""Header stores: the common interface, errors and an in-memory implementation."""

from __future__ import annotations

import abc
import logging
import threading
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)


class Header(Protocol):
    """What a store needs to know about a header."""

    @property
    def height(self) -> int: ...

    @property
    def hash(self) -> bytes: ...


class StoreError(Exception):
    """Base class for store failures."""


class NotFound(StoreError):
    """The requested header is not in the store."""

    def __init__(self) -> None:
        super().__init__("Header not found in store")


class HeightExists(StoreError):
    """A header at this height is already stored."""

    def __init__(self, height: int) -> None:
        super().__init__(f"Header with height {height} already exists in the store")
        self.height = height


class HashExists(StoreError):
    """A header with this hash is already stored."""

    def __init__(self, hash: bytes) -> None:
        super().__init__(f"Hash {hash.hex()} already exists in the store")
        self.hash = hash


class NonContinuousAppend(StoreError):
    """The appended header does not follow the current head."""

    def __init__(self, head_height: int, height: int) -> None:
        super().__init__(
            f"Failed to append header at height {height}, current head {head_height}"
        )
        self.head_height = head_height
        self.height = height


class LostHeight(StoreError):
    """The height index points at nothing."""

    def __init__(self, height: int) -> None:
        super().__init__(f"Store is corrupted: missing header at height {height}")
        self.height = height


class LostHash(StoreError):
    """The hash index points at nothing."""

    def __init__(self, hash: bytes) -> None:
        super().__init__(f"Store is corrupted: missing header with hash {hash.hex()}")
        self.hash = hash


class OpenFailed(StoreError):
    """The backing storage could not be opened."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to open the store: {message}")
        self.message = message


class StoredDataError(StoreError):
    """Data in the backing storage is unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Stored data is inconsistent or invalid: {message}")
        self.message = message


class BackingStoreError(StoreError):
    """The backing storage reported an error."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Persistent storage reported unrecoverable error: {message}")
        self.message = message


class ExecutorError(StoreError):
    """A background task running a store operation failed."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Received error from executor: {message}")
        self.message = message


class Store(abc.ABC):
    """Asynchronous store of headers, indexed by hash and by height."""

    @abc.abstractmethod
    async def get_head(self) -> Header:
        """Return the header with the highest height."""

    @abc.abstractmethod
    async def get_by_hash(self, hash: bytes) -> Header:
        """Return the header with the given hash."""

    @abc.abstractmethod
    async def get_by_height(self, height: int) -> Header:
        """Return the header at the given height."""

    @abc.abstractmethod
    async def head_height(self) -> int:
        """Return the height of the head; raise NotFound if the store is empty."""

    @abc.abstractmethod
    async def has(self, hash: bytes) -> bool:
        """Whether a header with the given hash is stored."""

    @abc.abstractmethod
    async def has_at(self, height: int) -> bool:
        """Whether a header at the given height is stored."""

    @abc.abstractmethod
    async def append_single_unchecked(self, header: Header) -> None:
        """Append one header directly after the head, without verification."""

    async def append_unchecked(self, headers: Iterable[Header]) -> None:
        """Append headers in order, stopping at the first failure."""
        for header in headers:
            await self.append_single_unchecked(header)


class InMemoryStore(Store):
    """Store that keeps headers in dictionaries."""

    def __init__(self) -> None:
        self._headers: dict[bytes, Header] = {}
        self._height_to_hash: dict[int, bytes] = {}
        self._head_height = 0
        self._lock = threading.Lock()

    def get_head_height(self) -> int:
        """Height of the head; raise NotFound if the store is empty."""
        height = self._head_height
        if height == 0:
            raise NotFound()
        return height

    def contains_hash(self, hash: bytes) -> bool:
        return hash in self._headers

    def contains_height(self, height: int) -> bool:
        try:
            head_height = self.get_head_height()
        except NotFound:
            return False
        return height <= head_height

    def _get_by_height(self, height: int) -> Header:
        if not self.contains_height(height):
            raise NotFound()
        hash = self._height_to_hash.get(height)
        if hash is None:
            raise LostHeight(height)
        header = self._headers.get(hash)
        if header is None:
            raise LostHash(hash)
        return header

    async def get_head(self) -> Header:
        return self._get_by_height(self.get_head_height())

    async def get_by_hash(self, hash: bytes) -> Header:
        try:
            return self._headers[hash]
        except KeyError:
            raise NotFound() from None

    async def get_by_height(self, height: int) -> Header:
        return self._get_by_height(height)

    async def head_height(self) -> int:
        return self.get_head_height()

    async def has(self, hash: bytes) -> bool:
        return self.contains_hash(hash)

    async def has_at(self, height: int) -> bool:
        return self.contains_height(height)

    async def append_single_unchecked(self, header: Header) -> None:
        hash = header.hash
        height = header.height
        with self._lock:
            head_height = self._head_height

            if head_height > 0 and height <= head_height:
                raise HeightExists(height)
            if head_height + 1 != height:
                raise NonContinuousAppend(head_height, height)
            if hash in self._headers:
                raise HashExists(hash)
            if height in self._height_to_hash:
                raise HeightExists(height)

            logger.debug("Inserting header %s with height %d", hash.hex(), height)
            self._headers[hash] = header
            self._height_to_hash[height] = hash
            self._head_height = height

    def copy(self) -> InMemoryStore:
        """Return an independent store holding the same headers."""
        other = InMemoryStore()
        with self._lock:
            other._headers = dict(self._headers)
            other._height_to_hash = dict(self._height_to_hash)
            other._head_height = self._head_height
        return other