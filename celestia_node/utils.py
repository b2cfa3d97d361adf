"""Protocol naming, address helpers, header validation and a watch channel."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

VALIDATIONS_PER_YIELD = 4

T = TypeVar("T")

# Multiaddr protocols that are written without a value.
_VALUELESS_PROTOCOLS = frozenset(
    {
        "http",
        "https",
        "noise",
        "p2p-circuit",
        "p2p-webrtc-direct",
        "p2p-webrtc-star",
        "p2p-websocket-star",
        "quic",
        "quic-v1",
        "tls",
        "udt",
        "utp",
        "webrtc",
        "webrtc-direct",
        "webtransport",
        "ws",
        "wss",
    }
)


def protocol_id(network: str, protocol: str) -> str:
    """Build a stream protocol id of the form /<network>/<protocol>."""
    network = network.strip("/")
    protocol = protocol.strip("/")
    return f"/{network}/{protocol}"


def celestia_protocol_id(network: str, protocol: str) -> str:
    """Build a stream protocol id under the /celestia/<network> prefix."""
    network = network.strip("/")
    return protocol_id(f"/celestia/{network}", protocol)


def gossipsub_ident_topic(network: str, topic: str) -> str:
    """Build a gossipsub topic name of the form /<network>/<topic>."""
    network = network.strip("/")
    topic = topic.strip("/")
    return f"/{network}/{topic}"


def multiaddr_peer_id(multiaddr: str) -> Optional[str]:
    """Return the peer id carried by a textual multiaddr, if any."""
    parts = iter(multiaddr.strip("/").split("/"))
    for name in parts:
        if not name or name in _VALUELESS_PROTOCOLS:
            continue
        if name == "unix":
            return None
        value = next(parts, None)
        if value is None:
            raise ValueError(f"Protocol {name!r} is missing its value in {multiaddr!r}")
        if name in ("p2p", "ipfs"):
            return value
    return None


async def validate_headers(headers: Iterable[Any]) -> None:
    """Validate every header, yielding to the event loop between chunks."""
    chunk: list[Any] = []
    for header in headers:
        chunk.append(header)
        if len(chunk) == VALIDATIONS_PER_YIELD:
            for item in chunk:
                item.validate()
            chunk.clear()
            await asyncio.sleep(0)
    if chunk:
        for item in chunk:
            item.validate()
        await asyncio.sleep(0)


class Watch(Generic[T]):
    """Single-value channel: holds the latest value and wakes its receivers."""

    def __init__(self, initial: T = None) -> None:  # type: ignore[assignment]
        self._value = initial
        self._version = 0
        self._waiters: set[asyncio.Future[None]] = set()

    def borrow(self) -> T:
        """Return the current value."""
        return self._value

    def _notify(self) -> None:
        self._version += 1
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()

    def send_replace(self, value: T) -> T:
        """Store a new value, wake receivers and return the old value."""
        old = self._value
        self._value = value
        self._notify()
        return old

    def send_modify(self, func: Callable[[T], Optional[T]]) -> None:
        """Let func change the value in place (or return a new one), then wake receivers."""
        result = func(self._value)
        if result is not None:
            self._value = result
        self._notify()

    def subscribe(self) -> WatchReceiver[T]:
        """Return a receiver that has seen the current value."""
        return WatchReceiver(self)


class WatchReceiver(Generic[T]):
    """Receiving side of a Watch."""

    def __init__(self, watch: Watch[T]) -> None:
        self._watch = watch
        self._seen_version = watch._version

    def borrow(self) -> T:
        """Return the current value without marking it seen."""
        return self._watch._value

    async def changed(self) -> None:
        """Wait until a value newer than the last seen one is sent, then mark it seen."""
        watch = self._watch
        while watch._version == self._seen_version:
            waiter = asyncio.get_running_loop().create_future()
            watch._waiters.add(waiter)
            try:
                await waiter
            finally:
                watch._waiters.discard(waiter)
        self._seen_version = watch._version