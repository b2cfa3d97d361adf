"""Syncer errors, shared data types, the P2P interface it relies on, and initialisation."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Optional

from celestia_node.store import Store
from celestia_node.utils import WatchReceiver

logger = logging.getLogger(__name__)


class SyncerError(Exception):
    """Base class for syncer failures."""


class WorkerDied(SyncerError):
    """The background worker is no longer running."""

    def __init__(self) -> None:
        super().__init__("Worker died")


class ChannelClosedUnexpectedly(SyncerError):
    """A reply channel was dropped before an answer arrived."""

    def __init__(self) -> None:
        super().__init__("Channel closed unexpectedly")


@dataclass(frozen=True)
class SyncingInfo:
    """Heights known locally and announced by the network."""

    local_head: int
    subjective_head: int


@dataclass
class PeerTrackerInfo:
    """Counts of connected peers."""

    num_connected_peers: int = 0
    num_connected_trusted_peers: int = 0


class P2pLike(abc.ABC):
    """The part of a P2P node that the syncer talks to."""

    @abc.abstractmethod
    async def wait_connected_trusted(self) -> None:
        """Wait until at least one trusted peer is connected."""

    @abc.abstractmethod
    async def get_header(self, hash: bytes) -> Any:
        """Request the header with the given hash."""

    @abc.abstractmethod
    async def get_header_by_height(self, height: int) -> Any:
        """Request the header at the given height."""

    @abc.abstractmethod
    async def get_head_header(self) -> Any:
        """Request the current network head."""

    @abc.abstractmethod
    async def init_header_sub(self, head: Any) -> None:
        """Start header gossip from the given head."""

    @abc.abstractmethod
    async def get_verified_headers_range(self, from_header: Any, amount: int) -> list:
        """Request and verify `amount` headers following `from_header`."""

    @abc.abstractmethod
    def header_sub_watcher(self) -> WatchReceiver[Optional[Any]]:
        """Receiver of the newest header announced by gossip."""

    @abc.abstractmethod
    def peer_tracker_info_watcher(self) -> WatchReceiver[PeerTrackerInfo]:
        """Receiver of peer connection counts."""

    def peer_tracker_info(self) -> PeerTrackerInfo:
        """Current peer connection counts."""
        return self.peer_tracker_info_watcher().borrow()


async def try_init(p2p: P2pLike, store: Store, genesis_hash: Optional[bytes]) -> int:
    """Make sure the store has a genesis, start header gossip and return the network head height."""
    await p2p.wait_connected_trusted()

    try:
        await store.head_height()
    except Exception:
        if genesis_hash is not None:
            genesis = await p2p.get_header(genesis_hash)
        else:
            logger.warning("Genesis hash is not set, requesting height 1.")
            genesis = await p2p.get_header_by_height(1)
        await store.append_single_unchecked(genesis)

    network_head = await p2p.get_head_header()
    network_head_height = network_head.height

    await p2p.init_header_sub(network_head)

    return network_head_height