"""Background header synchronisation between the network and a local store."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional

from celestia_node.store import Store, StoreError
from celestia_node.sync_init import (
    ChannelClosedUnexpectedly,
    P2pLike,
    SyncingInfo,
    WorkerDied,
    try_init,
)

logger = logging.getLogger(__name__)

MAX_HEADERS_IN_BATCH = 512
TRY_INIT_BACKOFF_MAX_INTERVAL = 60.0
REPORT_INTERVAL = 60.0
_COMMAND_QUEUE_SIZE = 16


def _exponential_backoff(
    initial: float = 0.5,
    multiplier: float = 1.5,
    randomization: float = 0.5,
    max_interval: float = TRY_INIT_BACKOFF_MAX_INTERVAL,
) -> Iterator[float]:
    """Endless sequence of randomised, exponentially growing delays."""
    interval = initial
    while True:
        delta = randomization * interval
        yield random.uniform(interval - delta, interval + delta)
        interval = min(interval * multiplier, max_interval)


@dataclass
class _GetInfo:
    respond_to: asyncio.Future


@dataclass
class _Ongoing:
    start: int
    end: int
    task: asyncio.Future


def _fail_command(cmd: _GetInfo) -> None:
    if not cmd.respond_to.done():
        cmd.respond_to.set_exception(ChannelClosedUnexpectedly())


class _Worker:
    """Runs the connecting and connected event loops until cancelled."""

    def __init__(
        self,
        p2p: P2pLike,
        store: Store,
        genesis_hash: Optional[bytes],
        cancel: asyncio.Event,
        commands: asyncio.Queue,
    ) -> None:
        self._p2p = p2p
        self._store = store
        self._genesis_hash = genesis_hash
        self._cancel = cancel
        self._commands = commands
        self._header_sub_watcher = p2p.header_sub_watcher()
        self._headers: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._subjective_head_height: Optional[int] = None
        self._ongoing: Optional[_Ongoing] = None
        self._tasks: dict[str, asyncio.Future] = {}

    async def run(self) -> None:
        try:
            while not self._cancel.is_set():
                await self._connecting_event_loop()
                if self._cancel.is_set():
                    break
                await self._connected_event_loop()
        finally:
            self._shutdown()
        logger.debug("Syncer stopped")

    def _shutdown(self) -> None:
        for name, task in self._tasks.items():
            if (
                name == "cmd"
                and task.done()
                and not task.cancelled()
                and task.exception() is None
            ):
                _fail_command(task.result())
            else:
                task.cancel()
        self._tasks.clear()
        if self._ongoing is not None:
            self._ongoing.task.cancel()
            self._ongoing = None
        while True:
            try:
                cmd = self._commands.get_nowait()
            except asyncio.QueueEmpty:
                break
            _fail_command(cmd)

    async def _next_event(
        self, sources: dict[str, Callable[[], Awaitable[Any]]]
    ) -> tuple[str, Any]:
        """Wait for the first source to produce a value; earlier sources win ties."""
        while True:
            for name, factory in sources.items():
                if name not in self._tasks:
                    self._tasks[name] = asyncio.ensure_future(factory())
            await asyncio.wait(
                [self._tasks[name] for name in sources],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for name in sources:
                task = self._tasks[name]
                if not task.done():
                    continue
                del self._tasks[name]
                if task.cancelled():
                    continue
                error = task.exception()
                if error is not None:
                    logger.warning("Syncer event source %s failed: %s", name, error)
                    continue
                return name, task.result()

    def _drop_tasks(self, *names: str) -> None:
        for name in names:
            task = self._tasks.pop(name, None)
            if task is not None:
                task.cancel()

    async def _connecting_event_loop(self) -> None:
        """Wait for a trusted peer and the network head, while serving commands."""
        logger.debug("Entering connecting_event_loop")
        await self._report()

        sources: dict[str, Callable[[], Awaitable[Any]]] = {
            "cancel": self._cancel.wait,
            "report": lambda: asyncio.sleep(REPORT_INTERVAL),
            "try_init": self._try_init_with_backoff,
            "cmd": self._commands.get,
        }
        try:
            while True:
                name, value = await self._next_event(sources)
                if name == "cancel":
                    break
                if name == "report":
                    await self._report()
                elif name == "try_init":
                    logger.info("Setting initial subjective head to %d", value)
                    self._subjective_head_height = value
                    break
                elif name == "cmd":
                    await self._on_cmd(value)
        finally:
            self._drop_tasks("report", "try_init")

    async def _connected_event_loop(self) -> None:
        """Fetch batches, follow header gossip and serve commands while peers are connected."""
        logger.debug("Entering connected_event_loop")
        peers = self._p2p.peer_tracker_info_watcher()

        if peers.borrow().num_connected_peers == 0:
            logger.warning("All peers disconnected")
            return

        await self._fetch_next_batch()
        await self._report()

        sources: dict[str, Callable[[], Awaitable[Any]]] = {
            "cancel": self._cancel.wait,
            "peers": peers.changed,
            "report": lambda: asyncio.sleep(REPORT_INTERVAL),
            "header_sub": self._header_sub_watcher.changed,
            "cmd": self._commands.get,
            "headers": self._headers.get,
        }
        try:
            while True:
                name, value = await self._next_event(sources)
                if name == "cancel":
                    break
                if name == "peers":
                    if peers.borrow().num_connected_peers == 0:
                        logger.warning("All peers disconnected")
                        break
                elif name == "report":
                    await self._report()
                elif name == "header_sub":
                    await self._on_header_sub_message()
                    await self._fetch_next_batch()
                elif name == "cmd":
                    await self._on_cmd(value)
                elif name == "headers":
                    await self._on_fetch_next_batch_result(value)
                    await self._fetch_next_batch()
        finally:
            self._drop_tasks("peers", "report")
            if self._ongoing is not None:
                ongoing, self._ongoing = self._ongoing, None
                logger.warning(
                    "Cancelling fetching of [%d, %d]", ongoing.start, ongoing.end
                )
                ongoing.task.cancel()

    async def _syncing_info(self) -> SyncingInfo:
        try:
            local_head = await self._store.head_height()
        except StoreError:
            local_head = 0
        return SyncingInfo(
            local_head=local_head,
            subjective_head=self._subjective_head_height or 0,
        )

    async def _report(self) -> None:
        info = await self._syncing_info()
        ongoing = (
            f"[{self._ongoing.start}, {self._ongoing.end}]"
            if self._ongoing is not None
            else "None"
        )
        logger.info(
            "syncing: %d/%d, ongoing batch: %s",
            info.local_head,
            info.subjective_head,
            ongoing,
        )

    async def _try_init_with_backoff(self) -> int:
        delays = _exponential_backoff()
        while True:
            try:
                return await try_init(self._p2p, self._store, self._genesis_hash)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                delay = next(delays)
                logger.warning(
                    "Initialization of subjective head failed: %s. "
                    "Trying again in %.2fs.",
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

    async def _on_cmd(self, cmd: _GetInfo) -> None:
        info = await self._syncing_info()
        if not cmd.respond_to.done():
            cmd.respond_to.set_result(info)

    async def _on_header_sub_message(self) -> None:
        # Ignore gossip until the subjective head is known.
        if self._subjective_head_height is None:
            return

        new_head = self._header_sub_watcher.borrow()
        if new_head is None:
            return

        new_head_height = new_head.height

        # Do not interfere with an ongoing batch.
        if self._ongoing is None:
            try:
                store_head_height = await self._store.head_height()
            except StoreError:
                store_head_height = None
            if store_head_height is not None and store_head_height + 1 == new_head_height:
                # Gossiped headers are already verified.
                try:
                    await self._store.append_single_unchecked(new_head)
                except StoreError:
                    pass
                else:
                    logger.info("Added header %d from HeaderSub", new_head_height)

        self._subjective_head_height = new_head_height

    async def _fetch_next_batch(self) -> None:
        # Batches are never run in parallel; the P2P layer parallelises a batch itself.
        if self._ongoing is not None:
            return
        if self._subjective_head_height is None:
            return
        try:
            local_head = await self._store.get_head()
        except StoreError:
            return

        amount = min(
            max(self._subjective_head_height - local_head.height, 0),
            MAX_HEADERS_IN_BATCH,
        )
        if amount == 0:
            return

        if self._p2p.peer_tracker_info().num_connected_peers == 0:
            # Recovered by going back to the connecting loop.
            return

        start = local_head.height + 1
        end = start + amount - 1
        task = asyncio.ensure_future(self._fetch_batch(local_head, amount))
        self._ongoing = _Ongoing(start=start, end=end, task=task)
        logger.info("Fetching batch %d until %d", start, end)

    async def _fetch_batch(self, local_head: Any, amount: int) -> None:
        result: Any
        try:
            result = await self._p2p.get_verified_headers_range(local_head, amount)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = e
        await self._headers.put(result)

    async def _on_fetch_next_batch_result(self, result: Any) -> None:
        ongoing = self._ongoing
        if ongoing is None:
            logger.warning(
                "No batch was scheduled, however result was received. Discarding it."
            )
            return
        self._ongoing = None

        if isinstance(result, BaseException):
            logger.warning(
                "Failed to receive batch %d until %d: %s",
                ongoing.start,
                ongoing.end,
                result,
            )
            return

        # Headers were verified by the P2P layer.
        try:
            await self._store.append_unchecked(result)
        except StoreError as e:
            logger.warning(
                "Failed to store batch %d until %d: %s", ongoing.start, ongoing.end, e
            )


class Syncer:
    """Keeps a store in step with the network head using a background worker."""

    def __init__(
        self,
        worker: asyncio.Future,
        commands: asyncio.Queue,
        cancel: asyncio.Event,
    ) -> None:
        self._worker = worker
        self._commands = commands
        self._cancel = cancel

    @classmethod
    def start(
        cls, p2p: P2pLike, store: Store, genesis_hash: Optional[bytes] = None
    ) -> Syncer:
        """Start the worker on the running event loop."""
        loop = asyncio.get_running_loop()
        cancel = asyncio.Event()
        commands: asyncio.Queue = asyncio.Queue(maxsize=_COMMAND_QUEUE_SIZE)
        worker = _Worker(p2p, store, genesis_hash, cancel, commands)
        task = loop.create_task(worker.run())
        return cls(task, commands, cancel)

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._cancel.set()

    async def info(self) -> SyncingInfo:
        """Ask the worker for the current local and subjective heads."""
        if self._worker.done():
            raise WorkerDied()

        respond_to = asyncio.get_running_loop().create_future()
        put = asyncio.ensure_future(self._commands.put(_GetInfo(respond_to)))
        await asyncio.wait({put, self._worker}, return_when=asyncio.FIRST_COMPLETED)
        if not put.done():
            put.cancel()
            raise WorkerDied()

        await asyncio.wait(
            {respond_to, self._worker}, return_when=asyncio.FIRST_COMPLETED
        )
        if not respond_to.done():
            respond_to.cancel()
            raise ChannelClosedUnexpectedly()
        return respond_to.result()

    async def __aenter__(self) -> Syncer:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.stop()