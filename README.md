# celestia_node

Asyncio building blocks for a Celestia light node: header stores, a header
syncer, a JSON-RPC client and a few JSON serializers and helpers.

## What is in the package

| Module | Contents |
| --- | --- |
| `celestia_node.store` | The `Store` interface, `InMemoryStore`, and the `StoreError` family |
| `celestia_node.sqlite_store` | `SqliteStore`, a `Store` kept in an SQLite database |
| `celestia_node.sync_init` | `SyncingInfo`, `PeerTrackerInfo`, the `P2pLike` interface, `try_init`, and the `SyncerError` family |
| `celestia_node.syncer` | `Syncer`, which keeps a store in step with the network |
| `celestia_node.rpc` | `RpcClient`, `RpcError`, `ProtocolNotSupported` |
| `celestia_node.serializers` | `Any`, `Timestamp` and their optional JSON forms |
| `celestia_node.utils` | Protocol id and topic helpers, `multiaddr_peer_id`, `validate_headers`, `Watch` / `WatchReceiver` |

The only runtime dependency is `platformdirs`. The tests use `pytest` and
`pytest-asyncio`, which the `test` extra installs.

## Header stores

A header is any object with a `height` (int) and a `hash` (bytes) attribute.
Stores keep a chain that is contiguous by height and starts at height 1.

```python
import asyncio
from dataclasses import dataclass

from celestia_node.store import InMemoryStore, NotFound, NonContinuousAppend


@dataclass(frozen=True)
class Header:
    height: int
    hash: bytes


async def main():
    store = InMemoryStore()
    genesis = Header(1, bytes(32))
    await store.append_single_unchecked(genesis)

    assert await store.head_height() == 1
    assert await store.get_by_height(1) == genesis
    assert await store.get_by_hash(genesis.hash) == genesis

    try:
        await store.get_by_height(2)
    except NotFound:
        pass

    try:
        await store.append_single_unchecked(Header(3, b"\x03" * 32))
    except NonContinuousAppend as e:
        print(e.head_height, e.height)  # 1 3


asyncio.run(main())
```

Every store has the async methods `get_head`, `get_by_hash`, `get_by_height`,
`head_height`, `has`, `has_at`, `append_single_unchecked` and
`append_unchecked`. `append_unchecked` appends a sequence in order and stops
at the first failure.

Appending raises:

- `HeightExists` when the height is at or below the current head;
- `NonContinuousAppend` when the height is not exactly head + 1 (the head of
  an empty store counts as 0);
- `HashExists` when a header with the same hash is already stored.

Reads raise `NotFound`. All of these are subclasses of `StoreError`, as are
`LostHeight`, `LostHash`, `OpenFailed`, `StoredDataError`,
`BackingStoreError` and `ExecutorError`.

`InMemoryStore` also has synchronous `get_head_height`, `contains_hash` and
`contains_height`. `copy()` returns an independent store that holds the same
headers.

### SqliteStore

`SqliteStore` writes each header with the header's `encode()` method. It
reads the bytes back with the `decode` callable passed when the store is
opened. All three constructors are async class methods:

- `SqliteStore.open(network_id, decode)` opens the database in the user
  cache directory (`platformdirs`, application `celestia`), in a
  subdirectory named after the network.
- `SqliteStore.temp(decode)` creates a fresh store in a temporary directory.
  The directory is removed when the store is closed.
- `SqliteStore.in_path(path, decode)` opens or creates the store in the
  given directory.

The database is written to `headers.sqlite3`. `flush()` commits pending
writes. `close()` closes the database. The store can also be used as a
`with` block, which closes it on exit. A store reopened on the same path sees
every header appended before.

## Syncing

`Syncer` runs a background task on the running event loop. It talks to the
network through an object that implements `P2pLike`. The methods it calls
are:

- `wait_connected_trusted`
- `get_header`
- `get_header_by_height`
- `get_head_header`
- `init_header_sub`
- `get_verified_headers_range`
- `header_sub_watcher` and `peer_tracker_info_watcher`, which return
  `WatchReceiver`s

```python
from celestia_node.syncer import Syncer

syncer = Syncer.start(p2p, store, genesis_hash)  # inside a running loop
info = await syncer.info()
print(info.local_head, info.subjective_head)
syncer.stop()
```

How the syncer works:

- **Initialisation.** The syncer waits for a trusted peer. If the store is
  empty, it fetches the genesis header and stores it. It fetches the genesis
  by `genesis_hash`, or by height 1 when no hash is given. It then fetches
  the network head and starts header gossip from it. This step is
  `sync_init.try_init`. On failure it is retried with a randomised
  exponential backoff, capped at 60 seconds.
- **Batches.** While peers are connected, the syncer fetches missing headers
  in batches of at most 512. It runs one batch at a time.
- **Gossip.** Heads announced by gossip raise the subjective head. A head
  that directly follows the store's head is appended at once, unless a batch
  is in progress.
- **Disconnection.** When all peers disconnect, the syncer cancels the
  current batch and goes back to initialisation.
- **Progress log.** Progress is logged at start-up and every 60 seconds.

`Syncer.info()` raises `WorkerDied` once the worker has stopped. It raises
`ChannelClosedUnexpectedly` if the worker stops before answering. `stop()`
signals the worker. Using the syncer in `async with` calls `stop()` on exit.

## JSON-RPC client

`RpcClient(transport)` wraps a coroutine function
`transport(method, params)`. The transport sends one request and returns its
decoded result.

The client has one method for each call of the node's `blob`, `header`,
`p2p`, `share` and `state` modules. Some examples:

- `blob_get`, `blob_submit`
- `header_get_by_height`, `header_wait_for_height`
- `p2p_peers`, `p2p_connect`
- `share_get_shares_by_namespace`
- `state_balance`, `state_transfer`

Arguments are passed through in their JSON form, and results are returned as
decoded JSON.

Some calls discard whatever the node answers:

- `p2p_block_peer`
- `p2p_close_peer`
- `p2p_connect`
- `p2p_protect`
- `p2p_unblock_peer`

`state_undelegate` calls the method name `Undelegate`.

Any exception raised by the transport is re-raised as `RpcError`.
`ProtocolNotSupported`, a subclass of `RpcError`, is available for transports
to report an unsupported or missing URL scheme.

## Serializers

`serialize_option_any` turns an `Any(type_url, value)` into
`{"type_url": ..., "value": <base64>}`, and `None` into `None`.
`deserialize_option_any` reverses this.

`serialize_option_timestamp` writes a `Timestamp(seconds, nanos)` as an
RFC 3339 string in UTC, such as `1970-01-01T00:00:01.5Z`. Trailing zeros of
the fraction are dropped. `deserialize_option_timestamp` parses such strings,
including ones with numeric offsets. Invalid input raises `ValueError`.

## Utilities

- `protocol_id(network, protocol)` and `gossipsub_ident_topic(network, topic)`
  build `/<network>/<name>`, trimming surrounding slashes.
- `celestia_protocol_id` builds `/celestia/<network>/<protocol>`.
- `multiaddr_peer_id` returns the value of the `/p2p/` or `/ipfs/` component
  of a textual multiaddr, or `None` when there is none.
- `validate_headers` calls `validate()` on each header and yields to the
  event loop after every 4 headers.
- `Watch` holds a single latest value. Its receivers, made with
  `subscribe()`, can `await changed()`.

## What the package does not do

- **No P2P networking.** There are no transports, no peer discovery, no
  header exchange and no gossip. The syncer needs a `P2pLike` implementation
  supplied by the caller.
- **No RPC connection.** `RpcClient` has no HTTP or WebSocket connection of
  its own and no authentication. The caller provides the transport.
  Subscriptions such as header subscribe are not covered.
- **No node or command.** There is no node that ties these parts together,
  and no command-line program.