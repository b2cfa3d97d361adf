"""JSON-RPC client for the blob, header, p2p, share and state modules of a node.

Arguments are sent in their JSON form and results are returned as decoded
JSON; the client itself is independent of the transport that carries calls.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Sequence

Transport = Callable[[str, list], Awaitable[Any]]


class RpcError(Exception):
    """A call to the node failed."""


class ProtocolNotSupported(RpcError):
    """The URL scheme is not supported or is missing."""

    def __init__(self, protocol: str) -> None:
        super().__init__(f"Protocol not supported or missing: {protocol}")
        self.protocol = protocol


class RpcClient:
    """Typed wrapper over a transport that performs JSON-RPC calls.

    ``transport(method, params)`` must send one request and return its result.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def _call(self, method: str, *params: Any) -> Any:
        try:
            return await self._transport(method, list(params))
        except RpcError:
            raise
        except Exception as e:
            raise RpcError(str(e)) from e

    async def _call_no_result(self, method: str, *params: Any) -> None:
        # The node may answer these without a result field, so the reply is ignored.
        await self._call(method, *params)

    # Blob

    async def blob_get(self, height: int, namespace: Any, commitment: Any) -> Any:
        """Retrieve the blob by commitment under the given namespace and height."""
        return await self._call("blob.Get", height, namespace, commitment)

    async def blob_get_all(self, height: int, namespaces: Sequence[Any]) -> Any:
        """Return all blobs under the given namespaces and height."""
        return await self._call("blob.GetAll", height, list(namespaces))

    async def blob_get_proof(self, height: int, namespace: Any, commitment: Any) -> Any:
        """Retrieve proofs in the given namespace at the given height by commitment."""
        return await self._call("blob.GetProof", height, namespace, commitment)

    async def blob_included(
        self, height: int, namespace: Any, proof: Any, commitment: Any
    ) -> bool:
        """Whether a commitment is included at the height under the namespace."""
        return await self._call("blob.Included", height, namespace, proof, commitment)

    async def blob_submit(self, blobs: Sequence[Any], opts: Any) -> int:
        """Submit blobs and return the height in which they were included."""
        return await self._call("blob.Submit", list(blobs), opts)

    # Header

    async def header_get_by_hash(self, hash: Any) -> Any:
        """Return the header with the given hash from the node's store."""
        return await self._call("header.GetByHash", hash)

    async def header_get_by_height(self, height: int) -> Any:
        """Return the header at the given height if available."""
        return await self._call("header.GetByHeight", height)

    async def header_get_range_by_height(self, from_header: Any, to: int) -> Any:
        """Return the headers after from_header up to (not including) height to."""
        return await self._call("header.GetRangeByHeight", from_header, to)

    async def header_local_head(self) -> Any:
        """Return the header of the local chain head."""
        return await self._call("header.LocalHead")

    async def header_network_head(self) -> Any:
        """Return the syncer's view of the network head."""
        return await self._call("header.NetworkHead")

    async def header_sync_state(self) -> Any:
        """Return the current state of the header syncer."""
        return await self._call("header.SyncState")

    async def header_sync_wait(self) -> None:
        """Block until the header syncer reaches the network head."""
        await self._call("header.SyncWait")

    async def header_wait_for_height(self, height: int) -> Any:
        """Block until the header at the given height has been processed."""
        return await self._call("header.WaitForHeight", height)

    # P2P

    async def p2p_bandwidth_for_peer(self, peer_id: Any) -> Any:
        """Bandwidth metrics for all traffic with the given peer."""
        return await self._call("p2p.BandwidthForPeer", peer_id)

    async def p2p_bandwidth_for_protocol(self, protocol_id: str) -> Any:
        """Bandwidth metrics for the given protocol."""
        return await self._call("p2p.BandwidthForProtocol", protocol_id)

    async def p2p_bandwidth_stats(self) -> Any:
        """Bandwidth metrics for all traffic of the local peer."""
        return await self._call("p2p.BandwidthStats")

    async def p2p_block_peer(self, peer_id: Any) -> None:
        """Add a peer to the set of blocked peers."""
        await self._call_no_result("p2p.BlockPeer", peer_id)

    async def p2p_close_peer(self, peer_id: Any) -> None:
        """Close the connection to a peer."""
        await self._call_no_result("p2p.ClosePeer", peer_id)

    async def p2p_connect(self, address: Any) -> None:
        """Ensure there is a connection to the given peer."""
        await self._call_no_result("p2p.Connect", address)

    async def p2p_connectedness(self, peer_id: Any) -> Any:
        """Connection state with the given peer."""
        return await self._call("p2p.Connectedness", peer_id)

    async def p2p_info(self) -> Any:
        """Address information about the host."""
        return await self._call("p2p.Info")

    async def p2p_is_protected(self, peer_id: Any, tag: str) -> bool:
        """Whether the peer is protected under the tag."""
        return await self._call("p2p.IsProtected", peer_id, tag)

    async def p2p_list_blocked_peers(self) -> Any:
        """List of blocked peers."""
        return await self._call("p2p.ListBlockedPeers")

    async def p2p_nat_status(self) -> Any:
        """Current NAT status."""
        return await self._call("p2p.NATStatus")

    async def p2p_peer_info(self, peer_id: Any) -> Any:
        """What the peerstore knows about the given peer."""
        return await self._call("p2p.PeerInfo", peer_id)

    async def p2p_peers(self) -> Any:
        """Connected peers."""
        return await self._call("p2p.Peers")

    async def p2p_protect(self, peer_id: Any, tag: str) -> None:
        """Protect a peer from being trimmed, dropped or negatively scored."""
        await self._call_no_result("p2p.Protect", peer_id, tag)

    async def p2p_pub_sub_peers(self, topic: str) -> Optional[Any]:
        """Peers joined on the topic, or None when the node reports none."""
        return await self._call("p2p.PubSubPeers", topic)

    async def p2p_resource_state(self) -> Any:
        """State of the resource manager."""
        return await self._call("p2p.ResourceState")

    async def p2p_unblock_peer(self, peer_id: Any) -> None:
        """Remove a peer from the set of blocked peers."""
        await self._call_no_result("p2p.UnblockPeer", peer_id)

    async def p2p_unprotect(self, peer_id: Any, tag: str) -> bool:
        """Remove protection under the tag; return whether the peer is still protected."""
        return await self._call("p2p.Unprotect", peer_id, tag)

    # Share

    async def share_get_eds(self, root: Any) -> Any:
        """The full extended data square identified by the header."""
        return await self._call("share.GetEDS", root)

    async def share_get_share(self, root: Any, row: int, col: int) -> Any:
        """A share by its coordinates in the extended data square."""
        return await self._call("share.GetShare", root, row, col)

    async def share_get_shares_by_namespace(self, root: Any, namespace: Any) -> Any:
        """All shares of the namespace, row by row."""
        return await self._call("share.GetSharesByNamespace", root, namespace)

    async def share_shares_available(self, root: Any) -> None:
        """Check that the shares committed to by the header are available."""
        await self._call("share.SharesAvailable", root)

    # State

    async def state_account_address(self) -> Any:
        """Address of the node's account."""
        return await self._call("state.AccountAddress")

    async def state_balance(self) -> Any:
        """Balance of the node's account."""
        return await self._call("state.Balance")

    async def state_balance_for_address(self, addr: Any) -> Any:
        """Balance of the given address, as of the block before the head."""
        return await self._call("state.BalanceForAddress", addr)

    async def state_begin_redelegate(
        self, src: Any, dest: Any, amount: Any, fee: Any, gas_limit: int
    ) -> Any:
        """Move delegated tokens to another validator."""
        return await self._call(
            "state.BeginRedelegate", src, dest, amount, fee, gas_limit
        )

    async def state_cancel_unbonding_delegation(
        self, addr: Any, amount: Any, height: Any, fee: Any, gas_limit: int
    ) -> Any:
        """Cancel a pending undelegation from a validator."""
        return await self._call(
            "state.CancelUnbondingDelegation", addr, amount, height, fee, gas_limit
        )

    async def state_delegate(
        self, addr: Any, amount: Any, fee: Any, gas_limit: int
    ) -> Any:
        """Delegate liquid tokens to a validator."""
        return await self._call("state.Delegate", addr, amount, fee, gas_limit)

    async def state_is_stopped(self) -> bool:
        """Whether the state module has been stopped."""
        return await self._call("state.IsStopped")

    async def state_query_delegation(self, addr: Any) -> Any:
        """Delegation between the node's account and a validator."""
        return await self._call("state.QueryDelegation", addr)

    async def state_query_redelegations(self, src: Any, dest: Any) -> Any:
        """Redelegations between two validators."""
        return await self._call("state.QueryRedelegations", src, dest)

    async def state_query_unbonding(self, addr: Any) -> Any:
        """Unbonding status with a validator."""
        return await self._call("state.QueryUnbonding", addr)

    async def state_submit_pay_for_blob(
        self, fee: Any, gas_limit: int, blobs: Sequence[Any]
    ) -> Any:
        """Build, sign and submit a PayForBlob transaction."""
        return await self._call("state.SubmitPayForBlob", fee, gas_limit, list(blobs))

    async def state_submit_tx(self, tx: Any) -> Any:
        """Submit a raw transaction and wait until it is included."""
        return await self._call("state.SubmitTx", tx)

    async def state_transfer(
        self, to: Any, amount: Any, fee: Any, gas_limit: int
    ) -> Any:
        """Send coins from the node's wallet to the given account."""
        return await self._call("state.Transfer", to, amount, fee, gas_limit)

    async def state_undelegate(
        self, addr: Any, amount: Any, fee: Any, gas_limit: int
    ) -> Any:
        """Undelegate tokens from a validator."""
        return await self._call("Undelegate", addr, amount, fee, gas_limit)