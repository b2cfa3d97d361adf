import pytest

from celestia_node.rpc import ProtocolNotSupported, RpcClient, RpcError


class FakeTransport:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def __call__(self, method, params):
        self.calls.append((method, params))
        if self.error is not None:
            raise self.error
        return self.result


CALLS = [
    (lambda c: c.blob_get(5, "ns", "cm"), "blob.Get", [5, "ns", "cm"]),
    (lambda c: c.blob_get_all(5, ("a", "b")), "blob.GetAll", [5, ["a", "b"]]),
    (lambda c: c.blob_get_proof(5, "ns", "cm"), "blob.GetProof", [5, "ns", "cm"]),
    (
        lambda c: c.blob_included(5, "ns", {"p": 1}, "cm"),
        "blob.Included",
        [5, "ns", {"p": 1}, "cm"],
    ),
    (lambda c: c.blob_submit(["b"], {}), "blob.Submit", [["b"], {}]),
    (lambda c: c.header_get_by_hash("AB"), "header.GetByHash", ["AB"]),
    (lambda c: c.header_get_by_height(1), "header.GetByHeight", [1]),
    (
        lambda c: c.header_get_range_by_height({"h": 1}, 3),
        "header.GetRangeByHeight",
        [{"h": 1}, 3],
    ),
    (lambda c: c.header_local_head(), "header.LocalHead", []),
    (lambda c: c.header_network_head(), "header.NetworkHead", []),
    (lambda c: c.header_sync_state(), "header.SyncState", []),
    (lambda c: c.header_wait_for_height(2), "header.WaitForHeight", [2]),
    (lambda c: c.p2p_bandwidth_for_peer("peer"), "p2p.BandwidthForPeer", ["peer"]),
    (
        lambda c: c.p2p_bandwidth_for_protocol("/foo/bar"),
        "p2p.BandwidthForProtocol",
        ["/foo/bar"],
    ),
    (lambda c: c.p2p_bandwidth_stats(), "p2p.BandwidthStats", []),
    (lambda c: c.p2p_connectedness("peer"), "p2p.Connectedness", ["peer"]),
    (lambda c: c.p2p_info(), "p2p.Info", []),
    (
        lambda c: c.p2p_is_protected("peer", "test-tag"),
        "p2p.IsProtected",
        ["peer", "test-tag"],
    ),
    (lambda c: c.p2p_list_blocked_peers(), "p2p.ListBlockedPeers", []),
    (lambda c: c.p2p_nat_status(), "p2p.NATStatus", []),
    (lambda c: c.p2p_peer_info("peer"), "p2p.PeerInfo", ["peer"]),
    (lambda c: c.p2p_peers(), "p2p.Peers", []),
    (lambda c: c.p2p_pub_sub_peers("topic"), "p2p.PubSubPeers", ["topic"]),
    (lambda c: c.p2p_resource_state(), "p2p.ResourceState", []),
    (
        lambda c: c.p2p_unprotect("peer", "test-tag"),
        "p2p.Unprotect",
        ["peer", "test-tag"],
    ),
    (lambda c: c.share_get_eds({"h": 1}), "share.GetEDS", [{"h": 1}]),
    (
        lambda c: c.share_get_share({"h": 1}, 0, 1),
        "share.GetShare",
        [{"h": 1}, 0, 1],
    ),
    (
        lambda c: c.share_get_shares_by_namespace({"h": 1}, "ns"),
        "share.GetSharesByNamespace",
        [{"h": 1}, "ns"],
    ),
    (lambda c: c.state_account_address(), "state.AccountAddress", []),
    (lambda c: c.state_balance(), "state.Balance", []),
    (lambda c: c.state_balance_for_address("addr"), "state.BalanceForAddress", ["addr"]),
    (
        lambda c: c.state_begin_redelegate("s", "d", "10", "1", 100),
        "state.BeginRedelegate",
        ["s", "d", "10", "1", 100],
    ),
    (
        lambda c: c.state_cancel_unbonding_delegation("v", "10", "7", "1", 100),
        "state.CancelUnbondingDelegation",
        ["v", "10", "7", "1", 100],
    ),
    (
        lambda c: c.state_delegate("v", "10", "1", 100),
        "state.Delegate",
        ["v", "10", "1", 100],
    ),
    (lambda c: c.state_is_stopped(), "state.IsStopped", []),
    (lambda c: c.state_query_delegation("v"), "state.QueryDelegation", ["v"]),
    (
        lambda c: c.state_query_redelegations("s", "d"),
        "state.QueryRedelegations",
        ["s", "d"],
    ),
    (lambda c: c.state_query_unbonding("v"), "state.QueryUnbonding", ["v"]),
    (
        lambda c: c.state_submit_pay_for_blob("1", 100, ("b",)),
        "state.SubmitPayForBlob",
        ["1", 100, ["b"]],
    ),
    (lambda c: c.state_submit_tx("tx"), "state.SubmitTx", ["tx"]),
    (
        lambda c: c.state_transfer("to", "10", "1", 100),
        "state.Transfer",
        ["to", "10", "1", 100],
    ),
    (
        lambda c: c.state_undelegate("v", "10", "1", 100),
        "Undelegate",
        ["v", "10", "1", 100],
    ),
]


@pytest.mark.asyncio
@pytest.mark.parametrize("call,method,params", CALLS)
async def test_call_sends_method_and_params(call, method, params):
    result = {"answer": [1, 2]}
    transport = FakeTransport(result=result)
    client = RpcClient(transport)
    assert await call(client) == result
    assert transport.calls == [(method, params)]


NO_RESULT_CALLS = [
    (lambda c: c.p2p_block_peer("peer"), "p2p.BlockPeer", ["peer"]),
    (lambda c: c.p2p_close_peer("peer"), "p2p.ClosePeer", ["peer"]),
    (lambda c: c.p2p_connect({"ID": "peer"}), "p2p.Connect", [{"ID": "peer"}]),
    (lambda c: c.p2p_protect("peer", "test-tag"), "p2p.Protect", ["peer", "test-tag"]),
    (lambda c: c.p2p_unblock_peer("peer"), "p2p.UnblockPeer", ["peer"]),
    (lambda c: c.header_sync_wait(), "header.SyncWait", []),
    (lambda c: c.share_shares_available({"h": 1}), "share.SharesAvailable", [{"h": 1}]),
]


@pytest.mark.asyncio
@pytest.mark.parametrize("call,method,params", NO_RESULT_CALLS)
async def test_calls_without_result_ignore_reply(call, method, params):
    transport = FakeTransport(result={"unexpected": True})
    client = RpcClient(transport)
    assert await call(client) is None
    assert transport.calls == [(method, params)]


@pytest.mark.asyncio
async def test_pub_sub_peers_may_be_none():
    client = RpcClient(FakeTransport(result=None))
    assert await client.p2p_pub_sub_peers("topic") is None


@pytest.mark.asyncio
async def test_transport_error_is_wrapped():
    original = ConnectionError("connection refused")
    client = RpcClient(FakeTransport(error=original))
    with pytest.raises(RpcError) as excinfo:
        await client.header_local_head()
    assert excinfo.value.__cause__ is original


@pytest.mark.asyncio
async def test_no_result_call_still_reports_transport_error():
    client = RpcClient(FakeTransport(error=OSError("down")))
    with pytest.raises(RpcError):
        await client.p2p_block_peer("peer")


@pytest.mark.asyncio
async def test_rpc_error_passes_through():
    error = ProtocolNotSupported("ftp")
    client = RpcClient(FakeTransport(error=error))
    with pytest.raises(ProtocolNotSupported) as excinfo:
        await client.state_balance()
    assert excinfo.value is error


def test_protocol_not_supported_message():
    error = ProtocolNotSupported("ftp")
    assert str(error) == "Protocol not supported or missing: ftp"
    assert error.protocol == "ftp"
    assert isinstance(error, RpcError)