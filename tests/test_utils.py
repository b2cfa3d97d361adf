import asyncio
import dataclasses

import pytest

from celestia_node.utils import (
    Watch,
    celestia_protocol_id,
    gossipsub_ident_topic,
    multiaddr_peer_id,
    protocol_id,
    validate_headers,
)


def test_protocol_id_trims_slashes():
    assert protocol_id("/private/", "/header-ex/v0.0.3/") == protocol_id(
        "private", "header-ex/v0.0.3"
    )
    assert protocol_id("private", "header-ex/v0.0.3") == "/private/header-ex/v0.0.3"


def test_celestia_protocol_id_prefix():
    result = celestia_protocol_id("/private", "header-ex/v0.0.3")
    assert result == protocol_id("celestia/private", "header-ex/v0.0.3")
    assert result.startswith("/celestia/")


def test_gossipsub_ident_topic_matches_protocol_layout():
    assert gossipsub_ident_topic("/net/", "/topic/") == protocol_id("net", "topic")


def test_multiaddr_peer_id_found():
    peer = "12D3KooWPlaceholderPeerIdentifier"
    addr = f"/ip4/127.0.0.1/tcp/4001/p2p/{peer}"
    assert multiaddr_peer_id(addr) == peer


def test_multiaddr_peer_id_after_valueless_protocols():
    peer = "12D3KooWPlaceholderPeerIdentifier"
    addr = f"/ip4/127.0.0.1/udp/4001/quic-v1/webtransport/p2p/{peer}"
    assert multiaddr_peer_id(addr) == peer


def test_multiaddr_peer_id_absent():
    assert multiaddr_peer_id("/ip4/0.0.0.0/tcp/0") is None


def test_multiaddr_missing_value_raises():
    with pytest.raises(ValueError):
        multiaddr_peer_id("/ip4/127.0.0.1/tcp")


@dataclasses.dataclass
class CountingHeader:
    calls: list
    ident: int
    valid: bool = True

    def validate(self):
        self.calls.append(self.ident)
        if not self.valid:
            raise ValueError(f"invalid header {self.ident}")


@pytest.mark.asyncio
async def test_validate_headers_checks_all_in_order():
    calls = []
    headers = [CountingHeader(calls, i) for i in range(10)]
    result = await validate_headers(headers)
    assert result is None
    assert calls == list(range(10))


@pytest.mark.asyncio
async def test_validate_headers_stops_on_error():
    calls = []
    headers = [CountingHeader(calls, i, valid=(i != 5)) for i in range(10)]
    with pytest.raises(ValueError):
        await validate_headers(headers)
    assert calls == list(range(6))


def test_watch_send_replace_returns_old():
    watch = Watch(1)
    assert watch.send_replace(2) == 1
    assert watch.borrow() == 2


@dataclasses.dataclass
class Counter:
    value: int = 0


def test_watch_send_modify_in_place():
    watch = Watch(Counter())

    def bump(counter):
        counter.value += 1

    watch.send_modify(bump)
    watch.send_modify(bump)
    assert watch.borrow().value == 2


@pytest.mark.asyncio
async def test_watch_receiver_changed_wakes_up():
    watch = Watch(None)
    receiver = watch.subscribe()

    async def sender():
        await asyncio.sleep(0.01)
        watch.send_replace("head")

    task = asyncio.create_task(sender())
    await asyncio.wait_for(receiver.changed(), timeout=1)
    await task
    assert receiver.borrow() == "head"


@pytest.mark.asyncio
async def test_watch_receiver_does_not_see_old_values_as_change():
    watch = Watch(0)
    watch.send_replace(1)
    receiver = watch.subscribe()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(receiver.changed(), timeout=0.05)
    assert receiver.borrow() == 1


@pytest.mark.asyncio
async def test_watch_receiver_sees_change_sent_before_waiting():
    watch = Watch(0)
    receiver = watch.subscribe()
    watch.send_replace(7)
    await asyncio.wait_for(receiver.changed(), timeout=1)
    assert receiver.borrow() == 7
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(receiver.changed(), timeout=0.05)