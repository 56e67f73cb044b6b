import asyncio
import logging

import pytest

from conftest import FakeWebSocket, attach, settle
from signal_relay.relay import SignalingRelay


def join(ws, channel="room1"):
    ws.feed({"type": "join-pool", "payload": {"channel": channel}})


@pytest.mark.asyncio
async def test_connection_registers_a_fresh_identity_per_socket(relay):
    shared_address = ("198.51.100.4", 40000)
    _, a_id, _ = await attach(relay, FakeWebSocket(shared_address))
    _, b_id, _ = await attach(relay, FakeWebSocket(shared_address))

    assert a_id != b_id
    assert sorted(relay.peers()) == sorted([a_id, b_id])
    assert shared_address[0] not in relay.peers()


@pytest.mark.asyncio
async def test_full_handshake_through_dispatcher(relay):
    upgrades = []
    relay.subscribe("p2p-upgrade", upgrades.append)
    a, a_id, _ = await attach(relay)
    b, b_id, _ = await attach(relay)
    offer = {"type": "offer", "sdp": "v=0"}
    answer = {"type": "answer", "sdp": "v=0"}

    join(a)
    join(b)
    await settle(relay)
    a.feed({"type": "offer", "payload": {"target": b_id, "channel": "room1", "offer": offer}})
    await settle(relay)
    b.feed({"type": "answer", "payload": {"target": a_id, "channel": "room1", "answer": answer}})
    await settle(relay)

    assert b.messages() == [{"type": "offer", "payload": {"source": a_id, "offer": offer}}]
    assert a.messages() == [{"type": "answer", "payload": {"source": b_id, "answer": answer}}]
    assert set(upgrades[0]) == {a_id, b_id}
    assert ("room1", a_id, b_id) in relay.state.connections
    assert ("room1", b_id, a_id) in relay.state.connections


@pytest.mark.asyncio
@pytest.mark.parametrize("frame", [
    "{{ not json",
    '{"payload": {"channel": "room1"}}',
    '{"type": "join-pool"}',
    "[]",
])
async def test_malformed_frame_closes_only_that_connection(relay, frame, caplog):
    a, a_id, a_task = await attach(relay)
    b, b_id, _ = await attach(relay)
    join(b)
    await settle(relay)

    with caplog.at_level(logging.ERROR):
        a.feed(frame)
        await settle(relay)
        await asyncio.wait_for(a_task, timeout=1)

    assert a.close_code == 4400
    assert a_id not in relay.peers()
    assert not b.closed
    assert b_id in relay.peers()
    assert relay.channel_members("room1") == [b_id]
    assert "incorrectly formatted" in caplog.text


@pytest.mark.asyncio
async def test_operation_error_is_logged_and_connection_survives(relay, caplog):
    a, a_id, _ = await attach(relay)

    with caplog.at_level(logging.WARNING):
        a.feed({"type": "offer", "payload": {"target": "nobody", "channel": "room1", "offer": {}}})
        a.feed({"type": "join-pool", "payload": {}})
        await settle(relay)

    assert not a.closed
    assert a.sent == []
    assert "NotFound" in caplog.text
    assert "ValidationError" in caplog.text

    join(a)
    await settle(relay)
    assert relay.channel_members("room1") == [a_id]


@pytest.mark.asyncio
async def test_unknown_type_is_ignored(relay):
    a, a_id, _ = await attach(relay)

    a.feed({"type": "renegotiate", "payload": {"anything": True}})
    join(a)
    await settle(relay)

    assert not a.closed
    assert a.sent == []
    assert relay.channel_members("room1") == [a_id]


@pytest.mark.asyncio
@pytest.mark.parametrize("frame", [
    {"type": "presence", "payload": "online"},
    {"type": 7, "payload": {}},
    {"type": ["join-pool"], "payload": {"channel": "room1"}},
])
async def test_unknown_type_with_odd_payload_keeps_connection(relay, frame):
    a, a_id, _ = await attach(relay)

    a.feed(frame)
    join(a)
    await settle(relay)

    assert not a.closed
    assert a_id in relay.peers()
    assert relay.channel_members("room1") == [a_id]


@pytest.mark.asyncio
async def test_known_type_with_non_object_payload_fails_only_that_operation(relay, caplog):
    a, a_id, _ = await attach(relay)

    with caplog.at_level(logging.WARNING):
        a.feed({"type": "join-pool", "payload": []})
        await settle(relay)

    assert not a.closed
    assert "ValidationError" in caplog.text
    assert relay.channel_members("room1") == []

    join(a)
    await settle(relay)
    assert relay.channel_members("room1") == [a_id]


@pytest.mark.asyncio
async def test_report_errors_sends_error_back_to_sender():
    relay = SignalingRelay(port=0, report_errors=True)
    a, _, _ = await attach(relay)

    a.feed({"type": "candidate", "payload": {"target": "ghost", "candidate": {}}})
    await settle(relay)

    assert a.messages() == [{
        "type": "error",
        "payload": {
            "request_type": "candidate",
            "error_code": "NOT_FOUND",
            "error_message": "Peer ghost is not connected",
        },
    }]
    assert not a.closed


@pytest.mark.asyncio
async def test_announce_identity_sends_welcome_first():
    relay = SignalingRelay(port=0, announce_identity=True)
    a, a_id, _ = await attach(relay)

    assert a.messages() == [{"type": "welcome", "payload": {"id": a_id}}]


@pytest.mark.asyncio
async def test_disconnect_purges_peer_and_fires_teardown(relay):
    teardowns = []
    relay.subscribe("p2p-teardown", teardowns.append)
    a, a_id, a_task = await attach(relay)
    b, b_id, _ = await attach(relay)
    join(a)
    join(b)
    await settle(relay)
    a.feed({"type": "offer", "payload": {"target": b_id, "channel": "room1", "offer": {}}})
    await settle(relay)
    b.feed({"type": "answer", "payload": {"target": a_id, "channel": "room1", "answer": {}}})
    await settle(relay)

    a.hang_up()
    await asyncio.wait_for(a_task, timeout=1)

    assert a_id not in relay.peers()
    assert relay.channel_members("room1") == [b_id]
    assert relay.connections() == []
    assert teardowns == [(a_id, b_id)]


@pytest.mark.asyncio
async def test_candidate_to_disconnected_peer_fails_after_cleanup(relay, caplog):
    a, a_id, a_task = await attach(relay)
    b, _, _ = await attach(relay)
    a.hang_up()
    await asyncio.wait_for(a_task, timeout=1)

    with caplog.at_level(logging.WARNING):
        b.feed({"type": "candidate", "payload": {"target": a_id, "candidate": {}}})
        await settle(relay)

    assert a.sent == []
    assert "NotFound" in caplog.text


@pytest.mark.asyncio
async def test_silent_peer_is_evicted_after_keepalive_timeout():
    relay = SignalingRelay(port=0, keepalive_timeout=0.05, heartbeat_interval=0.02)
    a, a_id, a_task = await attach(relay)

    await asyncio.wait_for(a_task, timeout=1)

    assert a.close_code == 4408
    assert a_id not in relay.peers()


@pytest.mark.asyncio
async def test_keep_alive_holds_eviction_off():
    relay = SignalingRelay(port=0, keepalive_timeout=0.2, heartbeat_interval=0.02)
    a, a_id, _ = await attach(relay)

    for _ in range(10):
        a.feed({"type": "keep-alive", "payload": {}})
        await asyncio.sleep(0.05)

    assert not a.closed
    assert a_id in relay.peers()
    a.hang_up()
    await settle(relay)


class _StuckWebSocket(FakeWebSocket):
    async def close(self, code=1000, reason=""):
        raise ConnectionResetError("transport already gone")


@pytest.mark.asyncio
async def test_heartbeat_logs_failed_close_instead_of_raising(caplog):
    relay = SignalingRelay(port=0, keepalive_timeout=0.05, heartbeat_interval=0.02)
    handler = relay.connection_handler
    ws = _StuckWebSocket()
    peer = relay.state.peers.register(ws)

    with caplog.at_level(logging.WARNING):
        await asyncio.wait_for(handler._heartbeat(peer), timeout=1)

    assert "Failed to close connection" in caplog.text
    assert ws.close_code is None
