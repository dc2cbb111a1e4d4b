import asyncio

import pytest

from conftest import FakeSocket
from relay.dispatcher import CLOSE_CODE_OVERLOADED, FanoutDispatcher


@pytest.mark.asyncio
async def test_events_arrive_in_enqueue_order():
    dispatcher = FanoutDispatcher()
    socket = FakeSocket()
    dispatcher.attach("c1", socket)

    for i in range(5):
        dispatcher.send("c1", {"type": "tick", "n": i})
    await dispatcher.flush()

    assert [event["n"] for event in socket.sent] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_send_to_members_can_exclude_the_actor():
    dispatcher = FanoutDispatcher()
    sockets = {cid: FakeSocket() for cid in ("c1", "c2", "c3")}
    for cid, socket in sockets.items():
        dispatcher.attach(cid, socket)

    delivered = dispatcher.send_to_members(["c1", "c2"], {"type": "user-joined"}, exclude="c1")
    await dispatcher.flush()

    assert delivered == 1
    assert sockets["c1"].sent == []
    assert sockets["c2"].types() == ["user-joined"]
    assert sockets["c3"].sent == []


@pytest.mark.asyncio
async def test_broadcast_reaches_everyone():
    dispatcher = FanoutDispatcher()
    sockets = [FakeSocket(), FakeSocket()]
    for i, socket in enumerate(sockets):
        dispatcher.attach(f"c{i}", socket)

    assert dispatcher.broadcast({"type": "active-rooms", "rooms": []}) == 2
    await dispatcher.flush()

    assert all(socket.types() == ["active-rooms"] for socket in sockets)


@pytest.mark.asyncio
async def test_unknown_connection_is_skipped():
    dispatcher = FanoutDispatcher()

    assert dispatcher.send("ghost", {"type": "room-info"}) is False


@pytest.mark.asyncio
async def test_held_events_follow_the_preface():
    dispatcher = FanoutDispatcher()
    socket = FakeSocket()
    dispatcher.attach("c1", socket)

    dispatcher.hold("c1")
    dispatcher.send("c1", {"type": "room-info"})
    dispatcher.send("c1", {"type": "receive-message", "id": "m2"})
    await asyncio.sleep(0)
    assert socket.sent == []

    dispatcher.release("c1", [{"type": "receive-message", "id": "m1"}])
    await dispatcher.flush()

    assert [(e["type"], e.get("id")) for e in socket.sent] == [
        ("receive-message", "m1"),
        ("room-info", None),
        ("receive-message", "m2"),
    ]


@pytest.mark.asyncio
async def test_release_drops_parked_duplicates_of_replayed_messages():
    dispatcher = FanoutDispatcher()
    socket = FakeSocket()
    dispatcher.attach("c1", socket)

    dispatcher.hold("c1")
    dispatcher.send("c1", {"type": "receive-message", "id": "m1", "isReplay": False})
    dispatcher.release("c1", [{"type": "receive-message", "id": "m1", "isReplay": True}])
    await dispatcher.flush()

    assert socket.sent == [{"type": "receive-message", "id": "m1", "isReplay": True}]


@pytest.mark.asyncio
async def test_failed_send_stops_delivery_to_that_connection():
    dispatcher = FanoutDispatcher()
    broken = FakeSocket(fail=True)
    healthy = FakeSocket()
    dispatcher.attach("broken", broken)
    dispatcher.attach("healthy", healthy)

    dispatcher.broadcast({"type": "active-rooms", "rooms": []})
    await dispatcher.flush()

    assert dispatcher.send("broken", {"type": "room-info"}) is False
    assert healthy.types() == ["active-rooms"]


@pytest.mark.asyncio
async def test_overflowing_outbox_closes_the_connection():
    dispatcher = FanoutDispatcher(max_outbox_size=1)
    socket = FakeSocket()
    dispatcher.attach("c1", socket)

    assert dispatcher.send("c1", {"type": "tick", "n": 0}) is True
    assert dispatcher.send("c1", {"type": "tick", "n": 1}) is False
    await asyncio.sleep(0.01)

    assert socket.close_code == CLOSE_CODE_OVERLOADED
    assert dispatcher.send("c1", {"type": "tick", "n": 2}) is False


@pytest.mark.asyncio
async def test_detach_stops_delivery():
    dispatcher = FanoutDispatcher()
    socket = FakeSocket()
    dispatcher.attach("c1", socket)

    await dispatcher.detach("c1")
    await dispatcher.detach("c1")

    assert not dispatcher.is_attached("c1")
    assert dispatcher.send("c1", {"type": "room-info"}) is False
    assert len(dispatcher) == 0


@pytest.mark.asyncio
async def test_discard_stops_delivery_without_yielding():
    dispatcher = FanoutDispatcher()
    socket = FakeSocket()
    dispatcher.attach("c1", socket)

    writer = dispatcher.discard("c1")

    assert writer is not None
    assert dispatcher.send("c1", {"type": "room-info"}) is False
    assert dispatcher.discard("c1") is None
    with pytest.raises(asyncio.CancelledError):
        await writer
