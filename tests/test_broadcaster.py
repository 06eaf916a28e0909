import asyncio

import pytest

from tournament_auction.live.broadcaster import SessionBroadcaster
from tournament_auction.live.event_store import AuctionEventStore
from tournament_auction.live.gateway import ClientRegistration


def _client(connection_id: str, role: str = "viewer", queue_size: int = 100) -> ClientRegistration:
    return ClientRegistration(
        connection_id=connection_id,
        auction_id="cup",
        role=role,
        outbox=asyncio.Queue(maxsize=queue_size),
    )


def _drain(client: ClientRegistration) -> list:
    messages = []
    while not client.outbox.empty():
        messages.append(client.outbox.get_nowait())
    return messages


def test_publish_assigns_consecutive_sequence_numbers():
    broadcaster = SessionBroadcaster("cup")
    client = _client("c1")
    broadcaster.register(client, 0)

    for i in range(3):
        broadcaster.publish("BidAccepted", {"amount": 100 + i})

    messages = _drain(client)
    assert [m["seq"] for m in messages] == [1, 2, 3]
    assert messages[0] == {
        "auctionId": "cup",
        "seq": 1,
        "type": "BidAccepted",
        "payload": {"amount": 100},
    }


def test_reconnect_after_seq_5_replays_missing_events_in_order():
    broadcaster = SessionBroadcaster("cup")
    client = _client("c1")
    broadcaster.register(client, 0)
    for i in range(5):
        broadcaster.publish("BidAccepted", {"amount": i})
    seen = [m["seq"] for m in _drain(client)]
    broadcaster.unregister("c1")

    for i in range(5, 8):
        broadcaster.publish("BidAccepted", {"amount": i})

    returning = _client("c2")
    replayed = broadcaster.register(returning, 5)
    broadcaster.publish("PlayerSold", {"amount": 8})

    assert replayed == 3
    seen += [m["seq"] for m in _drain(returning)]
    assert seen == list(range(1, 10))


def test_replay_refused_when_log_does_not_reach_back():
    broadcaster = SessionBroadcaster("cup", start_seq=40)
    broadcaster.publish("PlayerStarted", {})

    assert broadcaster.can_replay_from(40)
    assert broadcaster.can_replay_from(41)
    assert not broadcaster.can_replay_from(12)
    assert not broadcaster.can_replay_from(50)
    with pytest.raises(ValueError):
        broadcaster.register(_client("c1"), 12)


def test_slow_client_is_dropped_without_blocking_others():
    broadcaster = SessionBroadcaster("cup")
    slow = _client("slow", queue_size=2)
    fast = _client("fast")
    broadcaster.register(slow, 0)
    broadcaster.register(fast, 0)

    for i in range(4):
        broadcaster.publish("BidAccepted", {"amount": i})

    assert slow.dropped
    assert "slow" not in broadcaster.clients
    assert _drain(slow) == [None]
    assert len(_drain(fast)) == 4


def test_notify_role_reaches_only_that_role():
    broadcaster = SessionBroadcaster("cup")
    auctioneer = _client("a", role="auctioneer")
    viewer = _client("v")
    broadcaster.register(auctioneer, 0)
    broadcaster.register(viewer, 0)

    sent = broadcaster.notify_role("auctioneer", {"type": "warning", "detail": "store down"})

    assert sent == 1
    assert _drain(auctioneer) == [{"type": "warning", "detail": "store down"}]
    assert _drain(viewer) == []


def test_published_events_reach_the_event_store(tmp_path):
    store = AuctionEventStore(tmp_path / "auction_cup.jsonl")
    broadcaster = SessionBroadcaster("cup", event_store=store)

    broadcaster.publish("PlayerStarted", {"player_id": "p1"})
    broadcaster.publish("PlayerUnsold", {"player_id": "p1"})

    events = store.load_all_events()
    assert [(e.seq, e.type) for e in events] == [(1, "PlayerStarted"), (2, "PlayerUnsold")]


def test_history_seeds_the_sequence():
    store_events = SessionBroadcaster("cup")
    first = store_events.publish("SessionOpened", {})
    second = store_events.publish("PlayerStarted", {})

    resumed = SessionBroadcaster("cup", history=[second, first])

    assert resumed.last_seq == 2
    assert resumed.publish("BidAccepted", {}).seq == 3


def test_failed_log_append_warns_auctioneers(tmp_path):
    unwritable = tmp_path / "auction_cup.jsonl"
    unwritable.mkdir()
    broadcaster = SessionBroadcaster("cup", event_store=AuctionEventStore(unwritable))
    auctioneer = _client("a", role="auctioneer")
    viewer = _client("v")
    broadcaster.register(auctioneer, 0)
    broadcaster.register(viewer, 0)

    event = broadcaster.publish("PlayerStarted", {"player_id": "p1"})

    assert event.seq == 1
    assert broadcaster.log_failed
    warnings = [m for m in _drain(auctioneer) if m.get("type") == "warning"]
    assert len(warnings) == 1
    assert "event log" in warnings[0]["detail"]
    assert [m["type"] for m in _drain(viewer)] == ["PlayerStarted"]
