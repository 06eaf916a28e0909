import pytest

from tournament_auction.live.auction_event import Player, Team
from tournament_auction.live.errors import TransportFailure, ValidationError
from tournament_auction.live.gateway import ConnectionGateway, TokenAuthenticator
from tournament_auction.live.session_manager import SessionManager
from tournament_auction.live.session_store import JsonFileSessionStore


def _authenticator(allow_anonymous_viewers: bool = True) -> TokenAuthenticator:
    return TokenAuthenticator(
        auctioneer_tokens=["boss"],
        bidder_tokens={"tok-a": "A", "tok-b": "B"},
        allow_anonymous_viewers=allow_anonymous_viewers,
    )


async def _sample_gateway(tmp_path) -> ConnectionGateway:
    manager = SessionManager(
        JsonFileSessionStore(tmp_path / "sessions"),
        bid_window_seconds=None,
        save_retries=1,
        save_backoff=0.001,
    )
    await manager.create_auction(
        "cup",
        [
            Player(player_id="p1", name="Asha Rao", base_price=100),
            Player(player_id="p2", name="Ben Cole", base_price=100),
        ],
        [
            Team(team_id="A", name="Team A", purse=1000),
            Team(team_id="B", name="Team B", purse=800),
        ],
        [(0, 50)],
    )
    await manager.start_session("cup")
    return ConnectionGateway(manager, _authenticator())


def _drain(client) -> list:
    messages = []
    while not client.outbox.empty():
        messages.append(client.outbox.get_nowait())
    return messages


def _bid(team_id: str, amount: int, player_id: str = "p1") -> dict:
    return {"type": "bid", "auctionId": "cup", "teamId": team_id, "playerId": player_id, "amount": amount}


def test_authenticator_roles():
    auth = _authenticator(allow_anonymous_viewers=False)

    assert auth.authenticate("boss") == ("auctioneer", None)
    assert auth.authenticate("tok-b") == ("bidder", "B")
    with pytest.raises(ValidationError):
        auth.authenticate("stolen")
    assert _authenticator().authenticate(None) == ("viewer", None)


@pytest.mark.anyio
async def test_new_client_receives_snapshot_first(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    client = gateway.connect("cup", token=None)

    snapshot, = _drain(client)
    assert snapshot["type"] == "snapshot"
    assert snapshot["seq"] == 1
    assert snapshot["payload"]["status"] == "idle"
    assert client.last_ack_seq == 1
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_auctioneer_commands_reach_every_client(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    auctioneer = gateway.connect("cup", token="boss", last_seq=1)
    viewer = gateway.connect("cup", last_seq=1)

    await gateway.handle_message(auctioneer, {"type": "control", "action": "startNext"})

    for client in (auctioneer, viewer):
        started, = _drain(client)
        assert started["type"] == "PlayerStarted"
        assert started["seq"] == 2
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_rejections_go_only_to_the_bidder(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    auctioneer = gateway.connect("cup", token="boss", last_seq=1)
    bidder = gateway.connect("cup", token="tok-a", last_seq=1)
    await gateway.handle_message(auctioneer, {"type": "control", "action": "startNext"})
    _drain(auctioneer)
    _drain(bidder)

    await gateway.handle_message(bidder, _bid("A", 50))

    rejected, = _drain(bidder)
    assert rejected["type"] == "rejected"
    assert rejected["reason"] == "BelowMinimumIncrement"
    assert _drain(auctioneer) == []
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_role_rules_for_bids_and_control(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    viewer = gateway.connect("cup", last_seq=1)
    bidder = gateway.connect("cup", token="tok-a", last_seq=1)

    await gateway.handle_message(viewer, _bid("A", 100))
    await gateway.handle_message(bidder, _bid("B", 100))
    await gateway.handle_message(bidder, {"type": "control", "action": "startNext"})

    assert [m["type"] for m in _drain(viewer)] == ["error"]
    errors = _drain(bidder)
    assert [m["type"] for m in errors] == ["error", "error"]
    assert "auctioneer" in errors[1]["detail"]
    assert gateway.manager.get_session("cup").session.status == "idle"
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_malformed_messages_get_an_error(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    client = gateway.connect("cup", token="tok-a", last_seq=1)

    await gateway.handle_message(client, {"type": "bid", "auctionId": "cup", "amount": -5})
    await gateway.handle_text(client, "not json")
    await gateway.handle_message(client, {"type": "shout"})

    messages = _drain(client)
    assert [m["type"] for m in messages] == ["error", "error", "error"]
    assert all(m["detail"].startswith("Malformed message") for m in messages)
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_ack_advances_last_acknowledged_seq(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    client = gateway.connect("cup", last_seq=1)

    await gateway.handle_message(client, {"type": "ack", "seq": 1})
    await gateway.handle_message(client, {"type": "ack", "seq": 0})

    assert client.last_ack_seq == 1
    assert _drain(client) == []
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_writer_sends_until_client_is_dropped(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    client = gateway.connect("cup")
    sent = []

    async def send(message):
        sent.append(message)

    client.outbox.put_nowait({"type": "warning", "detail": "x"})
    client.drop()
    await gateway.run_writer(client, send)

    assert sent == []
    gateway.disconnect(client)
    assert client.connection_id not in gateway.clients
    await gateway.manager.stop_all()


@pytest.mark.anyio
async def test_writer_wraps_transport_errors(tmp_path):
    gateway = await _sample_gateway(tmp_path)
    client = gateway.connect("cup")

    async def send(message):
        raise ConnectionResetError("peer went away")

    with pytest.raises(TransportFailure):
        await gateway.run_writer(client, send)
    await gateway.manager.stop_all()
