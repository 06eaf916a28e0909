import asyncio

import pytest

from tournament_auction.live.auction_event import Player
from tournament_auction.live.errors import ValidationError
from tournament_auction.player_import import (
    DecisionBroker, PlayerImporter, fixed_resolver, load_players_csv, records_to_players,
)


def _sample_csv() -> str:
    return """Name,Base_Price,Category,Photo_URL
Asha Rao,2000000,Batter,https://cdn.example/asha.png
Ben Cole,,Bowler,
,500000,Batter,
"""


def _existing() -> list:
    return [Player(player_id="p1", name="Asha Rao", base_price=1_000_000)]


def test_load_players_csv_normalizes_rows(tmp_path):
    path = tmp_path / "players.csv"
    path.write_text(_sample_csv(), encoding="utf-8")

    players = records_to_players(load_players_csv(path))

    assert [p.name for p in players] == ["Asha Rao", "Ben Cole"]
    assert players[0].base_price == 2_000_000
    assert players[0].photo_url == "https://cdn.example/asha.png"
    assert players[1].base_price == 500_000
    assert players[1].photo_url is None
    assert len({p.player_id for p in players}) == 2


def test_load_players_csv_requires_name_column(tmp_path):
    path = tmp_path / "players.csv"
    path.write_text("player,price\nAsha,100\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_players_csv(path)


def test_find_duplicate_ignores_name_order():
    importer = PlayerImporter(fixed_resolver("merge"))

    match = importer.find_duplicate("Rao Asha", _existing())

    assert match is not None
    assert match[0].player_id == "p1"
    assert importer.find_duplicate("Ben Cole", _existing()) is None


@pytest.mark.anyio
async def test_merge_updates_existing_player():
    existing = _existing()
    importer = PlayerImporter(fixed_resolver("merge"))
    incoming = [Player(player_id="x1", name="Asha Rao", base_price=2_000_000, category="Batter")]

    report = await importer.import_players(incoming, existing, source="excel")

    assert report.merged == ["p1"]
    assert len(existing) == 1
    assert existing[0].base_price == 2_000_000
    assert existing[0].category == "Batter"


@pytest.mark.anyio
async def test_create_new_keeps_both_players():
    existing = _existing()
    importer = PlayerImporter(fixed_resolver("createNew"))
    incoming = [Player(player_id="p1", name="Asha Rao", base_price=500_000)]

    report = await importer.import_players(incoming, existing)

    assert len(existing) == 2
    assert existing[1].player_id != "p1"
    assert report.created == [existing[1].player_id]


@pytest.mark.anyio
async def test_decision_broker_round_trip():
    broker = DecisionBroker(timeout=5)
    existing = _existing()
    importer = PlayerImporter(broker.request)
    incoming = [Player(player_id="x1", name="Asha Rao", base_price=500_000)]

    task = asyncio.create_task(importer.import_players(incoming, existing, source="manual"))
    while not broker.pending():
        await asyncio.sleep(0.01)

    request, = broker.pending()
    assert request["source"] == "manual"
    assert request["existing"]["player_id"] == "p1"
    broker.resolve(request["request_id"], "createNew")

    report = await task
    assert report.created == ["x1"]
    assert broker.pending() == []


@pytest.mark.anyio
async def test_decision_timeout_defaults_to_skip():
    broker = DecisionBroker(timeout=0.05)
    existing = _existing()
    importer = PlayerImporter(broker.request)

    report = await importer.import_players(
        [Player(player_id="x1", name="Asha Rao", base_price=500_000)], existing
    )

    assert report.skipped == ["x1"]
    assert len(existing) == 1
    assert broker.pending() == []


def test_resolve_rejects_unknown_requests_and_decisions():
    broker = DecisionBroker()

    with pytest.raises(ValidationError):
        broker.resolve("missing", "merge")
    with pytest.raises(ValidationError):
        broker.resolve("missing", "overwrite")
