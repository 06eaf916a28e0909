import pandas as pd
import pytest

from tournament_auction import main as cli
from tournament_auction.live.auction_event import (
    SESSION_OPENED, AuctionEvent, Player, Team, create_initial_snapshot,
)
from tournament_auction.live.event_store import AuctionEventStore, create_event_filepath


def _write_log(events_dir) -> None:
    snapshot = create_initial_snapshot(
        "cup",
        [Player(player_id="p1", name="Asha Rao", base_price=100)],
        [Team(team_id="A", name="Team A", purse=1000)],
    )
    store = AuctionEventStore(create_event_filepath(events_dir, "cup"))
    payloads = [
        (SESSION_OPENED, snapshot.to_dict()),
        ("PlayerStarted", {"player_id": "p1"}),
        ("BidAccepted", {"player_id": "p1", "team_id": "A", "amount": 100, "sequence": 1}),
        ("PlayerSold", {"player_id": "p1", "team_id": "A", "amount": 100}),
    ]
    for seq, (event_type, payload) in enumerate(payloads, 1):
        store.append_event(AuctionEvent(auction_id="cup", seq=seq, type=event_type, payload=payload))


def test_parse_arguments_requires_a_command():
    with pytest.raises(SystemExit):
        cli.parse_arguments([])

    args = cli.parse_arguments(["import-players", "--auction-id", "cup", "--file", "p.csv"])
    assert args.on_duplicate == "skipExisting"


def test_replay_exports_csv(tmp_path):
    _write_log(tmp_path / "events")
    output = tmp_path / "cup.csv"

    cli.main(["replay", "--auction-id", "cup", "--events-dir", str(tmp_path / "events"), "--csv", str(output)])

    assert list(pd.read_csv(output)["type"]) == ["PlayerStarted", "BidAccepted", "PlayerSold"]


def test_replay_without_log_exits(tmp_path):
    with pytest.raises(SystemExit):
        cli.main(["replay", "--auction-id", "cup", "--events-dir", str(tmp_path)])
