import pytest

from tournament_auction.live.auction_event import Bid, IncrementRule, Player, Team
from tournament_auction.live.auction_session import AuctionSession
from tournament_auction.live.bid_arbitrator import BidArbitrator
from tournament_auction.live.budget_ledger import BudgetLedger
from tournament_auction.live.errors import RejectReason, ValidationError
from tournament_auction.live.player_pool import PlayerPool


def _sample_arbitrator() -> BidArbitrator:
    players = [
        Player(player_id="p1", name="Asha Rao", base_price=100),
        Player(player_id="p2", name="Ben Cole", base_price=100),
    ]
    teams = [
        Team(team_id="A", name="Team A", purse=1000),
        Team(team_id="B", name="Team B", purse=800),
        Team(team_id="C", name="Team C", purse=50),
    ]
    session = AuctionSession("cup", PlayerPool(players), BudgetLedger(teams), IncrementRule.flat(50))
    return BidArbitrator(session)


def _bid(team_id: str, amount: int, player_id: str = "p1") -> Bid:
    return Bid(team_id=team_id, player_id=player_id, amount=amount)


def test_bids_rejected_when_no_player_active():
    arbitrator = _sample_arbitrator()
    result = arbitrator.submit(_bid("A", 100))

    assert not result.accepted
    assert result.reason == RejectReason.AUCTION_NOT_ACTIVE


def test_team_a_outbids_team_b_and_wins():
    arbitrator = _sample_arbitrator()
    session = arbitrator.session
    session.start_next()

    assert arbitrator.submit(_bid("A", 100)).accepted
    assert arbitrator.submit(_bid("B", 150)).accepted

    rejected = arbitrator.submit(_bid("A", 150))
    assert not rejected.accepted
    assert rejected.reason == RejectReason.BELOW_MINIMUM_INCREMENT

    accepted = arbitrator.submit(_bid("A", 200))
    assert accepted.accepted
    assert accepted.events[0][1]["minimum_next_bid"] == 250

    (_, payload), = session.finalize()
    team_a = session.ledger.team("A")
    assert payload["team_id"] == "A"
    assert payload["amount"] == 200
    assert team_a.spent == 200
    assert team_a.remaining == 800


def test_team_c_insufficient_funds_changes_nothing():
    arbitrator = _sample_arbitrator()
    session = arbitrator.session
    session.start_next()
    before = session.snapshot().to_dict()

    result = arbitrator.submit(_bid("C", 100))

    assert not result.accepted
    assert result.reason == RejectReason.INSUFFICIENT_FUNDS
    assert session.snapshot().to_dict() == before


def test_wrong_player_rejected():
    arbitrator = _sample_arbitrator()
    arbitrator.session.start_next()

    result = arbitrator.submit(_bid("A", 100, player_id="p2"))
    assert result.reason == RejectReason.WRONG_PLAYER


def test_high_bidder_cannot_raise_itself():
    arbitrator = _sample_arbitrator()
    arbitrator.session.start_next()
    arbitrator.submit(_bid("A", 100))

    result = arbitrator.submit(_bid("A", 500))
    assert result.reason == RejectReason.SELF_OUTBID


def test_equal_bids_accept_only_the_first_arrival():
    arbitrator = _sample_arbitrator()
    arbitrator.session.start_next()
    arbitrator.submit(_bid("A", 100))

    first = arbitrator.submit(Bid(team_id="B", player_id="p1", amount=150, sequence=2))
    second = arbitrator.submit(Bid(team_id="A", player_id="p1", amount=150, sequence=3))

    assert first.accepted
    assert not second.accepted
    assert arbitrator.session.high_bidder == "B"


def test_unknown_team_raises_validation_error():
    arbitrator = _sample_arbitrator()
    arbitrator.session.start_next()
    with pytest.raises(ValidationError):
        arbitrator.submit(_bid("Z", 100))


def test_high_bid_strictly_increases():
    arbitrator = _sample_arbitrator()
    arbitrator.session.start_next()
    amounts = [100, 90, 150, 150, 175, 200, 260]
    teams = ["A", "B", "B", "A", "A", "A", "B"]

    accepted = [
        bid.amount
        for bid in (_bid(t, a) for t, a in zip(teams, amounts))
        if arbitrator.submit(bid).accepted
    ]

    assert accepted == sorted(set(accepted))
    assert arbitrator.session.high_bid == accepted[-1]
