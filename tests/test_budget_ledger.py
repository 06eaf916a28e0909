import pytest

from tournament_auction.live.auction_event import Team
from tournament_auction.live.budget_ledger import BudgetLedger
from tournament_auction.live.errors import InsufficientFunds, RosterFull, ValidationError


def _sample_ledger() -> BudgetLedger:
    return BudgetLedger([
        Team(team_id="A", name="Team A", purse=1000, min_roster=1, max_roster=2),
        Team(team_id="B", name="Team B", purse=800, min_roster=1, max_roster=2),
    ])


def test_can_afford_respects_remaining_purse():
    ledger = _sample_ledger()
    assert ledger.can_afford("A", 1000)
    assert not ledger.can_afford("A", 1001)
    assert not ledger.can_afford("B", 900)


def test_commit_sale_updates_spent_and_roster():
    ledger = _sample_ledger()
    ledger.commit_sale("A", "p1", 200)

    team = ledger.team("A")
    assert team.spent == 200
    assert team.remaining == 800
    assert team.roster == ["p1"]
    assert team.open_slots == 1


def test_commit_sale_rechecks_funds():
    ledger = _sample_ledger()
    ledger.commit_sale("B", "p1", 700)

    with pytest.raises(InsufficientFunds) as exc_info:
        ledger.commit_sale("B", "p2", 200)

    assert exc_info.value.team_id == "B"
    assert ledger.team("B").spent == 700
    assert ledger.team("B").roster == ["p1"]


def test_commit_sale_rejects_full_roster():
    ledger = _sample_ledger()
    ledger.commit_sale("A", "p1", 10)
    ledger.commit_sale("A", "p2", 10)

    assert not ledger.can_afford("A", 10)
    with pytest.raises(RosterFull):
        ledger.commit_sale("A", "p3", 10)


def test_unknown_team_is_a_validation_error():
    ledger = _sample_ledger()
    with pytest.raises(ValidationError):
        ledger.can_afford("Z", 10)


def test_duplicate_team_ids_rejected():
    with pytest.raises(ValidationError):
        BudgetLedger([Team(team_id="A", name="One"), Team(team_id="A", name="Two")])


def test_validate_detects_player_on_two_rosters():
    ledger = _sample_ledger()
    ledger.commit_sale("A", "p1", 10)
    ledger.team("B").roster.append("p1")

    with pytest.raises(ValueError):
        ledger.validate()


def test_reset_restores_purses():
    ledger = _sample_ledger()
    ledger.commit_sale("A", "p1", 300)
    ledger.reset()

    assert ledger.team("A").spent == 0
    assert ledger.team("A").roster == []
    ledger.validate()


def test_summary_flags_teams_below_minimum():
    ledger = _sample_ledger()
    ledger.commit_sale("A", "p1", 100)

    summary = ledger.summary().set_index("team_id")
    assert summary.loc["A", "remaining"] == 900
    assert not summary.loc["A", "below_minimum"]
    assert summary.loc["B", "below_minimum"]
