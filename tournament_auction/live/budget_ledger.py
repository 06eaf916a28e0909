"""
Per-team purse and roster tracking for a live auction.

The ledger is owned by a single AuctionSession. Sales are re-validated at
commit time because a team's purse is shared across every player in the
session.
"""

import logging
import pandas as pd
from typing import Dict, List

from .auction_event import Team
from .errors import InsufficientFunds, RosterFull, ValidationError

logger = logging.getLogger(__name__)


class BudgetLedger:
    """Tracks spent amounts and rosters for every team in a session."""

    def __init__(self, teams: List[Team]):
        self.teams: Dict[str, Team] = {}
        for team in teams:
            if team.team_id in self.teams:
                raise ValidationError(f"Duplicate team_id: {team.team_id}")
            self.teams[team.team_id] = team

    def team(self, team_id: str) -> Team:
        try:
            return self.teams[team_id]
        except KeyError:
            raise ValidationError(f"Unknown team_id: {team_id}") from None

    def can_afford(self, team_id: str, amount: int) -> bool:
        """True iff the team has the purse left for amount and a free roster slot."""
        team = self.team(team_id)
        return amount <= team.remaining and len(team.roster) < team.max_roster

    def commit_sale(self, team_id: str, player_id: str, amount: int) -> None:
        """
        Record a sale against a team.

        Args:
            team_id: Winning team
            player_id: Player being bought
            amount: Sale price

        Raises:
            InsufficientFunds: If amount exceeds the team's remaining purse
            RosterFull: If the team has no roster slot left
        """
        team = self.team(team_id)

        if amount > team.remaining:
            raise InsufficientFunds(
                team_id,
                f"{team.name} cannot pay {amount}: {team.remaining} remaining"
            )
        if len(team.roster) >= team.max_roster:
            raise RosterFull(
                team_id,
                f"{team.name} roster is full ({team.max_roster} players)"
            )

        team.spent += amount
        team.roster.append(player_id)

        logger.debug(
            f"Committed {player_id} → {team.name} ({amount}) | "
            f"{team.remaining} remaining, {team.open_slots} slots"
        )

    def validate(self) -> None:
        """
        Validate ledger consistency.

        Raises:
            ValueError: If any team breaks a purse or roster bound, or a player
                        appears on more than one roster
        """
        rostered = set()
        for team in self.teams.values():
            if team.spent > team.purse:
                raise ValueError(
                    f"{team.team_id} spent {team.spent} of a {team.purse} purse"
                )
            if len(team.roster) > team.max_roster:
                raise ValueError(
                    f"{team.team_id} has {len(team.roster)} players, "
                    f"max is {team.max_roster}"
                )
            for player_id in team.roster:
                if player_id in rostered:
                    raise ValueError(f"Player {player_id} appears on multiple rosters")
                rostered.add(player_id)

    def reset(self) -> None:
        """Empty every roster and restore every purse."""
        for team in self.teams.values():
            team.spent = 0
            team.roster = []
        logger.info(f"Reset ledger for {len(self.teams)} teams")

    def summary(self) -> pd.DataFrame:
        """
        Get summary statistics for all teams.

        Returns:
            DataFrame with team_id, name, players, spent, remaining, open_slots
        """
        summary_data = []
        for team_id, team in self.teams.items():
            summary_data.append({
                'team_id': team_id,
                'name': team.name,
                'players': len(team.roster),
                'spent': team.spent,
                'remaining': team.remaining,
                'open_slots': team.open_slots,
                'below_minimum': len(team.roster) < team.min_roster,
            })

        columns = ['team_id', 'name', 'players', 'spent', 'remaining',
                   'open_slots', 'below_minimum']
        return pd.DataFrame(summary_data, columns=columns).sort_values('team_id')
