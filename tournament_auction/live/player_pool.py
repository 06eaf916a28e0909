"""
Ordered pool of auctionable players for one session.
"""

import logging
from collections import deque
from typing import Dict, List, Optional

from .auction_event import Player, PENDING, ACTIVE, SOLD, UNSOLD
from .errors import InvalidTransition, ValidationError

logger = logging.getLogger(__name__)


class PlayerPool:
    """Players in fixed session order, dequeued one at a time."""

    def __init__(self, players: List[Player], queue: Optional[List[str]] = None):
        """
        Args:
            players: All players in the auction, in auction order
            queue: Remaining player_ids to auction (defaults to every pending
                   player in pool order)
        """
        self.players: Dict[str, Player] = {}
        for player in players:
            if player.player_id in self.players:
                raise ValidationError(f"Duplicate player_id: {player.player_id}")
            self.players[player.player_id] = player

        if queue is None:
            queue = [p.player_id for p in players if p.status == PENDING]
        for player_id in queue:
            self.get(player_id)
        self._queue = deque(queue)

    def get(self, player_id: str) -> Player:
        try:
            return self.players[player_id]
        except KeyError:
            raise ValidationError(f"Unknown player_id: {player_id}") from None

    def next_player(self) -> Optional[Player]:
        """Dequeue the next pending player and put it on the block."""
        while self._queue:
            player = self.players[self._queue.popleft()]
            if player.status != PENDING:
                continue
            player.status = ACTIVE
            player.current_bid = None
            player.current_bidder = None
            return player
        return None

    def has_next(self) -> bool:
        """True if next_player would put someone on the block."""
        return any(self.players[pid].status == PENDING for pid in self._queue)

    def mark_sold(self, player_id: str, team_id: str, amount: int) -> Player:
        player = self._require_active(player_id, SOLD)
        player.status = SOLD
        player.sold_to = team_id
        player.sold_price = amount
        player.current_bid = amount
        player.current_bidder = team_id
        return player

    def mark_unsold(self, player_id: str) -> Player:
        player = self._require_active(player_id, UNSOLD)
        player.status = UNSOLD
        player.current_bid = None
        player.current_bidder = None
        return player

    def requeue(self, player_id: str) -> Player:
        """Take an active player off the block and put it back at the head of the queue."""
        player = self._require_active(player_id, PENDING)
        player.status = PENDING
        player.current_bid = None
        player.current_bidder = None
        self._queue.appendleft(player_id)
        return player

    def _require_active(self, player_id: str, target: str) -> Player:
        player = self.get(player_id)
        if player.status != ACTIVE:
            raise InvalidTransition(
                f"Player {player_id} is {player.status}, cannot become {target}"
            )
        return player

    @property
    def queue(self) -> List[str]:
        return list(self._queue)

    def remaining(self) -> int:
        return len(self._queue)

    def by_status(self, status: str) -> List[Player]:
        return [p for p in self.players.values() if p.status == status]

    def ordered(self) -> List[Player]:
        return list(self.players.values())

    def reset(self) -> None:
        """Return every player to pending, in original pool order."""
        for player in self.players.values():
            player.status = PENDING
            player.current_bid = None
            player.current_bidder = None
            player.sold_to = None
            player.sold_price = None
        self._queue = deque(self.players.keys())
        logger.info(f"Reset pool: {len(self.players)} players pending")
