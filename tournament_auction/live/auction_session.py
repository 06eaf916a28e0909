"""
State machine for one live auction session.

The AuctionSession is responsible for:
- Putting players on the block one at a time (idle → player-active)
- Recording accepted bids against the active player
- Resolving the active player to sold/unsold with commit-time re-validation
  (player-active → player-resolving → idle)
- Completing the session when the pool is exhausted
- Applying committed events, so an event log can rebuild the session

Methods that change state return the list of (event_type, payload) pairs the
caller must publish, in order. The session never talks to clients or storage.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .auction_event import (
    AuctionEvent, Bid, IncrementRule, SessionSnapshot,
    IDLE, PLAYER_ACTIVE, PLAYER_RESOLVING, COMPLETED,
    SESSION_OPENED, PLAYER_STARTED, BID_ACCEPTED, PLAYER_SOLD,
    PLAYER_UNSOLD, AUCTION_PAUSED, SESSION_COMPLETED,
    SOLD, UNSOLD,
)
from .budget_ledger import BudgetLedger
from .errors import InvalidTransition, InvariantViolation
from .player_pool import PlayerPool

logger = logging.getLogger(__name__)

PendingEvent = Tuple[str, dict]


class AuctionSession:
    """Owns the player pool and budget ledger for one auction."""

    def __init__(
        self,
        auction_id: str,
        pool: PlayerPool,
        ledger: BudgetLedger,
        increment_rule: Optional[IncrementRule] = None
    ):
        self.auction_id = auction_id
        self.pool = pool
        self.ledger = ledger
        self.increment_rule = increment_rule or IncrementRule()

        self.status = IDLE
        self.active_player_id: Optional[str] = None
        self.high_bid: Optional[int] = None
        self.high_bidder: Optional[str] = None
        self.bid_history: List[Dict] = []   # accepted bids on the active player, oldest first
        self.last_seq = 0                   # last committed event applied or published

    # ----- snapshots -----

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> 'AuctionSession':
        pool = PlayerPool(snapshot.players, queue=snapshot.queue)
        ledger = BudgetLedger(snapshot.teams)
        session = cls(
            snapshot.auction_id,
            pool,
            ledger,
            IncrementRule(tiers=list(snapshot.increment_tiers)),
        )
        session.status = snapshot.status
        session.active_player_id = snapshot.active_player_id
        session.high_bid = snapshot.high_bid
        session.high_bidder = snapshot.high_bidder
        session.bid_history = [dict(b) for b in snapshot.bid_history]
        session.last_seq = snapshot.seq
        return session

    def snapshot(self) -> SessionSnapshot:
        """Copy of the full session state as of self.last_seq."""
        return SessionSnapshot.from_dict({
            'auction_id': self.auction_id,
            'status': self.status,
            'seq': self.last_seq,
            'players': [p.to_dict() for p in self.pool.ordered()],
            'teams': [t.to_dict() for t in self.ledger.teams.values()],
            'queue': self.pool.queue,
            'active_player_id': self.active_player_id,
            'high_bid': self.high_bid,
            'high_bidder': self.high_bidder,
            'bid_history': self.bid_history,
            'increment_tiers': self.increment_rule.to_list(),
        })

    # ----- queries -----

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    def minimum_next_bid(self) -> Optional[int]:
        if self.active_player_id is None:
            return None
        player = self.pool.get(self.active_player_id)
        return self.increment_rule.minimum_next_bid(self.high_bid, player.base_price)

    # ----- transitions -----

    def start_next(self) -> List[PendingEvent]:
        """
        Put the next player on the block, or complete the session if none remain.

        Raises:
            InvalidTransition: If the session is not idle
        """
        self._require_status(IDLE, 'startNext')

        player = self.pool.next_player()
        if player is None:
            self.status = COMPLETED
            logger.info(f"[{self.auction_id}] Pool exhausted, session completed")
            return [(SESSION_COMPLETED, self._completion_summary())]

        self.status = PLAYER_ACTIVE
        self.active_player_id = player.player_id
        self.high_bid = None
        self.high_bidder = None
        self.bid_history = []

        logger.info(
            f"[{self.auction_id}] On the block: {player.name} "
            f"(base {player.base_price}, {self.pool.remaining()} left in queue)"
        )
        return [(PLAYER_STARTED, {
            'player_id': player.player_id,
            'name': player.name,
            'base_price': player.base_price,
            'photo_url': player.photo_url,
            'category': player.category,
            'minimum_bid': player.base_price,
        })]

    def record_bid(self, bid: Bid) -> List[PendingEvent]:
        """Make an already-arbitrated bid the high bid."""
        self._require_status(PLAYER_ACTIVE, 'bid')

        player = self.pool.get(self.active_player_id)
        player.current_bid = bid.amount
        player.current_bidder = bid.team_id
        self.high_bid = bid.amount
        self.high_bidder = bid.team_id
        self.bid_history.append({
            'team_id': bid.team_id,
            'amount': bid.amount,
            'sequence': bid.sequence,
        })

        return [(BID_ACCEPTED, {
            'player_id': player.player_id,
            'team_id': bid.team_id,
            'amount': bid.amount,
            'sequence': bid.sequence,
            'minimum_next_bid': self.minimum_next_bid(),
        })]

    def finalize(self) -> List[PendingEvent]:
        """
        Resolve the active player.

        The most recent bidder is committed through the ledger. If the ledger
        refuses, the previous high bid by a different team is tried, and so
        on until one commits or none remain, in which case the player goes
        unsold.

        Raises:
            InvalidTransition: If no player is active
        """
        self._require_status(PLAYER_ACTIVE, 'finalize')
        self.status = PLAYER_RESOLVING
        player_id = self.active_player_id

        winner = None
        failed_teams = set()
        for entry in reversed(self.bid_history):
            team_id = entry['team_id']
            if team_id in failed_teams:
                continue
            try:
                self.ledger.commit_sale(team_id, player_id, entry['amount'])
            except InvariantViolation as e:
                logger.warning(
                    f"[{self.auction_id}] Commit refused for {team_id} on "
                    f"{player_id} at {entry['amount']}: {e}"
                )
                failed_teams.add(team_id)
                continue
            winner = entry
            break

        if winner is not None:
            player = self.pool.mark_sold(player_id, winner['team_id'], winner['amount'])
            team = self.ledger.team(winner['team_id'])
            logger.info(
                f"[{self.auction_id}] SOLD {player.name} → {team.name} "
                f"({winner['amount']}) | {team.remaining} remaining"
            )
            events = [(PLAYER_SOLD, {
                'player_id': player_id,
                'team_id': winner['team_id'],
                'amount': winner['amount'],
                'team_spent': team.spent,
                'team_remaining': team.remaining,
                'fallback': bool(failed_teams),
            })]
        else:
            player = self.pool.mark_unsold(player_id)
            logger.info(f"[{self.auction_id}] UNSOLD {player.name}")
            events = [(PLAYER_UNSOLD, {
                'player_id': player_id,
                'refused_teams': sorted(failed_teams),
            })]

        self._clear_block()
        return events

    def pause(self) -> List[PendingEvent]:
        """
        Take the active player off the block without a sale.

        The player returns to the head of the queue and the session goes idle.
        """
        self._require_status(PLAYER_ACTIVE, 'pause')
        player_id = self.active_player_id
        self.pool.requeue(player_id)
        self._clear_block()
        logger.info(f"[{self.auction_id}] Paused, {player_id} returned to the queue")
        return [(AUCTION_PAUSED, {'player_id': player_id})]

    def reset(self) -> None:
        """Return every player to pending and empty every roster."""
        self.pool.reset()
        self.ledger.reset()
        self._clear_block()
        self.last_seq = 0

    # ----- replay -----

    def apply_event(self, event: AuctionEvent) -> bool:
        """
        Apply a committed event to this session.

        Events at or below last_seq are ignored, so replaying an overlapping
        log is harmless.

        Returns:
            True if the event changed state, False if it was already applied

        Raises:
            ValueError: If the event does not fit the current state
        """
        if event.seq <= self.last_seq:
            return False

        payload = event.payload
        if event.type == SESSION_OPENED:
            pass
        elif event.type == PLAYER_STARTED:
            self._require_status(IDLE, event.type)
            player = self.pool.next_player()
            if player is None or player.player_id != payload['player_id']:
                raise ValueError(
                    f"Event {event.seq} starts {payload['player_id']}, "
                    f"queue yields {player.player_id if player else None}"
                )
            self.status = PLAYER_ACTIVE
            self.active_player_id = player.player_id
            self.high_bid = None
            self.high_bidder = None
            self.bid_history = []
        elif event.type == BID_ACCEPTED:
            self.record_bid(Bid(
                team_id=payload['team_id'],
                player_id=payload['player_id'],
                amount=payload['amount'],
                sequence=payload.get('sequence', 0),
            ))
        elif event.type == PLAYER_SOLD:
            self._require_status(PLAYER_ACTIVE, event.type)
            player = self.pool.get(payload['player_id'])
            if player.status != SOLD:
                self.ledger.commit_sale(payload['team_id'], player.player_id, payload['amount'])
                self.pool.mark_sold(player.player_id, payload['team_id'], payload['amount'])
            self._clear_block()
        elif event.type == PLAYER_UNSOLD:
            self._require_status(PLAYER_ACTIVE, event.type)
            if self.pool.get(payload['player_id']).status != UNSOLD:
                self.pool.mark_unsold(payload['player_id'])
            self._clear_block()
        elif event.type == AUCTION_PAUSED:
            self._require_status(PLAYER_ACTIVE, event.type)
            self.pool.requeue(payload['player_id'])
            self._clear_block()
        elif event.type == SESSION_COMPLETED:
            self.status = COMPLETED
        else:
            raise ValueError(f"Unknown event type: {event.type}")

        self.last_seq = event.seq
        return True

    def apply_events(self, events: Iterable[AuctionEvent]) -> int:
        applied = 0
        for event in sorted(events, key=lambda e: e.seq):
            if self.apply_event(event):
                applied += 1
        return applied

    # ----- helpers -----

    def _require_status(self, expected: str, action: str) -> None:
        if self.status != expected:
            raise InvalidTransition(
                f"Cannot {action} while session {self.auction_id} is {self.status}"
            )

    def _clear_block(self) -> None:
        self.status = IDLE
        self.active_player_id = None
        self.high_bid = None
        self.high_bidder = None
        self.bid_history = []

    def _completion_summary(self) -> dict:
        return {
            'sold': len(self.pool.by_status(SOLD)),
            'unsold': len(self.pool.by_status(UNSOLD)),
            'teams': [
                {
                    'team_id': t.team_id,
                    'spent': t.spent,
                    'remaining': t.remaining,
                    'roster': list(t.roster),
                }
                for t in self.ledger.teams.values()
            ],
        }


def replay_events(events: List[AuctionEvent]) -> AuctionSession:
    """
    Rebuild a session from its full event log.

    Args:
        events: Committed events; the lowest seq must be a SessionOpened event
                whose payload is the initial snapshot

    Returns:
        AuctionSession reflecting every event in the log

    Raises:
        ValueError: If the log does not start with SessionOpened, or the
                    rebuilt ledger breaks a purse or roster bound
    """
    ordered = sorted(events, key=lambda e: e.seq)
    if not ordered or ordered[0].type != SESSION_OPENED:
        raise ValueError("Event log must start with a SessionOpened event")

    opened = ordered[0]
    snapshot = SessionSnapshot.from_dict(opened.payload)
    session = AuctionSession.from_snapshot(snapshot)
    session.last_seq = opened.seq
    applied = session.apply_events(ordered[1:])
    session.ledger.validate()

    logger.info(
        f"Replayed {applied + 1} events for {session.auction_id} - "
        f"status {session.status}, last seq {session.last_seq}"
    )
    return session
