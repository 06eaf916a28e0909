"""
Core data structures for live auction sessions.

These dataclasses represent players on the block, team ledgers, bids, the
committed events of a session and the snapshot that is handed to the
external session store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import json

from .. import config


# Player status
PENDING = 'pending'
ACTIVE = 'active'
SOLD = 'sold'
UNSOLD = 'unsold'
PLAYER_STATUSES = [PENDING, ACTIVE, SOLD, UNSOLD]

# Session status
IDLE = 'idle'
PLAYER_ACTIVE = 'player-active'
PLAYER_RESOLVING = 'player-resolving'
COMPLETED = 'completed'
SESSION_STATUSES = [IDLE, PLAYER_ACTIVE, PLAYER_RESOLVING, COMPLETED]

# Event types
SESSION_OPENED = 'SessionOpened'
PLAYER_STARTED = 'PlayerStarted'
BID_ACCEPTED = 'BidAccepted'
PLAYER_SOLD = 'PlayerSold'
PLAYER_UNSOLD = 'PlayerUnsold'
AUCTION_PAUSED = 'AuctionPaused'
SESSION_COMPLETED = 'SessionCompleted'
EVENT_TYPES = [
    SESSION_OPENED, PLAYER_STARTED, BID_ACCEPTED, PLAYER_SOLD,
    PLAYER_UNSOLD, AUCTION_PAUSED, SESSION_COMPLETED,
]


@dataclass
class Player:
    """A player in an auction pool."""

    player_id: str
    name: str
    base_price: int
    status: str = PENDING
    current_bid: Optional[int] = None
    current_bidder: Optional[str] = None   # team_id holding the high bid
    sold_to: Optional[str] = None
    sold_price: Optional[int] = None
    photo_url: Optional[str] = None         # opaque asset URL, never inspected
    category: Optional[str] = None
    previous_team: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'player_id': self.player_id,
            'name': self.name,
            'base_price': self.base_price,
            'status': self.status,
            'current_bid': self.current_bid,
            'current_bidder': self.current_bidder,
            'sold_to': self.sold_to,
            'sold_price': self.sold_price,
            'photo_url': self.photo_url,
            'category': self.category,
            'previous_team': self.previous_team,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Player':
        return cls(
            player_id=str(data['player_id']),
            name=data['name'],
            base_price=int(data.get('base_price', config.DEFAULT_BASE_PRICE)),
            status=data.get('status', PENDING),
            current_bid=data.get('current_bid'),
            current_bidder=data.get('current_bidder'),
            sold_to=data.get('sold_to'),
            sold_price=data.get('sold_price'),
            photo_url=data.get('photo_url'),
            category=data.get('category'),
            previous_team=data.get('previous_team'),
        )


@dataclass
class Team:
    """A team's purse and roster for the duration of an auction."""

    team_id: str
    name: str
    purse: int = config.DEFAULT_TEAM_PURSE
    spent: int = 0
    roster: List[str] = field(default_factory=list)  # player_ids in purchase order
    min_roster: int = config.DEFAULT_MIN_ROSTER
    max_roster: int = config.DEFAULT_MAX_ROSTER

    @property
    def remaining(self) -> int:
        return self.purse - self.spent

    @property
    def open_slots(self) -> int:
        return self.max_roster - len(self.roster)

    def to_dict(self) -> dict:
        return {
            'team_id': self.team_id,
            'name': self.name,
            'purse': self.purse,
            'spent': self.spent,
            'roster': list(self.roster),
            'min_roster': self.min_roster,
            'max_roster': self.max_roster,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Team':
        return cls(
            team_id=str(data['team_id']),
            name=data.get('name', str(data['team_id'])),
            purse=int(data.get('purse', config.DEFAULT_TEAM_PURSE)),
            spent=int(data.get('spent', 0)),
            roster=list(data.get('roster', [])),
            min_roster=int(data.get('min_roster', config.DEFAULT_MIN_ROSTER)),
            max_roster=int(data.get('max_roster', config.DEFAULT_MAX_ROSTER)),
        )


@dataclass
class Bid:
    """A bid attempt. Exists only as input to arbitration."""

    team_id: str
    player_id: str
    amount: int
    sequence: int = 0                  # arrival order at the session
    submitted_at: datetime = field(default_factory=datetime.now)


@dataclass
class IncrementRule:
    """Minimum raise over the current high bid, tiered by bid size."""

    tiers: List[Tuple[int, int]] = field(
        default_factory=lambda: list(config.INCREMENT_TIERS)
    )

    def __post_init__(self):
        if not self.tiers:
            raise ValueError("IncrementRule needs at least one tier")
        self.tiers = sorted((int(t), int(inc)) for t, inc in self.tiers)

    @classmethod
    def flat(cls, increment: int) -> 'IncrementRule':
        return cls(tiers=[(0, increment)])

    def increment_for(self, current_bid: int) -> int:
        increment = self.tiers[0][1]
        for threshold, tier_increment in self.tiers:
            if current_bid >= threshold:
                increment = tier_increment
        return increment

    def minimum_next_bid(self, current_bid: Optional[int], base_price: int) -> int:
        """Smallest acceptable amount given the current high bid (None = no bids)."""
        if current_bid is None:
            return base_price
        return current_bid + self.increment_for(current_bid)

    def to_list(self) -> List[List[int]]:
        return [[t, inc] for t, inc in self.tiers]


@dataclass
class AuctionEvent:
    """A committed state transition with its per-auction sequence number."""

    auction_id: str
    seq: int
    type: str
    payload: dict
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'auction_id': self.auction_id,
            'seq': self.seq,
            'type': self.type,
            'payload': self.payload,
            'timestamp': self.timestamp.isoformat(),
        }

    def to_wire(self) -> dict:
        """Outbound message shape: {auctionId, seq, type, payload}."""
        return {
            'auctionId': self.auction_id,
            'seq': self.seq,
            'type': self.type,
            'payload': self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AuctionEvent':
        return cls(
            auction_id=data['auction_id'],
            seq=int(data['seq']),
            type=data['type'],
            payload=data.get('payload', {}),
            timestamp=datetime.fromisoformat(data['timestamp'])
            if data.get('timestamp') else datetime.now(),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> 'AuctionEvent':
        return cls.from_dict(json.loads(json_str))


@dataclass
class SessionSnapshot:
    """Complete state of an auction session, as exchanged with the store."""

    auction_id: str
    players: List[Player]                         # pool order
    teams: List[Team]
    status: str = IDLE
    seq: int = 0                                  # last event reflected in this snapshot
    queue: Optional[List[str]] = None             # remaining player_ids; None = all pending in pool order
    active_player_id: Optional[str] = None
    high_bid: Optional[int] = None
    high_bidder: Optional[str] = None
    bid_history: List[Dict] = field(default_factory=list)  # accepted bids on the active player
    increment_tiers: List[Tuple[int, int]] = field(
        default_factory=lambda: list(config.INCREMENT_TIERS)
    )

    def to_dict(self) -> dict:
        return {
            'auction_id': self.auction_id,
            'status': self.status,
            'seq': self.seq,
            'players': [p.to_dict() for p in self.players],
            'teams': [t.to_dict() for t in self.teams],
            'queue': list(self.queue) if self.queue is not None else None,
            'active_player_id': self.active_player_id,
            'high_bid': self.high_bid,
            'high_bidder': self.high_bidder,
            'bid_history': [dict(b) for b in self.bid_history],
            'increment_tiers': [[t, inc] for t, inc in self.increment_tiers],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionSnapshot':
        return cls(
            auction_id=str(data['auction_id']),
            players=[Player.from_dict(p) for p in data.get('players', [])],
            teams=[Team.from_dict(t) for t in data.get('teams', [])],
            status=data.get('status', IDLE),
            seq=int(data.get('seq', 0)),
            queue=data.get('queue'),
            active_player_id=data.get('active_player_id'),
            high_bid=data.get('high_bid'),
            high_bidder=data.get('high_bidder'),
            bid_history=list(data.get('bid_history', [])),
            increment_tiers=[
                (int(t), int(inc))
                for t, inc in data.get('increment_tiers', config.INCREMENT_TIERS)
            ],
        )

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> 'SessionSnapshot':
        return cls.from_dict(json.loads(json_str))


def create_initial_snapshot(
    auction_id: str,
    players: List[Player],
    teams: List[Team],
    increment_tiers: Optional[List[Tuple[int, int]]] = None
) -> SessionSnapshot:
    """
    Create a fresh snapshot at the start of an auction.

    Args:
        auction_id: Auction identifier
        players: Players in the order they will be auctioned
        teams: Participating teams (rosters are cleared)
        increment_tiers: Optional increment tiers (defaults to config)

    Returns:
        SessionSnapshot with every player pending and every purse untouched
    """
    fresh_players = [
        Player(
            player_id=p.player_id,
            name=p.name,
            base_price=p.base_price,
            photo_url=p.photo_url,
            category=p.category,
            previous_team=p.previous_team,
        )
        for p in players
    ]
    fresh_teams = [
        Team(
            team_id=t.team_id,
            name=t.name,
            purse=t.purse,
            min_roster=t.min_roster,
            max_roster=t.max_roster,
        )
        for t in teams
    ]
    return SessionSnapshot(
        auction_id=auction_id,
        players=fresh_players,
        teams=fresh_teams,
        increment_tiers=list(increment_tiers or config.INCREMENT_TIERS),
    )
