"""
Live auction subsystem for tournament player auctions.

This package runs one serialized session per auction: bids and auctioneer
commands are arbitrated in arrival order, every committed transition is
published as a sequenced event, and session snapshots are persisted so an
auction can be resumed or replayed.
"""

from .auction_event import AuctionEvent, Bid, IncrementRule, Player, SessionSnapshot, Team
from .auction_session import AuctionSession, replay_events
from .bid_arbitrator import BidArbitrator, BidResult
from .broadcaster import SessionBroadcaster
from .budget_ledger import BudgetLedger
from .event_store import AuctionEventStore
from .player_pool import PlayerPool
from .session_manager import SessionManager
from .session_runner import LiveAuctionSession
from .session_store import HttpSessionStore, JsonFileSessionStore, SessionStore

__all__ = [
    'AuctionEvent',
    'Bid',
    'IncrementRule',
    'Player',
    'SessionSnapshot',
    'Team',
    'AuctionSession',
    'replay_events',
    'BidArbitrator',
    'BidResult',
    'SessionBroadcaster',
    'BudgetLedger',
    'AuctionEventStore',
    'PlayerPool',
    'SessionManager',
    'LiveAuctionSession',
    'SessionStore',
    'JsonFileSessionStore',
    'HttpSessionStore',
]
