"""
Registry of live auction sessions, keyed by auction id.

Exactly one LiveAuctionSession may run per auction id. Sessions start from
the snapshot in the session store, catch up on any events the durable event
log holds beyond that snapshot, and resume where they left off.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .. import config
from .auction_event import Player, SessionSnapshot, Team, create_initial_snapshot
from .auction_session import AuctionSession
from .broadcaster import SessionBroadcaster
from .errors import (
    InvalidTransition, InvariantViolation, NoActiveSessionError, PersistenceFailure,
    SessionAlreadyActiveError,
)
from .event_store import AuctionEventStore, create_event_filepath
from .session_runner import LiveAuctionSession
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionManager:
    """Starts, looks up and stops live auction sessions."""

    def __init__(
        self,
        store: SessionStore,
        events_dir: Optional[Path] = None,
        bid_window_seconds: Optional[float] = config.BID_WINDOW_SECONDS,
        save_retries: int = config.SAVE_MAX_RETRIES,
        save_backoff: float = config.SAVE_BACKOFF_SECONDS
    ):
        """
        Args:
            store: Persistence boundary for snapshots
            events_dir: Directory for per-auction JSONL event logs (None = in memory only)
            bid_window_seconds: Bid countdown passed to every session
            save_retries: Snapshot save attempts
            save_backoff: Initial delay between save attempts
        """
        self.store = store
        self.events_dir = Path(events_dir) if events_dir is not None else None
        self.bid_window_seconds = bid_window_seconds
        self.save_retries = save_retries
        self.save_backoff = save_backoff
        self._sessions: Dict[str, LiveAuctionSession] = {}
        self._importing: Set[str] = set()

    def _require_available(self, auction_id: str) -> None:
        """Raise if the auction has a live session or an import in progress."""
        if auction_id in self._sessions:
            raise SessionAlreadyActiveError(f"Auction {auction_id} has a live session")
        if auction_id in self._importing:
            raise SessionAlreadyActiveError(f"Auction {auction_id} has a player import in progress")

    def event_store_for(self, auction_id: str) -> Optional[AuctionEventStore]:
        if self.events_dir is None:
            return None
        return AuctionEventStore(create_event_filepath(self.events_dir, auction_id))

    async def create_auction(
        self,
        auction_id: str,
        players: List[Player],
        teams: List[Team],
        increment_tiers: Optional[List[Tuple[int, int]]] = None
    ) -> SessionSnapshot:
        """Write a fresh snapshot for an auction so a session can be started on it."""
        self._require_available(auction_id)

        snapshot = create_initial_snapshot(auction_id, players, teams, increment_tiers)
        await self._write_fresh(snapshot)
        logger.info(
            f"Created auction {auction_id}: {len(players)} players, {len(teams)} teams"
        )
        return snapshot

    async def _write_fresh(self, snapshot: SessionSnapshot) -> None:
        """Save a seq-0 snapshot and start the auction's event log over."""
        await asyncio.to_thread(self.store.save_session, snapshot)
        event_store = self.event_store_for(snapshot.auction_id)
        if event_store is not None:
            event_store.clear()

    async def start_session(self, auction_id: str) -> LiveAuctionSession:
        """
        Load an auction from the store and start its live session.

        Raises:
            SessionAlreadyActiveError: If the auction already has a live session
            NoActiveSessionError: If the store has no such auction
            PersistenceFailure: If the store or event log cannot be read consistently
        """
        self._require_available(auction_id)

        snapshot = await asyncio.to_thread(self.store.load_session, auction_id)
        session = AuctionSession.from_snapshot(snapshot)

        event_store = self.event_store_for(auction_id)
        history = event_store.load_all_events() if event_store is not None else []
        reopen = False
        if event_store is not None and snapshot.seq > 0 and (
            not history or history[-1].seq < snapshot.seq
        ):
            # Events up to the snapshot are gone; restart the log from a
            # SessionOpened carrying the snapshot so it replays on its own
            logger.warning(
                f"Event log for {auction_id} ends at {history[-1].seq if history else 0}, "
                f"snapshot is at {snapshot.seq}; starting a new log at the snapshot, "
                f"earlier events can no longer be replayed"
            )
            event_store.clear()
            history = []
            reopen = True
        else:
            try:
                caught_up = session.apply_events(e for e in history if e.seq > snapshot.seq)
                session.ledger.validate()
            except (ValueError, InvalidTransition, InvariantViolation) as e:
                raise PersistenceFailure(
                    f"Event log for {auction_id} does not match its snapshot: {e}"
                ) from e
            if caught_up:
                logger.info(f"Applied {caught_up} logged events beyond the snapshot")

        broadcaster = SessionBroadcaster(
            auction_id,
            event_store=event_store,
            history=history,
            start_seq=session.last_seq,
        )
        live = LiveAuctionSession(
            session,
            broadcaster,
            self.store,
            bid_window_seconds=self.bid_window_seconds,
            save_retries=self.save_retries,
            save_backoff=self.save_backoff,
        )
        self._sessions[auction_id] = live
        await live.start(reopen=reopen)
        return live

    def get_session(self, auction_id: str) -> LiveAuctionSession:
        try:
            return self._sessions[auction_id]
        except KeyError:
            raise NoActiveSessionError(f"No live session for auction {auction_id}") from None

    def active_sessions(self) -> List[str]:
        return list(self._sessions)

    async def stop_session(self, auction_id: str) -> LiveAuctionSession:
        live = self.get_session(auction_id)
        await live.stop()
        del self._sessions[auction_id]
        return live

    async def stop_all(self) -> None:
        for auction_id in list(self._sessions):
            try:
                await self.stop_session(auction_id)
            except Exception as e:
                logger.error(f"Error stopping session {auction_id}: {e}")

    async def import_players(self, auction_id: str, importer, incoming: List[Player], source: str):
        """
        Add players to an auction that has not opened yet.

        Args:
            auction_id: Auction to extend
            importer: PlayerImporter that resolves duplicates
            incoming: Players to add, in import order
            source: 'manual' or 'excel'

        Returns:
            The importer's ImportReport

        Raises:
            SessionAlreadyActiveError: If the auction has a live session or
                                       another import in progress
            InvalidTransition: If the auction has already opened
        """
        self._require_available(auction_id)

        # Sessions, resets and re-creates of this auction are refused until the import ends
        self._importing.add(auction_id)
        try:
            snapshot = await asyncio.to_thread(self.store.load_session, auction_id)
            self._require_unopened(snapshot)

            report = await importer.import_players(incoming, snapshot.players, source)

            current = await asyncio.to_thread(self.store.load_session, auction_id)
            self._require_unopened(current)
            await asyncio.to_thread(self.store.save_session, snapshot)
        finally:
            self._importing.discard(auction_id)
        return report

    @staticmethod
    def _require_unopened(snapshot: SessionSnapshot) -> None:
        if snapshot.seq > 0:
            raise InvalidTransition(
                f"Auction {snapshot.auction_id} has already opened (seq {snapshot.seq}); "
                f"reset it first"
            )

    async def reset_auction(self, auction_id: str) -> SessionSnapshot:
        """
        Put every player back in the pool and empty every roster.

        The live session (if any) is stopped and the event log starts over.

        Raises:
            SessionAlreadyActiveError: If a player import is in progress
        """
        if auction_id in self._importing:
            raise SessionAlreadyActiveError(f"Auction {auction_id} has a player import in progress")
        if auction_id in self._sessions:
            await self.stop_session(auction_id)

        snapshot = await asyncio.to_thread(self.store.load_session, auction_id)
        session = AuctionSession.from_snapshot(snapshot)
        session.reset()
        fresh = session.snapshot()
        await self._write_fresh(fresh)

        logger.warning(f"Reset auction {auction_id}")
        return fresh
