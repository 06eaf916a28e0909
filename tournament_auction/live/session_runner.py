"""
Serialized execution context for one live auction.

A LiveAuctionSession owns an AuctionSession and runs a single worker task
that consumes a command queue. Bids, bid-timer expiries and auctioneer
commands are all turned into commands, so they are totally ordered before any
state changes. A second task writes snapshots to the session store in the
order they were taken, retrying with backoff, so a slow or failing store
never blocks bidding.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .. import config
from .auction_event import (
    AuctionEvent, Bid, SessionSnapshot,
    IDLE, PLAYER_ACTIVE, COMPLETED,
    SESSION_OPENED, SESSION_COMPLETED, PLAYER_SOLD, PLAYER_UNSOLD, AUCTION_PAUSED,
)
from .auction_session import AuctionSession, PendingEvent
from .bid_arbitrator import BidArbitrator, BidResult
from .broadcaster import SessionBroadcaster
from .errors import (
    NoActiveSessionError, PersistenceFailure, ValidationError,
)
from .session_store import SessionStore, save_with_retry

logger = logging.getLogger(__name__)

# Control actions accepted from the auctioneer
START_NEXT = 'startNext'
FINALIZE = 'finalize'
PAUSE = 'pause'
CANCEL = 'cancelAuction'
CONTROL_ACTIONS = [START_NEXT, FINALIZE, PAUSE, CANCEL]

# Terminal resolutions that are followed by a snapshot save
_SAVE_AFTER = {PLAYER_SOLD, PLAYER_UNSOLD, AUCTION_PAUSED}

_BID = 'bid'
_CONTROL = 'control'
_TIMER = 'timer'


@dataclass
class _Command:
    kind: str
    future: Optional[asyncio.Future] = None
    bid: Optional[Bid] = None
    action: Optional[str] = None
    generation: int = 0


class LiveAuctionSession:
    """Runs one auction: command queue, bid timer and snapshot saves."""

    def __init__(
        self,
        session: AuctionSession,
        broadcaster: SessionBroadcaster,
        store: SessionStore,
        bid_window_seconds: Optional[float] = config.BID_WINDOW_SECONDS,
        save_retries: int = config.SAVE_MAX_RETRIES,
        save_backoff: float = config.SAVE_BACKOFF_SECONDS
    ):
        """
        Args:
            session: State machine to drive (loaded from the store)
            broadcaster: Sequencer for this auction's events
            store: Session store receiving snapshots
            bid_window_seconds: Countdown reset on every accepted bid;
                                None disables automatic finalization
            save_retries: Attempts per snapshot save
            save_backoff: Initial delay between save attempts (doubles)
        """
        self.session = session
        self.arbitrator = BidArbitrator(session)
        self.broadcaster = broadcaster
        self.store = store
        self.bid_window_seconds = bid_window_seconds
        self.save_retries = save_retries
        self.save_backoff = save_backoff

        self.auction_id = session.auction_id
        self.started_at: Optional[datetime] = None
        self.halted = False
        self.save_failed = False

        self._commands: Optional[asyncio.Queue] = None
        self._saves: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._saver: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._timer_generation = 0
        self._arrivals = itertools.count(1)

    # ----- lifecycle -----

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self, reopen: bool = False) -> None:
        """
        Start the worker and saver tasks; open the event log if it is new.

        Args:
            reopen: Publish SessionOpened with the current state even though
                    the sequence has already advanced (the log was restarted)
        """
        if self.running:
            return

        self._commands = asyncio.Queue()
        self._saves = asyncio.Queue()
        self._worker = asyncio.create_task(self._run_commands())
        self._saver = asyncio.create_task(self._run_saves())
        self.started_at = datetime.now()

        if reopen or self.broadcaster.last_seq == 0:
            self._publish([(SESSION_OPENED, self.session.snapshot().to_dict())])
            self._schedule_save()

        if self.session.status == PLAYER_ACTIVE:
            self._arm_timer()

        logger.info(
            f"Session {self.auction_id} running: {self.session.status}, "
            f"seq {self.broadcaster.last_seq}, {self.session.pool.remaining()} queued"
        )

    async def stop(self, flush_timeout: float = 10.0) -> None:
        """Stop processing, save a final snapshot and wait for pending saves."""
        if not self.running:
            return

        self._cancel_timer()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass

        while not self._commands.empty():
            command = self._commands.get_nowait()
            if command.future is not None and not command.future.done():
                command.future.set_exception(
                    NoActiveSessionError(f"Session {self.auction_id} stopped")
                )

        if not self.halted:
            self._schedule_save()
        try:
            await asyncio.wait_for(self._saves.join(), timeout=flush_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Session {self.auction_id}: pending saves did not finish")

        self._saver.cancel()
        try:
            await self._saver
        except asyncio.CancelledError:
            pass

        logger.info(f"Session {self.auction_id} stopped at seq {self.broadcaster.last_seq}")

    async def drain(self) -> None:
        """Wait until every queued command has been processed."""
        await self._commands.join()

    # ----- commands -----

    async def submit_bid(self, team_id: str, player_id: str, amount: int) -> BidResult:
        """
        Queue a bid and wait for the arbitrator's verdict.

        Raises:
            ValidationError: If the team is unknown or the amount is not positive
            PersistenceFailure: If the session halted
        """
        if amount <= 0:
            raise ValidationError(f"Bid amount must be positive, got {amount}")

        bid = Bid(
            team_id=team_id,
            player_id=player_id,
            amount=amount,
            sequence=next(self._arrivals),
        )
        return await self._enqueue(_Command(kind=_BID, bid=bid))

    async def control(self, action: str) -> List[AuctionEvent]:
        """
        Queue an auctioneer command and wait for the events it committed.

        Raises:
            ValidationError: If the action is unknown
            InvalidTransition: If the action does not fit the session status
            PersistenceFailure: If the session halted
        """
        if action not in CONTROL_ACTIONS:
            raise ValidationError(f"Unknown control action: {action}")
        return await self._enqueue(_Command(kind=_CONTROL, action=action))

    def snapshot(self) -> SessionSnapshot:
        """State as of the broadcaster's last sequence number."""
        return self.session.snapshot()

    def status(self) -> dict:
        session = self.session
        active = session.pool.get(session.active_player_id) if session.active_player_id else None
        return {
            'auction_id': self.auction_id,
            'status': session.status,
            'seq': self.broadcaster.last_seq,
            'running': self.running,
            'halted': self.halted,
            'save_failed': self.save_failed,
            'log_failed': self.broadcaster.log_failed,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'active_player': active.to_dict() if active else None,
            'high_bid': session.high_bid,
            'high_bidder': session.high_bidder,
            'minimum_next_bid': session.minimum_next_bid(),
            'queued_players': session.pool.remaining(),
            'clients': len(self.broadcaster.clients),
        }

    async def _enqueue(self, command: _Command):
        if not self.running:
            raise NoActiveSessionError(f"Session {self.auction_id} is not running")
        command.future = asyncio.get_running_loop().create_future()
        self._commands.put_nowait(command)
        return await command.future

    async def _run_commands(self) -> None:
        while True:
            command = await self._commands.get()
            try:
                result = await self._handle(command)
            except asyncio.CancelledError:
                if command.future is not None and not command.future.done():
                    command.future.set_exception(
                        NoActiveSessionError(f"Session {self.auction_id} stopped")
                    )
                raise
            except Exception as e:
                if command.future is not None and not command.future.done():
                    command.future.set_exception(e)
                elif not isinstance(e, PersistenceFailure):
                    logger.error(
                        f"Session {self.auction_id}: {command.kind} failed: {e}",
                        exc_info=True
                    )
            else:
                if command.future is not None and not command.future.done():
                    command.future.set_result(result)
            finally:
                self._commands.task_done()

    async def _handle(self, command: _Command):
        if self.halted:
            raise PersistenceFailure(
                f"Session {self.auction_id} halted: final snapshot was not saved"
            )

        if command.kind == _BID:
            result = self.arbitrator.submit(command.bid)
            if result.accepted:
                self._publish(result.events)
                self._arm_timer()
            return result

        if command.kind == _TIMER:
            if command.generation != self._timer_generation or self.session.status != PLAYER_ACTIVE:
                return []
            logger.info(f"Session {self.auction_id}: bid window expired")
            return self._publish(self.session.finalize())

        action = command.action
        if action == START_NEXT:
            return await self._start_next()
        if action == FINALIZE:
            self._cancel_timer()
            return self._publish(self.session.finalize())
        # PAUSE / CANCEL
        self._cancel_timer()
        return self._publish(self.session.pause())

    async def _start_next(self) -> List[AuctionEvent]:
        session = self.session
        if session.status != IDLE or session.pool.has_next():
            events = self._publish(session.start_next())
            if session.status == PLAYER_ACTIVE:
                self._arm_timer()
            return events

        # The completed snapshot must be durable before SessionCompleted is
        # committed; the live session stays idle until then
        snapshot = session.snapshot()
        snapshot.status = COMPLETED
        snapshot.seq = self.broadcaster.last_seq + 1
        await self._saves.join()
        try:
            await save_with_retry(self.store, snapshot, self.save_retries, self.save_backoff)
        except PersistenceFailure as e:
            self.halted = True
            logger.critical(f"Session {self.auction_id} halted before completion: {e}")
            self._warn_auctioneers(
                f"Auction halted: the final snapshot could not be saved ({e})"
            )
            raise

        self.save_failed = False
        return self._publish(session.start_next())

    # ----- timer -----

    def _arm_timer(self) -> None:
        self._cancel_timer()
        if self.bid_window_seconds is None:
            return
        self._timer_generation += 1
        self._timer = asyncio.create_task(self._expire_after(self._timer_generation))

    def _cancel_timer(self) -> None:
        self._timer_generation += 1
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _expire_after(self, generation: int) -> None:
        await asyncio.sleep(self.bid_window_seconds)
        if self.running:
            self._commands.put_nowait(_Command(kind=_TIMER, generation=generation))

    # ----- events and saves -----

    def _publish(self, pending: List[PendingEvent]) -> List[AuctionEvent]:
        events = []
        for event_type, payload in pending:
            event = self.broadcaster.publish(event_type, payload)
            self.session.last_seq = event.seq
            events.append(event)
            if event_type in _SAVE_AFTER:
                self._schedule_save()
        return events

    def _schedule_save(self) -> None:
        self._saves.put_nowait(self.session.snapshot())

    async def _run_saves(self) -> None:
        while True:
            snapshot = await self._saves.get()
            try:
                await save_with_retry(self.store, snapshot, self.save_retries, self.save_backoff)
                self.save_failed = False
            except PersistenceFailure as e:
                self.save_failed = True
                logger.error(f"Session {self.auction_id}: snapshot seq {snapshot.seq} not saved: {e}")
                self._warn_auctioneers(
                    f"Snapshot at seq {snapshot.seq} could not be saved; "
                    "the auction continues in memory"
                )
            finally:
                self._saves.task_done()

    def _warn_auctioneers(self, detail: str) -> None:
        self.broadcaster.notify_role(config.ROLE_AUCTIONEER, {
            'type': 'warning',
            'auctionId': self.auction_id,
            'detail': detail,
        })
