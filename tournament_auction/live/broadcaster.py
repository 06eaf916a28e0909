"""
Ordered fan-out of committed auction events.

Every committed transition gets the next sequence number for its auction, is
appended to the session-scoped log (and the durable event store when one is
configured), and is queued on every registered client's outbound queue.
Clients that reconnect get the events after their last acknowledged sequence
number replayed before live events resume.

Everything here runs on the event loop thread without awaiting, so a replay
and the live events that follow it can never interleave out of order.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from .. import config
from .auction_event import AuctionEvent
from .event_store import AuctionEventStore

if TYPE_CHECKING:
    from .gateway import ClientRegistration

logger = logging.getLogger(__name__)


class SessionBroadcaster:
    """Sequences events for one auction and pushes them to its clients."""

    def __init__(
        self,
        auction_id: str,
        event_store: Optional[AuctionEventStore] = None,
        history: Optional[List[AuctionEvent]] = None,
        start_seq: int = 0
    ):
        """
        Args:
            auction_id: Auction this broadcaster sequences
            event_store: Optional durable log every published event is appended to
            history: Previously committed events (e.g. loaded from the event store)
            start_seq: Sequence number already reached when history is empty
        """
        self.auction_id = auction_id
        self.event_store = event_store
        self.log: List[AuctionEvent] = sorted(history or [], key=lambda e: e.seq)
        self.clients: Dict[str, 'ClientRegistration'] = {}
        self._start_seq = start_seq
        self.log_failed = False

    @property
    def last_seq(self) -> int:
        return self.log[-1].seq if self.log else self._start_seq

    @property
    def first_seq(self) -> int:
        return self.log[0].seq if self.log else self._start_seq + 1

    def publish(self, event_type: str, payload: dict) -> AuctionEvent:
        """Assign the next sequence number to a transition and deliver it."""
        event = AuctionEvent(
            auction_id=self.auction_id,
            seq=self.last_seq + 1,
            type=event_type,
            payload=payload,
        )
        self.log.append(event)

        if self.event_store is not None:
            try:
                self.event_store.append_event(event)
            except OSError as e:
                self.log_failed = True
                logger.error(f"[{self.auction_id}] Failed to append event {event.seq}: {e}")
                self.notify_role(config.ROLE_AUCTIONEER, {
                    'type': 'warning',
                    'auctionId': self.auction_id,
                    'detail': (
                        f"Event {event.seq} could not be written to the event log; "
                        "replay from the log is no longer complete"
                    ),
                })

        message = event.to_wire()
        for client in list(self.clients.values()):
            self._deliver(client, message)

        logger.debug(
            f"[{self.auction_id}] #{event.seq} {event.type} → {len(self.clients)} clients"
        )
        return event

    def can_replay_from(self, after_seq: int) -> bool:
        """True if every event after after_seq is still in the log."""
        if after_seq >= self.last_seq:
            return after_seq == self.last_seq
        return after_seq >= self.first_seq - 1

    def events_since(self, after_seq: int) -> List[AuctionEvent]:
        return [e for e in self.log if e.seq > after_seq]

    def register(self, client: 'ClientRegistration', after_seq: int) -> int:
        """
        Replay missed events to a client, then subscribe it to live events.

        Args:
            client: Registration whose outbox receives the messages
            after_seq: Last sequence number the client already holds

        Returns:
            Number of events replayed

        Raises:
            ValueError: If events after after_seq are no longer in the log
        """
        if not self.can_replay_from(after_seq):
            raise ValueError(
                f"Cannot replay {self.auction_id} from seq {after_seq} "
                f"(log holds {self.first_seq}..{self.last_seq})"
            )

        missed = self.events_since(after_seq)
        for event in missed:
            self._deliver(client, event.to_wire())
        if not client.dropped:
            self.clients[client.connection_id] = client

        logger.info(
            f"[{self.auction_id}] Registered {client.connection_id} ({client.role}) "
            f"after seq {after_seq}, replayed {len(missed)}"
        )
        return len(missed)

    def unregister(self, connection_id: str) -> None:
        if self.clients.pop(connection_id, None) is not None:
            logger.info(f"[{self.auction_id}] Unregistered {connection_id}")

    def notify_role(self, role: str, message: dict) -> int:
        """Send a non-sequenced message to every client with the given role."""
        targets = [c for c in self.clients.values() if c.role == role]
        for client in targets:
            self._deliver(client, message)
        return len(targets)

    def _deliver(self, client: 'ClientRegistration', message: dict) -> None:
        try:
            client.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                f"[{self.auction_id}] {client.connection_id} fell behind "
                f"(last ack {client.last_ack_seq}), dropping it"
            )
            self.unregister(client.connection_id)
            client.drop()
