"""
Connection gateway between network clients and live auction sessions.

The gateway resolves each connection's role, keeps the per-client
registration (including the last acknowledged sequence number), forwards
bids and auctioneer commands to the session runner, and runs one writer per
client draining its outbound queue. It does not depend on a particular
transport: the WebSocket endpoint supplies a send coroutine.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError as SchemaError

from .. import config
from .api_serializers import (
    AckMessage, BidMessage, ControlMessage,
    error_message, parse_inbound, rejected_message, snapshot_message,
)
from .errors import AuctionError, TransportFailure, ValidationError
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

Send = Callable[[dict], Awaitable[None]]


@dataclass
class ClientRegistration:
    """One connected client. Owned by the gateway, read by the broadcaster."""

    connection_id: str
    auction_id: str
    role: str
    team_id: Optional[str] = None
    last_ack_seq: int = 0
    dropped: bool = False
    outbox: asyncio.Queue = field(
        default_factory=lambda: asyncio.Queue(maxsize=config.CLIENT_QUEUE_SIZE)
    )

    def drop(self) -> None:
        """Discard undelivered messages and tell the writer to close."""
        self.dropped = True
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(None)


class TokenAuthenticator:
    """Maps already-issued access tokens to (role, team_id)."""

    def __init__(
        self,
        auctioneer_tokens=None,
        bidder_tokens: Optional[Dict[str, str]] = None,
        allow_anonymous_viewers: bool = config.ALLOW_ANONYMOUS_VIEWERS
    ):
        self.auctioneer_tokens = set(
            config.AUCTIONEER_TOKENS if auctioneer_tokens is None else auctioneer_tokens
        )
        self.bidder_tokens = dict(
            config.BIDDER_TOKENS if bidder_tokens is None else bidder_tokens
        )
        self.allow_anonymous_viewers = allow_anonymous_viewers

    def authenticate(self, token: Optional[str]) -> Tuple[str, Optional[str]]:
        """
        Raises:
            ValidationError: If the token is unknown and anonymous viewers are off
        """
        if token and token in self.auctioneer_tokens:
            return config.ROLE_AUCTIONEER, None
        if token and token in self.bidder_tokens:
            return config.ROLE_BIDDER, self.bidder_tokens[token]
        if self.allow_anonymous_viewers:
            return config.ROLE_VIEWER, None
        raise ValidationError("Unknown access token")


class ConnectionGateway:
    """Registers clients with sessions and routes their messages."""

    def __init__(self, manager: SessionManager, authenticator: Optional[TokenAuthenticator] = None):
        self.manager = manager
        self.authenticator = authenticator or TokenAuthenticator()
        self.clients: Dict[str, ClientRegistration] = {}

    def connect(
        self,
        auction_id: str,
        token: Optional[str] = None,
        last_seq: Optional[int] = None
    ) -> ClientRegistration:
        """
        Register a client with an auction's broadcaster.

        A client presenting last_seq gets the events after it replayed. A new
        client (or one whose events are no longer in the log) gets a snapshot
        first, taken at the same sequence number it is registered from.

        Raises:
            NoActiveSessionError: If the auction has no live session
            ValidationError: If the token is rejected
        """
        live = self.manager.get_session(auction_id)
        role, team_id = self.authenticator.authenticate(token)
        if role == config.ROLE_BIDDER:
            live.session.ledger.team(team_id)

        client = ClientRegistration(
            connection_id=uuid.uuid4().hex,
            auction_id=auction_id,
            role=role,
            team_id=team_id,
        )

        broadcaster = live.broadcaster
        if last_seq is not None and broadcaster.can_replay_from(last_seq):
            client.last_ack_seq = last_seq
            broadcaster.register(client, last_seq)
        else:
            snapshot = live.snapshot()
            client.outbox.put_nowait(snapshot_message(snapshot))
            client.last_ack_seq = snapshot.seq
            broadcaster.register(client, snapshot.seq)

        self.clients[client.connection_id] = client
        logger.info(
            f"Client {client.connection_id} connected to {auction_id} as {role}"
            + (f" for {team_id}" if team_id else "")
        )
        return client

    def disconnect(self, client: ClientRegistration) -> None:
        self.clients.pop(client.connection_id, None)
        try:
            self.manager.get_session(client.auction_id).broadcaster.unregister(client.connection_id)
        except AuctionError:
            pass
        logger.info(
            f"Client {client.connection_id} left {client.auction_id} "
            f"(last ack {client.last_ack_seq})"
        )

    async def handle_text(self, client: ClientRegistration, text: str) -> None:
        """Decode a raw text frame and route it."""
        try:
            data = json.loads(text)
        except ValueError:
            self._reply(client, error_message(client.auction_id, "Malformed message: not JSON"))
            return
        await self.handle_message(client, data)

    async def handle_message(self, client: ClientRegistration, data: dict) -> None:
        """
        Validate and route one inbound message.

        Rejections and errors are queued for this client only; committed
        transitions reach everyone through the broadcaster.
        """
        try:
            message = parse_inbound(data)
        except SchemaError as e:
            problems = '; '.join(
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            self._reply(client, error_message(client.auction_id, f"Malformed message: {problems}"))
            return

        if isinstance(message, AckMessage):
            if message.seq > client.last_ack_seq:
                client.last_ack_seq = message.seq
            return

        try:
            if isinstance(message, BidMessage):
                await self._handle_bid(client, message)
            elif isinstance(message, ControlMessage):
                await self._handle_control(client, message)
        except AuctionError as e:
            logger.debug(f"Client {client.connection_id}: {e}")
            self._reply(client, error_message(client.auction_id, str(e)))

    async def _handle_bid(self, client: ClientRegistration, message: BidMessage) -> None:
        if message.auctionId != client.auction_id:
            raise ValidationError(
                f"Bid for auction {message.auctionId} sent on {client.auction_id}"
            )
        if client.role == config.ROLE_VIEWER:
            raise ValidationError("Viewers cannot bid")
        if client.role == config.ROLE_BIDDER and message.teamId != client.team_id:
            raise ValidationError(f"This connection bids for {client.team_id} only")

        live = self.manager.get_session(client.auction_id)
        result = await live.submit_bid(message.teamId, message.playerId, message.amount)
        if not result.accepted:
            self._reply(client, rejected_message(
                client.auction_id,
                result.reason.value,
                result.detail,
                result.to_dict(),
            ))

    async def _handle_control(self, client: ClientRegistration, message: ControlMessage) -> None:
        if client.role != config.ROLE_AUCTIONEER:
            raise ValidationError("Only the auctioneer can control the auction")
        live = self.manager.get_session(client.auction_id)
        await live.control(message.action)

    def _reply(self, client: ClientRegistration, message: dict) -> None:
        if client.dropped:
            return
        try:
            client.outbox.put_nowait(message)
        except asyncio.QueueFull:
            client.drop()

    async def run_writer(self, client: ClientRegistration, send: Send) -> None:
        """
        Drain a client's outbound queue into its transport.

        Returns when the client is dropped.

        Raises:
            TransportFailure: If the transport cannot send
        """
        while True:
            message = await client.outbox.get()
            if message is None:
                return
            try:
                await send(message)
            except Exception as e:
                raise TransportFailure(client.connection_id, f"Send failed: {e}") from e
