"""
FastAPI server for live auction sessions.

Provides HTTP endpoints to register, start, stop, reset and inspect auctions,
the duplicate-decision endpoints used during player import, and the
WebSocket endpoint that bidders, the auctioneer and viewers connect to.
"""

import asyncio
import logging
import uuid
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .. import config
from ..player_import import DecisionBroker, PlayerImporter
from .api_serializers import (
    CreateAuctionRequest, DuplicateDecisionIn, EventsResponse, ImportPlayersRequest,
    SessionStatusResponse, TeamsResponse, error_message, serialize_teams,
)
from .auction_event import Player, Team
from .budget_ledger import BudgetLedger
from .errors import (
    AuctionError, InvalidTransition, NoActiveSessionError, PersistenceFailure,
    SessionAlreadyActiveError, TransportFailure, ValidationError,
)
from .gateway import ConnectionGateway
from .session_manager import SessionManager
from .session_store import create_session_store

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Tournament Auction API",
    description="Live player auctions: session control, bidding and replay",
    version="1.0.0"
)

# CORS middleware for web UI access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global instances
session_manager = SessionManager(create_session_store(), events_dir=config.AUCTION_EVENTS_DIR)
gateway = ConnectionGateway(session_manager)
decision_broker = DecisionBroker()

# Import jobs by import_id
import_jobs: Dict[str, Dict] = {}


def _http_error(e: Exception, action: str) -> HTTPException:
    """Map an auction error to the HTTP status the REST contract uses."""
    if isinstance(e, NoActiveSessionError):
        logger.warning(f"Cannot {action}: {e}")
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SessionAlreadyActiveError):
        logger.warning(f"Cannot {action}: {e}")
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (ValidationError, InvalidTransition)):
        logger.warning(f"Cannot {action}: {e}")
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PersistenceFailure):
        logger.error(f"Cannot {action}: {e}")
        return HTTPException(status_code=503, detail=str(e))
    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed to {action}: {e}")


# ===== Auction Endpoints =====

@app.post("/auctions/{auction_id}", response_model=SessionStatusResponse)
async def create_auction(auction_id: str, request: CreateAuctionRequest):
    """
    Register an auction's players and teams.

    Overwrites any stored snapshot for this auction and starts a new event log.

    Raises:
        409 Conflict: If the auction has a live session
    """
    try:
        players = [Player(**p.model_dump()) for p in request.players]
        teams = [Team(**t.model_dump()) for t in request.teams]
        tiers = [tuple(t) for t in request.increment_tiers] if request.increment_tiers else None
        if len({p.player_id for p in players}) != len(players):
            raise ValidationError("Player ids must be unique")
        if len({t.team_id for t in teams}) != len(teams):
            raise ValidationError("Team ids must be unique")

        snapshot = await session_manager.create_auction(auction_id, players, teams, tiers)
        return SessionStatusResponse(
            success=True,
            message=f"Auction {auction_id} created",
            session=snapshot.to_dict()
        )

    except AuctionError as e:
        raise _http_error(e, "create auction")


@app.post("/auctions/{auction_id}/session", response_model=SessionStatusResponse)
async def start_session(auction_id: str):
    """
    Start the live session for an auction from its stored snapshot.

    Raises:
        404 Not Found: If the store has no such auction
        409 Conflict: If a session is already live or a player import is running
        503 Service Unavailable: If the store cannot be read
    """
    try:
        logger.info(f"Starting session for auction {auction_id}")
        live = await session_manager.start_session(auction_id)
        return SessionStatusResponse(
            success=True,
            message=f"Session {auction_id} started successfully",
            session=live.status()
        )

    except AuctionError as e:
        raise _http_error(e, "start session")


@app.delete("/auctions/{auction_id}/session", response_model=SessionStatusResponse)
async def stop_session(auction_id: str):
    """
    Stop a live session, saving its final snapshot.

    Raises:
        404 Not Found: If no session is live
    """
    try:
        logger.info(f"Stopping session for auction {auction_id}")
        live = await session_manager.stop_session(auction_id)
        return SessionStatusResponse(
            success=True,
            message=f"Session {auction_id} stopped successfully",
            session=live.status()
        )

    except AuctionError as e:
        raise _http_error(e, "stop session")


@app.get("/auctions/{auction_id}/session")
async def get_session_status(auction_id: str):
    """
    Get the live session's status: state, seq, active player and high bid.

    Raises:
        404 Not Found: If no session is live
    """
    try:
        return session_manager.get_session(auction_id).status()
    except AuctionError as e:
        raise _http_error(e, "get status")


@app.get("/auctions/{auction_id}/snapshot")
async def get_snapshot(auction_id: str):
    """
    Get the auction's full state.

    Served from the live session when there is one, otherwise from the store.
    """
    try:
        try:
            snapshot = session_manager.get_session(auction_id).snapshot()
        except NoActiveSessionError:
            snapshot = await asyncio.to_thread(session_manager.store.load_session, auction_id)
        return snapshot.to_dict()

    except AuctionError as e:
        raise _http_error(e, "get snapshot")


@app.get("/auctions/{auction_id}/events", response_model=EventsResponse)
async def get_events(auction_id: str, after: int = 0):
    """
    Get the events after a sequence number, in order.

    Served from the live session's log, otherwise from the durable event log.
    """
    if after < 0:
        raise HTTPException(status_code=400, detail="after must be >= 0")

    try:
        try:
            broadcaster = session_manager.get_session(auction_id).broadcaster
            if not broadcaster.can_replay_from(after):
                raise HTTPException(
                    status_code=410,
                    detail=f"Events after {after} are no longer in the log; fetch the snapshot"
                )
            events = broadcaster.events_since(after)
            last_seq = broadcaster.last_seq
        except NoActiveSessionError:
            event_store = session_manager.event_store_for(auction_id)
            if event_store is None:
                raise
            events = event_store.load_events_after(after)
            last_event = event_store.last_event()
            last_seq = last_event.seq if last_event else 0

        return EventsResponse(
            auction_id=auction_id,
            after=after,
            last_seq=last_seq,
            events=[e.to_wire() for e in events],
        )

    except AuctionError as e:
        raise _http_error(e, "get events")


@app.get("/auctions/{auction_id}/teams", response_model=TeamsResponse)
async def get_teams(auction_id: str):
    """Get every team's spend, remaining purse and roster slots."""
    try:
        try:
            ledger = session_manager.get_session(auction_id).session.ledger
        except NoActiveSessionError:
            snapshot = await asyncio.to_thread(session_manager.store.load_session, auction_id)
            ledger = BudgetLedger(snapshot.teams)
        return serialize_teams(auction_id, ledger)

    except AuctionError as e:
        raise _http_error(e, "get teams")


@app.post("/auctions/{auction_id}/reset", response_model=SessionStatusResponse)
async def reset_auction(auction_id: str):
    """
    Put every player back in the pool, empty every roster and start a new log.

    A live session is stopped first.
    """
    try:
        snapshot = await session_manager.reset_auction(auction_id)
        return SessionStatusResponse(
            success=True,
            message=f"Auction {auction_id} reset",
            session=snapshot.to_dict()
        )

    except AuctionError as e:
        raise _http_error(e, "reset auction")


# ===== Player Import Endpoints =====

@app.post("/auctions/{auction_id}/imports", status_code=202)
async def import_players(auction_id: str, request: ImportPlayersRequest):
    """
    Start importing players into an auction that has not opened yet.

    Likely duplicates are published at GET /imports/decisions and wait for an
    answer at POST /imports/decisions/{request_id}.

    Returns:
        Dict with the import_id to poll at GET /auctions/{auction_id}/imports/{import_id}
    """
    if auction_id in session_manager.active_sessions():
        raise HTTPException(status_code=409, detail=f"Auction {auction_id} has a live session")

    incoming = [
        Player(
            player_id=p.player_id or uuid.uuid4().hex,
            name=p.name,
            base_price=p.base_price or config.DEFAULT_BASE_PRICE,
            photo_url=p.photo_url,
            category=p.category,
            previous_team=p.previous_team,
        )
        for p in request.players
    ]
    importer = PlayerImporter(decision_broker.request)

    import_id = uuid.uuid4().hex
    job = {'import_id': import_id, 'auction_id': auction_id, 'status': 'running'}
    import_jobs[import_id] = job

    async def run_import():
        try:
            report = await session_manager.import_players(
                auction_id, importer, incoming, request.source
            )
            job.update(status='completed', report=report.to_dict())
        except AuctionError as e:
            logger.warning(f"Import {import_id} into {auction_id} failed: {e}")
            job.update(status='failed', detail=str(e))

    job['task'] = asyncio.create_task(run_import())
    logger.info(f"Import {import_id}: {len(incoming)} players into {auction_id}")
    return {'import_id': import_id, 'status': 'running'}


@app.get("/auctions/{auction_id}/imports/{import_id}")
async def get_import(auction_id: str, import_id: str):
    job = import_jobs.get(import_id)
    if job is None or job['auction_id'] != auction_id:
        raise HTTPException(status_code=404, detail=f"Unknown import {import_id}")
    return {k: v for k, v in job.items() if k != 'task'}


@app.get("/imports/decisions")
async def list_pending_decisions():
    """Duplicate-player questions waiting for an answer."""
    return {'pending': decision_broker.pending()}


@app.post("/imports/decisions/{request_id}")
async def resolve_decision(request_id: str, body: DuplicateDecisionIn):
    """
    Answer a duplicate-player question.

    Raises:
        400 Bad Request: If the request is unknown or already timed out
    """
    try:
        decision_broker.resolve(request_id, body.decision)
        return {'request_id': request_id, 'decision': body.decision}
    except AuctionError as e:
        raise _http_error(e, "resolve decision")


# ===== WebSocket =====

@app.websocket("/ws/auctions/{auction_id}")
async def auction_socket(
    websocket: WebSocket,
    auction_id: str,
    token: Optional[str] = None,
    last_seq: Optional[int] = None
):
    """
    Live auction feed.

    Sends either the events after last_seq or a snapshot, then every
    committed event. Accepts bid, control and ack messages.
    """
    await websocket.accept()
    try:
        client = gateway.connect(auction_id, token, last_seq)
    except AuctionError as e:
        await websocket.send_json(error_message(auction_id, str(e)))
        await websocket.close(code=1008)
        return

    async def read_messages():
        while True:
            text = await websocket.receive_text()
            await gateway.handle_text(client, text)

    reader = asyncio.create_task(read_messages())
    writer = asyncio.create_task(gateway.run_writer(client, websocket.send_json))
    try:
        done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, WebSocketDisconnect, TransportFailure):
                pass

        for task in done:
            error = task.exception()
            if isinstance(error, (WebSocketDisconnect, TransportFailure)):
                logger.debug(f"Client {client.connection_id} gone: {error!r}")
            elif error is not None:
                logger.error(f"Client {client.connection_id} failed: {error}", exc_info=error)

        if writer in done and client.dropped:
            # Slow client: it reconnects with last_seq and catches up
            await websocket.close(code=1013)
    finally:
        gateway.disconnect(client)


@app.get("/health")
def health_check():
    """
    Simple health check endpoint.

    Returns:
        Status OK if server is running
    """
    return {
        "status": "ok",
        "service": "Tournament Auction API",
        "version": "1.0.0",
        "active_sessions": session_manager.active_sessions(),
    }


# Startup event
@app.on_event("startup")
async def startup_event():
    """Log startup message."""
    logger.info("Tournament Auction API server started")
    logger.info(f"Session store: {type(session_manager.store).__name__}")
    logger.info(f"Event log directory: {config.AUCTION_EVENTS_DIR}")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Gracefully stop live sessions on shutdown."""
    logger.info("Tournament Auction API server shutting down")
    await session_manager.stop_all()
