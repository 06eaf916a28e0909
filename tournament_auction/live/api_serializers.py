"""
API serializers for the live auction REST and WebSocket contracts.

Inbound WebSocket messages are validated here before they reach a session;
REST responses are shaped here from internal snapshots and ledgers.
"""

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

from .. import config
from .auction_event import SessionSnapshot
from .budget_ledger import BudgetLedger


# ========== Inbound WebSocket Messages ==========

class BidMessage(BaseModel):
    """{type: "bid", auctionId, teamId, playerId, amount}"""
    type: Literal['bid']
    auctionId: str
    teamId: str
    playerId: str
    amount: int = Field(gt=0, description="Bid amount in currency units")


class ControlMessage(BaseModel):
    """{type: "control", action}"""
    type: Literal['control']
    action: Literal['startNext', 'finalize', 'pause', 'cancelAuction']


class AckMessage(BaseModel):
    """{type: "ack", seq} - highest sequence number the client has applied."""
    type: Literal['ack']
    seq: int = Field(ge=0)


InboundMessage = Annotated[
    Union[BidMessage, ControlMessage, AckMessage],
    Field(discriminator='type'),
]

inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Dict) -> Union[BidMessage, ControlMessage, AckMessage]:
    """
    Validate a raw inbound message.

    Raises:
        pydantic.ValidationError: If the message is malformed
    """
    return inbound_adapter.validate_python(data)


# ========== Direct (non-sequenced) Outbound Messages ==========

def rejected_message(auction_id: str, reason: str, detail: str, bid: Dict) -> Dict:
    return {
        'type': 'rejected',
        'auctionId': auction_id,
        'reason': reason,
        'detail': detail,
        'bid': bid,
    }


def error_message(auction_id: str, detail: str) -> Dict:
    return {'type': 'error', 'auctionId': auction_id, 'detail': detail}


def snapshot_message(snapshot: SessionSnapshot) -> Dict:
    return {
        'type': 'snapshot',
        'auctionId': snapshot.auction_id,
        'seq': snapshot.seq,
        'payload': snapshot.to_dict(),
    }


# ========== REST Request Models ==========

class PlayerIn(BaseModel):
    player_id: str
    name: str
    base_price: int = Field(config.DEFAULT_BASE_PRICE, gt=0)
    photo_url: Optional[str] = None
    category: Optional[str] = None
    previous_team: Optional[str] = None


class TeamIn(BaseModel):
    team_id: str
    name: str
    purse: int = Field(config.DEFAULT_TEAM_PURSE, gt=0)
    min_roster: int = Field(config.DEFAULT_MIN_ROSTER, ge=0)
    max_roster: int = Field(config.DEFAULT_MAX_ROSTER, gt=0)


class CreateAuctionRequest(BaseModel):
    """Request model for registering an auction's players and teams."""
    players: List[PlayerIn]
    teams: List[TeamIn]
    increment_tiers: Optional[List[List[int]]] = Field(
        None, description="[[threshold, increment], ...]; defaults to config"
    )


class ImportPlayerIn(BaseModel):
    player_id: Optional[str] = None
    name: str = Field(min_length=1)
    base_price: Optional[int] = Field(None, gt=0)
    photo_url: Optional[str] = None
    category: Optional[str] = None
    previous_team: Optional[str] = None


class ImportPlayersRequest(BaseModel):
    """Players to add before an auction opens; duplicates are referred out."""
    players: List[ImportPlayerIn]
    source: Literal['manual', 'excel'] = 'manual'


class DuplicateDecisionIn(BaseModel):
    decision: Literal['merge', 'skipExisting', 'createNew']


# ========== REST Response Models ==========

class SessionStatusResponse(BaseModel):
    """Response model for session operations."""
    success: bool = Field(..., description="Whether operation succeeded")
    message: str = Field(..., description="Human-readable status message")
    session: Optional[Dict] = Field(None, description="Session state details")


class TeamLedgerResponse(BaseModel):
    team_id: str
    name: str
    players: int
    spent: int
    remaining: int
    open_slots: int
    below_minimum: bool


class TeamsResponse(BaseModel):
    auction_id: str
    updated_at: str = Field(description="ISO-8601 timestamp")
    teams: List[TeamLedgerResponse]


class EventsResponse(BaseModel):
    auction_id: str
    after: int
    last_seq: int
    events: List[Dict]


def serialize_teams(auction_id: str, ledger: BudgetLedger) -> TeamsResponse:
    """
    Transform the ledger summary DataFrame to the /teams contract.

    Args:
        auction_id: Auction the ledger belongs to
        ledger: Session ledger

    Returns:
        TeamsResponse sorted by team_id
    """
    records = ledger.summary().to_dict('records')
    teams = [
        TeamLedgerResponse(
            team_id=str(r['team_id']),
            name=str(r['name']),
            players=int(r['players']),
            spent=int(r['spent']),
            remaining=int(r['remaining']),
            open_slots=int(r['open_slots']),
            below_minimum=bool(r['below_minimum']),
        )
        for r in records
    ]
    return TeamsResponse(
        auction_id=auction_id,
        updated_at=datetime.now().isoformat(),
        teams=teams,
    )
