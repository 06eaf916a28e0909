"""
Bid acceptance rules for a live auction session.

The arbitrator is called only from the session runner's worker task, so bids
reach it one at a time in arrival order. Two equal bids therefore resolve to
the first one processed: the second fails the increment rule.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .auction_event import Bid, PLAYER_ACTIVE
from .auction_session import AuctionSession, PendingEvent
from .errors import ArbitrationRejection, RejectReason

logger = logging.getLogger(__name__)


@dataclass
class BidResult:
    """Outcome of a bid attempt."""

    accepted: bool
    bid: Bid
    reason: Optional[RejectReason] = None
    detail: str = ''
    events: List[PendingEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'accepted': self.accepted,
            'team_id': self.bid.team_id,
            'player_id': self.bid.player_id,
            'amount': self.bid.amount,
            'reason': self.reason.value if self.reason else None,
            'detail': self.detail,
        }


class BidArbitrator:
    """Accepts or rejects bids against the current session state."""

    def __init__(self, session: AuctionSession):
        self.session = session

    def submit(self, bid: Bid) -> BidResult:
        """
        Arbitrate a single bid.

        Args:
            bid: Bid to evaluate

        Returns:
            BidResult; accepted results carry the BidAccepted event to publish

        Raises:
            ValidationError: If the bid names an unknown team
        """
        try:
            self._check(bid)
        except ArbitrationRejection as rejection:
            logger.debug(
                f"[{self.session.auction_id}] Rejected #{bid.sequence} "
                f"{bid.team_id} {bid.amount}: {rejection}"
            )
            return BidResult(
                accepted=False,
                bid=bid,
                reason=rejection.reason,
                detail=rejection.detail,
            )

        events = self.session.record_bid(bid)
        logger.debug(
            f"[{self.session.auction_id}] Accepted #{bid.sequence} "
            f"{bid.team_id} {bid.amount} on {bid.player_id}"
        )
        return BidResult(accepted=True, bid=bid, events=events)

    def _check(self, bid: Bid) -> None:
        session = self.session
        team = session.ledger.team(bid.team_id)

        if session.status != PLAYER_ACTIVE:
            raise ArbitrationRejection(
                RejectReason.AUCTION_NOT_ACTIVE,
                f"session is {session.status}"
            )

        if bid.player_id != session.active_player_id:
            raise ArbitrationRejection(
                RejectReason.WRONG_PLAYER,
                f"{bid.player_id} is not on the block ({session.active_player_id} is)"
            )

        if bid.team_id == session.high_bidder:
            raise ArbitrationRejection(
                RejectReason.SELF_OUTBID,
                f"{team.name} already holds the high bid of {session.high_bid}"
            )

        minimum = session.minimum_next_bid()
        if bid.amount < minimum:
            raise ArbitrationRejection(
                RejectReason.BELOW_MINIMUM_INCREMENT,
                f"minimum bid is {minimum}"
            )

        if not session.ledger.can_afford(bid.team_id, bid.amount):
            raise ArbitrationRejection(
                RejectReason.INSUFFICIENT_FUNDS,
                f"{team.name} has {team.remaining} remaining and "
                f"{team.open_slots} open slots"
            )
