"""
Exception types for the live auction subsystem.

ValidationError and ArbitrationRejection never change state and are reported
only to the client that caused them. InvariantViolation is raised by the
ledger at commit time and drives the fallback cascade in the session state
machine. PersistenceFailure is raised once snapshot saving gives up.
"""

from enum import Enum
from typing import Optional


class AuctionError(Exception):
    """Base class for all live auction errors."""


class ValidationError(AuctionError):
    """Malformed bid or command, or a reference to an unknown team/player."""


class RejectReason(str, Enum):
    WRONG_PLAYER = 'WrongPlayer'
    BELOW_MINIMUM_INCREMENT = 'BelowMinimumIncrement'
    INSUFFICIENT_FUNDS = 'InsufficientFunds'
    AUCTION_NOT_ACTIVE = 'AuctionNotActive'
    SELF_OUTBID = 'SelfOutbid'


class ArbitrationRejection(AuctionError):
    """A well-formed bid that fails the auction's business rules."""

    def __init__(self, reason: RejectReason, detail: str = ''):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class InvariantViolation(AuctionError):
    """A ledger precondition failed at commit time."""

    def __init__(self, team_id: str, message: str):
        self.team_id = team_id
        super().__init__(message)


class InsufficientFunds(InvariantViolation):
    pass


class RosterFull(InvariantViolation):
    pass


class InvalidTransition(AuctionError):
    """A player or session status change that the state machine forbids."""


class TransportFailure(AuctionError):
    """A client connection went away or could not keep up."""

    def __init__(self, connection_id: str, message: Optional[str] = None):
        self.connection_id = connection_id
        super().__init__(message or f"Connection {connection_id} failed")


class PersistenceFailure(AuctionError):
    """The external session store could not record a snapshot."""


class SessionAlreadyActiveError(AuctionError):
    pass


class NoActiveSessionError(AuctionError):
    pass
