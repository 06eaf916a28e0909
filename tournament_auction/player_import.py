"""
Import players into an auction pool, resolving likely duplicates.

Incoming records are fuzzy-matched by name against the players already in
the pool. A likely duplicate is not resolved here: an external decision
source answers merge, skipExisting or createNew. The DecisionBroker turns
that into an explicit request/response exchange with a timeout, after which
the default decision applies.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import pandas as pd
from fuzzywuzzy import fuzz, process

from . import config
from .live.auction_event import Player
from .live.errors import ValidationError

logger = logging.getLogger(__name__)

MERGE = 'merge'
SKIP_EXISTING = 'skipExisting'
CREATE_NEW = 'createNew'
DECISIONS = [MERGE, SKIP_EXISTING, CREATE_NEW]

SOURCE_MANUAL = 'manual'
SOURCE_EXCEL = 'excel'

OPTIONAL_COLUMNS = ['player_id', 'base_price', 'photo_url', 'category', 'previous_team']


@dataclass
class DuplicateDecisionRequest:
    """A question put to the external decision source."""

    request_id: str
    existing: Player
    incoming: Player
    source: str
    score: int
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'request_id': self.request_id,
            'existing': self.existing.to_dict(),
            'incoming': self.incoming.to_dict(),
            'source': self.source,
            'score': self.score,
            'created_at': self.created_at.isoformat(),
        }


Resolver = Callable[[DuplicateDecisionRequest], Awaitable[str]]


class DecisionBroker:
    """Holds open duplicate-decision requests until answered or timed out."""

    def __init__(
        self,
        timeout: float = config.DUPLICATE_DECISION_TIMEOUT,
        default_decision: str = config.DUPLICATE_DEFAULT_DECISION
    ):
        if default_decision not in DECISIONS:
            raise ValueError(f"Unknown default decision: {default_decision}")
        self.timeout = timeout
        self.default_decision = default_decision
        self._pending: Dict[str, Tuple[DuplicateDecisionRequest, asyncio.Future]] = {}

    async def request(self, decision_request: DuplicateDecisionRequest) -> str:
        """
        Publish a request and wait for its answer.

        Returns:
            The external decision, or the default decision on timeout
        """
        future = asyncio.get_running_loop().create_future()
        self._pending[decision_request.request_id] = (decision_request, future)
        logger.info(
            f"Awaiting duplicate decision {decision_request.request_id}: "
            f"'{decision_request.incoming.name}' vs '{decision_request.existing.name}' "
            f"({decision_request.score}%)"
        )
        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Duplicate decision {decision_request.request_id} timed out, "
                f"using {self.default_decision}"
            )
            return self.default_decision
        finally:
            self._pending.pop(decision_request.request_id, None)

    def resolve(self, request_id: str, decision: str) -> None:
        """
        Answer an open request.

        Raises:
            ValidationError: If the request is unknown or the decision invalid
        """
        if decision not in DECISIONS:
            raise ValidationError(f"Unknown decision: {decision}")
        try:
            _, future = self._pending[request_id]
        except KeyError:
            raise ValidationError(f"No pending decision request {request_id}") from None
        if not future.done():
            future.set_result(decision)

    def pending(self) -> List[dict]:
        return [request.to_dict() for request, _ in self._pending.values()]


def fixed_resolver(decision: str) -> Resolver:
    """Resolver that always answers the same decision (batch imports)."""
    if decision not in DECISIONS:
        raise ValueError(f"Unknown decision: {decision}")

    async def resolve(decision_request: DuplicateDecisionRequest) -> str:
        return decision

    return resolve


@dataclass
class ImportReport:
    created: List[str] = field(default_factory=list)
    merged: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'created': list(self.created),
            'merged': list(self.merged),
            'skipped': list(self.skipped),
        }


def load_players_csv(filepath: Path) -> pd.DataFrame:
    """
    Load player records from a CSV export.

    Expected columns: name; optional player_id, base_price, photo_url,
    category, previous_team.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If required columns are missing
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Player file not found: {filepath}")

    df = pd.read_csv(filepath)
    df.columns = [str(c).strip().lower() for c in df.columns]

    missing = [c for c in config.IMPORT_REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Player file is missing columns: {missing}")

    df = df.dropna(subset=['name'])
    df['name'] = df['name'].astype(str).str.strip()
    df = df[df['name'] != '']

    logger.info(f"Loaded {len(df)} player records from {filepath}")
    return df


def records_to_players(df: pd.DataFrame) -> List[Player]:
    """Convert import rows to Player objects (pending, with generated ids where absent)."""
    players = []
    for record in df.to_dict('records'):
        values = {
            key: (None if pd.isna(record.get(key)) else record.get(key))
            for key in OPTIONAL_COLUMNS
        }
        base_price = values['base_price']
        players.append(Player(
            player_id=str(values['player_id']) if values['player_id'] is not None else uuid.uuid4().hex,
            name=record['name'],
            base_price=int(base_price) if base_price is not None else config.DEFAULT_BASE_PRICE,
            photo_url=values['photo_url'],
            category=values['category'],
            previous_team=values['previous_team'],
        ))
    return players


class PlayerImporter:
    """Adds incoming players to a pool, asking a resolver about duplicates."""

    def __init__(
        self,
        resolver: Resolver,
        threshold: int = config.DUPLICATE_MATCH_THRESHOLD
    ):
        self.resolver = resolver
        self.threshold = threshold

    def find_duplicate(self, name: str, existing: List[Player]) -> Optional[Tuple[Player, int]]:
        """
        Fuzzy-match a name against existing players.

        Returns:
            (matched player, score) or None if no match reaches the threshold
        """
        if not existing:
            return None

        names = {p.player_id: p.name for p in existing}
        match_result = process.extractOne(name, names, scorer=fuzz.token_sort_ratio)
        if match_result is None:
            return None

        matched_name, score, player_id = match_result
        if score < self.threshold:
            return None

        logger.debug(f"Possible duplicate: '{name}' → '{matched_name}' ({score}%)")
        return next(p for p in existing if p.player_id == player_id), score

    async def import_players(
        self,
        incoming: List[Player],
        existing: List[Player],
        source: str = SOURCE_EXCEL
    ) -> ImportReport:
        """
        Merge incoming players into the existing list (in place).

        Records are handled one at a time; each duplicate blocks until its
        decision arrives or times out.

        Args:
            incoming: Players to import, in import order
            existing: Current pool; new players are appended to it
            source: 'manual' or 'excel', forwarded to the decision source

        Returns:
            ImportReport listing created, merged and skipped player ids
        """
        report = ImportReport()

        for player in incoming:
            match = self.find_duplicate(player.name, existing)
            if match is None:
                self._append(player, existing)
                report.created.append(player.player_id)
                continue

            duplicate, score = match
            decision = await self.resolver(DuplicateDecisionRequest(
                request_id=uuid.uuid4().hex,
                existing=duplicate,
                incoming=player,
                source=source,
                score=score,
            ))

            if decision == MERGE:
                _merge_into(duplicate, player)
                report.merged.append(duplicate.player_id)
            elif decision == CREATE_NEW:
                self._append(player, existing)
                report.created.append(player.player_id)
            else:
                report.skipped.append(player.player_id)

        logger.info(
            f"Imported {len(incoming)} records: {len(report.created)} created, "
            f"{len(report.merged)} merged, {len(report.skipped)} skipped"
        )
        return report

    def _append(self, player: Player, existing: List[Player]) -> None:
        if any(p.player_id == player.player_id for p in existing):
            player.player_id = uuid.uuid4().hex
        existing.append(player)


def _merge_into(existing: Player, incoming: Player) -> None:
    """Copy the incoming record's details onto the existing player."""
    existing.base_price = incoming.base_price
    for attr in ('photo_url', 'category', 'previous_team'):
        value = getattr(incoming, attr)
        if value is not None:
            setattr(existing, attr, value)
