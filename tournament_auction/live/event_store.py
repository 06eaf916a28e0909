"""
Durable, append-only log of committed auction events.

One JSON Lines file per auction; each line is an AuctionEvent as written by
the broadcaster. The log is what a session catches up from after a restart
and what `replay_events` rebuilds an auction from, starting at seq 1.
"""

import json
import logging
import pandas as pd
from pathlib import Path
from typing import Iterator, List, Optional

from .auction_event import AuctionEvent

logger = logging.getLogger(__name__)


class AuctionEventStore:
    """JSONL event log for a single auction."""

    def __init__(self, filepath: Path):
        self.filepath = Path(filepath)

    def append_event(self, event: AuctionEvent) -> None:
        """Write one event as a new line; the directory is created on first write."""
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(self.filepath, 'a', encoding='utf-8') as f:
            f.write(event.to_json() + '\n')
        logger.debug(f"Logged #{event.seq} {event.type} → {self.filepath.name}")

    def _read(self) -> Iterator[AuctionEvent]:
        """Yield events in file order, skipping lines that do not parse."""
        if not self.filepath.exists():
            return

        with open(self.filepath, 'r', encoding='utf-8') as f:
            for line_num, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    yield AuctionEvent.from_json(raw)
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.error(f"{self.filepath.name}:{line_num} is not a valid event: {e}")

    def load_all_events(self) -> List[AuctionEvent]:
        """
        Returns:
            Every logged event sorted by seq (empty if there is no log yet)
        """
        events = sorted(self._read(), key=lambda e: e.seq)
        if events:
            logger.info(
                f"Loaded {len(events)} events (seq {events[0].seq}..{events[-1].seq}) "
                f"from {self.filepath}"
            )
        return events

    def load_events_after(self, seq: int) -> List[AuctionEvent]:
        return [e for e in self.load_all_events() if e.seq > seq]

    def replay(self):
        """Rebuild the auction session from seq 1 of this log."""
        from .auction_session import replay_events

        return replay_events(self.load_all_events())

    def count(self) -> int:
        return sum(1 for _ in self._read())

    def last_event(self) -> Optional[AuctionEvent]:
        """Event with the highest seq, or None for an empty log."""
        return max(self._read(), key=lambda e: e.seq, default=None)

    def export_to_csv(self, output_path: Path) -> None:
        """
        Write one row per player-level event (starts, bids, sales) for analysis.

        Args:
            output_path: Destination CSV file
        """
        rows = [
            {
                'seq': e.seq,
                'type': e.type,
                'player_id': e.payload.get('player_id'),
                'team_id': e.payload.get('team_id'),
                'amount': e.payload.get('amount'),
                'timestamp': e.timestamp.isoformat(),
            }
            for e in self.load_all_events()
            if 'player_id' in e.payload
        ]
        if not rows:
            logger.warning(f"No player events in {self.filepath}, nothing exported")
            return

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(rows).to_csv(output_path, index=False)
        logger.info(f"Exported {len(rows)} events → {output_path}")

    def clear(self) -> None:
        """Delete the log. Replay and reconnect catch-up start over afterwards."""
        if self.filepath.exists():
            self.filepath.unlink()
            logger.warning(f"Deleted event log {self.filepath}")


def create_event_filepath(base_dir: Path, auction_id: str) -> Path:
    """Path of the JSONL event log for an auction."""
    return Path(base_dir) / f"auction_{auction_id}.jsonl"
