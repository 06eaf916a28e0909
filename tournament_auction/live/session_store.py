"""
Persistence boundary for auction sessions.

The live core never owns durable state. It loads a SessionSnapshot when a
session starts and saves one after every sold/unsold resolution, after a
pause and at completion. Two stores are provided:

- JsonFileSessionStore: one JSON document per auction on local disk
- HttpSessionStore: GET/PUT against an external document store
"""

import asyncio
import json
import logging
import requests
from pathlib import Path
from typing import Optional

from .. import config
from .auction_event import SessionSnapshot
from .errors import NoActiveSessionError, PersistenceFailure

logger = logging.getLogger(__name__)


class SessionStore:
    """Load/save contract for session snapshots."""

    def load_session(self, auction_id: str) -> SessionSnapshot:
        """
        Raises:
            NoActiveSessionError: If the store has no document for auction_id
            PersistenceFailure: If the store cannot be reached
        """
        raise NotImplementedError

    def save_session(self, snapshot: SessionSnapshot) -> None:
        """
        Raises:
            PersistenceFailure: If the snapshot could not be recorded
        """
        raise NotImplementedError


class JsonFileSessionStore(SessionStore):
    """Stores each auction as data/auction_sessions/session_<id>.json."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def path_for(self, auction_id: str) -> Path:
        return self.base_dir / f"session_{auction_id}.json"

    def load_session(self, auction_id: str) -> SessionSnapshot:
        filepath = self.path_for(auction_id)
        if not filepath.exists():
            raise NoActiveSessionError(f"No stored session for auction {auction_id}")

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                snapshot = SessionSnapshot.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            raise PersistenceFailure(f"Failed to load {filepath}: {e}") from e

        logger.info(
            f"Loaded session {auction_id}: {snapshot.status}, seq {snapshot.seq} ← {filepath}"
        )
        return snapshot

    def save_session(self, snapshot: SessionSnapshot) -> None:
        filepath = self.path_for(snapshot.auction_id)

        # Atomic write: write to temp file, then rename
        temp_path = filepath.with_suffix('.tmp')
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(snapshot.to_dict(), f, indent=2)
            temp_path.replace(filepath)
        except OSError as e:
            raise PersistenceFailure(f"Failed to save {filepath}: {e}") from e

        logger.info(
            f"Saved session {snapshot.auction_id}: {snapshot.status}, "
            f"seq {snapshot.seq} → {filepath}"
        )


class HttpSessionStore(SessionStore):
    """Client for an external document store holding session snapshots."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = config.DOCUMENT_STORE_TIMEOUT
    ):
        """
        Args:
            base_url: Collection URL; documents live at <base_url>/<auction_id>
            api_key: Optional bearer token
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        # Session for connection pooling
        self.session = requests.Session()
        if api_key:
            self.session.headers['Authorization'] = f'Bearer {api_key}'

    def load_session(self, auction_id: str) -> SessionSnapshot:
        url = f"{self.base_url}/{auction_id}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            if response.status_code == 404:
                raise NoActiveSessionError(f"No stored session for auction {auction_id}")
            response.raise_for_status()
            return SessionSnapshot.from_dict(response.json())
        except requests.RequestException as e:
            raise PersistenceFailure(f"GET {url} failed: {e}") from e
        except (KeyError, ValueError) as e:
            raise PersistenceFailure(f"GET {url} returned an invalid snapshot: {e}") from e

    def save_session(self, snapshot: SessionSnapshot) -> None:
        url = f"{self.base_url}/{snapshot.auction_id}"
        try:
            response = self.session.put(url, json=snapshot.to_dict(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PersistenceFailure(f"PUT {url} failed: {e}") from e
        logger.debug(f"PUT {url} (seq {snapshot.seq})")

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()


async def save_with_retry(
    store: SessionStore,
    snapshot: SessionSnapshot,
    max_retries: int = config.SAVE_MAX_RETRIES,
    backoff: float = config.SAVE_BACKOFF_SECONDS
) -> None:
    """
    Save a snapshot off the event loop, retrying with exponential backoff.

    Raises:
        PersistenceFailure: After all retries are exhausted
    """
    for attempt in range(1, max_retries + 1):
        try:
            await asyncio.to_thread(store.save_session, snapshot)
            return
        except PersistenceFailure as e:
            logger.warning(
                f"Snapshot save for {snapshot.auction_id} failed "
                f"(attempt {attempt}/{max_retries}): {e}"
            )
            if attempt == max_retries:
                raise
            await asyncio.sleep(backoff * 2 ** (attempt - 1))


def create_session_store() -> SessionStore:
    """Build the store configured for this process."""
    if config.DOCUMENT_STORE_URL:
        logger.info(f"Using document store at {config.DOCUMENT_STORE_URL}")
        return HttpSessionStore(config.DOCUMENT_STORE_URL, api_key=config.DOCUMENT_STORE_API_KEY)
    return JsonFileSessionStore(Path(config.AUCTION_SESSIONS_DIR))
