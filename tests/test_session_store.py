import pytest
import requests

from tournament_auction.live.auction_event import Player, Team, create_initial_snapshot
from tournament_auction.live.errors import NoActiveSessionError, PersistenceFailure
from tournament_auction.live.session_store import (
    HttpSessionStore, JsonFileSessionStore, SessionStore, save_with_retry,
)


def _sample_snapshot():
    return create_initial_snapshot(
        "cup",
        [Player(player_id="p1", name="Asha Rao", base_price=100, photo_url="https://cdn.example/p1.png")],
        [Team(team_id="A", name="Team A", purse=1000)],
    )


class _FakeResponse:
    def __init__(self, status_code: int, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class _FakeHttp:
    def __init__(self):
        self.documents = {}
        self.fail_puts = 0

    def get(self, url, timeout=None):
        if url not in self.documents:
            return _FakeResponse(404)
        return _FakeResponse(200, self.documents[url])

    def put(self, url, json=None, timeout=None):
        if self.fail_puts:
            self.fail_puts -= 1
            raise requests.ConnectionError("store unreachable")
        self.documents[url] = json
        return _FakeResponse(200)

    def close(self):
        pass


class _FlakyStore(SessionStore):
    def __init__(self, failures: int):
        self.failures = failures
        self.saved = []

    def save_session(self, snapshot):
        if self.failures:
            self.failures -= 1
            raise PersistenceFailure("store unavailable")
        self.saved.append(snapshot.seq)


def test_json_store_round_trip(tmp_path):
    store = JsonFileSessionStore(tmp_path)
    snapshot = _sample_snapshot()
    snapshot.seq = 7

    store.save_session(snapshot)
    loaded = store.load_session("cup")

    assert loaded.to_dict() == snapshot.to_dict()
    assert not list(tmp_path.glob("*.tmp"))


def test_json_store_missing_auction(tmp_path):
    with pytest.raises(NoActiveSessionError):
        JsonFileSessionStore(tmp_path).load_session("nope")


def test_json_store_corrupt_file_is_a_persistence_failure(tmp_path):
    store = JsonFileSessionStore(tmp_path)
    store.path_for("cup").write_text("{broken", encoding="utf-8")

    with pytest.raises(PersistenceFailure):
        store.load_session("cup")


def test_http_store_round_trip():
    store = HttpSessionStore("https://store.example/auctions/", api_key="secret")
    fake = _FakeHttp()
    store.session = fake

    store.save_session(_sample_snapshot())
    loaded = store.load_session("cup")

    assert "https://store.example/auctions/cup" in fake.documents
    assert loaded.players[0].photo_url == "https://cdn.example/p1.png"


def test_http_store_maps_errors():
    store = HttpSessionStore("https://store.example/auctions")
    fake = _FakeHttp()
    fake.fail_puts = 1
    store.session = fake

    with pytest.raises(NoActiveSessionError):
        store.load_session("cup")
    with pytest.raises(PersistenceFailure):
        store.save_session(_sample_snapshot())


@pytest.mark.anyio
async def test_save_with_retry_recovers_after_failures():
    store = _FlakyStore(failures=2)

    await save_with_retry(store, _sample_snapshot(), max_retries=3, backoff=0.001)

    assert store.saved == [0]


@pytest.mark.anyio
async def test_save_with_retry_gives_up():
    store = _FlakyStore(failures=5)

    with pytest.raises(PersistenceFailure):
        await save_with_retry(store, _sample_snapshot(), max_retries=2, backoff=0.001)
    assert store.saved == []
