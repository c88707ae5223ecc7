"""Common test fixtures for the sticky notes engine."""

import datetime
from datetime import timezone

import pytest

from stickynotes.config import config
from stickynotes.models.schema import Note
from stickynotes.services.note_store import NoteStore
from stickynotes.services.query_engine import QueryEngine
from stickynotes.services.stats_cache import DerivedStatsCache
from stickynotes.storage.kv_store import MemoryKeyValueStore, SqlKeyValueStore
from stickynotes.storage.note_persistence import NotePersistence

BASE_TIME = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def memory_kv():
    """In-memory key-value store."""
    return MemoryKeyValueStore()


@pytest.fixture
def persistence(memory_kv):
    """NotePersistence over the in-memory store, shut down after the test.

    A single writer keeps primary writes in submission order.
    """
    p = NotePersistence(memory_kv, max_workers=1)
    yield p
    p.shutdown(wait_for_pending=True)


@pytest.fixture
def stats_cache(fake_clock):
    return DerivedStatsCache(ttl=300, max_entries=50, trim_to=30, clock=fake_clock)


@pytest.fixture
def note_store(persistence, stats_cache):
    """A NoteStore wired to in-memory persistence and a fake-clock cache."""
    return NoteStore(
        persistence=persistence,
        query_engine=QueryEngine(),
        stats_cache=stats_cache,
    )


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "test_stickynotes.db")
    yield config


@pytest.fixture
def sql_kv(test_config):
    """SQLite-backed key-value store in a temporary directory."""
    store = SqlKeyValueStore(db_url=test_config.get_db_url())
    yield store
    store.close()


@pytest.fixture
def make_note():
    """Factory for notes with fixed timestamps, offset by ``minutes``."""

    def _make(content="Some content", minutes=0, **kwargs):
        stamp = BASE_TIME + datetime.timedelta(minutes=minutes)
        kwargs.setdefault("date_created", stamp)
        kwargs.setdefault("date_modified", stamp)
        return Note(content=content, **kwargs)

    return _make
