"""Tests for the lifecycle coordinator and its repeating timer."""
import datetime
import threading
import time

import pytest

from stickynotes.models.schema import FilterState, SortOption
from stickynotes.services.lifecycle import LifecycleCoordinator, get_rss_bytes
from stickynotes.services.scheduler import RepeatingTimer
from stickynotes.services.stats_cache import (
    NoteStatistics,
    SortIndexKey,
    TagList,
    TagListKey,
    stats_key,
    tag_list_key,
)

MIB = 1024 * 1024
NOW = datetime.datetime(2024, 6, 1, 8, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def coordinator(note_store):
    """Coordinator with a low RSS reading so sweeps never hit the threshold."""
    c = LifecycleCoordinator(
        note_store,
        sweep_interval=30,
        full_clear_every=10,
        memory_threshold=100 * MIB,
        query_cache_max_results=100,
        foreground_refresh_after=600,
        rss_reader=lambda: 10 * MIB,
    )
    yield c
    c._prefetch_executor.shutdown(wait=True)


class TestSweep:
    """Tests for LifecycleCoordinator.sweep."""

    def test_sweep_evicts_oversized_cache(self, coordinator, note_store):
        for i in range(55):
            note_store.stats_cache.put(TagListKey(i), TagList(()))
        coordinator.sweep()
        assert len(note_store.stats_cache) == 30

    def test_sweep_drops_large_query_memo(self, coordinator, note_store, make_note):
        for i in range(101):
            note_store._notes.append(make_note(f"n{i}", minutes=i))
        note_store.filtered_notes()
        assert note_store.query_engine.cached_size == 101
        coordinator.sweep()
        assert note_store.query_engine.cached_size == 0

    def test_small_query_memo_survives(self, coordinator, note_store, make_note):
        note_store.add(make_note("small"))
        note_store.filtered_notes()
        coordinator.sweep()
        assert note_store.query_engine.cached_size == 1

    def test_every_tenth_sweep_clears_everything(self, coordinator, note_store):
        for _ in range(9):
            note_store.stats_cache.put(TagListKey(1), TagList(()))
            coordinator.sweep()
        assert len(note_store.stats_cache) == 1
        epoch = note_store.stats_cache.epoch
        coordinator.sweep()
        assert coordinator.sweep_count == 10
        assert len(note_store.stats_cache) == 0
        assert note_store.stats_cache.epoch == epoch + 1

    def test_sweep_applies_completions(self, coordinator, note_store):
        key = TagListKey(0)
        note_store.completions.put((note_store.stats_cache.epoch, key, TagList(("a",))))
        coordinator.sweep()
        assert note_store.stats_cache.get(key) == TagList(("a",))


class TestMemoryPressure:
    """Tests for the memory checks."""

    def test_below_threshold_keeps_caches(self, coordinator, note_store):
        note_store.stats_cache.put(TagListKey(1), TagList(()))
        assert coordinator.check_memory_pressure(rss_bytes=99 * MIB) is False
        assert len(note_store.stats_cache) == 1

    def test_at_threshold_cleans_up(self, coordinator, note_store):
        note_store.stats_cache.put(TagListKey(1), TagList(()))
        assert coordinator.check_memory_pressure(rss_bytes=100 * MIB) is True
        assert len(note_store.stats_cache) == 0

    def test_sweep_uses_rss_reader(self, note_store):
        coordinator = LifecycleCoordinator(
            note_store, memory_threshold=100 * MIB, rss_reader=lambda: 150 * MIB
        )
        try:
            note_store.stats_cache.put(TagListKey(1), TagList(()))
            coordinator.sweep()
            assert len(note_store.stats_cache) == 0
        finally:
            coordinator._prefetch_executor.shutdown(wait=True)

    def test_memory_warning_always_cleans(self, coordinator, note_store):
        note_store.stats_cache.put(TagListKey(1), TagList(()))
        coordinator.handle_memory_warning()
        assert len(note_store.stats_cache) == 0

    def test_get_rss_bytes_positive(self):
        assert get_rss_bytes() > 0


class TestTransitions:
    """Tests for background/foreground hooks and prefetch."""

    def test_on_background_saves(self, coordinator, note_store, persistence, memory_kv, make_note):
        note_store._notes.append(make_note("unsaved"))
        coordinator.on_background(NOW)
        assert persistence.flush(timeout=5)
        assert memory_kv.get("SavedNotes") is not None
        assert coordinator.last_background == NOW

    def test_short_absence_skips_prefetch(self, coordinator):
        coordinator.on_background(NOW)
        assert coordinator.on_foreground(NOW + datetime.timedelta(minutes=5)) is None

    def test_foreground_without_background_skips_prefetch(self, coordinator):
        assert coordinator.on_foreground(NOW) is None

    def test_foreground_repairs(self, coordinator, note_store, make_note):
        note_store._notes.append(make_note("   ", title=""))
        coordinator.on_foreground(NOW)
        assert note_store.notes[0].title == "Untitled"

    def test_long_absence_prefetches(self, coordinator, note_store, make_note):
        note_store.add(make_note("one two", tags=["work"]))
        note_store.add(make_note("three", tags=["home"], minutes=1))
        coordinator.on_background(NOW)
        future = coordinator.on_foreground(NOW + datetime.timedelta(minutes=11))
        assert future is not None
        assert future.result(timeout=5) == 2 + len(SortOption)

        assert note_store.apply_completions() == 2 + len(SortOption)
        notes = note_store.notes
        assert note_store.stats_cache.get(tag_list_key(notes)) == TagList(("home", "work"))
        stats = note_store.stats_cache.get(stats_key(notes))
        assert isinstance(stats, NoteStatistics)
        assert stats.total_words == 3
        index = note_store.stats_cache.get(SortIndexKey(SortOption.WORD_COUNT, 2))
        assert index.note_ids[0] == notes[0].id

    def test_prefetch_results_dropped_after_mutation(self, coordinator, note_store, make_note):
        note = note_store.add(make_note("x", tags=["old"]))
        future = coordinator.prefetch()
        future.result(timeout=5)
        note_store.add_tag(note.id, "new")
        assert note_store.apply_completions() == 0
        assert note_store.all_tags() == ["new", "old"]


class TestLifecycleTimer:
    """Tests for start/shutdown and RepeatingTimer."""

    def test_timer_fires_and_stops(self):
        fired = threading.Event()
        timer = RepeatingTimer(0.01, fired.set)
        timer.start()
        try:
            assert fired.wait(2)
            assert timer.running
        finally:
            timer.stop(timeout=2)
        assert not timer.running

    def test_timer_survives_callback_errors(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first call fails")

        timer = RepeatingTimer(0.01, flaky)
        timer.start()
        try:
            deadline = time.monotonic() + 2
            while len(calls) < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            timer.stop(timeout=2)
        assert len(calls) >= 2

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            RepeatingTimer(0, lambda: None)

    def test_start_and_shutdown(self, note_store, memory_kv, make_note):
        coordinator = LifecycleCoordinator(
            note_store, sweep_interval=0.01, rss_reader=lambda: 0
        )
        coordinator.start()
        deadline = time.monotonic() + 2
        while coordinator.sweep_count == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        note_store.add(make_note("saved on shutdown"))
        coordinator.shutdown()
        assert coordinator.sweep_count > 0
        assert memory_kv.get("SavedNotes") is not None

    def test_default_filter_view_after_cleanup(self, coordinator, note_store, make_note):
        note_store.add(make_note("still there"))
        coordinator.aggressive_cleanup()
        assert [n.content for n in note_store.filtered_notes(FilterState())] == ["still there"]
