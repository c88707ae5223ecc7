"""Tests for the typed derived-stats cache."""
import pytest

from stickynotes.models.schema import NotePriority, SortOption
from stickynotes.services.stats_cache import (
    DerivedStatsCache,
    NoteStatistics,
    SortIndex,
    SortIndexKey,
    StatsKey,
    TagList,
    TagListKey,
    compute_statistics,
    compute_tag_list,
    priority_distribution,
    tag_usage,
)


@pytest.fixture
def notes(make_note):
    return [
        make_note("one two three", tags=["work", "urgent"], is_favorite=True),
        make_note("four five", tags=["home"], minutes=1),
        make_note("six", tags=["archive-only"], is_archived=True, is_favorite=True, minutes=2),
    ]


class TestComputations:
    """Tests for the uncached helpers."""

    def test_tag_list_skips_archived(self, notes):
        assert compute_tag_list(notes).tags == ("home", "urgent", "work")

    def test_statistics(self, notes):
        stats = compute_statistics(notes)
        assert stats == NoteStatistics(
            active_count=2, favorite_count=1, archived_count=1, total_words=5
        )

    def test_tag_usage(self, notes, make_note):
        notes.append(make_note("x", tags=["work"]))
        assert tag_usage(notes, limit=1) == [("work", 2)]

    def test_priority_distribution_includes_every_priority(self, make_note):
        dist = priority_distribution([make_note("x", priority=NotePriority.HIGH)])
        assert dist == {NotePriority.LOW: 0, NotePriority.NORMAL: 0, NotePriority.HIGH: 1}


class TestDerivedStatsCache:
    """Tests for DerivedStatsCache."""

    def test_put_and_get(self, stats_cache):
        key = TagListKey(3)
        stats_cache.put(key, TagList(("a",)))
        assert stats_cache.get(key) == TagList(("a",))
        assert key in stats_cache

    def test_mismatched_value_rejected(self, stats_cache):
        with pytest.raises(TypeError):
            stats_cache.put(TagListKey(1), SortIndex(()))

    def test_size_trim_55_to_30(self, stats_cache):
        for i in range(55):
            stats_cache.put(TagListKey(i), TagList(()))
        assert len(stats_cache) == 55
        assert stats_cache.evict() == 25
        assert len(stats_cache) == 30
        # Oldest insertions go first
        assert TagListKey(0) not in stats_cache
        assert TagListKey(24) not in stats_cache
        assert TagListKey(25) in stats_cache
        assert TagListKey(54) in stats_cache

    def test_at_limit_is_not_trimmed(self, stats_cache):
        for i in range(50):
            stats_cache.put(TagListKey(i), TagList(()))
        assert stats_cache.evict() == 0
        assert len(stats_cache) == 50

    def test_ttl_purges_idle_entries(self, stats_cache, fake_clock):
        stats_cache.put(TagListKey(1), TagList(()))
        stats_cache.put(TagListKey(2), TagList(()))
        fake_clock.advance(200)
        stats_cache.get(TagListKey(2))
        fake_clock.advance(200)
        assert stats_cache.evict() == 1
        assert TagListKey(1) not in stats_cache
        assert TagListKey(2) in stats_cache

    def test_invalidate_bumps_epoch(self, stats_cache):
        stats_cache.put(TagListKey(1), TagList(()))
        epoch = stats_cache.epoch
        stats_cache.invalidate_all()
        assert len(stats_cache) == 0
        assert stats_cache.epoch == epoch + 1

    def test_put_if_current_drops_stale(self, stats_cache):
        epoch = stats_cache.epoch
        stats_cache.invalidate_all()
        assert stats_cache.put_if_current(epoch, TagListKey(1), TagList(())) is False
        assert len(stats_cache) == 0
        assert stats_cache.put_if_current(stats_cache.epoch, TagListKey(1), TagList(())) is True

    def test_typed_accessors_memoize(self, stats_cache, notes):
        first = stats_cache.statistics(notes)
        assert len(stats_cache) == 1
        assert stats_cache.statistics(notes) is first
        assert stats_cache.tag_list(notes).tags == ("home", "urgent", "work")
        index = stats_cache.sort_index(notes, SortOption.WORD_COUNT)
        assert index.note_ids[0] == notes[0].id
        assert SortIndexKey(SortOption.WORD_COUNT, 3) in stats_cache
        assert len(stats_cache) == 3

    def test_stats_key_tracks_latest_modification(self, stats_cache, notes):
        stats_cache.statistics(notes)
        latest = max(n.date_modified for n in notes)
        assert StatsKey(3, latest) in stats_cache

    def test_defaults_from_config(self):
        cache = DerivedStatsCache()
        assert cache.ttl == 300
        assert cache.max_entries == 50
        assert cache.trim_to == 30
