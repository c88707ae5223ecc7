"""Tests for the wire codec and the backup-mirrored persistence layer."""
import json
import zlib

import pytest

from stickynotes.config import BACKUP_KEY, DARK_MODE_KEY, PRIMARY_KEY
from stickynotes.exceptions import DecodeError, EncodeError, ErrorCode, StorageError
from stickynotes.models.schema import DisplaySettings, Note, NotePriority
from stickynotes.storage import codec
from stickynotes.storage.codec import (
    compress_if_needed,
    decode_notes,
    decode_payload,
    encode_notes,
)
from stickynotes.storage.kv_store import MemoryKeyValueStore
from stickynotes.storage.note_persistence import NotePersistence


def _large_collection(count=300):
    return [
        Note(title=f"Note {i}", content=f"entry {i} " * 500, tags=[f"t{i % 7}"])
        for i in range(count)
    ]


class FailingStore(MemoryKeyValueStore):
    """Memory store whose writes fail for the given keys (all keys if None)."""

    def __init__(self, failing_keys=None):
        super().__init__()
        self.failing_keys = None if failing_keys is None else set(failing_keys)

    def set(self, key, value):
        if self.failing_keys is None or key in self.failing_keys:
            raise StorageError(
                "disk full", operation="set", key=key, code=ErrorCode.STORAGE_WRITE_FAILED
            )
        super().set(key, value)


class TestCodec:
    """Tests for encoding, compression and two-step decoding."""

    def test_encode_is_compact_json_array(self, make_note):
        data = encode_notes([make_note("a"), make_note("b", minutes=1)])
        payload = json.loads(data)
        assert isinstance(payload, list)
        assert len(payload) == 2
        assert b": " not in data

    def test_decode_plain_and_compressed(self, make_note):
        notes = [make_note("hello", title="Greeting", priority=NotePriority.HIGH)]
        raw = encode_notes(notes)
        for data in (raw, zlib.compress(raw)):
            decoded = decode_payload(data)
            assert [n.model_dump() for n in decoded] == [n.model_dump() for n in notes]

    def test_small_payload_not_compressed(self):
        data = b"[]"
        assert compress_if_needed(data, threshold=1024) is data

    def test_large_payload_compressed(self):
        data = b"x" * 5000
        compressed = compress_if_needed(data, threshold=1024)
        assert len(compressed) < len(data)
        assert zlib.decompress(compressed) == data

    def test_compression_failure_keeps_raw_bytes(self, monkeypatch):
        def broken(data, level):
            raise zlib.error("boom")

        monkeypatch.setattr(codec.zlib, "compress", broken)
        data = b"y" * 5000
        assert compress_if_needed(data, threshold=10) == data

    @pytest.mark.parametrize("data", [b"not json", b'{"id": "x"}', b"\xff\xfe", b'[{"id": "nope"}]'])
    def test_undecodable_payloads(self, data):
        with pytest.raises(DecodeError):
            decode_payload(data)

    def test_decode_notes_rejects_object(self):
        with pytest.raises(DecodeError) as exc_info:
            decode_notes(b"{}")
        assert exc_info.value.code == ErrorCode.DECODE_FAILED


class TestNotePersistence:
    """Tests for save/load through NotePersistence."""

    def test_save_then_load(self, persistence, make_note):
        notes = [make_note("first", tags=["work"]), make_note("second", minutes=5)]
        persistence.save(notes)
        assert persistence.flush(timeout=5)
        loaded = persistence.load()
        assert [n.model_dump() for n in loaded] == [n.model_dump() for n in notes]

    def test_backup_mirrors_primary(self, persistence, memory_kv, make_note):
        persistence.save([make_note("mirrored")])
        assert persistence.flush(timeout=5)
        assert memory_kv.get(PRIMARY_KEY) is not None
        assert memory_kv.get(BACKUP_KEY) == memory_kv.get(PRIMARY_KEY)

    def test_save_takes_snapshot(self, persistence, memory_kv, make_note):
        note = make_note("before")
        persistence.save([note])
        note.content = "after"
        assert persistence.flush(timeout=5)
        assert persistence.load()[0].content == "before"

    def test_large_collection_is_compressed_and_round_trips(self, memory_kv):
        persistence = NotePersistence(memory_kv, compression_threshold=1024 * 1024)
        notes = _large_collection()
        assert len(encode_notes(notes)) > 1024 * 1024
        try:
            persistence.save(notes)
            assert persistence.flush(timeout=30)
            stored = memory_kv.get(PRIMARY_KEY)
            assert len(stored) < 1024 * 1024
            zlib.decompress(stored)
            loaded = persistence.load()
            assert len(loaded) == len(notes)
            assert loaded[123].content == notes[123].content
        finally:
            persistence.shutdown()

    def test_corrupted_primary_recovers_from_backup(self, persistence, memory_kv, make_note):
        notes = [make_note("precious")]
        persistence.save(notes)
        assert persistence.flush(timeout=5)
        memory_kv.set(PRIMARY_KEY, b"\x00garbage")

        loaded = persistence.load()
        assert [n.content for n in loaded] == ["precious"]

        # Recovery re-saves to the primary key
        assert persistence.flush(timeout=5)
        assert [n.content for n in decode_payload(memory_kv.get(PRIMARY_KEY))] == ["precious"]

    def test_missing_primary_falls_back_to_backup(self, persistence, memory_kv, make_note):
        memory_kv.set(BACKUP_KEY, encode_notes([make_note("only in backup")]))
        assert [n.content for n in persistence.load()] == ["only in backup"]

    def test_both_unreadable_returns_empty(self, persistence, memory_kv):
        memory_kv.set(PRIMARY_KEY, b"junk")
        memory_kv.set(BACKUP_KEY, b"more junk")
        assert persistence.load() == []

    def test_nothing_stored_returns_empty(self, persistence):
        assert persistence.load() == []

    def test_primary_write_failure_is_logged_not_raised(self, make_note, caplog):
        store = FailingStore([PRIMARY_KEY])
        persistence = NotePersistence(store)
        try:
            future = persistence.save([make_note("x")])
            assert future.result(timeout=5) is None
            assert persistence.flush(timeout=5)
        finally:
            persistence.shutdown()
        assert store.get(PRIMARY_KEY) is None
        assert "Writing primary notes failed" in caplog.text

    def test_encode_failure_writes_backup_only(self, memory_kv, make_note, monkeypatch):
        from stickynotes.storage import note_persistence

        def failing_encode(notes):
            raise EncodeError("cannot encode", note_count=len(notes))

        monkeypatch.setattr(note_persistence, "encode_notes", failing_encode)
        persistence = NotePersistence(memory_kv)
        try:
            persistence.save([make_note("survivor")])
            assert persistence.flush(timeout=5)
        finally:
            persistence.shutdown()
        assert memory_kv.get(PRIMARY_KEY) is None
        assert [n.content for n in decode_payload(memory_kv.get(BACKUP_KEY))] == ["survivor"]

    def test_settings_round_trip(self, persistence, memory_kv):
        assert persistence.load_settings().dark_mode is False
        persistence.save_settings(DisplaySettings(dark_mode=True))
        assert persistence.flush(timeout=5)
        assert json.loads(memory_kv.get(DARK_MODE_KEY)) is True
        assert persistence.load_settings().dark_mode is True

    def test_unreadable_settings_default(self, persistence, memory_kv):
        memory_kv.set(DARK_MODE_KEY, b"\xff")
        assert persistence.load_settings() == DisplaySettings()

    def test_delete_all_removes_every_key(self, persistence, memory_kv, make_note):
        persistence.save([make_note("x")])
        persistence.save_settings(DisplaySettings(dark_mode=True))
        persistence.delete_all()
        assert memory_kv.keys() == []

    def test_health_check_leaves_no_probe(self, persistence, memory_kv):
        assert persistence.health_check() is True
        assert memory_kv.keys() == []

    def test_health_check_reports_failure(self):
        persistence = NotePersistence(FailingStore())
        try:
            assert persistence.health_check() is False
        finally:
            persistence.shutdown()

    def test_save_after_shutdown_returns_none(self, memory_kv, make_note):
        persistence = NotePersistence(memory_kv)
        persistence.shutdown()
        assert persistence.save([make_note("late")]) is None

    def test_mirror_written_inline_when_pool_refuses(self, memory_kv, make_note):
        persistence = NotePersistence(memory_kv, max_workers=1)
        persistence.shutdown()
        persistence._write_primary([make_note("final")])
        assert memory_kv.get(PRIMARY_KEY) is not None
        assert memory_kv.get(BACKUP_KEY) == memory_kv.get(PRIMARY_KEY)
        assert [n.content for n in persistence.load()] == ["final"]
