"""Storage layer for the sticky notes engine."""

from stickynotes.storage.kv_store import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from stickynotes.storage.note_persistence import NotePersistence

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
    "NotePersistence",
]
