"""Durable save/load of the note collection with a mirrored backup.

Saves run on a worker pool and never raise to the caller: every outcome is
reported through logging. Loads fall back from the primary key to the
backup key and finally to an empty collection.
"""
import json
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence, Set

from stickynotes.config import BACKUP_KEY, DARK_MODE_KEY, PRIMARY_KEY, config
from stickynotes.exceptions import DecodeError, EncodeError, StorageError
from stickynotes.models.schema import DisplaySettings, Note
from stickynotes.observability import timed_operation
from stickynotes.storage.codec import (
    compress_if_needed,
    decode_payload,
    encode_notes,
    encode_notes_best_effort,
)
from stickynotes.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class NotePersistence:
    """Saves and loads the note collection through a KeyValueStore.

    Each ``save`` snapshots the notes on the calling thread and writes them
    in the background: first to the primary key, then (as a second task) the
    same bytes to the backup key. Saves are not coalesced; the last write
    to finish wins.
    """

    def __init__(
        self,
        store: KeyValueStore,
        compression_threshold: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        """Initialize persistence.

        Args:
            store: Blob store holding the primary, backup and settings keys
            compression_threshold: Payloads above this many bytes are
                compressed. Defaults to config.compression_threshold.
            max_workers: Background writer threads. Defaults to config.save_workers.
        """
        self.store = store
        self.compression_threshold = (
            config.compression_threshold
            if compression_threshold is None
            else compression_threshold
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.save_workers,
            thread_name_prefix="stickynotes-save",
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    # =========================================================================
    # Background task bookkeeping
    # =========================================================================

    def _submit(self, fn: Callable, *args) -> Optional[Future]:
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as e:
            # Executor already shut down
            logger.error(f"Cannot schedule {fn.__name__}: {e}")
            return None
        with self._pending_lock:
            if not future.done():
                self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding save and mirror tasks.

        Mirror tasks scheduled while waiting are waited for too.

        Returns:
            True if everything finished within ``timeout``.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._pending_lock:
                pending = [f for f in self._pending if not f.done()]
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Flush pending writes (optionally) and stop the worker pool."""
        if wait_for_pending:
            self.flush()
        self._executor.shutdown(wait=wait_for_pending)

    # =========================================================================
    # Save
    # =========================================================================

    def save(self, notes: Sequence[Note]) -> Optional[Future]:
        """Persist a snapshot of ``notes`` in the background.

        Returns:
            The Future of the primary write, or None if it could not be
            scheduled. The Future never carries an exception.
        """
        snapshot = [note.model_copy(deep=True) for note in notes]
        return self._submit(self._write_primary, snapshot)

    def _write_primary(self, snapshot: List[Note]) -> None:
        try:
            with timed_operation("save_notes", note_count=len(snapshot)) as op:
                try:
                    encoded = encode_notes(snapshot)
                except EncodeError as e:
                    logger.error(f"Saving notes failed, writing backup only: {e}")
                    op["fallback"] = "backup_only"
                    self._write_backup_only(snapshot)
                    return

                payload = compress_if_needed(encoded, self.compression_threshold)
                op["bytes"] = len(payload)
                try:
                    self.store.set(PRIMARY_KEY, payload)
                except StorageError as e:
                    logger.error(f"Writing primary notes failed ({len(payload)} bytes): {e}")
                    return
                logger.info(
                    f"Saved {len(snapshot)} notes, payload size: {len(payload)} bytes"
                )
                if self._submit(self._write_backup, payload) is None:
                    # Pool refused the mirror task (interpreter shutting down)
                    self._write_backup(payload)
        except Exception as e:
            logger.error(f"Unexpected error while saving notes: {e}", exc_info=True)

    def _write_backup(self, payload: bytes) -> None:
        try:
            self.store.set(BACKUP_KEY, payload)
            logger.debug(f"Backup mirrored ({len(payload)} bytes)")
        except StorageError as e:
            logger.error(f"Mirroring backup failed ({len(payload)} bytes): {e}")
        except Exception as e:
            logger.error(f"Unexpected error while mirroring backup: {e}", exc_info=True)

    def _write_backup_only(self, snapshot: List[Note]) -> None:
        payload, dropped = encode_notes_best_effort(snapshot)
        payload = compress_if_needed(payload, self.compression_threshold)
        try:
            self.store.set(BACKUP_KEY, payload)
        except StorageError as e:
            logger.error(f"Backup-only save failed as well: {e}")
            return
        logger.warning(
            f"Saved {len(snapshot) - dropped} of {len(snapshot)} notes to backup "
            f"only ({len(payload)} bytes, {dropped} dropped)"
        )

    # =========================================================================
    # Load
    # =========================================================================

    def _read(self, key: str) -> Optional[bytes]:
        try:
            return self.store.get(key)
        except StorageError as e:
            logger.error(f"Reading '{key}' failed: {e}")
            return None

    def load(self) -> List[Note]:
        """Load the collection, falling back to the backup key.

        A successful backup recovery schedules a re-save to the primary key.
        When neither key decodes, an empty list is returned.
        """
        with timed_operation("load_notes") as op:
            primary = self._read(PRIMARY_KEY)
            if primary is not None:
                try:
                    notes = decode_payload(primary)
                    logger.info(f"Loaded {len(notes)} notes ({len(primary)} bytes)")
                    op["source"] = "primary"
                    op["result_count"] = len(notes)
                    return notes
                except DecodeError as e:
                    logger.error(f"Primary notes payload is unreadable: {e}")
            else:
                logger.info("No saved notes under the primary key")

            backup = self._read(BACKUP_KEY)
            if backup is None:
                logger.info("No backup notes found; starting empty")
                op["source"] = "empty"
                return []
            try:
                notes = decode_payload(backup)
            except DecodeError as e:
                logger.error(f"Backup notes payload is unreadable too, starting empty: {e}")
                op["source"] = "empty"
                return []

            logger.warning(f"Recovered {len(notes)} notes from backup ({len(backup)} bytes)")
            op["source"] = "backup"
            op["result_count"] = len(notes)
            self.save(notes)
            return notes

    # =========================================================================
    # Settings, maintenance
    # =========================================================================

    def load_settings(self) -> DisplaySettings:
        """Read display settings, defaulting anything unreadable."""
        raw = self._read(DARK_MODE_KEY)
        if raw is None:
            return DisplaySettings()
        try:
            value = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(f"Ignoring unreadable '{DARK_MODE_KEY}' value")
            return DisplaySettings()
        return DisplaySettings(dark_mode=value is True)

    def save_settings(self, settings: DisplaySettings) -> Optional[Future]:
        """Persist display settings in the background."""
        return self._submit(self._write_settings, settings.dark_mode)

    def _write_settings(self, dark_mode: bool) -> None:
        try:
            self.store.set(DARK_MODE_KEY, json.dumps(dark_mode).encode("utf-8"))
            logger.info(f"Settings saved: dark_mode={dark_mode}")
        except StorageError as e:
            logger.error(f"Saving settings failed: {e}")

    def delete_all(self) -> None:
        """Remove every persisted key (notes, backup, settings).

        Waits for in-flight saves first so none of them lands afterwards.
        """
        self.flush()
        for key in (PRIMARY_KEY, BACKUP_KEY, DARK_MODE_KEY):
            try:
                self.store.delete(key)
            except StorageError as e:
                logger.error(f"Deleting '{key}' failed: {e}")
        logger.warning("All persisted note data deleted")

    def health_check(self) -> bool:
        """Write, read back and remove a probe key."""
        probe_key = f"HealthCheck_{time.time()}"
        try:
            self.store.set(probe_key, b"test")
            ok = self.store.get(probe_key) == b"test"
            self.store.delete(probe_key)
        except StorageError as e:
            logger.error(f"Storage health check failed: {e}")
            return False
        if ok:
            logger.info("Storage health check passed")
        else:
            logger.error("Storage health check failed: probe value mismatch")
        return ok
