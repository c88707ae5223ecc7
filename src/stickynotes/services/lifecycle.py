"""Cache housekeeping, memory pressure and background/foreground transitions.

The coordinator owns the periodic sweep:

1. apply precompute results queued by background tasks
2. evict idle and excess derived-stats entries
3. drop the query memo if it holds too many notes
4. every ``full_clear_every``-th sweep, clear all caches
5. check resident memory and clean up aggressively above the threshold
"""

import datetime
import gc
import logging
import resource
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from stickynotes.config import config
from stickynotes.models.schema import SortOption, utc_now
from stickynotes.observability import timed_operation
from stickynotes.services.note_store import NoteStore
from stickynotes.services.scheduler import RepeatingTimer
from stickynotes.services.stats_cache import (
    SortIndexKey,
    compute_sort_index,
    compute_statistics,
    compute_tag_list,
    stats_key,
    tag_list_key,
)

logger = logging.getLogger(__name__)


def get_rss_bytes() -> int:
    """Return current RSS via /proc on Linux, falling back to getrusage."""
    try:
        with open("/proc/self/status") as f:
            for line in f:
                if line.startswith("VmRSS:"):
                    return int(line.split()[1]) * 1024  # kB
    except (OSError, ValueError):
        pass
    # ru_maxrss is in KB on Linux
    return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024


class LifecycleCoordinator:
    """Drives periodic maintenance of a NoteStore."""

    def __init__(
        self,
        store: NoteStore,
        sweep_interval: Optional[float] = None,
        full_clear_every: Optional[int] = None,
        memory_threshold: Optional[int] = None,
        query_cache_max_results: Optional[int] = None,
        foreground_refresh_after: Optional[float] = None,
        rss_reader: Callable[[], int] = get_rss_bytes,
    ):
        self.store = store
        self.sweep_interval = sweep_interval or config.sweep_interval_seconds
        self.full_clear_every = full_clear_every or config.full_clear_every
        self.memory_threshold = memory_threshold or config.memory_threshold_bytes
        self.query_cache_max_results = (
            config.query_cache_max_results
            if query_cache_max_results is None
            else query_cache_max_results
        )
        self.foreground_refresh_after = (
            config.foreground_refresh_after_seconds
            if foreground_refresh_after is None
            else foreground_refresh_after
        )
        self._rss_reader = rss_reader
        self._timer = RepeatingTimer(self.sweep_interval, self.sweep, name="stickynotes-sweep")
        self._prefetch_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="stickynotes-prefetch"
        )
        self._sweep_lock = threading.Lock()
        self.sweep_count = 0
        self.last_background: Optional[datetime.datetime] = None

    # =========================================================================
    # Timer
    # =========================================================================

    def start(self) -> None:
        self._timer.start()
        logger.info(f"Lifecycle sweep started (every {self.sweep_interval}s)")

    def shutdown(self) -> None:
        """Stop the sweep, finish pending saves and stop prefetching."""
        self._timer.stop()
        self._prefetch_executor.shutdown(wait=True)
        if self.store.persistence is not None:
            self.store.persistence.shutdown(wait_for_pending=True)
        logger.info("Lifecycle coordinator shut down")

    # =========================================================================
    # Sweep and memory
    # =========================================================================

    def sweep(self) -> None:
        """One maintenance pass. Called by the timer, safe to call directly."""
        with self._sweep_lock, self.store.lock, timed_operation("sweep") as op:
            self.sweep_count += 1
            op["sweep"] = self.sweep_count
            op["applied"] = self.store.apply_completions()
            op["evicted"] = self.store.stats_cache.evict()

            if self.store.query_engine.cached_size > self.query_cache_max_results:
                logger.debug(
                    f"Dropping query memo holding {self.store.query_engine.cached_size} notes"
                )
                self.store.query_engine.invalidate()

            if self.sweep_count % self.full_clear_every == 0:
                logger.debug(f"Sweep {self.sweep_count}: full cache clear")
                self.store.invalidate_caches()

        self.check_memory_pressure()

    def check_memory_pressure(self, rss_bytes: Optional[int] = None) -> bool:
        """Clean up when resident memory reaches the threshold.

        Returns:
            True if an aggressive cleanup ran
        """
        rss = self._rss_reader() if rss_bytes is None else rss_bytes
        if rss < self.memory_threshold:
            return False
        logger.warning(
            f"Memory pressure: RSS {rss // (1024 * 1024)}MB >= "
            f"{self.memory_threshold // (1024 * 1024)}MB threshold"
        )
        self.aggressive_cleanup()
        return True

    def handle_memory_warning(self) -> None:
        """External low-memory signal."""
        logger.warning("Memory warning received")
        self.aggressive_cleanup()

    def aggressive_cleanup(self) -> None:
        with self.store.lock:
            self.store.invalidate_caches()
        collected = gc.collect()
        logger.info(f"Aggressive cleanup done ({collected} objects collected)")

    # =========================================================================
    # App transitions
    # =========================================================================

    def on_background(self, now: Optional[datetime.datetime] = None) -> Optional[Future]:
        """Save immediately and evict, remembering when this happened."""
        self.last_background = now or utc_now()
        future = self.store.save()
        self.store.stats_cache.evict()
        logger.info("Entered background: save requested")
        return future

    def on_foreground(self, now: Optional[datetime.datetime] = None) -> Optional[Future]:
        """Repair the collection and prefetch if the app slept long enough.

        Returns:
            The prefetch Future, or None when no prefetch was scheduled
        """
        now = now or utc_now()
        self.store.validate_and_repair(now)
        if self.last_background is None:
            return None
        away = (now - self.last_background).total_seconds()
        if away <= self.foreground_refresh_after:
            return None
        logger.info(f"Back after {away:.0f}s, prefetching derived stats")
        return self.prefetch()

    # =========================================================================
    # Prefetch
    # =========================================================================

    def prefetch(self) -> Optional[Future]:
        """Compute tag list, statistics and sort indexes off the owner thread.

        Results are queued on the store's completion channel with the epoch
        of the snapshot they were computed from; stale ones are dropped when
        applied.
        """
        with self.store.lock:
            epoch = self.store.stats_cache.epoch
            snapshot = self.store.snapshot()
        try:
            return self._prefetch_executor.submit(self._precompute, epoch, snapshot)
        except RuntimeError as e:
            logger.error(f"Cannot schedule prefetch: {e}")
            return None

    def _precompute(self, epoch: int, snapshot) -> int:
        completions = self.store.completions
        try:
            with timed_operation("prefetch", note_count=len(snapshot)) as op:
                completions.put((epoch, tag_list_key(snapshot), compute_tag_list(snapshot)))
                completions.put((epoch, stats_key(snapshot), compute_statistics(snapshot)))
                for option in SortOption:
                    completions.put(
                        (
                            epoch,
                            SortIndexKey(option, len(snapshot)),
                            compute_sort_index(snapshot, option),
                        )
                    )
                op["queued"] = 2 + len(SortOption)
                return op["queued"]
        except Exception as e:
            logger.error(f"Prefetch failed: {e}", exc_info=True)
            return 0
