"""Summary cache with single-flight recomputation.

Two kinds of entries are kept:

- Bounded windows are keyed on ``(identity, start, end)``. Once a window is
  over its heartbeats cannot change, so a summary computed after the window
  ended stays valid forever. A summary of a window still in progress expires
  after ``bounded_ttl_seconds``.
- Open-ended windows ("all time", "since X") end at "now", which differs on
  every query, so they are keyed on ``(identity, start)``. The entry remembers
  how far it reaches; a later query only aggregates the gap between that point
  and the new "now" and folds it into the stored summary.

Only one computation per key runs at a time. Callers arriving while one is
in flight wait for it and get the same result or the same error. A waiter on
an open-ended key whose shared result ends before its own "now" extends it
again. A forced recompute that joins a computation already in flight gets
that computation's result. A failed computation leaves the previous entry
in place.

Example:
    >>> cache = SummaryCache(CacheConfig())
    >>> summary = cache.get_or_compute("alice", Window.all_time(now), False, aggregator.aggregate)
"""

import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple, TYPE_CHECKING

from .errors import AggregationTimeoutError
from .models import Summary, Window

if TYPE_CHECKING:
    from .config import CacheConfig

logger = logging.getLogger(__name__)

ComputeFn = Callable[[str, Window], Summary]

_UNSET = object()


@dataclass(frozen=True)
class CacheEntry:
    """A cached summary and the clock reading when it was stored."""
    summary: Summary
    stored_at: datetime


class SummaryCache:
    """Keyed summary store owned by a SummaryService.

    Created with the service and cleared only through invalidate(). All
    writes go through get_or_compute(); there is no way to put a summary in
    from outside.

    Attributes:
        bounded_ttl: Freshness of bounded summaries whose window had not ended.
        refresh_interval: Minimum age before an open-ended summary is extended.
        wait_timeout: Default seconds a caller waits on someone else's
            computation (None waits indefinitely).
    """

    def __init__(self, config: "CacheConfig", clock: Callable[[], datetime] = datetime.now):
        self.bounded_ttl = timedelta(seconds=config.bounded_ttl_seconds)
        self.refresh_interval = timedelta(seconds=config.refresh_interval_seconds)
        self.wait_timeout = config.wait_timeout_seconds
        self.clock = clock

        # Guards the two maps and counters; never held while computing
        self._lock = threading.Lock()
        self._entries: Dict[Tuple, CacheEntry] = {}
        self._in_flight: Dict[Tuple, Future] = {}
        self._generation = 0
        self._stats = {"hits": 0, "misses": 0, "extensions": 0, "computations": 0, "shared": 0}

    @staticmethod
    def key_for(identity: str, window: Window) -> Tuple:
        if window.open_ended:
            return ("open", identity, window.start)
        return ("bounded", identity, window.start, window.end)

    def get_or_compute(
        self,
        identity: str,
        window: Window,
        force_recompute: bool,
        compute: ComputeFn,
        wait_timeout=_UNSET,
    ) -> Summary:
        """Return a cached summary or compute it, at most once per key at a time.

        Args:
            identity: Canonical identity.
            window: Query window; open-ended windows are extended incrementally.
            force_recompute: Skip the freshness check and replace the entry
                with a full recomputation.
            compute: ``compute(identity, window) -> Summary``, normally
                ``EventAggregator.aggregate``.
            wait_timeout: Seconds to wait on an in-flight computation started
                by another caller. Defaults to the configured value.

        Returns:
            The cached, extended or freshly computed Summary.

        Raises:
            InvalidRangeError: If the window is empty or inverted.
            AggregationTimeoutError: If waiting on another caller's
                computation timed out. That computation keeps running.
            Any error raised by ``compute``; the cache entry is unchanged.
        """
        window.validate()
        key = self.key_for(identity, window)
        timeout = self.wait_timeout if wait_timeout is _UNSET else wait_timeout

        with self._lock:
            entry = self._entries.get(key)
            if not force_recompute and entry is not None and self._serve_as_is(entry, window):
                self._stats["hits"] += 1
                logger.debug(f"Cache hit for {key}")
                return entry.summary

            future = self._in_flight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._in_flight[key] = future
                generation = self._generation
                self._stats["misses"] += 1
            else:
                self._stats["shared"] += 1

        if not leader:
            logger.debug(f"Waiting on in-flight computation for {key}")
            try:
                result = future.result(timeout=timeout)
            except FutureTimeoutError:
                raise AggregationTimeoutError(
                    f"Timed out after {timeout}s waiting for summary of {identity}"
                ) from None
            if window.open_ended and result.window.end < window.end:
                # Shared run stopped short of this caller's "now"
                logger.debug(f"Shared result for {key} ends early, extending")
                return self.get_or_compute(identity, window, force_recompute, compute, wait_timeout)
            return result

        base = None if force_recompute else entry
        return self._lead(key, future, generation, identity, window, base, compute)

    def _serve_as_is(self, entry: CacheEntry, window: Window) -> bool:
        now = self.clock()
        cached = entry.summary.window
        if window.open_ended:
            if window.end <= cached.end:
                return True
            return now - entry.stored_at < self.refresh_interval
        if entry.stored_at >= cached.end:
            return True
        return now - entry.stored_at < self.bounded_ttl

    def _lead(
        self,
        key: Tuple,
        future: Future,
        generation: int,
        identity: str,
        window: Window,
        base: Optional[CacheEntry],
        compute: ComputeFn,
    ) -> Summary:
        # Entries are dated by when their read began, not when it finished
        started = self.clock()
        try:
            if base is not None and window.open_ended:
                covered_to = base.summary.window.end
                delta = compute(identity, Window(covered_to, window.end))
                result = base.summary.merge(delta)
                counter = "extensions"
                logger.debug(
                    f"Extended {key} from {covered_to.isoformat()} to {window.end.isoformat()}"
                )
            else:
                result = compute(identity, window)
                counter = "computations"
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(key, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._stats[counter] += 1
            if generation == self._generation:
                self._entries[key] = CacheEntry(result, started)
            else:
                logger.debug(f"Cache invalidated while computing {key}, result not stored")
            self._in_flight.pop(key, None)
        future.set_result(result)
        return result

    def invalidate(self, identity: Optional[str] = None) -> int:
        """Drop cached summaries for one identity, or for everyone.

        Computations already in flight still finish and answer their
        waiters but are not stored.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            self._generation += 1
            if identity is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                stale = [key for key in self._entries if key[1] == identity]
                for key in stale:
                    del self._entries[key]
                removed = len(stale)
        logger.info(f"Invalidated {removed} cached summaries for {identity or 'all identities'}")
        return removed

    def stats(self) -> dict:
        """Counters for hits, misses, extensions, computations and shared waits."""
        with self._lock:
            return dict(self._stats, entries=len(self._entries), in_flight=len(self._in_flight))
