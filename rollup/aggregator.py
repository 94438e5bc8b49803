"""Fold raw heartbeats into per-dimension durations.

Heartbeats are point events, so time has to be inferred from the gaps
between them. Consecutive heartbeats that share a context (project,
language, editor, machine, category) and arrive within ``merge_gap`` of each
other are collapsed into one continuous span. When the context changes, or
the next heartbeat is further away, the span ends, and its last heartbeat is
credited with the gap to the next heartbeat up to ``max_heartbeat``. The very
last heartbeat, with nothing after it, is credited ``max_heartbeat``.

Every span is then clamped to the query window. Reads start one
``max_heartbeat`` before the window so that a span begun just before the
window still contributes its in-window part. Together this makes
aggregation split-additive: summing ``[a, t)`` and ``[t, b)`` gives exactly
the result for ``[a, b)``, which is what lets the cache extend all-time
summaries with small deltas.

Example:
    >>> aggregator = EventAggregator(storage, AggregationConfig())
    >>> summary = aggregator.aggregate("alice", Window(start, end))
    >>> summary.by_dimension("project")
    {'foo': datetime.timedelta(seconds=60), 'bar': datetime.timedelta(seconds=30)}
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from .errors import AggregationTimeoutError, InternalAggregationError
from .models import DIMENSIONS, MIN_INSTANT, Heartbeat, Summary, Window, dimension_key

if TYPE_CHECKING:
    from .aliases import AliasResolver
    from .config import AggregationConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Span:
    """A run of collapsed same-context heartbeats.

    Attributes:
        start: Timestamp of the first heartbeat in the run.
        end: End of the time credited to the run.
        heartbeat: First heartbeat of the run, carrying the context.
        count: Number of heartbeats collapsed into the run.
    """
    start: datetime
    end: datetime
    heartbeat: Heartbeat
    count: int

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class EventAggregator:
    """Turns one identity's heartbeats in a window into a Summary.

    This is the only component that reads raw heartbeats. Given the same
    stored heartbeats and window it always returns the same Summary.

    Attributes:
        store: Event store with a ``read_events(identity, start, end, timeout)``
            method returning Heartbeats or heartbeat dicts.
        merge_gap: Largest gap between same-context heartbeats that still
            counts as continuous activity.
        max_heartbeat: Most time a single heartbeat can account for.
        dimensions: Dimensions to break durations down by.
        resolver: Optional AliasResolver applying value aliases.
        read_timeout: Deadline passed to the store, in seconds.
    """

    def __init__(
        self,
        store,
        config: "AggregationConfig",
        resolver: Optional["AliasResolver"] = None,
        read_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.max_heartbeat = config.max_heartbeat
        self.merge_gap = min(config.merge_gap, self.max_heartbeat)
        self.dimensions = tuple(config.dimensions)
        self.resolver = resolver
        self.read_timeout = read_timeout
        self.clock = clock

    def aggregate(self, identity: str, window: Window) -> Summary:
        """Compute the summary of ``identity`` over ``window``.

        Args:
            identity: Canonical identity.
            window: Half-open window to clamp durations to.

        Returns:
            Summary with total and per-dimension durations. An identity with
            no heartbeats gets an all-zero Summary.

        Raises:
            InvalidRangeError: If window start is not before its end.
            AggregationTimeoutError: If the store read times out.
            StoreUnavailableError: If the store cannot be read.
            InternalAggregationError: If a computed duration is inconsistent.
        """
        window.validate()
        spans = self._build_spans(self._load(identity, window))

        total = timedelta(0)
        buckets: Dict[str, timedelta] = defaultdict(timedelta)
        for span in spans:
            duration = window.clamp(span.start, span.end)
            if duration < timedelta(0):
                raise InternalAggregationError(
                    f"Negative duration {duration} for span at {span.start.isoformat()}"
                )
            if not duration:
                continue
            total += duration
            for dimension in self.dimensions:
                value = span.heartbeat.value_of(dimension)
                if value:
                    buckets[dimension_key(dimension, value)] += duration

        for key, duration in buckets.items():
            if duration > total:
                raise InternalAggregationError(
                    f"Bucket {key} ({duration}) exceeds total ({total}) for {identity}"
                )

        logger.debug(
            f"Aggregated {identity} over [{window.start.isoformat()}, {window.end.isoformat()}): "
            f"{len(spans)} spans, {total.total_seconds():.0f}s"
        )
        return Summary(
            identity=identity,
            window=window,
            total=total,
            breakdown=dict(sorted(buckets.items())),
            dimensions=self.dimensions,
            computed_at=self.clock(),
        )

    def spans(self, identity: str, window: Window) -> List[Span]:
        """Collapsed spans clamped to ``window``, zero-length ones dropped."""
        window.validate()
        clamped = []
        for span in self._build_spans(self._load(identity, window)):
            start = max(span.start, window.start)
            end = min(span.end, window.end)
            if end > start:
                clamped.append(Span(start, end, span.heartbeat, span.count))
        return clamped

    def _read_start(self, window: Window) -> datetime:
        if window.start - MIN_INSTANT > self.max_heartbeat:
            return window.start - self.max_heartbeat
        return MIN_INSTANT

    def _load(self, identity: str, window: Window) -> List[Heartbeat]:
        """Read, validate, deduplicate and sort heartbeats for a window."""
        read_start = self._read_start(window)
        try:
            records = self.store.read_events(identity, read_start, window.end, timeout=self.read_timeout)
        except TimeoutError as e:
            raise AggregationTimeoutError(f"Reading heartbeats for {identity} timed out: {e}") from e

        heartbeats = []
        seen = set()
        skipped = 0
        for record in records:
            heartbeat = self._coerce(record, identity)
            if heartbeat is None:
                skipped += 1
                continue
            if not read_start <= heartbeat.timestamp < window.end:
                continue
            fingerprint = (heartbeat.timestamp, heartbeat.context)
            if fingerprint in seen:
                continue
            seen.add(fingerprint)
            heartbeats.append(heartbeat)

        if skipped:
            logger.warning(f"Skipped {skipped} malformed heartbeat(s) for {identity}")

        # sorted() is stable, so equal timestamps keep store order
        return sorted(heartbeats, key=lambda hb: hb.timestamp)

    def _coerce(self, record, identity: str) -> Optional[Heartbeat]:
        """Turn a store record into a Heartbeat, or None if it is malformed."""
        if isinstance(record, Heartbeat):
            values = {dim: record.value_of(dim) for dim in DIMENSIONS}
            owner = record.identity
            timestamp = record.timestamp
        elif isinstance(record, Mapping):
            values = {dim: record.get(dim) for dim in DIMENSIONS}
            owner = record.get("identity", identity)
            timestamp = record.get("timestamp")
        else:
            logger.debug(f"Unsupported heartbeat record type: {type(record).__name__}")
            return None

        if owner != identity:
            logger.debug(f"Heartbeat of {owner} returned for {identity}")
            return None

        if isinstance(timestamp, str):
            try:
                timestamp = datetime.fromisoformat(timestamp)
            except ValueError:
                logger.debug(f"Unparseable heartbeat timestamp: {timestamp!r}")
                return None
        if not isinstance(timestamp, datetime):
            logger.debug(f"Heartbeat without a valid timestamp: {timestamp!r}")
            return None
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone().replace(tzinfo=None)

        for dim, value in values.items():
            if value is not None and not isinstance(value, str):
                logger.debug(f"Heartbeat {dim} is not a string: {value!r}")
                return None
            value = value or None
            if self.resolver is not None:
                value = self.resolver.resolve_value(identity, dim, value)
            values[dim] = value

        return Heartbeat(identity=identity, timestamp=timestamp, **values)

    def _build_spans(self, heartbeats: List[Heartbeat]) -> List[Span]:
        """Collapse sorted heartbeats into spans with their credited time."""
        spans: List[Span] = []
        run_start: Optional[Heartbeat] = None
        run_count = 0

        for i, heartbeat in enumerate(heartbeats):
            following = heartbeats[i + 1] if i + 1 < len(heartbeats) else None
            if run_start is None:
                run_start = heartbeat
                run_count = 0
            run_count += 1

            if following is None:
                spans.append(Span(run_start.timestamp, heartbeat.timestamp + self.max_heartbeat,
                                  run_start, run_count))
                break

            gap = following.timestamp - heartbeat.timestamp
            if following.context == heartbeat.context and gap <= self.merge_gap:
                continue

            spans.append(Span(run_start.timestamp, heartbeat.timestamp + min(gap, self.max_heartbeat),
                              run_start, run_count))
            run_start = None

        return spans
