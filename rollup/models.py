"""Domain models for heartbeats, query windows and summaries.

Heartbeats are the raw, immutable input; Summaries are derived from them and
can be thrown away and regenerated at any time. All durations are kept as
``timedelta`` so that summaries computed piecewise add up exactly.

Example:
    >>> window = Window(datetime(2026, 1, 5, 9), datetime(2026, 1, 5, 10))
    >>> summary = Summary.empty("alice", window, DIMENSIONS)
    >>> summary.total_seconds
    0.0
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from .errors import InvalidRangeError

# Lower bound of an all-time window
MIN_INSTANT = datetime.min

DIMENSIONS: Tuple[str, ...] = ("project", "language", "editor", "machine", "category")


def dimension_key(dimension: str, value: str) -> str:
    """Build a breakdown key such as ``project:foo``."""
    return f"{dimension}:{value}"


def split_key(key: str) -> Tuple[str, str]:
    """Inverse of dimension_key. Values may themselves contain colons."""
    dimension, _, value = key.partition(":")
    return dimension, value


@dataclass(frozen=True)
class Heartbeat:
    """A single activity ping recorded by an editor or tool plugin.

    Attributes:
        identity: Canonical identity that owns the heartbeat.
        timestamp: When the ping was sent.
        project: Project name (optional).
        language: Programming language (optional).
        editor: Editor or tool name (optional).
        machine: Machine name (optional).
        category: Activity category such as "coding" or "debugging" (optional).
    """
    identity: str
    timestamp: datetime
    project: Optional[str] = None
    language: Optional[str] = None
    editor: Optional[str] = None
    machine: Optional[str] = None
    category: Optional[str] = None

    @property
    def context(self) -> Tuple[Optional[str], ...]:
        return (self.project, self.language, self.editor, self.machine, self.category)

    def value_of(self, dimension: str) -> Optional[str]:
        return getattr(self, dimension, None)


@dataclass(frozen=True)
class Window:
    """Half-open time range ``[start, end)``.

    Attributes:
        start: Inclusive lower bound.
        end: Exclusive upper bound.
        open_ended: True when ``end`` means "now" rather than a fixed instant.
            Open-ended windows are cached by their start only and extended
            on later queries.
    """
    start: datetime
    end: datetime
    open_ended: bool = False

    @classmethod
    def all_time(cls, now: datetime) -> "Window":
        return cls(MIN_INSTANT, now, open_ended=True)

    @classmethod
    def since(cls, start: datetime, now: datetime) -> "Window":
        return cls(start, now, open_ended=True)

    def validate(self) -> "Window":
        """Raise InvalidRangeError unless start < end."""
        if self.start >= self.end:
            raise InvalidRangeError(
                f"Window start {self.start.isoformat()} is not before end {self.end.isoformat()}"
            )
        return self

    def clamp(self, start: datetime, end: datetime) -> timedelta:
        """Length of the overlap between ``[start, end)`` and this window."""
        lo = max(start, self.start)
        hi = min(end, self.end)
        if hi <= lo:
            return timedelta(0)
        return hi - lo


@dataclass(frozen=True)
class Filter:
    """Single ``dimension == value`` constraint applied to a summary."""
    dimension: str
    value: str

    @classmethod
    def parse(cls, text: str) -> "Filter":
        """Parse ``dimension:value`` (e.g. ``project:foo``)."""
        dimension, sep, value = text.partition(":")
        if not sep or not dimension or not value:
            raise ValueError(f"Filter must look like 'dimension:value', got {text!r}")
        return cls(dimension.strip(), value.strip())

    @property
    def key(self) -> str:
        return dimension_key(self.dimension, self.value)


@dataclass(frozen=True)
class Summary:
    """Aggregated durations for one identity over one window.

    Attributes:
        identity: Canonical identity the summary belongs to.
        window: Window the durations were clamped to.
        total: Total attributed time.
        breakdown: Duration per ``dimension:value`` key. Only keys with a
            positive duration are present.
        dimensions: Dimensions the summary tracks.
        computed_at: When the summary was produced. Not part of equality.
    """
    identity: str
    window: Window
    total: timedelta
    breakdown: Dict[str, timedelta] = field(default_factory=dict)
    dimensions: Tuple[str, ...] = DIMENSIONS
    computed_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def empty(cls, identity: str, window: Window, dimensions: Iterable[str] = DIMENSIONS,
              computed_at: Optional[datetime] = None) -> "Summary":
        return cls(identity, window, timedelta(0), {}, tuple(dimensions), computed_at)

    @property
    def total_seconds(self) -> float:
        return self.total.total_seconds()

    def get(self, dimension: str, value: str) -> timedelta:
        return self.breakdown.get(dimension_key(dimension, value), timedelta(0))

    def by_dimension(self, dimension: str) -> Dict[str, timedelta]:
        """Breakdown entries for one dimension, keyed by bare value."""
        result = {}
        for key, duration in self.breakdown.items():
            dim, value = split_key(key)
            if dim == dimension:
                result[value] = duration
        return result

    def merge(self, later: "Summary") -> "Summary":
        """Fold a summary of the directly following window into this one.

        Args:
            later: Summary whose window starts where this one ends.

        Returns:
            New Summary spanning both windows. Keeps this summary's
            open_ended flag and the later summary's computed_at.

        Raises:
            ValueError: If identities, dimensions or windows do not line up.
        """
        if later.identity != self.identity:
            raise ValueError(f"Cannot merge summaries of {self.identity} and {later.identity}")
        if later.dimensions != self.dimensions:
            raise ValueError("Cannot merge summaries tracking different dimensions")
        if later.window.start != self.window.end:
            raise ValueError(
                f"Windows are not contiguous: {self.window.end.isoformat()} != "
                f"{later.window.start.isoformat()}"
            )

        breakdown = dict(self.breakdown)
        for key, duration in later.breakdown.items():
            breakdown[key] = breakdown.get(key, timedelta(0)) + duration

        return Summary(
            identity=self.identity,
            window=Window(self.window.start, later.window.end, self.window.open_ended),
            total=self.total + later.total,
            breakdown=dict(sorted(breakdown.items())),
            dimensions=self.dimensions,
            computed_at=later.computed_at,
        )

    def to_dict(self) -> dict:
        """Plain structure for transports to encode."""
        return {
            "identity": self.identity,
            "range": {
                "start": None if self.window.start == MIN_INSTANT else self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
                "open_ended": self.window.open_ended,
            },
            "total_seconds": self.total_seconds,
            "text": format_duration(self.total),
            "breakdown": {key: d.total_seconds() for key, d in sorted(self.breakdown.items())},
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


def format_duration(duration: timedelta) -> str:
    """Human readable duration, e.g. ``"1 hr 30 mins"``.

    Durations under a minute are shown in seconds.
    """
    total_seconds = int(duration.total_seconds())
    if total_seconds < 60:
        return f"{total_seconds} sec" if total_seconds == 1 else f"{total_seconds} secs"

    hours, remainder = divmod(total_seconds, 3600)
    minutes = remainder // 60
    parts = []
    if hours:
        parts.append(f"{hours} hr" if hours == 1 else f"{hours} hrs")
    if minutes:
        parts.append(f"{minutes} min" if minutes == 1 else f"{minutes} mins")
    return " ".join(parts)
