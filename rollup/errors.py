"""Error types raised by the summary engine.

Every failure a caller can observe is a subclass of SummaryError, so a
transport layer can map the whole family onto status codes in one place.
"""


class SummaryError(Exception):
    """Base class for all summary engine errors."""


class ForbiddenError(SummaryError):
    """Requester asked for an identity other than their own."""


class NotFoundError(SummaryError):
    """Identity is not known to the alias resolver."""


class InvalidRangeError(SummaryError):
    """Window start is not strictly before its end."""


class UnknownDimensionError(SummaryError):
    """Filter names a dimension the summary does not track."""


class AggregationTimeoutError(SummaryError):
    """Event store read or single-flight wait exceeded its deadline."""


class StoreUnavailableError(SummaryError):
    """Event store could not be reached or queried."""


class InternalAggregationError(SummaryError):
    """Aggregation produced a result that violates its invariants."""
