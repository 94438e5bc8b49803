"""Narrow an existing summary to a single dimension value."""

from dataclasses import replace
from datetime import timedelta
from typing import Optional

from .errors import UnknownDimensionError
from .models import Filter, Summary


def apply_filter(summary: Summary, summary_filter: Optional[Filter]) -> Summary:
    """Restrict ``summary`` to one ``dimension:value`` bucket.

    Works purely on the aggregate; raw heartbeats are never consulted.

    Args:
        summary: Summary to narrow.
        summary_filter: Constraint to apply, or None to return the summary
            unchanged.

    Returns:
        Summary whose total is the matching bucket's duration (zero when the
        value never occurred) and whose breakdown holds only that bucket.

    Raises:
        UnknownDimensionError: If the summary does not track the dimension.
    """
    if summary_filter is None:
        return summary
    if summary_filter.dimension not in summary.dimensions:
        raise UnknownDimensionError(
            f"Unknown dimension {summary_filter.dimension!r}, "
            f"expected one of {', '.join(summary.dimensions)}"
        )

    duration = summary.breakdown.get(summary_filter.key, timedelta(0))
    breakdown = {summary_filter.key: duration} if duration else {}
    return replace(summary, total=duration, breakdown=breakdown)


class FilterEngine:
    """Object wrapper around apply_filter for callers that inject collaborators."""

    def apply(self, summary: Summary, summary_filter: Optional[Filter]) -> Summary:
        return apply_filter(summary, summary_filter)
