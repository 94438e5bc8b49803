"""Summary query orchestration.

SummaryService is the single entry point transports call into. A query runs
through four steps:

1. Authorization: requesters may only ask for themselves (by canonical
   identity or the ``"current"`` sentinel). This runs before any lookup so a
   refusal never reveals whether another identity exists.
2. Alias resolution to the canonical identity.
3. Cache lookup or (incremental) aggregation, single-flight per key.
4. Optional filtering down to one dimension value.

Example:
    >>> service = SummaryService.from_config(ConfigManager().config)
    >>> summary = service.all_time("alice", "current", summary_filter=Filter("project", "foo"))
    >>> summary.to_dict()["text"]
    '3 hrs 12 mins'
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from .aggregator import EventAggregator
from .aliases import AliasResolver
from .cache import SummaryCache
from .config import Config
from .errors import ForbiddenError, SummaryError
from .filters import FilterEngine
from .intervals import IntervalParser
from .models import Filter, Summary, Window
from .storage import HeartbeatStorage

logger = logging.getLogger(__name__)

CURRENT_USER = "current"


class SummaryService:
    """Answers summary queries for authenticated requesters.

    Attributes:
        resolver: AliasResolver for identity lookups.
        aggregator: EventAggregator reading heartbeats.
        cache: SummaryCache owned by this service.
        filters: FilterEngine narrowing results.
        storage: Event store, kept so aliases can be reloaded (optional).
    """

    def __init__(
        self,
        resolver: AliasResolver,
        aggregator: EventAggregator,
        cache: SummaryCache,
        filters: Optional[FilterEngine] = None,
        storage: Optional[HeartbeatStorage] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.resolver = resolver
        self.aggregator = aggregator
        self.cache = cache
        self.filters = filters or FilterEngine()
        self.storage = storage
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: Config,
        storage: Optional[HeartbeatStorage] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "SummaryService":
        """Wire up storage, resolver, aggregator and a fresh cache."""
        storage = storage or HeartbeatStorage.from_config(config.storage)
        resolver = AliasResolver.from_storage(storage)
        aggregator = EventAggregator(
            storage,
            config.aggregation,
            resolver=resolver,
            read_timeout=config.storage.read_timeout_seconds,
            clock=clock,
        )
        cache = SummaryCache(config.cache, clock=clock)
        logger.info(f"Summary service ready on {storage.db_path}")
        return cls(resolver, aggregator, cache, FilterEngine(), storage, clock)

    @staticmethod
    def authorize(requester: str, requested_identity: str) -> str:
        """Return the identity to query, or raise ForbiddenError.

        Args:
            requester: Canonical identity of the authenticated caller.
            requested_identity: Identity named in the request.
        """
        if requested_identity == CURRENT_USER or requested_identity == requester:
            return requester
        raise ForbiddenError(f"{requester} may not read summaries of {requested_identity}")

    def query(
        self,
        requester: str,
        requested_identity: str,
        window: Window,
        recompute: bool = False,
        summary_filter: Optional[Filter] = None,
    ) -> Summary:
        """Summary of ``requested_identity`` over ``window``.

        Args:
            requester: Canonical identity of the authenticated caller.
            requested_identity: Identity named in the request, or "current".
            window: Query window.
            recompute: Ignore cached data and aggregate from scratch.
            summary_filter: Optional single dimension constraint.

        Raises:
            ForbiddenError, NotFoundError, InvalidRangeError,
            UnknownDimensionError, AggregationTimeoutError,
            StoreUnavailableError, InternalAggregationError
        """
        try:
            target = self.authorize(requester, requested_identity)
            window.validate()
            identity = self.resolver.canonicalize(target)
            summary = self.cache.get_or_compute(identity, window, recompute, self.aggregator.aggregate)
            return self.filters.apply(summary, summary_filter)
        except SummaryError as e:
            logger.debug(f"Query by {requester} for {requested_identity} failed: {type(e).__name__}: {e}")
            raise

    def all_time(
        self,
        requester: str,
        requested_identity: str,
        recompute: bool = False,
        summary_filter: Optional[Filter] = None,
    ) -> Summary:
        """Summary from account inception up to now."""
        return self.query(requester, requested_identity, Window.all_time(self.clock()),
                          recompute, summary_filter)

    def interval(
        self,
        requester: str,
        requested_identity: str,
        name: str,
        recompute: bool = False,
        summary_filter: Optional[Filter] = None,
    ) -> Summary:
        """Summary for a named interval such as "today" or "last_7_days".

        Raises:
            ValueError: If the interval name cannot be parsed.
        """
        window = IntervalParser(self.clock()).parse(name)
        return self.query(requester, requested_identity, window, recompute, summary_filter)

    def reload_aliases(self) -> None:
        """Re-read identities and value aliases, dropping every cached summary.

        Value aliases change how heartbeats are bucketed, so cached
        summaries computed under the old mapping cannot be kept.
        """
        if self.storage is None:
            raise RuntimeError("Service was created without storage, nothing to reload from")
        self.resolver = AliasResolver.from_storage(self.storage)
        self.aggregator.resolver = self.resolver
        self.cache.invalidate()
