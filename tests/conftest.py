"""Shared fixtures for heartbeat-rollup tests."""

import threading
from datetime import datetime, timedelta

import pytest

from rollup.config import AggregationConfig, CacheConfig, Config, StorageConfig
from rollup.models import Heartbeat
from rollup.storage import HeartbeatStorage

BASE = datetime(2026, 1, 5, 9, 0, 0)


def at(seconds: float) -> datetime:
    """Timestamp ``seconds`` after BASE."""
    return BASE + timedelta(seconds=seconds)


def alice_heartbeats():
    """Alice works on foo from t=0 to t=60 and on bar from t=60 to t=90."""
    foo = [Heartbeat("alice", at(t), project="foo", language="python", editor="vim",
                     machine="laptop", category="coding") for t in (0, 15, 30, 45)]
    bar = [Heartbeat("alice", at(t), project="bar", language="go", editor="vim",
                     machine="laptop", category="coding") for t in (60, 75)]
    return foo + bar


class FakeClock:
    """Manually advanced clock, callable like datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class MemoryStore:
    """List-backed event store that counts reads.

    Records may be Heartbeats or raw dicts; dicts are always returned so
    that malformed records reach the aggregator.
    """

    def __init__(self, records=None, reverse: bool = False):
        self.records = list(records or [])
        self.reverse = reverse
        self.reads = []
        self.error = None
        self._lock = threading.Lock()

    def add(self, *records):
        self.records.extend(records)

    def read_events(self, identity, start, end, timeout=None):
        with self._lock:
            self.reads.append((identity, start, end))
        if self.error is not None:
            raise self.error
        result = [
            r for r in self.records
            if not isinstance(r, Heartbeat) or (r.identity == identity and start <= r.timestamp < end)
        ]
        return list(reversed(result)) if self.reverse else result


@pytest.fixture
def aggregation_config():
    return AggregationConfig(merge_gap_seconds=30, max_heartbeat_seconds=120)


@pytest.fixture
def clock():
    return FakeClock(at(90))


@pytest.fixture
def storage(tmp_path):
    return HeartbeatStorage(tmp_path / "heartbeats.db")


@pytest.fixture
def seeded_storage(storage):
    """Storage with alice (alias "alice@work"), bob (no heartbeats) and eve."""
    for user in ("alice", "bob", "eve"):
        storage.create_user(user)
    storage.add_alias("alice", "alice@work")
    storage.save_heartbeats(alice_heartbeats())
    return storage


@pytest.fixture
def config(tmp_path):
    return Config(
        aggregation=AggregationConfig(merge_gap_seconds=30, max_heartbeat_seconds=120),
        cache=CacheConfig(bounded_ttl_seconds=300, refresh_interval_seconds=0),
        storage=StorageConfig(db_path=str(tmp_path / "heartbeats.db"), read_timeout_seconds=5),
    )
