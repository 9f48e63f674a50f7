"""Pytest fixtures shared by the unit tests.

The durable store and the job publisher are replaced by in-memory fakes with
the same async contracts, so the engine, cache and API can be exercised
without PostgreSQL or RabbitMQ.
"""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from voters.shared import VoteRecord, StoreError, REQUIRED_CONSENTS, AFFIRMATIVE
from voters.ingestion_api.cache import AggregateCache
from voters.ingestion_api.engine import VoteIngestionEngine


def _copy(record: VoteRecord) -> VoteRecord:
    return VoteRecord.from_dict(record.to_dict())


class InMemoryStore:
    """Dict-backed store honouring the compare-and-swap finalize contract."""

    def __init__(self):
        self.records: Dict[str, VoteRecord] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.finalize_calls = 0
        self.closed = False

    async def initialize(self):
        pass

    async def close(self):
        self.closed = True

    async def get(self, identity):
        # Yield to the loop so concurrent submissions interleave
        await asyncio.sleep(0)
        if self.fail_reads:
            raise StoreError("store unavailable")
        record = self.records.get(identity)
        return _copy(record) if record else None

    async def put(self, identity, record):
        await asyncio.sleep(0)
        if self.fail_writes:
            raise StoreError("store unavailable")
        self.records[identity] = _copy(record)

    async def create(self, identity, record):
        await asyncio.sleep(0)
        if self.fail_writes:
            raise StoreError("store unavailable")
        if identity not in self.records:
            self.records[identity] = _copy(record)
        return _copy(self.records[identity])

    async def finalize(self, identity, record):
        self.finalize_calls += 1
        await asyncio.sleep(0)
        if self.fail_writes:
            raise StoreError("store unavailable")
        current = self.records.get(identity)
        if current is None or current.id != record.id or current.is_finalized:
            return False
        self.records[identity] = _copy(record)
        return True

    async def scan_all(self):
        for identity in sorted(self.records):
            await asyncio.sleep(0)
            yield _copy(self.records[identity])

    def finalized(self) -> List[VoteRecord]:
        return [record for record in self.records.values() if record.is_finalized]


class FakePublisher:
    """Collects published jobs; can simulate an unavailable queue."""

    def __init__(self):
        self.jobs: List[VoteRecord] = []
        self.available = True
        self.raise_on_publish = False

    async def publish_job(self, record):
        if self.raise_on_publish:
            raise ConnectionError("queue unreachable")
        if not self.available:
            return False
        self.jobs.append(record)
        return True


def make_clock():
    """Strictly increasing ISO timestamps, one second apart."""
    start = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    counter = itertools.count()
    return lambda: (start + timedelta(seconds=next(counter))).isoformat()


def make_ids():
    counter = itertools.count(1)
    return lambda: f"https://voters.test/token-{next(counter)}"


def ballot(record: VoteRecord, nationality: str, **answers) -> dict:
    """Payload submitting a fully consented vote for a registered record."""
    payload = {
        "email": record.identity,
        "id": record.id,
        "nationality": nationality,
    }
    payload.update({name: AFFIRMATIVE for name in REQUIRED_CONSENTS})
    payload.update(answers)
    return payload


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def cache() -> AggregateCache:
    return AggregateCache(recent_limit=5, public_fields=("name", "description"))


@pytest.fixture
def engine(store, cache, publisher) -> VoteIngestionEngine:
    return VoteIngestionEngine(
        store,
        cache,
        publisher,
        clock=make_clock(),
        id_factory=make_ids()
    )


@pytest.fixture
def ballot_for():
    """Builds consented submission payloads: ballot_for(record, "FR", name=...)."""
    return ballot
