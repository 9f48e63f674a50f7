"""
In-memory country rankings derived from the vote store.

The cache is rebuilt from a full store scan at startup and then updated once
per finalized vote. It is the only shared mutable state of the API process:
every mutation happens under a single lock, and readers only ever receive
immutable snapshots.
"""
import logging
import threading
from collections import defaultdict
from typing import AsyncIterable, Dict, Iterable, List, Optional

from voters.shared import (
    CountryAggregate,
    GlobalStats,
    VoteRecord,
    extract_public_part,
    DEFAULT_PUBLIC_FIELDS,
    DEFAULT_RECENT_VOTES_LIMIT,
)

logger = logging.getLogger(__name__)


class _Country:
    """Mutable per-country state, only touched under the cache lock."""

    __slots__ = ("code", "total_count", "recent_votes")

    def __init__(self, code: str):
        self.code = code
        self.total_count = 0
        self.recent_votes: List[dict] = []

    def freeze(self) -> CountryAggregate:
        return CountryAggregate(
            code=self.code,
            total_count=self.total_count,
            recent_votes=tuple(dict(vote) for vote in self.recent_votes),
        )


class AggregateCache:
    """Per-country vote totals, recent votes and the global ranking."""

    def __init__(
        self,
        recent_limit: int = DEFAULT_RECENT_VOTES_LIMIT,
        public_fields: Iterable[str] = DEFAULT_PUBLIC_FIELDS
    ):
        self.recent_limit = recent_limit
        self.public_fields = tuple(public_fields)

        self._lock = threading.Lock()
        # Insertion order of this dict is the tie-breaker of the ranking
        self._countries: Dict[str, _Country] = {}
        self._snapshots: Dict[str, CountryAggregate] = {}
        self._stats = GlobalStats()

    @classmethod
    async def build(cls, records: AsyncIterable[VoteRecord], **kwargs) -> 'AggregateCache':
        """
        Build a cache by replaying every record of the store.

        Unfinalized records are skipped. Within a country, finalized ones
        are applied in index order, the order they were committed in.
        Countries are created in the order of their first vote so that the
        ranking tie-break matches what incremental updates produced.

        Args:
            records: Async stream of all stored records
            **kwargs: Forwarded to the constructor

        Returns:
            AggregateCache: Populated cache
        """
        cache = cls(**kwargs)

        by_country = defaultdict(list)
        finalized = 0
        skipped = 0
        async for record in records:
            if record.is_finalized:
                by_country[record.nationality].append(record)
                finalized += 1
            else:
                skipped += 1

        for votes in by_country.values():
            votes.sort(key=lambda r: r.index or 0)
        # Timestamps only order countries, never votes of the same country
        for votes in sorted(by_country.values(), key=lambda v: v[0].created or ""):
            for record in votes:
                cache.apply_vote(record)

        logger.info(
            f"Aggregate cache built: {finalized} finalized votes, "
            f"{skipped} registered without ballot, "
            f"{len(cache._countries)} countries"
        )
        return cache

    def find_country(self, code: str) -> Optional[CountryAggregate]:
        """Get the aggregate of a country, or None if it has no votes."""
        with self._lock:
            return self._snapshots.get(code)

    def next_index(self, code: str) -> int:
        """
        Index the next finalized vote of a country will receive.

        Callers must serialize this with apply_vote for the same country.
        """
        with self._lock:
            country = self._countries.get(code)
            return (country.total_count if country else 0) + 1

    def apply_vote(self, record: VoteRecord) -> None:
        """
        Fold a newly finalized vote into the aggregates.

        Must be called exactly once per finalized vote.

        Args:
            record: Finalized vote record

        Raises:
            ValueError: If the record is not finalized
        """
        if not record.is_finalized or not record.nationality:
            raise ValueError(f"Vote {record.id} is not finalized")

        public = extract_public_part(record, self.public_fields)

        with self._lock:
            country = self._countries.get(record.nationality)
            if country is None:
                country = _Country(record.nationality)
                self._countries[record.nationality] = country

            country.total_count += 1
            country.recent_votes.insert(0, public)
            del country.recent_votes[self.recent_limit:]

            self._snapshots[country.code] = country.freeze()
            self._stats = self._compute_stats()

    def snapshot_stats(self) -> GlobalStats:
        """Get the stats computed by the last applied vote."""
        with self._lock:
            return self._stats

    def _compute_stats(self) -> GlobalStats:
        # sorted() is stable, so equal totals keep insertion order
        ranking = sorted(
            self._countries.values(),
            key=lambda country: country.total_count,
            reverse=True
        )
        return GlobalStats(
            total_count=sum(country.total_count for country in ranking),
            countries=tuple(self._snapshots[country.code] for country in ranking),
        )
