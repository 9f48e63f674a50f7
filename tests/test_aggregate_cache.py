"""Tests for the in-memory country rankings."""

import dataclasses

import pytest

from voters.shared import VoteRecord, GlobalStats
from voters.ingestion_api.cache import AggregateCache


def finalized_vote(n, nationality, index, **answers):
    answers.setdefault("I am over 18 years old", "on")
    return VoteRecord(
        id=f"https://voters.test/token-{n}",
        identity=f"voter{n}@example.org",
        nationality=nationality,
        answers=answers,
        created=f"2024-01-15T10:00:{n:02d}+00:00",
        index=index,
    )


class TestEmptyCache:
    def test_empty_stats(self, cache):
        stats = cache.snapshot_stats()

        assert stats == GlobalStats()
        assert stats.to_dict() == {"total_count": 0, "countries": []}

    def test_unknown_country(self, cache):
        assert cache.find_country("FR") is None

    def test_first_index_is_one(self, cache):
        assert cache.next_index("FR") == 1


class TestApplyVote:
    def test_counts_and_next_index(self, cache):
        cache.apply_vote(finalized_vote(1, "FR", 1))
        cache.apply_vote(finalized_vote(2, "FR", 2))

        assert cache.find_country("FR").total_count == 2
        assert cache.next_index("FR") == 3
        assert cache.next_index("DE") == 1

    def test_recent_votes_newest_first_and_truncated(self, cache):
        for n in range(1, 8):
            cache.apply_vote(finalized_vote(n, "FR", n, name=f"Voter {n}"))

        country = cache.find_country("FR")
        assert country.total_count == 7
        assert len(country.recent_votes) == cache.recent_limit == 5
        assert [vote["index"] for vote in country.recent_votes] == [7, 6, 5, 4, 3]

    def test_recent_votes_hold_public_projection(self, cache):
        cache.apply_vote(finalized_vote(
            1, "FR", 1,
            name="Alice",
            description="Hi",
            phone="+33 1 23 45 67 89",
        ))

        vote = cache.find_country("FR").recent_votes[0]
        assert vote == {
            "index": 1,
            "nationality": "FR",
            "created": "2024-01-15T10:00:01+00:00",
            "name": "Alice",
            "description": "Hi",
        }

    def test_ranking_by_total_descending(self, cache):
        votes = [("DE", 1), ("FR", 1), ("FR", 2), ("IT", 1), ("FR", 3), ("IT", 2)]
        for n, (code, index) in enumerate(votes, start=1):
            cache.apply_vote(finalized_vote(n, code, index))

        stats = cache.snapshot_stats()
        assert stats.total_count == 6
        assert [(c.code, c.total_count) for c in stats.countries] == [
            ("FR", 3), ("IT", 2), ("DE", 1)
        ]

    def test_ties_keep_first_seen_order(self, cache):
        for n, code in enumerate(["ES", "PT", "BE"], start=1):
            cache.apply_vote(finalized_vote(n, code, 1))

        assert [c.code for c in cache.snapshot_stats().countries] == ["ES", "PT", "BE"]

    def test_rejects_unfinalized_record(self, cache):
        record = VoteRecord(id="https://voters.test/token-1", identity="a@example.org")

        with pytest.raises(ValueError):
            cache.apply_vote(record)

        assert cache.snapshot_stats().total_count == 0

    def test_snapshots_are_immutable(self, cache):
        cache.apply_vote(finalized_vote(1, "FR", 1, name="Alice"))
        before = cache.snapshot_stats()
        country = cache.find_country("FR")

        cache.apply_vote(finalized_vote(2, "FR", 2, name="Bob"))

        assert before.total_count == 1
        assert country.total_count == 1
        assert [vote["name"] for vote in country.recent_votes] == ["Alice"]
        with pytest.raises(dataclasses.FrozenInstanceError):
            country.total_count = 10


@pytest.mark.asyncio
class TestBuild:
    async def test_build_skips_registered_records(self, store):
        await store.put("idle@example.org", VoteRecord(id="t-idle", identity="idle@example.org"))
        await store.put("voter1@example.org", finalized_vote(1, "FR", 1))

        cache = await AggregateCache.build(store.scan_all())

        assert cache.snapshot_stats().total_count == 1
        assert cache.find_country("FR").total_count == 1

    async def test_build_replays_in_commit_order(self, store):
        # Store scan order (by identity) differs from commit order
        await store.put("zed@example.org", dataclasses.replace(
            finalized_vote(1, "FR", 1, name="First"), identity="zed@example.org"
        ))
        await store.put("amy@example.org", dataclasses.replace(
            finalized_vote(2, "FR", 2, name="Second"), identity="amy@example.org"
        ))

        cache = await AggregateCache.build(store.scan_all(), recent_limit=5, public_fields=("name",))

        country = cache.find_country("FR")
        assert [vote["name"] for vote in country.recent_votes] == ["Second", "First"]
        assert cache.next_index("FR") == 3

    async def test_build_orders_country_by_index_not_timestamp(self, store):
        # Clock skew: the second vote of FR carries an earlier timestamp
        await store.put("voter5@example.org", finalized_vote(5, "FR", 1, name="First"))
        await store.put("voter3@example.org", finalized_vote(3, "FR", 2, name="Second"))
        await store.put("voter4@example.org", finalized_vote(4, "DE", 1))

        cache = await AggregateCache.build(store.scan_all(), recent_limit=5, public_fields=("name",))

        country = cache.find_country("FR")
        assert [vote["index"] for vote in country.recent_votes] == [2, 1]
        assert [vote["name"] for vote in country.recent_votes] == ["Second", "First"]
        assert cache.next_index("FR") == 3
        assert [c.code for c in cache.snapshot_stats().countries] == ["FR", "DE"]

    async def test_build_empty_store(self, store):
        cache = await AggregateCache.build(store.scan_all())

        assert cache.snapshot_stats() == GlobalStats()
