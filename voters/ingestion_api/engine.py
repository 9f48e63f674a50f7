"""
Vote ingestion: registration and the one-vote-per-identity state machine.

    Unregistered --register()--> Registered --submit()--> Finalized

Finalization is exactly-once per identity through the store's
compare-and-swap write. Index assignment is serialized per country with an
asyncio lock held across the index read, the store write and the cache
update, so two votes for the same country never share an index while votes
for different countries proceed in parallel.

The cache lives in this process, so the API must run as a single process
(one uvicorn worker) for indices to stay gap-free.

If the cache update fails after a vote is durably finalized, the cache
undercounts that country until the next restart rebuilds it from the store.
The engine remembers the highest index it committed per country, so later
votes still get fresh indices; only the published rankings lag behind.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from voters.shared import (
    VoteRecord,
    IdentityNotRegistered,
    VoteConflict,
    NotAcceptable,
    missing_consents,
    get_current_timestamp,
)
from .cache import AggregateCache

logger = logging.getLogger(__name__)

# Payload keys that are record fields rather than ballot answers
RECORD_FIELDS = ("id", "email", "identity", "nationality", "created", "index")


class VoteIngestionEngine:
    """Validates submissions and commits them to the store and the cache."""

    def __init__(
        self,
        store,
        cache: AggregateCache,
        publisher,
        service_url: str = "",
        clock: Callable[[], str] = get_current_timestamp,
        id_factory: Optional[Callable[[], str]] = None
    ):
        """
        Args:
            store: Durable store (get, create, finalize)
            cache: Aggregate cache rebuilt from the same store
            publisher: Job publisher with an async publish_job(record) -> bool
            service_url: Prefix of generated vote ids
            clock: Returns the creation timestamp of finalized votes
            id_factory: Generates registration tokens
        """
        self.store = store
        self.cache = cache
        self.publisher = publisher
        self.clock = clock
        self.id_factory = id_factory or (lambda: f"{service_url}/{uuid.uuid4().hex}")
        self._country_locks: Dict[str, asyncio.Lock] = {}
        self._committed_index: Dict[str, int] = {}

    def _country_lock(self, code: str) -> asyncio.Lock:
        lock = self._country_locks.get(code)
        if lock is None:
            lock = self._country_locks[code] = asyncio.Lock()
        return lock

    def _next_index(self, code: str) -> int:
        return max(self.cache.next_index(code), self._committed_index.get(code, 0) + 1)

    async def register(self, identity: str) -> VoteRecord:
        """
        Register a verified identity, or return its existing record.

        Args:
            identity: Verified identity (email)

        Returns:
            VoteRecord: The record stored for this identity
        """
        record = await self.store.get(identity)
        if record is not None:
            return record

        record = await self.store.create(identity, VoteRecord(id=self.id_factory(), identity=identity))
        logger.info(f"Identity registered: id={record.id}")
        return record

    async def submit(self, identity: str, payload: Dict[str, Any]) -> VoteRecord:
        """
        Finalize the vote of an identity.

        Args:
            identity: Verified identity of the submitter
            payload: Submitted fields; must echo the registration id and
                carry nationality plus every required consent

        Returns:
            VoteRecord: The finalized record, once durably stored

        Raises:
            IdentityNotRegistered: No record exists for the identity
            VoteConflict: Wrong id, or the vote is already finalized
            NotAcceptable: A required consent is missing or negative
            StoreError: The store could not be read or written
        """
        record = await self.store.get(identity)
        if record is None:
            raise IdentityNotRegistered(f"Identity is not registered: {identity}")

        if payload.get("id") != record.id or record.is_finalized:
            raise VoteConflict(f"Vote {record.id} cannot be submitted")

        answers = {
            key: value for key, value in payload.items()
            if key not in RECORD_FIELDS
        }
        missing = missing_consents(answers)
        if missing:
            raise NotAcceptable(missing)

        nationality = str(payload.get("nationality") or "").strip()
        if not nationality:
            raise NotAcceptable(["nationality"])

        async with self._country_lock(nationality):
            finalized = record.finalize(
                nationality=nationality,
                answers=answers,
                index=self._next_index(nationality),
                created=self.clock()
            )

            if not await self.store.finalize(identity, finalized):
                raise VoteConflict(f"Vote {record.id} was finalized concurrently")
            self._committed_index[nationality] = finalized.index

            # The vote is durable from here on; nothing below may fail the request
            try:
                self.cache.apply_vote(finalized)
            except Exception as e:
                logger.critical(
                    f"Aggregates for {nationality} are stale after vote {finalized.id}, "
                    f"rankings lag until restart: {e}",
                    exc_info=True
                )

        logger.info(
            f"Vote finalized: id={finalized.id}, "
            f"nationality={finalized.nationality}, index={finalized.index}"
        )

        try:
            published = await self.publisher.publish_job(finalized)
        except Exception as e:
            logger.error(f"Error enqueuing dispatch job for {finalized.id}: {e}")
            published = False
        if not published:
            logger.error(f"Dispatch job not enqueued for vote {finalized.id}")

        return finalized
