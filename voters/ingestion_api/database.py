"""PostgreSQL-backed durable store for vote records."""
import asyncpg
from typing import AsyncIterator, Optional
import logging

from voters.shared import VoteRecord, StoreError
from .config import settings

logger = logging.getLogger(__name__)


CREATE_VOTES_TABLE = """
    CREATE TABLE IF NOT EXISTS votes (
        identity TEXT PRIMARY KEY,
        record JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


class Database:
    """
    Async PostgreSQL key-value store: identity -> vote record document.

    The table is a flat map; all cross-structure consistency is handled by
    the ingestion engine. finalize() is the only conditional write.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.postgres_dsn
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and ensure the schema exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=settings.POSTGRES_POOL_MIN_SIZE,
                max_size=settings.POSTGRES_POOL_MAX_SIZE,
                command_timeout=60
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.execute(CREATE_VOTES_TABLE)
                logger.info("PostgreSQL votes table verified")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    async def get(self, identity: str) -> Optional[VoteRecord]:
        """
        Get the vote record stored under an identity.

        Args:
            identity: Verified identity (store key)

        Returns:
            VoteRecord or None if the identity is not registered
        """
        try:
            async with self.pool.acquire() as conn:
                raw = await conn.fetchval(
                    "SELECT record FROM votes WHERE identity = $1",
                    identity
                )
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Error reading vote for {identity}: {e}")
            raise StoreError(f"Failed to read vote: {e}") from e

        if raw is None:
            return None
        return VoteRecord.from_json(raw)

    async def put(self, identity: str, record: VoteRecord) -> None:
        """
        Store a record unconditionally (last writer wins).

        Args:
            identity: Verified identity (store key)
            record: Record to store
        """
        query = """
            INSERT INTO votes (identity, record, updated_at)
            VALUES ($1, $2::jsonb, NOW())
            ON CONFLICT (identity)
            DO UPDATE SET record = EXCLUDED.record, updated_at = NOW()
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(query, identity, record.to_json())
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Error writing vote for {identity}: {e}")
            raise StoreError(f"Failed to write vote: {e}") from e

    async def create(self, identity: str, record: VoteRecord) -> VoteRecord:
        """
        Insert a record unless the identity already has one.

        Returns:
            The record now stored under the identity
        """
        query = """
            INSERT INTO votes (identity, record)
            VALUES ($1, $2::jsonb)
            ON CONFLICT (identity) DO NOTHING
            RETURNING record
        """
        try:
            async with self.pool.acquire() as conn:
                raw = await conn.fetchval(query, identity, record.to_json())
                if raw is None:
                    raw = await conn.fetchval(
                        "SELECT record FROM votes WHERE identity = $1",
                        identity
                    )
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Error registering {identity}: {e}")
            raise StoreError(f"Failed to register identity: {e}") from e

        return VoteRecord.from_json(raw)

    async def finalize(self, identity: str, record: VoteRecord) -> bool:
        """
        Compare-and-swap write of a finalized record.

        The write only happens while the stored record has the same id and
        no created timestamp.

        Returns:
            True if this call finalized the vote, False if another did first
        """
        query = """
            UPDATE votes
            SET record = $2::jsonb, updated_at = NOW()
            WHERE identity = $1
              AND record->>'id' = $3
              AND NOT (record ? 'created')
            RETURNING identity
        """
        try:
            async with self.pool.acquire() as conn:
                updated = await conn.fetchval(query, identity, record.to_json(), record.id)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Error finalizing vote for {identity}: {e}")
            raise StoreError(f"Failed to finalize vote: {e}") from e

        return updated is not None

    async def scan_all(self) -> AsyncIterator[VoteRecord]:
        """
        Lazily iterate over every stored record, ordered by identity.

        Yields:
            VoteRecord for each registered identity
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    async for row in conn.cursor(
                        "SELECT record FROM votes ORDER BY identity",
                        prefetch=500
                    ):
                        yield VoteRecord.from_json(row["record"])
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Error scanning votes: {e}")
            raise StoreError(f"Failed to scan votes: {e}") from e

    async def check_health(self) -> bool:
        """
        Check database health.

        Returns:
            bool: True if healthy, False otherwise
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def close(self):
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("PostgreSQL connection pool closed")


# Global database instance
database = Database()
