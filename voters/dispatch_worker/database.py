"""PostgreSQL audit log of dispatched side effects."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

from .config import Config

logger = logging.getLogger(__name__)


CREATE_AUDIT_TABLE = """
    CREATE TABLE IF NOT EXISTS dispatch_audit (
        id BIGSERIAL PRIMARY KEY,
        vote_id TEXT NOT NULL,
        effect TEXT NOT NULL,
        status TEXT NOT NULL,
        worker_id TEXT NOT NULL,
        processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        metadata JSONB
    )
"""

INSERT_AUDIT = """
    INSERT INTO dispatch_audit (vote_id, effect, status, worker_id, metadata)
    VALUES (%s, %s, %s, %s, %s)
    RETURNING id
"""


class DatabaseClient:
    """
    Writes one row per side-effect attempt.

    Failed effects are never retried by the worker; this table is where
    operators find them to reconcile out of band.
    """

    def __init__(self, dsn: Optional[str] = None):
        try:
            self.pool = psycopg2.pool.ThreadedConnectionPool(
                Config.POSTGRES_MIN_POOL_SIZE,
                Config.POSTGRES_MAX_POOL_SIZE,
                dsn or Config.get_postgres_dsn()
            )
        except psycopg2.Error as e:
            logger.error(f"Could not connect to PostgreSQL: {e}")
            raise

        with self._transaction() as cursor:
            cursor.execute(CREATE_AUDIT_TABLE)
        logger.info("PostgreSQL ready, dispatch_audit table verified")

    @contextmanager
    def _transaction(self) -> Iterator[psycopg2.extensions.cursor]:
        """Borrow a pooled connection; commit on success, roll back on error."""
        conn = self.pool.getconn()
        try:
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def insert_audit_log(
        self,
        vote_id: str,
        effect: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """
        Record the outcome of one side effect.

        Args:
            vote_id: Id of the vote the job carried
            effect: Side effect name (email, backup)
            status: Outcome (sent, failed)
            metadata: Error details, if any

        Returns:
            Id of the audit row
        """
        payload = psycopg2.extras.Json(metadata) if metadata else None
        try:
            with self._transaction() as cursor:
                cursor.execute(INSERT_AUDIT, (vote_id, effect, status, Config.WORKER_ID, payload))
                audit_id = cursor.fetchone()[0]
        except psycopg2.Error as e:
            logger.error(f"Could not audit {effect}={status} for vote {vote_id}: {e}")
            raise

        logger.debug(f"Audit {audit_id}: vote={vote_id}, {effect}={status}")
        return audit_id

    def close(self):
        """Close all pooled connections."""
        self.pool.closeall()
        logger.info("PostgreSQL connection pool closed")
