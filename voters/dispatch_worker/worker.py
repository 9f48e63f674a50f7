"""
Side-effect dispatch worker.

Consumes one job per finalized vote from the durable dispatch queue and
attempts, independently of each other:

1. The notification email (completion or confirmation, picked from the record)
2. The remote backup of the record, when BACKUP_URL and BACKUP_TOKEN are set

A failure of one effect never cancels the other, and none of them is retried:
the job is acknowledged once both attempts are over, whatever their outcome.
Outcomes are logged, counted and written to the dispatch audit table.
"""

import logging
import signal
import sys
import time
from typing import Callable, Optional

import psycopg2
from prometheus_client import Counter, Histogram, start_http_server

from voters.shared import VoteRecord, SideEffectFailure
from .config import Config
from .mailer import Mailer
from .backup_client import BackupClient
from .rabbitmq_client import RabbitMQClient
from .database import DatabaseClient

logger = logging.getLogger(__name__)

# Prometheus metrics
jobs_processed = Counter(
    'dispatch_jobs_processed_total',
    'Total number of dispatch jobs processed',
    ['status']
)

effects_total = Counter(
    'dispatch_effects_total',
    'Side effect attempts by outcome',
    ['effect', 'status']
)

dispatch_latency = Histogram(
    'dispatch_processing_latency_seconds',
    'Time spent processing a dispatch job',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)


class DispatchWorker:
    """Main dispatch worker class."""

    def __init__(
        self,
        mailer: Optional[Mailer] = None,
        backup_client: Optional[BackupClient] = None,
        rabbitmq_client: Optional[RabbitMQClient] = None,
        db_client: Optional[DatabaseClient] = None
    ):
        """Initialize the dispatch worker, optionally with ready-made clients."""
        self.mailer = mailer
        self.backup_client = backup_client
        self.rabbitmq_client = rabbitmq_client
        self.db_client = db_client
        self.shutdown_requested = False

        logger.info(f"Initializing dispatch worker: {Config.WORKER_ID}")

    def _handle_shutdown(self, signum, frame):
        """Handle graceful shutdown on SIGTERM/SIGINT."""
        logger.info(f"Shutdown signal received: {signum}")
        self.shutdown_requested = True

        if self.rabbitmq_client:
            self.rabbitmq_client.stop_consuming()

    def initialize_clients(self):
        """Initialize all client connections not provided at construction."""
        try:
            if self.mailer is None:
                self.mailer = Mailer()

            if self.backup_client is None:
                self.backup_client = BackupClient()
            if not self.backup_client.enabled:
                logger.info("Backup disabled: BACKUP_URL or BACKUP_TOKEN not set")

            if self.db_client is None:
                self.db_client = self._open_audit_log()

            if self.rabbitmq_client is None:
                self.rabbitmq_client = RabbitMQClient()

            logger.info("Dispatch clients ready")

        except Exception as e:
            logger.error(f"Could not initialize dispatch clients: {e}")
            raise

    def _open_audit_log(self) -> Optional[DatabaseClient]:
        """The audit log is best effort: dispatch runs without it."""
        try:
            return DatabaseClient()
        except psycopg2.Error as e:
            logger.warning(f"Dispatch audit log unavailable, continuing without it: {e}")
            return None

    def process_job(self, ch, method, properties, body):
        """
        Process a dispatch job from the queue.

        Args:
            ch: Channel
            method: Method
            properties: Properties
            body: Message body (JSON vote record)
        """
        start_time = time.time()

        try:
            record = VoteRecord.from_json(body)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Invalid dispatch job payload: {e}")
            jobs_processed.labels(status='invalid').inc()
            self.rabbitmq_client.reject(method.delivery_tag, requeue=False)
            return

        logger.info(f"Dispatching vote: id={record.id}, state={record.state.value}")

        email_status = self._attempt('email', record, self.mailer.send_vote_mail)

        if self.backup_client.enabled and record.is_finalized:
            backup_status = self._attempt('backup', record, self.backup_client.backup)
        else:
            backup_status = 'skipped'
            effects_total.labels(effect='backup', status='skipped').inc()

        if 'failed' in (email_status, backup_status):
            jobs_processed.labels(status='partial').inc()
        else:
            jobs_processed.labels(status='done').inc()

        # One attempt per job: acknowledge whatever the outcome
        try:
            self.rabbitmq_client.ack(method.delivery_tag)
        except Exception as e:
            logger.error(f"Failed to ack dispatch job {record.id}, it may be redelivered: {e}")

        dispatch_latency.observe(time.time() - start_time)
        logger.info(
            f"Dispatch finished: id={record.id}, email={email_status}, backup={backup_status}"
        )

    def _attempt(self, effect: str, record: VoteRecord, action: Callable[[VoteRecord], None]) -> str:
        """Run one side effect, containing and recording its failure."""
        metadata = None
        try:
            action(record)
            status = 'sent'
        except Exception as e:
            failure = SideEffectFailure(effect, record.id, e)
            logger.error(str(failure))
            status = 'failed'
            metadata = {'error': str(e), 'error_type': type(e).__name__}

        effects_total.labels(effect=effect, status=status).inc()
        self._audit(record, effect, status, metadata)
        return status

    def _audit(self, record: VoteRecord, effect: str, status: str, metadata=None):
        if self.db_client is None:
            return
        try:
            self.db_client.insert_audit_log(record.id, effect, status, metadata)
        except Exception as e:
            logger.error(f"Failed to audit {effect} for vote {record.id}: {e}")

    def run(self):
        """Run the dispatch worker."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        try:
            self.initialize_clients()

            logger.info(f"Starting Prometheus metrics server on port {Config.METRICS_PORT}")
            start_http_server(Config.METRICS_PORT)

            self.rabbitmq_client.consume_jobs(self.process_job)

        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")
        except Exception as e:
            logger.error(f"Worker error: {e}", exc_info=True)
            sys.exit(1)
        finally:
            self.cleanup()

    def cleanup(self):
        """Close every client that was opened, consumer first."""
        for name, client in (
            ("RabbitMQ", self.rabbitmq_client),
            ("backup", self.backup_client),
            ("audit log", self.db_client),
        ):
            if client is None:
                continue
            try:
                client.close()
            except Exception as e:
                logger.error(f"Error closing {name} client: {e}")

        logger.info("Dispatch worker stopped")


def main():
    """Main entry point."""
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("=" * 60)
    logger.info("Starting Dispatch Worker Service")
    logger.info(f"Worker ID: {Config.WORKER_ID}")
    logger.info(f"RabbitMQ: {Config.RABBITMQ_HOST}:{Config.RABBITMQ_PORT}")
    logger.info(f"SMTP: {Config.SMTP_HOST or 'not configured'}:{Config.SMTP_PORT}")
    logger.info(f"Backup: {'enabled' if Config.backup_enabled() else 'disabled'}")
    logger.info(f"PostgreSQL: {Config.POSTGRES_HOST}:{Config.POSTGRES_PORT}")
    logger.info("=" * 60)

    worker = DispatchWorker()
    worker.run()


if __name__ == '__main__':
    main()
