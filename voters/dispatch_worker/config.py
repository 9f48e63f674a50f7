"""Configuration management for the dispatch worker service."""

import os
from dotenv import load_dotenv

from voters.shared import RABBITMQ_CONFIG, get_queue_name, get_routing_key

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Configuration class for dispatch worker."""

    # RabbitMQ Configuration
    RABBITMQ_HOST = os.getenv('RABBITMQ_HOST', 'localhost')
    RABBITMQ_PORT = int(os.getenv('RABBITMQ_PORT', '5672'))
    RABBITMQ_USER = os.getenv('RABBITMQ_USER', 'guest')
    RABBITMQ_PASS = os.getenv('RABBITMQ_PASS', 'guest')
    RABBITMQ_VHOST = os.getenv('RABBITMQ_VHOST', '/')

    # Exchange, queue and routing key (must match the ingestion API)
    EXCHANGE = os.getenv('RABBITMQ_EXCHANGE', RABBITMQ_CONFIG['exchange'])
    DISPATCH_QUEUE = os.getenv('DISPATCH_QUEUE', get_queue_name('dispatch'))
    ROUTING_KEY = os.getenv('RABBITMQ_ROUTING_KEY', get_routing_key('dispatch'))

    # SMTP Configuration
    SMTP_HOST = os.getenv('SMTP_HOST', '')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USER = os.getenv('SMTP_USER', '')
    SMTP_PASSWORD = os.getenv('SMTP_PASSWORD', '')
    SMTP_STARTTLS = _env_bool('SMTP_STARTTLS', 'true')
    SMTP_TIMEOUT = float(os.getenv('SMTP_TIMEOUT', '10'))
    MAIL_SENDER_NAME = os.getenv('MAIL_SENDER_NAME', 'Voters Registry')
    MAIL_SENDER = os.getenv('MAIL_SENDER', SMTP_USER)

    # Link back to the voters app in emails
    APP_URL = os.getenv('APP_URL', 'http://localhost:3000')

    # Remote backup of finalized votes (disabled unless both are set)
    BACKUP_URL = os.getenv('BACKUP_URL', '')
    BACKUP_TOKEN = os.getenv('BACKUP_TOKEN', '')
    BACKUP_TIMEOUT = float(os.getenv('BACKUP_TIMEOUT', '10'))

    # PostgreSQL Configuration (dispatch audit log)
    POSTGRES_HOST = os.getenv('POSTGRES_HOST', 'localhost')
    POSTGRES_PORT = int(os.getenv('POSTGRES_PORT', '5432'))
    POSTGRES_DB = os.getenv('POSTGRES_DB', 'voters_db')
    POSTGRES_USER = os.getenv('POSTGRES_USER', 'voters_user')
    POSTGRES_PASSWORD = os.getenv('POSTGRES_PASSWORD', 'voters_pass')
    POSTGRES_MIN_POOL_SIZE = int(os.getenv('POSTGRES_MIN_POOL_SIZE', '1'))
    POSTGRES_MAX_POOL_SIZE = int(os.getenv('POSTGRES_MAX_POOL_SIZE', '4'))

    # Prometheus Metrics
    METRICS_PORT = int(os.getenv('METRICS_PORT', '8001'))

    # Worker Configuration
    PREFETCH_COUNT = int(os.getenv('PREFETCH_COUNT', '10'))
    WORKER_ID = os.getenv('WORKER_ID', 'dispatch-worker-1')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def backup_enabled(cls) -> bool:
        """Whether finalized votes are forwarded to the backup service."""
        return bool(cls.BACKUP_URL and cls.BACKUP_TOKEN)

    @classmethod
    def get_postgres_dsn(cls):
        """Get PostgreSQL connection DSN."""
        return f"host={cls.POSTGRES_HOST} port={cls.POSTGRES_PORT} dbname={cls.POSTGRES_DB} user={cls.POSTGRES_USER} password={cls.POSTGRES_PASSWORD}"
