"""Configuration management for the Ingestion API service."""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from voters.shared import (
    RABBITMQ_CONFIG,
    DEFAULT_PUBLIC_FIELDS,
    DEFAULT_RECENT_VOTES_LIMIT,
    get_queue_name,
    get_routing_key,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Service configuration
    SERVICE_NAME: str = "ingestion-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Public URLs
    SERVICE_URL: str = "http://localhost:8000"
    APP_URL: str = "http://localhost:3000"

    # Identity, as verified by the authentication gateway in front of the API
    IDENTITY_HEADER: str = "X-Verified-Identity"
    ADMIN_IDENTITY: Optional[str] = None
    AUTH_PROVIDERS: dict = {
        "facebook": "/auth/facebook",
        "google": "/auth/google",
    }

    # RabbitMQ configuration
    RABBITMQ_HOST: str = "rabbitmq"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_EXCHANGE: str = RABBITMQ_CONFIG["exchange"]
    RABBITMQ_ROUTING_KEY: str = get_routing_key("dispatch")
    RABBITMQ_QUEUE: str = get_queue_name("dispatch")

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "voters_db"
    POSTGRES_USER: str = "voters_user"
    POSTGRES_PASSWORD: str = "voters_pass"

    # Rankings
    RECENT_VOTES_LIMIT: int = DEFAULT_RECENT_VOTES_LIMIT
    PUBLIC_FIELDS: list = list(DEFAULT_PUBLIC_FIELDS)

    # Rate limiting ("memory://" or a redis:// URL shared by API instances)
    RATE_LIMIT: str = "1000/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Connection pools
    POSTGRES_POOL_MIN_SIZE: int = 5
    POSTGRES_POOL_MAX_SIZE: int = 20
    RABBITMQ_POOL_SIZE: int = 10

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def rabbitmq_url(self) -> str:
        """Generate RabbitMQ connection URL."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}/"
        )

    @property
    def uses_redis_rate_limit(self) -> bool:
        return self.RATE_LIMIT_STORAGE_URI.startswith(("redis://", "rediss://"))


settings = Settings()
