"""Shared configuration."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Base settings for all storefront services."""

    # Service info
    service_name: str = "storefront-service"
    service_port: int = 8000

    # Database
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "storefront"
    database_dsn: Optional[str] = None

    # RabbitMQ
    rabbitmq_user: str = "guest"
    rabbitmq_password: str = "guest"
    rabbitmq_host: str = "localhost"
    rabbitmq_port: int = 5672

    # Redis (analytics counters)
    redis_host: str = "localhost"
    redis_port: int = 6379

    # Logging
    log_level: str = "INFO"

    # Access tokens issued by the hosted identity provider
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = "authenticated"

    # Identity provider admin API
    identity_provider_url: str = "http://localhost:9999"
    identity_provider_service_key: str = ""
    identity_provider_timeout: float = 10.0

    # Expiry sweep
    expiry_sweep_interval_seconds: int = 3600
    sweep_token: Optional[str] = None

    # Outbox
    outbox_poll_interval: int = 1
    outbox_batch_size: int = 100

    @property
    def database_url(self) -> str:
        """Get async PostgreSQL connection URL."""
        if self.database_dsn:
            return self.database_dsn
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def rabbitmq_url(self) -> str:
        """Get RabbitMQ connection URL."""
        return (
            f"amqp://{self.rabbitmq_user}:{self.rabbitmq_password}"
            f"@{self.rabbitmq_host}:{self.rabbitmq_port}/"
        )

    @property
    def redis_url(self) -> str:
        """Get Redis connection URL."""
        return f"redis://{self.redis_host}:{self.redis_port}"

    class Config:
        env_file = ".env"
        case_sensitive = False
