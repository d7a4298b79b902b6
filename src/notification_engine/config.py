from urllib.parse import quote_plus

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KafkaConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KAFKA_")

    bootstrap_servers: str = "localhost:9092"
    status_events_topic: str = "notification.status"


class RedisConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    db: int = 0


class PostgresConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    database: str = "notifications"
    user: str = "postgres"
    password: str = "postgres"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class DeliveryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DELIVERY_")

    log_level: str = "INFO"
    provider_timeout_seconds: float = 30.0
    max_attempts: int = 3
    retry_backoff_seconds: list[int] = [60, 300, 900]
    in_app_workers: int = 16
    email_workers: int = 8
    sms_workers: int = 4
    push_workers: int = 8

    def workers_for_channel(self, channel: str) -> int:
        """Return the pool size for a given channel."""
        workers = {
            "in-app": self.in_app_workers,
            "email": self.email_workers,
            "sms": self.sms_workers,
            "push": self.push_workers,
        }
        size = workers.get(channel)
        if size is None:
            raise ValueError(f"Unknown channel: {channel!r}")
        return size


class RateLimitConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    in_app_per_minute: int = 1000
    email_per_minute: int = 100
    sms_per_minute: int = 50
    push_per_minute: int = 200
    window_seconds: int = 60
    # Fraction of each window open to low and normal priority sends.
    bulk_share: float = Field(default=0.8, gt=0, le=1)

    def limit_for_channel(self, channel: str) -> int:
        """Return the per-minute limit for a given channel."""
        limits = {
            "in-app": self.in_app_per_minute,
            "email": self.email_per_minute,
            "sms": self.sms_per_minute,
            "push": self.push_per_minute,
        }
        limit = limits.get(channel)
        if limit is None:
            raise ValueError(f"Unknown channel: {channel!r}")
        return limit
