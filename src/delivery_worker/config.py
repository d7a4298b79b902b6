from pydantic_settings import BaseSettings, SettingsConfigDict


class CeleryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CELERY_")

    broker_url: str = "redis://localhost:6379/0"


class WorkerConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WORKER_")

    scheduled_sweep_seconds: float = 30.0
    expiry_sweep_seconds: float = 300.0
    retry_sweep_seconds: float = 600.0
    stall_sweep_seconds: float = 300.0
    # A send with no recorded progress for this long is resumed.
    stall_after_seconds: float = 900.0
    sweep_batch_size: int = 100
    rate_limit_enabled: bool = True
