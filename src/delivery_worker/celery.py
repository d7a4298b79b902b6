"""Celery application setup and worker initialization."""

import logging

from celery import Celery, signals
from kombu import Queue
from kombu.utils.imports import symbol_by_name
from pydantic_settings import BaseSettings, SettingsConfigDict
from redis import Redis

from notification_engine.bootstrap import build_engine
from notification_engine.config import (
    DeliveryConfig,
    KafkaConfig,
    PostgresConfig,
    RateLimitConfig,
    RedisConfig,
)
from notification_engine.db.base import create_db_engine, create_session_factory
from notification_engine.enums import Priority
from notification_engine.producer import KafkaStatusProducer
from notification_engine.rate_limiter import RateLimiter

from delivery_worker.config import CeleryConfig, WorkerConfig
from delivery_worker.log import setup_logging

logger = logging.getLogger(__name__)


class DirectoryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DIRECTORY_")

    # Dotted path ("package.module:factory") to a zero-argument callable
    # returning the user/enrollment Directory implementation.
    factory: str | None = None


celery_config = CeleryConfig()
worker_config = WorkerConfig()

app = Celery("delivery_worker", broker=celery_config.broker_url)

app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_queues=[Queue(str(p)) for p in reversed(Priority)],
    task_default_queue=str(Priority.NORMAL),
    beat_schedule={
        "dispatch-due-notifications": {
            "task": "delivery_worker.tasks.dispatch_due_notifications",
            "schedule": worker_config.scheduled_sweep_seconds,
        },
        "expire-overdue-notifications": {
            "task": "delivery_worker.tasks.expire_overdue_notifications",
            "schedule": worker_config.expiry_sweep_seconds,
        },
        "retry-pending-deliveries": {
            "task": "delivery_worker.tasks.retry_pending_deliveries",
            "schedule": worker_config.retry_sweep_seconds,
        },
        "resume-stalled-notifications": {
            "task": "delivery_worker.tasks.resume_stalled_notifications",
            "schedule": worker_config.stall_sweep_seconds,
        },
    },
)

app.autodiscover_tasks(["delivery_worker"])


@signals.worker_init.connect
def _init_worker(**_kwargs: object) -> None:
    """Initialize shared resources once per worker process."""
    delivery_config = DeliveryConfig()
    setup_logging(delivery_config.log_level)

    directory_config = DirectoryConfig()
    if directory_config.factory is None:
        raise RuntimeError("DIRECTORY_FACTORY must name the directory factory")
    directory = symbol_by_name(directory_config.factory)()

    pg_config = PostgresConfig()
    engine = create_db_engine(pg_config.dsn, pool_pre_ping=True)
    session_factory = create_session_factory(engine)

    rate_limiter = None
    if worker_config.rate_limit_enabled:
        redis_config = RedisConfig()
        redis_client = Redis(
            host=redis_config.host,
            port=redis_config.port,
            db=redis_config.db,
        )
        rate_limiter = RateLimiter(redis_client, RateLimitConfig())

    status_publisher = KafkaStatusProducer(KafkaConfig())

    notification_engine = build_engine(
        session_factory,
        directory,
        delivery_config=delivery_config,
        rate_limiter=rate_limiter,
        status_publisher=status_publisher,
    )

    app.conf.update(
        _notification_engine=notification_engine,
        _status_publisher=status_publisher,
        _delivery_config=delivery_config,
        _worker_config=worker_config,
    )
    logger.info("Worker initialized")


@signals.worker_shutdown.connect
def _shutdown_worker(**_kwargs: object) -> None:
    """Clean up resources on worker shutdown."""
    publisher: KafkaStatusProducer | None = getattr(
        app.conf, "_status_publisher", None
    )
    if publisher is not None:
        publisher.close()
    logger.info("Worker shut down")
