"""Celery tasks: sends, retries on the backoff schedule, periodic sweeps."""

import datetime
import logging
from uuid import UUID

from notification_engine.config import DeliveryConfig
from notification_engine.domain.notification import Notification
from notification_engine.engine import NotificationEngine
from notification_engine.errors import (
    DispatchRejectedError,
    NotificationEngineError,
    ResolutionError,
)

from delivery_worker.celery import app
from delivery_worker.config import WorkerConfig

logger = logging.getLogger(__name__)


@app.task(name="delivery_worker.tasks.send_notification")
def send_notification(notification_id: str, attempt: int = 1) -> None:
    """Send an approved notification.

    A directory outage requeues the whole send on the backoff schedule;
    recipients with retryable failures get a follow-up retry task.
    """
    engine: NotificationEngine = app.conf._notification_engine
    delivery_config: DeliveryConfig = app.conf._delivery_config
    log_ctx = {"notification_id": notification_id, "attempt": attempt}

    notification = engine.get(UUID(notification_id))
    if notification is None:
        logger.warning("Notification not found, skipping", extra=log_ctx)
        return

    try:
        engine.send(notification)
    except ResolutionError:
        if attempt >= delivery_config.max_attempts:
            logger.error("Recipient resolution kept failing, giving up", extra=log_ctx)
            return
        backoff = _get_backoff(attempt, delivery_config.retry_backoff_seconds)
        logger.warning(
            "Recipient resolution failed, requeueing send",
            extra={**log_ctx, "backoff_seconds": backoff},
        )
        _requeue(
            "delivery_worker.tasks.send_notification",
            notification_id,
            attempt + 1,
            backoff,
            str(notification.priority),
        )
        return
    except DispatchRejectedError:
        logger.warning("Notification not sendable, skipping", extra=log_ctx)
        return

    _schedule_retry_if_pending(notification_id, notification, 1, delivery_config)


@app.task(name="delivery_worker.tasks.retry_notification")
def retry_notification(notification_id: str, retry_round: int = 1) -> None:
    """Re-attempt channels that failed on an earlier round."""
    engine: NotificationEngine = app.conf._notification_engine
    delivery_config: DeliveryConfig = app.conf._delivery_config
    log_ctx = {"notification_id": notification_id, "round": retry_round}

    notification = engine.get(UUID(notification_id))
    if notification is None:
        logger.warning("Notification not found, skipping", extra=log_ctx)
        return

    try:
        engine.retry(notification)
    except DispatchRejectedError:
        logger.info("Notification no longer retryable", extra=log_ctx)
        return

    _schedule_retry_if_pending(notification_id, notification, retry_round + 1, delivery_config)


@app.task(name="delivery_worker.tasks.dispatch_due_notifications")
def dispatch_due_notifications() -> int:
    engine: NotificationEngine = app.conf._notification_engine
    worker_config: WorkerConfig = app.conf._worker_config
    sent = engine.send_due_scheduled(worker_config.sweep_batch_size)
    if sent:
        logger.info("Scheduled notifications sent", extra={"count": len(sent)})
    return len(sent)


@app.task(name="delivery_worker.tasks.expire_overdue_notifications")
def expire_overdue_notifications() -> int:
    engine: NotificationEngine = app.conf._notification_engine
    worker_config: WorkerConfig = app.conf._worker_config
    expired = engine.expire_overdue(worker_config.sweep_batch_size)
    if expired:
        logger.info("Notifications expired", extra={"count": expired})
    return expired


@app.task(name="delivery_worker.tasks.retry_pending_deliveries")
def retry_pending_deliveries() -> int:
    """Catch-all sweep for retries whose follow-up task was lost."""
    engine: NotificationEngine = app.conf._notification_engine
    worker_config: WorkerConfig = app.conf._worker_config
    try:
        retried = engine.retry_pending(worker_config.sweep_batch_size)
    except NotificationEngineError:
        logger.exception("Retry sweep failed")
        return 0
    return len(retried)


@app.task(name="delivery_worker.tasks.resume_stalled_notifications")
def resume_stalled_notifications() -> int:
    """Finish sends whose worker died mid-dispatch."""
    engine: NotificationEngine = app.conf._notification_engine
    worker_config: WorkerConfig = app.conf._worker_config
    resumed = engine.resume_stalled(
        datetime.timedelta(seconds=worker_config.stall_after_seconds),
        worker_config.sweep_batch_size,
    )
    if resumed:
        logger.info("Stalled sends resumed", extra={"count": len(resumed)})
    return len(resumed)


def _schedule_retry_if_pending(
    notification_id: str,
    notification: Notification,
    retry_round: int,
    delivery_config: DeliveryConfig,
) -> None:
    pending = notification.delivery_status.pending
    if pending == 0:
        return
    backoff = _get_backoff(retry_round, delivery_config.retry_backoff_seconds)
    logger.info(
        "Scheduling delivery retry",
        extra={
            "notification_id": notification_id,
            "pending": pending,
            "round": retry_round,
            "backoff_seconds": backoff,
        },
    )
    _requeue(
        "delivery_worker.tasks.retry_notification",
        notification_id,
        retry_round,
        backoff,
        str(notification.priority),
    )


def _requeue(
    task_name: str, notification_id: str, counter: int, countdown: int, queue: str
) -> None:
    """Re-enqueue a task with a delay."""
    kwarg = "attempt" if task_name.endswith("send_notification") else "retry_round"
    app.send_task(
        task_name,
        kwargs={"notification_id": notification_id, kwarg: counter},
        countdown=countdown,
        queue=queue,
    )


def _get_backoff(attempt: int, schedule: list[int]) -> int:
    """Return backoff seconds for the given attempt number (1-based).

    Falls back to the last value in *schedule* when attempt exceeds the
    length of the list.
    """
    idx = min(attempt - 1, len(schedule) - 1)
    return schedule[idx]
