"""Concurrent multi-channel delivery of a notification.

Sends run in one bounded thread pool per channel. Workers never touch the
aggregate's records: they return attempts, and the calling thread appends
them and recomputes the rollup while holding the aggregate lock.

Jobs are handed to a pool only when it has a free worker, so every
submitted send starts at once and its timeout is measured from
submission. A send that overruns keeps its thread; the pool it ran on is
retired and later jobs go to a fresh one.
"""

import datetime
import logging
import threading
import time
from collections import Counter, defaultdict, deque
from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from notification_engine.config import DeliveryConfig
from notification_engine.domain.notification import (
    DeliveryAttempt,
    DeliveryRecord,
    Notification,
    utcnow,
)
from notification_engine.enums import (
    AttemptStatus,
    Channel,
    NotificationStatus,
    RecipientOutcome,
)
from notification_engine.errors import DispatchRejectedError
from notification_engine.lifecycle import is_dispatchable
from notification_engine.log import notification_context
from notification_engine.providers import ProviderRegistry
from notification_engine.providers.base import DeliveryOutcome
from notification_engine.rate_limiter import RateLimiter
from notification_engine.rollup import channel_outcome, recompute

logger = logging.getLogger(__name__)

DISPATCHABLE_STATUSES = frozenset({
    NotificationStatus.SENDING,
    NotificationStatus.SENT,
})

# Statuses that stop a dispatch: nothing new starts once one is seen.
HALTED_STATUSES = frozenset({
    NotificationStatus.CANCELLED,
    NotificationStatus.EXPIRED,
})

_POLL_SECONDS = 0.05

Hook = Callable[[Notification], None]
_Batch = list[tuple["_SendJob", DeliveryAttempt]]


@dataclass(slots=True)
class _SendJob:
    recipient_id: str
    channel: Channel
    content: dict[str, str]
    channel_config: dict[str, str]
    submitted_at: float = 0.0
    executor: ThreadPoolExecutor | None = None


def is_halted(notification: Notification) -> bool:
    return notification.status in HALTED_STATUSES


class Dispatcher:
    def __init__(
        self,
        registry: ProviderRegistry,
        config: DeliveryConfig,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._config = config
        self._rate_limiter = rate_limiter
        self._clock = clock
        self._executors: dict[Channel, ThreadPoolExecutor] = {}
        self._executors_lock = threading.Lock()

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def close(self) -> None:
        with self._executors_lock:
            for executor in self._executors.values():
                executor.shutdown(wait=False, cancel_futures=True)
            self._executors.clear()

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def dispatch(
        self,
        notification: Notification,
        checkpoint: Hook | None = None,
        refresh: Hook | None = None,
    ) -> Notification:
        """Attempt every (recipient, channel) pair that is still pending.

        Channels already delivered or exhausted are skipped, so calling this
        again only retries what is left. Per-recipient failures are
        recorded as attempts and never raised.

        *checkpoint* runs on the calling thread after each batch of
        attempts is applied, and *refresh* after every poll; the engine
        uses them to persist progress and to notice a cancellation made
        through another copy of the notification.

        Raises DispatchRejectedError if the notification is not approved,
        has expired, or is not in a sending state.
        """
        now = self._clock()
        with notification.locked():
            if notification.status not in DISPATCHABLE_STATUSES:
                raise DispatchRejectedError(
                    f"Notification {notification.id} cannot be dispatched "
                    f"in status {notification.status}"
                )
            if not is_dispatchable(notification, now):
                raise DispatchRejectedError(
                    f"Notification {notification.id} is not approved or has expired"
                )
            records = {r.recipient_id: r for r in notification.deliveries}
            jobs = list(self._pending_jobs(notification))

        log_ctx = notification_context(
            notification, recipients=len(records), jobs=len(jobs)
        )
        logger.info("Dispatch started", extra=log_ctx)

        queues: dict[Channel, deque[_SendJob]] = defaultdict(deque)
        for job in jobs:
            queues[job.channel].append(job)
        in_flight: dict[Future[DeliveryAttempt | None], _SendJob] = {}
        timeout = self._config.provider_timeout_seconds

        while in_flight or any(queues.values()):
            if is_halted(notification):
                queues.clear()
                for future in [f for f in in_flight if f.cancel()]:
                    del in_flight[future]
            else:
                self._top_up(notification, queues, in_flight)
            if not in_flight:
                break

            done, _ = wait(in_flight, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
            batch: _Batch = []
            for future in done:
                job = in_flight.pop(future)
                attempt = future.result()
                if attempt is not None:
                    batch.append((job, attempt))
            batch.extend(self._overdue(notification, in_flight, timeout))

            if batch:
                self._apply(notification, records, batch)
                if checkpoint is not None:
                    checkpoint(notification)
            if refresh is not None:
                refresh(notification)

        with notification.locked():
            status = notification.delivery_status
            logger.info(
                "Dispatch finished",
                extra={
                    **log_ctx,
                    "delivered": status.delivered,
                    "failed": status.failed,
                    "pending": status.pending,
                    "halted": is_halted(notification),
                },
            )
        return notification

    def _pending_jobs(self, notification: Notification) -> Iterator[_SendJob]:
        for record in notification.deliveries:
            for channel in record.channels:
                if channel_outcome(record, channel, self.max_attempts) != RecipientOutcome.PENDING:
                    continue
                yield _SendJob(
                    recipient_id=record.recipient_id,
                    channel=channel,
                    content=_content_for(notification, channel),
                    channel_config={
                        **notification.delivery_config.channel_settings.get(channel, {}),
                        "idempotency_key": notification.dedup_key(record.recipient_id, channel),
                        "priority": str(notification.priority),
                    },
                )

    def _top_up(
        self,
        notification: Notification,
        queues: dict[Channel, deque[_SendJob]],
        in_flight: dict[Future[DeliveryAttempt | None], _SendJob],
    ) -> None:
        """Submit queued jobs while their channel's pool has idle workers."""
        busy = Counter(job.channel for job in in_flight.values())
        for channel, queue in queues.items():
            free = self._config.workers_for_channel(channel) - busy[channel]
            for _ in range(min(free, len(queue))):
                job = queue.popleft()
                job.executor = self._executor_for(channel)
                job.submitted_at = time.monotonic()
                in_flight[job.executor.submit(self._run, notification, job)] = job

    def _overdue(
        self,
        notification: Notification,
        in_flight: dict[Future[DeliveryAttempt | None], _SendJob],
        timeout: float,
    ) -> _Batch:
        """Give up on sends older than *timeout*; their late results are dropped."""
        now = time.monotonic()
        batch: _Batch = []
        for future, job in list(in_flight.items()):
            if future.done() or now - job.submitted_at <= timeout:
                continue
            del in_flight[future]
            if not future.cancel():
                self._retire_executor(job)
            batch.append((job, self._timed_out(notification, job, timeout)))
        return batch

    def _executor_for(self, channel: Channel) -> ThreadPoolExecutor:
        with self._executors_lock:
            executor = self._executors.get(channel)
            if executor is None:
                executor = ThreadPoolExecutor(
                    max_workers=self._config.workers_for_channel(channel),
                    thread_name_prefix=f"dispatch-{channel}",
                )
                self._executors[channel] = executor
            return executor

    def _retire_executor(self, job: _SendJob) -> None:
        """Stop using the pool a hung send is blocking."""
        with self._executors_lock:
            if self._executors.get(job.channel) is not job.executor:
                return
            del self._executors[job.channel]
        logger.warning(
            "Retiring channel pool with a hung send",
            extra={"channel": str(job.channel), "recipient_id": job.recipient_id},
        )
        job.executor.shutdown(wait=False)

    def _run(self, notification: Notification, job: _SendJob) -> DeliveryAttempt | None:
        """Worker body. Returns None when skipped because the send was halted."""
        if is_halted(notification):
            return None

        try:
            provider = self._registry.get(job.channel)
        except KeyError:
            return self._attempt(
                notification,
                job,
                DeliveryOutcome.bounced(f"No provider registered for {job.channel}"),
            )

        try:
            if self._rate_limiter is not None and not self._rate_limiter.acquire(
                job.channel, notification.priority
            ):
                outcome = DeliveryOutcome.failed("Rate limited")
            else:
                outcome = provider.send(job.recipient_id, job.content, job.channel_config)
        except Exception as exc:
            logger.exception(
                "Provider error",
                extra=notification_context(
                    notification, recipient_id=job.recipient_id, channel=str(job.channel)
                ),
            )
            outcome = DeliveryOutcome.failed(f"Provider exception: {exc}")

        return self._attempt(notification, job, outcome)

    def _attempt(
        self, notification: Notification, job: _SendJob, outcome: DeliveryOutcome
    ) -> DeliveryAttempt:
        now = self._clock()
        delivered = outcome.status == AttemptStatus.DELIVERED
        return DeliveryAttempt(
            channel=job.channel,
            status=outcome.status,
            attempted_at=now,
            delivered_at=now if delivered else None,
            error_message=None if delivered else outcome.details,
            dedup_key=notification.dedup_key(job.recipient_id, job.channel),
            metadata=dict(outcome.metadata),
        )

    def _timed_out(
        self, notification: Notification, job: _SendJob, timeout: float
    ) -> DeliveryAttempt:
        logger.warning(
            "Provider send timed out",
            extra=notification_context(
                notification,
                recipient_id=job.recipient_id,
                channel=str(job.channel),
                timeout_seconds=timeout,
            ),
        )
        return self._attempt(
            notification, job, DeliveryOutcome.failed(f"Timed out after {timeout}s")
        )

    def _apply(
        self,
        notification: Notification,
        records: dict[str, DeliveryRecord],
        batch: _Batch,
    ) -> None:
        """Append attempts and refresh the rollup in one critical section."""
        with notification.locked():
            for job, attempt in batch:
                records[job.recipient_id].attempts.append(attempt)
            notification.delivery_status = recompute(
                notification.deliveries, self.max_attempts
            )


def _content_for(notification: Notification, channel: Channel) -> dict[str, str]:
    content = notification.content.get(channel)
    if content:
        return dict(content)
    # Ad hoc notifications carry only the primary title/message.
    return {
        "title": notification.title,
        "message": notification.message,
        "subject": notification.title,
        "body": notification.message,
    }
