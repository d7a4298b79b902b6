"""Notification engine: lifecycle orchestration over the components.

Every mutating operation persists the aggregate and, when its status
changed, publishes a status event.

Several copies of one notification may be live at once: the worker that
is dispatching it, and whatever loaded it to record a receipt or cancel
it. Saves are version checked. When a save loses the race the copy is
rebased onto the stored state and the save retried, so attempts issued
by a running dispatch are never dropped and receipts or a cancellation
stored meanwhile are never overwritten.
"""

import datetime
import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from notification_engine import lifecycle
from notification_engine.db.repositories import NotificationRepository
from notification_engine.dispatcher import HALTED_STATUSES, Dispatcher
from notification_engine.domain.notification import (
    DeliveryRecord,
    DeviceInfo,
    Notification,
    RelatedEntity,
    utcnow,
)
from notification_engine.domain.recipients import RecipientSpec
from notification_engine.enums import (
    ApprovalState,
    Channel,
    NotificationStatus,
    SenderRole,
)
from notification_engine.errors import (
    ConcurrentUpdateError,
    ConfigurationError,
    DispatchRejectedError,
    NotificationEngineError,
    ResolutionError,
)
from notification_engine.log import notification_context
from notification_engine.producer import KafkaStatusProducer
from notification_engine.receipts import ReceiptTracker
from notification_engine.resolver import PreferenceSource, RecipientResolver, effective_channels
from notification_engine.rollup import recompute
from notification_engine.templates import TemplateStore, build_notification

logger = logging.getLogger(__name__)

S = NotificationStatus
T = TypeVar("T")

_SENDABLE = frozenset({S.APPROVED, S.SCHEDULED, S.SENDING})

_MAX_SAVE_ATTEMPTS = 5


class NotificationEngine:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        templates: TemplateStore,
        resolver: RecipientResolver,
        dispatcher: Dispatcher,
        receipts: ReceiptTracker | None = None,
        preferences: PreferenceSource | None = None,
        status_publisher: KafkaStatusProducer | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._templates = templates
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._receipts = receipts or ReceiptTracker()
        self._preferences = preferences
        self._status_publisher = status_publisher
        self._clock = clock

    # -- creation -----------------------------------------------------------

    def create_from_template(
        self,
        template_name: str,
        variables: Mapping[str, Any],
        *,
        sender_id: str,
        sender_role: SenderRole,
        recipients: RecipientSpec | None = None,
        require_approval: bool | None = None,
        channel_settings: Mapping[Channel, Mapping[str, str]] | None = None,
        related_entity: RelatedEntity | None = None,
    ) -> Notification:
        """Render a template into a stored draft.

        Raises ConfigurationError for an unknown template, missing required
        variables or an empty recipient specification.
        """
        now = self._clock()
        template = self._templates.get(template_name)
        notification = build_notification(
            template,
            variables,
            sender_id=sender_id,
            sender_role=sender_role,
            now=now,
            recipients=recipients,
            require_approval=require_approval,
            channel_settings=channel_settings,
            related_entity=related_entity,
        )
        self.create(notification)
        self._templates.record_usage(template_name, now)
        return notification

    def create(self, notification: Notification) -> Notification:
        """Store an ad hoc (or freshly built) notification as a draft."""
        if notification.status != S.DRAFT:
            raise ConfigurationError("New notifications must start in draft")
        if notification.recipients.is_empty():
            raise ConfigurationError(
                f"Notification {notification.id} has an empty recipient specification"
            )
        if notification.approval.is_required:
            notification.approval.status = ApprovalState.PENDING
        if notification.expires_at is None:
            notification.expires_at = notification.delivery_config.expiry_time

        with self._session_factory() as session:
            NotificationRepository(session).create(notification)
            session.commit()
        logger.info(
            "Notification created",
            extra=notification_context(
                notification, approval_required=notification.approval.is_required
            ),
        )
        return notification

    def get(self, notification_id: UUID) -> Notification | None:
        with self._session_factory() as session:
            return NotificationRepository(session).get_by_id(notification_id)

    # -- approval workflow ----------------------------------------------------

    def submit(self, notification: Notification) -> Notification:
        previous = lifecycle.submit(notification)
        return self._commit(notification, previous)

    def approve(
        self, notification: Notification, approver: str, comments: str | None = None
    ) -> Notification:
        previous = lifecycle.approve(notification, approver, self._clock(), comments)
        return self._commit(notification, previous)

    def reject(
        self, notification: Notification, approver: str, comments: str | None = None
    ) -> Notification:
        previous = lifecycle.reject(notification, approver, self._clock(), comments)
        return self._commit(notification, previous)

    # -- scheduling and sending ---------------------------------------------

    def schedule(self, notification: Notification, at: datetime.datetime) -> Notification:
        with notification.locked():
            previous = lifecycle.transition(notification, S.SCHEDULED)
            notification.scheduled_at = at
            notification.delivery_config.scheduled_time = at
            notification.delivery_config.immediate_delivery = False
        return self._commit(notification, previous)

    def send(self, notification: Notification) -> Notification:
        """Resolve recipients (once) and dispatch to every channel.

        Also resumes a send left in ``sending`` by a worker that died:
        recipients stay as resolved and only pending channels are tried.

        Raises DispatchRejectedError if the notification is not approved,
        has expired or is not in a sendable state, and ResolutionError if
        recipient lookup fails (the notification is left as it was).
        """
        now = self._clock()
        with notification.locked():
            previous = notification.status
            expired = lifecycle.expire_if_due(notification, now)
        if expired:
            self._commit(notification, previous)
            raise DispatchRejectedError(f"Notification {notification.id} has expired")

        with notification.locked():
            if notification.status not in _SENDABLE or not lifecycle.is_dispatchable(
                notification, now
            ):
                raise DispatchRejectedError(
                    f"Notification {notification.id} cannot be sent "
                    f"(status={notification.status}, "
                    f"approval={notification.approval.status})"
                )
            previous = notification.status
            if previous != S.SENDING:
                lifecycle.transition(notification, S.SENDING)
            if notification.resolved_at is None:
                try:
                    self._freeze_recipients(notification, now)
                except ResolutionError:
                    if previous != S.SENDING:
                        lifecycle.transition(notification, previous)
                    raise
            notification.progress_at = now

        self._commit(notification, previous)
        self._dispatch(notification)
        return self._finish_sending(notification)

    def retry(self, notification: Notification) -> Notification:
        """Re-attempt channels that failed but still have attempts left."""
        with notification.locked():
            previous = notification.status
            if previous == S.FAILED:
                lifecycle.transition(notification, S.SENDING)
            elif previous != S.SENT:
                raise DispatchRejectedError(
                    f"Notification {notification.id} has not been sent "
                    f"(status={previous})"
                )

        try:
            self._dispatch(notification)
        except DispatchRejectedError:
            if previous == S.FAILED:
                lifecycle.transition(notification, S.FAILED)
            raise
        if previous == S.FAILED:
            return self._finish_sending(notification)
        self._save(notification)
        return notification

    def cancel(self, notification: Notification) -> Notification:
        """Stop a notification before it is sent.

        Sends already in flight complete and are recorded; nothing new
        starts, including in a dispatch running on another copy.
        """
        previous = self._save(
            notification,
            lambda target: lifecycle.transition(target, S.CANCELLED),
            keep_status=False,
        )
        self._publish(notification, previous)
        return notification

    def expire(self, notification: Notification) -> bool:
        with notification.locked():
            previous = notification.status
            expired = lifecycle.expire_if_due(notification, self._clock())
        if expired:
            self._commit(notification, previous)
        return expired

    # -- receipts -----------------------------------------------------------

    def mark_read(
        self,
        notification: Notification,
        recipient_id: str,
        at: datetime.datetime | None = None,
        device_info: DeviceInfo | None = None,
    ) -> DeliveryRecord:
        at = at or self._clock()
        return self._save(
            notification,
            lambda target: self._receipts.mark_read(target, recipient_id, at, device_info),
            keep_status=False,
        )

    def mark_actioned(
        self,
        notification: Notification,
        recipient_id: str,
        action: str,
        at: datetime.datetime | None = None,
    ) -> DeliveryRecord:
        at = at or self._clock()
        return self._save(
            notification,
            lambda target: self._receipts.mark_actioned(target, recipient_id, action, at),
            keep_status=False,
        )

    # -- batch operations used by the worker --------------------------------

    def send_due_scheduled(self, limit: int = 100) -> list[Notification]:
        with self._session_factory() as session:
            due = NotificationRepository(session).get_due_scheduled(self._clock(), limit)
        return self._each(due, self.send, "Scheduled send failed")

    def expire_overdue(self, limit: int = 100) -> int:
        with self._session_factory() as session:
            overdue = NotificationRepository(session).get_expired_unsent(self._clock(), limit)
        return sum(1 for n in overdue if self.expire(n))

    def retry_pending(self, limit: int = 100) -> list[Notification]:
        with self._session_factory() as session:
            retryable = NotificationRepository(session).get_with_pending_deliveries(limit)
        return self._each(retryable, self.retry, "Retry failed")

    def resume_stalled(
        self, stalled_for: datetime.timedelta, limit: int = 100
    ) -> list[Notification]:
        """Finish sends that stored no progress for *stalled_for*."""
        cutoff = self._clock() - stalled_for
        with self._session_factory() as session:
            stalled = NotificationRepository(session).get_stalled_sending(cutoff, limit)
        for notification in stalled:
            logger.warning("Resuming stalled send", extra=notification_context(notification))
        return self._each(stalled, self.send, "Resuming stalled send failed")

    # -- internals ----------------------------------------------------------

    def _freeze_recipients(self, notification: Notification, now: datetime.datetime) -> None:
        """Resolve once and persist the result as the authoritative list."""
        recipient_ids = self._resolver.resolve(notification.recipients, as_of=now)
        channels = notification.delivery_config.channels
        try:
            records = [
                DeliveryRecord(
                    recipient_id=recipient_id,
                    channels=effective_channels(channels, recipient_id, self._preferences),
                )
                for recipient_id in sorted(recipient_ids)
            ]
        except Exception as exc:
            raise ResolutionError(f"Channel preference lookup failed: {exc}") from exc

        notification.deliveries = records
        notification.resolved_at = now
        notification.delivery_status = recompute(records, self._dispatcher.max_attempts)

    def _dispatch(self, notification: Notification) -> None:
        self._dispatcher.dispatch(
            notification, checkpoint=self._checkpoint, refresh=self._refresh_status
        )

    def _checkpoint(self, notification: Notification) -> None:
        """Store the attempts a running dispatch has made so far."""
        with notification.locked():
            notification.progress_at = self._clock()
            self._save(notification)

    def _refresh_status(self, notification: Notification) -> None:
        """Halt a running dispatch once another copy stored a cancellation."""
        with self._session_factory() as session:
            stored = NotificationRepository(session).get_status(notification.id)
        if stored not in HALTED_STATUSES or notification.status == stored:
            return
        with notification.locked():
            notification.status = stored
        logger.info(
            "Send halted by another writer",
            extra=notification_context(notification),
        )

    def _finish_sending(self, notification: Notification) -> Notification:
        with notification.locked():
            if notification.status != S.SENDING:
                # Cancelled or expired while dispatching; already published.
                self._save(notification)
                return notification
            rollup = notification.delivery_status
            all_failed = (
                rollup.total_recipients > 0
                and rollup.delivered == 0
                and rollup.pending == 0
            )
            outcome = S.FAILED if all_failed else S.SENT
            lifecycle.transition(notification, outcome)
            notification.sent_at = self._clock()
            self._save(notification)
            if notification.status == outcome:
                self._publish(notification, S.SENDING)
        return notification

    def _save(
        self,
        notification: Notification,
        change: Callable[[Notification], T] | None = None,
        *,
        keep_status: bool = True,
    ) -> T | None:
        """Apply *change* (if any) and store the result.

        On a version conflict the copy is rebased onto the stored state
        and *change* applied again. With *keep_status* this copy's
        lifecycle status survives the rebase unless the stored one halts
        the send; otherwise the stored status is taken and *change*
        decides again.
        """
        with notification.locked():
            for _ in range(_MAX_SAVE_ATTEMPTS):
                result = change(notification) if change is not None else None
                try:
                    self._persist(notification)
                except ConcurrentUpdateError:
                    self._rebase(notification, keep_status=keep_status)
                    continue
                return result
        raise ConcurrentUpdateError(
            f"Notification {notification.id} kept changing while being saved"
        )

    def _rebase(self, notification: Notification, *, keep_status: bool) -> None:
        stored = self.get(notification.id)
        if stored is None:
            raise ConcurrentUpdateError(f"Notification {notification.id} no longer exists")
        with notification.locked():
            status = notification.status
            sent_at = notification.sent_at
            progress_at = notification.progress_at
            _take_stored_state(notification, stored)
            if keep_status and stored.status not in HALTED_STATUSES:
                notification.status = status
                notification.sent_at = sent_at or stored.sent_at
                notification.progress_at = progress_at
            notification.delivery_status = recompute(
                notification.deliveries, self._dispatcher.max_attempts
            )
        logger.info(
            "Rebased onto stored notification",
            extra=notification_context(notification, version=stored.version),
        )

    def _persist(self, notification: Notification) -> None:
        with notification.locked(), self._session_factory() as session:
            NotificationRepository(session).save(notification)
            session.commit()

    def _publish(self, notification: Notification, previous: NotificationStatus) -> None:
        if self._status_publisher is not None and notification.status != previous:
            self._status_publisher.publish_status(notification, str(previous))

    def _commit(self, notification: Notification, previous: NotificationStatus) -> Notification:
        self._persist(notification)
        self._publish(notification, previous)
        return notification

    @staticmethod
    def _each(
        notifications: list[Notification],
        operation: Callable[[Notification], Notification],
        failure_message: str,
    ) -> list[Notification]:
        done: list[Notification] = []
        for notification in notifications:
            try:
                done.append(operation(notification))
            except NotificationEngineError:
                logger.exception(
                    failure_message,
                    extra=notification_context(notification),
                )
        return done


def _take_stored_state(notification: Notification, stored: Notification) -> None:
    """Overwrite *notification* with *stored*, keeping attempts only it holds.

    Delivery records are updated in place: a running dispatch holds
    references to them.
    """
    own = {r.recipient_id: r for r in notification.deliveries}
    records: list[DeliveryRecord] = []
    for theirs in stored.deliveries:
        record = own.pop(theirs.recipient_id, None)
        if record is None:
            records.append(theirs)
            continue
        stored_ids = {a.attempt_id for a in theirs.attempts}
        unsaved = [a for a in record.attempts if a.attempt_id not in stored_ids]
        for name in DeliveryRecord.model_fields:
            if name != "attempts":
                setattr(record, name, getattr(theirs, name))
        record.attempts[:] = [*theirs.attempts, *unsaved]
        records.append(record)
    records.extend(own.values())
    notification.deliveries[:] = records

    for name in Notification.model_fields:
        if name != "deliveries":
            setattr(notification, name, getattr(stored, name))
