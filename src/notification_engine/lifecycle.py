"""Notification lifecycle state machine and the approval workflow."""

import datetime
import logging

from notification_engine.domain.notification import Notification
from notification_engine.enums import (
    PRE_SENT_STATUSES,
    ApprovalState,
    NotificationStatus,
)
from notification_engine.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

S = NotificationStatus

_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    S.DRAFT: frozenset({S.PENDING_APPROVAL, S.APPROVED, S.CANCELLED, S.EXPIRED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.CANCELLED, S.EXPIRED}),
    S.APPROVED: frozenset({S.SCHEDULED, S.SENDING, S.CANCELLED, S.EXPIRED}),
    S.SCHEDULED: frozenset({S.SENDING, S.CANCELLED, S.EXPIRED}),
    # SENDING -> APPROVED/SCHEDULED rolls back a send aborted by a
    # resolution error.
    S.SENDING: frozenset({
        S.SENT, S.FAILED, S.CANCELLED, S.EXPIRED, S.APPROVED, S.SCHEDULED,
    }),
    S.SENT: frozenset(),
    # A failed send may be retried.
    S.FAILED: frozenset({S.SENDING}),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
}


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    return target in _TRANSITIONS[current]


def transition(notification: Notification, target: NotificationStatus) -> NotificationStatus:
    """Move *notification* to *target*, returning the previous status."""
    with notification.locked():
        current = notification.status
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move notification {notification.id} from {current} to {target}"
            )
        notification.status = target
    logger.info(
        "Notification status changed",
        extra={
            "notification_id": str(notification.id),
            "from_status": str(current),
            "to_status": str(target),
        },
    )
    return current


def submit(notification: Notification) -> NotificationStatus:
    """Leave draft: wait for approval if required, else approve implicitly."""
    with notification.locked():
        if notification.approval.is_required:
            previous = transition(notification, S.PENDING_APPROVAL)
            notification.approval.status = ApprovalState.PENDING
        else:
            previous = transition(notification, S.APPROVED)
            notification.approval.status = ApprovalState.NOT_REQUIRED
        return previous


def approve(
    notification: Notification,
    approver: str,
    at: datetime.datetime,
    comments: str | None = None,
) -> NotificationStatus:
    with notification.locked():
        _require_pending_approval(notification)
        previous = transition(notification, S.APPROVED)
        notification.approval.status = ApprovalState.APPROVED
        notification.approval.approver = approver
        notification.approval.approved_at = at
        notification.approval.comments = comments
        return previous


def reject(
    notification: Notification,
    approver: str,
    at: datetime.datetime,
    comments: str | None = None,
) -> NotificationStatus:
    """Reject a pending notification. Terminal: the instance is cancelled."""
    with notification.locked():
        _require_pending_approval(notification)
        previous = transition(notification, S.CANCELLED)
        notification.approval.status = ApprovalState.REJECTED
        notification.approval.approver = approver
        notification.approval.rejected_at = at
        notification.approval.comments = comments
        return previous


def is_dispatchable(notification: Notification, now: datetime.datetime) -> bool:
    """Approved (or approval not required) and not past its expiry."""
    return (
        notification.approval.status
        in (ApprovalState.NOT_REQUIRED, ApprovalState.APPROVED)
        and not notification.is_expired(now)
    )


def expire_if_due(notification: Notification, now: datetime.datetime) -> bool:
    """Expire a not-yet-sent notification whose expiry has passed."""
    with notification.locked():
        if notification.status in PRE_SENT_STATUSES and notification.is_expired(now):
            transition(notification, S.EXPIRED)
            return True
    return False


def _require_pending_approval(notification: Notification) -> None:
    if notification.status != S.PENDING_APPROVAL:
        raise InvalidTransitionError(
            f"Notification {notification.id} is not awaiting approval "
            f"(status={notification.status})"
        )
