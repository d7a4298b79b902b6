"""Read/action receipts and the engagement analytics they feed."""

import datetime
import logging
from collections import Counter
from collections.abc import Sequence
from typing import Protocol

from notification_engine.domain.notification import (
    DeliveryRecord,
    DeviceInfo,
    Notification,
    PlatformStats,
)
from notification_engine.errors import UnknownRecipientError

logger = logging.getLogger(__name__)


class UniqueViewRule(Protocol):
    """Decides how many distinct recipients count as having viewed."""

    def count(self, notification: Notification) -> int: ...


class LifetimeUniqueViews:
    """Every recipient that has ever read the notification."""

    def count(self, notification: Notification) -> int:
        return sum(1 for r in notification.deliveries if r.is_read)


class WindowedUniqueViews:
    """Only reads that happened before the notification expired."""

    def count(self, notification: Notification) -> int:
        expires_at = notification.expires_at
        return sum(
            1
            for r in notification.deliveries
            if r.is_read
            and r.read_at is not None
            and (expires_at is None or r.read_at < expires_at)
        )


class ReceiptTracker:
    def __init__(self, unique_view_rule: UniqueViewRule | None = None) -> None:
        self._unique_view_rule = unique_view_rule or LifetimeUniqueViews()

    def mark_read(
        self,
        notification: Notification,
        recipient_id: str,
        at: datetime.datetime,
        device_info: DeviceInfo | None = None,
    ) -> DeliveryRecord:
        """Record a view.

        The read flag is set once; every call counts toward total views
        and the hour-of-day histogram.
        """
        with notification.locked():
            record = _require_record(notification, recipient_id)
            if not record.is_read:
                record.is_read = True
                record.read_at = at
            if device_info is not None and record.device_info is None:
                record.device_info = device_info

            analytics = notification.analytics
            analytics.total_views += 1
            analytics.views_by_hour[at.hour] = analytics.views_by_hour.get(at.hour, 0) + 1
            platform = _platform(record)
            if platform is not None:
                analytics.platform_stats.setdefault(platform, PlatformStats()).views += 1
            analytics.unique_views = self._unique_view_rule.count(notification)

        logger.debug(
            "Notification read",
            extra={"notification_id": str(notification.id), "recipient_id": recipient_id},
        )
        return record

    def mark_actioned(
        self,
        notification: Notification,
        recipient_id: str,
        action: str,
        at: datetime.datetime,
    ) -> DeliveryRecord:
        """Record the recipient's action. Only the first action counts."""
        with notification.locked():
            record = _require_record(notification, recipient_id)
            if record.has_actioned:
                return record

            record.has_actioned = True
            record.actioned_at = at
            record.action = action

            analytics = notification.analytics
            platform = _platform(record)
            if platform is not None:
                analytics.platform_stats.setdefault(platform, PlatformStats()).actions += 1
            refresh_action_counts(notification)

        logger.debug(
            "Notification actioned",
            extra={
                "notification_id": str(notification.id),
                "recipient_id": recipient_id,
                "action": action,
            },
        )
        return record


def refresh_action_counts(notification: Notification) -> None:
    """Derive click-throughs and per-action counts from the records."""
    actioned: Sequence[DeliveryRecord] = [
        r for r in notification.deliveries if r.has_actioned
    ]
    notification.analytics.click_throughs = len(actioned)
    notification.analytics.actions = dict(
        Counter(r.action for r in actioned if r.action is not None)
    )


def _require_record(notification: Notification, recipient_id: str) -> DeliveryRecord:
    record = notification.record_for(recipient_id)
    if record is None:
        raise UnknownRecipientError(
            f"No delivery record for recipient {recipient_id!r} "
            f"on notification {notification.id}"
        )
    return record


def _platform(record: DeliveryRecord) -> str | None:
    if record.device_info is None:
        return None
    return record.device_info.platform
