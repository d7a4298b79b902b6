"""The notification aggregate and the records it owns."""

import datetime
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, PrivateAttr

from notification_engine.domain.recipients import RecipientSpec
from notification_engine.enums import (
    ApprovalState,
    AttemptStatus,
    Channel,
    EntityType,
    NotificationStatus,
    Priority,
    SenderRole,
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class DeviceInfo(BaseModel):
    platform: str | None = None
    device_type: str | None = None
    app_version: str | None = None
    os_version: str | None = None


class DeliveryAttempt(BaseModel):
    """A single try to deliver to one recipient over one channel."""

    attempt_id: UUID = Field(default_factory=uuid4)
    channel: Channel
    status: AttemptStatus = AttemptStatus.PENDING
    attempted_at: datetime.datetime = Field(default_factory=utcnow)
    delivered_at: datetime.datetime | None = None
    error_message: str | None = None
    dedup_key: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeliveryRecord(BaseModel):
    recipient_id: str
    channels: list[Channel] = Field(default_factory=list)
    attempts: list[DeliveryAttempt] = Field(default_factory=list)
    is_read: bool = False
    read_at: datetime.datetime | None = None
    has_actioned: bool = False
    actioned_at: datetime.datetime | None = None
    action: str | None = None
    device_info: DeviceInfo | None = None

    def attempts_for(self, channel: Channel) -> list[DeliveryAttempt]:
        return [a for a in self.attempts if a.channel == channel]


class ChannelStats(BaseModel):
    delivered: int = 0
    failed: int = 0
    pending: int = 0


class DeliveryStatus(BaseModel):
    total_recipients: int = 0
    delivered: int = 0
    failed: int = 0
    pending: int = 0
    channel_stats: dict[Channel, ChannelStats] = Field(default_factory=dict)


class ApprovalStatus(BaseModel):
    is_required: bool = False
    status: ApprovalState = ApprovalState.NOT_REQUIRED
    approver: str | None = None
    approved_at: datetime.datetime | None = None
    rejected_at: datetime.datetime | None = None
    comments: str | None = None


class PlatformStats(BaseModel):
    views: int = 0
    actions: int = 0


class Analytics(BaseModel):
    total_views: int = 0
    unique_views: int = 0
    click_throughs: int = 0
    actions: dict[str, int] = Field(default_factory=dict)
    views_by_hour: dict[int, int] = Field(default_factory=dict)
    platform_stats: dict[str, PlatformStats] = Field(default_factory=dict)


class DeliverySettings(BaseModel):
    channels: list[Channel] = Field(default_factory=lambda: [Channel.IN_APP])
    immediate_delivery: bool = True
    scheduled_time: datetime.datetime | None = None
    expiry_time: datetime.datetime | None = None
    # Channel-specific sender options, e.g. email reply_to or SMS sender_id.
    channel_settings: dict[Channel, dict[str, str]] = Field(default_factory=dict)


class RelatedEntity(BaseModel):
    entity_type: EntityType
    entity_id: str
    entity_data: dict[str, Any] = Field(default_factory=dict)


class Notification(BaseModel):
    """Aggregate root.

    Delivery records and the rollup are mutated only while holding the
    instance lock (see :meth:`locked`).
    """

    id: UUID = Field(default_factory=uuid4)
    type: str = "announcement"
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    content: dict[Channel, dict[str, str]] = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    sender_id: str
    sender_role: SenderRole
    recipients: RecipientSpec = Field(default_factory=RecipientSpec)
    delivery_config: DeliverySettings = Field(default_factory=DeliverySettings)
    deliveries: list[DeliveryRecord] = Field(default_factory=list)
    delivery_status: DeliveryStatus = Field(default_factory=DeliveryStatus)
    approval: ApprovalStatus = Field(default_factory=ApprovalStatus)
    status: NotificationStatus = NotificationStatus.DRAFT
    analytics: Analytics = Field(default_factory=Analytics)
    related_entity: RelatedEntity | None = None
    template_name: str | None = None
    created_at: datetime.datetime = Field(default_factory=utcnow)
    scheduled_at: datetime.datetime | None = None
    sent_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None
    resolved_at: datetime.datetime | None = None
    # Last time a send stored progress; used to find sends whose worker died.
    progress_at: datetime.datetime | None = None
    version: int = 1

    _lock: threading.RLock = PrivateAttr(default_factory=threading.RLock)

    @contextmanager
    def locked(self) -> Iterator["Notification"]:
        """Hold the single-writer lock for this aggregate."""
        with self._lock:
            yield self

    def record_for(self, recipient_id: str) -> DeliveryRecord | None:
        for record in self.deliveries:
            if record.recipient_id == recipient_id:
                return record
        return None

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def dedup_key(self, recipient_id: str, channel: Channel) -> str:
        return f"{self.id}:{recipient_id}:{channel}"
