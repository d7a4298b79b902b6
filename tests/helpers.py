"""Test doubles shared across the engine tests."""

import datetime
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence

from notification_engine.domain.notification import DeliveryRecord, Notification
from notification_engine.domain.recipients import AttributeFilter, RecipientSpec
from notification_engine.enums import (
    Channel,
    NotificationStatus,
    SenderRole,
)
from notification_engine.providers import ProviderRegistry
from notification_engine.providers.base import DeliveryOutcome, DeliveryProvider

NOW = datetime.datetime(2026, 3, 2, 9, 30, tzinfo=datetime.UTC)

Outcome = Callable[[str, Mapping[str, str]], DeliveryOutcome]


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime.datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime.datetime:
        self.now += datetime.timedelta(**kwargs)
        return self.now


class FakeDirectory:
    """In-memory user directory.

    ``classes`` maps class id to ``{section: [user ids]}``. Setting
    ``error`` makes every lookup raise it.
    """

    def __init__(
        self,
        roles: Mapping[str, Sequence[str]] | None = None,
        classes: Mapping[str, Mapping[str, Sequence[str]]] | None = None,
        attributes: Sequence[str] = (),
    ) -> None:
        self.roles = {k: list(v) for k, v in (roles or {}).items()}
        self.classes = {k: dict(v) for k, v in (classes or {}).items()}
        self.attributes = list(attributes)
        self.error: Exception | None = None
        self.class_calls: list[tuple[str, list[str]]] = []
        self.attribute_calls: list[AttributeFilter] = []

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def lookup_users_by_role(self, role: str) -> Iterable[str]:
        self._check()
        return list(self.roles.get(role, []))

    def lookup_users_by_class(self, class_id: str, sections: Sequence[str]) -> Iterable[str]:
        self._check()
        self.class_calls.append((class_id, list(sections)))
        by_section = self.classes.get(class_id, {})
        chosen = list(sections) or list(by_section)
        return [user for section in chosen for user in by_section.get(section, [])]

    def lookup_user_attributes(self, filter: AttributeFilter) -> Iterable[str]:
        self._check()
        self.attribute_calls.append(filter)
        return list(self.attributes)


class RecordingProvider(DeliveryProvider):
    """Provider that records every call and answers via *outcome*."""

    def __init__(self, outcome: Outcome | None = None) -> None:
        self.calls: list[tuple[str, dict[str, str], dict[str, str]]] = []
        self.outcome = outcome or (lambda _rid, _content: DeliveryOutcome.delivered())
        self._lock = threading.Lock()

    def send(
        self,
        recipient_id: str,
        content: Mapping[str, str],
        channel_config: Mapping[str, str],
    ) -> DeliveryOutcome:
        with self._lock:
            self.calls.append((recipient_id, dict(content), dict(channel_config)))
        return self.outcome(recipient_id, content)

    def recipients(self) -> list[str]:
        with self._lock:
            return [call[0] for call in self.calls]


def registry_with(providers: Mapping[Channel, DeliveryProvider]) -> ProviderRegistry:
    registry = ProviderRegistry()
    for channel, provider in providers.items():
        registry.register(channel, provider)
    return registry


def sending_notification(
    recipient_ids: Sequence[str],
    channels: Sequence[Channel] = (Channel.IN_APP,),
    **overrides: object,
) -> Notification:
    """A notification already in ``sending`` with frozen delivery records."""
    fields: dict = {
        "title": "Sports day",
        "message": "Sports day is on Friday",
        "sender_id": "admin-1",
        "sender_role": SenderRole.ADMIN,
        "recipients": RecipientSpec(specific_users=tuple(recipient_ids)),
        "status": NotificationStatus.SENDING,
        "resolved_at": NOW,
        "deliveries": [
            DeliveryRecord(recipient_id=rid, channels=list(channels))
            for rid in recipient_ids
        ],
    }
    fields.update(overrides)
    notification = Notification(**fields)
    notification.delivery_config.channels = list(channels)
    return notification
