"""Abstract channel sender interface."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from notification_engine.enums import AttemptStatus


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Outcome of a single send call."""

    status: AttemptStatus
    details: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def delivered(cls, details: str | None = None, **metadata: Any) -> "DeliveryOutcome":
        return cls(AttemptStatus.DELIVERED, details, metadata)

    @classmethod
    def failed(cls, details: str) -> "DeliveryOutcome":
        return cls(AttemptStatus.FAILED, details)

    @classmethod
    def bounced(cls, details: str) -> "DeliveryOutcome":
        return cls(AttemptStatus.BOUNCED, details)


class DeliveryProvider(ABC):
    """Base class for all channel senders.

    ``channel_config`` carries the channel's settings from the notification
    plus an ``idempotency_key`` that is stable per (notification,
    recipient, channel) so gateways can drop duplicate sends.
    """

    @abstractmethod
    def send(
        self,
        recipient_id: str,
        content: Mapping[str, str],
        channel_config: Mapping[str, str],
    ) -> DeliveryOutcome:
        """Attempt to deliver rendered content to one recipient.

        Implementations should return FAILED or BOUNCED rather than raise;
        the dispatcher still records any exception as a failed attempt.
        """
