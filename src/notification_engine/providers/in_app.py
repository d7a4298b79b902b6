"""In-app real-time delivery provider."""

import logging
from collections.abc import Callable, Mapping

from notification_engine.providers.base import DeliveryOutcome, DeliveryProvider

logger = logging.getLogger(__name__)

Emitter = Callable[[str, Mapping[str, str]], None]


class InAppProvider(DeliveryProvider):
    """Pushes the notification into the recipient's in-app feed.

    *emitter* is the real-time channel hook (e.g. a socket room emit).
    Without one the record itself is the feed entry, so delivery succeeds.
    """

    def __init__(self, emitter: Emitter | None = None) -> None:
        self._emitter = emitter

    def send(
        self,
        recipient_id: str,
        content: Mapping[str, str],
        channel_config: Mapping[str, str],
    ) -> DeliveryOutcome:
        if self._emitter is not None:
            self._emitter(recipient_id, content)
        logger.info(
            "In-app notification emitted",
            extra={"recipient_id": recipient_id, "title": content.get("title")},
        )
        return DeliveryOutcome.delivered("In-app delivered")
