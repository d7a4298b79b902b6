"""Push notification delivery provider (dev stub)."""

import logging
from collections.abc import Mapping

from notification_engine.providers.base import DeliveryOutcome, DeliveryProvider

logger = logging.getLogger(__name__)


class PushProvider(DeliveryProvider):
    """Stub push gateway that logs instead of sending (FCM/APNs later)."""

    def send(
        self,
        recipient_id: str,
        content: Mapping[str, str],
        channel_config: Mapping[str, str],
    ) -> DeliveryOutcome:
        body = content.get("body") or content.get("message", "")
        preview = body[:50] if body else "(empty)"
        logger.info(
            "Push sent (stub)",
            extra={
                "recipient_id": recipient_id,
                "title": content.get("title"),
                "body_preview": preview,
            },
        )
        return DeliveryOutcome.delivered(f"Push delivered: {preview}")
