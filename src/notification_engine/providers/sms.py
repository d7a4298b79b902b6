"""SMS delivery provider (dev stub)."""

import logging
from collections.abc import Mapping

from notification_engine.providers.base import DeliveryOutcome, DeliveryProvider

logger = logging.getLogger(__name__)


class SMSProvider(DeliveryProvider):
    """Stub SMS gateway that logs instead of sending."""

    def send(
        self,
        recipient_id: str,
        content: Mapping[str, str],
        channel_config: Mapping[str, str],
    ) -> DeliveryOutcome:
        body = content.get("message", "")
        if not body:
            return DeliveryOutcome.bounced("Empty SMS body")
        preview = body[:50]
        logger.info(
            "SMS sent (stub)",
            extra={
                "recipient_id": recipient_id,
                "sender_id": channel_config.get("sender_id"),
                "body_preview": preview,
            },
        )
        return DeliveryOutcome.delivered(f"SMS delivered: {preview}")
