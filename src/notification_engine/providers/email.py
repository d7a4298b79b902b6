"""Email delivery provider (dev stub)."""

import logging
from collections.abc import Mapping

from notification_engine.providers.base import DeliveryOutcome, DeliveryProvider

logger = logging.getLogger(__name__)


class EmailProvider(DeliveryProvider):
    """Stub email gateway that logs instead of sending.

    Replace the send() body with SMTP/SES calls; ``reply_to`` comes from
    the notification's email channel settings.
    """

    def send(
        self,
        recipient_id: str,
        content: Mapping[str, str],
        channel_config: Mapping[str, str],
    ) -> DeliveryOutcome:
        subject = content.get("subject", "(no subject)")
        logger.info(
            "Email sent (stub)",
            extra={
                "recipient_id": recipient_id,
                "subject": subject,
                "reply_to": channel_config.get("reply_to"),
                "idempotency_key": channel_config.get("idempotency_key"),
            },
        )
        return DeliveryOutcome.delivered(f"Email delivered: {subject}")
