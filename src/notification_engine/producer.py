"""Kafka producer for notification lifecycle status events."""

import json
import logging

from confluent_kafka import Producer

from notification_engine.config import KafkaConfig
from notification_engine.domain.notification import Notification

logger = logging.getLogger(__name__)


class KafkaStatusProducer:
    """Publishes status changes to the notification.status topic.

    Events are keyed by notification id so every change to one
    notification lands on the same partition, in order.
    """

    def __init__(self, config: KafkaConfig) -> None:
        self._topic = config.status_events_topic
        self._producer = Producer({
            "bootstrap.servers": config.bootstrap_servers,
            "acks": "all",
            "enable.idempotence": True,
            "linger.ms": 5,
            "compression.type": "lz4",
        })

    def publish_status(self, notification: Notification, previous_status: str) -> None:
        """Publish the notification's current status and rollup."""
        rollup = notification.delivery_status
        value = json.dumps({
            "notification_id": str(notification.id),
            "status": str(notification.status),
            "previous_status": previous_status,
            "approval_status": str(notification.approval.status),
            "template_name": notification.template_name,
            "total_recipients": rollup.total_recipients,
            "delivered": rollup.delivered,
            "failed": rollup.failed,
            "pending": rollup.pending,
        }).encode("utf-8")

        self._producer.produce(
            topic=self._topic,
            key=str(notification.id).encode("utf-8"),
            value=value,
            on_delivery=self._on_delivery,
        )
        self._producer.poll(0)

    def flush(self, timeout: float = 10.0) -> int:
        """Flush remaining messages. Returns number of unflushed messages."""
        return self._producer.flush(timeout=timeout)

    def close(self) -> None:
        """Flush remaining messages before shutdown."""
        remaining = self.flush()
        if remaining > 0:
            logger.warning(
                "Producer closed with unflushed messages",
                extra={"remaining": remaining},
            )

    @staticmethod
    def _on_delivery(err: object, msg: object) -> None:
        if err is not None:
            logger.error("Kafka delivery failed: %s", err)
