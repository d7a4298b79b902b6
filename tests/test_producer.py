"""Tests for the Kafka status event producer."""

import json
from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest

from notification_engine.config import KafkaConfig
from notification_engine.enums import NotificationStatus
from notification_engine.producer import KafkaStatusProducer

from tests.helpers import sending_notification


@pytest.fixture()
def mock_kafka() -> Generator[MagicMock, None, None]:
    with patch("notification_engine.producer.Producer") as producer_cls:
        yield producer_cls.return_value


class TestKafkaStatusProducer:
    def test_producer_configuration(self) -> None:
        with patch("notification_engine.producer.Producer") as producer_cls:
            KafkaStatusProducer(KafkaConfig(bootstrap_servers="broker:9092"))
        conf = producer_cls.call_args.args[0]
        assert conf["bootstrap.servers"] == "broker:9092"
        assert conf["enable.idempotence"] is True

    def test_publish_status(self, mock_kafka: MagicMock) -> None:
        notification = sending_notification(["p1", "p2"], status=NotificationStatus.SENT)
        notification.delivery_status.total_recipients = 2
        notification.delivery_status.delivered = 2

        KafkaStatusProducer(KafkaConfig()).publish_status(notification, "sending")

        kwargs = mock_kafka.produce.call_args.kwargs
        assert kwargs["topic"] == "notification.status"
        assert kwargs["key"] == str(notification.id).encode()
        event = json.loads(kwargs["value"])
        assert event["status"] == "sent"
        assert event["previous_status"] == "sending"
        assert event["approval_status"] == "not-required"
        assert event["delivered"] == 2
        mock_kafka.poll.assert_called_once_with(0)

    def test_close_flushes(self, mock_kafka: MagicMock) -> None:
        mock_kafka.flush.return_value = 0
        KafkaStatusProducer(KafkaConfig()).close()
        mock_kafka.flush.assert_called_once()

    def test_close_warns_on_unflushed(
        self, mock_kafka: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_kafka.flush.return_value = 3
        KafkaStatusProducer(KafkaConfig()).close()
        assert "unflushed" in caplog.text
