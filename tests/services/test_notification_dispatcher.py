from unittest.mock import MagicMock

from kafka.errors import KafkaTimeoutError

from survey_incentives.core.config import settings
from survey_incentives.services.notification_dispatcher import FAILED, QUEUED, KafkaNotificationDispatcher

CONTACT = {"phone": "+12025550100", "email": "p@example.com", "name": "Pat"}
PAYLOAD = {"type": "gift_card", "assignment_id": "gca_1", "card_code": "ABCD-123456-WXYZ"}


def test_dispatch_publishes_and_reports_queued():
    producer = MagicMock()
    producer.send.return_value.get.return_value = MagicMock(topic="t", partition=0, offset=7)
    dispatcher = KafkaNotificationDispatcher(topic="t", producer_factory=lambda: producer)

    result = dispatcher.dispatch(CONTACT, PAYLOAD, "EMAIL")

    assert result.status == QUEUED
    assert result.message_sid.startswith("msg_")
    topic = producer.send.call_args.args[0]
    event = producer.send.call_args.kwargs["value"]
    assert topic == "t"
    assert event["message_sid"] == result.message_sid
    assert event["delivery_method"] == "EMAIL"
    assert event["payload"] == PAYLOAD


def test_dispatch_without_producer_fails_softly():
    dispatcher = KafkaNotificationDispatcher(producer_factory=lambda: None)

    result = dispatcher.dispatch(CONTACT, PAYLOAD, "SMS")

    assert result.status == FAILED
    assert result.error == "producer_unavailable"


def test_dispatch_broker_error_fails_softly():
    producer = MagicMock()
    producer.send.return_value.get.side_effect = KafkaTimeoutError("no ack")
    dispatcher = KafkaNotificationDispatcher(producer_factory=lambda: producer)

    result = dispatcher.dispatch(CONTACT, PAYLOAD, "SMS")

    assert result.status == FAILED
    assert "no ack" in result.error


def test_dispatch_disabled(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", False)
    producer = MagicMock()
    dispatcher = KafkaNotificationDispatcher(producer_factory=lambda: producer)

    result = dispatcher.dispatch(CONTACT, PAYLOAD, "EMAIL")

    assert result.status == FAILED
    producer.send.assert_not_called()
