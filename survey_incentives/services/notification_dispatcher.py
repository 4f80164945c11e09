# survey_incentives/services/notification_dispatcher.py
"""
Outbound notifications (survey links, gift card codes).

The engine only needs a status string back; the actual SMS/email transport
consumes the Kafka topic. Dispatch failures are reported, never raised, and
never undo a claim.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from kafka.errors import KafkaError

from survey_incentives.core.config import settings
from survey_incentives.core.kafka_producer import get_kafka_singleton
from survey_incentives.utils.validators import mask_phone

logger = logging.getLogger(__name__)

QUEUED = "queued"
FAILED = "failed"


@dataclass
class DispatchResult:
    status: str
    message_sid: Optional[str] = None
    error: Optional[str] = None


class NotificationDispatcher(Protocol):
    def dispatch(
        self, contact: Dict[str, Optional[str]], payload: Dict[str, Any], delivery_method: str
    ) -> DispatchResult:
        ...


class KafkaNotificationDispatcher:
    """Publishes one message per notification to NOTIFICATION_TOPIC."""

    def __init__(self, topic: Optional[str] = None, producer_factory=get_kafka_singleton):
        self.topic = topic or settings.NOTIFICATION_TOPIC
        self._producer_factory = producer_factory

    def dispatch(
        self, contact: Dict[str, Optional[str]], payload: Dict[str, Any], delivery_method: str
    ) -> DispatchResult:
        message_sid = f"msg_{uuid.uuid4().hex}"

        if not settings.NOTIFICATIONS_ENABLED:
            logger.info(f"Notifications disabled; {payload.get('type')} {message_sid} not published")
            return DispatchResult(status=FAILED, message_sid=message_sid, error="notifications_disabled")

        producer = self._producer_factory()
        if producer is None:
            logger.warning("Kafka producer not available. Notification not sent.")
            return DispatchResult(status=FAILED, message_sid=message_sid, error="producer_unavailable")

        event = {
            "message_sid": message_sid,
            "delivery_method": delivery_method,
            "contact": contact,
            "payload": payload,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            # Wait for the broker ack so a failed publish is reported as failed
            future = producer.send(self.topic, key=message_sid.encode("utf-8"), value=event)
            record_metadata = future.get(timeout=10)
        except KafkaError as e:
            logger.error(
                f"Failed to publish {payload.get('type')} for {mask_phone(contact.get('phone'))}: {e}",
                exc_info=True,
            )
            return DispatchResult(status=FAILED, message_sid=message_sid, error=str(e))

        logger.info(
            f"Notification {message_sid} queued. "
            f"Topic: {record_metadata.topic}, Partition: {record_metadata.partition}, "
            f"Offset: {record_metadata.offset}"
        )
        return DispatchResult(status=QUEUED, message_sid=message_sid)


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; tests override it with a recording fake."""
    return KafkaNotificationDispatcher()
