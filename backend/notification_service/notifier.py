"""
Notifier - уведомления о подтверждении брони

- Публикует событие booking.confirmed в Message Broker
- Fire-and-forget: ошибки только логируются и никогда не блокируют переход статуса
"""
import json
import logging
import os
from datetime import datetime
from decimal import Decimal

import requests

from schemas.booking import Booking, BookingConfirmedEvent

logger = logging.getLogger(__name__)

MESSAGE_BROKER_URL = os.getenv("MESSAGE_BROKER_URL", "http://localhost:5050/broker")


def serialize_for_json(obj):
    """Хелпер для сериализации datetime и Decimal в JSON"""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"Type {type(obj)} not serializable")


def build_confirmation_event(booking: Booking, timestamp: datetime) -> BookingConfirmedEvent:
    return BookingConfirmedEvent(
        booking_id=booking.id,
        service_type=booking.service_type,
        customer_email=booking.customer_info.email,
        customer_name=booking.customer_info.full_name,
        scheduled_date=booking.appointment.scheduled_date if booking.appointment else None,
        timestamp=timestamp,
    )


class Notifier:
    def send_booking_confirmation(self, booking: Booking) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def send_booking_confirmation(self, booking: Booking) -> None:
        logger.debug("Уведомления отключены, бронь %s", booking.id)


class BrokerNotifier(Notifier):
    def __init__(self, broker_url: str = MESSAGE_BROKER_URL, timeout: float = 5):
        self.broker_url = broker_url
        self.timeout = timeout

    def publish_event(self, event: dict) -> bool:
        try:
            payload = json.loads(json.dumps(event, default=serialize_for_json))
            resp = requests.post(f"{self.broker_url}/publish", json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except (requests.exceptions.RequestException, TypeError, ValueError) as e:
            logger.warning("❌ Ошибка публикации события %s: %s", event.get("event_type"), e)
            return False
        logger.info("✅ Event отправлен: %s", event.get("event_type"))
        return True

    def send_booking_confirmation(self, booking: Booking) -> None:
        event = build_confirmation_event(booking, datetime.now().astimezone())
        self.publish_event(
            {
                "event_type": event.event_type,
                "payload": event.model_dump(mode="json"),
            }
        )

