import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from booking_service.clock import Clock
from booking_service.controller import BookingController
from booking_service.scheduling import ConflictChecker, InMemoryAppointmentRepository
from booking_service.storage import MemoryStore
from notification_service.notifier import Notifier
from payment_service.gateways import MockGateway
from payment_service.processor import PaymentProcessor
from schemas.payment import PaymentMethod, PaymentMethodDetails, PaymentRequest

T0 = datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc)


class StepClock(Clock):
    """Каждый вызов now() сдвигает время на секунду; id последовательные"""

    def __init__(self, start: datetime = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc), first_id: int = 1):
        super().__init__()
        self.current = start
        self._ids = itertools.count(first_id)

    def _utcnow(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current

    def new_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids):04d}"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def send_booking_confirmation(self, booking):
        self.sent.append(booking.id)


class ExplodingNotifier(Notifier):
    def send_booking_confirmation(self, booking):
        raise RuntimeError("notification service down")


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repository():
    return InMemoryAppointmentRepository()


@pytest.fixture
def gateway():
    return MockGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_controller(store, repository, gateway, notifier, clock):
    def factory(**overrides):
        kwargs = dict(
            store=store,
            processor=PaymentProcessor(gateway, clock=clock),
            conflict_checker=ConflictChecker(repository),
            notifier=notifier,
            clock=clock,
            autosave_interval=0.05,
            enable_notifications=True,
        )
        kwargs.update(overrides)
        return BookingController(**kwargs)

    return factory


@pytest.fixture
def controller(make_controller):
    return make_controller()


CUSTOMER = {
    "first_name": "Anna",
    "last_name": "Petrova",
    "email": "anna@example.com",
    "phone": "+15550100",
}


def create_teaching_booking(controller, base_price="200"):
    result = controller.create_booking(
        "teaching",
        customer_info=CUSTOMER,
        service_details={"lesson_type": "individual", "skill_level": "beginner"},
        pricing={"base_price": base_price},
    )
    assert result.success, result.error
    return result.booking


def payment_request(booking, amount="200", card_token="tok_visa"):
    return PaymentRequest(
        booking_id=booking.id,
        amount=Decimal(amount),
        currency=booking.pricing.currency,
        payment_method=PaymentMethodDetails(type=PaymentMethod.CARD, card_token=card_token),
        customer_info=booking.customer_info,
        description="Guitar lesson",
    )
