"""
Параллельная работа: запись на одно время из разных потоков,
автосохранение во время долгой операции над бронью.
"""
import threading
import time
from datetime import timedelta

from booking_service import storage
from booking_service.scheduling import ConflictChecker, InMemoryAppointmentRepository
from payment_service.gateways import MockGateway
from payment_service.processor import PaymentProcessor
from schemas.appointment import AppointmentProposal
from schemas.booking import BookingStatus
from schemas.common import ErrorKind
from conftest import T0, create_teaching_booking, payment_request


class SlowRepository(InMemoryAppointmentRepository):
    """Поиск пересечений с задержкой: без транзакции оба потока успели бы проверить пустой реестр"""

    def find_overlapping(self, start, duration, exclude_booking_id=None):
        time.sleep(0.05)
        return super().find_overlapping(start, duration, exclude_booking_id)


class BlockingGateway(MockGateway):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def charge(self, amount, currency, method, customer, timeout=None):
        self.entered.set()
        self.release.wait(5)
        return super().charge(amount, currency, method, customer, timeout=timeout)


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _paid_booking(controller):
    booking = create_teaching_booking(controller)
    assert controller.process_payment(payment_request(booking)).success
    return controller.current_booking


def test_parallel_overlapping_schedules_admit_one(make_controller):
    print("\n=== Тест одновременной записи на пересекающееся время ===")
    repository = SlowRepository()
    first = make_controller(conflict_checker=ConflictChecker(repository))
    second = make_controller(conflict_checker=ConflictChecker(repository))
    jobs = [
        (first, _paid_booking(first), T0),
        (second, _paid_booking(second), T0 + timedelta(minutes=30)),
    ]
    barrier = threading.Barrier(len(jobs))
    results = [None] * len(jobs)

    def attempt(index, controller, booking, start):
        barrier.wait()
        results[index] = controller.schedule_appointment(
            booking.id, AppointmentProposal(scheduled_date=start, duration=60)
        )

    threads = [threading.Thread(target=attempt, args=(i, *job)) for i, job in enumerate(jobs)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert sorted(r.success for r in results) == [False, True]
    (loser,) = [r for r in results if not r.success]
    assert loser.error_kind == ErrorKind.CONFLICT
    assert len(ConflictChecker(repository).find_conflicts(T0 - timedelta(hours=1), 240)) == 1


def test_autosave_skips_while_payment_is_running(make_controller, clock, store):
    gateway = BlockingGateway()
    controller = make_controller(processor=PaymentProcessor(gateway, clock=clock))
    booking = create_teaching_booking(controller)
    results = []

    worker = threading.Thread(
        target=lambda: results.append(controller.process_payment(payment_request(booking)))
    )
    worker.start()
    try:
        assert gateway.entered.wait(2)
        controller.start_autosave()
        time.sleep(0.3)

        # несколько тиков прошло, но бронь занята платежом
        assert store.get(storage.booking_key(booking.id)) is None
        assert controller.is_processing
        assert controller.current_booking.status == BookingStatus.PAYMENT_PROCESSING
    finally:
        gateway.release.set()
        worker.join(5)

    try:
        assert results[0].success

        def saved_confirmed():
            stored = storage.load_booking(store, booking.id)
            return stored is not None and stored.status == BookingStatus.CONFIRMED

        assert _wait_for(saved_confirmed)
    finally:
        controller.stop_autosave()


def test_autosave_during_many_updates_saves_final_state(make_controller, store):
    controller = make_controller(autosave_interval=0.001)
    booking = create_teaching_booking(controller)
    controller.start_autosave()
    try:
        for i in range(50):
            assert controller.update_customer_info(booking.id, phone=f"+1555{i:04d}").success
    finally:
        controller.stop_autosave(flush=True)

    stored = storage.load_booking(store, booking.id)
    assert stored.model_dump() == controller.current_booking.model_dump()
    assert stored.customer_info.phone == "+15550049"
    assert not controller.is_dirty
