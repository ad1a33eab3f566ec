"""
Booking Lifecycle Controller - единственный, кто меняет бронь

- Создание брони и обновление полей (клиент, детали услуги, цена)
- Оплата и возвраты через PaymentProcessor
- Запись, перенос и отмена записи с проверкой конфликтов
- Контроль переходов статусов: недопустимый переход отклоняется до любых изменений
- Автосохранение в хранилище по интервалу, если есть несохранённые изменения
- Все ошибки возвращаются как результат (success + error), исключения наружу не выходят
"""
import logging
import threading
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from booking_service import config, storage
from booking_service.clock import Clock, ensure_aware, system_clock
from booking_service.locks import booking_lock, try_booking_lock
from booking_service.pricing import calculate_total, quote_pricing, with_recalculated_total
from booking_service.scheduling import ConflictChecker
from booking_service.state_machine import BookingStateTransitionError, validate_transition
from booking_service.validation import is_valid_email, validate
from notification_service.notifier import Notifier, NullNotifier
from payment_service.processor import PaymentError, PaymentProcessor, apply_refund
from schemas.appointment import (
    AppointmentInfo,
    AppointmentProposal,
    AppointmentResult,
    AppointmentStatus,
    Initiator,
    RescheduleEntry,
    TimeSlot,
)
from schemas.booking import (
    DETAILS_BY_SERVICE,
    Booking,
    BookingResult,
    BookingStatus,
    BookingValidation,
    PricingInfo,
    ServiceType,
)
from schemas.common import CustomerInfo, ErrorKind, OperationResult
from schemas.payment import (
    PaymentMethod,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
    RefundResult,
)

logger = logging.getLogger(__name__)

_PAYMENT_ERROR_KINDS = {
    "invalid_amount": ErrorKind.VALIDATION,
    "over_refund": ErrorKind.VALIDATION,
    "payment_not_refundable": ErrorKind.ILLEGAL_TRANSITION,
}


class _Rejected(Exception):
    """Внутренний сигнал: операция отклонена до изменений"""

    def __init__(self, kind: ErrorKind, message: str, **extra):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.extra = extra


class BookingController:
    def __init__(
        self,
        store: storage.Store,
        processor: PaymentProcessor,
        conflict_checker: ConflictChecker,
        notifier: Optional[Notifier] = None,
        clock: Clock = system_clock,
        autosave_interval: float = config.AUTOSAVE_INTERVAL,
        enable_notifications: bool = config.ENABLE_NOTIFICATIONS,
        gateway_timeout: float = config.GATEWAY_TIMEOUT,
        default_currency: str = config.DEFAULT_CURRENCY,
        load_history_on_start: bool = True,
    ):
        self.store = store
        self.processor = processor
        self.conflict_checker = conflict_checker
        self.notifier = notifier or NullNotifier()
        self.clock = clock
        self.autosave_interval = autosave_interval
        self.enable_notifications = enable_notifications
        self.gateway_timeout = gateway_timeout
        self.default_currency = default_currency

        self.current_booking: Optional[Booking] = None
        self.booking_history: List[Booking] = []
        self.is_processing = False
        self.last_error: Optional[str] = None

        self._dirty = False
        self._autosave_stop = threading.Event()
        self._autosave_thread: Optional[threading.Thread] = None

        if load_history_on_start:
            self.load_history()

    # ---------- Внутренние помощники ----------

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def _fail(self, result_cls, kind: ErrorKind, message: str, **extra):
        self.last_error = message
        logger.info("Операция отклонена (%s): %s", kind.value, message)
        return result_cls(success=False, error=message, error_kind=kind, **extra)

    def _run(self, booking_id: Optional[str], result_cls, operation: Callable[[Booking], Any]):
        booking = self.current_booking
        if booking is None or (booking_id is not None and booking.id != booking_id):
            return self._fail(
                result_cls,
                ErrorKind.NOT_FOUND,
                f"Бронирование не найдено: {booking_id or '-'}",
            )

        with booking_lock(booking.id):
            try:
                result = operation(self.current_booking)
            except _Rejected as e:
                return self._fail(result_cls, e.kind, e.message, **e.extra)
            except BookingStateTransitionError as e:
                return self._fail(result_cls, ErrorKind.ILLEGAL_TRANSITION, str(e))
            except ValidationError as e:
                return self._fail(result_cls, ErrorKind.VALIDATION, _format_validation_error(e))
            except ValueError as e:
                return self._fail(result_cls, ErrorKind.VALIDATION, str(e))
            except PaymentError as e:
                kind = _PAYMENT_ERROR_KINDS.get(e.code, ErrorKind.GATEWAY)
                return self._fail(result_cls, kind, e.reason)
            except storage.StoreError as e:
                return self._fail(result_cls, ErrorKind.PERSISTENCE, str(e))
        self.last_error = None
        return result

    def _commit(self, booking: Booking, **changes) -> Booking:
        now = max(self.clock.now(), booking.updated_at)
        updated = booking.model_copy(update={**changes, "updated_at": now})
        self.current_booking = updated
        self._dirty = True
        return updated

    @staticmethod
    def _ensure_mutable(booking: Booking) -> None:
        if booking.is_terminal:
            raise _Rejected(
                ErrorKind.ILLEGAL_TRANSITION,
                f"Бронь в терминальном статусе {booking.status.value} не может быть изменена",
            )

    @staticmethod
    def _build_customer(data) -> CustomerInfo:
        customer = CustomerInfo.model_validate(data)
        if customer.email and not is_valid_email(customer.email):
            raise _Rejected(ErrorKind.VALIDATION, f"Invalid email format: {customer.email}")
        return customer

    # ---------- Создание и обновление ----------

    def create_booking(
        self,
        service_type,
        customer_info=None,
        service_details=None,
        pricing=None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> BookingResult:
        """Создание брони в статусе draft; предыдущая несохранённая бронь сначала сохраняется"""
        try:
            stype = ServiceType(service_type)
            customer = self._build_customer(customer_info or {})
            details_data = dict(service_details or {})
            details_data["service_type"] = stype.value
            details = DETAILS_BY_SERVICE[stype].model_validate(details_data)
            pricing_data = dict(pricing or {})
            pricing_data.setdefault("currency", self.default_currency)
            pricing_info = with_recalculated_total(PricingInfo.model_validate(pricing_data))
        except _Rejected as e:
            return self._fail(BookingResult, e.kind, e.message)
        except ValidationError as e:
            return self._fail(BookingResult, ErrorKind.VALIDATION, _format_validation_error(e))
        except ValueError:
            return self._fail(
                BookingResult, ErrorKind.VALIDATION, f"Неизвестный тип услуги: {service_type}"
            )

        if self.current_booking is not None and self._dirty:
            self.save_booking()

        now = self.clock.now()
        booking = Booking(
            id=self.clock.new_id("booking"),
            service_type=stype,
            customer_info=customer,
            service_details=details,
            pricing=pricing_info,
            status=BookingStatus.DRAFT,
            created_at=now,
            updated_at=now,
            notes=notes,
            metadata=dict(metadata or {}),
        )
        self.current_booking = booking
        self._dirty = True
        self.last_error = None
        logger.info("✅ Бронь создана: %s (%s)", booking.id, stype.value)
        return BookingResult(success=True, booking=booking)

    def update_booking(
        self,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        booking_id: Optional[str] = None,
    ) -> BookingResult:
        def operation(booking: Booking) -> BookingResult:
            self._ensure_mutable(booking)
            changes: Dict[str, Any] = {}
            if notes is not None:
                changes["notes"] = notes
            if metadata:
                changes["metadata"] = {**booking.metadata, **metadata}
            return BookingResult(success=True, booking=self._commit(booking, **changes))

        return self._run(booking_id, BookingResult, operation)

    def update_customer_info(self, booking_id: Optional[str] = None, **fields) -> BookingResult:
        def operation(booking: Booking) -> BookingResult:
            self._ensure_mutable(booking)
            merged = {**booking.customer_info.model_dump(), **fields}
            customer = self._build_customer(merged)
            return BookingResult(success=True, booking=self._commit(booking, customer_info=customer))

        return self._run(booking_id, BookingResult, operation)

    def update_service_details(self, booking_id: Optional[str] = None, **fields) -> BookingResult:
        def operation(booking: Booking) -> BookingResult:
            self._ensure_mutable(booking)
            requested_type = fields.pop("service_type", booking.service_type.value)
            if requested_type != booking.service_type.value:
                raise _Rejected(
                    ErrorKind.VALIDATION,
                    f"Нельзя сменить тип услуги {booking.service_type.value} -> {requested_type}",
                )
            merged = {**booking.service_details.model_dump(), **fields}
            details = DETAILS_BY_SERVICE[booking.service_type].model_validate(merged)
            return BookingResult(success=True, booking=self._commit(booking, service_details=details))

        return self._run(booking_id, BookingResult, operation)

    def update_pricing(self, booking_id: Optional[str] = None, **fields) -> BookingResult:
        def operation(booking: Booking) -> BookingResult:
            self._ensure_mutable(booking)
            fields.pop("total_price", None)
            merged = {**booking.pricing.model_dump(), **fields}
            pricing = with_recalculated_total(PricingInfo.model_validate(merged))
            return BookingResult(success=True, booking=self._commit(booking, pricing=pricing))

        return self._run(booking_id, BookingResult, operation)

    def apply_quoted_pricing(self, booking_id: Optional[str] = None) -> BookingResult:
        """Цена по тарифам услуги вместо ручной"""

        def operation(booking: Booking) -> BookingResult:
            self._ensure_mutable(booking)
            pricing = quote_pricing(booking.service_details, booking.pricing.currency)
            return BookingResult(success=True, booking=self._commit(booking, pricing=pricing))

        return self._run(booking_id, BookingResult, operation)

    # ---------- Оплата ----------

    def request_payment(self, booking_id: str) -> BookingResult:
        """draft -> pending_payment, только для полностью заполненной брони"""

        def operation(booking: Booking) -> BookingResult:
            validate_transition(booking.status, BookingStatus.PENDING_PAYMENT)
            validation = validate(booking)
            if not validation.is_valid:
                raise _Rejected(
                    ErrorKind.VALIDATION,
                    "Бронь заполнена не полностью: " + ", ".join(validation.errors),
                    validation=validation,
                )
            updated = self._commit(booking, status=BookingStatus.PENDING_PAYMENT)
            return BookingResult(success=True, booking=updated, validation=validation)

        return self._run(booking_id, BookingResult, operation)

    def process_payment(
        self, request: PaymentRequest, timeout: Optional[float] = None
    ) -> PaymentResult:
        def operation(booking: Booking) -> PaymentResult:
            validate_transition(booking.status, BookingStatus.CONFIRMED)
            if request.currency != booking.pricing.currency:
                raise _Rejected(
                    ErrorKind.VALIDATION,
                    f"Валюта платежа {request.currency} не совпадает с валютой брони "
                    f"{booking.pricing.currency}",
                )
            previous, was_dirty = booking, self._dirty
            if booking.status != BookingStatus.PAYMENT_PROCESSING:
                validate_transition(booking.status, BookingStatus.PAYMENT_PROCESSING)
                booking = self._commit(booking, status=BookingStatus.PAYMENT_PROCESSING)
            self.is_processing = True
            try:
                payment = self.processor.charge(request, timeout=timeout or self.gateway_timeout)
            except Exception:
                # неудачный платёж не оставляет следов на брони
                self.current_booking = previous
                self._dirty = was_dirty
                raise
            finally:
                self.is_processing = False

            updated = self._commit(booking, payment=payment, status=BookingStatus.CONFIRMED)
            logger.info("✅ Оплата брони %s прошла, статус confirmed", booking.id)
            self._notify(updated)
            return PaymentResult(
                success=True,
                transaction_id=payment.gateway_transaction_id,
                payment_info=payment,
            )

        return self._run(request.booking_id, PaymentResult, operation)

    def refund_payment(
        self,
        booking_id: str,
        amount,
        reason: str,
        timeout: Optional[float] = None,
    ) -> RefundResult:
        try:
            refund_amount = Decimal(str(amount))
        except InvalidOperation:
            return self._fail(RefundResult, ErrorKind.VALIDATION, f"Неверная сумма возврата: {amount}")
        if not refund_amount.is_finite():
            return self._fail(RefundResult, ErrorKind.VALIDATION, f"Неверная сумма возврата: {amount}")

        def operation(booking: Booking) -> RefundResult:
            if booking.payment is None:
                raise _Rejected(ErrorKind.NOT_FOUND, "Платёж не найден", amount=refund_amount)
            self.is_processing = True
            try:
                refund = self.processor.refund(
                    booking.payment,
                    refund_amount,
                    reason,
                    timeout=timeout or self.gateway_timeout,
                )
            finally:
                self.is_processing = False

            payment = apply_refund(booking.payment, refund)
            changes: Dict[str, Any] = {"payment": payment}
            # терминальную бронь деньги не выводят из её статуса
            if payment.status == PaymentStatus.REFUNDED and not booking.is_terminal:
                validate_transition(booking.status, BookingStatus.REFUNDED)
                changes["status"] = BookingStatus.REFUNDED
                changes["appointment"] = self._release_appointment(booking)
            self._commit(booking, **changes)
            return RefundResult(success=True, refund_id=refund.id, amount=refund.amount)

        result = self._run(booking_id, RefundResult, operation)
        if not result.success:
            result.amount = refund_amount
        return result

    def update_payment_method(self, booking_id: str, method) -> BookingResult:
        def operation(booking: Booking) -> BookingResult:
            self._ensure_mutable(booking)
            if booking.payment is None:
                raise _Rejected(ErrorKind.NOT_FOUND, "Платёж не найден")
            try:
                new_method = PaymentMethod(method)
            except ValueError:
                raise _Rejected(ErrorKind.VALIDATION, f"Неверный способ оплаты: {method}")
            payment = booking.payment.model_copy(update={"method": new_method})
            return BookingResult(success=True, booking=self._commit(booking, payment=payment))

        return self._run(booking_id, BookingResult, operation)

    # ---------- Записи ----------

    def schedule_appointment(self, booking_id: str, proposal: AppointmentProposal) -> AppointmentResult:
        def operation(booking: Booking) -> AppointmentResult:
            validate_transition(booking.status, BookingStatus.SCHEDULED)
            if booking.appointment is not None and booking.appointment.is_active:
                raise _Rejected(ErrorKind.ILLEGAL_TRANSITION, "У брони уже есть активная запись")
            duration = proposal.duration
            if duration is None:
                duration = self.conflict_checker.policy.default_duration(booking.service_type)
            self._check_schedule_policy(proposal.scheduled_date)

            repository = self.conflict_checker.repository
            with repository.transaction():
                conflicts = self.conflict_checker.find_conflicts(
                    proposal.scheduled_date, duration, exclude_booking_id=booking.id
                )
                if conflicts:
                    raise _Rejected(
                        ErrorKind.CONFLICT,
                        "Время пересекается с существующей записью",
                        conflicting_appointments=conflicts,
                        alternatives=self._alternatives(booking, proposal.scheduled_date, duration),
                    )
                appointment = AppointmentInfo(
                    id=self.clock.new_id("apt"),
                    scheduled_date=proposal.scheduled_date,
                    duration=duration,
                    location=proposal.location,
                    location_type=proposal.location_type,
                    status=AppointmentStatus.SCHEDULED,
                    meeting_link=proposal.meeting_link,
                    calendar_invite_id=self.clock.new_id("cal"),
                )
                repository.save(booking.id, appointment)

            self._commit(booking, appointment=appointment, status=BookingStatus.SCHEDULED)
            logger.info("📅 Запись %s для брони %s", appointment.scheduled_date.isoformat(), booking.id)
            return AppointmentResult(success=True, appointment=appointment)

        return self._run(booking_id, AppointmentResult, operation)

    def reschedule_appointment(
        self,
        booking_id: str,
        new_start: datetime,
        reason: str,
        initiated_by: Initiator = Initiator.CUSTOMER,
    ) -> AppointmentResult:
        new_start = ensure_aware(new_start)

        def operation(booking: Booking) -> AppointmentResult:
            self._ensure_mutable(booking)
            current = booking.appointment
            if current is None or not current.is_active:
                raise _Rejected(ErrorKind.NOT_FOUND, "У брони нет активной записи")
            if booking.status != BookingStatus.SCHEDULED:
                raise _Rejected(
                    ErrorKind.ILLEGAL_TRANSITION,
                    f"Перенос невозможен в статусе {booking.status.value}",
                )
            limit = self.conflict_checker.policy.max_reschedules
            if len(current.reschedule_history) >= limit:
                raise _Rejected(
                    ErrorKind.ILLEGAL_TRANSITION,
                    f"Достигнут лимит переносов: {limit}",
                )
            self._check_schedule_policy(new_start)

            repository = self.conflict_checker.repository
            with repository.transaction():
                conflicts = self.conflict_checker.find_conflicts(
                    new_start, current.duration, exclude_booking_id=booking.id
                )
                if conflicts:
                    raise _Rejected(
                        ErrorKind.CONFLICT,
                        "Новое время пересекается с существующей записью",
                        conflicting_appointments=conflicts,
                        alternatives=self._alternatives(booking, new_start, current.duration),
                    )
                entry = RescheduleEntry(
                    original_date=current.scheduled_date,
                    new_date=new_start,
                    reason=reason,
                    initiated_by=Initiator(initiated_by),
                    timestamp=self.clock.now(),
                )
                appointment = current.model_copy(
                    update={
                        "scheduled_date": new_start,
                        "status": AppointmentStatus.RESCHEDULED,
                        "reschedule_history": current.reschedule_history + [entry],
                    }
                )
                repository.save(booking.id, appointment)

            self._commit(booking, appointment=appointment)
            return AppointmentResult(success=True, appointment=appointment)

        return self._run(booking_id, AppointmentResult, operation)

    def cancel_appointment(self, booking_id: str, reason: str) -> AppointmentResult:
        def operation(booking: Booking) -> AppointmentResult:
            if booking.appointment is None:
                raise _Rejected(ErrorKind.NOT_FOUND, "У брони нет записи")
            validate_transition(booking.status, BookingStatus.CANCELLED)
            appointment = self._release_appointment(booking)
            self._commit(
                booking,
                appointment=appointment,
                status=BookingStatus.CANCELLED,
                metadata=_with_cancellation_reason(booking.metadata, reason),
            )
            return AppointmentResult(success=True, appointment=appointment)

        return self._run(booking_id, AppointmentResult, operation)

    def _release_appointment(self, booking: Booking) -> Optional[AppointmentInfo]:
        appointment = booking.appointment
        if appointment is None or not appointment.is_active:
            return appointment
        cancelled = appointment.model_copy(update={"status": AppointmentStatus.CANCELLED})
        self.conflict_checker.repository.save(booking.id, cancelled)
        return cancelled

    def record_reminder(self, booking_id: str, channel: str) -> AppointmentResult:
        def operation(booking: Booking) -> AppointmentResult:
            self._ensure_mutable(booking)
            appointment = booking.appointment
            if appointment is None or not appointment.is_active:
                raise _Rejected(ErrorKind.NOT_FOUND, "У брони нет активной записи")
            sent = f"{channel}:{self.clock.now().isoformat()}"
            appointment = appointment.model_copy(
                update={"reminders_sent": appointment.reminders_sent + [sent]}
            )
            self.conflict_checker.repository.save(booking.id, appointment)
            self._commit(booking, appointment=appointment)
            return AppointmentResult(success=True, appointment=appointment)

        return self._run(booking_id, AppointmentResult, operation)

    def _check_schedule_policy(self, start: datetime) -> None:
        reason = self.conflict_checker.policy.rejection_reason(start, self.clock.now())
        if reason:
            raise _Rejected(ErrorKind.VALIDATION, reason)

    def _alternatives(self, booking: Booking, start: datetime, duration: int) -> List[TimeSlot]:
        now = self.clock.now()
        return self.conflict_checker.suggest_alternatives(
            start.date(), duration, now=now, tzinfo=now.tzinfo, exclude_booking_id=booking.id
        )

    def get_available_time_slots(self, day: date, duration: Optional[int] = None) -> List[TimeSlot]:
        """Слоты дня; без длительности берётся длительность по типу услуги текущей брони"""
        if duration is None:
            service_type = self.current_booking.service_type if self.current_booking else None
            duration = self.conflict_checker.policy.default_duration(service_type)
        now = self.clock.now()
        return self.conflict_checker.available_time_slots(day, duration, now=now, tzinfo=now.tzinfo)

    # ---------- Жизненный цикл ----------

    def _transition(
        self,
        booking_id: str,
        target: BookingStatus,
        appointment_status: Optional[AppointmentStatus] = None,
        cancellation_reason: Optional[str] = None,
    ) -> BookingResult:
        def operation(booking: Booking) -> BookingResult:
            validate_transition(booking.status, target)
            changes: Dict[str, Any] = {"status": target}
            appointment = booking.appointment
            if target == BookingStatus.CANCELLED:
                changes["appointment"] = self._release_appointment(booking)
            elif appointment_status is not None and appointment is not None and appointment.is_active:
                appointment = appointment.model_copy(update={"status": appointment_status})
                self.conflict_checker.repository.save(booking.id, appointment)
                changes["appointment"] = appointment
            if cancellation_reason is not None:
                changes["metadata"] = _with_cancellation_reason(booking.metadata, cancellation_reason)
            updated = self._commit(booking, **changes)
            logger.info("Бронь %s: %s -> %s", booking.id, booking.status.value, target.value)
            return BookingResult(success=True, booking=updated)

        return self._run(booking_id, BookingResult, operation)

    def confirm_booking(self, booking_id: str) -> BookingResult:
        result = self._transition(booking_id, BookingStatus.CONFIRMED)
        if result.success:
            self._notify(result.booking)
        return result

    def start_booking(self, booking_id: str) -> BookingResult:
        return self._transition(booking_id, BookingStatus.IN_PROGRESS, AppointmentStatus.CONFIRMED)

    def complete_booking(self, booking_id: str) -> BookingResult:
        return self._transition(booking_id, BookingStatus.COMPLETED, AppointmentStatus.COMPLETED)

    def cancel_booking(self, booking_id: str, reason: str) -> BookingResult:
        return self._transition(booking_id, BookingStatus.CANCELLED, cancellation_reason=reason)

    def mark_no_show(self, booking_id: str) -> BookingResult:
        return self._transition(booking_id, BookingStatus.NO_SHOW)

    # ---------- Утилиты ----------

    def validate_booking(self, booking: Optional[Booking] = None) -> BookingValidation:
        target = booking or self.current_booking
        if target is None:
            return BookingValidation(
                is_valid=False,
                errors={"general": "No booking data to validate"},
                completeness=0,
            )
        return validate(target)

    def calculate_total(self, booking: Optional[Booking] = None) -> Decimal:
        target = booking or self.current_booking
        if target is None:
            return Decimal("0")
        return calculate_total(target.pricing)

    def _notify(self, booking: Booking) -> None:
        if not self.enable_notifications:
            return
        try:
            self.notifier.send_booking_confirmation(booking)
        except Exception:
            logger.exception("Не удалось отправить подтверждение брони %s", booking.id)

    def send_booking_confirmation(self, booking_id: str) -> OperationResult:
        booking = self.current_booking
        if booking is None or booking.id != booking_id:
            return self._fail(OperationResult, ErrorKind.NOT_FOUND, f"Бронирование не найдено: {booking_id}")
        self._notify(booking)
        return OperationResult(success=True)

    # ---------- Хранилище ----------

    def save_booking(self) -> OperationResult:
        booking = self.current_booking
        if booking is None:
            return OperationResult(success=True)
        with booking_lock(booking.id):
            return self._save_locked()

    def _save_locked(self) -> OperationResult:
        booking = self.current_booking
        try:
            storage.save_booking(self.store, booking)
        except storage.StoreError as e:
            logger.warning("⚠️ Не удалось сохранить бронь %s: %s", booking.id, e)
            return self._fail(OperationResult, ErrorKind.PERSISTENCE, str(e))
        if self.current_booking is booking:
            self._dirty = False
        self._remember(booking)
        return OperationResult(success=True)

    def save_if_dirty(self) -> bool:
        """Сохранить, если есть изменения. Занятая бронь пропускается до следующего тика."""
        booking = self.current_booking
        if booking is None or not self._dirty:
            return False
        lock = try_booking_lock(booking.id)
        if lock is None:
            return False
        try:
            if not self._dirty:
                return False
            return self._save_locked().success
        finally:
            lock.release()

    def _remember(self, booking: Booking) -> None:
        history = [b for b in self.booking_history if b.id != booking.id]
        history.append(booking)
        history.sort(key=lambda b: b.updated_at, reverse=True)
        self.booking_history = history

    def load_booking(self, booking_id: str) -> BookingResult:
        try:
            booking = storage.load_booking(self.store, booking_id)
        except storage.StoreError as e:
            return self._fail(BookingResult, ErrorKind.PERSISTENCE, str(e))
        except ValidationError as e:
            return self._fail(
                BookingResult,
                ErrorKind.PERSISTENCE,
                f"Сохранённая бронь {booking_id} повреждена: {_format_validation_error(e)}",
            )
        if booking is None:
            return self._fail(BookingResult, ErrorKind.NOT_FOUND, f"Бронирование не найдено: {booking_id}")
        if self.current_booking is not None and self._dirty and self.current_booking.id != booking.id:
            self.save_booking()
        self.current_booking = booking
        self._dirty = False
        self.last_error = None
        return BookingResult(success=True, booking=booking)

    def load_history(self) -> List[Booking]:
        try:
            self.booking_history = storage.load_history(self.store)
        except storage.StoreError as e:
            logger.warning("⚠️ Не удалось загрузить историю броней: %s", e)
        return self.booking_history

    def clear_current_booking(self) -> None:
        self.current_booking = None
        self._dirty = False
        self.last_error = None

    # ---------- Автосохранение ----------

    def _autosave_loop(self) -> None:
        while not self._autosave_stop.wait(self.autosave_interval):
            try:
                self.save_if_dirty()
            except Exception:
                logger.exception("Ошибка автосохранения, повтор на следующем интервале")

    def start_autosave(self) -> None:
        if self._autosave_thread is not None and self._autosave_thread.is_alive():
            return
        self._autosave_stop.clear()
        self._autosave_thread = threading.Thread(
            target=self._autosave_loop, name="booking-autosave", daemon=True
        )
        self._autosave_thread.start()

    def stop_autosave(self, flush: bool = True) -> None:
        self._autosave_stop.set()
        if self._autosave_thread is not None:
            self._autosave_thread.join(timeout=self.autosave_interval + 1)
            self._autosave_thread = None
        if flush:
            self.save_if_dirty()


def _with_cancellation_reason(metadata: Dict[str, Any], reason: Optional[str]) -> Dict[str, Any]:
    if not reason:
        return dict(metadata)
    return {**metadata, "cancellation_reason": reason}


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return "; ".join(parts)
