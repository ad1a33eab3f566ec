"""
Booking Service - HTTP-обёртка над контроллером жизненного цикла брони

- Один BookingController на бронь, общие хранилище, платежный процессор и реестр записей
- После каждой изменяющей операции бронь сохраняется в хранилище
- Коды ответа: validation 400, not_found 404, conflict/illegal_transition 409,
  gateway 402, persistence 503
"""

import logging
import threading
from datetime import date, datetime
from typing import Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from booking_service import config, storage
from booking_service.clock import Clock, ensure_aware, system_clock
from booking_service.controller import BookingController
from booking_service.locks import booking_lock, discard_booking_lock
from booking_service.scheduling import ConflictChecker, InMemoryAppointmentRepository
from booking_service.storage import FileStore, MemoryStore, Store, StoreError
from notification_service.notifier import BrokerNotifier, NullNotifier
from payment_service.gateways import Environment, get_gateway
from payment_service.processor import PaymentProcessor
from schemas.appointment import AppointmentProposal, Initiator
from schemas.booking import ServiceType
from schemas.common import ErrorKind
from schemas.payment import PaymentRequest

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.ILLEGAL_TRANSITION: 409,
    ErrorKind.GATEWAY: 402,
    ErrorKind.PERSISTENCE: 503,
}


def _default_store() -> Store:
    if config.BOOKING_STORE_DIR:
        return FileStore(config.BOOKING_STORE_DIR)
    return MemoryStore()


def _respond(result, success_code: int = 200):
    body = result.model_dump(mode="json")
    if result.success:
        return jsonify(body), success_code
    return jsonify(body), STATUS_CODES.get(result.error_kind, 400)


def _bad_request(message: str):
    return jsonify({"success": False, "error": message, "error_kind": ErrorKind.VALIDATION.value}), 400


def _restore_appointments(store: Store, repository: InMemoryAppointmentRepository) -> int:
    """Активные записи из сохранённых броней - в реестр записей"""
    try:
        history = storage.load_history(store)
    except StoreError as e:
        logger.warning("⚠️ Не удалось восстановить записи из хранилища: %s", e)
        return 0
    restored = 0
    for booking in history:
        if booking.appointment is not None and booking.appointment.is_active:
            repository.save(booking.id, booking.appointment)
            restored += 1
    if restored:
        logger.info("📅 Восстановлено записей: %d", restored)
    return restored


def create_app(
    store: Optional[Store] = None,
    gateway=None,
    notifier=None,
    clock: Clock = system_clock,
    repository: Optional[InMemoryAppointmentRepository] = None,
    autosave: bool = config.AUTOSAVE_ENABLED,
) -> Flask:
    app = Flask(__name__)
    CORS(app)

    store = store or _default_store()
    gateway = gateway or get_gateway(config.PAYMENT_GATEWAY, Environment(config.PAYMENT_ENV))
    if notifier is None:
        notifier = BrokerNotifier(config.MESSAGE_BROKER_URL) if config.ENABLE_NOTIFICATIONS else NullNotifier()
    processor = PaymentProcessor(gateway, clock=clock)
    checker = ConflictChecker(repository or InMemoryAppointmentRepository())
    _restore_appointments(store, checker.repository)

    controllers: Dict[str, BookingController] = {}
    registry_lock = threading.Lock()

    def new_controller() -> BookingController:
        return BookingController(
            store,
            processor,
            checker,
            notifier=notifier,
            clock=clock,
            load_history_on_start=False,
        )

    def register(booking_id: str, controller: BookingController) -> BookingController:
        with registry_lock:
            existing = controllers.get(booking_id)
            if existing is not None:
                return existing
            controllers[booking_id] = controller
        if autosave:
            controller.start_autosave()
        return controller

    def controller_for(booking_id: str) -> Optional[BookingController]:
        with registry_lock:
            controller = controllers.get(booking_id)
        if controller is not None:
            return controller
        controller = new_controller()
        if not controller.load_booking(booking_id).success:
            return None
        booking = controller.current_booking
        if booking.appointment is not None:
            checker.repository.save(booking.id, booking.appointment)
        if booking.is_terminal:
            # только чтение и возвраты: контроллер живёт один запрос
            return controller
        return register(booking_id, controller)

    def not_found(booking_id: str):
        return jsonify({"success": False, "error": "Бронирование не найдено", "error_kind": "not_found",
                        "booking_id": booking_id}), 404

    def retire(booking_id: str, controller: BookingController) -> None:
        """Бронь в терминальном статусе больше не держит контроллер, поток и блокировку"""
        with booking_lock(booking_id):
            with registry_lock:
                if controllers.get(booking_id) is controller:
                    del controllers[booking_id]
            controller.stop_autosave(flush=True)
        discard_booking_lock(booking_id)
        logger.info("Контроллер брони %s выгружен", booking_id)

    def run(booking_id: str, action, success_code: int = 200):
        controller = controller_for(booking_id)
        if controller is None:
            return not_found(booking_id)
        result = action(controller)
        if result.success:
            controller.save_if_dirty()
            booking = controller.current_booking
            # пока бронь не сохранена, контроллер остаётся и автосохранение повторит попытку
            if booking is not None and booking.is_terminal and not controller.is_dirty:
                retire(booking_id, controller)
        return _respond(result, success_code)

    @app.route("/api/bookings", methods=["POST"])
    def create_booking():
        """Создание новой брони в статусе draft"""
        data = request.get_json(silent=True) or {}
        if "service_type" not in data:
            return _bad_request("Missing field: service_type")

        controller = new_controller()
        result = controller.create_booking(
            data["service_type"],
            customer_info=data.get("customer_info"),
            service_details=data.get("service_details"),
            pricing=data.get("pricing"),
            notes=data.get("notes"),
            metadata=data.get("metadata"),
        )
        if result.success:
            controller.save_booking()
            register(result.booking.id, controller)
        return _respond(result, 201)

    @app.route("/api/bookings", methods=["GET"])
    def list_bookings():
        history = new_controller().load_history()
        return jsonify(
            {
                "bookings": [b.model_dump(mode="json") for b in history],
                "total": len(history),
            }
        ), 200

    @app.route("/api/bookings/availability", methods=["GET"])
    def get_availability():
        day_str = request.args.get("date")
        if not day_str:
            return _bad_request("date обязателен")
        try:
            day = date.fromisoformat(day_str)
            raw_duration = request.args.get("duration")
            duration = int(raw_duration) if raw_duration else None
            service_type = request.args.get("service_type")
            if duration is None:
                duration = checker.policy.default_duration(ServiceType(service_type) if service_type else None)
        except ValueError as e:
            return _bad_request(f"Неверный формат параметров: {e}")
        if duration <= 0:
            return _bad_request("duration должна быть положительной")

        slots = new_controller().get_available_time_slots(day, duration)
        return jsonify({"slots": [s.model_dump(mode="json") for s in slots]}), 200

    @app.route("/api/bookings/<booking_id>", methods=["GET"])
    def get_booking(booking_id: str):
        controller = controller_for(booking_id)
        if controller is None:
            return not_found(booking_id)
        return jsonify(controller.current_booking.model_dump(mode="json")), 200

    @app.route("/api/bookings/<booking_id>/validation", methods=["GET"])
    def get_validation(booking_id: str):
        controller = controller_for(booking_id)
        if controller is None:
            return not_found(booking_id)
        return jsonify(controller.validate_booking().model_dump(mode="json")), 200

    @app.route("/api/bookings/<booking_id>/customer", methods=["PATCH"])
    def update_customer(booking_id: str):
        data = request.get_json(silent=True) or {}
        data.pop("booking_id", None)
        return run(booking_id, lambda c: c.update_customer_info(booking_id=booking_id, **data))

    @app.route("/api/bookings/<booking_id>/details", methods=["PATCH"])
    def update_details(booking_id: str):
        data = request.get_json(silent=True) or {}
        data.pop("booking_id", None)
        return run(booking_id, lambda c: c.update_service_details(booking_id=booking_id, **data))

    @app.route("/api/bookings/<booking_id>/pricing", methods=["PATCH"])
    def update_pricing(booking_id: str):
        data = request.get_json(silent=True) or {}
        data.pop("booking_id", None)
        return run(booking_id, lambda c: c.update_pricing(booking_id=booking_id, **data))

    @app.route("/api/bookings/<booking_id>/pricing/quote", methods=["POST"])
    def quote_pricing(booking_id: str):
        return run(booking_id, lambda c: c.apply_quoted_pricing(booking_id=booking_id))

    @app.route("/api/bookings/<booking_id>/submit", methods=["POST"])
    def submit_booking(booking_id: str):
        return run(booking_id, lambda c: c.request_payment(booking_id))

    @app.route("/api/bookings/<booking_id>/payments", methods=["POST"])
    def process_payment(booking_id: str):
        data = request.get_json(silent=True) or {}
        controller = controller_for(booking_id)
        if controller is None:
            return not_found(booking_id)
        data.setdefault("customer_info", controller.current_booking.customer_info.model_dump())
        data.setdefault("currency", controller.current_booking.pricing.currency)
        try:
            payment_request = PaymentRequest.model_validate({**data, "booking_id": booking_id})
        except ValidationError as e:
            return _bad_request(str(e))
        return run(booking_id, lambda c: c.process_payment(payment_request))

    @app.route("/api/bookings/<booking_id>/refunds", methods=["POST"])
    def refund_payment(booking_id: str):
        data = request.get_json(silent=True) or {}
        if "amount" not in data:
            return _bad_request("amount обязателен")
        reason = data.get("reason", "")
        return run(booking_id, lambda c: c.refund_payment(booking_id, data["amount"], reason))

    @app.route("/api/bookings/<booking_id>/payment-method", methods=["PUT"])
    def update_payment_method(booking_id: str):
        data = request.get_json(silent=True) or {}
        data.pop("booking_id", None)
        return run(booking_id, lambda c: c.update_payment_method(booking_id, data.get("method")))

    @app.route("/api/bookings/<booking_id>/appointment", methods=["POST"])
    def schedule_appointment(booking_id: str):
        try:
            proposal = AppointmentProposal.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            return _bad_request(str(e))
        return run(booking_id, lambda c: c.schedule_appointment(booking_id, proposal), 201)

    @app.route("/api/bookings/<booking_id>/appointment", methods=["PUT"])
    def reschedule_appointment(booking_id: str):
        data = request.get_json(silent=True) or {}
        try:
            new_start = ensure_aware(_parse_datetime(data["new_start"]))
            initiated_by = Initiator(data.get("initiated_by", Initiator.CUSTOMER.value))
        except (KeyError, ValueError, AttributeError) as e:
            return _bad_request(f"Неверные параметры переноса: {e}")
        reason = data.get("reason", "")
        return run(
            booking_id,
            lambda c: c.reschedule_appointment(booking_id, new_start, reason, initiated_by),
        )

    @app.route("/api/bookings/<booking_id>/appointment", methods=["DELETE"])
    def cancel_appointment(booking_id: str):
        data = request.get_json(silent=True) or {}
        return run(booking_id, lambda c: c.cancel_appointment(booking_id, data.get("reason", "")))

    @app.route("/api/bookings/<booking_id>/confirm", methods=["POST"])
    def confirm_booking(booking_id: str):
        return run(booking_id, lambda c: c.confirm_booking(booking_id))

    @app.route("/api/bookings/<booking_id>/start", methods=["POST"])
    def start_booking(booking_id: str):
        return run(booking_id, lambda c: c.start_booking(booking_id))

    @app.route("/api/bookings/<booking_id>/complete", methods=["POST"])
    def complete_booking(booking_id: str):
        return run(booking_id, lambda c: c.complete_booking(booking_id))

    @app.route("/api/bookings/<booking_id>/no-show", methods=["POST"])
    def mark_no_show(booking_id: str):
        return run(booking_id, lambda c: c.mark_no_show(booking_id))

    @app.route("/api/bookings/<booking_id>/cancel", methods=["POST"])
    def cancel_booking(booking_id: str):
        data = request.get_json(silent=True) or {}
        return run(booking_id, lambda c: c.cancel_booking(booking_id, data.get("reason", "")))

    @app.route("/health", methods=["GET"])
    def health():
        with registry_lock:
            active = len(controllers)
        return jsonify(
            {
                "status": "healthy",
                "service": "booking",
                "active_bookings": active,
            }
        ), 200

    app.extensions["booking_controllers"] = controllers
    return app


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    print(f"🚀 Starting Booking Service on port {config.PORT}")
    print(f"💳 Payment gateway: {config.PAYMENT_GATEWAY} ({config.PAYMENT_ENV})")
    print(f"📡 Message Broker: {config.MESSAGE_BROKER_URL}")
    app.run(host="0.0.0.0", port=config.PORT, debug=True)
