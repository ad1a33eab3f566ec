"""
Payment Processor - списания и возвраты через платежный шлюз

- Не хранит состояние брони: возвращает PaymentInfo / RefundRecord, применяет их контроллер
- Ошибки шлюза не ретраит: повтор - решение вызывающего
- Возврат сверх остатка отклоняется до обращения к шлюзу
"""
import logging
from decimal import Decimal
from typing import Optional

from booking_service.clock import Clock, system_clock
from schemas.payment import (
    PaymentInfo,
    PaymentRequest,
    PaymentStatus,
    RefundRecord,
)

from payment_service.gateways import GatewayError, PaymentGateway

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Платеж или возврат не выполнен"""

    def __init__(self, reason: str, code: str = "payment_error"):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class OverRefundError(PaymentError):
    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            f"Сумма возврата {requested} превышает доступный остаток {available}",
            code="over_refund",
        )
        self.requested = requested
        self.available = available


class PaymentProcessor:
    def __init__(self, gateway: PaymentGateway, clock: Clock = system_clock):
        self.gateway = gateway
        self.clock = clock

    def charge(self, request: PaymentRequest, timeout: Optional[float] = None) -> PaymentInfo:
        if not request.amount.is_finite() or request.amount <= 0:
            raise PaymentError("Сумма платежа должна быть больше нуля", code="invalid_amount")

        logger.info(
            "💳 Списание %s %s по брони %s", request.amount, request.currency, request.booking_id
        )
        try:
            response = self.gateway.charge(
                request.amount,
                request.currency,
                request.payment_method,
                request.customer_info,
                timeout=timeout,
            )
        except GatewayError as e:
            logger.warning("❌ Платеж по брони %s не прошел: %s", request.booking_id, e.reason)
            raise PaymentError(e.reason, code=e.code) from e

        return PaymentInfo(
            id=self.clock.new_id("payment"),
            amount=request.amount,
            currency=request.currency,
            method=request.payment_method.type,
            status=PaymentStatus.COMPLETED,
            gateway=self.gateway.name,
            gateway_transaction_id=response.transaction_id,
            gateway_customer_id=response.gateway_customer_id,
            processed_at=self.clock.now(),
        )

    def refund(
        self,
        payment: PaymentInfo,
        amount: Decimal,
        reason: str,
        timeout: Optional[float] = None,
    ) -> RefundRecord:
        if not amount.is_finite() or amount <= 0:
            raise PaymentError("Сумма возврата должна быть больше нуля", code="invalid_amount")
        if payment.status != PaymentStatus.COMPLETED:
            raise PaymentError(
                f"Возврат возможен только для завершенных платежей (статус: {payment.status.value})",
                code="payment_not_refundable",
            )
        available = payment.refundable_amount
        if amount > available:
            raise OverRefundError(amount, available)

        try:
            refund_id = self.gateway.refund(payment.gateway_transaction_id, amount, timeout=timeout)
        except GatewayError as e:
            logger.warning("❌ Возврат по платежу %s не прошел: %s", payment.id, e.reason)
            raise PaymentError(e.reason, code=e.code) from e

        logger.info("↩️ Возврат %s по платежу %s: %s", amount, payment.id, reason)
        return RefundRecord(
            id=refund_id,
            amount=amount,
            reason=reason,
            processed_at=self.clock.now(),
        )


def apply_refund(payment: PaymentInfo, refund: RefundRecord) -> PaymentInfo:
    """Новый PaymentInfo с добавленным возвратом; полный возврат -> refunded"""
    refunds = payment.refunds + [refund]
    refunded = sum((r.amount for r in refunds), Decimal("0"))
    status = PaymentStatus.REFUNDED if refunded >= payment.amount else PaymentStatus.COMPLETED
    return payment.model_copy(update={"refunds": refunds, "status": status})
