from datetime import datetime, timezone
from decimal import Decimal

import pytest
import requests

from payment_service.gateways import (
    Environment,
    GatewayError,
    GatewayTimeout,
    HttpGateway,
    MockGateway,
    get_gateway,
)
from payment_service.processor import OverRefundError, PaymentError, PaymentProcessor, apply_refund
from schemas.common import CustomerInfo
from schemas.payment import (
    GatewayName,
    PaymentInfo,
    PaymentMethod,
    PaymentMethodDetails,
    PaymentRequest,
    PaymentStatus,
    RefundRecord,
)

CUSTOMER = CustomerInfo(first_name="Ivan", last_name="Ivanov", email="ivan@example.com")


def _request(amount="200", token="tok_visa"):
    return PaymentRequest(
        booking_id="booking_1",
        amount=Decimal(amount),
        currency="USD",
        payment_method=PaymentMethodDetails(type=PaymentMethod.CARD, card_token=token),
        customer_info=CUSTOMER,
        description="Lesson",
    )


def _payment(amount="200", refunds=()):
    return PaymentInfo(
        id="payment_1",
        amount=Decimal(amount),
        currency="USD",
        method=PaymentMethod.CARD,
        status=PaymentStatus.COMPLETED,
        gateway=GatewayName.STRIPE,
        gateway_transaction_id="mock_tx_000001",
        refunds=[
            RefundRecord(id=f"re_{i}", amount=Decimal(a), reason="r", processed_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
            for i, a in enumerate(refunds)
        ],
    )


class _FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.text = str(data)

    def json(self):
        return self._data


# ---------- MockGateway / PaymentProcessor ----------


def test_charge_builds_completed_payment(clock):
    gateway = MockGateway()
    payment = PaymentProcessor(gateway, clock=clock).charge(_request())

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.amount == Decimal("200")
    assert payment.gateway == GatewayName.STRIPE
    assert payment.gateway_transaction_id == "mock_tx_000001"
    assert payment.processed_at is not None
    assert gateway.charges[0]["amount"] == Decimal("200")


def test_declined_card_raises_payment_error(clock):
    gateway = MockGateway()
    with pytest.raises(PaymentError) as exc:
        PaymentProcessor(gateway, clock=clock).charge(_request(token="tok_declined"))
    assert exc.value.code == "card_declined"
    assert gateway.charges == []


def test_non_positive_amount_is_rejected_before_gateway(clock):
    gateway = MockGateway()
    with pytest.raises(PaymentError):
        PaymentProcessor(gateway, clock=clock).charge(_request(amount="0"))
    assert gateway.charges == []


def test_over_refund_is_rejected_before_gateway(clock):
    gateway = MockGateway()
    processor = PaymentProcessor(gateway, clock=clock)
    with pytest.raises(OverRefundError) as exc:
        processor.refund(_payment(refunds=["150"]), Decimal("60"), "too much")
    assert exc.value.available == Decimal("50")
    assert gateway.refunds == []


def test_refund_requires_positive_amount(clock):
    with pytest.raises(PaymentError):
        PaymentProcessor(MockGateway(), clock=clock).refund(_payment(), Decimal("0"), "zero")


@pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", "-Infinity"])
def test_refund_rejects_non_finite_amount(clock, amount):
    gateway = MockGateway()
    with pytest.raises(PaymentError) as exc:
        PaymentProcessor(gateway, clock=clock).refund(_payment(), Decimal(amount), "weird")
    assert exc.value.code == "invalid_amount"
    assert gateway.refunds == []


def test_refund_gateway_failure(clock):
    processor = PaymentProcessor(MockGateway(fail_refunds=True), clock=clock)
    with pytest.raises(PaymentError) as exc:
        processor.refund(_payment(), Decimal("20"), "r")
    assert exc.value.code == "refund_declined"


def test_partial_then_full_refund_status():
    payment = _payment()
    refund = RefundRecord(id="re_a", amount=Decimal("50"), reason="r", processed_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    partial = apply_refund(payment, refund)
    assert partial.status == PaymentStatus.COMPLETED
    assert partial.refundable_amount == Decimal("150")

    rest = refund.model_copy(update={"id": "re_b", "amount": Decimal("150")})
    full = apply_refund(partial, rest)
    assert full.status == PaymentStatus.REFUNDED
    assert full.refunded_amount == full.amount
    # исходный объект не меняется
    assert payment.refunds == []


def test_refunded_payment_is_not_refundable(clock):
    payment = _payment().model_copy(update={"status": PaymentStatus.REFUNDED})
    with pytest.raises(PaymentError) as exc:
        PaymentProcessor(MockGateway(), clock=clock).refund(payment, Decimal("1"), "r")
    assert exc.value.code == "payment_not_refundable"


# ---------- HttpGateway ----------


def test_http_gateway_charge(monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return _FakeResponse(200, {"id": "ch_123", "status": "succeeded", "customer_id": "cus_1"})

    monkeypatch.setattr(requests, "post", fake_post)
    gateway = HttpGateway(base_url="https://pay.test/v1/", api_key="sk_test")

    response = gateway.charge(
        Decimal("99.50"), "USD", PaymentMethodDetails(type=PaymentMethod.CARD, card_token="tok"), CUSTOMER, timeout=3
    )

    assert response.transaction_id == "ch_123"
    assert calls[0]["url"] == "https://pay.test/v1/charges"
    assert calls[0]["json"]["amount"] == "99.50"
    assert calls[0]["headers"]["Authorization"] == "Bearer sk_test"
    assert calls[0]["timeout"] == 3


def test_http_gateway_decline(monkeypatch):
    monkeypatch.setattr(
        requests,
        "post",
        lambda *a, **kw: _FakeResponse(402, {"failure_message": "Insufficient funds", "code": "insufficient_funds"}),
    )
    gateway = HttpGateway(base_url="https://pay.test/v1", api_key="k")
    with pytest.raises(GatewayError) as exc:
        gateway.charge(Decimal("10"), "USD", PaymentMethodDetails(type=PaymentMethod.CARD), CUSTOMER)
    assert exc.value.reason == "Insufficient funds"
    assert exc.value.code == "insufficient_funds"


def test_http_gateway_timeout(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.exceptions.ReadTimeout("slow")

    monkeypatch.setattr(requests, "post", fake_post)
    gateway = HttpGateway(base_url="https://pay.test/v1", api_key="k")
    with pytest.raises(GatewayTimeout):
        gateway.refund("ch_1", Decimal("5"), timeout=0.1)


def test_http_gateway_network_error(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", fake_post)
    gateway = HttpGateway(base_url="https://pay.test/v1", api_key="k")
    with pytest.raises(GatewayError) as exc:
        gateway.refund("ch_1", Decimal("5"))
    assert exc.value.code == "network_error"


def test_http_gateway_refund(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **kw: _FakeResponse(200, {"id": "re_9"}))
    assert HttpGateway(base_url="https://pay.test/v1", api_key="k").refund("ch_1", Decimal("5")) == "re_9"


# ---------- Фабрика ----------


def test_get_gateway_mock():
    gateway = get_gateway("PayPal", Environment.MOCK)
    assert isinstance(gateway, MockGateway)
    assert gateway.name == GatewayName.PAYPAL


def test_get_gateway_http_in_test_env():
    gateway = get_gateway("stripe", Environment.TEST)
    assert isinstance(gateway, HttpGateway)


def test_get_gateway_unknown():
    with pytest.raises(ValueError):
        get_gateway("bitcoin", Environment.MOCK)
