"""
Реализация интеграций с платежными шлюзами
Поддержка тестовых (sandbox), продакшн и mock режимов
"""
import itertools
import logging
import os
import threading
import uuid
from decimal import Decimal
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

import requests

from schemas.common import CustomerInfo
from schemas.payment import GatewayName, PaymentMethodDetails

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    TEST = "test"
    PRODUCTION = "production"
    MOCK = "mock"  # Детерминированная заглушка для локального запуска и тестов


class GatewayError(Exception):
    """Шлюз отклонил операцию или недоступен"""

    def __init__(self, reason: str, code: str = "gateway_error"):
        super().__init__(reason)
        self.reason = reason
        self.code = code


class GatewayTimeout(GatewayError):
    def __init__(self, reason: str = "Платежный шлюз не ответил вовремя"):
        super().__init__(reason, code="timeout")


class ChargeResponse(NamedTuple):
    transaction_id: str
    gateway_customer_id: Optional[str] = None


class PaymentGateway:
    """Базовый класс для платежных шлюзов"""

    name: GatewayName = GatewayName.MANUAL

    def __init__(self, environment: Environment = Environment.MOCK):
        self.environment = environment

    def charge(
        self,
        amount: Decimal,
        currency: str,
        method: PaymentMethodDetails,
        customer: CustomerInfo,
        timeout: Optional[float] = None,
    ) -> ChargeResponse:
        """Списание средств"""
        raise NotImplementedError

    def refund(self, transaction_id: str, amount: Decimal, timeout: Optional[float] = None) -> str:
        """Возврат средств, возвращает id возврата"""
        raise NotImplementedError


class MockGateway(PaymentGateway):
    """Шлюз-заглушка: последовательные id, отказ по заданным токенам карт"""

    DECLINED_TOKENS = frozenset({"tok_declined", "tok_insufficient_funds"})

    def __init__(
        self,
        name: GatewayName = GatewayName.STRIPE,
        declined_tokens=None,
        fail_refunds: bool = False,
    ):
        super().__init__(Environment.MOCK)
        self.name = name
        self.declined_tokens = frozenset(declined_tokens) if declined_tokens is not None else self.DECLINED_TOKENS
        self.fail_refunds = fail_refunds
        self.charges: List[Dict] = []
        self.refunds: List[Dict] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def _next(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}_{next(self._counter):06d}"

    def charge(self, amount, currency, method, customer, timeout=None) -> ChargeResponse:
        if method.card_token and method.card_token in self.declined_tokens:
            raise GatewayError("Карта отклонена банком", code="card_declined")
        transaction_id = self._next("mock_tx")
        self.charges.append(
            {"transaction_id": transaction_id, "amount": amount, "currency": currency}
        )
        return ChargeResponse(transaction_id=transaction_id, gateway_customer_id=customer.email or None)

    def refund(self, transaction_id, amount, timeout=None) -> str:
        if self.fail_refunds:
            raise GatewayError("Шлюз отклонил возврат", code="refund_declined")
        refund_id = self._next("mock_re")
        self.refunds.append(
            {"refund_id": refund_id, "transaction_id": transaction_id, "amount": amount}
        )
        return refund_id


class HttpGateway(PaymentGateway):
    """REST-шлюз: POST {base_url}/charges и POST {base_url}/refunds"""

    TEST_API_URL = os.getenv("PAYMENT_TEST_API_URL", "https://sandbox.payments.example.com/v1")
    TEST_API_KEY = os.getenv("PAYMENT_TEST_API_KEY", "your_test_api_key")

    PROD_API_URL = os.getenv("PAYMENT_API_URL")
    PROD_API_KEY = os.getenv("PAYMENT_API_KEY")

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        name: GatewayName = GatewayName.STRIPE,
        environment: Environment = Environment.TEST,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        super().__init__(environment)
        self.name = name
        if environment == Environment.PRODUCTION:
            self.base_url = base_url or self.PROD_API_URL
            self.api_key = api_key or self.PROD_API_KEY
        else:
            self.base_url = base_url or self.TEST_API_URL
            self.api_key = api_key or self.TEST_API_KEY
        if not self.base_url:
            raise ValueError("Не задан URL платежного шлюза")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": str(uuid.uuid4()),
        }

    def _post(self, path: str, payload: dict, timeout: Optional[float]) -> dict:
        url = f"{self.base_url.rstrip('/')}/{path}"
        try:
            response = requests.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=timeout or self.DEFAULT_TIMEOUT,
            )
        except requests.exceptions.Timeout as e:
            logger.warning("Таймаут запроса к шлюзу %s: %s", url, e)
            raise GatewayTimeout() from e
        except requests.exceptions.RequestException as e:
            logger.warning("Ошибка сети при запросе к шлюзу %s: %s", url, e)
            raise GatewayError(f"Платежный шлюз недоступен: {e}", code="network_error") from e

        try:
            data = response.json()
        except ValueError:
            data = {"error": response.text[:200]}

        if response.status_code == 402:
            raise GatewayError(
                data.get("failure_message") or data.get("error") or "Платеж отклонен",
                code=data.get("code", "card_declined"),
            )
        if response.status_code >= 400:
            raise GatewayError(
                data.get("error") or f"Шлюз ответил {response.status_code}",
                code="gateway_error",
            )
        return data

    def charge(self, amount, currency, method, customer, timeout=None) -> ChargeResponse:
        payload = {
            "amount": str(amount),
            "currency": currency,
            "method": method.type.value,
            "source": method.card_token or method.bank_account or method.paypal_email,
            "customer": {"email": customer.email, "name": customer.full_name},
        }
        data = self._post("charges", payload, timeout)
        if data.get("status") != "succeeded":
            raise GatewayError(
                data.get("failure_message") or "Платеж не прошел",
                code=data.get("code", "charge_failed"),
            )
        return ChargeResponse(transaction_id=data["id"], gateway_customer_id=data.get("customer_id"))

    def refund(self, transaction_id, amount, timeout=None) -> str:
        data = self._post(
            "refunds",
            {"transaction_id": transaction_id, "amount": str(amount)},
            timeout,
        )
        return data["id"]


def get_gateway(gateway_name: str, environment: Environment = None) -> PaymentGateway:
    """Фабрика для получения экземпляра платежного шлюза"""
    if environment is None:
        env_str = os.getenv("PAYMENT_ENV", "mock").lower()
        environment = Environment(env_str)

    try:
        name = GatewayName(gateway_name.lower())
    except ValueError:
        raise ValueError(f"Неизвестный платежный шлюз: {gateway_name}")

    if environment == Environment.MOCK or name == GatewayName.MANUAL:
        return MockGateway(name=name)
    return HttpGateway(name=name, environment=environment)
