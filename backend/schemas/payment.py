"""
Схема данных для платежей и возвратов
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from decimal import Decimal

from schemas.common import CustomerInfo, Address, OperationResult


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    CASH = "cash"
    CHECK = "check"


class GatewayName(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    SQUARE = "square"
    MANUAL = "manual"


class RefundRecord(BaseModel):
    id: str
    amount: Decimal
    reason: str
    processed_at: datetime


class PaymentInfo(BaseModel):
    id: str
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    gateway: GatewayName
    gateway_transaction_id: Optional[str] = None
    gateway_customer_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    refunds: List[RefundRecord] = Field(default_factory=list)

    @property
    def refunded_amount(self) -> Decimal:
        return sum((r.amount for r in self.refunds), Decimal("0"))

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount


class PaymentMethodDetails(BaseModel):
    type: PaymentMethod
    card_token: Optional[str] = None
    bank_account: Optional[str] = None
    paypal_email: Optional[str] = None


class PaymentRequest(BaseModel):
    booking_id: str
    amount: Decimal
    currency: str = "USD"
    payment_method: PaymentMethodDetails
    customer_info: CustomerInfo
    billing_address: Optional[Address] = None
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentResult(OperationResult):
    transaction_id: Optional[str] = None
    payment_info: Optional[PaymentInfo] = None


class RefundResult(OperationResult):
    refund_id: Optional[str] = None
    amount: Decimal = Decimal("0")
