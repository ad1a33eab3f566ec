"""
Схема данных для бронирований
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from datetime import datetime, date
from enum import Enum
from decimal import Decimal

from schemas.common import CustomerInfo, OperationResult
from schemas.payment import PaymentInfo
from schemas.appointment import AppointmentInfo


class ServiceType(str, Enum):
    TEACHING = "teaching"
    PERFORMANCE = "performance"
    COLLABORATION = "collaboration"


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_PROCESSING = "payment_processing"
    CONFIRMED = "confirmed"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REFUNDED,
        BookingStatus.NO_SHOW,
    }
)


# ---------- Детали услуги (по одному варианту на service_type) ----------

ServiceLocation = Literal["studio", "client-location", "online", "to-be-determined"]


class _CommonDetails(BaseModel):
    special_requests: Optional[str] = None
    equipment_needs: List[str] = Field(default_factory=list)
    location: Optional[ServiceLocation] = None


class TeachingDetails(_CommonDetails):
    service_type: Literal["teaching"] = "teaching"
    lesson_type: Optional[Literal["individual", "group", "online", "in-person"]] = None
    skill_level: Optional[Literal["beginner", "intermediate", "advanced"]] = None
    session_count: Optional[int] = Field(default=None, ge=1)
    package_type: Optional[
        Literal["single", "package-4", "package-8", "package-12"]
    ] = None


class PerformanceDetails(_CommonDetails):
    service_type: Literal["performance"] = "performance"
    event_type: Optional[
        Literal["wedding", "corporate", "venue", "private", "other"]
    ] = None
    event_date: Optional[date] = None
    performance_format: Optional[Literal["solo", "band", "flexible"]] = None
    performance_style: Optional[Literal["acoustic", "electric", "both"]] = None
    duration: Optional[str] = None
    guest_count: Optional[int] = Field(default=None, ge=0)
    venue_address: Optional[str] = None


class CollaborationDetails(_CommonDetails):
    service_type: Literal["collaboration"] = "collaboration"
    project_type: Optional[
        Literal["studio", "creative", "partnership", "other"]
    ] = None
    project_scope: Optional[
        Literal["single-session", "short-term", "long-term", "ongoing"]
    ] = None
    timeline: Optional[
        Literal["urgent", "flexible", "specific-date", "ongoing"]
    ] = None
    experience: Optional[
        Literal["first-time", "some-experience", "experienced", "professional"]
    ] = None
    creative_vision: Optional[str] = None


ServiceDetails = Annotated[
    Union[TeachingDetails, PerformanceDetails, CollaborationDetails],
    Field(discriminator="service_type"),
]

DETAILS_BY_SERVICE = {
    ServiceType.TEACHING: TeachingDetails,
    ServiceType.PERFORMANCE: PerformanceDetails,
    ServiceType.COLLABORATION: CollaborationDetails,
}


# ---------- Цены ----------

class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Adjustment(BaseModel):
    name: str
    amount: Decimal
    description: str = ""


class Discount(BaseModel):
    code: str = ""
    amount: Decimal = Field(ge=0)
    type: DiscountType
    description: str = ""


class PaymentScheduleItem(BaseModel):
    id: str
    amount: Decimal = Field(ge=0)
    due_date: datetime
    description: str = ""
    status: Literal["pending", "paid", "overdue", "cancelled"] = "pending"
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None


class PricingInfo(BaseModel):
    base_price: Decimal = Decimal("0")
    adjustments: List[Adjustment] = Field(default_factory=list)
    discounts: List[Discount] = Field(default_factory=list)
    total_price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    payment_schedule: List[PaymentScheduleItem] = Field(default_factory=list)


# ---------- Бронь ----------

class Booking(BaseModel):
    id: str
    service_type: ServiceType
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    service_details: ServiceDetails
    pricing: PricingInfo = Field(default_factory=PricingInfo)
    appointment: Optional[AppointmentInfo] = None
    payment: Optional[PaymentInfo] = None
    status: BookingStatus = BookingStatus.DRAFT
    created_at: datetime
    updated_at: datetime
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _details_match_service(self) -> "Booking":
        if self.service_details.service_type != self.service_type.value:
            raise ValueError(
                f"service_details ({self.service_details.service_type}) "
                f"не соответствует service_type ({self.service_type.value})"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class BookingValidation(BaseModel):
    is_valid: bool
    errors: Dict[str, str] = Field(default_factory=dict)
    warnings: Dict[str, str] = Field(default_factory=dict)
    completeness: int = Field(ge=0, le=100)


class BookingResult(OperationResult):
    booking: Optional[Booking] = None
    validation: Optional[BookingValidation] = None


class BookingConfirmedEvent(BaseModel):
    event_type: str = "booking.confirmed"
    booking_id: str
    service_type: ServiceType
    customer_email: str
    customer_name: str
    scheduled_date: Optional[datetime] = None
    timestamp: datetime
