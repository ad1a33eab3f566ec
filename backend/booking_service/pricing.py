"""
Расчёт стоимости брони

- calculate_total: база + надбавки по порядку, затем скидки по порядку, не ниже нуля
- quote_pricing: стартовая цена по деталям услуги (уроки, выступления, коллаборации)
"""
from decimal import Decimal
from typing import List

from schemas.booking import (
    Adjustment,
    CollaborationDetails,
    Discount,
    DiscountType,
    PerformanceDetails,
    PricingInfo,
    TeachingDetails,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

LESSON_PRICE = Decimal("50")

PACKAGE_SESSIONS = {
    "single": 1,
    "package-4": 4,
    "package-8": 8,
    "package-12": 12,
}

PACKAGE_DISCOUNT_PERCENT = {
    "single": Decimal("0"),
    "package-4": Decimal("5"),
    "package-8": Decimal("10"),
    "package-12": Decimal("15"),
}

PERFORMANCE_BASE_RATES = {
    "solo": {"acoustic": Decimal("300"), "electric": Decimal("400"), "both": Decimal("450")},
    "band": {"acoustic": Decimal("800"), "electric": Decimal("1200"), "both": Decimal("1400")},
}

EVENT_TYPE_MULTIPLIERS = {
    "wedding": Decimal("1.5"),
    "corporate": Decimal("1.3"),
    "venue": Decimal("1.0"),
    "private": Decimal("1.2"),
    "other": Decimal("1.0"),
}

COLLABORATION_BASE_RATES = {
    "studio": Decimal("150"),
    "creative": Decimal("100"),
    "partnership": Decimal("200"),
    "other": Decimal("125"),
}

TIMELINE_ADJUSTMENTS = {
    "urgent": Decimal("0.5"),
    "flexible": Decimal("-0.1"),
    "specific-date": Decimal("0.2"),
    "ongoing": Decimal("-0.05"),
}

EXPERIENCE_ADJUSTMENTS = {
    "first-time": Decimal("0.1"),
    "some-experience": Decimal("0"),
    "experienced": Decimal("-0.05"),
    "professional": Decimal("-0.1"),
}


def apply_discount(running_total: Decimal, discount: Discount) -> Decimal:
    if discount.type == DiscountType.PERCENTAGE:
        return running_total - running_total * discount.amount / HUNDRED
    return running_total - discount.amount


def calculate_total(pricing: PricingInfo) -> Decimal:
    total = pricing.base_price
    for adjustment in pricing.adjustments:
        total += adjustment.amount
    for discount in pricing.discounts:
        total = apply_discount(total, discount)
    return max(ZERO, total)


def with_recalculated_total(pricing: PricingInfo) -> PricingInfo:
    return pricing.model_copy(update={"total_price": calculate_total(pricing)})


def _quote_teaching(details: TeachingDetails) -> PricingInfo:
    package = details.package_type or "single"
    sessions = details.session_count or PACKAGE_SESSIONS[package]
    discounts: List[Discount] = []
    percent = PACKAGE_DISCOUNT_PERCENT[package]
    if percent > ZERO:
        discounts.append(
            Discount(
                code=package,
                amount=percent,
                type=DiscountType.PERCENTAGE,
                description=f"Скидка за пакет {package}: {percent}%",
            )
        )
    return PricingInfo(base_price=LESSON_PRICE * sessions, discounts=discounts)


def _quote_performance(details: PerformanceDetails) -> PricingInfo:
    fmt = "band" if details.performance_format == "band" else "solo"
    style = details.performance_style or "acoustic"
    base = PERFORMANCE_BASE_RATES[fmt][style]
    adjustments: List[Adjustment] = []
    multiplier = EVENT_TYPE_MULTIPLIERS[details.event_type or "other"]
    if multiplier != Decimal("1.0"):
        adjustments.append(
            Adjustment(
                name="event_type",
                amount=base * (multiplier - 1),
                description=f"Надбавка за тип мероприятия: {details.event_type}",
            )
        )
    return PricingInfo(base_price=base, adjustments=adjustments)


def _quote_collaboration(details: CollaborationDetails) -> PricingInfo:
    base = COLLABORATION_BASE_RATES[details.project_type or "other"]
    adjustments: List[Adjustment] = []
    if details.timeline:
        ratio = TIMELINE_ADJUSTMENTS[details.timeline]
        adjustments.append(
            Adjustment(
                name="timeline",
                amount=base * ratio,
                description=f"Сроки проекта: {details.timeline}",
            )
        )
    if details.experience:
        ratio = EXPERIENCE_ADJUSTMENTS[details.experience]
        if ratio != ZERO:
            adjustments.append(
                Adjustment(
                    name="experience",
                    amount=base * ratio,
                    description=f"Опыт клиента: {details.experience}",
                )
            )
    return PricingInfo(base_price=base, adjustments=adjustments)


def quote_pricing(details, currency: str = "USD") -> PricingInfo:
    """Стартовая цена по деталям услуги, total уже пересчитан"""
    if isinstance(details, TeachingDetails):
        pricing = _quote_teaching(details)
    elif isinstance(details, PerformanceDetails):
        pricing = _quote_performance(details)
    elif isinstance(details, CollaborationDetails):
        pricing = _quote_collaboration(details)
    else:
        raise TypeError(f"Неизвестный тип деталей услуги: {type(details).__name__}")
    pricing.currency = currency
    return with_recalculated_total(pricing)
