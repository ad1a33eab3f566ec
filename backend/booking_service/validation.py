"""
Проверка полноты брони

Порядок правил фиксирован: сначала данные клиента, затем поля услуги, затем цена.
Обязательное правило -> ошибка, рекомендуемое -> предупреждение.
Полнота считается только по обязательным правилам текущего типа услуги.
"""
import re
from typing import Callable, List, NamedTuple, Optional

from schemas.booking import (
    Booking,
    BookingValidation,
    CollaborationDetails,
    PerformanceDetails,
    TeachingDetails,
)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


class Rule(NamedTuple):
    field: str
    required: bool
    # None -> правило выполнено, иначе текст ошибки/предупреждения
    check: Callable[[Booking], Optional[str]]


def _present(getter: Callable[[Booking], object], message: str):
    def check(booking: Booking) -> Optional[str]:
        value = getter(booking)
        if value is None or value == "":
            return message
        return None

    return check


def _check_email(booking: Booking) -> Optional[str]:
    email = booking.customer_info.email
    if not email:
        return "Email is required"
    if not is_valid_email(email):
        return "Invalid email format"
    return None


def _check_pricing(booking: Booking) -> Optional[str]:
    if booking.pricing.total_price <= 0:
        return "Invalid pricing information"
    return None


CUSTOMER_RULES = [
    Rule("first_name", True, _present(lambda b: b.customer_info.first_name, "First name is required")),
    Rule("last_name", True, _present(lambda b: b.customer_info.last_name, "Last name is required")),
    Rule("email", True, _check_email),
    Rule(
        "phone",
        False,
        _present(lambda b: b.customer_info.phone, "Phone number recommended for better communication"),
    ),
]

TEACHING_RULES = [
    Rule("lesson_type", True, _present(lambda b: b.service_details.lesson_type, "Lesson type is required")),
    Rule(
        "skill_level",
        False,
        _present(lambda b: b.service_details.skill_level, "Skill level helps customize the lessons"),
    ),
]

PERFORMANCE_RULES = [
    Rule("event_type", True, _present(lambda b: b.service_details.event_type, "Event type is required")),
    Rule("event_date", True, _present(lambda b: b.service_details.event_date, "Event date is required")),
    Rule(
        "venue_address",
        False,
        _present(lambda b: b.service_details.venue_address, "Venue address helps plan logistics"),
    ),
    Rule(
        "guest_count",
        False,
        _present(lambda b: b.service_details.guest_count, "Guest count helps size the performance"),
    ),
]

COLLABORATION_RULES = [
    Rule("project_type", True, _present(lambda b: b.service_details.project_type, "Project type is required")),
    Rule(
        "timeline",
        False,
        _present(lambda b: b.service_details.timeline, "Timeline helps plan the project"),
    ),
    Rule(
        "project_scope",
        False,
        _present(lambda b: b.service_details.project_scope, "Project scope helps estimate the work"),
    ),
]

PRICING_RULES = [Rule("pricing", True, _check_pricing)]


def service_rules(details) -> List[Rule]:
    if isinstance(details, TeachingDetails):
        return TEACHING_RULES
    if isinstance(details, PerformanceDetails):
        return PERFORMANCE_RULES
    if isinstance(details, CollaborationDetails):
        return COLLABORATION_RULES
    raise TypeError(f"Неизвестный тип деталей услуги: {type(details).__name__}")


def rules_for(booking: Booking) -> List[Rule]:
    return CUSTOMER_RULES + service_rules(booking.service_details) + PRICING_RULES


def validate(booking: Booking) -> BookingValidation:
    errors = {}
    warnings = {}
    required_total = 0
    satisfied = 0

    for rule in rules_for(booking):
        message = rule.check(booking)
        if rule.required:
            required_total += 1
            if message is None:
                satisfied += 1
            else:
                errors[rule.field] = message
        elif message is not None:
            warnings[rule.field] = message

    completeness = round(100 * satisfied / required_total) if required_total else 100
    return BookingValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        completeness=completeness,
    )
