from __future__ import annotations

from schemas.booking import BookingStatus, TERMINAL_STATUSES

_SIDE_BRANCHES = {
    BookingStatus.CANCELLED,
    BookingStatus.REFUNDED,
    BookingStatus.NO_SHOW,
}

_ALLOWED_TRANSITIONS = {
    BookingStatus.DRAFT: {
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.PAYMENT_PROCESSING,
        BookingStatus.CONFIRMED,
    },
    BookingStatus.PENDING_PAYMENT: {
        BookingStatus.PAYMENT_PROCESSING,
        BookingStatus.CONFIRMED,
    },
    BookingStatus.PAYMENT_PROCESSING: {BookingStatus.CONFIRMED},
    BookingStatus.CONFIRMED: {BookingStatus.SCHEDULED},
    BookingStatus.SCHEDULED: {BookingStatus.IN_PROGRESS},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
}


class BookingStateTransitionError(ValueError):
    """Raised when an invalid booking state transition is requested."""

    def __init__(self, current: BookingStatus, target: BookingStatus) -> None:
        super().__init__(
            f"Недопустимый переход статуса брони: {current.value} -> {target.value}"
        )
        self.current = current
        self.target = target


def allowed_targets(current: BookingStatus) -> set:
    if current in TERMINAL_STATUSES:
        return set()
    return _ALLOWED_TRANSITIONS.get(current, set()) | _SIDE_BRANCHES


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in allowed_targets(current)


def validate_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Validate that a transition from current -> target is allowed.

    Raises BookingStateTransitionError if not allowed.
    """

    if not can_transition(current, target):
        raise BookingStateTransitionError(current=current, target=target)
