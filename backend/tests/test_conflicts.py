from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_service.scheduling import (
    ConflictChecker,
    InMemoryAppointmentRepository,
    SchedulingPolicy,
    intervals_overlap,
)
from schemas.appointment import AppointmentInfo, AppointmentStatus
from schemas.booking import ServiceType

T = datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc)


def _appointment(apt_id, start, duration=60, status=AppointmentStatus.SCHEDULED):
    return AppointmentInfo(id=apt_id, scheduled_date=start, duration=duration, status=status)


@pytest.fixture
def checker():
    return ConflictChecker(InMemoryAppointmentRepository())


@pytest.mark.parametrize(
    "offset,duration,expected",
    [
        (-60, 60, False),  # заканчивается ровно в начале
        (60, 30, False),  # начинается ровно в конце
        (30, 60, True),
        (-30, 60, True),
        (10, 10, True),  # внутри
        (-10, 120, True),  # накрывает целиком
        (15, 0, False),  # нулевая длительность
    ],
)
def test_half_open_overlap(offset, duration, expected):
    start = T + timedelta(minutes=offset)
    assert intervals_overlap(T, 60, start, duration) is expected


@pytest.mark.parametrize("offset,duration", [(-60, 60), (30, 60), (-30, 60), (60, 30), (10, 10)])
def test_overlap_is_symmetric(offset, duration):
    start = T + timedelta(minutes=offset)
    assert intervals_overlap(T, 60, start, duration) == intervals_overlap(start, duration, T, 60)


def test_find_conflicts_returns_overlapping_appointments(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T))
    checker.repository.save("booking_b", _appointment("apt_b", T + timedelta(hours=2)))

    conflicts = checker.find_conflicts(T + timedelta(minutes=30), 60)

    assert [a.id for a in conflicts] == ["apt_a"]


def test_symmetry_against_stored_interval(checker):
    stored = _appointment("apt_a", T)
    checker.repository.save("booking_a", stored)
    proposed_start = T + timedelta(minutes=30)

    (conflict,) = checker.find_conflicts(proposed_start, 60)

    assert intervals_overlap(proposed_start, 60, conflict.scheduled_date, conflict.duration)
    assert intervals_overlap(conflict.scheduled_date, conflict.duration, proposed_start, 60)


def test_touching_endpoints_do_not_conflict(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T))
    assert checker.find_conflicts(T + timedelta(hours=1), 60) == []
    assert checker.find_conflicts(T - timedelta(hours=1), 60) == []


def test_cancelled_appointments_are_ignored(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T, status=AppointmentStatus.CANCELLED))
    assert checker.find_conflicts(T, 60) == []


def test_zero_duration_never_conflicts(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T))
    checker.repository.save("booking_z", _appointment("apt_z", T + timedelta(minutes=10), duration=0))
    assert checker.find_conflicts(T + timedelta(minutes=10), 0) == []
    assert [a.id for a in checker.find_conflicts(T, 60)] == ["apt_a"]


def test_exclude_booking_ignores_own_slot(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T))
    assert checker.find_conflicts(T, 60, exclude_booking_id="booking_a") == []


def test_find_conflicts_does_not_mutate_repository(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T))
    conflicts = checker.find_conflicts(T, 60)
    conflicts[0].status = AppointmentStatus.CANCELLED
    assert checker.repository.get("apt_a").status == AppointmentStatus.SCHEDULED


def test_naive_datetimes_are_treated_as_utc(checker):
    checker.repository.save("booking_a", _appointment("apt_a", datetime(2026, 11, 2, 10, 0)))
    assert len(checker.find_conflicts(T + timedelta(minutes=15), 30)) == 1


def _hm(slots):
    return [(s.start_time.hour, s.start_time.minute) for s in slots]


def test_monday_slots_step_over_lunch(checker):
    slots = checker.available_time_slots(date(2026, 11, 2), 60, tzinfo=timezone.utc)

    # шаг 60 + 15 минут буфера, слот 11:30 задевает обед и сдвигается на 13:00
    assert _hm(slots) == [(9, 0), (10, 15), (13, 0), (14, 15), (15, 30), (16, 45)]
    assert all(s.available for s in slots)
    assert slots[-1].end_time == datetime(2026, 11, 2, 17, 45, tzinfo=timezone.utc)


def test_available_time_slots_marks_busy_slots(checker):
    checker.repository.save("booking_a", _appointment("apt_a", T + timedelta(hours=1), duration=90))

    slots = checker.available_time_slots(date(2026, 11, 2), 60, tzinfo=timezone.utc)

    busy = [(s.start_time.hour, s.start_time.minute) for s in slots if not s.available]
    assert busy == [(10, 15)]
    assert slots[1].reason


def test_buffer_blocks_adjacent_slot(checker):
    # слот 12:45-13:45 не пересекается с записью 13:50, но до неё меньше 15 минут буфера
    checker.repository.save("booking_a", _appointment("apt_a", datetime(2026, 11, 3, 13, 50, tzinfo=timezone.utc)))

    slots = checker.available_time_slots(date(2026, 11, 3), 60, tzinfo=timezone.utc)

    busy = _hm(s for s in slots if not s.available)
    assert busy == [(12, 45), (14, 0)]


def test_saturday_short_day_and_sunday_closed(checker):
    saturday = checker.available_time_slots(date(2026, 11, 7), 120, tzinfo=timezone.utc)
    sunday = checker.available_time_slots(date(2026, 11, 8), 60, tzinfo=timezone.utc)

    assert _hm(saturday) == [(10, 0), (12, 15)]
    assert sunday == []


def test_blocked_and_holiday_dates_have_no_slots():
    policy = SchedulingPolicy(blocked_dates=[date(2026, 11, 3)], holiday_dates=[date(2026, 11, 4)])
    checker = ConflictChecker(InMemoryAppointmentRepository(), policy)

    assert checker.available_time_slots(date(2026, 11, 3), 60) == []
    assert checker.available_time_slots(date(2026, 11, 4), 60) == []
    assert len(checker.available_time_slots(date(2026, 11, 5), 60)) == 7


def test_slots_outside_booking_window(checker):
    now = datetime(2026, 11, 2, 11, 0, tzinfo=timezone.utc)

    today = checker.available_time_slots(date(2026, 11, 2), 60, now=now, tzinfo=timezone.utc)
    far = checker.available_time_slots(date(2027, 1, 5), 60, now=now, tzinfo=timezone.utc)

    assert [s.available for s in today] == [False, False, True, True, True, True]
    assert not any(s.available for s in far)


def test_non_positive_duration_is_rejected(checker):
    with pytest.raises(ValueError):
        checker.available_time_slots(date(2026, 11, 2), 0)


def test_suggest_alternatives_rolls_over_to_next_day(checker):
    tuesday = date(2026, 11, 3)
    for i, hour in enumerate((9, 11, 13, 15)):
        start = datetime.combine(tuesday, time(hour), tzinfo=timezone.utc)
        checker.repository.save(f"booking_{i}", _appointment(f"apt_{i}", start, duration=120))

    alternatives = checker.suggest_alternatives(tuesday, 60, tzinfo=timezone.utc)

    assert [s.start_time.date() for s in alternatives] == [date(2026, 11, 4)] * 3
    assert _hm(alternatives) == [(9, 0), (10, 15), (11, 30)]


def test_policy_rejection_reasons():
    policy = SchedulingPolicy(advance_booking_days=10)
    now = datetime(2026, 11, 2, 9, 0, tzinfo=timezone.utc)

    assert policy.rejection_reason(now + timedelta(days=1), now) is None
    assert policy.rejection_reason(now + timedelta(days=11), now)
    assert policy.rejection_reason(datetime(2026, 11, 8, 12, 0, tzinfo=timezone.utc), now)
    assert policy.default_duration(ServiceType.COLLABORATION) == 90
    assert policy.default_duration() == 60
