"""
Проверка конфликтов записей и свободные слоты

Интервалы полуоткрытые: [start, start + duration). Касание границ - не конфликт,
запись нулевой длительности не конфликтует ни с чем.

Слоты строятся по рабочим часам дня недели: шаг = длительность + буфер,
перерывы пропускаются, заблокированные и праздничные дни слотов не имеют.
Буфер учитывается только при выдаче свободных слотов.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from booking_service import config
from schemas.appointment import AppointmentInfo, TimeSlot
from schemas.booking import ServiceType

logger = logging.getLogger(__name__)


def intervals_overlap(
    start_a: datetime, duration_a: int, start_b: datetime, duration_b: int
) -> bool:
    if duration_a <= 0 or duration_b <= 0:
        return False
    end_a = start_a + timedelta(minutes=duration_a)
    end_b = start_b + timedelta(minutes=duration_b)
    return start_a < end_b and start_b < end_a


class BreakPeriod(BaseModel):
    start: time
    end: time


class DayHours(BaseModel):
    is_open: bool = True
    open_time: time = time(9, 0)
    close_time: time = time(18, 0)
    breaks: List[BreakPeriod] = Field(default_factory=list)


def _default_business_hours() -> Dict[int, DayHours]:
    # ключ - weekday(): 0 понедельник ... 6 воскресенье
    return {
        0: DayHours(breaks=[BreakPeriod(start=time(12, 0), end=time(13, 0))]),
        1: DayHours(),
        2: DayHours(),
        3: DayHours(),
        4: DayHours(),
        5: DayHours(open_time=time(10, 0), close_time=time(16, 0)),
        6: DayHours(is_open=False),
    }


def _default_durations() -> Dict[ServiceType, int]:
    return {
        ServiceType.TEACHING: 60,
        ServiceType.PERFORMANCE: 120,
        ServiceType.COLLABORATION: 90,
    }


class SchedulingPolicy(BaseModel):
    """Правила расписания студии"""

    business_hours: Dict[int, DayHours] = Field(default_factory=_default_business_hours)
    buffer_minutes: int = Field(default=15, ge=0)
    advance_booking_days: int = Field(default=60, ge=0)
    blocked_dates: List[date] = Field(default_factory=list)
    holiday_dates: List[date] = Field(default_factory=list)
    default_durations: Dict[ServiceType, int] = Field(default_factory=_default_durations)
    max_reschedules: int = Field(default=3, ge=0)
    max_alternatives: int = Field(default=3, ge=0)
    alternative_search_days: int = Field(default=7, ge=1)

    def hours_for(self, day: date) -> DayHours:
        return self.business_hours.get(day.weekday(), DayHours(is_open=False))

    def closed_reason(self, day: date) -> Optional[str]:
        if day in self.blocked_dates:
            return f"Дата {day.isoformat()} заблокирована"
        if day in self.holiday_dates:
            return f"{day.isoformat()} - праздничный день"
        if not self.hours_for(day).is_open:
            return f"Студия не работает {day.isoformat()}"
        return None

    def default_duration(self, service_type: Optional[ServiceType] = None) -> int:
        if service_type is None:
            return config.DEFAULT_APPOINTMENT_DURATION
        return self.default_durations.get(service_type, config.DEFAULT_APPOINTMENT_DURATION)

    def booking_horizon(self, now: datetime) -> datetime:
        return now + timedelta(days=self.advance_booking_days)

    def rejection_reason(self, start: datetime, now: datetime) -> Optional[str]:
        """Почему на это время нельзя записаться; None - можно"""
        if start > self.booking_horizon(now):
            return f"Запись возможна не более чем на {self.advance_booking_days} дней вперёд"
        return self.closed_reason(start.date())


def policy_from_config() -> SchedulingPolicy:
    return SchedulingPolicy(
        buffer_minutes=config.BUFFER_MINUTES,
        advance_booking_days=config.ADVANCE_BOOKING_DAYS,
        blocked_dates=config.BLOCKED_DATES,
        holiday_dates=config.HOLIDAY_DATES,
        max_reschedules=config.MAX_RESCHEDULES_PER_BOOKING,
        max_alternatives=config.MAX_ALTERNATIVE_SLOTS,
        alternative_search_days=config.ALTERNATIVE_SEARCH_DAYS,
    )


class AppointmentRepository:
    """Хранилище записей всех броней (внешний коллаборатор)"""

    def find_overlapping(
        self,
        start: datetime,
        duration: int,
        exclude_booking_id: Optional[str] = None,
    ) -> List[AppointmentInfo]:
        raise NotImplementedError

    def save(self, booking_id: str, appointment: AppointmentInfo) -> None:
        raise NotImplementedError

    def transaction(self):
        """Контекстный менеджер, который держится на всё время "проверка + вставка" """
        raise NotImplementedError


class InMemoryAppointmentRepository(AppointmentRepository):
    def __init__(self):
        self._appointments: Dict[str, Tuple[str, AppointmentInfo]] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def save(self, booking_id: str, appointment: AppointmentInfo) -> None:
        with self._lock:
            self._appointments[appointment.id] = (booking_id, appointment.model_copy(deep=True))

    def get(self, appointment_id: str) -> Optional[AppointmentInfo]:
        with self._lock:
            entry = self._appointments.get(appointment_id)
            return entry[1].model_copy(deep=True) if entry else None

    def find_overlapping(
        self,
        start: datetime,
        duration: int,
        exclude_booking_id: Optional[str] = None,
    ) -> List[AppointmentInfo]:
        with self._lock:
            snapshot = list(self._appointments.values())

        result = []
        for booking_id, appointment in snapshot:
            if exclude_booking_id is not None and booking_id == exclude_booking_id:
                continue
            if not appointment.is_active:
                continue
            if intervals_overlap(start, duration, appointment.scheduled_date, appointment.duration):
                result.append(appointment.model_copy(deep=True))
        result.sort(key=lambda a: a.scheduled_date)
        return result


class ConflictChecker:
    """Ищет пересечения с существующими активными записями; ничего не меняет"""

    def __init__(self, repository: AppointmentRepository, policy: Optional[SchedulingPolicy] = None):
        self.repository = repository
        self.policy = policy or policy_from_config()

    def find_conflicts(
        self,
        proposed_start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> List[AppointmentInfo]:
        if duration_minutes <= 0:
            return []
        candidates = self.repository.find_overlapping(
            proposed_start, duration_minutes, exclude_booking_id
        )
        # репозиторий может вернуть лишнее - перепроверяем по правилу полуоткрытых интервалов
        conflicts = [
            a
            for a in candidates
            if a.is_active
            and intervals_overlap(proposed_start, duration_minutes, a.scheduled_date, a.duration)
        ]
        if conflicts:
            logger.info(
                "appointment_conflicts_found",
                extra={
                    "proposed_start": proposed_start.isoformat(),
                    "duration": duration_minutes,
                    "conflicts": [a.id for a in conflicts],
                },
            )
        return conflicts

    def available_time_slots(
        self,
        day: date,
        duration: int,
        now: Optional[datetime] = None,
        tzinfo=None,
        exclude_booking_id: Optional[str] = None,
    ) -> List[TimeSlot]:
        if duration <= 0:
            raise ValueError("Длительность слота должна быть положительной")

        policy = self.policy
        closed = policy.closed_reason(day)
        if closed:
            logger.info("no_slots_for_day", extra={"day": day.isoformat(), "reason": closed})
            return []

        hours = policy.hours_for(day)
        length = timedelta(minutes=duration)
        step = timedelta(minutes=duration + policy.buffer_minutes)
        buffer = timedelta(minutes=policy.buffer_minutes)
        breaks = [
            (
                datetime.combine(day, b.start, tzinfo=tzinfo),
                datetime.combine(day, b.end, tzinfo=tzinfo),
            )
            for b in hours.breaks
        ]
        horizon = policy.booking_horizon(now) if now is not None else None

        slots: List[TimeSlot] = []
        start = datetime.combine(day, hours.open_time, tzinfo=tzinfo)
        close = datetime.combine(day, hours.close_time, tzinfo=tzinfo)
        while start + length <= close:
            end = start + length
            blocking_break = next((b for b in breaks if start < b[1] and end > b[0]), None)
            if blocking_break is not None:
                start = blocking_break[1]
                continue

            reason = None
            if now is not None and start < now:
                reason = "Время уже прошло"
            elif horizon is not None and start > horizon:
                reason = "Слишком далеко для записи"
            elif self.find_conflicts(
                start - buffer, duration + 2 * policy.buffer_minutes, exclude_booking_id
            ):
                reason = "Пересекается с существующей записью"
            slots.append(TimeSlot(start_time=start, end_time=end, available=reason is None, reason=reason))
            start += step
        return slots

    def suggest_alternatives(
        self,
        from_day: date,
        duration: int,
        now: Optional[datetime] = None,
        tzinfo=None,
        exclude_booking_id: Optional[str] = None,
    ) -> List[TimeSlot]:
        """Первые свободные слоты начиная с from_day"""
        limit = self.policy.max_alternatives
        found: List[TimeSlot] = []
        if duration <= 0 or limit == 0:
            return found
        for offset in range(self.policy.alternative_search_days):
            day = from_day + timedelta(days=offset)
            for slot in self.available_time_slots(day, duration, now, tzinfo, exclude_booking_id):
                if slot.available:
                    found.append(slot)
                    if len(found) >= limit:
                        return found
        return found
