"""
Схема данных для записей (appointments) и слотов
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from enum import Enum

from schemas.common import OperationResult


def _utc_if_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"


class LocationType(str, Enum):
    STUDIO = "studio"
    CLIENT_LOCATION = "client-location"
    ONLINE = "online"
    VENUE = "venue"


class Initiator(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"


class RescheduleEntry(BaseModel):
    original_date: datetime
    new_date: datetime
    reason: str
    initiated_by: Initiator
    timestamp: datetime


class AppointmentInfo(BaseModel):
    id: str
    scheduled_date: datetime
    duration: int = Field(ge=0)  # в минутах
    location: str = "TBD"
    location_type: LocationType = LocationType.STUDIO
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    reminders_sent: List[str] = Field(default_factory=list)
    reschedule_history: List[RescheduleEntry] = Field(default_factory=list)
    meeting_link: Optional[str] = None
    calendar_invite_id: Optional[str] = None

    @field_validator("scheduled_date")
    @classmethod
    def aware_scheduled_date(cls, value: datetime) -> datetime:
        return _utc_if_naive(value)

    @property
    def end_date(self) -> datetime:
        return self.scheduled_date + timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED


class AppointmentProposal(BaseModel):
    """Запрос на запись: время, длительность и место"""

    scheduled_date: datetime
    # None - длительность по типу услуги
    duration: Optional[int] = Field(default=None, ge=0)
    location: str = "TBD"
    location_type: LocationType = LocationType.STUDIO
    meeting_link: Optional[str] = None

    @field_validator("scheduled_date")
    @classmethod
    def aware_scheduled_date(cls, value: datetime) -> datetime:
        return _utc_if_naive(value)


class TimeSlot(BaseModel):
    start_time: datetime
    end_time: datetime
    available: bool
    reason: Optional[str] = None


class AppointmentResult(OperationResult):
    appointment: Optional[AppointmentInfo] = None
    conflicting_appointments: List[AppointmentInfo] = Field(default_factory=list)
    alternatives: List[TimeSlot] = Field(default_factory=list)
