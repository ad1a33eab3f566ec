"""
Часы и генератор идентификаторов для броней, платежей и записей
"""
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional


def ensure_aware(value: datetime) -> datetime:
    """Наивное время считаем UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Clock:
    """Монотонные (неубывающие) UTC-метки времени и уникальные id"""

    def __init__(self):
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def _utcnow(self) -> datetime:
        return datetime.now(timezone.utc)

    def now(self) -> datetime:
        with self._lock:
            current = self._utcnow()
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
            return current

    def new_id(self, prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex}"


system_clock = Clock()
