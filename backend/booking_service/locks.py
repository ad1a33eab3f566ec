"""
Блокировки на уровне брони: операции над одной бронью выполняются строго по очереди
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)

_LOCKS: Dict[str, threading.RLock] = {}
_REGISTRY_LOCK = threading.Lock()


def _lock_for(booking_id: str) -> threading.RLock:
    with _REGISTRY_LOCK:
        lock = _LOCKS.get(booking_id)
        if lock is None:
            lock = threading.RLock()
            _LOCKS[booking_id] = lock
        return lock


@contextmanager
def booking_lock(booking_id: str) -> Iterator[None]:
    lock = _lock_for(booking_id)
    with lock:
        yield


def try_booking_lock(booking_id: str) -> Optional[threading.RLock]:
    """Неблокирующая попытка захвата; при успехе вызывающий обязан вызвать release() у вернувшейся блокировки"""
    lock = _lock_for(booking_id)
    if not lock.acquire(blocking=False):
        logger.debug("booking_lock_busy", extra={"booking_id": booking_id})
        return None
    return lock


def discard_booking_lock(booking_id: str) -> None:
    """Убрать блокировку брони из реестра (бронь больше не обслуживается)"""
    with _REGISTRY_LOCK:
        _LOCKS.pop(booking_id, None)


def has_booking_lock(booking_id: str) -> bool:
    with _REGISTRY_LOCK:
        return booking_id in _LOCKS
