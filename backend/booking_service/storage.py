"""
Хранилище броней (ключ-значение)

Ключи: booking_<id>, значения: JSON-байты брони.
"""
import logging
import os
import threading
from typing import Dict, List, Optional

from pydantic import ValidationError

from schemas.booking import Booking

logger = logging.getLogger(__name__)

BOOKING_KEY_PREFIX = "booking_"


class StoreError(Exception):
    """Хранилище недоступно или запись не удалась"""


def booking_key(booking_id: str) -> str:
    if booking_id.startswith(BOOKING_KEY_PREFIX):
        return booking_id
    return f"{BOOKING_KEY_PREFIX}{booking_id}"


class Store:
    """Интерфейс хранилища"""

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def set(self, key: str, value: bytes) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def list_keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class MemoryStore(Store):
    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class FileStore(Store):
    """Один файл на ключ в каталоге"""

    SUFFIX = ".json"

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StoreError(f"Недопустимый ключ: {key!r}")
        return os.path.join(self.directory, key + self.SUFFIX)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Не удалось прочитать {key}: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(f"Не удалось записать {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreError(f"Не удалось удалить {key}: {e}") from e

    def list_keys(self, prefix: str = "") -> List[str]:
        try:
            names = os.listdir(self.directory)
        except OSError as e:
            raise StoreError(f"Каталог хранилища недоступен: {e}") from e
        keys = [n[: -len(self.SUFFIX)] for n in names if n.endswith(self.SUFFIX)]
        return sorted(k for k in keys if k.startswith(prefix))


def serialize_booking(booking: Booking) -> bytes:
    return booking.model_dump_json().encode("utf-8")


def deserialize_booking(raw: bytes) -> Booking:
    return Booking.model_validate_json(raw)


def save_booking(store: Store, booking: Booking) -> None:
    store.set(booking_key(booking.id), serialize_booking(booking))


def load_booking(store: Store, booking_id: str) -> Optional[Booking]:
    raw = store.get(booking_key(booking_id))
    if raw is None:
        return None
    return deserialize_booking(raw)


def load_history(store: Store) -> List[Booking]:
    """Все сохранённые брони, свежие первыми. Битые записи пропускаются с предупреждением."""
    history: List[Booking] = []
    for key in store.list_keys(BOOKING_KEY_PREFIX):
        raw = store.get(key)
        if raw is None:
            continue
        try:
            history.append(deserialize_booking(raw))
        except (ValidationError, ValueError) as e:
            logger.warning("Не удалось загрузить бронь %s из хранилища: %s", key, e)
    history.sort(key=lambda b: b.updated_at, reverse=True)
    return history
