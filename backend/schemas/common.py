"""
Общие схемы: клиент, адрес и базовый результат операции
"""
from pydantic import BaseModel
from typing import Optional
from enum import Enum


class ContactMethod(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    TEXT = "text"


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str


class CustomerInfo(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    preferred_contact_method: ContactMethod = ContactMethod.EMAIL
    timezone: Optional[str] = None
    address: Optional[Address] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    GATEWAY = "gateway"
    ILLEGAL_TRANSITION = "illegal_transition"
    PERSISTENCE = "persistence"
    NOT_FOUND = "not_found"


class OperationResult(BaseModel):
    """Результат любой операции контроллера: флаг успеха и причина ошибки"""

    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
