"""
Конфигурация Booking Service
"""
import os

PORT = int(os.getenv("PORT", 5001))

# Платежи
PAYMENT_ENV = os.getenv("PAYMENT_ENV", "mock").lower()
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "stripe")
# Таймаут обращения к платежному шлюзу (в секундах)
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", 10))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")

# Уведомления
ENABLE_NOTIFICATIONS = os.getenv("ENABLE_NOTIFICATIONS", "true").lower() == "true"
MESSAGE_BROKER_URL = os.getenv("MESSAGE_BROKER_URL", "http://localhost:5050/broker")

# Хранилище: пусто -> в памяти
BOOKING_STORE_DIR = os.getenv("BOOKING_STORE_DIR", "")

# Автосохранение (в секундах)
AUTOSAVE_ENABLED = os.getenv("AUTOSAVE_ENABLED", "true").lower() == "true"
AUTOSAVE_INTERVAL = float(os.getenv("AUTOSAVE_INTERVAL", 30))

# Расписание: буфер между записями (в минутах), горизонт записи (в днях)
BUFFER_MINUTES = int(os.getenv("BUFFER_MINUTES", 15))
ADVANCE_BOOKING_DAYS = int(os.getenv("ADVANCE_BOOKING_DAYS", 60))
MAX_RESCHEDULES_PER_BOOKING = int(os.getenv("MAX_RESCHEDULES_PER_BOOKING", 3))
MAX_ALTERNATIVE_SLOTS = int(os.getenv("MAX_ALTERNATIVE_SLOTS", 3))
# Сколько дней вперёд искать альтернативы при конфликте
ALTERNATIVE_SEARCH_DAYS = int(os.getenv("ALTERNATIVE_SEARCH_DAYS", 7))
# Даты через запятую в формате YYYY-MM-DD
BLOCKED_DATES = [d.strip() for d in os.getenv("BLOCKED_DATES", "").split(",") if d.strip()]
HOLIDAY_DATES = [d.strip() for d in os.getenv("HOLIDAY_DATES", "").split(",") if d.strip()]

DEFAULT_APPOINTMENT_DURATION = 60
