# Работа со временем: внутри только aware-UTC, местное время магазина только на границе API.
from datetime import datetime, UTC
from zoneinfo import ZoneInfo

from config import STORE_TIMEZONE
from errors import ValidationError

store_tz = ZoneInfo(STORE_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_utc(value: datetime | None) -> datetime | None:
    """
    Приводит время от клиента к UTC.
    Наивное значение считается временем магазина (STORE_TIMEZONE).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=store_tz)
    return value.astimezone(UTC)


def parse_client_datetime(raw: str | None) -> datetime | None:
    """Разбирает ISO-строку из формы. Пустая строка означает 'не задано'."""
    if raw is None or not raw.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        raise ValidationError(f"Некорректная дата: {raw}")
    return to_utc(parsed)


def to_store_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(store_tz)
