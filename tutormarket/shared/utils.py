"""Shared utility functions."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CENT = Decimal("0.01")


def utc_now() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalize datetime to UTC timezone."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def quantize_money(value: Decimal) -> Decimal:
    """Round a money amount to cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: Decimal) -> int:
    """Convert a major-unit amount to integer cents."""
    return int(quantize_money(value) * 100)


def from_minor_units(value: int) -> Decimal:
    return (Decimal(value) / 100).quantize(CENT)


def session_start_utc(session_date: date, start_time: time, tz_name: str | None) -> datetime:
    """Combine local session date/time in the tutor timezone and convert to UTC."""
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except ZoneInfoNotFoundError:
        tz = ZoneInfo("UTC")
    return datetime.combine(session_date, start_time, tzinfo=tz).astimezone(timezone.utc)
