from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
COST_PLACES = Decimal("0.0001")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_bounds(target_date: date) -> tuple[datetime, datetime]:
    starts_at = datetime.combine(target_date, time.min, tzinfo=timezone.utc)
    return starts_at, starts_at + timedelta(days=1)


def month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def cost(value: Decimal) -> Decimal:
    return Decimal(value).quantize(COST_PLACES, rounding=ROUND_HALF_UP)


def safe_percent(part, whole) -> float:
    return round(float(part) * 100.0 / float(whole), 2) if whole else 0.0
