"""Time parsing and calculations for the scheduling domain"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ...config import BUSINESS_TIMEZONE
from ...shared.validators import validate_hhmm


def business_tz() -> ZoneInfo:
    return ZoneInfo(BUSINESS_TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_hhmm(value: str) -> int:
    """'09:30' -> 570 minutes since midnight"""
    hours, minutes = validate_hhmm(value).split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    """570 -> '09:30'"""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def appointment_start(day: date, time_str: str, tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Aware start datetime of an appointment.

    Appointment dates are civil dates with no zone attached; they are always
    read in the business time zone.
    """
    minutes = parse_hhmm(time_str)
    naive = datetime(day.year, day.month, day.day) + timedelta(minutes=minutes)
    return naive.replace(tzinfo=tz or business_tz())


def appointment_end(day: date, time_str: str, duration_minutes: int) -> datetime:
    return appointment_start(day, time_str) + timedelta(minutes=duration_minutes)


def local_today(now: datetime) -> date:
    return now.astimezone(business_tz()).date()


def local_minutes(now: datetime) -> int:
    local = now.astimezone(business_tz())
    return local.hour * 60 + local.minute


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Overlap of half-open [start, end) intervals; a zero-length interval acts as a point"""
    if start_a == start_b:
        return True
    return start_a < max(end_b, start_b + 1) and start_b < max(end_a, start_a + 1)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last civil date of a month"""
    first = date(year, month, 1)
    if month == 12:
        next_first = date(year + 1, 1, 1)
    else:
        next_first = date(year, month + 1, 1)
    return first, next_first - timedelta(days=1)
