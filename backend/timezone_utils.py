"""
Timezone utilities for tenant-aware date/time handling.

Visit timestamps are stored as naive UTC. Reports bucket them by the
tenant's local calendar, so a visit at 01:00 Istanbul time on the 1st
belongs to that month even though it is still the previous day in UTC.
"""
from datetime import datetime, date, timedelta
from typing import Tuple
import pytz

from config import settings
from errors import ValidationError


def get_tenant_timezone(tenant_timezone: str = settings.DEFAULT_TIMEZONE) -> pytz.BaseTzInfo:
    """
    Get pytz timezone object for tenant.

    Falls back to UTC when the name is unknown.
    """
    try:
        return pytz.timezone(tenant_timezone)
    except pytz.exceptions.UnknownTimeZoneError:
        return pytz.UTC


def _local_range_to_utc(tz, start: date, end_exclusive: date) -> Tuple[datetime, datetime]:
    local_start = tz.localize(datetime.combine(start, datetime.min.time()))
    local_end = tz.localize(datetime.combine(end_exclusive, datetime.min.time())) - timedelta(microseconds=1)
    start_utc = local_start.astimezone(pytz.UTC).replace(tzinfo=None)
    end_utc = local_end.astimezone(pytz.UTC).replace(tzinfo=None)
    return start_utc, end_utc


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last calendar day of a month."""
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")
    first = date(year, month, 1)
    next_first = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return first, next_first - timedelta(days=1)


def get_month_window(year: int, month: int, tenant_timezone: str = settings.DEFAULT_TIMEZONE) -> Tuple[datetime, datetime]:
    """
    Naive UTC bounds (inclusive) of a month in the tenant's local time.

    Example:
        For Istanbul (UTC+3), March 2025:
        - Returns: 2025-02-28 21:00 UTC to 2025-03-31 20:59:59.999999 UTC
    """
    first, last = month_bounds(year, month)
    return _local_range_to_utc(get_tenant_timezone(tenant_timezone), first, last + timedelta(days=1))


def get_year_window(year: int, tenant_timezone: str = settings.DEFAULT_TIMEZONE) -> Tuple[datetime, datetime]:
    """Naive UTC bounds (inclusive) of a calendar year in the tenant's local time."""
    return _local_range_to_utc(get_tenant_timezone(tenant_timezone), date(year, 1, 1), date(year + 1, 1, 1))


def utc_to_tenant_date(utc_datetime: datetime, tenant_timezone: str = settings.DEFAULT_TIMEZONE) -> date:
    """
    Convert UTC datetime to date in tenant's timezone.

    Used for grouping visits by day and month in reports.
    """
    tz = get_tenant_timezone(tenant_timezone)

    if utc_datetime.tzinfo is None:
        utc_datetime = utc_datetime.replace(tzinfo=pytz.UTC)

    return utc_datetime.astimezone(tz).date()
