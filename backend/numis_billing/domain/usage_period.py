"""
Usage Period Manager

Metering windows for the PMG fetch and AI extraction counters. A window is
rolled only once it has elapsed, so repeated renewal signals inside a live
period never reset usage early.
"""

import calendar
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from numis_billing.domain.subscription import SubscriptionField, format_store_date


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def add_one_month(value: date) -> date:
    """Same day next calendar month, clamped to the last day of that month."""
    year = value.year + (1 if value.month == 12 else 0)
    month = 1 if value.month == 12 else value.month + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def new_usage_period(today: date) -> tuple[date, date]:
    """Default window for a freshly created subscription."""
    return today, add_one_month(today)


def _as_utc_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    # A date-only end is treated as midnight UTC of that day
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def is_period_elapsed(stored_end: Optional[date | datetime], now: datetime) -> bool:
    """True when no window is stored or the stored window is already over."""
    if stored_end is None:
        return True
    return _as_utc_datetime(now) > _as_utc_datetime(stored_end)


def plan_usage_reset(
    stored_end: Optional[date | datetime],
    event_period_end: Optional[datetime],
    now: datetime,
) -> Optional[dict[str, Any]]:
    """
    Decide whether a renewal signal rolls the usage window.

    Args:
        stored_end: usagePeriodEnd currently on the subscription record
        event_period_end: authoritative period end carried by the event
        now: current time

    Returns:
        Record fields to write when the window rolls, otherwise None
    """
    if not is_period_elapsed(stored_end, now):
        return None

    today = _as_utc_datetime(now).date()
    period_end = None
    if event_period_end is not None:
        period_end = _as_utc_datetime(event_period_end).date()
    # The new window must end after today; an event end already in the past
    # (late retry of an old invoice) falls back to one calendar month
    if period_end is None or period_end <= today:
        period_end = add_one_month(today)

    return {
        SubscriptionField.PMG_FETCHES_USED: 0,
        SubscriptionField.AI_EXTRACTIONS_USED: 0,
        SubscriptionField.USAGE_PERIOD_START: format_store_date(today),
        SubscriptionField.USAGE_PERIOD_END: format_store_date(period_end),
    }
