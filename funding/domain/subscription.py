"""
Recurring contribution schedule.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta

FAILED_CHARGE_RETRY_DELAY = timedelta(days=2)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def get_next_charge_and_period_start_dates(
    status: str,
    interval: str | None,
    created_at: datetime,
    next_period_start: datetime | None = None,
) -> dict:
    """
    Compute when a subscription is charged next.

    ``status`` is ``new`` for a freshly created subscription, ``success`` after
    a charge went through and ``failure`` after a declined charge. New monthly
    subscriptions are moved to the first day of a month, skipping one month
    when the contribution was made after the 15th.
    """
    next_charge_date = next_period_start or created_at
    response = {}

    if status in ("new", "success"):
        if interval == "month":
            next_charge_date = add_months(next_charge_date, 1)
        elif interval == "year":
            next_charge_date = add_months(next_charge_date, 12)

        if status == "new":
            if interval == "month" and next_charge_date.day > 15:
                next_charge_date = add_months(next_charge_date, 1)
            next_charge_date = next_charge_date.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        response["next_period_start"] = next_charge_date
    elif status == "failure":
        next_charge_date = datetime.now(tz=created_at.tzinfo) + FAILED_CHARGE_RETRY_DELAY

    response["next_charge_date"] = next_charge_date
    return response
