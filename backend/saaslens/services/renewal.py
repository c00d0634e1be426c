"""Renewal estimation from transaction history.

Billing cadence is inferred from the mean gap between charges; the next
renewal is projected forward from the charge history until it lands in the
future.

Known limitation: the cadence classifier uses the plain mean gap with no
outlier rejection, so one missed or doubled charge in a short history can
move a vendor into the wrong bucket.

Annual renewals are placed 11 months after the first charge
(not 12) so there is a month of lead time to negotiate before the contract
actually rolls over.
"""

import calendar
import math
from datetime import datetime
from typing import Literal, Optional, Sequence

from ..schemas import RenewalInfo, UrgencyLabel

Frequency = Literal["monthly", "quarterly", "annual", "one-time"]

_MONTHLY_MAX_DAYS = 45
_QUARTERLY_MAX_DAYS = 120
_ANNUAL_MAX_DAYS = 400
_ANNUAL_LEAD_MONTHS = 11
URGENT_WINDOW_DAYS = 30

_SECONDS_PER_DAY = 86400


class NoTransactionsError(ValueError):
    """Raised when renewal info is requested for an empty date series."""


# ─────────────────────────────────────────────────────────────────────────────
# Calendar arithmetic
# ─────────────────────────────────────────────────────────────────────────────


def add_months(dt: datetime, months: int) -> datetime:
    """Shift *dt* by whole months, clamping the day to the target month's end.

    Jan 31 + 1 month → Feb 28 (or 29).
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


# ─────────────────────────────────────────────────────────────────────────────
# Frequency detection
# ─────────────────────────────────────────────────────────────────────────────


def detect_frequency(dates: Sequence[datetime]) -> Frequency:
    """Classify billing cadence from charge dates.

    Fewer than two dates → "monthly" (the common case for SaaS).
    Otherwise by mean gap: ≤45d monthly, ≤120d quarterly, ≤400d annual,
    anything longer one-time.
    """
    if len(dates) < 2:
        return "monthly"

    ordered = sorted(dates)
    total_days = sum(
        (later - earlier).total_seconds() / _SECONDS_PER_DAY
        for earlier, later in zip(ordered, ordered[1:])
    )
    avg_days = total_days / (len(ordered) - 1)

    if avg_days <= _MONTHLY_MAX_DAYS:
        return "monthly"
    if avg_days <= _QUARTERLY_MAX_DAYS:
        return "quarterly"
    if avg_days <= _ANNUAL_MAX_DAYS:
        return "annual"
    return "one-time"


# ─────────────────────────────────────────────────────────────────────────────
# Renewal projection
# ─────────────────────────────────────────────────────────────────────────────


def _step_forward(anchor: datetime, first_offset: int, step: int, now: datetime) -> datetime:
    """anchor + first_offset months, then + step months at a time until ≥ now.

    Each candidate is computed from the anchor so month-end clamping never
    accumulates drift (Jan 31 → Feb 28 → Mar 31, not Mar 28).
    """
    offset = first_offset
    candidate = add_months(anchor, offset)
    while candidate < now:
        offset += step
        candidate = add_months(anchor, offset)
    return candidate


def calculate_renewal_date(
    last_date: datetime,
    frequency: Frequency,
    first_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """Project the next renewal date on or after *now*.

    monthly / quarterly – 1 / 3 months after the last charge, rolled forward
    annual              – 11 months after the first charge (last charge when
                          no first is given), rolled forward by whole years
    one-time            – the last charge itself; no projection
    """
    now = now or datetime.now()

    if frequency == "monthly":
        return _step_forward(last_date, 1, 1, now)
    if frequency == "quarterly":
        return _step_forward(last_date, 3, 3, now)
    if frequency == "annual":
        anchor = first_date if first_date is not None else last_date
        return _step_forward(anchor, _ANNUAL_LEAD_MONTHS, 12, now)
    return last_date


def days_until(target: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.now()
    return math.ceil((target - now).total_seconds() / _SECONDS_PER_DAY)


def get_renewal_info(
    dates: Sequence[datetime],
    frequency: Optional[Frequency] = None,
    now: Optional[datetime] = None,
) -> RenewalInfo:
    """Frequency, projected renewal date and urgency for a charge history."""
    if not dates:
        raise NoTransactionsError("At least one transaction date is required")

    now = now or datetime.now()
    ordered = sorted(dates)
    first_date, last_date = ordered[0], ordered[-1]

    detected = frequency or detect_frequency(ordered)
    renewal_date = calculate_renewal_date(last_date, detected, first_date, now=now)
    remaining = days_until(renewal_date, now)

    return RenewalInfo(
        frequency=detected,
        renewal_date=renewal_date,
        days_until_renewal=remaining,
        is_urgent=0 < remaining <= URGENT_WINDOW_DAYS,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Display helpers
# ─────────────────────────────────────────────────────────────────────────────


def get_urgency_label(days_until_renewal: int) -> UrgencyLabel:
    """Bucket days-until-renewal into a UI tier (upper bounds inclusive)."""
    if days_until_renewal <= 0:
        return UrgencyLabel(label="Overdue", color="gray")

    label = f"{days_until_renewal} days"
    if days_until_renewal <= 7:
        color = "red"
    elif days_until_renewal <= 14:
        color = "orange"
    elif days_until_renewal <= 30:
        color = "yellow"
    elif days_until_renewal <= 90:
        color = "green"
    else:
        color = "gray"
    return UrgencyLabel(label=label, color=color)


def format_renewal_date(dt: datetime) -> str:
    """Short display form, e.g. Dec 15, 2024."""
    return f"{dt.strftime('%b')} {dt.day}, {dt.year}"


def frequency_to_billing_cycle(frequency: Frequency) -> Optional[str]:
    return {
        "monthly": "monthly",
        "quarterly": "quarterly",
        "annual": "yearly",
    }.get(frequency)
