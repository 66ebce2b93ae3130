"""Renewal date computation for billing cycles.

Everything here is pure: no I/O, no clock reads. Callers pass the date they
want to compute from.
"""

import calendar
from collections.abc import Iterator
from datetime import date, timedelta

from .exceptions import InvalidCycleError
from .models import (
    BillingCycle,
    CustomCycle,
    DailyCycle,
    MonthlyCycle,
    WeeklyCycle,
    YearlyCycle,
)


def validate_cycle(cycle: BillingCycle) -> None:
    """
    Reject cycles that cannot produce renewal dates.

    Raises:
        InvalidCycleError: If interval_days <= 0, day_of_month is outside
                           [1, 31], or a yearly month/day can never occur
    """
    if isinstance(cycle, CustomCycle) and cycle.interval_days <= 0:
        raise InvalidCycleError(
            f"Custom cycle interval must be positive, got {cycle.interval_days}"
        )
    if isinstance(cycle, MonthlyCycle) and not 1 <= cycle.day_of_month <= 31:
        raise InvalidCycleError(
            f"Monthly day_of_month must be in [1, 31], got {cycle.day_of_month}"
        )
    if isinstance(cycle, YearlyCycle):
        if not 1 <= cycle.month <= 12:
            raise InvalidCycleError(
                f"Yearly month must be in [1, 12], got {cycle.month}"
            )
        # 2000 is a leap year, so Feb 29 is accepted and clamped later
        longest = calendar.monthrange(2000, cycle.month)[1]
        if not 1 <= cycle.day <= longest:
            raise InvalidCycleError(
                f"Yearly day must be in [1, {longest}] for month {cycle.month}, "
                f"got {cycle.day}"
            )


def interval_days(cycle: BillingCycle) -> int | None:
    """Fixed length in days for day-based cycles, None for calendar cycles."""
    if isinstance(cycle, DailyCycle):
        return 1
    if isinstance(cycle, WeeklyCycle):
        return 7
    if isinstance(cycle, CustomCycle):
        return cycle.interval_days
    return None


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping `day` to the last day of the month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = month - 1 + months
    return year + index // 12, index % 12 + 1


def next_renewal(cycle: BillingCycle, anchor_date: date, from_date: date) -> date:
    """
    Compute the first renewal strictly after `from_date`.

    Renewals are phase-locked to `anchor_date`, and the result is never
    before it. Monthly and yearly renewals always start from the nominal day,
    so a clamped month does not drag later months with it
    (Jan 31 -> Feb 28 -> Mar 31).

    Args:
        cycle: The billing cycle
        anchor_date: Date establishing the cycle's phase
        from_date: Date to search after

    Returns:
        The next renewal date

    Raises:
        InvalidCycleError: If the cycle is invalid
    """
    validate_cycle(cycle)

    step = interval_days(cycle)
    if step is not None:
        if from_date < anchor_date:
            return anchor_date
        periods = (from_date - anchor_date).days // step + 1
        return anchor_date + timedelta(days=periods * step)

    start = max(from_date, anchor_date - timedelta(days=1))

    if isinstance(cycle, MonthlyCycle):
        year, month = start.year, start.month
        while True:
            candidate = clamp_day(year, month, cycle.day_of_month)
            if candidate > start and candidate >= anchor_date:
                return candidate
            year, month = _add_months(year, month, 1)

    assert isinstance(cycle, YearlyCycle)
    year = start.year
    while True:
        candidate = clamp_day(year, cycle.month, cycle.day)
        if candidate > start and candidate >= anchor_date:
            return candidate
        year += 1


def renewals_between(
    cycle: BillingCycle, anchor_date: date, start: date, end: date
) -> Iterator[date]:
    """Yield every renewal in the half-open range (start, end], in order."""
    current = start
    while True:
        current = next_renewal(cycle, anchor_date, current)
        if current > end:
            return
        yield current


def describe_cycle(cycle: BillingCycle) -> str:
    """Human-readable cycle label."""
    if isinstance(cycle, DailyCycle):
        return "Daily"
    if isinstance(cycle, WeeklyCycle):
        return "Weekly"
    if isinstance(cycle, MonthlyCycle):
        return f"Monthly (day {cycle.day_of_month})"
    if isinstance(cycle, YearlyCycle):
        return f"Yearly ({calendar.month_abbr[cycle.month]} {cycle.day})"
    return f"Every {cycle.interval_days} days"
