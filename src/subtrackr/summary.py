"""Recurring spending totals across currencies."""

import logging
from collections.abc import Iterable
from decimal import Decimal

from .models import (
    CustomCycle,
    DailyCycle,
    MonthlyCycle,
    SpendingSummary,
    SubscriptionRecord,
    WeeklyCycle,
    YearlyCycle,
)
from .money import Money, RateProvider

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = Decimal(365) / Decimal(12)


def monthly_factor(record: SubscriptionRecord) -> Decimal:
    """How many times per month the record bills, on average."""
    cycle = record.billing_cycle
    if isinstance(cycle, DailyCycle):
        return DAYS_PER_MONTH
    if isinstance(cycle, WeeklyCycle):
        return Decimal(52) / Decimal(12)
    if isinstance(cycle, MonthlyCycle):
        return Decimal(1)
    if isinstance(cycle, YearlyCycle):
        return Decimal(1) / Decimal(12)
    assert isinstance(cycle, CustomCycle)
    return DAYS_PER_MONTH / Decimal(cycle.interval_days)


def monthly_cost(record: SubscriptionRecord) -> Money:
    """The record's cost normalized to one month, in its own currency."""
    return record.cost.multiply(monthly_factor(record))


def spending_summary(
    records: Iterable[SubscriptionRecord],
    rates: RateProvider | None,
    base_currency: str,
) -> SpendingSummary:
    """
    Total the monthly and yearly cost of active records.

    Args:
        records: Subscription records (inactive ones are skipped)
        rates: Provider used to convert into `base_currency`
        base_currency: Currency of the totals

    Returns:
        Totals in the base currency plus per-currency monthly subtotals

    Raises:
        CurrencyConversionError: If a record's currency has no rate
    """
    monthly_total = Money.zero(base_currency)
    by_currency: dict[str, Money] = {}
    active_count = 0

    for record in records:
        if not record.is_active:
            continue
        active_count += 1
        monthly = monthly_cost(record)
        current = by_currency.get(monthly.currency, Money.zero(monthly.currency))
        by_currency[monthly.currency] = current + monthly
        monthly_total = monthly_total.add(monthly, rates)

    logger.debug(f"Summarized {active_count} active subscription(s)")
    return SpendingSummary(
        base_currency=monthly_total.currency,
        monthly_total=monthly_total.quantize(),
        yearly_total=monthly_total.multiply(12).quantize(),
        by_currency={code: money.quantize() for code, money in sorted(by_currency.items())},
        active_count=active_count,
    )
