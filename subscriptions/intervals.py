"""
Billing interval arithmetic.

Calendar intervals use relativedelta, which clamps to the end of shorter
months (Jan 31 + 1 month is Feb 28, or Feb 29 in a leap year).
"""
from datetime import datetime
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from core.errors import ValidationError

from .models import BillingInterval

# Billing periods per year, for normalizing recurring revenue
PERIODS_PER_YEAR = {
    BillingInterval.DAILY: 365,
    BillingInterval.WEEKLY: 52,
    BillingInterval.MONTHLY: 12,
    BillingInterval.QUARTERLY: 4,
    BillingInterval.YEARLY: 1,
}


def interval_delta(interval: BillingInterval, interval_count: int) -> relativedelta:
    if interval_count < 1:
        raise ValidationError("interval_count must be at least 1")

    if interval == BillingInterval.DAILY:
        return relativedelta(days=interval_count)
    if interval == BillingInterval.WEEKLY:
        return relativedelta(days=7 * interval_count)
    if interval == BillingInterval.MONTHLY:
        return relativedelta(months=interval_count)
    if interval == BillingInterval.QUARTERLY:
        return relativedelta(months=3 * interval_count)
    if interval == BillingInterval.YEARLY:
        return relativedelta(years=interval_count)
    raise ValidationError(f"Unknown billing interval: {interval}")


def advance(start: datetime, interval: BillingInterval, interval_count: int = 1) -> datetime:
    """Return ``start`` moved forward by ``interval_count`` intervals."""
    return start + interval_delta(interval, interval_count)


def monthly_equivalent(amount: Decimal, interval: BillingInterval, interval_count: int = 1) -> Decimal:
    return amount * PERIODS_PER_YEAR[interval] / Decimal(12 * interval_count)
