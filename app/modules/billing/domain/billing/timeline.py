"""
Cadence and timeline arithmetic.

Pure functions. All offsets are absolute days in UTC, never calendar months,
so a monthly period is always 30 days long regardless of the month.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional


class SubscriptionCadence(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


TRIAL_DURATION_DAYS = 14
PERIOD_DURATION_DAYS = {
    SubscriptionCadence.MONTHLY: 30,
    SubscriptionCadence.ANNUAL: 365,
}
GRACE_DURATION_DAYS = {
    SubscriptionCadence.MONTHLY: 7,
    SubscriptionCadence.ANNUAL: 30,
}

_CADENCE_ALIASES = {
    "monthly": SubscriptionCadence.MONTHLY,
    "mensal": SubscriptionCadence.MONTHLY,
    "month": SubscriptionCadence.MONTHLY,
    "annual": SubscriptionCadence.ANNUAL,
    "anual": SubscriptionCadence.ANNUAL,
    "yearly": SubscriptionCadence.ANNUAL,
    "annually": SubscriptionCadence.ANNUAL,
    "year": SubscriptionCadence.ANNUAL,
}


@dataclass(frozen=True)
class BillingPeriod:
    start: datetime
    end: datetime


def parse_cadence(value: Any) -> Optional[SubscriptionCadence]:
    if isinstance(value, SubscriptionCadence):
        return value
    if not isinstance(value, str):
        return None
    return _CADENCE_ALIASES.get(value.strip().lower())


def cadence_from_cycle(cycle: Any) -> SubscriptionCadence:
    """Map a gateway subscription cycle to a cadence (default monthly)."""
    if isinstance(cycle, str) and cycle.strip().upper() in {
        "ANNUAL",
        "ANNUALLY",
        "YEARLY",
    }:
        return SubscriptionCadence.ANNUAL
    return SubscriptionCadence.MONTHLY


def calculate_trial_end(start: datetime) -> datetime:
    return start + timedelta(days=TRIAL_DURATION_DAYS)


def calculate_billing_period(
    start: datetime, cadence: SubscriptionCadence
) -> BillingPeriod:
    return BillingPeriod(
        start=start, end=start + timedelta(days=PERIOD_DURATION_DAYS[cadence])
    )


def calculate_grace_deadline(
    period_end: datetime, cadence: SubscriptionCadence
) -> datetime:
    return period_end + timedelta(days=GRACE_DURATION_DAYS[cadence])
