"""
Subscription status derivation.

The status is never persisted. It is recomputed from the company's stored
timestamps against an explicit `now` on every read, so trial and grace
expiry take effect without any event arriving. Callers must not cache the
result across writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .identifiers import ensure_utc, to_bool, to_datetime, to_int
from .timeline import SubscriptionCadence, parse_cadence


class SubscriptionStatus(str, Enum):
    INACTIVE = "inactive"
    PENDING = "pending"
    TRIALING = "trialing"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    PAST_DUE = "past_due"


@dataclass(frozen=True)
class CompanySubscriptionSnapshot:
    plan_id: Optional[int] = None
    is_active: Optional[bool] = None
    cadence: Optional[SubscriptionCadence] = None
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    grace_expires_at: Optional[datetime] = None

    @classmethod
    def from_company(cls, company: Any) -> "CompanySubscriptionSnapshot":
        """Build a snapshot from an ORM row (or anything with the same attributes)."""
        return cls(
            plan_id=to_int(getattr(company, "plano", None)),
            is_active=to_bool(getattr(company, "ativo", None)),
            cadence=parse_cadence(getattr(company, "subscription_cadence", None)),
            trial_started_at=to_datetime(getattr(company, "trial_started_at", None)),
            trial_ends_at=to_datetime(getattr(company, "trial_ends_at", None)),
            current_period_start=to_datetime(
                getattr(company, "current_period_start", None)
            ),
            current_period_end=to_datetime(getattr(company, "current_period_end", None)),
            grace_expires_at=to_datetime(getattr(company, "grace_expires_at", None)),
        )


@dataclass(frozen=True)
class ResolvedSubscription:
    plan_id: Optional[int]
    status: SubscriptionStatus
    cadence: Optional[SubscriptionCadence]
    started_at: Optional[datetime]
    trial_ends_at: Optional[datetime]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    grace_expires_at: Optional[datetime]


def resolve_subscription_status(
    snapshot: CompanySubscriptionSnapshot, now: datetime
) -> SubscriptionStatus:
    """First matching rule wins."""
    now = ensure_utc(now)

    if snapshot.plan_id is None or snapshot.is_active is False:
        return SubscriptionStatus.INACTIVE

    if (
        snapshot.trial_started_at is not None
        and snapshot.trial_ends_at is not None
        and now < snapshot.trial_ends_at
    ):
        return SubscriptionStatus.TRIALING

    if (
        snapshot.current_period_start is not None
        and snapshot.current_period_end is not None
        and now <= snapshot.current_period_end
    ):
        return SubscriptionStatus.ACTIVE

    if snapshot.grace_expires_at is not None and now <= snapshot.grace_expires_at:
        return SubscriptionStatus.GRACE_PERIOD

    timestamps = (
        snapshot.trial_started_at,
        snapshot.trial_ends_at,
        snapshot.current_period_start,
        snapshot.current_period_end,
        snapshot.grace_expires_at,
    )
    if all(value is None for value in timestamps):
        return SubscriptionStatus.PENDING

    return SubscriptionStatus.PAST_DUE


def resolve_subscription_payload(
    snapshot: CompanySubscriptionSnapshot, now: datetime
) -> ResolvedSubscription:
    status = resolve_subscription_status(snapshot, now)

    if status == SubscriptionStatus.TRIALING:
        started_at = snapshot.trial_started_at
    elif status == SubscriptionStatus.ACTIVE:
        started_at = snapshot.current_period_start
    else:
        started_at = snapshot.current_period_start or snapshot.trial_started_at

    return ResolvedSubscription(
        plan_id=snapshot.plan_id,
        status=status,
        cadence=snapshot.cadence,
        started_at=started_at,
        trial_ends_at=snapshot.trial_ends_at,
        current_period_start=snapshot.current_period_start,
        current_period_end=snapshot.current_period_end,
        grace_expires_at=snapshot.grace_expires_at,
    )
