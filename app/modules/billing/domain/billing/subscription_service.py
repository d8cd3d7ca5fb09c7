"""
Durable subscription timeline mutations.

Used by the webhook handler (payment, overdue), the gateway subscription
flow, cancellation and manual provisioning. Every mutation locks the company
row first. Only `provision_company_subscription` commits; the others run
inside the caller's transaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.company import Company
from app.models.plan import Plan
from app.shared.core.exceptions import ResourceNotFoundError, ValidationError

from . import asaas_shared as shared
from .identifiers import ensure_utc, to_datetime
from .subscription_state import (
    CompanySubscriptionSnapshot,
    ResolvedSubscription,
    SubscriptionStatus,
    resolve_subscription_payload,
)
from .timeline import (
    SubscriptionCadence,
    calculate_billing_period,
    calculate_grace_deadline,
    calculate_trial_end,
    parse_cadence,
)

PROVISIONABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def lock_company(db: AsyncSession, company_id: int) -> Optional[Company]:
    """Load a company row with `SELECT ... FOR UPDATE` (ignored by SQLite)."""
    result = await db.execute(
        select(Company).where(Company.id == company_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def fetch_company_subscription(
    db: AsyncSession, company_id: int, now: Optional[datetime] = None
) -> ResolvedSubscription:
    result = await db.execute(select(Company).where(Company.id == company_id))
    company = result.scalar_one_or_none()
    if company is None:
        raise ResourceNotFoundError(
            "Company not found", details={"company_id": company_id}
        )
    snapshot = CompanySubscriptionSnapshot.from_company(company)
    return resolve_subscription_payload(snapshot, now or _now())


def _positive(value: Optional[Decimal]) -> bool:
    return value is not None and value > 0


async def resolve_plan_cadence(
    db: AsyncSession,
    plan_id: int,
    preferred: Optional[SubscriptionCadence] = None,
) -> SubscriptionCadence:
    """
    A plan priced for a single cadence forces it; otherwise the preference
    wins, then monthly.
    """
    plan = await db.get(Plan, plan_id)
    if plan is None:
        raise ResourceNotFoundError("Plan not found", details={"plan_id": plan_id})

    has_monthly = _positive(plan.valor_mensal)
    has_annual = _positive(plan.valor_anual)
    if has_monthly and not has_annual:
        return SubscriptionCadence.MONTHLY
    if has_annual and not has_monthly:
        return SubscriptionCadence.ANNUAL
    return preferred or SubscriptionCadence.MONTHLY


async def _effective_cadence(
    db: AsyncSession, company: Company, hint: Optional[SubscriptionCadence]
) -> SubscriptionCadence:
    """Hint, then the stored cadence, then whatever the company plan allows."""
    if hint:
        return hint
    stored = parse_cadence(company.subscription_cadence)
    if stored:
        return stored
    if company.plano is not None:
        try:
            return await resolve_plan_cadence(db, company.plano)
        except ResourceNotFoundError:
            pass
    return SubscriptionCadence.MONTHLY


def is_stale_event(company: Company, event_at: Optional[datetime]) -> bool:
    """True when a newer gateway event was already applied to this company."""
    if event_at is None or company.last_billing_event_at is None:
        return False
    return ensure_utc(event_at) < ensure_utc(company.last_billing_event_at)


def _mark_event(company: Company, event_at: Optional[datetime]) -> None:
    if event_at is None:
        return
    current = to_datetime(company.last_billing_event_at)
    if current is None or ensure_utc(event_at) > current:
        company.last_billing_event_at = ensure_utc(event_at)


async def _lock_for_event(
    db: AsyncSession, company_id: int, event_at: Optional[datetime], action: str
) -> Optional[Company]:
    company = await lock_company(db, company_id)
    if company is None:
        shared.logger.warning(
            "subscription_company_not_found", company_id=company_id, action=action
        )
        return None
    if is_stale_event(company, event_at):
        shared.logger.info(
            "subscription_event_out_of_order_skipped",
            company_id=company_id,
            action=action,
            event_at=event_at.isoformat() if event_at else None,
            last_applied_at=str(company.last_billing_event_at),
        )
        return None
    return company


async def apply_subscription_payment(
    db: AsyncSession,
    company_id: int,
    payment_date: datetime,
    cadence_hint: Optional[SubscriptionCadence] = None,
    event_at: Optional[datetime] = None,
) -> Optional[Company]:
    """Roll the timeline forward from a confirmed payment."""
    company = await _lock_for_event(db, company_id, event_at, "payment")
    if company is None:
        return None

    cadence = await _effective_cadence(db, company, cadence_hint)
    period = calculate_billing_period(ensure_utc(payment_date), cadence)
    company.current_period_start = period.start
    company.current_period_end = period.end
    company.grace_expires_at = calculate_grace_deadline(period.end, cadence)
    company.trial_started_at = None
    company.trial_ends_at = None
    company.ativo = True
    company.subscription_cadence = cadence.value
    _mark_event(company, event_at)
    await db.flush()

    shared.logger.info(
        "subscription_payment_applied",
        company_id=company_id,
        cadence=cadence.value,
        period_end=period.end.isoformat(),
    )
    return company


async def apply_subscription_overdue(
    db: AsyncSession,
    company_id: int,
    cadence_hint: Optional[SubscriptionCadence] = None,
    event_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Optional[Company]:
    """Extend the grace deadline from the current period end (or now)."""
    company = await _lock_for_event(db, company_id, event_at, "overdue")
    if company is None:
        return None

    cadence = await _effective_cadence(db, company, cadence_hint)
    base = to_datetime(company.current_period_end) or ensure_utc(now or _now())
    company.grace_expires_at = calculate_grace_deadline(base, cadence)
    if company.current_period_end is None:
        company.current_period_end = base
    if not company.subscription_cadence:
        company.subscription_cadence = cadence.value
    _mark_event(company, event_at)
    await db.flush()

    shared.logger.info(
        "subscription_overdue_applied",
        company_id=company_id,
        grace_expires_at=company.grace_expires_at.isoformat(),
    )
    return company


async def apply_subscription_cancellation(
    db: AsyncSession, company_id: int
) -> Optional[Company]:
    """Null the timeline and the gateway subscription link. The row stays."""
    company = await lock_company(db, company_id)
    if company is None:
        shared.logger.warning(
            "subscription_company_not_found", company_id=company_id, action="cancel"
        )
        return None

    company.trial_started_at = None
    company.trial_ends_at = None
    company.current_period_start = None
    company.current_period_end = None
    company.grace_expires_at = None
    company.asaas_subscription_id = None
    company.ativo = False
    await db.flush()

    shared.logger.info("subscription_cancelled", company_id=company_id)
    return company


async def apply_gateway_subscription(
    db: AsyncSession,
    company_id: int,
    subscription_id: str,
    trial_start: Optional[datetime],
    trial_end: Optional[datetime],
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    grace_end: Optional[datetime],
    cadence: SubscriptionCadence,
) -> Company:
    """Persist the link and timeline extracted from a gateway subscription."""
    company = await lock_company(db, company_id)
    if company is None:
        raise ResourceNotFoundError(
            "Company not found", details={"company_id": company_id}
        )

    company.asaas_subscription_id = subscription_id
    company.subscription_cadence = cadence.value
    company.trial_started_at = trial_start
    company.trial_ends_at = trial_end
    company.current_period_start = period_start
    company.current_period_end = period_end
    company.grace_expires_at = grace_end
    company.ativo = True
    await db.flush()
    return company


async def provision_company_subscription(
    db: AsyncSession,
    company_id: int,
    plan_id: int,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    start_date: Optional[datetime] = None,
    cadence: Optional[SubscriptionCadence] = None,
) -> ResolvedSubscription:
    """
    Manually provision a company on a plan.

    `trialing` opens a trial window only; `active` opens a billing period
    with its grace deadline.
    """
    if status not in PROVISIONABLE_STATUSES:
        raise ValidationError(
            "status must be 'active' or 'trialing'", details={"status": str(status)}
        )

    start = ensure_utc(start_date or _now())
    resolved_cadence = await resolve_plan_cadence(db, plan_id, cadence)

    company = await lock_company(db, company_id)
    if company is None:
        raise ResourceNotFoundError(
            "Company not found", details={"company_id": company_id}
        )

    company.plano = plan_id
    company.ativo = True
    company.subscription_cadence = resolved_cadence.value
    if status == SubscriptionStatus.TRIALING:
        company.trial_started_at = start
        company.trial_ends_at = calculate_trial_end(start)
        company.current_period_start = None
        company.current_period_end = None
        company.grace_expires_at = None
    else:
        period = calculate_billing_period(start, resolved_cadence)
        company.trial_started_at = None
        company.trial_ends_at = None
        company.current_period_start = period.start
        company.current_period_end = period.end
        company.grace_expires_at = calculate_grace_deadline(period.end, resolved_cadence)

    await db.commit()
    shared.logger.info(
        "subscription_provisioned",
        company_id=company_id,
        plan_id=plan_id,
        status=status.value,
        cadence=resolved_cadence.value,
    )
    return resolve_subscription_payload(
        CompanySubscriptionSnapshot.from_company(company), _now()
    )
