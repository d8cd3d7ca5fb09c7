"""
Billing API Endpoints - Asaas Integration

Provides:
- POST /integrations/asaas/webhook - Payment event reconciliation
- POST /billing/charges - One gateway charge per financial flow
- POST /billing/plan-payments - Charge a company for a plan
- POST /billing/subscriptions, GET /billing/companies/{id}/subscription
- /billing/asaas/subscriptions/* - Gateway subscription management
"""

import ipaddress
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.billing.api.v1.billing_models import (
    AsaasSubscriptionRequest,
    AsaasSubscriptionResponse,
    CancelSubscriptionResponse,
    ChargeCreateRequest,
    ChargeCreateResponse,
    ChargeResponse,
    FinancialFlowResponse,
    PixQrCodeResponse,
    PlanPaymentRequest,
    PlanPaymentResponse,
    PlanSummary,
    SubscriptionPaymentsResponse,
    SubscriptionProvisionRequest,
    SubscriptionStatusResponse,
    SubscriptionTimelineResponse,
    WebhookAck,
    WebhookSecretResponse,
)
from app.modules.billing.api.v1.billing_ops import (
    build_pix_qr_code,
    load_webhook_secret,
    map_subscription_payments,
    process_asaas_webhook,
    resolve_gateway_integration,
)
from app.modules.billing.domain.billing.asaas_client_impl import AsaasClient
from app.modules.billing.domain.billing.asaas_subscription_service import (
    AsaasSubscriptionService,
)
from app.modules.billing.domain.billing.charge_service import (
    AsaasChargeService,
    ChargeInput,
)
from app.modules.billing.domain.billing.company_resolution import (
    CompanyResolutionChain,
)
from app.modules.billing.domain.billing.plan_payment_service import (
    PlanPaymentInput,
    create_plan_payment,
)
from app.modules.billing.domain.billing.subscription_service import (
    apply_gateway_subscription,
    apply_subscription_cancellation,
    fetch_company_subscription,
    provision_company_subscription,
)
from app.modules.billing.domain.billing.subscription_state import (
    ResolvedSubscription,
    SubscriptionStatus,
)
from app.modules.billing.domain.billing.timeline import parse_cadence
from app.modules.billing.domain.billing.webhook_impl import company_column_cache
from app.shared.core.config import get_settings
from app.shared.core.exceptions import ValidationError
from app.shared.db.session import get_db

logger = structlog.get_logger()
router = APIRouter(tags=["Billing"])


class _SettingsProxy:
    """Lazy settings accessor to avoid stale module-level configuration."""

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)


settings: Any = _SettingsProxy()


def _extract_client_ip(request: Request) -> str:
    """
    Resolve request source IP from X-Forwarded-For.

    Skips `TRUSTED_PROXY_HOPS - 1` valid entries from the right (the hops our
    own proxies appended) and falls back to `request.client.host`.
    """
    fallback = request.client.host if request.client and request.client.host else "unknown"
    xff = request.headers.get("x-forwarded-for", "")
    hops = int(settings.TRUSTED_PROXY_HOPS)
    if not xff or hops <= 0:
        return fallback

    candidates = []
    for raw in (part.strip() for part in xff.split(",")):
        try:
            candidates.append(str(ipaddress.ip_address(raw)))
        except ValueError:
            continue
    if not candidates:
        return fallback
    return candidates[max(len(candidates) - hops, 0)]


def _subscription_response(
    company_id: int, resolved: ResolvedSubscription
) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        company_id=company_id,
        plan_id=resolved.plan_id,
        status=resolved.status.value,
        cadence=resolved.cadence.value if resolved.cadence else None,
        started_at=resolved.started_at,
        trial_ends_at=resolved.trial_ends_at,
        current_period_start=resolved.current_period_start,
        current_period_end=resolved.current_period_end,
        grace_expires_at=resolved.grace_expires_at,
    )


async def _gateway_client(db: AsyncSession, company_id: Optional[int] = None) -> AsaasClient:
    integration = await resolve_gateway_integration(db, company_id)
    return AsaasClient(integration.base_url, integration.access_token)


# ==================== Webhook ====================


@router.post(
    "/integrations/asaas/webhook",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WebhookAck,
)
async def handle_asaas_webhook(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Reconcile an Asaas payment event.

    Always acknowledged with 202; rejected or failed deliveries are logged.
    """
    return await process_asaas_webhook(
        request,
        db,
        settings=settings,
        logger=logger,
        extract_client_ip=_extract_client_ip,
    )


@router.get(
    "/integrations/asaas/credentials/{credential_id}/webhook-secret",
    response_model=WebhookSecretResponse,
)
async def get_webhook_secret(
    credential_id: int, request: Request, db: AsyncSession = Depends(get_db)
) -> Any:
    """Webhook URL, secret and setup steps for one credential."""
    return await load_webhook_secret(
        db, credential_id, request=request, settings=settings
    )


# ==================== Charges ====================


@router.post(
    "/billing/charges",
    status_code=status.HTTP_201_CREATED,
    response_model=ChargeCreateResponse,
)
async def create_charge(
    payload: ChargeCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Create the gateway charge for a financial flow."""
    data = ChargeInput(
        **payload.model_dump(),
        remote_ip=_extract_client_ip(request),
    )
    result = await AsaasChargeService(db).create_charge(data)
    return ChargeCreateResponse(
        charge=ChargeResponse.model_validate(result.charge),
        flow=FinancialFlowResponse.model_validate(result.flow),
    )


@router.post(
    "/billing/plan-payments",
    status_code=status.HTTP_201_CREATED,
    response_model=PlanPaymentResponse,
)
async def create_plan_payment_charge(
    payload: PlanPaymentRequest, db: AsyncSession = Depends(get_db)
) -> Any:
    billing = payload.billing
    result = await create_plan_payment(
        db,
        PlanPaymentInput(
            company_id=payload.company_id,
            plan_id=payload.plan_id,
            pricing_mode=payload.pricing_mode,
            billing_type=payload.payment_method,
            company_name=(billing.company_name if billing else None)
            or payload.company_name,
            document=(billing.document if billing else None)
            or payload.company_document,
            email=(billing.email if billing else None) or payload.billing_email,
            notes=(billing.notes if billing else None) or payload.notes,
            card_token=payload.card_token,
        ),
    )
    return PlanPaymentResponse(
        plan=PlanSummary(
            id=result.plan.id,
            nome=result.plan.nome,
            pricing_mode=result.pricing_mode,
            price=result.price,
        ),
        payment_method=result.billing_type,
        charge=ChargeResponse.model_validate(result.charge.charge),
        flow=FinancialFlowResponse.model_validate(result.charge.flow),
    )


# ==================== Company subscriptions ====================


@router.post(
    "/billing/subscriptions",
    status_code=status.HTTP_201_CREATED,
    response_model=SubscriptionStatusResponse,
)
async def provision_subscription(
    payload: SubscriptionProvisionRequest, db: AsyncSession = Depends(get_db)
) -> Any:
    """Manually put a company on a plan, active or trialing."""
    try:
        requested_status = SubscriptionStatus(payload.status.strip().lower())
    except ValueError as exc:
        raise ValidationError(
            "status must be 'active' or 'trialing'", details={"status": payload.status}
        ) from exc
    cadence = parse_cadence(payload.cadence)
    if payload.cadence and cadence is None:
        raise ValidationError(
            "cadence must be 'monthly' or 'annual'", details={"cadence": payload.cadence}
        )

    resolved = await provision_company_subscription(
        db,
        payload.company_id,
        payload.plan_id,
        status=requested_status,
        start_date=payload.start_date,
        cadence=cadence,
    )
    return _subscription_response(payload.company_id, resolved)


@router.get(
    "/billing/companies/{company_id}/subscription",
    response_model=SubscriptionStatusResponse,
)
async def get_company_subscription(
    company_id: int, db: AsyncSession = Depends(get_db)
) -> Any:
    """Subscription status, recomputed from the stored timeline on every read."""
    resolved = await fetch_company_subscription(db, company_id)
    return _subscription_response(company_id, resolved)


# ==================== Gateway subscriptions ====================


@router.post(
    "/billing/asaas/subscriptions",
    status_code=status.HTTP_201_CREATED,
    response_model=AsaasSubscriptionResponse,
)
async def save_asaas_subscription(
    payload: AsaasSubscriptionRequest, db: AsyncSession = Depends(get_db)
) -> Any:
    """Create (or update, with `subscriptionId`) a gateway subscription."""
    integration = await resolve_gateway_integration(db, payload.company_id)
    body = payload.model_dump(
        by_alias=True,
        exclude_none=True,
        exclude={"company_id", "subscription_id"},
    )
    if payload.subscription_id:
        body["subscription_id"] = payload.subscription_id

    managed = await AsaasSubscriptionService().create_or_update_subscription(
        integration, body
    )
    timeline = managed.timeline
    subscription_id = managed.subscription.get("id") or payload.subscription_id
    if payload.company_id is not None and subscription_id:
        await apply_gateway_subscription(
            db,
            payload.company_id,
            str(subscription_id),
            trial_start=timeline.trial_start,
            trial_end=timeline.trial_end,
            period_start=timeline.current_period_start,
            period_end=timeline.current_period_end,
            grace_end=timeline.grace_period_end,
            cadence=timeline.cadence,
        )
        await db.commit()

    return AsaasSubscriptionResponse(
        subscription=managed.subscription,
        timeline=SubscriptionTimelineResponse(
            trial_start=timeline.trial_start,
            trial_end=timeline.trial_end,
            current_period_start=timeline.current_period_start,
            current_period_end=timeline.current_period_end,
            grace_period_end=timeline.grace_period_end,
            cadence=timeline.cadence.value,
        ),
    )


@router.get("/billing/asaas/subscriptions/{subscription_id}")
async def get_asaas_subscription(
    subscription_id: str, db: AsyncSession = Depends(get_db)
) -> dict[str, Any]:
    client = await _gateway_client(db)
    return await client.get_subscription(subscription_id)


@router.get(
    "/billing/asaas/subscriptions/{subscription_id}/payments",
    response_model=SubscriptionPaymentsResponse,
)
async def list_asaas_subscription_payments(
    subscription_id: str, db: AsyncSession = Depends(get_db)
) -> Any:
    client = await _gateway_client(db)
    response = await client.list_subscription_payments(subscription_id)
    return SubscriptionPaymentsResponse(data=map_subscription_payments(response))


@router.get(
    "/billing/asaas/payments/{payment_id}/pix",
    response_model=PixQrCodeResponse,
)
async def get_asaas_pix_qr_code(
    payment_id: str, db: AsyncSession = Depends(get_db)
) -> Any:
    """PIX copy-and-paste payload and QR image for a payment."""
    client = await _gateway_client(db)
    qr_code = await client.get_payment_pix_qr_code(payment_id)
    charge = await client.get_charge(payment_id)
    return build_pix_qr_code(payment_id, qr_code, charge)


@router.post(
    "/billing/asaas/subscriptions/{subscription_id}/cancel",
    response_model=CancelSubscriptionResponse,
)
async def cancel_asaas_subscription(
    subscription_id: str, db: AsyncSession = Depends(get_db)
) -> Any:
    """Cancel on the gateway, then clear the owning company's timeline."""
    client = await _gateway_client(db)
    subscription = await client.cancel_subscription(subscription_id)

    lookup = {"subscription": subscription_id}
    if isinstance(subscription, dict):
        lookup = {**subscription, **lookup}
    chain = CompanyResolutionChain(db, company_column_cache)
    company_id, _source = await chain.resolve_company_from_payment(lookup)

    if company_id is not None:
        await apply_subscription_cancellation(db, company_id)
        await db.commit()
    else:
        logger.warning(
            "asaas_subscription_cancel_company_unresolved",
            subscription_id=subscription_id,
        )

    return CancelSubscriptionResponse(
        subscription=subscription if isinstance(subscription, dict) else {},
        company_id=company_id,
    )
