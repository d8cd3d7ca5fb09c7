"""
Plan payment flow.

Charges a company for a plan: makes sure the company exists as a gateway
customer, records a pending financial flow, then creates the gateway charge
through the charge service. The charge carries the company and plan in its
metadata so the webhook can attribute the payment.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.company import Company
from app.models.credential import IntegrationApiKey
from app.models.financial_flow import FLOW_STATUS_PENDING, FinancialFlow
from app.models.plan import Plan
from app.shared.core.config import get_settings
from app.shared.core.exceptions import (
    AsaasApiError,
    IntegrationNotConfiguredError,
    ResourceNotFoundError,
    ValidationError,
)

from . import asaas_shared as shared
from .asaas_client_impl import AsaasClient
from .charge_service import AsaasChargeService, ChargeInput, ChargeResult
from .credential_resolver import (
    ResolvedIntegration,
    normalize_asaas_base_url,
    normalize_environment,
    resolve_asaas_integration,
    resolve_env_integration,
)
from .identifiers import sanitize_digits, sanitize_string, to_decimal
from .timeline import SubscriptionCadence

PRICING_MODE_MONTHLY = "mensal"
PRICING_MODE_ANNUAL = "anual"
BOLETO_DUE_OFFSET_DAYS = 3


@dataclass
class PlanPaymentInput:
    company_id: int
    plan_id: int
    pricing_mode: str
    billing_type: str
    company_name: Optional[str]
    document: Optional[str]
    email: Optional[str]
    notes: Optional[str] = None
    card_token: Optional[str] = None


@dataclass
class PlanPaymentResult:
    plan: Plan
    pricing_mode: str
    price: Decimal
    billing_type: str
    charge: ChargeResult


def parse_pricing_mode(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in {
        PRICING_MODE_ANNUAL,
        SubscriptionCadence.ANNUAL.value,
        "yearly",
    }:
        return PRICING_MODE_ANNUAL
    return PRICING_MODE_MONTHLY


def parse_payment_method(value: Any) -> str:
    if isinstance(value, str):
        normalized = value.strip().upper()
        if normalized in shared.BILLING_TYPES:
            return normalized
        if normalized in {"CARTAO", "CARTÃO", "CARD", "CREDITO", "CRÉDITO"}:
            return "CREDIT_CARD"
    return "PIX"


def resolve_plan_price(plan: Plan, pricing_mode: str) -> Optional[Decimal]:
    raw = plan.valor_anual if pricing_mode == PRICING_MODE_ANNUAL else plan.valor_mensal
    return to_decimal(raw)


def build_charge_description(plan: Plan, pricing_mode: str) -> str:
    name = sanitize_string(plan.nome) or f"Plano {plan.id}"
    return f"Assinatura {name} ({pricing_mode})"


def resolve_due_date(billing_type: str, today: Optional[date] = None) -> date:
    due = today or datetime.now(timezone.utc).date()
    if billing_type == "BOLETO":
        due += timedelta(days=BOLETO_DUE_OFFSET_DAYS)
    return due


async def resolve_plan_payment_integration(db: AsyncSession) -> ResolvedIntegration:
    """
    The account that bills plans: PLAN_PAYMENT_ACCOUNT_ID when set, else a
    global credential, else the process-wide one.
    """
    account_id = get_settings().PLAN_PAYMENT_ACCOUNT_ID
    if account_id is not None:
        key = await db.get(IntegrationApiKey, account_id)
        token = (key.key_value or "").strip() if key is not None else ""
        if key is None or not key.active or not token:
            raise IntegrationNotConfiguredError(
                "Plan payment account is not configured",
                details={"credential_id": account_id},
            )
        env = normalize_environment(key.environment) or shared.ENVIRONMENT_PRODUCTION
        return ResolvedIntegration(
            base_url=normalize_asaas_base_url(key.url_api, env),
            access_token=token,
            credential_id=key.id,
            environment=env,
        )

    try:
        return await resolve_asaas_integration(db, None)
    except IntegrationNotConfiguredError:
        return resolve_env_integration()


async def _ensure_customer(
    client: AsaasClient, company: Company, payload: dict[str, Any]
) -> str:
    customer_id = sanitize_string(company.asaas_customer_id)
    if customer_id:
        try:
            customer = await client.update_customer(customer_id, payload)
        except AsaasApiError as exc:
            if exc.upstream_status != 404:
                raise
            shared.logger.info(
                "asaas_customer_missing_recreating",
                company_id=company.id,
                customer_id=customer_id,
            )
            customer = await client.create_customer(payload)
    else:
        customer = await client.create_customer(payload)

    new_id = sanitize_string((customer or {}).get("id"))
    if not new_id:
        raise AsaasApiError("Asaas customer response without id", 502, customer)
    return new_id


async def create_plan_payment(
    db: AsyncSession,
    data: PlanPaymentInput,
    client: Optional[AsaasClient] = None,
) -> PlanPaymentResult:
    company_name = sanitize_string(data.company_name)
    document = sanitize_digits(data.document)
    email = sanitize_string(data.email)
    if not company_name:
        raise ValidationError("company_name is required")
    if not document:
        raise ValidationError("A valid CPF or CNPJ is required")
    if not email:
        raise ValidationError("billing email is required")

    pricing_mode = parse_pricing_mode(data.pricing_mode)
    billing_type = parse_payment_method(data.billing_type)

    plan = await db.get(Plan, data.plan_id)
    if plan is None:
        raise ResourceNotFoundError("Plan not found", details={"plan_id": data.plan_id})
    price = resolve_plan_price(plan, pricing_mode)
    if price is None or price <= 0:
        raise ValidationError(
            "Plan has no price for this pricing mode",
            details={"plan_id": plan.id, "pricing_mode": pricing_mode},
        )

    company = await db.get(Company, data.company_id)
    if company is None:
        raise ResourceNotFoundError(
            "Company not found", details={"company_id": data.company_id}
        )

    credential_id: Optional[int] = None
    if client is None:
        integration = await resolve_plan_payment_integration(db)
        client = AsaasClient(integration.base_url, integration.access_token)
        credential_id = integration.credential_id

    customer_payload: dict[str, Any] = {
        "name": company_name,
        "cpfCnpj": document,
        "email": email,
        "externalReference": f"empresa-{company.id}",
        "notificationDisabled": False,
    }
    if data.notes:
        customer_payload["observations"] = data.notes

    customer_id = await _ensure_customer(client, company, customer_payload)
    company.asaas_customer_id = customer_id
    await db.commit()

    description = build_charge_description(plan, pricing_mode)
    due_date = resolve_due_date(billing_type)
    external_reference = (
        f"plan-{plan.id}-empresa-{company.id}-{int(time.time() * 1000)}"
    )
    flow = FinancialFlow(
        tipo="receita",
        descricao=description,
        vencimento=due_date,
        valor=price,
        status=FLOW_STATUS_PENDING,
        empresa_id=company.id,
        external_provider=shared.ASAAS_PROVIDER,
        external_reference_id=external_reference,
    )
    db.add(flow)
    await db.flush()

    charge = await AsaasChargeService(db).create_charge(
        ChargeInput(
            financial_flow_id=flow.id,
            billing_type=billing_type,
            value=price,
            due_date=due_date,
            description=description,
            customer=customer_id,
            card_token=data.card_token,
            integration_api_key_id=credential_id,
            external_reference_id=external_reference,
            payer_email=email,
            payer_name=company_name,
            customer_document=document,
            metadata={
                "planId": plan.id,
                "pricingMode": pricing_mode,
                "empresaId": company.id,
                "origin": "plan-payment",
            },
        ),
        asaas_client=client,
    )
    shared.logger.info(
        "plan_payment_created",
        company_id=company.id,
        plan_id=plan.id,
        pricing_mode=pricing_mode,
        billing_type=billing_type,
    )
    return PlanPaymentResult(
        plan=plan,
        pricing_mode=pricing_mode,
        price=price,
        billing_type=billing_type,
        charge=charge,
    )
