"""
Charge creation.

One gateway charge per financial flow. The pre-insert lookup only avoids a
pointless gateway call; the UNIQUE constraint on
`asaas_charges.financial_flow_id` is the authoritative guard, and its
violation is reported as the same ChargeConflictError.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.charge import AsaasCharge
from app.models.credential import IntegrationApiKey
from app.models.financial_flow import (
    FLOW_STATUS_PAID,
    FLOW_STATUS_PENDING,
    FLOW_STATUS_REFUNDED,
    FinancialFlow,
)
from app.shared.core.exceptions import (
    AsaasApiError,
    ChargeConflictError,
    IntegrationNotConfiguredError,
    ResourceNotFoundError,
    ValidationError,
)
from app.shared.core.ops_metrics import ASAAS_CHARGES_CREATED

from . import asaas_shared as shared
from .asaas_client_impl import AsaasClient
from .credential_resolver import (
    normalize_asaas_base_url,
    normalize_environment,
    resolve_asaas_integration,
    resolve_env_integration,
)
from .identifiers import (
    normalize_financial_flow_identifier,
    sanitize_string,
    to_datetime,
    to_decimal,
    to_int,
)
from .response_extractors import extract_charge_artifacts


@dataclass
class ChargeInput:
    financial_flow_id: Any
    billing_type: Any
    value: Any
    due_date: Any
    cliente_id: Optional[int] = None
    integration_api_key_id: Optional[int] = None
    description: Optional[str] = None
    card_token: Optional[str] = None
    asaas_customer_id: Optional[str] = None
    customer: Optional[str] = None
    external_reference_id: Optional[str] = None
    additional_fields: Optional[Mapping[str, Any]] = None
    metadata: Optional[Mapping[str, Any]] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    customer_document: Optional[str] = None
    remote_ip: Optional[str] = None


@dataclass
class ChargeResult:
    charge: AsaasCharge
    flow: FinancialFlow


@dataclass
class ResolvedClient:
    client: AsaasClient
    credential_id: Optional[int] = None


ClientFactory = Callable[
    [AsyncSession, FinancialFlow, Optional[int]], Awaitable[ResolvedClient]
]


def map_flow_status(status: Optional[str]) -> str:
    """Gateway charge status -> financial flow status."""
    if not isinstance(status, str) or not status.strip():
        return FLOW_STATUS_PENDING
    normalized = status.strip().upper()
    if normalized in shared.PAID_CHARGE_STATUSES:
        return FLOW_STATUS_PAID
    if normalized in shared.REFUNDED_CHARGE_STATUSES:
        return FLOW_STATUS_REFUNDED
    return FLOW_STATUS_PENDING


def normalize_billing_type(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("billing_type is required")
    normalized = value.strip().upper()
    if normalized not in shared.BILLING_TYPES:
        raise ValidationError(
            "billing_type must be PIX, BOLETO, CREDIT_CARD or DEBIT_CARD",
            details={"billing_type": value},
        )
    return normalized


def normalize_value(value: Any) -> Decimal:
    parsed = to_decimal(value)
    if parsed is None:
        raise ValidationError("Invalid charge value", details={"value": str(value)})
    return parsed


def format_due_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = to_datetime(value)
    if parsed is None:
        raise ValidationError("Invalid due date", details={"due_date": str(value)})
    return parsed.date()


def ensure_customer_identifier(data: ChargeInput) -> str:
    for candidate in (data.asaas_customer_id, data.customer):
        cleaned = sanitize_string(candidate)
        if cleaned:
            return cleaned
    cliente_id = to_int(data.cliente_id)
    if cliente_id is not None:
        return str(cliente_id)
    raise ValidationError("Asaas customer identifier is required")


async def default_client_factory(
    db: AsyncSession, flow: FinancialFlow, integration_api_key_id: Optional[int]
) -> ResolvedClient:
    """
    Explicit credential id, else the flow company's credential, else the
    process-wide credential.
    """
    if integration_api_key_id is not None:
        key = await db.get(IntegrationApiKey, integration_api_key_id)
        if key is None or not key.active:
            raise ValidationError(
                "Asaas integration key not found",
                details={"integration_api_key_id": integration_api_key_id},
            )
        if (key.provider or "").strip().lower() != shared.ASAAS_PROVIDER:
            raise ValidationError("Integration key does not belong to Asaas")
        if not key.is_global and key.empresa_id != flow.empresa_id:
            raise ValidationError(
                "Integration key does not belong to the financial flow company"
            )
        token = (key.key_value or "").strip()
        if not token:
            raise ValidationError("Asaas integration key has no token")
        env = normalize_environment(key.environment)
        return ResolvedClient(
            client=AsaasClient(normalize_asaas_base_url(key.url_api, env), token),
            credential_id=key.id,
        )

    if flow.empresa_id is not None:
        try:
            integration = await resolve_asaas_integration(db, flow.empresa_id)
            return ResolvedClient(
                client=AsaasClient(integration.base_url, integration.access_token),
                credential_id=integration.credential_id,
            )
        except IntegrationNotConfiguredError:
            shared.logger.info(
                "asaas_charge_company_credential_missing", company_id=flow.empresa_id
            )

    integration = resolve_env_integration()
    return ResolvedClient(
        client=AsaasClient(integration.base_url, integration.access_token),
        credential_id=None,
    )


class AsaasChargeService:
    def __init__(
        self, db: AsyncSession, client_factory: Optional[ClientFactory] = None
    ) -> None:
        self.db = db
        self.client_factory = client_factory or default_client_factory

    def _build_payload(
        self,
        data: ChargeInput,
        billing_type: str,
        customer: str,
        value: Decimal,
        due_date: date,
        flow_key: str,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "billingType": billing_type,
            "customer": customer,
            "value": float(value),
            "dueDate": due_date.isoformat(),
            "externalReference": sanitize_string(data.external_reference_id)
            or flow_key,
        }
        if data.description:
            payload["description"] = data.description
        for key, val in (data.additional_fields or {}).items():
            if val is not None:
                payload[key] = val
        if data.metadata:
            payload["metadata"] = dict(data.metadata)
        if data.payer_email:
            payload["customerEmail"] = data.payer_email
        if data.payer_name:
            payload["customerName"] = data.payer_name
        if data.customer_document:
            payload["customerCpfCnpj"] = data.customer_document
        if data.remote_ip:
            payload["remoteIp"] = data.remote_ip
        if billing_type in shared.CARD_BILLING_TYPES:
            token = sanitize_string(data.card_token)
            if not token:
                raise ValidationError("card_token is required for card charges")
            payload["creditCardToken"] = token
        return payload

    async def _existing_charge_id(self, flow_key: str) -> Optional[int]:
        result = await self.db.execute(
            select(AsaasCharge.id).where(AsaasCharge.financial_flow_id == flow_key)
        )
        return result.scalar_one_or_none()

    async def _load_flow(self, flow_id: Any) -> FinancialFlow:
        flow = None
        if isinstance(flow_id, int):
            result = await self.db.execute(
                select(FinancialFlow).where(FinancialFlow.id == flow_id).with_for_update()
            )
            flow = result.scalar_one_or_none()
        if flow is None:
            raise ResourceNotFoundError(
                "Financial flow not found", details={"financial_flow_id": str(flow_id)}
            )
        return flow

    async def create_charge(
        self, data: ChargeInput, asaas_client: Optional[AsaasClient] = None
    ) -> ChargeResult:
        billing_type = normalize_billing_type(data.billing_type)
        flow_id = normalize_financial_flow_identifier(data.financial_flow_id)
        if flow_id is None:
            raise ValidationError(
                "financial_flow_id must be an integer or a UUID",
                details={"financial_flow_id": str(data.financial_flow_id)},
            )
        value = normalize_value(data.value)
        due_date = format_due_date(data.due_date)
        customer = ensure_customer_identifier(data)
        flow_key = str(flow_id)
        payload = self._build_payload(
            data, billing_type, customer, value, due_date, flow_key
        )

        try:
            if await self._existing_charge_id(flow_key) is not None:
                raise ChargeConflictError(
                    "Financial flow already has an Asaas charge",
                    details={"financial_flow_id": flow_key},
                )
            flow = await self._load_flow(flow_id)

            credential_id: Optional[int] = data.integration_api_key_id
            if asaas_client is None:
                resolved = await self.client_factory(
                    self.db, flow, data.integration_api_key_id
                )
                asaas_client = resolved.client
                credential_id = resolved.credential_id

            response = await asaas_client.create_charge(payload)
            if not isinstance(response, Mapping):
                response = {}
            gateway_id = sanitize_string(response.get("id"))
            if gateway_id is None:
                raise AsaasApiError(
                    "Asaas charge response without id", 502, response_body=response
                )

            gateway_status = sanitize_string(response.get("status")) or "PENDING"
            artifacts = extract_charge_artifacts(response)
            charge = AsaasCharge(
                financial_flow_id=flow_key,
                cliente_id=to_int(data.cliente_id),
                credential_id=credential_id,
                asaas_charge_id=gateway_id,
                billing_type=billing_type,
                status=gateway_status,
                due_date=due_date,
                value=value,
                invoice_url=artifacts.invoice_url,
                pix_payload=artifacts.pix_payload,
                pix_qr_code=artifacts.pix_qr_code,
                boleto_url=artifacts.boleto_url,
                card_last4=artifacts.card_last4,
                card_brand=artifacts.card_brand,
                raw_response=dict(response),
            )
            self.db.add(charge)

            flow.external_provider = shared.ASAAS_PROVIDER
            flow.external_reference_id = gateway_id
            flow.status = map_flow_status(gateway_status)

            await self.db.flush()
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            shared.logger.warning(
                "asaas_charge_conflict_on_insert",
                financial_flow_id=flow_key,
                error=str(exc.orig),
            )
            raise ChargeConflictError(
                "Financial flow already has an Asaas charge",
                details={"financial_flow_id": flow_key},
            ) from exc
        except Exception:
            await self.db.rollback()
            raise

        ASAAS_CHARGES_CREATED.labels(billing_type=billing_type).inc()
        shared.logger.info(
            "asaas_charge_created",
            financial_flow_id=flow_key,
            asaas_charge_id=gateway_id,
            billing_type=billing_type,
            status=gateway_status,
        )
        return ChargeResult(charge=charge, flow=flow)
