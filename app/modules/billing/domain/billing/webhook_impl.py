"""
Webhook reconciliation for Asaas payment events.

Every delivery is answered with `{"received": True}`: the gateway retries
any non-2xx response, and once a delivery has been judged unusable a retry
cannot change the outcome. Failures are logged and counted instead.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.charge import AsaasCharge
from app.models.credential import IntegrationApiKey
from app.models.financial_flow import (
    FLOW_STATUS_PAID,
    FLOW_STATUS_REFUNDED,
    FinancialFlow,
)
from app.shared.core.config import get_settings
from app.shared.core.ops_metrics import ASAAS_WEBHOOK_OUTCOMES

from . import asaas_shared as shared
from .company_resolution import (
    CompanyResolutionChain,
    ResolutionContext,
    SchemaColumnCache,
    parse_metadata,
)
from .identifiers import sanitize_string, to_datetime, to_int
from .subscription_service import (
    apply_subscription_overdue,
    apply_subscription_payment,
)
from .timeline import SubscriptionCadence, parse_cadence

SIGNATURE_HEADERS = (
    "asaas-signature",
    "asaas-signature-256",
    "x-asaas-signature",
    "x-asaas-signature-256",
    "x-hub-signature",
    "x-hub-signature-256",
)
PAYMENT_DATE_FIELDS = (
    "paymentDate",
    "clientPaymentDate",
    "confirmedDate",
    "creditDate",
    "updatedDate",
)
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_SIGNATURE_PREFIX = "sha256="

RECEIVED = {"received": True}

# Process-wide company-column cache; reset with `reset_caches()`.
company_column_cache = SchemaColumnCache()


def extract_signature(headers: Mapping[str, str]) -> Optional[str]:
    lowered = {str(k).lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = sanitize_string(lowered.get(name))
        if value:
            return value
    return None


def decode_signature(value: str) -> Optional[bytes]:
    """Accepts `[sha256=]<hex>` or `[sha256=]<base64>`."""
    candidate = value.strip()
    if candidate.lower().startswith(_SIGNATURE_PREFIX):
        candidate = candidate[len(_SIGNATURE_PREFIX):].strip()
    if not candidate:
        return None
    if _HEX_RE.match(candidate) and len(candidate) % 2 == 0:
        return bytes.fromhex(candidate)
    try:
        return base64.b64decode(candidate, validate=True)
    except (binascii.Error, ValueError):
        return None


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time HMAC-SHA256 check over the raw request bytes."""
    if not signature:
        return False
    provided = decode_signature(signature)
    if provided is None:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)


def resolve_payment_date(payment: Mapping[str, Any]) -> Optional[datetime]:
    for name in PAYMENT_DATE_FIELDS:
        parsed = to_datetime(payment.get(name))
        if parsed is not None:
            return parsed
    return None


def _cadence_hint(payment: Mapping[str, Any]) -> Optional[SubscriptionCadence]:
    metadata = parse_metadata(payment.get("metadata")) or {}
    return parse_cadence(metadata.get("pricingMode")) or parse_cadence(
        metadata.get("cadence")
    )


class AsaasWebhookHandler:
    """Asaas Webhook Handler."""

    def __init__(
        self,
        db: AsyncSession,
        resolution_chain: Optional[CompanyResolutionChain] = None,
    ):
        self.db = db
        self.resolution_chain = resolution_chain or CompanyResolutionChain(
            db, company_column_cache
        )

    async def handle(self, body: bytes, headers: Mapping[str, str]) -> dict[str, bool]:
        try:
            outcome = await self._process(body, headers)
        except Exception as exc:
            await self.db.rollback()
            shared.logger.exception(
                "asaas_webhook_processing_failed", error=str(exc), body_len=len(body)
            )
            outcome = "error"
        ASAAS_WEBHOOK_OUTCOMES.labels(outcome=outcome).inc()
        return dict(RECEIVED)

    async def _process(self, body: bytes, headers: Mapping[str, str]) -> str:
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            shared.logger.warning("asaas_webhook_invalid_json", body_len=len(body))
            return "invalid_json"
        if not isinstance(data, dict):
            shared.logger.warning("asaas_webhook_invalid_json", body_len=len(body))
            return "invalid_json"

        event = str(data.get("event") or "").strip().upper()
        if event not in shared.HANDLED_EVENTS:
            shared.logger.info("asaas_webhook_event_ignored", asaas_event=event or None)
            return "ignored_event"

        payment = data.get("payment")
        if not isinstance(payment, dict):
            shared.logger.warning("asaas_webhook_missing_payment", asaas_event=event)
            return "missing_charge_id"
        charge_id = sanitize_string(payment.get("id")) or sanitize_string(
            payment.get("chargeId")
        )
        if charge_id is None:
            shared.logger.warning("asaas_webhook_missing_charge_id", asaas_event=event)
            return "missing_charge_id"

        context = await self.resolution_chain.resolve(charge_id, payment)

        secret = await self._resolve_secret(context.credential_id)
        if secret is None:
            shared.logger.error(
                "asaas_webhook_secret_not_configured",
                charge_id=charge_id,
                credential_id=context.credential_id,
            )
            return "missing_secret"

        if not verify_signature(body, extract_signature(headers), secret):
            shared.logger.warning(
                "asaas_webhook_invalid_signature",
                charge_id=charge_id,
                credential_id=context.credential_id,
            )
            return "invalid_signature"

        await self._apply(event, data, payment, charge_id, context)
        await self.db.commit()
        shared.logger.info(
            "asaas_webhook_applied",
            asaas_event=event,
            charge_id=charge_id,
            company_id=context.company_id,
            financial_flow_id=context.financial_flow_id,
            resolution_source=context.source,
        )
        return "applied"

    async def _resolve_secret(self, credential_id: Optional[int]) -> Optional[str]:
        if credential_id is not None:
            credential = await self.db.get(IntegrationApiKey, credential_id)
            if credential is not None:
                secret = sanitize_string(credential.webhook_secret)
                if secret:
                    return secret
        return sanitize_string(get_settings().ASAAS_WEBHOOK_SECRET)

    async def _apply(
        self,
        event: str,
        data: Mapping[str, Any],
        payment: Mapping[str, Any],
        charge_id: str,
        context: ResolutionContext,
    ) -> None:
        """Charge, flow and company writes; committed together by the caller."""
        is_paid = event in shared.PAID_EVENTS
        is_refund = event == shared.EVENT_PAYMENT_REFUNDED
        is_overdue = event == shared.EVENT_PAYMENT_OVERDUE

        status = sanitize_string(payment.get("status"))
        status = status.upper() if status else shared.EVENT_FALLBACK_STATUS[event]
        payment_date = resolve_payment_date(payment)
        if is_paid and payment_date is None:
            payment_date = datetime.now(timezone.utc)
        event_at = to_datetime(data.get("dateCreated"))

        if context.charge_row_id is not None:
            result = await self.db.execute(
                select(AsaasCharge)
                .where(AsaasCharge.id == context.charge_row_id)
                .with_for_update()
            )
            charge = result.scalar_one_or_none()
            if charge is not None:
                charge.status = status
                charge.last_event = event
                charge.payload = dict(data)
                if is_paid:
                    charge.paid_at = payment_date

        flow_id = to_int(context.financial_flow_id)
        if flow_id is not None and (is_paid or is_refund):
            result = await self.db.execute(
                select(FinancialFlow).where(FinancialFlow.id == flow_id).with_for_update()
            )
            flow = result.scalar_one_or_none()
            if flow is not None:
                if is_paid:
                    flow.status = FLOW_STATUS_PAID
                    flow.pagamento = payment_date.date() if payment_date else None
                else:
                    flow.status = FLOW_STATUS_REFUNDED
            else:
                shared.logger.warning(
                    "asaas_webhook_flow_not_found",
                    charge_id=charge_id,
                    financial_flow_id=context.financial_flow_id,
                )

        if context.company_id is None:
            shared.logger.warning(
                "asaas_webhook_company_unresolved", charge_id=charge_id, asaas_event=event
            )
            return

        cadence_hint = _cadence_hint(payment)
        if is_paid and payment_date is not None:
            await apply_subscription_payment(
                self.db, context.company_id, payment_date, cadence_hint, event_at
            )
        elif is_overdue:
            await apply_subscription_overdue(
                self.db, context.company_id, cadence_hint, event_at
            )
