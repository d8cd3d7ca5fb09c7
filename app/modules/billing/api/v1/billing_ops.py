from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.credential import IntegrationApiKey
from app.modules.billing.api.v1.billing_models import (
    PixQrCodeResponse,
    SubscriptionPaymentItem,
    WebhookSecretResponse,
)
from app.modules.billing.domain.billing.credential_resolver import (
    ResolvedIntegration,
    resolve_asaas_integration,
    resolve_env_integration,
)
from app.modules.billing.domain.billing.identifiers import sanitize_string, to_decimal
from app.modules.billing.domain.billing.webhook_impl import AsaasWebhookHandler
from app.shared.core.exceptions import (
    IntegrationNotConfiguredError,
    ResourceNotFoundError,
    ValidationError,
)

WEBHOOK_PATH = "/api/integrations/asaas/webhook"
WEBHOOK_URL_PLACEHOLDER = f"https://<SEU_BACKEND>{WEBHOOK_PATH}"

WEBHOOK_SETUP_INSTRUCTIONS = (
    "No painel do Asaas, acesse Configurações > Integrações > Webhooks.",
    "Cadastre a URL do webhook e selecione os eventos de cobrança (PAYMENT_*).",
    "Copie o webhookSecret para o campo de assinatura compartilhada do webhook.",
    "Salve a configuração e gere um pagamento de teste para validar a entrega.",
)


async def process_asaas_webhook(
    request: Request,
    db: AsyncSession,
    *,
    settings: Any,
    logger: Any,
    extract_client_ip: Callable[[Request], str],
) -> dict[str, bool]:
    allowed_ips = settings.asaas_webhook_allowed_ips
    client_ip = extract_client_ip(request)
    if allowed_ips and client_ip not in allowed_ips:
        # Acknowledge anyway; the gateway would keep retrying a rejection.
        logger.warning("unauthorized_webhook_origin", ip=client_ip)
        return {"received": True}

    body = await request.body()
    handler = AsaasWebhookHandler(db)
    return await handler.handle(body, request.headers)


def resolve_webhook_url(request: Request, settings: Any) -> str:
    """
    Public URL the gateway should deliver to.

    Configured URL first, then the forwarded headers of the current request.
    """
    configured = sanitize_string(settings.ASAAS_WEBHOOK_PUBLIC_URL)
    if configured:
        return configured.rstrip("/")

    headers = request.headers
    proto = sanitize_string(headers.get("x-forwarded-proto"))
    host = sanitize_string(headers.get("x-forwarded-host")) or sanitize_string(
        headers.get("host")
    )
    if not host:
        return WEBHOOK_URL_PLACEHOLDER
    # Proxies may append a chain: "https,http" / "a.example, b.internal".
    proto = (proto or request.url.scheme or "https").split(",")[0].strip()
    host = host.split(",")[0].strip()
    return f"{proto}://{host}{WEBHOOK_PATH}"


async def load_webhook_secret(
    db: AsyncSession,
    credential_id: int,
    *,
    request: Request,
    settings: Any,
) -> WebhookSecretResponse:
    if credential_id <= 0:
        raise ValidationError(
            "credential_id must be a positive integer",
            details={"credential_id": credential_id},
        )

    credential = await db.get(IntegrationApiKey, credential_id)
    secret = sanitize_string(credential.webhook_secret) if credential else None
    if credential is None or not secret:
        raise ResourceNotFoundError(
            "Webhook secret not found for this credential",
            details={"credential_id": credential_id},
        )

    return WebhookSecretResponse(
        credential_id=credential.id,
        webhook_url=resolve_webhook_url(request, settings),
        webhook_secret=secret,
        instructions=list(WEBHOOK_SETUP_INSTRUCTIONS),
    )


async def resolve_gateway_integration(
    db: AsyncSession, company_id: Optional[int] = None
) -> ResolvedIntegration:
    """Company (or global) credential, else the process-wide one."""
    try:
        return await resolve_asaas_integration(db, company_id)
    except IntegrationNotConfiguredError:
        return resolve_env_integration()


def map_subscription_payments(response: Any) -> list[SubscriptionPaymentItem]:
    records = response.get("data") if isinstance(response, Mapping) else None
    if not isinstance(records, list):
        return []

    items: list[SubscriptionPaymentItem] = []
    for record in records:
        if not isinstance(record, Mapping):
            continue
        payment_id = sanitize_string(record.get("id"))
        if not payment_id:
            continue
        value = to_decimal(record.get("value"))
        items.append(
            SubscriptionPaymentItem(
                id=payment_id,
                description=sanitize_string(record.get("description")) or "",
                due_date=sanitize_string(record.get("dueDate"))
                or sanitize_string(record.get("originalDueDate"))
                or "",
                value=float(value) if value is not None else 0.0,
                status=sanitize_string(record.get("status")) or "",
                billing_type=sanitize_string(record.get("billingType")) or "",
                invoice_url=sanitize_string(record.get("invoiceUrl"))
                or sanitize_string(record.get("bankSlipUrl")),
            )
        )
    return items


def build_pix_qr_code(
    payment_id: str, qr_code: Any, charge: Any
) -> PixQrCodeResponse:
    qr = qr_code if isinstance(qr_code, Mapping) else {}
    payment = charge if isinstance(charge, Mapping) else {}
    pix = payment.get("pixTransaction")
    pix = pix if isinstance(pix, Mapping) else {}

    payload = sanitize_string(qr.get("payload")) or sanitize_string(pix.get("payload"))
    if not payload:
        raise ResourceNotFoundError(
            "PIX QR code not available for this payment",
            details={"payment_id": payment_id},
        )

    expiration = (
        sanitize_string(qr.get("expirationDate"))
        or sanitize_string(pix.get("expirationDate"))
        or sanitize_string(payment.get("dueDate"))
        or sanitize_string(payment.get("originalDueDate"))
        or sanitize_string(payment.get("transactionDate"))
        or ""
    )
    return PixQrCodeResponse(
        payload=payload,
        encoded_image=sanitize_string(qr.get("encodedImage"))
        or sanitize_string(pix.get("encodedImage"))
        or "",
        expiration_date=expiration,
    )
