"""Asaas billing: charges, webhook reconciliation and subscription timelines."""

from app.modules.billing.domain.billing.asaas_client_impl import AsaasClient
from app.modules.billing.domain.billing.charge_service import AsaasChargeService
from app.modules.billing.domain.billing.webhook_impl import AsaasWebhookHandler

__all__ = ["AsaasClient", "AsaasChargeService", "AsaasWebhookHandler"]
