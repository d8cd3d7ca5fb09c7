"""Shared runtime state and constants for the Asaas billing modules."""

from __future__ import annotations

import structlog

logger = structlog.get_logger()

ASAAS_PROVIDER = "asaas"

ENVIRONMENT_PRODUCTION = "producao"
ENVIRONMENT_SANDBOX = "homologacao"

DEFAULT_BASE_URLS = {
    ENVIRONMENT_PRODUCTION: "https://www.asaas.com/api/v3",
    ENVIRONMENT_SANDBOX: "https://sandbox.asaas.com/api/v3",
}

BILLING_TYPES = ("PIX", "BOLETO", "CREDIT_CARD", "DEBIT_CARD")
CARD_BILLING_TYPES = frozenset({"CREDIT_CARD", "DEBIT_CARD"})

PAID_CHARGE_STATUSES = frozenset(
    {"RECEIVED", "RECEIVED_IN_CASH", "RECEIVED_PARTIALLY", "CONFIRMED"}
)
REFUNDED_CHARGE_STATUSES = frozenset(
    {
        "REFUNDED",
        "REFUND_IN_PROGRESS",
        "CHARGEBACK_REQUESTED",
        "CHARGEBACK_DISPUTE",
        "AWAITING_CHARGEBACK_REVERSAL",
    }
)

EVENT_PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
EVENT_PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
EVENT_PAYMENT_OVERDUE = "PAYMENT_OVERDUE"
EVENT_PAYMENT_REFUNDED = "PAYMENT_REFUNDED"

HANDLED_EVENTS = frozenset(
    {
        EVENT_PAYMENT_RECEIVED,
        EVENT_PAYMENT_CONFIRMED,
        EVENT_PAYMENT_OVERDUE,
        EVENT_PAYMENT_REFUNDED,
    }
)
PAID_EVENTS = frozenset({EVENT_PAYMENT_RECEIVED, EVENT_PAYMENT_CONFIRMED})

# Status written to the charge row when the delivery carries none.
EVENT_FALLBACK_STATUS = {
    EVENT_PAYMENT_RECEIVED: "RECEIVED",
    EVENT_PAYMENT_CONFIRMED: "CONFIRMED",
    EVENT_PAYMENT_OVERDUE: "OVERDUE",
    EVENT_PAYMENT_REFUNDED: "REFUNDED",
}
