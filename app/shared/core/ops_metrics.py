"""
Operational metrics for the billing engine.

Prometheus counters for API errors and webhook reconciliation outcomes.
"""

from prometheus_client import Counter

API_ERRORS_TOTAL = Counter(
    "jusbill_ops_api_errors_total",
    "Total number of API errors by status code and path",
    ["path", "method", "status_code"],
)

ASAAS_WEBHOOK_OUTCOMES = Counter(
    "jusbill_asaas_webhook_outcomes_total",
    "Asaas webhook deliveries by terminal outcome",
    ["outcome"],
)

ASAAS_CHARGES_CREATED = Counter(
    "jusbill_asaas_charges_created_total",
    "Asaas charges created by billing type",
    ["billing_type"],
)
