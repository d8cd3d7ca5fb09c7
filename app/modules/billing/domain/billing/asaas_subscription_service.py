"""Gateway subscription management and timeline extraction."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence

from . import asaas_shared as shared
from .asaas_client_impl import AsaasClient
from .credential_resolver import ResolvedIntegration
from .identifiers import sanitize_string, to_datetime
from .timeline import (
    PERIOD_DURATION_DAYS,
    SubscriptionCadence,
    cadence_from_cycle,
    calculate_grace_deadline,
)

PERIOD_CONTAINER_KEYS = (
    "currentCycle",
    "currentPeriod",
    "currentPeriodInfo",
    "billingPeriod",
)


@dataclass(frozen=True)
class SubscriptionTimeline:
    trial_start: Optional[datetime]
    trial_end: Optional[datetime]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    grace_period_end: Optional[datetime]
    cadence: SubscriptionCadence


@dataclass(frozen=True)
class ManagedSubscription:
    subscription: dict[str, Any]
    timeline: SubscriptionTimeline


def _record(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _first_date(*values: Any) -> Optional[datetime]:
    for value in values:
        parsed = to_datetime(value)
        if parsed is not None:
            return parsed
    return None


def _pick_date(record: Optional[Mapping[str, Any]], keys: Sequence[str]) -> Optional[datetime]:
    if record is None:
        return None
    return _first_date(*(record.get(key) for key in keys))


def extract_timeline(
    response: Mapping[str, Any], payload: Mapping[str, Any]
) -> SubscriptionTimeline:
    """
    Derive the local timeline from a gateway subscription response,
    falling back to what was requested.
    """
    cadence = cadence_from_cycle(response.get("cycle") or payload.get("cycle"))
    response_trial = _record(response.get("trial"))
    payload_trial = _record(payload.get("trial"))

    trial_start = _first_date(
        (response_trial or {}).get("startDate"),
        (response_trial or {}).get("start"),
        (payload_trial or {}).get("startDate"),
        (payload_trial or {}).get("start"),
        response.get("dateCreated") if (response_trial or payload_trial) else None,
    )
    trial_end = _pick_date(response_trial, ("endDate", "end", "dueDate")) or _pick_date(
        payload_trial, ("endDate", "end", "dueDate")
    )

    period_source = next(
        (
            record
            for record in (_record(response.get(key)) for key in PERIOD_CONTAINER_KEYS)
            if record is not None
        ),
        None,
    )

    period_start = (
        _pick_date(period_source, ("start", "startDate", "begin", "beginDate"))
        or to_datetime(response.get("currentPeriodStart"))
        or trial_end
        or _pick_date(payload_trial, ("start", "startDate"))
        or to_datetime(payload.get("currentPeriodStart"))
    )
    period_end = (
        _pick_date(period_source, ("end", "endDate", "due", "dueDate"))
        or to_datetime(response.get("currentPeriodEnd"))
        or to_datetime(response.get("nextDueDate"))
        or to_datetime(payload.get("currentPeriodEnd"))
        or to_datetime(payload.get("nextDueDate"))
    )

    length = timedelta(days=PERIOD_DURATION_DAYS[cadence])
    if period_end is not None and period_start is None:
        period_start = period_end - length
    elif period_start is not None and period_end is None:
        period_end = period_start + length

    grace_end = (
        calculate_grace_deadline(period_end, cadence) if period_end is not None else None
    )

    return SubscriptionTimeline(
        trial_start=trial_start,
        trial_end=trial_end,
        current_period_start=period_start,
        current_period_end=period_end,
        grace_period_end=grace_end,
        cadence=cadence,
    )


ClientFactory = Callable[[ResolvedIntegration], AsaasClient]


def _default_client_factory(integration: ResolvedIntegration) -> AsaasClient:
    return AsaasClient(integration.base_url, integration.access_token)


class AsaasSubscriptionService:
    def __init__(self, client_factory: Optional[ClientFactory] = None) -> None:
        self.client_factory = client_factory or _default_client_factory

    async def create_or_update_subscription(
        self, integration: ResolvedIntegration, payload: Mapping[str, Any]
    ) -> ManagedSubscription:
        client = self.client_factory(integration)
        body = {k: v for k, v in payload.items() if k != "subscription_id"}
        subscription_id = sanitize_string(payload.get("subscription_id"))

        if subscription_id:
            response = await client.update_subscription(subscription_id, body)
        else:
            response = await client.create_subscription(body)
        if not isinstance(response, Mapping):
            response = {}

        timeline = extract_timeline(response, body)
        shared.logger.info(
            "asaas_subscription_saved",
            subscription_id=response.get("id"),
            updated=bool(subscription_id),
            cadence=timeline.cadence.value,
        )
        return ManagedSubscription(subscription=dict(response), timeline=timeline)
