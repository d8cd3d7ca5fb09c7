"""Shared helpers for building webhook deliveries and comparing timestamps."""
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Optional

WEBHOOK_SECRET = "whsec-test-secret"
ASAAS_SANDBOX_URL = "https://sandbox.asaas.com/api/v3"


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; compare everything in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sign_payload(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(
    event: str,
    charge_id: str,
    date_created: Optional[str] = None,
    **payment: Any,
) -> bytes:
    data: dict[str, Any] = {"event": event, "payment": {"id": charge_id, **payment}}
    if date_created is not None:
        data["dateCreated"] = date_created
    return json.dumps(data).encode()
