"""Asaas REST API client implementation."""

from __future__ import annotations

from typing import Any, Mapping, Optional
from urllib.parse import quote

import httpx

from app.shared.core.exceptions import AsaasApiError
from app.shared.core.http import get_http_client
from app.shared.core.retry import transient_read_retrying

from . import asaas_shared as shared


def _parse_body(response: httpx.Response) -> Any:
    if response.status_code == 204:
        return None
    content_type = response.headers.get("content-type", "").lower()
    try:
        if "application/json" in content_type:
            return response.json()
    except ValueError:
        return None
    text = response.text
    return text or None


def extract_error_details(body: Any, status: int) -> tuple[str, Optional[str]]:
    """Pull `(message, code)` out of an Asaas error body."""
    fallback = f"Asaas API request failed with status {status}"
    if not isinstance(body, Mapping):
        return fallback, None

    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], Mapping):
        first = errors[0]
        message = first.get("description") or first.get("message")
        code = first.get("code")
        if isinstance(message, str) and message:
            return message, code if isinstance(code, str) else None

    message = body.get("message")
    if isinstance(message, str) and message.strip():
        code = body.get("code")
        return message.strip(), code if isinstance(code, str) else None

    error = body.get("error")
    if isinstance(error, str) and error.strip():
        return error.strip(), None

    return fallback, None


class AsaasClient:
    """Async wrapper for Asaas v3 operations."""

    def __init__(
        self,
        base_url: Optional[str],
        access_token: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ValueError("AsaasClient requires a base_url")
        if not access_token or not access_token.strip():
            raise ValueError("AsaasClient requires an access_token")

        self.base_url = base_url.strip().rstrip("/")
        self._http_client = http_client
        self.headers: dict[str, str] = {
            "Authorization": f"Bearer {access_token.strip()}",
            "access_token": access_token.strip(),
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        path: str,
        data: Optional[Mapping[str, Any]],
        params: Optional[Mapping[str, Any]],
    ) -> httpx.Response:
        client = self._http_client or get_http_client()
        headers = dict(self.headers)
        if data is not None:
            headers["Content-Type"] = "application/json"
        return await client.request(
            method,
            self._url(path),
            headers=headers,
            json=data,
            params=params,
        )

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        try:
            if method == "GET":
                async for attempt in transient_read_retrying():
                    with attempt:
                        response = await self._send(method, path, data, params)
            else:
                response = await self._send(method, path, data, params)
        except httpx.HTTPError as exc:
            shared.logger.error(
                "asaas_api_transport_error", method=method, path=path, error=str(exc)
            )
            raise AsaasApiError(
                "Asaas API is unreachable", 502, error_code="transport_error"
            ) from exc

        body = _parse_body(response)
        if response.is_success:
            return body

        message, code = extract_error_details(body, response.status_code)
        shared.logger.warning(
            "asaas_api_error",
            method=method,
            path=path,
            status_code=response.status_code,
            error_code=code,
            error=message,
        )
        raise AsaasApiError(message, response.status_code, body, code)

    @staticmethod
    def _segment(value: str, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{label} is required")
        return quote(value.strip(), safe="")

    async def create_customer(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "customers", payload)

    async def update_customer(
        self, customer_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        segment = self._segment(customer_id, "customer_id")
        return await self._request("PUT", f"customers/{segment}", payload)

    async def list_customers(
        self, params: Optional[Mapping[str, Any]] = None
    ) -> dict[str, Any]:
        return await self._request("GET", "customers", params=params)

    async def create_charge(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "payments", payload)

    async def get_charge(self, charge_id: str) -> dict[str, Any]:
        segment = self._segment(charge_id, "charge_id")
        return await self._request("GET", f"payments/{segment}")

    async def refund_charge(
        self, charge_id: str, payload: Optional[Mapping[str, Any]] = None
    ) -> dict[str, Any]:
        segment = self._segment(charge_id, "charge_id")
        return await self._request("POST", f"payments/{segment}/refund", payload or None)

    async def get_payment_pix_qr_code(self, payment_id: str) -> dict[str, Any]:
        segment = self._segment(payment_id, "payment_id")
        return await self._request("GET", f"payments/{segment}/pixQrCode")

    async def create_subscription(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "subscriptions", payload)

    async def update_subscription(
        self, subscription_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        segment = self._segment(subscription_id, "subscription_id")
        return await self._request("PUT", f"subscriptions/{segment}", payload)

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        segment = self._segment(subscription_id, "subscription_id")
        return await self._request("GET", f"subscriptions/{segment}")

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        segment = self._segment(subscription_id, "subscription_id")
        return await self._request("DELETE", f"subscriptions/{segment}")

    async def list_subscription_payments(
        self, subscription_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        segment = self._segment(subscription_id, "subscription_id")
        return await self._request(
            "GET",
            f"subscriptions/{segment}/payments",
            params={"limit": limit, "offset": offset},
        )

    async def validate_credentials(self) -> dict[str, Any]:
        """Cheap authenticated read used to check a token."""
        return await self._request("GET", "accounts")
