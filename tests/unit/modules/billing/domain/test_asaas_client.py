import json

import httpx
import pytest
import respx

from app.modules.billing.domain.billing.asaas_client_impl import (
    AsaasClient,
    extract_error_details,
)
from app.shared.core.exceptions import AsaasApiError

BASE_URL = "https://sandbox.asaas.com/api/v3"


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def asaas(http_client):
    return AsaasClient(BASE_URL + "/", " tok-123 ", http_client=http_client)


def test_requires_base_url_and_token():
    with pytest.raises(ValueError):
        AsaasClient("", "tok")
    with pytest.raises(ValueError):
        AsaasClient(BASE_URL, "  ")


class TestErrorDetails:
    def test_errors_list(self):
        body = {"errors": [{"code": "invalid_customer", "description": "Cliente inválido"}]}
        assert extract_error_details(body, 400) == ("Cliente inválido", "invalid_customer")

    def test_message_field(self):
        assert extract_error_details({"message": " boom ", "code": "x"}, 500) == ("boom", "x")

    def test_error_field(self):
        assert extract_error_details({"error": "unauthorized"}, 401) == ("unauthorized", None)

    def test_fallback(self):
        assert extract_error_details("<html>", 503) == (
            "Asaas API request failed with status 503",
            None,
        )


@respx.mock
@pytest.mark.asyncio
async def test_create_charge_sends_both_auth_headers(asaas):
    route = respx.post(f"{BASE_URL}/payments").respond(
        json={"id": "pay_1", "status": "PENDING"}
    )

    response = await asaas.create_charge({"billingType": "PIX", "value": 10.0})

    assert response == {"id": "pay_1", "status": "PENDING"}
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer tok-123"
    assert request.headers["access_token"] == "tok-123"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"billingType": "PIX", "value": 10.0}


@respx.mock
@pytest.mark.asyncio
async def test_pix_qr_code_endpoint(asaas):
    route = respx.get(f"{BASE_URL}/payments/pay_1/pixQrCode").respond(
        json={"payload": "000201"}
    )

    assert await asaas.get_payment_pix_qr_code(" pay_1 ") == {"payload": "000201"}
    assert route.called


@respx.mock
@pytest.mark.asyncio
async def test_list_subscription_payments_paginates(asaas):
    route = respx.get(f"{BASE_URL}/subscriptions/sub_1/payments").respond(
        json={"data": []}
    )

    await asaas.list_subscription_payments("sub_1", limit=10, offset=20)

    params = route.calls.last.request.url.params
    assert params["limit"] == "10"
    assert params["offset"] == "20"


@respx.mock
@pytest.mark.asyncio
async def test_4xx_is_relayed_with_gateway_message(asaas):
    respx.post(f"{BASE_URL}/payments").respond(
        status_code=400,
        json={"errors": [{"code": "invalid_value", "description": "Valor inválido"}]},
    )

    with pytest.raises(AsaasApiError) as exc_info:
        await asaas.create_charge({"value": -1})

    error = exc_info.value
    assert error.status_code == 400
    assert error.upstream_status == 400
    assert error.error_code == "invalid_value"
    assert error.message == "Valor inválido"


@respx.mock
@pytest.mark.asyncio
async def test_5xx_becomes_bad_gateway(asaas):
    respx.get(f"{BASE_URL}/subscriptions/sub_1").respond(status_code=503, text="down")

    with pytest.raises(AsaasApiError) as exc_info:
        await asaas.get_subscription("sub_1")

    assert exc_info.value.status_code == 502
    assert exc_info.value.upstream_status == 503
    assert exc_info.value.response_body == "down"


@respx.mock
@pytest.mark.asyncio
async def test_reads_are_retried_on_transport_errors(asaas):
    route = respx.get(f"{BASE_URL}/payments/pay_1").mock(
        side_effect=[
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"id": "pay_1"}),
        ]
    )

    assert await asaas.get_charge("pay_1") == {"id": "pay_1"}
    assert route.call_count == 2


@respx.mock
@pytest.mark.asyncio
async def test_writes_are_never_retried(asaas):
    route = respx.post(f"{BASE_URL}/payments").mock(
        side_effect=httpx.ConnectError("refused")
    )

    with pytest.raises(AsaasApiError) as exc_info:
        await asaas.create_charge({"value": 1})

    assert exc_info.value.status_code == 502
    assert route.call_count == 1


@respx.mock
@pytest.mark.asyncio
async def test_delete_with_empty_body(asaas):
    respx.delete(f"{BASE_URL}/subscriptions/sub_1").respond(status_code=204)
    assert await asaas.cancel_subscription("sub_1") is None


@pytest.mark.asyncio
async def test_blank_identifier_is_rejected(asaas):
    with pytest.raises(ValueError):
        await asaas.get_charge("  ")


@respx.mock
@pytest.mark.asyncio
async def test_list_customers_forwards_query(asaas):
    route = respx.get(f"{BASE_URL}/customers").respond(
        json={"data": [{"id": "cus_1"}], "totalCount": 1}
    )

    response = await asaas.list_customers({"cpfCnpj": "12345678000190", "limit": 10})

    assert response["data"] == [{"id": "cus_1"}]
    request = route.calls.last.request
    assert request.url.params["cpfCnpj"] == "12345678000190"
    assert request.url.params["limit"] == "10"


@respx.mock
@pytest.mark.asyncio
async def test_refund_charge_posts_to_refund_path(asaas):
    route = respx.post(f"{BASE_URL}/payments/pay_1/refund").respond(
        json={"id": "pay_1", "status": "REFUNDED"}
    )

    full = await asaas.refund_charge("pay_1")
    partial = await asaas.refund_charge("pay_1", {"value": 50.0, "description": "Parcial"})

    assert full["status"] == "REFUNDED"
    assert partial["id"] == "pay_1"
    assert route.calls[0].request.content == b""
    assert json.loads(route.calls[1].request.content) == {
        "value": 50.0,
        "description": "Parcial",
    }


@respx.mock
@pytest.mark.asyncio
async def test_validate_credentials_reads_accounts(asaas):
    route = respx.get(f"{BASE_URL}/accounts").respond(json={"totalCount": 0, "data": []})

    assert await asaas.validate_credentials() == {"totalCount": 0, "data": []}
    assert route.calls.last.request.headers["access_token"] == "tok-123"


@respx.mock
@pytest.mark.asyncio
async def test_validate_credentials_relays_rejected_token(asaas):
    respx.get(f"{BASE_URL}/accounts").respond(
        status_code=401, json={"errors": [{"code": "invalid_token", "description": "Token inválido"}]}
    )

    with pytest.raises(AsaasApiError) as excinfo:
        await asaas.validate_credentials()

    assert excinfo.value.status_code == 401
    assert excinfo.value.error_code == "invalid_token"
