from datetime import date
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import func, select

from app.models.charge import AsaasCharge
from app.models.financial_flow import FinancialFlow
from app.modules.billing.domain.billing.charge_service import (
    AsaasChargeService,
    ChargeInput,
    default_client_factory,
    map_flow_status,
)
from app.shared.core.exceptions import (
    AsaasApiError,
    ChargeConflictError,
    ResourceNotFoundError,
    ValidationError,
)


class FakeAsaasClient:
    def __init__(self, response: Any = None, error: Exception = None):
        self.response = response or {"id": "pay_123", "status": "PENDING"}
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create_charge(self, payload):
        self.calls.append(dict(payload))
        if self.error is not None:
            raise self.error
        return self.response


def charge_input(flow_id, **overrides) -> ChargeInput:
    values = {
        "financial_flow_id": flow_id,
        "billing_type": "pix",
        "value": "150,00",
        "due_date": "2024-07-10",
        "customer": "cus_1",
    }
    values.update(overrides)
    return ChargeInput(**values)


async def charge_count(db) -> int:
    return (await db.execute(select(func.count(AsaasCharge.id)))).scalar_one()


@pytest.mark.parametrize(
    "status,expected",
    [
        ("RECEIVED", "pago"),
        ("confirmed", "pago"),
        ("RECEIVED_IN_CASH", "pago"),
        ("REFUNDED", "estornado"),
        ("CHARGEBACK_REQUESTED", "estornado"),
        ("PENDING", "pendente"),
        ("OVERDUE", "pendente"),
        (None, "pendente"),
        ("", "pendente"),
    ],
)
def test_map_flow_status(status, expected):
    assert map_flow_status(status) == expected


@pytest.mark.asyncio
async def test_create_charge_persists_row_and_links_flow(db, make_flow):
    flow = await make_flow(empresa_id=1)
    client = FakeAsaasClient(
        {
            "id": "pay_123",
            "status": "PENDING",
            "invoiceUrl": "https://www.asaas.com/i/123",
            "pixTransaction": {"payload": "000201abc", "encodedImage": "iVBOR"},
        }
    )

    result = await AsaasChargeService(db).create_charge(
        charge_input(str(flow.id), description="Mensalidade julho"), asaas_client=client
    )

    sent = client.calls[0]
    assert sent["billingType"] == "PIX"
    assert sent["customer"] == "cus_1"
    assert sent["value"] == 150.0
    assert sent["dueDate"] == "2024-07-10"
    assert sent["externalReference"] == str(flow.id)
    assert sent["description"] == "Mensalidade julho"

    charge = result.charge
    assert charge.financial_flow_id == str(flow.id)
    assert charge.asaas_charge_id == "pay_123"
    assert charge.value == Decimal("150.00")
    assert charge.due_date == date(2024, 7, 10)
    assert charge.pix_payload == "000201abc"
    assert charge.pix_qr_code == "iVBOR"
    assert charge.invoice_url == "https://www.asaas.com/i/123"

    stored_flow = await db.get(FinancialFlow, flow.id)
    assert stored_flow.external_provider == "asaas"
    assert stored_flow.external_reference_id == "pay_123"
    assert stored_flow.status == "pendente"


@pytest.mark.asyncio
async def test_paid_gateway_status_marks_flow_paid(db, make_flow):
    flow = await make_flow()
    client = FakeAsaasClient({"id": "pay_9", "status": "CONFIRMED"})

    result = await AsaasChargeService(db).create_charge(
        charge_input(flow.id), asaas_client=client
    )
    assert result.flow.status == "pago"


@pytest.mark.asyncio
async def test_second_charge_for_same_flow_conflicts(db, make_flow):
    flow = await make_flow()
    client = FakeAsaasClient()
    service = AsaasChargeService(db)

    await service.create_charge(charge_input(flow.id), asaas_client=client)
    with pytest.raises(ChargeConflictError) as exc_info:
        await service.create_charge(charge_input(str(flow.id)), asaas_client=client)

    assert exc_info.value.status_code == 409
    assert len(client.calls) == 1
    assert await charge_count(db) == 1


@pytest.mark.asyncio
async def test_unique_violation_is_reported_as_conflict(
    db, make_flow, make_charge, monkeypatch
):
    flow = await make_flow()
    await make_charge(financial_flow_id=str(flow.id), asaas_charge_id="pay_existing")
    flow_id = flow.id
    service = AsaasChargeService(db)

    async def _precheck_misses(_flow_key):
        return None

    # A concurrent insert landed between the pre-check and our insert.
    monkeypatch.setattr(service, "_existing_charge_id", _precheck_misses)

    with pytest.raises(ChargeConflictError):
        await service.create_charge(
            charge_input(flow.id), asaas_client=FakeAsaasClient({"id": "pay_new"})
        )

    rows = (await db.execute(select(AsaasCharge.asaas_charge_id))).scalars().all()
    assert rows == ["pay_existing"]
    stored_flow = await db.get(FinancialFlow, flow_id)
    assert stored_flow.external_reference_id is None


@pytest.mark.asyncio
async def test_gateway_error_leaves_no_trace(db, make_flow):
    flow = await make_flow()
    flow_id = flow.id
    client = FakeAsaasClient(error=AsaasApiError("customer inválido", 400))

    with pytest.raises(AsaasApiError) as exc_info:
        await AsaasChargeService(db).create_charge(charge_input(flow.id), asaas_client=client)

    assert exc_info.value.status_code == 400
    assert await charge_count(db) == 0
    stored_flow = await db.get(FinancialFlow, flow_id)
    assert stored_flow.external_provider is None


@pytest.mark.asyncio
async def test_gateway_response_without_id_is_bad_gateway(db, make_flow):
    flow = await make_flow()
    client = FakeAsaasClient({"status": "PENDING"})

    with pytest.raises(AsaasApiError) as exc_info:
        await AsaasChargeService(db).create_charge(charge_input(flow.id), asaas_client=client)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_missing_flow_is_not_found(db):
    with pytest.raises(ResourceNotFoundError):
        await AsaasChargeService(db).create_charge(
            charge_input(12345), asaas_client=FakeAsaasClient()
        )


@pytest.mark.asyncio
async def test_uuid_flow_is_not_found_on_integer_ledger(db):
    with pytest.raises(ResourceNotFoundError):
        await AsaasChargeService(db).create_charge(
            charge_input("6f9619ff-8b86-d011-b42d-00c04fc964ff"),
            asaas_client=FakeAsaasClient(),
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"financial_flow_id": "abc"},
        {"billing_type": "BITCOIN"},
        {"billing_type": None},
        {"value": "abc"},
        {"due_date": "tomorrow"},
        {"customer": None},
        {"billing_type": "CREDIT_CARD"},
    ],
)
async def test_invalid_input_is_rejected_before_gateway(db, overrides):
    client = FakeAsaasClient()
    with pytest.raises(ValidationError):
        await AsaasChargeService(db).create_charge(
            charge_input(1, **overrides), asaas_client=client
        )
    assert client.calls == []


@pytest.mark.asyncio
async def test_card_charge_sends_token_and_card_details(db, make_flow):
    flow = await make_flow()
    client = FakeAsaasClient(
        {
            "id": "pay_card",
            "status": "CONFIRMED",
            "creditCard": {"creditCardNumber": "4111111111111111", "creditCardBrand": "VISA"},
        }
    )

    result = await AsaasChargeService(db).create_charge(
        charge_input(flow.id, billing_type="CREDIT_CARD", card_token="tok_card"),
        asaas_client=client,
    )

    assert client.calls[0]["creditCardToken"] == "tok_card"
    assert result.charge.card_last4 == "1111"
    assert result.charge.card_brand == "VISA"


@pytest.mark.asyncio
async def test_explicit_credential_must_belong_to_flow_company(
    db, make_flow, make_credential
):
    flow = await make_flow(empresa_id=1)
    foreign = await make_credential(empresa_id=2)

    with pytest.raises(ValidationError):
        await default_client_factory(db, flow, foreign.id)


@pytest.mark.asyncio
async def test_factory_uses_company_credential(db, make_flow, make_credential):
    flow = await make_flow(empresa_id=1)
    key = await make_credential(empresa_id=1, key_value="tok-1")

    resolved = await default_client_factory(db, flow, None)

    assert resolved.credential_id == key.id
    assert resolved.client.headers["access_token"] == "tok-1"


@pytest.mark.asyncio
async def test_factory_falls_back_to_environment(db, make_flow, set_env):
    set_env(ASAAS_ACCESS_TOKEN="tok-env")
    flow = await make_flow(empresa_id=1)

    resolved = await default_client_factory(db, flow, None)

    assert resolved.credential_id is None
    assert resolved.client.base_url == "https://www.asaas.com/api/v3"
