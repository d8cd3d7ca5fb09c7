import re
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.charge import AsaasCharge
from app.models.company import Company
from app.models.financial_flow import FinancialFlow
from app.modules.billing.domain.billing.plan_payment_service import (
    PlanPaymentInput,
    create_plan_payment,
    parse_payment_method,
    parse_pricing_mode,
    resolve_due_date,
    resolve_plan_payment_integration,
)
from app.shared.core.exceptions import (
    AsaasApiError,
    IntegrationNotConfiguredError,
    ResourceNotFoundError,
    ValidationError,
)


class FakeGateway:
    def __init__(self, missing_customer: bool = False):
        self.missing_customer = missing_customer
        self.customers_created = []
        self.customers_updated = []
        self.charges = []

    async def create_customer(self, payload):
        self.customers_created.append(payload)
        return {"id": "cus_new"}

    async def update_customer(self, customer_id, payload):
        self.customers_updated.append((customer_id, payload))
        if self.missing_customer:
            raise AsaasApiError("not found", 404)
        return {"id": customer_id}

    async def create_charge(self, payload):
        self.charges.append(payload)
        return {"id": "pay_plan", "status": "PENDING", "invoiceUrl": "https://asaas/i/1"}


def plan_input(company_id, plan_id, **overrides) -> PlanPaymentInput:
    values = {
        "company_id": company_id,
        "plan_id": plan_id,
        "pricing_mode": "mensal",
        "billing_type": "PIX",
        "company_name": "Acme Ltda",
        "document": "12.345.678/0001-90",
        "email": "financeiro@acme.com.br",
    }
    values.update(overrides)
    return PlanPaymentInput(**values)


@pytest.mark.parametrize(
    "raw,expected",
    [("anual", "anual"), ("Annual", "anual"), ("YEARLY", "anual"), ("mensal", "mensal"), (None, "mensal")],
)
def test_parse_pricing_mode(raw, expected):
    assert parse_pricing_mode(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [("boleto", "BOLETO"), ("cartao", "CREDIT_CARD"), ("CREDIT_CARD", "CREDIT_CARD"), ("crypto", "PIX"), (None, "PIX")],
)
def test_parse_payment_method(raw, expected):
    assert parse_payment_method(raw) == expected


def test_boleto_due_date_is_three_days_out():
    today = date(2024, 7, 1)
    assert resolve_due_date("BOLETO", today) == date(2024, 7, 4)
    assert resolve_due_date("PIX", today) == today


@pytest.mark.asyncio
async def test_monthly_plan_payment(db, make_company, make_plan):
    company = await make_company()
    plan = await make_plan(nome="Profissional")
    gateway = FakeGateway()

    result = await create_plan_payment(db, plan_input(company.id, plan.id), client=gateway)

    assert result.price == Decimal("99.90")
    assert result.pricing_mode == "mensal"
    assert result.billing_type == "PIX"

    customer = gateway.customers_created[0]
    assert customer["cpfCnpj"] == "12345678000190"
    assert customer["externalReference"] == f"empresa-{company.id}"
    assert (await db.get(Company, company.id)).asaas_customer_id == "cus_new"

    sent = gateway.charges[0]
    assert sent["customer"] == "cus_new"
    assert sent["value"] == 99.9
    assert sent["description"] == "Assinatura Profissional (mensal)"
    assert re.fullmatch(
        rf"plan-{plan.id}-empresa-{company.id}-\d+", sent["externalReference"]
    )
    assert sent["metadata"] == {
        "planId": plan.id,
        "pricingMode": "mensal",
        "empresaId": company.id,
        "origin": "plan-payment",
    }

    flow = (await db.execute(select(FinancialFlow))).scalar_one()
    assert flow.empresa_id == company.id
    assert flow.valor == Decimal("99.90")
    assert flow.external_provider == "asaas"
    assert flow.external_reference_id == "pay_plan"
    charge = (await db.execute(select(AsaasCharge))).scalar_one()
    assert charge.financial_flow_id == str(flow.id)


@pytest.mark.asyncio
async def test_annual_boleto_plan_payment(db, make_company, make_plan):
    company = await make_company()
    plan = await make_plan()
    gateway = FakeGateway()

    result = await create_plan_payment(
        db,
        plan_input(company.id, plan.id, pricing_mode="annual", billing_type="boleto"),
        client=gateway,
    )

    assert result.price == Decimal("999.00")
    assert result.billing_type == "BOLETO"
    sent = gateway.charges[0]
    assert sent["billingType"] == "BOLETO"
    assert sent["metadata"]["pricingMode"] == "anual"
    expected_due = resolve_due_date("BOLETO", datetime.now(timezone.utc).date())
    assert sent["dueDate"] == expected_due.isoformat()


@pytest.mark.asyncio
async def test_known_customer_is_updated(db, make_company, make_plan):
    company = await make_company(asaas_customer_id="cus_old")
    plan = await make_plan()
    gateway = FakeGateway()

    await create_plan_payment(db, plan_input(company.id, plan.id), client=gateway)

    assert gateway.customers_updated[0][0] == "cus_old"
    assert gateway.customers_created == []
    assert gateway.charges[0]["customer"] == "cus_old"


@pytest.mark.asyncio
async def test_customer_deleted_upstream_is_recreated(db, make_company, make_plan):
    company = await make_company(asaas_customer_id="cus_gone")
    plan = await make_plan()
    gateway = FakeGateway(missing_customer=True)

    await create_plan_payment(db, plan_input(company.id, plan.id), client=gateway)

    assert len(gateway.customers_created) == 1
    assert company.asaas_customer_id == "cus_new"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [{"company_name": "  "}, {"document": "abc"}, {"email": None}],
)
async def test_billing_contact_is_required(db, make_company, make_plan, overrides):
    company = await make_company()
    plan = await make_plan()
    gateway = FakeGateway()

    with pytest.raises(ValidationError):
        await create_plan_payment(
            db, plan_input(company.id, plan.id, **overrides), client=gateway
        )
    assert gateway.charges == []


@pytest.mark.asyncio
async def test_plan_without_price_for_mode(db, make_company, make_plan):
    company = await make_company()
    plan = await make_plan(valor_anual=None)

    with pytest.raises(ValidationError):
        await create_plan_payment(
            db, plan_input(company.id, plan.id, pricing_mode="anual"), client=FakeGateway()
        )


@pytest.mark.asyncio
async def test_unknown_plan_or_company(db, make_company, make_plan):
    company = await make_company()
    plan = await make_plan()

    with pytest.raises(ResourceNotFoundError):
        await create_plan_payment(db, plan_input(company.id, 999), client=FakeGateway())
    with pytest.raises(ResourceNotFoundError):
        await create_plan_payment(db, plan_input(999, plan.id), client=FakeGateway())


@pytest.mark.asyncio
async def test_plan_account_setting_selects_credential(db, make_credential, set_env):
    key = await make_credential(empresa_id=None, is_global=False, key_value="tok-plans")
    set_env(PLAN_PAYMENT_ACCOUNT_ID=key.id)

    integration = await resolve_plan_payment_integration(db)

    assert integration.credential_id == key.id
    assert integration.access_token == "tok-plans"


@pytest.mark.asyncio
async def test_plan_account_setting_must_point_to_active_key(db, make_credential, set_env):
    key = await make_credential(active=False)
    set_env(PLAN_PAYMENT_ACCOUNT_ID=key.id)

    with pytest.raises(IntegrationNotConfiguredError):
        await resolve_plan_payment_integration(db)


@pytest.mark.asyncio
async def test_plan_account_falls_back_to_global_credential(db, make_credential):
    key = await make_credential(is_global=True, key_value="tok-global")

    integration = await resolve_plan_payment_integration(db)

    assert integration.credential_id == key.id
