import pytest
import pytest_asyncio
import respx

from tests.utils import ASAAS_SANDBOX_URL, WEBHOOK_SECRET


@pytest_asyncio.fixture(autouse=True)
async def shared_http_client():
    """The gateway client is created lazily outside the lifespan; close it per test."""
    from app.shared.core.http import close_http_client

    yield
    await close_http_client()


@pytest.fixture
def env_gateway(set_env):
    """Process-wide sandbox credential; no per-company keys needed."""
    set_env(ASAAS_ACCESS_TOKEN="tok-env", ASAAS_ENVIRONMENT="homologacao")


@pytest.fixture
def asaas_api(env_gateway):
    with respx.mock(base_url=ASAAS_SANDBOX_URL, assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def seeded_charge(make_company, make_flow, make_credential, make_charge):
    """Company -> flow -> credential (with webhook secret) -> charge `pay_1`."""

    async def _seed(credential_secret=WEBHOOK_SECRET, **company_fields):
        company = await make_company(plano=1, **company_fields)
        flow = await make_flow(empresa_id=company.id)
        credential = await make_credential(
            empresa_id=company.id, webhook_secret=credential_secret
        )
        charge = await make_charge(
            financial_flow_id=str(flow.id),
            asaas_charge_id="pay_1",
            credential_id=credential.id,
        )
        return company, flow, charge

    return _seed
