"""
Company Resolution Chain.

Maps a webhook payment payload to a company (and, when possible, to the
local charge and financial flow). Steps run in a fixed order and each one is
attempted only when the previous ones found nothing:

1. local charge (by gateway charge id) -> financial flow -> company,
   falling back to charge/flow cliente -> company
2. financial flow by `external_reference_id`
3. payment metadata (`empresaId`, `companyId`, ...)
4. `externalReference` matching `empresa-<id>`
5. company by stored gateway subscription id
6. company by stored gateway customer id

The chain only reads.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from sqlalchemy import column, inspect, select, table
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.charge import AsaasCharge
from app.models.company import Company

from . import asaas_shared as shared
from .identifiers import sanitize_string, to_int

COMPANY_COLUMN_CANDIDATES = ("empresa", "empresa_id", "idempresa")
METADATA_COMPANY_KEYS = (
    "empresaId",
    "empresa_id",
    "companyId",
    "company_id",
    "empresa",
    "company",
)
EXTERNAL_REFERENCE_COMPANY_RE = re.compile(r"empresa[-_]?(\d+)", re.IGNORECASE)

SOURCE_CHARGE = "charge"
SOURCE_FLOW = "financial_flow"
SOURCE_METADATA = "metadata"
SOURCE_EXTERNAL_REFERENCE = "external_reference"
SOURCE_SUBSCRIPTION = "subscription"
SOURCE_CUSTOMER = "customer"


class SchemaColumnCache:
    """
    Remembers which column holds the company id on tables the billing engine
    does not own. Discovery is cheap and safe to repeat, so the cache can be
    reset at any time.
    """

    def __init__(self, candidates: tuple[str, ...] = COMPANY_COLUMN_CANDIDATES):
        self._candidates = candidates
        self._columns: dict[str, Optional[str]] = {}

    def reset_caches(self) -> None:
        self._columns.clear()

    async def company_column(self, db: AsyncSession, table_name: str) -> Optional[str]:
        if table_name in self._columns:
            return self._columns[table_name]

        conn = await db.connection()
        names = await conn.run_sync(
            lambda sync_conn: {
                col["name"] for col in inspect(sync_conn).get_columns(table_name)
            }
        )
        found = next((name for name in self._candidates if name in names), None)
        if found is None:
            shared.logger.warning("company_column_not_found", table=table_name)
        self._columns[table_name] = found
        return found


@dataclass(frozen=True)
class ResolutionContext:
    company_id: Optional[int] = None
    financial_flow_id: Optional[str] = None
    cliente_id: Optional[int] = None
    credential_id: Optional[int] = None
    charge_row_id: Optional[int] = None
    source: Optional[str] = None


def parse_metadata(raw: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return None
        return parsed if isinstance(parsed, Mapping) else None
    return None


def company_from_metadata(payment: Mapping[str, Any]) -> Optional[int]:
    metadata = parse_metadata(payment.get("metadata"))
    if metadata is None:
        return None
    for key in METADATA_COMPANY_KEYS:
        company_id = to_int(metadata.get(key))
        if company_id is not None and company_id > 0:
            return company_id
    return None


def company_from_external_reference(payment: Mapping[str, Any]) -> Optional[int]:
    reference = sanitize_string(payment.get("externalReference"))
    if reference is None:
        return None
    match = EXTERNAL_REFERENCE_COMPANY_RE.search(reference)
    return int(match.group(1)) if match else None


class CompanyResolutionChain:
    def __init__(self, db: AsyncSession, column_cache: SchemaColumnCache):
        self.db = db
        self.column_cache = column_cache

    async def _company_for_flow(self, flow_id: Optional[str]) -> Optional[int]:
        numeric_id = to_int(flow_id)
        if numeric_id is None:
            return None
        col = await self.column_cache.company_column(self.db, "financial_flows")
        if col is None:
            return None
        flows = table("financial_flows", column("id"), column(col))
        result = await self.db.execute(
            select(flows.c[col]).where(flows.c.id == numeric_id).limit(1)
        )
        return to_int(result.scalar_one_or_none())

    async def _company_for_cliente(self, cliente_id: Optional[int]) -> Optional[int]:
        if cliente_id is None:
            return None
        col = await self.column_cache.company_column(self.db, "clientes")
        if col is None:
            return None
        clientes = table("clientes", column("id"), column(col))
        result = await self.db.execute(
            select(clientes.c[col]).where(clientes.c.id == cliente_id).limit(1)
        )
        return to_int(result.scalar_one_or_none())

    async def _from_charge(self, charge_id: str) -> Optional[ResolutionContext]:
        result = await self.db.execute(
            select(AsaasCharge).where(AsaasCharge.asaas_charge_id == charge_id).limit(1)
        )
        charge = result.scalar_one_or_none()
        if charge is None:
            return None

        company_id = await self._company_for_flow(charge.financial_flow_id)
        if company_id is None:
            company_id = await self._company_for_cliente(charge.cliente_id)
        return ResolutionContext(
            company_id=company_id,
            financial_flow_id=charge.financial_flow_id,
            cliente_id=charge.cliente_id,
            credential_id=charge.credential_id,
            charge_row_id=charge.id,
            source=SOURCE_CHARGE,
        )

    async def _from_flow_reference(self, charge_id: str) -> Optional[ResolutionContext]:
        col = await self.column_cache.company_column(self.db, "financial_flows")
        columns = [column("id"), column("cliente_id"), column("external_reference_id")]
        if col is not None:
            columns.append(column(col))
        flows = table("financial_flows", *columns)
        selected = [flows.c.id, flows.c.cliente_id]
        if col is not None:
            selected.append(flows.c[col])
        result = await self.db.execute(
            select(*selected).where(flows.c.external_reference_id == charge_id).limit(1)
        )
        row = result.first()
        if row is None:
            return None

        cliente_id = to_int(row[1])
        company_id = to_int(row[2]) if col is not None else None
        if company_id is None:
            company_id = await self._company_for_cliente(cliente_id)
        return ResolutionContext(
            company_id=company_id,
            financial_flow_id=str(row[0]),
            cliente_id=cliente_id,
            source=SOURCE_FLOW,
        )

    async def _company_by(self, attribute: Any, value: Optional[str]) -> Optional[int]:
        if value is None:
            return None
        result = await self.db.execute(
            select(Company.id).where(attribute == value).order_by(Company.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def resolve_company_from_payment(
        self, payment: Mapping[str, Any]
    ) -> tuple[Optional[int], Optional[str]]:
        """Payload-only tail of the chain. Returns `(company_id, source)`."""
        company_id = company_from_metadata(payment)
        if company_id is not None:
            return company_id, SOURCE_METADATA

        company_id = company_from_external_reference(payment)
        if company_id is not None:
            return company_id, SOURCE_EXTERNAL_REFERENCE

        company_id = await self._company_by(
            Company.asaas_subscription_id, sanitize_string(payment.get("subscription"))
        )
        if company_id is not None:
            return company_id, SOURCE_SUBSCRIPTION

        company_id = await self._company_by(
            Company.asaas_customer_id, sanitize_string(payment.get("customer"))
        )
        if company_id is not None:
            return company_id, SOURCE_CUSTOMER

        return None, None

    async def resolve(
        self, charge_id: str, payment: Mapping[str, Any]
    ) -> ResolutionContext:
        context = await self._from_charge(charge_id)
        if context is None:
            context = await self._from_flow_reference(charge_id)
        if context is None:
            context = ResolutionContext()

        if context.company_id is None:
            company_id, source = await self.resolve_company_from_payment(payment)
            if company_id is not None:
                context = replace(
                    context, company_id=company_id, source=context.source or source
                )

        shared.logger.debug(
            "asaas_company_resolution",
            charge_id=charge_id,
            company_id=context.company_id,
            financial_flow_id=context.financial_flow_id,
            source=context.source,
        )
        return context
