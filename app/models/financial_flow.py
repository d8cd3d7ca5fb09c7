from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base

FLOW_STATUS_PENDING = "pendente"
FLOW_STATUS_PAID = "pago"
FLOW_STATUS_REFUNDED = "estornado"


class FinancialFlow(Base):
    """
    Generic ledger entry.

    Accounting flows create these too; billing only touches status, payment
    date and the external provider reference.
    """

    __tablename__ = "financial_flows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tipo: Mapped[str] = mapped_column(String(32), nullable=False, default="receita")
    descricao: Mapped[str | None] = mapped_column(String(512), nullable=True)
    vencimento: Mapped[date | None] = mapped_column(Date, nullable=True)
    valor: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=FLOW_STATUS_PENDING
    )
    pagamento: Mapped[date | None] = mapped_column(Date, nullable=True)
    cliente_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    empresa_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    external_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    external_reference_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
