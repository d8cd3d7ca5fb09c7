from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


class Plan(Base):
    __tablename__ = "planos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    nome: Mapped[str | None] = mapped_column(String(255), nullable=True)
    valor_mensal: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    valor_anual: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
