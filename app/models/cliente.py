from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


class Cliente(Base):
    """Customer of a company. Owned by the CRM flows; billing only reads it."""

    __tablename__ = "clientes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    nome: Mapped[str | None] = mapped_column(String(255), nullable=True)
    idempresa: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
