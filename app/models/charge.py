from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


class AsaasCharge(Base):
    """
    Local mirror of a gateway charge.

    Exactly one row per financial flow: the UNIQUE constraint on
    `financial_flow_id` is what enforces it, the service pre-check only
    saves a gateway round trip.
    """

    __tablename__ = "asaas_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Integer ids are stored as their decimal string, UUIDs in canonical form.
    financial_flow_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    cliente_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credential_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    asaas_charge_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    billing_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(48), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    invoice_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    pix_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    pix_qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    boleto_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(32), nullable=True)

    last_event: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    raw_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
