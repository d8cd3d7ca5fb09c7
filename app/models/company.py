from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


class Company(Base):
    """
    Company subscription record.

    The subscription status is never stored: it is derived from the
    trial/period/grace timestamps against the current instant. Rows are
    nulled on cancellation, never deleted.
    """

    __tablename__ = "empresas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    nome_empresa: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plano: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ativo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    subscription_cadence: Mapped[str | None] = mapped_column(String(16), nullable=True)

    trial_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    grace_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    asaas_customer_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    asaas_subscription_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    # Creation time of the newest gateway event applied to the timeline.
    last_billing_event_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
