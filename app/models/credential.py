from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.db.base import Base


class IntegrationApiKey(Base):
    """
    Gateway credential, scoped to one company or global.

    Managed by the integrations admin screens; the billing engine only
    resolves it.
    """

    __tablename__ = "integration_api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    url_api: Mapped[str | None] = mapped_column(String(512), nullable=True)
    key_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    # producao | homologacao
    environment: Mapped[str | None] = mapped_column(String(32), nullable=True)
    empresa_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    webhook_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
