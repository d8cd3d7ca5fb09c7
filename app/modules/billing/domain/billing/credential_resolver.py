"""
Gateway credential resolution.

Picks the `integration_api_keys` row to use for a company: company-scoped
before global, newest first, optionally filtered by environment. When the
legacy fallback is enabled the scoping and then the environment filter are
relaxed, one step at a time, each only when the stricter query found nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from sqlalchemy import case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.credential import IntegrationApiKey
from app.shared.core.config import get_settings
from app.shared.core.exceptions import IntegrationNotConfiguredError

from . import asaas_shared as shared
from .asaas_client_impl import AsaasClient

_ENVIRONMENT_ALIASES = {
    "producao": shared.ENVIRONMENT_PRODUCTION,
    "produção": shared.ENVIRONMENT_PRODUCTION,
    "production": shared.ENVIRONMENT_PRODUCTION,
    "prod": shared.ENVIRONMENT_PRODUCTION,
    "homologacao": shared.ENVIRONMENT_SANDBOX,
    "homologação": shared.ENVIRONMENT_SANDBOX,
    "sandbox": shared.ENVIRONMENT_SANDBOX,
    "staging": shared.ENVIRONMENT_SANDBOX,
    "hml": shared.ENVIRONMENT_SANDBOX,
}

_VERSIONED_PATH_RE = re.compile(r"^/(?:api/)?v(\d+)$", re.IGNORECASE)
_ASAAS_HOST_SUFFIX = "asaas.com"


@dataclass(frozen=True)
class ResolvedIntegration:
    base_url: str
    access_token: str
    credential_id: Optional[int]
    environment: str


def normalize_environment(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return _ENVIRONMENT_ALIASES.get(value.strip().lower())


def _is_asaas_host(host: str) -> bool:
    host = host.lower()
    return host == _ASAAS_HOST_SUFFIX or host.endswith("." + _ASAAS_HOST_SUFFIX)


def normalize_asaas_base_url(raw: Optional[str], environment: Optional[str]) -> str:
    """
    Canonicalize a stored API URL.

    Known Asaas hosts become `<scheme>://<host>/api/v<n>`; other hosts pass
    through minus trailing slashes; empty input gets the environment default.
    """
    env = normalize_environment(environment) or shared.ENVIRONMENT_PRODUCTION
    candidate = (raw or "").strip()
    if not candidate:
        return shared.DEFAULT_BASE_URLS[env]

    parts = urlsplit(candidate)
    if not parts.scheme or not parts.netloc or not _is_asaas_host(parts.hostname or ""):
        return candidate.rstrip("/")

    path = parts.path.rstrip("/")
    origin = f"{parts.scheme}://{parts.netloc}"
    if not path or path.lower() == "/api":
        return f"{origin}/api/v3"
    match = _VERSIONED_PATH_RE.match(path)
    if match:
        return f"{origin}/api/v{match.group(1)}"
    return f"{origin}{path}"


def _requested_environment(environment: Optional[str]) -> Optional[str]:
    if environment:
        return normalize_environment(environment)
    return normalize_environment(get_settings().ASAAS_ENVIRONMENT)


def _to_integration(row: IntegrationApiKey, requested_env: Optional[str]) -> Optional[ResolvedIntegration]:
    token = (row.key_value or "").strip()
    if not token:
        return None
    env = (
        normalize_environment(row.environment)
        or requested_env
        or shared.ENVIRONMENT_PRODUCTION
    )
    return ResolvedIntegration(
        base_url=normalize_asaas_base_url(row.url_api, env),
        access_token=token,
        credential_id=row.id,
        environment=env,
    )


async def _query_credentials(
    db: AsyncSession,
    company_id: Optional[int],
    environment: Optional[str],
    scoped: bool,
) -> list[IntegrationApiKey]:
    stmt = select(IntegrationApiKey).where(
        IntegrationApiKey.provider == shared.ASAAS_PROVIDER,
        IntegrationApiKey.active.is_(True),
    )
    if scoped:
        if company_id is not None:
            stmt = stmt.where(
                or_(
                    IntegrationApiKey.empresa_id == company_id,
                    IntegrationApiKey.is_global.is_(True),
                )
            )
        else:
            stmt = stmt.where(IntegrationApiKey.is_global.is_(True))
    if environment:
        stmt = stmt.where(IntegrationApiKey.environment == environment)

    if scoped and company_id is not None:
        company_first = case((IntegrationApiKey.empresa_id == company_id, 0), else_=1)
        stmt = stmt.order_by(
            company_first,
            IntegrationApiKey.created_at.desc(),
            IntegrationApiKey.id.desc(),
        )
    else:
        stmt = stmt.order_by(
            IntegrationApiKey.created_at.desc(), IntegrationApiKey.id.desc()
        )

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def resolve_asaas_integration(
    db: AsyncSession,
    company_id: Optional[int] = None,
    environment: Optional[str] = None,
    *,
    allow_legacy_fallback: Optional[bool] = None,
) -> ResolvedIntegration:
    settings = get_settings()
    requested_env = _requested_environment(environment)
    if allow_legacy_fallback is None:
        allow_legacy_fallback = settings.ASAAS_ALLOW_LEGACY_CREDENTIAL_FALLBACK

    attempts: list[tuple[str, bool, Optional[str]]] = [
        ("scoped", True, requested_env)
    ]
    if allow_legacy_fallback:
        attempts.append(("unscoped", False, requested_env))
        if requested_env:
            attempts.append(("any_environment", False, None))

    for step, scoped, env_filter in attempts:
        rows = await _query_credentials(db, company_id, env_filter, scoped)
        if not rows:
            continue
        if step != "scoped":
            shared.logger.warning(
                "asaas_credential_legacy_fallback",
                step=step,
                company_id=company_id,
                requested_environment=requested_env,
            )
        for row in rows:
            integration = _to_integration(row, requested_env)
            if integration is not None:
                return integration
        shared.logger.warning(
            "asaas_credential_empty_token", step=step, company_id=company_id
        )
        # Rows existed but none was usable: do not relax further.
        break

    raise IntegrationNotConfiguredError(
        details={"company_id": company_id, "environment": requested_env}
    )


def resolve_env_integration() -> ResolvedIntegration:
    """Process-wide credential from ASAAS_API_URL / ASAAS_ACCESS_TOKEN."""
    settings = get_settings()
    token = settings.asaas_fallback_token
    if not token:
        raise IntegrationNotConfiguredError(
            "Asaas integration is not configured. Check ASAAS_API_URL and ASAAS_ACCESS_TOKEN."
        )
    env = normalize_environment(settings.ASAAS_ENVIRONMENT) or shared.ENVIRONMENT_PRODUCTION
    return ResolvedIntegration(
        base_url=normalize_asaas_base_url(settings.ASAAS_API_URL, env),
        access_token=token,
        credential_id=None,
        environment=env,
    )


async def create_asaas_client(
    db: AsyncSession,
    company_id: Optional[int] = None,
    environment: Optional[str] = None,
) -> AsaasClient:
    integration = await resolve_asaas_integration(db, company_id, environment)
    return AsaasClient(integration.base_url, integration.access_token)
