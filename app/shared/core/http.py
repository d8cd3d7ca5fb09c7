"""
Async HTTP Client Shared Infrastructure

Keeps a single httpx.AsyncClient for outbound gateway calls, opened in the
FastAPI lifespan and closed on shutdown.
"""

import inspect
from typing import Optional

import httpx
import structlog

from app.shared.core.config import get_settings

logger = structlog.get_logger()

_client: Optional[httpx.AsyncClient] = None


def _build_client(timeout: float) -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        http2=True,
        timeout=httpx.Timeout(timeout, connect=10.0),
        limits=httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20,
            keepalive_expiry=30.0,
        ),
        headers={"User-Agent": f"{settings.APP_NAME}/{settings.VERSION}"},
    )


def get_http_client() -> httpx.AsyncClient:
    """
    Returns the shared httpx.AsyncClient, creating it lazily when the
    lifespan hook has not run (scripts, tests).
    """
    global _client
    if _client is None:
        logger.warning(
            "http_client_lazy_initialized",
            msg="Client was not pre-initialized",
        )
        _client = _build_client(get_settings().ASAAS_HTTP_TIMEOUT_SECONDS)
    return _client


async def init_http_client() -> None:
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return

    timeout = get_settings().ASAAS_HTTP_TIMEOUT_SECONDS
    _client = _build_client(timeout)
    logger.info("http_client_initialized", http2=True, timeout=timeout)


async def close_http_client() -> None:
    """
    Gracefully shuts down the shared client, flushing its connection pool.
    """
    global _client
    client = _client
    _client = None
    if client is None:
        return

    close_result = client.aclose()
    if inspect.isawaitable(close_result):
        await close_result
    logger.info("http_client_closed")
