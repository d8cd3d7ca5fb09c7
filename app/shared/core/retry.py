"""
Retry policy for idempotent outbound reads.

Gateway writes (charge creation, customer creation) are never retried: a
timeout after the gateway accepted the request would create duplicates.
"""

import logging

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

RETRY_CONFIGS = {
    "gateway_read": {
        "max_attempts": 3,
        "min_wait": 0.2,
        "max_wait": 2.0,
        "multiplier": 2.0,
        "exceptions": (httpx.TransportError,),
    },
}


def transient_read_retrying(operation_type: str = "gateway_read") -> AsyncRetrying:
    """
    Build a tenacity AsyncRetrying for transport failures on GET requests.

    Usage:
        async for attempt in transient_read_retrying():
            with attempt:
                response = await client.get(...)
    """
    config = RETRY_CONFIGS[operation_type]
    return AsyncRetrying(
        stop=stop_after_attempt(config["max_attempts"]),
        wait=wait_exponential(
            multiplier=config["multiplier"],
            min=config["min_wait"],
            max=config["max_wait"],
        ),
        retry=retry_if_exception_type(config["exceptions"]),
        before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
        reraise=True,
    )
