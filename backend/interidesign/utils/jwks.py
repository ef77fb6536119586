import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from interidesign.exceptions import ProviderVerificationFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")

_jwks_cache: dict[str, dict[str, Any]] = {}
_jwks_cache_times: dict[str, float] = {}
JWKS_CACHE_TTL = 3600

# One retry for transient network failures, never for rejected tokens
PROVIDER_CALL_ATTEMPTS = 2


async def call_provider(description: str, call: Callable[[], Awaitable[T]]) -> T:
    """Run a provider verification call, retrying once on transport errors."""
    for attempt in range(1, PROVIDER_CALL_ATTEMPTS + 1):
        try:
            return await call()
        except httpx.TransportError as e:
            if attempt == PROVIDER_CALL_ATTEMPTS:
                logger.error("%s failed after %d attempts: %s", description, attempt, e)
                raise ProviderVerificationFailed(
                    "Could not reach the identity provider. Please try again."
                ) from None
            logger.warning("%s failed (%s), retrying once", description, e)
        except httpx.HTTPStatusError as e:
            logger.warning("%s rejected with HTTP %s", description, e.response.status_code)
            raise ProviderVerificationFailed() from None
    raise AssertionError("unreachable")


async def _download_jwks(jwks_url: str, timeout: float) -> dict:
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.get(jwks_url)
        resp.raise_for_status()
        return resp.json()


async def fetch_jwks(jwks_url: str, timeout: float = 10.0) -> dict:
    now = time.time()
    cached = _jwks_cache.get(jwks_url)
    cache_time = _jwks_cache_times.get(jwks_url, 0)
    if cached and (now - cache_time) < JWKS_CACHE_TTL:
        return cached

    jwks = await call_provider(
        f"JWKS fetch from {jwks_url}",
        lambda: _download_jwks(jwks_url, timeout),
    )
    _jwks_cache[jwks_url] = jwks
    _jwks_cache_times[jwks_url] = now
    return jwks


def clear_jwks_cache() -> None:
    _jwks_cache.clear()
    _jwks_cache_times.clear()
