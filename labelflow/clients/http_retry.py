#===========================================================================
# labelflow/clients/http_retry.py
# httpx wrapper with bounded exponential backoff for 429/5xx responses.
#===========================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from labelflow.config import settings
from labelflow.errors import NonRetryableRemoteError, NotFoundError, TransientRemoteError

logger = logging.getLogger("uvicorn.error")

Sleep = Callable[[float], Awaitable[Any]]


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Wait before attempt number ``attempt`` (1-based); the first attempt never waits."""
    if attempt <= 1:
        return 0
    return base_delay_ms * (2 ** (attempt - 2))


class RetryableHttpClient:
    """
    Thin retry layer over an ``httpx.AsyncClient``.

    ``max_retries`` is the total number of attempts. Only responses with status
    429 or >= 500 are retried; anything else is surfaced on the first attempt.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float | None = None,
        sleep: Optional[Sleep] = None,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=timeout or float(settings.HTTP_TIMEOUT_SECONDS),
            follow_redirects=True,
        )
        self._owns_client = client is None
        self._sleep = sleep or asyncio.sleep

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RetryableHttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def post(
        self,
        url: str,
        body: Any = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        base_delay_ms: int = 3000,
    ) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": headers, "params": params}
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body
        return await self.request("POST", url, max_retries=max_retries, base_delay_ms=base_delay_ms, **kwargs)

    async def get(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        max_retries: int = 1,
        base_delay_ms: int = 3000,
    ) -> httpx.Response:
        return await self.request(
            "GET", url, headers=headers, params=params, max_retries=max_retries, base_delay_ms=base_delay_ms
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        max_retries: int = 3,
        base_delay_ms: int = 3000,
        **kwargs: Any,
    ) -> httpx.Response:
        attempts = max(1, int(max_retries))
        for attempt in range(1, attempts + 1):
            wait_ms = backoff_delay_ms(attempt, base_delay_ms)
            if wait_ms:
                logger.warning("[RETRY] %s %s attempt %d/%d in %.1fs", method, url, attempt, attempts, wait_ms / 1000)
                await self._sleep(wait_ms / 1000)

            try:
                resp = await self._client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                raise NonRetryableRemoteError(f"{method} {url} failed: {e}", url=url, attempts=attempt) from e

            if resp.is_success:
                return resp

            status = resp.status_code
            if is_retryable_status(status):
                if attempt < attempts:
                    logger.warning("[RETRY] %s %s answered %d", method, url, status)
                    continue
                logger.error("[RETRY] %s %s failed after %d attempts (last status %d)", method, url, attempts, status)
                raise TransientRemoteError(
                    f"{method} {url} still failing after {attempts} attempts",
                    url=url,
                    response_status=status,
                    attempts=attempt,
                )
            if status == 404:
                raise NotFoundError(f"{method} {url} returned 404", {"url": url})
            raise NonRetryableRemoteError(
                f"{method} {url} returned {status}: {resp.text[:300]}",
                url=url,
                response_status=status,
                attempts=attempt,
            )

        # unreachable: the loop either returns or raises
        raise TransientRemoteError(f"{method} {url} failed", url=url, attempts=attempts)
