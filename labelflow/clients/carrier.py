#==========================================================================================
# labelflow/clients/carrier.py
# Carrier / ERP API interface module (orders, invoices, label issuance).
# Every call is preceded by a fixed delay: the API allows roughly one request per second.
#==========================================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.config import settings
from labelflow.errors import NonRetryableRemoteError, NotFoundError, RemoteServiceError

logger = logging.getLogger("uvicorn.error")

PAGE_SIZE = 100
DETAIL_ATTEMPTS = 3
DETAIL_RETRY_DELAY_MS = 1500

LogFn = Callable[[str], Any]
Sleep = Callable[[float], Awaitable[Any]]


def _auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _emit(log: Optional[LogFn], message: str) -> None:
    logger.info("[CARRIER] %s", message.strip())
    if log is not None:
        log(message)


class PaginatedFetcher:
    """Walks a page-based listing endpoint until it returns an empty page."""

    def __init__(
        self,
        http: RetryableHttpClient,
        *,
        base_url: str | None = None,
        delay_ms: int | None = None,
        page_size: int = PAGE_SIZE,
        sleep: Optional[Sleep] = None,
    ):
        self._http = http
        self._base_url = (base_url or settings.CARRIER_API_URL).rstrip("/")
        self._delay_ms = settings.CARRIER_API_DELAY_MS if delay_ms is None else delay_ms
        self._page_size = page_size
        self._sleep = sleep or asyncio.sleep

    async def fetch_all(
        self,
        token: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        log: Optional[LogFn] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield every record of ``endpoint``, page by page.

        A failing page is logged and ends the walk; records already yielded
        stay with the caller.
        """
        page = 1
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        while True:
            await self._sleep(self._delay_ms / 1000)
            try:
                resp = await self._http.get(
                    url,
                    headers=_auth(token),
                    params={**(params or {}), "pagina": page, "limite": self._page_size},
                )
                batch = (resp.json() or {}).get("data") or []
            except (RemoteServiceError, NotFoundError, ValueError) as e:
                _emit(log, f"Error on page {page} of '{endpoint}': {e}")
                return
            if not batch:
                return
            for record in batch:
                yield record
            _emit(log, f" -> Page {page} of '{endpoint}' loaded.")
            page += 1


class CarrierClient:
    def __init__(
        self,
        http: RetryableHttpClient,
        *,
        base_url: str | None = None,
        delay_ms: int | None = None,
        label_formats: Optional[Dict[str, str]] = None,
        sleep: Optional[Sleep] = None,
    ):
        self._http = http
        self._base_url = (base_url or settings.CARRIER_API_URL).rstrip("/")
        self._delay_ms = settings.CARRIER_API_DELAY_MS if delay_ms is None else delay_ms
        self._label_formats = settings.LABEL_FORMAT_MAP if label_formats is None else label_formats
        self._sleep = sleep or asyncio.sleep
        self.pages = PaginatedFetcher(
            http, base_url=self._base_url, delay_ms=self._delay_ms, sleep=self._sleep
        )

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    def fetch_all(self, token: str, endpoint: str, params=None, log: Optional[LogFn] = None):
        return self.pages.fetch_all(token, endpoint, params, log)

    async def get_details(
        self,
        token: str,
        endpoint: str,
        record_id: Any,
        log: Optional[LogFn] = None,
    ) -> Optional[Dict[str, Any]]:
        """Detail of one record; ``None`` when it does not exist or keeps failing."""
        url = f"{self._base_url}/{endpoint.strip('/')}/{record_id}"
        for attempt in range(1, DETAIL_ATTEMPTS + 1):
            await self._sleep(self._delay_ms / 1000)
            try:
                resp = await self._http.get(url, headers=_auth(token))
                return (resp.json() or {}).get("data")
            except NotFoundError:
                _emit(log, f" -> ID {record_id} not found.")
                return None
            except (RemoteServiceError, ValueError) as e:
                _emit(log, f" -> Attempt {attempt} to fetch ID {record_id} failed: {e}")
                if attempt < DETAIL_ATTEMPTS:
                    await self._sleep(DETAIL_RETRY_DELAY_MS / 1000)
        return None

    def label_format(self, store_id: Any) -> str:
        return str(self._label_formats.get(str(store_id)) or "PDF")

    async def issue_label(self, token: str, order_id: Any, store_id: Any) -> Optional[Dict[str, Any]]:
        """
        Ask the carrier for the shipping label of one order.
        Returns the first ``{"id", "link"}`` entry, or None when there is none.
        """
        await self._sleep(self._delay_ms / 1000)
        try:
            resp = await self._http.get(
                f"{self._base_url}/logisticas/etiquetas",
                headers=_auth(token),
                params={"idsVendas[]": order_id, "formato": self.label_format(store_id)},
            )
        except NotFoundError:
            return None
        except RemoteServiceError as e:
            raise NonRetryableRemoteError(
                f"Carrier API failed for order {order_id}: {e.message}",
                url=e.url,
                response_status=e.response_status,
                attempts=e.attempts,
            ) from e
        try:
            entries = (resp.json() or {}).get("data") or []
        except ValueError:
            entries = []
        first = entries[0] if entries else None
        if not isinstance(first, dict) or not first.get("link"):
            return None
        return first
