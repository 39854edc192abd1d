#===========================================================================
# labelflow/labels/acquirer.py
# Downloads the carrier label (PDF or ZIP with ZPL inside), normalizes it
# to PDF and stores it as {labels_root}/{store}/{order}_transport.pdf.
#===========================================================================

from __future__ import annotations

import io
import logging
import zipfile
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from labelflow import store
from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.errors import FormatError
from labelflow.labels.artifacts import ArtifactLayout, write_bytes_atomic
from labelflow.labels.raster import zpl_to_pdf

logger = logging.getLogger("uvicorn.error")

ZIP = "zip"
PDF = "pdf"

ZPL_ENTRY_SUFFIXES = (".zpl", ".txt")


def classify_link(link: str) -> Optional[str]:
    """
    "zip", "pdf" or None. The URL path suffix decides; links whose path hides
    the extension (signed URLs, query strings) fall back to a substring match.
    """
    lowered = (link or "").lower()
    path = urlparse(lowered).path
    for kind in (ZIP, PDF):
        if path.endswith(f".{kind}"):
            return kind
    for kind in (ZIP, PDF):
        if f".{kind}" in lowered:
            return kind
    return None


def extract_zpl(archive: bytes) -> str:
    """Text of the first ``.zpl``/``.txt`` file in the archive."""
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                if info.filename.lower().endswith(ZPL_ENTRY_SUFFIXES):
                    return zf.read(info).decode("utf-8", errors="replace")
    except zipfile.BadZipFile as e:
        raise FormatError(f"Label archive is not a valid ZIP: {e}") from e
    raise FormatError("ZPL/TXT file not found in the ZIP archive.")


class LabelAcquirer:
    def __init__(
        self,
        http: RetryableHttpClient,
        layout: Optional[ArtifactLayout] = None,
        *,
        render_url: str | None = None,
    ):
        self._http = http
        self.layout = layout or ArtifactLayout.from_settings()
        self._render_url = render_url

    async def download(self, link: str) -> bytes:
        resp = await self._http.get(link, max_retries=1)
        return resp.content

    async def to_pdf(self, link: str, payload: bytes) -> bytes:
        kind = classify_link(link)
        if kind == ZIP:
            zpl = extract_zpl(payload)
            logger.info("[LABEL] ZIP label, converting %d chars of ZPL to PDF", len(zpl))
            return await zpl_to_pdf(zpl, self._http, self._render_url)
        if kind == PDF:
            return payload
        raise FormatError("Unsupported label format.", {"link": link})

    async def acquire(
        self,
        order_id: Any,
        store_id: Any,
        order_number: str,
        label_info: Dict[str, Any],
    ) -> str:
        """
        Store the transport label of one order and mark its LabelRecord as
        saved. No retry here; the record is only touched after the file is
        on disk.
        """
        link = label_info.get("link") or ""
        pdf_bytes = await self.to_pdf(link, await self.download(link))
        target = write_bytes_atomic(self.layout.transport_pdf(store_id, order_number), pdf_bytes)
        await store.mark_label_saved(str(order_id), label_info.get("id"), link)
        logger.info("[LABEL] order %s transport label saved to %s", order_number, target)
        return str(target)
