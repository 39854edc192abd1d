# labelflow/clients/labelary.py
# ZPL → PNG through the Labelary render service (8 dpmm, 4x6 in, no rotation).
from __future__ import annotations

import logging

from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.config import settings
from labelflow.errors import FormatError

logger = logging.getLogger("uvicorn.error")


async def render_zpl_png(http: RetryableHttpClient, zpl: str, url: str | None = None) -> bytes:
    """Return the PNG the render service draws for ``zpl``."""
    target = url or settings.LABELARY_URL
    logger.info("[ZPL->PDF] requesting PNG from render service (%d chars of ZPL)", len(zpl))
    resp = await http.post(
        target,
        zpl.encode("utf-8"),
        headers={"Accept": "image/png", "Content-Type": "application/x-www-form-urlencoded"},
        max_retries=3,
        base_delay_ms=3000,
    )
    content_type = resp.headers.get("Content-Type", "")
    if not content_type.startswith("image/"):
        raise FormatError(
            "Render service did not return an image.",
            {"content_type": content_type, "preview": resp.text[:200]},
        )
    return resp.content
