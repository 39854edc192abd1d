#===========================================================================
# labelflow/labels/batch.py
# Batch print paths: many orders' ZPL concatenated, many composites in one
# PDF, and the per-order ZPL read used by printer agents.
#===========================================================================

from __future__ import annotations

import asyncio
import io
import logging
from typing import Any, Dict, List, Optional

import pypdf

from labelflow import store
from labelflow.errors import NotFoundError
from labelflow.labels.artifacts import ArtifactLayout
from labelflow.labels.compositor import LabelCompositor

logger = logging.getLogger("uvicorn.error")

ZPL_SKU_FALLBACK = "ZZZ_FALLBACK"
PDF_SKU_FALLBACK = "ZZZ"


async def _with_first_sku(order_numbers: List[str], fallback: str) -> List[str]:
    """First SKU of every order, looked up concurrently; missing ones sort last."""
    skus = await asyncio.gather(*(store.get_first_sku(n) for n in order_numbers))
    return [sku or fallback for sku in skus]


async def combine_zpl(orders: List[Dict[str, Any]], layout: Optional[ArtifactLayout] = None) -> Dict[str, Any]:
    """
    Concatenate the stored ZPL of ``orders`` (``{store_id, order_number}``)
    in SKU order. Orders without a ZPL file are skipped and reported; the
    rest get one print registered.
    """
    layout = layout or ArtifactLayout.from_settings()
    logger.info("[PRINT] combining ZPL for %d orders", len(orders))

    skus = await _with_first_sku([str(o["order_number"]) for o in orders], ZPL_SKU_FALLBACK)
    # sorted() is stable: orders sharing a SKU keep their request order
    ranked = sorted(zip(skus, orders), key=lambda pair: pair[0])

    chunks: List[str] = []
    processed: List[str] = []
    skipped: List[str] = []
    for _, order in ranked:
        order_number = str(order["order_number"])
        path = layout.bitmap(order["store_id"], order_number)
        if path.exists():
            chunks.append(path.read_text(encoding="utf-8") + "\n")
            processed.append(order_number)
        else:
            logger.warning("[PRINT] ZPL file not found: %s", path)
            skipped.append(order_number)

    if processed:
        await store.register_prints(processed)

    return {
        "zpl_data": "".join(chunks),
        "processed": processed,
        "skipped": skipped,
        "processed_count": len(processed),
        "skipped_count": len(skipped),
        "message": f"Processed {len(processed)} labels. {len(skipped)} skipped.",
    }


async def read_single_zpl(store_id: str, order_number: str, layout: Optional[ArtifactLayout] = None) -> str:
    layout = layout or ArtifactLayout.from_settings()
    path = layout.bitmap(store_id, order_number)
    if not path.exists():
        raise NotFoundError("ZPL file not found.", {"store_id": store_id, "order_number": order_number})
    await store.register_prints([order_number])
    return path.read_text(encoding="utf-8")


async def build_batch_pdf(order_numbers: List[str], compositor: Optional[LabelCompositor] = None) -> bytes:
    """
    One page per order, SKU order. An order that cannot be composed is
    logged and left out.
    """
    compositor = compositor or LabelCompositor()
    skus = await _with_first_sku(order_numbers, PDF_SKU_FALLBACK)
    ranked = [n for _, n in sorted(zip(skus, order_numbers), key=lambda pair: pair[0])]

    writer = pypdf.PdfWriter()
    for order_number in ranked:
        try:
            composite = await compositor.compose(order_number)
            writer.add_page(pypdf.PdfReader(io.BytesIO(composite)).pages[0])
        except Exception as e:
            logger.error("[PRINT] could not build label for %s: %s", order_number, e)

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()
