#===========================================================================
# labelflow/labels/compositor.py
# Packing slip + carrier label on one 425.20 x 283.46 pt page, then the
# JPEG and ZPL renditions of that page.
#===========================================================================

from __future__ import annotations

import asyncio
import io
import logging
from typing import Dict, List, Optional, Tuple

import pypdf

from labelflow import store
from labelflow.config import StoreCalibration, calibration_for, settings
from labelflow.errors import ConfigurationError, FormatError, TransportFileMissingError
from labelflow.labels.artifacts import ArtifactLayout, ArtifactSet, write_bytes_atomic
from labelflow.labels.packing_slip import PackingSlip, SlipItem, render_packing_slip
from labelflow.labels.raster import image_to_zpl, pdf_to_image
from labelflow.models.records import Invoice, Order, OrderItem

logger = logging.getLogger("uvicorn.error")

COMPOSITE_WIDTH = 425.20
COMPOSITE_HEIGHT = 283.46


def transport_placement(shipping_scale: float) -> Tuple[float, float, float, float]:
    """
    (x, y, width, height) of the carrier label on the composite page: scaled by
    ``shipping_scale`` with the overflow split evenly around the right half.
    """
    half = COMPOSITE_WIDTH / 2
    width = half * shipping_scale
    height = COMPOSITE_HEIGHT * shipping_scale
    x = half - (width - half) / 2
    y = (COMPOSITE_HEIGHT - height) / 2
    return x, y, width, height


def _place(target: pypdf.PageObject, source: pypdf.PageObject, x: float, y: float, width: float, height: float) -> None:
    if source.rotation:
        source.transfer_rotation_to_content()
    box = source.mediabox
    transform = (
        pypdf.Transformation()
        .translate(-float(box.left), -float(box.bottom))
        .scale(width / float(box.width), height / float(box.height))
        .translate(x, y)
    )
    target.merge_transformed_page(source, transform)


def merge_label_pages(slip_pdf: bytes, transport_pdf: bytes, shipping_scale: float) -> bytes:
    slip_reader = pypdf.PdfReader(io.BytesIO(slip_pdf))
    try:
        transport_reader = pypdf.PdfReader(io.BytesIO(transport_pdf))
    except pypdf.errors.PdfReadError as e:
        raise FormatError(f"Transport label is not a readable PDF: {e}") from e
    if not transport_reader.pages:
        raise FormatError("Transport label PDF has no pages.")

    writer = pypdf.PdfWriter()
    page = writer.add_blank_page(width=COMPOSITE_WIDTH, height=COMPOSITE_HEIGHT)
    _place(page, slip_reader.pages[0], 0, 0, COMPOSITE_WIDTH / 2, COMPOSITE_HEIGHT)
    _place(page, transport_reader.pages[0], *transport_placement(shipping_scale))

    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def slip_from_records(order: Order, invoice: Optional[Invoice], items: List[OrderItem]) -> PackingSlip:
    return PackingSlip(
        order_number=order.order_number,
        invoice_number=invoice.number if invoice else None,
        series=invoice.series if invoice else None,
        issue_date=invoice.issue_date if invoice else None,
        access_key=invoice.access_key if invoice else None,
        customer_name=order.contact_name or (invoice.contact_name if invoice else None),
        street=order.label_street,
        number=order.label_number,
        neighborhood=order.label_neighborhood,
        complement=order.label_complement,
        city=order.label_city,
        state=order.label_state,
        postal_code=order.label_postal_code,
        items=[SlipItem(sku=i.sku or "", quantity=i.quantity or 0, description=i.description) for i in items],
    )


class LabelCompositor:
    def __init__(
        self,
        layout: Optional[ArtifactLayout] = None,
        *,
        calibration_table: Optional[Dict[str, StoreCalibration]] = None,
        default_logo_name: Optional[str] = None,
    ):
        self.layout = layout or ArtifactLayout.from_settings()
        self._calibration_table = calibration_table
        self._default_logo_name = default_logo_name or settings.DEFAULT_LOGO_NAME

    def calibration(self, store_id) -> StoreCalibration:
        return calibration_for(store_id, self._calibration_table)

    async def _logo_for_order(self, order_number: str) -> Optional[str]:
        record = await store.get_label_record_by_number(order_number)
        return await store.get_logo(record.store_id if record else None, self._default_logo_name)

    async def load_sources(self, order_number: str) -> Tuple[PackingSlip, str, str]:
        """(slip, store_id, logo) for an order; raises ConfigurationError naming what is missing."""
        invoice, order, items, logo, record = await asyncio.gather(
            store.get_invoice_by_number(order_number),
            store.get_order_by_number(order_number),
            store.get_items(order_number),
            self._logo_for_order(order_number),
            store.get_label_record_by_number(order_number),
        )
        if order is None:
            raise ConfigurationError(f"Order {order_number} not found.")
        if invoice is None:
            raise ConfigurationError(f"Invoice for order {order_number} not found.")
        if not items:
            raise ConfigurationError(f"No items found for order {order_number}.")
        if not logo:
            raise ConfigurationError("Logo not found.")
        if record is None or not record.store_id:
            raise ConfigurationError(f"Label data for order {order_number} not found.")
        return slip_from_records(order, invoice, items), str(record.store_id), logo

    async def compose(self, order_number: str) -> bytes:
        pdf_bytes, _ = await self.compose_artifacts(order_number)
        return pdf_bytes

    async def compose_artifacts(self, order_number: str) -> Tuple[bytes, ArtifactSet]:
        slip, store_id, logo = await self.load_sources(order_number)
        transport_path = self.layout.transport_pdf(store_id, order_number)
        if not transport_path.exists():
            raise TransportFileMissingError(str(transport_path))

        calibration = self.calibration(store_id)
        slip_pdf = await asyncio.to_thread(render_packing_slip, slip, logo)
        composite = await asyncio.to_thread(
            merge_label_pages, slip_pdf, transport_path.read_bytes(), calibration.shipping_label_scale_factor
        )

        artifacts = self.layout.artifact_set(store_id, order_number)
        # a failed rerun must not leave the previous ZPL next to a new PDF
        for stale in (artifacts.bitmap_path, artifacts.image_path):
            stale.unlink(missing_ok=True)
        write_bytes_atomic(artifacts.pdf_path, composite)
        image_path = await asyncio.to_thread(pdf_to_image, artifacts.pdf_path, artifacts.image_path.parent)
        await asyncio.to_thread(image_to_zpl, image_path, store_id, artifacts.bitmap_path.parent, calibration)
        logger.info("[COMPOSE] order %s (store %s) -> %s", order_number, store_id, artifacts.pdf_path)
        return composite, artifacts
