import asyncio
import io

import pypdf
import pytest

from conftest import make_pdf, seed_order
from labelflow.config import DEFAULT_CALIBRATION, calibration_for
from labelflow.errors import ConfigurationError, TransportFileMissingError
from labelflow.labels import raster
from labelflow.labels.compositor import (
    COMPOSITE_HEIGHT,
    COMPOSITE_WIDTH,
    LabelCompositor,
    merge_label_pages,
    transport_placement,
)
from labelflow.labels.packing_slip import render_packing_slip, PackingSlip


def test_unknown_store_uses_documented_defaults():
    cal = calibration_for("no-such-store")
    assert cal is DEFAULT_CALIBRATION
    assert cal.shipping_label_scale_factor == 1.08
    assert cal.bitmap_scale_factor == 0.98


def test_builtin_store_calibration():
    cal = calibration_for(204978475)
    assert (cal.shipping_label_scale_factor, cal.bitmap_scale_factor) == (1.02, 0.90)


def test_transport_placement_centres_overflow():
    x, y, w, h = transport_placement(1.08)
    half = COMPOSITE_WIDTH / 2
    assert w == pytest.approx(half * 1.08)
    assert h == pytest.approx(COMPOSITE_HEIGHT * 1.08)
    # equal overflow on both sides of the right half's midpoint
    assert x + w / 2 == pytest.approx(half + half / 2)
    assert y == pytest.approx((COMPOSITE_HEIGHT - h) / 2)

    assert transport_placement(1.0) == pytest.approx((half, 0.0, half, COMPOSITE_HEIGHT))


def test_merge_builds_double_wide_page():
    slip = render_packing_slip(PackingSlip(order_number="1"))
    merged = merge_label_pages(slip, make_pdf(), 1.08)
    reader = pypdf.PdfReader(io.BytesIO(merged))
    assert len(reader.pages) == 1
    box = reader.pages[0].mediabox
    assert float(box.width) == pytest.approx(COMPOSITE_WIDTH)
    assert float(box.height) == pytest.approx(COMPOSITE_HEIGHT)
    assert "TRANSPORT" in (reader.pages[0].extract_text() or "")


def test_compose_writes_all_artifacts(database, layout):
    async def go():
        await seed_order("12345", "999", skus=("SKU-B", "SKU-A"))
        transport = layout.transport_pdf("999", "12345")
        transport.parent.mkdir(parents=True, exist_ok=True)
        transport.write_bytes(make_pdf())
        return await LabelCompositor(layout).compose_artifacts("12345")

    pdf_bytes, artifacts = asyncio.run(go())
    assert pdf_bytes.startswith(b"%PDF")
    assert artifacts.pdf_path == layout.composite_pdf("999", "12345")
    assert artifacts.pdf_path.read_bytes() == pdf_bytes
    assert artifacts.image_path.exists()
    zpl = artifacts.bitmap_path.read_text()
    assert zpl.startswith("^XA^FO0,0^GFA,")
    assert zpl.endswith("^FS^XZ")

    field = raster.decode_graphic_field(zpl)
    w, h = raster.scaled_size(
        *raster.render_first_page(pdf_bytes).size, DEFAULT_CALIBRATION.bitmap_scale_factor
    )
    assert field.height == h
    assert field.bytes_per_row == (w + 7) // 8


def test_compose_requires_invoice(database, layout):
    async def go():
        await seed_order("777", "999", with_invoice=False)
        await LabelCompositor(layout).compose("777")

    with pytest.raises(ConfigurationError, match="Invoice"):
        asyncio.run(go())


def test_compose_requires_logo(database, layout):
    async def go():
        await seed_order("778", "999", with_logo=False)
        await LabelCompositor(layout).compose("778")

    with pytest.raises(ConfigurationError, match="Logo"):
        asyncio.run(go())


def test_compose_requires_transport_file(database, layout):
    async def go():
        await seed_order("779", "999")
        await LabelCompositor(layout).compose("779")

    with pytest.raises(TransportFileMissingError):
        asyncio.run(go())
    assert not layout.composite_pdf("999", "779").exists()


def test_failed_rerun_leaves_no_stale_bitmap(database, layout, monkeypatch):
    async def go():
        await seed_order("780", "999")
        transport = layout.transport_pdf("999", "780")
        transport.parent.mkdir(parents=True, exist_ok=True)
        transport.write_bytes(make_pdf())
        await LabelCompositor(layout).compose_artifacts("780")

        def broken_zpl(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr("labelflow.labels.compositor.image_to_zpl", broken_zpl)
        await LabelCompositor(layout).compose_artifacts("780")

    bitmap = layout.bitmap("999", "780")
    with pytest.raises(RuntimeError):
        asyncio.run(go())
    assert not bitmap.exists()
    assert layout.composite_pdf("999", "780").exists()
