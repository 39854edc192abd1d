import asyncio
import base64
import io
import os
import tempfile

# settings are read at import time: point everything at a scratch directory first
_SCRATCH = tempfile.mkdtemp(prefix="labelflow-tests-")
os.environ["DATA_DIR"] = _SCRATCH
os.environ["LABELS_ROOT"] = os.path.join(_SCRATCH, "saved_labels")
os.environ["PDF_ROOT"] = os.path.join(_SCRATCH, "generated_pdf")
os.environ["IMAGES_ROOT"] = os.path.join(_SCRATCH, "label_images")
os.environ["ZPL_ROOT"] = os.path.join(_SCRATCH, "generated_zpl")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_SCRATCH, 'labelflow.db')}"
os.environ["CARRIER_API_DELAY_MS"] = "0"
os.environ["ENVIRONMENT"] = "test"
for _flag in ("AUTO_START_ORDERS", "AUTO_START_INVOICES", "AUTO_START_LABELS"):
    os.environ[_flag] = "false"

import PIL.Image
import pytest
import reportlab.pdfgen.canvas

from labelflow import db, store
from labelflow.labels.artifacts import ArtifactLayout


@pytest.fixture
def database(tmp_path):
    dsn = f"sqlite+aiosqlite:///{tmp_path / 'labelflow.db'}"

    async def _setup():
        await db.configure_database(dsn)
        await db.init_db()

    asyncio.run(_setup())
    return dsn


@pytest.fixture
def layout(tmp_path):
    lay = ArtifactLayout.under(tmp_path / "data")
    lay.ensure_roots()
    return lay


def make_pdf(width: float = 283.46, height: float = 425.2, text: str = "TRANSPORT") -> bytes:
    buf = io.BytesIO()
    c = reportlab.pdfgen.canvas.Canvas(buf, pagesize=(width, height))
    c.rect(10, 10, width - 20, height - 20, stroke=1, fill=0)
    c.setFont("Helvetica-Bold", 14)
    c.drawString(20, height / 2, text)
    c.showPage()
    c.save()
    return buf.getvalue()


def make_png(width: int = 40, height: int = 20, color: int = 0) -> bytes:
    buf = io.BytesIO()
    PIL.Image.new("L", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_logo_b64() -> str:
    buf = io.BytesIO()
    PIL.Image.new("RGB", (120, 60), (200, 30, 30)).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


async def seed_order(
    order_number: str = "12345",
    store_id: str = "999",
    skus=("SKU-A",),
    *,
    order_id: str | None = None,
    company: str = "acme",
    with_invoice: bool = True,
    with_logo: bool = True,
) -> str:
    """Order + items + label record (+ invoice and default logo) in the current database."""
    order_id = order_id or f"id-{order_number}"
    await store.upsert_order({
        "order_id": order_id,
        "order_number": order_number,
        "store_id": store_id,
        "contact_name": "Maria Silva",
        "label_street": "Rua A",
        "label_number": "",
        "label_neighborhood": "Centro",
        "label_city": "Franca",
        "label_state": "SP",
        "label_postal_code": "14400-000",
    })
    await store.upsert_items([
        {
            "item_id": f"{order_id}-{n}",
            "order_id": order_id,
            "order_number": order_number,
            "store_id": store_id,
            "sku": sku,
            "quantity": 1,
        }
        for n, sku in enumerate(skus)
    ])
    await store.upsert_label_record(order_id, company, store_id, order_number)
    if with_invoice:
        await store.upsert_invoice({
            "invoice_id": f"nf-{order_number}",
            "number": "4321",
            "series": "1",
            "order_number": order_number,
            "store_id": store_id,
            "status": 6,
            "issue_date": "2024-05-10 14:30:00",
            "access_key": "35240512345678000199550010000043211000043210",
        })
    if with_logo:
        await store.save_logo("default", make_logo_b64())
    return order_id
