#===========================================================================
# labelflow/labels/packing_slip.py
# Renders the packing slip that sits on the left half of the printed label.
#===========================================================================

from __future__ import annotations

import base64
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

import reportlab.lib.utils
import reportlab.pdfbase.pdfmetrics
import reportlab.pdfgen.canvas
from reportlab.graphics.barcode.code128 import Code128

logger = logging.getLogger("uvicorn.error")

PAGE_WIDTH = 212.6
PAGE_HEIGHT = 283.46
MARGIN = 10
LOGO_WIDTH = 80
BARCODE_HEIGHT = 16
MAX_ENUMERATED_ITEMS = 6
QTY_COLUMN_X = PAGE_WIDTH - MARGIN - 30
QTY_BOX = 22
LINE_HEIGHT_RATIO = 1.16

TOO_MANY_ITEMS_LINE = "VERIFICAR ITENS E QUANTIDADES NO PEDIDO"
NO_NUMBER = "S/N"

REGULAR = "Helvetica"
BOLD = "Helvetica-Bold"


@dataclass
class SlipItem:
    sku: str
    quantity: float = 0
    description: str | None = None


@dataclass
class PackingSlip:
    order_number: str | None = None
    invoice_number: str | None = None
    series: str | None = None
    issue_date: str | None = None
    access_key: str | None = None
    customer_name: str | None = None
    street: str | None = None
    number: str | None = None
    neighborhood: str | None = None
    complement: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    items: List[SlipItem] = field(default_factory=list)


# ---------------------------
# Text helpers
# ---------------------------

def format_address_line(slip: PackingSlip) -> str:
    parts = [slip.street, slip.number or NO_NUMBER, slip.neighborhood, slip.complement]
    return ", ".join(p for p in parts if p)


def format_city_line(slip: PackingSlip) -> str:
    city = "-".join(p for p in (slip.city, slip.state) if p)
    return f"{city} CEP: {slip.postal_code or ''}"


def format_access_key(key: str) -> str:
    return re.sub(r"(\d{4})", r"\1 ", key or "").strip()


def format_emission_date(value: str | None) -> str:
    """
    Stored timestamps are already wall-clock correct: drop any offset and
    print them as they are.
    """
    if not value:
        return "N/A"
    raw = str(value).strip()
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return raw
    return dt.replace(tzinfo=None).strftime("%d/%m/%Y, %H:%M:%S")


def sort_items(items: Iterable[SlipItem]) -> List[SlipItem]:
    return sorted(items, key=lambda i: i.sku or "")


def _quantity(value) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


# ---------------------------
# Drawing
# ---------------------------

class _SlipCanvas:
    """reportlab canvas addressed top-down, the way the layout is measured."""

    def __init__(self, buffer: io.BytesIO):
        self.pdf = reportlab.pdfgen.canvas.Canvas(buffer, pagesize=(PAGE_WIDTH, PAGE_HEIGHT))

    def _baseline(self, top: float, font: str, size: float) -> float:
        return PAGE_HEIGHT - top - reportlab.pdfbase.pdfmetrics.getAscent(font, size)

    def width_of(self, text: str, font: str, size: float) -> float:
        return reportlab.pdfbase.pdfmetrics.stringWidth(text, font, size)

    def text(
        self,
        text: str,
        x: float,
        top: float,
        font: str,
        size: float,
        *,
        width: Optional[float] = None,
        align: str = "left",
        color=(0, 0, 0),
    ) -> float:
        """Draw (wrapping to ``width``) and return the y just below the last line."""
        lines = reportlab.lib.utils.simpleSplit(text, font, size, width) if width else [text]
        leading = size * LINE_HEIGHT_RATIO
        self.pdf.setFont(font, size)
        self.pdf.setFillColorRGB(*color)
        for n, line in enumerate(lines or [""]):
            baseline = self._baseline(top + n * leading, font, size)
            if align == "center" and width:
                self.pdf.drawCentredString(x + width / 2, baseline, line)
            elif align == "right":
                self.pdf.drawRightString(x, baseline, line)
            else:
                self.pdf.drawString(x, baseline, line)
        self.pdf.setFillColorRGB(0, 0, 0)
        return top + max(1, len(lines)) * leading

    def logo(self, logo_b64: str, x: float, top: float) -> None:
        reader = reportlab.lib.utils.ImageReader(io.BytesIO(base64.b64decode(logo_b64)))
        iw, ih = reader.getSize()
        height = LOGO_WIDTH * ih / iw
        self.pdf.drawImage(reader, x, PAGE_HEIGHT - top - height, width=LOGO_WIDTH, height=height, mask="auto")

    def barcode(self, value: str, x: float, top: float, width: float) -> None:
        probe = Code128(value, barWidth=1, humanReadable=False, quiet=False)
        bar = Code128(
            value,
            barWidth=width / probe.width,
            barHeight=BARCODE_HEIGHT,
            humanReadable=False,
            quiet=False,
        )
        bar.drawOn(self.pdf, x, PAGE_HEIGHT - top - BARCODE_HEIGHT)

    def rule(self, top: float) -> None:
        self.pdf.setStrokeColorRGB(0, 0, 0)
        self.pdf.line(MARGIN, PAGE_HEIGHT - top, PAGE_WIDTH - MARGIN, PAGE_HEIGHT - top)

    def filled_box(self, x: float, top: float, size: float) -> None:
        self.pdf.setFillColorRGB(0, 0, 0)
        self.pdf.rect(x, PAGE_HEIGHT - top - size, size, size, stroke=0, fill=1)

    def finish(self) -> None:
        self.pdf.showPage()
        self.pdf.save()


def _draw_items(c: _SlipCanvas, items: List[SlipItem], y: float) -> None:
    if len(items) > MAX_ENUMERATED_ITEMS:
        y += 20
        c.text(TOO_MANY_ITEMS_LINE, MARGIN, y, BOLD, 14, width=PAGE_WIDTH - MARGIN * 2, align="center")
        return

    for item in items:
        # never run past the fixed label size
        if y > PAGE_HEIGHT - 30:
            break
        qty = _quantity(item.quantity)
        sku_bottom = c.text(
            (item.sku or "").upper(), MARGIN, y, BOLD, 22, width=PAGE_WIDTH - MARGIN * 2 - 35
        )
        if qty >= 2:
            c.filled_box(QTY_COLUMN_X, y, QTY_BOX)
            qty_bottom = c.text(
                str(qty), QTY_COLUMN_X, y + 4, BOLD, 22, width=QTY_BOX, align="center", color=(1, 1, 1)
            )
        else:
            qty_bottom = c.text(str(qty), QTY_COLUMN_X, y, BOLD, 22, width=25, align="center")
        y = max(sku_bottom, qty_bottom) + 5


def render_packing_slip(slip: PackingSlip, logo_b64: Optional[str] = None) -> bytes:
    """Render ``slip`` onto one 212.6 x 283.46 pt page and return the PDF bytes."""
    buffer = io.BytesIO()
    c = _SlipCanvas(buffer)
    y = MARGIN

    if logo_b64:
        try:
            c.logo(logo_b64, MARGIN, y)
        except Exception as e:
            logger.error("[SLIP] logo could not be drawn: %s", e)

    nf_text = f"NF: {slip.invoice_number or 'N/A'} - Serie: {slip.series or 'N/A'}"
    c.text(nf_text, PAGE_WIDTH - MARGIN, y + 1, BOLD, 12, align="right")
    c.text(format_emission_date(slip.issue_date), PAGE_WIDTH - MARGIN, y + 14, REGULAR, 12, align="right")
    y += 25

    if slip.access_key:
        try:
            c.barcode(slip.access_key, MARGIN, y, PAGE_WIDTH - MARGIN * 2)
            y += 18
            c.text(
                format_access_key(slip.access_key), MARGIN, y, REGULAR, 6.5,
                width=PAGE_WIDTH - MARGIN * 2, align="center",
            )
            y += 8
        except Exception as e:
            logger.warning("[SLIP] barcode skipped for %s: %s", slip.order_number, e)
            y += 8

    label = "CLIENTE: "
    c.text(label, MARGIN, y, BOLD, 7.5)
    c.text((slip.customer_name or "N/A").upper(), MARGIN + c.width_of(label, BOLD, 7.5), y, REGULAR, 7.5)
    y += 8

    c.text(f"END: {format_address_line(slip)}", MARGIN, y, REGULAR, 7.5, width=PAGE_WIDTH - MARGIN * 2)
    y += 18

    c.text(format_city_line(slip), MARGIN, y, REGULAR, 7.5)
    y += 8

    label = "PEDIDO: "
    c.text(label, MARGIN, y, BOLD, 9)
    c.text((slip.order_number or "").upper(), MARGIN + c.width_of(label, BOLD, 9), y, BOLD, 9)
    y += 8

    c.rule(y)
    y += 2

    c.text("SKU", MARGIN, y, BOLD, 12)
    c.text("QTD", QTY_COLUMN_X, y, BOLD, 12)
    y += 15

    _draw_items(c, sort_items(slip.items), y)
    c.finish()
    return buffer.getvalue()
