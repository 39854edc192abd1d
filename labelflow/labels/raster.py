#===========================================================================
# labelflow/labels/raster.py
# PDF → JPEG, JPEG → ZPL ^GFA bitmap, and ZPL → PDF (via the render service).
#===========================================================================

from __future__ import annotations

import asyncio
import io
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import fitz
import PIL.Image
import reportlab.lib.utils
import reportlab.pdfgen.canvas

from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.clients.labelary import render_zpl_png
from labelflow.config import StoreCalibration, calibration_for
from labelflow.errors import FormatError
from labelflow.labels.artifacts import write_bytes_atomic, write_text_atomic

logger = logging.getLogger("uvicorn.error")

SUPERSAMPLE_SCALE = 3
THRESHOLD = 128
JPEG_QUALITY = 90

# byte value → ASCII "1" (dark) / "0" (light), for bytes.translate
_BIT_CHARS = bytes(0x31 if v < THRESHOLD else 0x30 for v in range(256))

_GFA_RE = re.compile(r"\^GFA,(\d+),(\d+),(\d+),([0-9A-Fa-f]*)")


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def scaled_size(width: int, height: int, factor: float) -> tuple[int, int]:
    """Rounded (not truncated) so repeated conversions do not drift smaller."""
    return max(1, _round_half_up(width * factor)), max(1, _round_half_up(height * factor))


@dataclass(frozen=True)
class GraphicField:
    """A monochrome bitmap packed 8 pixels per byte, MSB first, bit set = dark."""

    width: int
    height: int
    bytes_per_row: int
    data: bytes

    @property
    def total_bytes(self) -> int:
        return len(self.data)

    def to_zpl(self) -> str:
        hex_data = self.data.hex().upper()
        total = self.total_bytes
        return f"^XA^FO0,0^GFA,{total},{total},{self.bytes_per_row},{hex_data}^FS^XZ"

    def pixels(self) -> List[List[bool]]:
        """Unpack to rows of booleans (True = dark), ``width`` pixels per row."""
        rows: List[List[bool]] = []
        for y in range(self.height):
            row_bytes = self.data[y * self.bytes_per_row:(y + 1) * self.bytes_per_row]
            bits = "".join(f"{b:08b}" for b in row_bytes)
            rows.append([c == "1" for c in bits[: self.width]])
        return rows


def pack_bitmap(grey: PIL.Image.Image) -> GraphicField:
    """Threshold an ``L`` image at 128 and pack it row by row."""
    if grey.mode != "L":
        grey = grey.convert("L")
    width, height = grey.size
    bytes_per_row = math.ceil(width / 8)
    # padding bits past the right edge stay white
    pad = b"0" * (bytes_per_row * 8 - width)
    raw = grey.tobytes()
    out = bytearray()
    for y in range(height):
        bits = raw[y * width:(y + 1) * width].translate(_BIT_CHARS) + pad
        out += int(bits, 2).to_bytes(bytes_per_row, "big")
    return GraphicField(width=width, height=height, bytes_per_row=bytes_per_row, data=bytes(out))


def encode_graphic_field(image: PIL.Image.Image, bitmap_scale_factor: float) -> GraphicField:
    width, height = scaled_size(image.width, image.height, bitmap_scale_factor)
    resized = image.resize((width, height)) if (width, height) != image.size else image
    return pack_bitmap(resized.convert("L"))


def decode_graphic_field(zpl: str) -> GraphicField:
    m = _GFA_RE.search(zpl or "")
    if not m:
        raise FormatError("No ^GFA graphic field found in ZPL.")
    total, _, bytes_per_row, hex_data = int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4)
    data = bytes.fromhex(hex_data)
    if len(data) != total or bytes_per_row <= 0 or total % bytes_per_row:
        raise FormatError(
            "Malformed ^GFA graphic field.",
            {"declared": total, "actual": len(data), "bytes_per_row": bytes_per_row},
        )
    return GraphicField(
        width=bytes_per_row * 8,
        height=total // bytes_per_row,
        bytes_per_row=bytes_per_row,
        data=data,
    )


# ---------------------------
# PDF → image
# ---------------------------

def render_first_page(pdf_bytes: bytes, scale: float = SUPERSAMPLE_SCALE) -> PIL.Image.Image:
    """Page 1 of the PDF at ``scale``×, rotated 90° counter-clockwise."""
    try:
        document = fitz.open(stream=pdf_bytes, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise FormatError(f"PDF could not be opened: {e}") from e
    try:
        if document.page_count == 0:
            raise FormatError("The PDF document is empty or could not be processed.")
        pixmap = document[0].get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        image = PIL.Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)
    finally:
        document.close()
    # carrier labels come out landscape; printers feed portrait
    return image.rotate(90, expand=True)


def pdf_to_image(pdf_path: Path, output_dir: Path) -> Path:
    pdf_path = Path(pdf_path)
    logger.info("[PDF->JPG] converting %s", pdf_path)
    image = render_first_page(pdf_path.read_bytes())
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    target = write_bytes_atomic(Path(output_dir) / f"{pdf_path.stem}.jpg", buffer.getvalue())
    logger.info("[PDF->JPG] saved %s (%dx%d)", target, image.width, image.height)
    return target


# ---------------------------
# image → ZPL
# ---------------------------

def image_to_zpl(
    image_path: Path,
    store_id,
    zpl_dir: Path,
    calibration: Optional[StoreCalibration] = None,
) -> Path:
    image_path = Path(image_path)
    factor = (calibration or calibration_for(store_id)).bitmap_scale_factor
    logger.info("[JPG->ZPL] converting %s (factor=%.2f)", image_path.name, factor)
    with PIL.Image.open(image_path) as image:
        field = encode_graphic_field(image, factor)
    target = write_text_atomic(Path(zpl_dir) / f"{image_path.stem}.zpl", field.to_zpl())
    logger.info(
        "[JPG->ZPL] saved %s (%d bytes, %d per row, %d rows)",
        target, field.total_bytes, field.bytes_per_row, field.height,
    )
    return target


# ---------------------------
# ZPL → PDF
# ---------------------------

def png_to_pdf(png_bytes: bytes) -> bytes:
    """Threshold a rendered label and wrap it in a page of the same pixel size."""
    try:
        image = PIL.Image.open(io.BytesIO(png_bytes))
        image.load()
    except (PIL.UnidentifiedImageError, OSError) as e:
        raise FormatError(f"Render service returned an unreadable image: {e}") from e
    contrasted = image.convert("L").point(lambda p: 255 if p >= THRESHOLD else 0)
    width, height = contrasted.size

    buffer = io.BytesIO()
    pdf = reportlab.pdfgen.canvas.Canvas(buffer, pagesize=(width, height))
    pdf.drawImage(reportlab.lib.utils.ImageReader(contrasted), 0, 0, width=width, height=height)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


async def zpl_to_pdf(zpl: str, http: RetryableHttpClient, render_url: str | None = None) -> bytes:
    png = await render_zpl_png(http, zpl, url=render_url)
    return await asyncio.to_thread(png_to_pdf, png)
