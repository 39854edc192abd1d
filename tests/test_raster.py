import asyncio
import io
import math
import re

import httpx
import PIL.Image
import pypdf
import pytest

from conftest import make_pdf, make_png
from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.config import StoreCalibration
from labelflow.errors import FormatError
from labelflow.labels import raster


def _grey(rows):
    """Build an ``L`` image from rows of 0/255 values."""
    height, width = len(rows), len(rows[0])
    img = PIL.Image.new("L", (width, height))
    img.putdata([v for row in rows for v in row])
    return img


def test_pack_bitmap_size_and_padding():
    field = raster.pack_bitmap(PIL.Image.new("L", (10, 3), 0))
    assert field.bytes_per_row == 2
    assert field.total_bytes == 6
    # 10 dark pixels then 6 white padding bits
    assert field.data[:2] == bytes([0xFF, 0xC0])


def test_pack_bitmap_msb_first_threshold():
    field = raster.pack_bitmap(_grey([[0, 255, 127, 128, 255, 255, 255, 0]]))
    assert field.data == bytes([0b10100001])


def test_decoded_pixels_match_thresholded_image():
    rows = [
        [0, 200, 50, 255, 127, 128, 10, 250, 0, 255, 30],
        [255, 255, 255, 0, 0, 0, 200, 100, 90, 80, 70],
    ]
    field = raster.pack_bitmap(_grey(rows))
    decoded = raster.decode_graphic_field(field.to_zpl())
    assert decoded.bytes_per_row == math.ceil(11 / 8)
    assert decoded.height == 2
    pixels = decoded.pixels()
    for y, row in enumerate(rows):
        assert pixels[y][:11] == [v < 128 for v in row]
        # padding past the real width is white
        assert not any(pixels[y][11:])


def test_zpl_command_shape():
    field = raster.pack_bitmap(PIL.Image.new("L", (16, 2), 255))
    assert field.to_zpl() == "^XA^FO0,0^GFA,4,4,2,00000000^FS^XZ"


def test_decode_rejects_malformed_fields():
    with pytest.raises(FormatError):
        raster.decode_graphic_field("^XA^FS^XZ")
    with pytest.raises(FormatError):
        raster.decode_graphic_field("^XA^FO0,0^GFA,4,4,2,0000^FS^XZ")


@pytest.mark.parametrize(
    "w,h,f,expected",
    [(101, 50, 0.98, (99, 49)), (51, 11, 0.5, (26, 6)), (1, 1, 0.1, (1, 1)), (850, 1276, 0.90, (765, 1148))],
)
def test_scaled_size_rounds(w, h, f, expected):
    assert raster.scaled_size(w, h, f) == expected


def test_encode_graphic_field_byte_count():
    img = PIL.Image.new("RGB", (123, 45), (255, 255, 255))
    field = raster.encode_graphic_field(img, 0.98)
    w, h = raster.scaled_size(123, 45, 0.98)
    assert (field.width, field.height) == (w, h)
    assert field.total_bytes == math.ceil(w / 8) * h


def test_render_first_page_supersamples_and_rotates():
    image = raster.render_first_page(make_pdf(100, 50))
    assert image.size == (150, 300)


def test_render_first_page_rejects_bad_documents():
    with pytest.raises(FormatError):
        raster.render_first_page(b"not a pdf at all")

    buf = io.BytesIO()
    pypdf.PdfWriter().write(buf)
    with pytest.raises(FormatError):
        raster.render_first_page(buf.getvalue())


def test_pdf_to_zpl_is_dimensionally_stable(tmp_path):
    pdf_path = tmp_path / "100.pdf"
    pdf_path.write_bytes(make_pdf(200, 120))
    calibration = StoreCalibration(bitmap_scale_factor=0.98)

    fields = []
    for run in range(2):
        out = tmp_path / f"run{run}"
        image_path = raster.pdf_to_image(pdf_path, out)
        assert image_path.name == "100.jpg"
        zpl_path = raster.image_to_zpl(image_path, "999", out, calibration)
        assert zpl_path.name == "100.zpl"
        fields.append(raster.decode_graphic_field(zpl_path.read_text()))

    assert fields[0].bytes_per_row == fields[1].bytes_per_row
    assert fields[0].height == fields[1].height


def test_png_to_pdf_page_matches_image_pixels():
    pdf_bytes = raster.png_to_pdf(make_png(40, 20, color=90))
    page = pypdf.PdfReader(io.BytesIO(pdf_bytes)).pages[0]
    assert (float(page.mediabox.width), float(page.mediabox.height)) == (40.0, 20.0)

    with pytest.raises(FormatError):
        raster.png_to_pdf(b"<html>nope</html>")


def test_zpl_to_pdf_posts_raw_zpl_and_checks_content_type():
    seen = []

    def handler(request):
        seen.append(request)
        if b"BAD" in request.content:
            return httpx.Response(200, text="<html>error</html>", headers={"Content-Type": "text/html"})
        return httpx.Response(200, content=make_png(30, 30), headers={"Content-Type": "image/png"})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            http = RetryableHttpClient(client)
            pdf_bytes = await raster.zpl_to_pdf("^XA^FDOK^FS^XZ", http, "http://render.test/")
            with pytest.raises(FormatError):
                await raster.zpl_to_pdf("^XA^FDBAD^FS^XZ", http, "http://render.test/")
            return pdf_bytes

    pdf_bytes = asyncio.run(go())
    assert pdf_bytes.startswith(b"%PDF")
    assert seen[0].headers["Accept"] == "image/png"
    assert seen[0].content == b"^XA^FDOK^FS^XZ"
    assert re.match(r"^http://render\.test/?$", str(seen[0].url))
