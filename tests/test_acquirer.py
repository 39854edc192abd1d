import asyncio
import io
import zipfile

import httpx
import pytest

from conftest import make_pdf, make_png, seed_order
from labelflow import store
from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.errors import FormatError
from labelflow.labels.acquirer import LabelAcquirer, classify_link, extract_zpl

RENDER_URL = "http://render.test/v1/"


def _zip(entries) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.mark.parametrize(
    "link,kind",
    [
        ("https://files.test/label.PDF", "pdf"),
        ("https://files.test/label.zip", "zip"),
        ("https://files.test/label.zip?sig=abc.pdf", "zip"),
        ("https://files.test/download?file=label.pdf&x=1", "pdf"),
        ("https://files.test/label.png", None),
    ],
)
def test_classify_link(link, kind):
    assert classify_link(link) == kind


def test_extract_zpl_picks_first_zpl_or_txt_file():
    archive = _zip([("docs/", ""), ("readme.md", "x"), ("label.TXT", "^XA^FDhi^FS^XZ"), ("b.zpl", "other")])
    assert extract_zpl(archive) == "^XA^FDhi^FS^XZ"

    with pytest.raises(FormatError):
        extract_zpl(_zip([("readme.md", "x")]))
    with pytest.raises(FormatError):
        extract_zpl(b"not a zip")


def _acquirer(layout, files):
    def handler(request):
        url = str(request.url)
        if url.startswith(RENDER_URL):
            return httpx.Response(200, content=make_png(50, 80), headers={"Content-Type": "image/png"})
        return httpx.Response(200, content=files[url])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LabelAcquirer(RetryableHttpClient(client), layout, render_url=RENDER_URL), client


def test_acquire_pdf_link_saves_file_and_marks_record(database, layout):
    link = "https://files.test/etq/12345.pdf"
    pdf = make_pdf()

    async def go():
        order_id = await seed_order("12345", "999")
        acquirer, client = _acquirer(layout, {link: pdf})
        path = await acquirer.acquire(order_id, "999", "12345", {"id": 55, "link": link})
        await client.aclose()
        return path, await store.get_label_record(order_id)

    path, record = asyncio.run(go())
    assert path.endswith("12345_transport.pdf")
    assert layout.transport_pdf("999", "12345").read_bytes() == pdf
    assert record.downloaded_state == store.LABEL_SAVED
    assert record.label_id == "55"
    assert record.link == link
    assert record.last_error is None


def test_acquire_zip_link_renders_zpl_to_pdf(database, layout):
    link = "https://files.test/etq/12346.zip"

    async def go():
        order_id = await seed_order("12346", "999")
        acquirer, client = _acquirer(layout, {link: _zip([("etiqueta.zpl", "^XA^FDx^FS^XZ")])})
        await acquirer.acquire(order_id, "999", "12346", {"id": 56, "link": link})
        await client.aclose()

    asyncio.run(go())
    assert layout.transport_pdf("999", "12346").read_bytes().startswith(b"%PDF")


def test_unsupported_link_leaves_record_untouched(database, layout):
    link = "https://files.test/etq/12347.png"

    async def go():
        order_id = await seed_order("12347", "999")
        acquirer, client = _acquirer(layout, {link: b"png"})
        try:
            with pytest.raises(FormatError):
                await acquirer.acquire(order_id, "999", "12347", {"id": 57, "link": link})
        finally:
            await client.aclose()
        return await store.get_label_record(order_id)

    record = asyncio.run(go())
    assert record.downloaded_state is None
    assert record.link is None
    assert not layout.transport_pdf("999", "12347").exists()
