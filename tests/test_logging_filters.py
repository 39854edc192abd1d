import logging

from labelflow.logging_filters import PayloadTrimFilter, sanitize


def test_short_messages_pass_through():
    assert sanitize("[LABEL] order 1 saved") == "[LABEL] order 1 saved"


def test_zpl_hex_is_collapsed():
    msg = "^XA^FO0,0^GFA,400,400,10," + "F0" * 200 + "^FS^XZ"
    out = sanitize(msg)
    assert out.startswith("^XA^FO0,0^GFA,400,400,10,F0F0F0F0F0F0F0F0")
    assert "[400 hex chars trimmed]" in out
    assert out.endswith("^FS^XZ")


def test_html_body_becomes_title():
    body = "<!DOCTYPE html><html><head><title>502 Bad Gateway</title></head><body>" + "x" * 500 + "</body></html>"
    assert sanitize(body) == f"502 Bad Gateway [HTML {len(body)} chars trimmed]"


def test_filter_rewrites_record():
    record = logging.LogRecord("uvicorn.error", logging.ERROR, __file__, 1, "body: %s", ("<html>" + "y" * 300,), None)
    assert PayloadTrimFilter().filter(record) is True
    assert record.args == ()
    assert "chars trimmed" in record.getMessage()
