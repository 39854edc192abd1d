# --- Global log sanitizer: keeps ZPL bitmaps and HTML bodies out of the logs ------
import logging, re

_GFA_HEX_RE  = re.compile(r'(\^GFA,\d+,\d+,\d+,)([0-9A-Fa-f]{64,})')
_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()

def summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def collapse_zpl_hex(s: str, keep: int = 16) -> str:
    return _GFA_HEX_RE.sub(lambda m: f"{m.group(1)}{m.group(2)[:keep]}…[{len(m.group(2))} hex chars trimmed]", s)

def sanitize(msg: str) -> str:
    if len(msg) <= 200:
        return msg
    if _HTML_SIG_RE.search(msg):
        return summarize_html(msg)
    return collapse_zpl_hex(msg)

class PayloadTrimFilter(logging.Filter):
    """Replace large ZPL hex payloads and HTML blobs in a log message with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str):
            trimmed = sanitize(msg)
            if trimmed != msg:
                record.msg = trimmed
                record.args = ()
        return True

def install() -> None:
    """Attach the filter to the root logger and the uvicorn family, once."""
    for name in ("", "uvicorn", "uvicorn.error"):
        lg = logging.getLogger(name)
        if not any(isinstance(f, PayloadTrimFilter) for f in lg.filters):
            lg.addFilter(PayloadTrimFilter())
# --------------------------------------------------------------------------------
