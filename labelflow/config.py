# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
import json as _json
from dataclasses import dataclass
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not str(v).strip():
        return default
    try:
        return int(str(v).strip())
    except ValueError:
        return default


def _get_json_map(name: str, default: dict | None = None) -> dict:
    raw = os.getenv(name, "")
    if not raw:
        return default or {}
    try:
        return _json.loads(raw)
    except Exception:
        return default or {}


# ── Per-store calibration ────────────────────────────────────────────────────

@dataclass(frozen=True)
class StoreCalibration:
    shipping_label_scale_factor: float = 1.08
    bitmap_scale_factor: float = 0.98


DEFAULT_CALIBRATION = StoreCalibration()

# Stores whose carrier labels print too large/small with the defaults
_BUILTIN_CALIBRATION: dict = {
    "204978475": {"shipping_label_scale_factor": 1.02, "bitmap_scale_factor": 0.90},
    "203944379": {"shipping_label_scale_factor": 1.08, "bitmap_scale_factor": 0.95},
    "203614110": {"shipping_label_scale_factor": 1.02, "bitmap_scale_factor": 0.90},
}


def _load_calibration_table(raw: dict) -> dict[str, StoreCalibration]:
    table: dict[str, StoreCalibration] = {}
    for store_id, entry in (raw or {}).items():
        if not isinstance(entry, dict):
            continue
        table[str(store_id)] = StoreCalibration(
            shipping_label_scale_factor=float(
                entry.get("shipping_label_scale_factor", DEFAULT_CALIBRATION.shipping_label_scale_factor)
            ),
            bitmap_scale_factor=float(
                entry.get("bitmap_scale_factor", DEFAULT_CALIBRATION.bitmap_scale_factor)
            ),
        )
    return table


class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development").strip().lower()

    # ── Storage ──────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    LABELS_ROOT: str = os.getenv("LABELS_ROOT", "") or os.path.join(DATA_DIR, "saved_labels")
    PDF_ROOT: str = os.getenv("PDF_ROOT", "") or os.path.join(DATA_DIR, "generated_pdf")
    IMAGES_ROOT: str = os.getenv("IMAGES_ROOT", "") or os.path.join(DATA_DIR, "label_images")
    ZPL_ROOT: str = os.getenv("ZPL_ROOT", "") or os.path.join(DATA_DIR, "generated_zpl")

    # ── Carrier / ERP API ────────────────────────────────────────────────────
    CARRIER_API_URL: str = _rstrip_slash(os.getenv("CARRIER_API_URL", "https://api.bling.com.br/Api/v3"))
    CARRIER_API_DELAY_MS: int = _get_int("CARRIER_API_DELAY_MS", 1000)
    HTTP_TIMEOUT_SECONDS: int = _get_int("HTTP_TIMEOUT_SECONDS", 30)

    # Label format requested per store ("PDF" or "ZPL"), e.g. {"203944379": "ZPL"}
    LABEL_FORMAT_MAP: dict = _get_json_map("LABEL_FORMAT_JSON", {})

    # ── ZPL render service ───────────────────────────────────────────────────
    LABELARY_URL: str = os.getenv("LABELARY_URL", "http://api.labelary.com/v1/printers/8dpmm/labels/4x6/0/")

    # ── Packing slip ─────────────────────────────────────────────────────────
    DEFAULT_LOGO_NAME: str = os.getenv("DEFAULT_LOGO_NAME", "default")

    # Store id → {"shipping_label_scale_factor": x, "bitmap_scale_factor": y}
    STORE_CALIBRATION: dict[str, StoreCalibration] = _load_calibration_table(
        _get_json_map("STORE_CALIBRATION_JSON", _BUILTIN_CALIBRATION)
    )

    # ── Background jobs ──────────────────────────────────────────────────────
    SCHEDULER_INTERVAL_SECONDS: int = _get_int("SCHEDULER_INTERVAL_SECONDS", 1800)
    AUTO_START_ORDERS: bool = _get_bool("AUTO_START_ORDERS", False)
    AUTO_START_INVOICES: bool = _get_bool("AUTO_START_INVOICES", False)
    AUTO_START_LABELS: bool = _get_bool("AUTO_START_LABELS", False)
    OUTBOX_MAX_ATTEMPTS: int = _get_int("OUTBOX_MAX_ATTEMPTS", 3)

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()


def calibration_for(store_id, table: dict[str, StoreCalibration] | None = None) -> StoreCalibration:
    """Calibration for a store, or the documented defaults when it has no entry."""
    lookup = settings.STORE_CALIBRATION if table is None else table
    return lookup.get(str(store_id), DEFAULT_CALIBRATION)
