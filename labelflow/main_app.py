#=================================================================
# labelflow/main_app.py
# FastAPI application entry-point (no static serving).
#=================================================================

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from labelflow import logging_filters
from labelflow.clients.carrier import CarrierClient
from labelflow.clients.http_retry import RetryableHttpClient
from labelflow.config import settings
from labelflow.db import init_db
from labelflow.errors import LabelPipelineError
from labelflow.labels.acquirer import LabelAcquirer
from labelflow.labels.artifacts import ArtifactLayout
from labelflow.labels.compositor import LabelCompositor
from labelflow.routes import router as api_router
from labelflow.sync.reconcile import ReconciliationDriver
from labelflow.workers.outbox import OutboxWorker
from labelflow.workers.print_queue import PrintQueue
from labelflow.workers.scheduler import JobScheduler

# --- FastAPI instance ---
app = FastAPI(
    title="labelflow",
    description="Shipping label pipeline: carrier label download, packing slip composition, ZPL printing.",
    debug=False,
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)

GENERIC_ERROR = "Internal server error"


# --- Error handlers ---
@app.exception_handler(LabelPipelineError)
async def pipeline_error_handler(request: Request, exc: LabelPipelineError):
    if exc.status_code >= 500:
        logger.error("Pipeline error on %s", request.url.path, exc_info=exc)
    else:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    message = GENERIC_ERROR if settings.is_production and exc.status_code >= 500 else exc.message
    return JSONResponse(status_code=exc.status_code, content={"error": message})


# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    message = GENERIC_ERROR if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"error": message})


def build_services(app: FastAPI, http: RetryableHttpClient | None = None, layout: ArtifactLayout | None = None) -> None:
    """Wire every service onto ``app.state``."""
    http = http or RetryableHttpClient()
    layout = layout or ArtifactLayout.from_settings()
    compositor = LabelCompositor(layout)
    driver = ReconciliationDriver(CarrierClient(http), LabelAcquirer(http, layout), compositor)
    outbox = OutboxWorker(driver.handle_outbox_item)
    driver.outbox = outbox

    scheduler = JobScheduler()
    scheduler.register("orders", driver.scheduled_import_orders)
    scheduler.register("invoices", driver.scheduled_import_invoices)
    scheduler.register("labels", driver.scheduled_pending_labels)

    app.state.http = http
    app.state.layout = layout
    app.state.compositor = compositor
    app.state.driver = driver
    app.state.outbox = outbox
    app.state.scheduler = scheduler
    app.state.print_queue = PrintQueue()


# ---- Background worker lifecycle ----
_outbox_task: asyncio.Task | None = None
_outbox_stop: asyncio.Event | None = None


@app.on_event("startup")
async def _startup():
    await init_db()
    build_services(app)
    app.state.layout.ensure_roots()

    global _outbox_task, _outbox_stop
    _outbox_stop = asyncio.Event()
    _outbox_task = asyncio.create_task(app.state.outbox.run(_outbox_stop))

    scheduler = app.state.scheduler
    for name, enabled in (
        ("orders", settings.AUTO_START_ORDERS),
        ("invoices", settings.AUTO_START_INVOICES),
        ("labels", settings.AUTO_START_LABELS),
    ):
        if enabled:
            scheduler.start(name)
    logger.info("labelflow started in %s mode", settings.ENVIRONMENT)


@app.on_event("shutdown")
async def _shutdown():
    global _outbox_task, _outbox_stop
    await app.state.scheduler.shutdown()
    if _outbox_stop:
        _outbox_stop.set()
    if _outbox_task:
        try:
            await asyncio.wait_for(_outbox_task, timeout=5.0)
        except asyncio.TimeoutError:
            _outbox_task.cancel()
    await app.state.http.aclose()
