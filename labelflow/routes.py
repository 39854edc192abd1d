#=======================================================================================
# labelflow/routes.py
# FastAPI routes: print queue, ZPL / PDF label delivery, print counters, background
# process control and SSE import progress.
#
# Services (scheduler, outbox, queue, reconciliation driver, compositor) live on
# app.state and are created in main_app's startup hook.
#=======================================================================================

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel

from labelflow import store
from labelflow.labels import batch
from labelflow.sync.reconcile import DoneEvent, ProgressEvent, ProgressUpdate

logger = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["Labels API"])

KEEPALIVE_SECONDS = 10.0
SSE_END = "__END__"


# ---------------------------
# Request bodies
# ---------------------------

class PrintJobIn(BaseModel):
    zpl: Optional[str] = None


class OrderRef(BaseModel):
    store_id: str
    order_number: str


class ZplBatchIn(BaseModel):
    orders: List[OrderRef] = []


class ZplFilterIn(BaseModel):
    filters: Optional[Dict[str, Any]] = None


class OrderNumberIn(BaseModel):
    order_number: Optional[str] = None


class OrderNumbersIn(BaseModel):
    order_numbers: List[str] = []


class TransportIn(BaseModel):
    order_id: Optional[str] = None
    company: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


# ---------------------------
# SSE helpers
# ---------------------------

def sse_frame(event: ProgressEvent) -> str:
    if isinstance(event, DoneEvent):
        payload: Any = SSE_END
    elif isinstance(event, ProgressUpdate):
        payload = {"progress": event.percent}
    else:
        payload = event.text
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def sse_stream(events: AsyncIterator[ProgressEvent], keepalive_seconds: float = KEEPALIVE_SECONDS) -> AsyncIterator[str]:
    """Frame events for SSE; a comment line goes out after every quiet period."""
    iterator = events.__aiter__()
    pending = asyncio.ensure_future(iterator.__anext__())
    try:
        while True:
            done, _ = await asyncio.wait({pending}, timeout=keepalive_seconds)
            if not done:
                yield ": keep-alive\n\n"
                continue
            try:
                event = pending.result()
            except StopAsyncIteration:
                return
            yield sse_frame(event)
            pending = asyncio.ensure_future(iterator.__anext__())
    finally:
        if not pending.done():
            pending.cancel()


def _event_stream(events: AsyncIterator[ProgressEvent]) -> StreamingResponse:
    return StreamingResponse(
        sse_stream(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ---------------------------
# Service banner / health
# ---------------------------

@router.get("/health")
async def health():
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api")
async def banner():
    return {"message": "labelflow - label pipeline API", "version": "1.0.0"}


# ---------------------------
# Print queue
# ---------------------------

@router.post("/api/queue/add-print-job", status_code=status.HTTP_202_ACCEPTED)
async def add_print_job(body: PrintJobIn, request: Request):
    if not body.zpl:
        return _bad_request('The "zpl" field is required.')
    job = request.app.state.print_queue.enqueue(body.zpl)
    return {"message": "Print job added to the queue.", "job": job.to_dict()}


@router.get("/api/queue/get-next-job")
async def get_next_job(request: Request):
    job = request.app.state.print_queue.dequeue()
    if job is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return job.to_dict()


# ---------------------------
# ZPL delivery
# ---------------------------

@router.get("/api/zpl/{store_id}/{order_number}", response_class=PlainTextResponse)
async def single_zpl(store_id: str, order_number: str, request: Request):
    zpl = await batch.read_single_zpl(store_id, order_number, request.app.state.layout)
    return PlainTextResponse(zpl)


@router.post("/api/labels/zpl-batch")
async def zpl_batch(body: ZplBatchIn, request: Request):
    if not body.orders:
        return _bad_request("The list of orders is required.")
    orders = [o.model_dump() for o in body.orders]
    return await batch.combine_zpl(orders, request.app.state.layout)


@router.post("/api/labels/zpl-batch-by-filter")
async def zpl_batch_by_filter(body: ZplFilterIn, request: Request):
    filters = body.filters or {}
    if not filters.get("store_id"):
        return _bad_request("Filters, including store_id, are required.")
    if filters.get("status") not in (None, ""):
        try:
            int(filters["status"])
        except (TypeError, ValueError):
            return _bad_request("status must be a number.")
    orders = await store.orders_by_filter(filters)
    if not orders:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "No orders found."})
    return await batch.combine_zpl(orders, request.app.state.layout)


@router.post("/api/labels/print-count")
async def print_count(body: OrderNumberIn):
    if not body.order_number:
        return _bad_request("order_number is required.")
    count = await store.register_print(body.order_number)
    return {"message": "Counter updated.", "print_count": count}


# ---------------------------
# Background processes
# ---------------------------

@router.post("/api/processes/{name}/start")
async def start_process(name: str, request: Request):
    scheduler = request.app.state.scheduler
    if name not in scheduler.names():
        return _bad_request("Invalid process.")
    scheduler.start(name)
    return {"message": f"Process {name} started."}


@router.post("/api/processes/{name}/stop")
async def stop_process(name: str, request: Request):
    scheduler = request.app.state.scheduler
    if name not in scheduler.names():
        return _bad_request("Invalid process.")
    scheduler.stop(name)
    return {"message": f"Process {name} stopped."}


@router.get("/api/processes/status")
async def processes_status(request: Request):
    return request.app.state.scheduler.status()


@router.get("/api/outbox/status")
async def outbox_status(request: Request):
    return request.app.state.outbox.status()


# ---------------------------
# Label records
# ---------------------------

def _record_summary(rec) -> Dict[str, Any]:
    return {
        "order_id": rec.order_id,
        "order_number": rec.order_number,
        "company": rec.company,
        "created_at": rec.created_at.isoformat() if rec.created_at else None,
        "last_error": rec.last_error,
    }


@router.get("/api/labels/pending")
async def pending_labels():
    return [_record_summary(r) for r in await store.label_records_by_state(None)]


@router.get("/api/labels/ready")
async def ready_labels():
    return [_record_summary(r) for r in await store.label_records_by_state(store.LABEL_SAVED)]


@router.post("/api/labels/process-transport")
async def process_transport(body: TransportIn, request: Request):
    if not body.order_id or not body.company:
        return _bad_request("Required fields: order_id and company.")
    return await request.app.state.driver.process_transport(body.order_id, body.company)


@router.post("/api/labels/packing-slip")
async def packing_slip(body: OrderNumberIn, request: Request):
    if not body.order_number:
        return _bad_request("order_number is required.")
    pdf_bytes = await request.app.state.compositor.compose(body.order_number)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f"inline; filename=label_{body.order_number}.pdf"},
    )


@router.post("/api/labels/batch-pdf")
async def batch_pdf(body: OrderNumbersIn, request: Request):
    if not body.order_numbers:
        return _bad_request('Array "order_numbers" is required.')
    pdf_bytes = await batch.build_batch_pdf(body.order_numbers, request.app.state.compositor)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": "inline; filename=label_batch.pdf"},
    )


@router.get("/api/orders/{order_number}/items")
async def order_items(order_number: str):
    return [
        {"sku": i.sku, "description": i.description, "quantity": i.quantity}
        for i in await store.get_items(order_number)
    ]


# ---------------------------
# Imports (SSE)
# ---------------------------

@router.get("/api/import/orders")
async def import_orders(
    request: Request,
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
):
    return _event_stream(request.app.state.driver.import_orders(date_from, date_to))


@router.get("/api/import/invoices")
async def import_invoices(
    request: Request,
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
):
    return _event_stream(request.app.state.driver.import_invoices(date_from, date_to))
