#==========================================================================================
# labelflow/sync/reconcile.py
# Carrier → local store reconciliation: order / invoice import and the pending-label
# backlog. Imports report progress as a lazy sequence of ProgressEvent values; the
# HTTP layer turns them into SSE frames, the scheduler into log lines.
#==========================================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from labelflow import store
from labelflow.clients.carrier import CarrierClient
from labelflow.errors import ConfigurationError, LabelPipelineError, NotFoundError
from labelflow.labels.acquirer import LabelAcquirer
from labelflow.labels.compositor import LabelCompositor
from labelflow.sync.normalizer import invoice_row, item_rows, order_row
from labelflow.workers.outbox import ERROR_PREFIX, OutboxItem, OutboxWorker

logger = logging.getLogger("uvicorn.error")

ORDERS_ENDPOINT = "pedidos/vendas"
INVOICES_ENDPOINT = "nfe"
OUTGOING_INVOICE = 1


# ---------------------------
# Progress events
# ---------------------------

@dataclass(frozen=True)
class LogEvent:
    text: str


@dataclass(frozen=True)
class ProgressUpdate:
    percent: float


@dataclass(frozen=True)
class DoneEvent:
    pass


ProgressEvent = Union[LogEvent, ProgressUpdate, DoneEvent]


def _last_24h() -> tuple[str, str]:
    now = datetime.now(timezone.utc)
    return (now - timedelta(days=1)).strftime("%Y-%m-%d"), now.strftime("%Y-%m-%d")


def error_text(exc: Exception) -> str:
    """Short, client-safe text for an exception; DB errors never leak their SQL."""
    if isinstance(exc, SQLAlchemyError):
        return type(exc).__name__
    if isinstance(exc, LabelPipelineError):
        return exc.message
    first_line = str(exc).splitlines()[0] if str(exc) else ""
    return first_line or type(exc).__name__


class ReconciliationDriver:
    def __init__(
        self,
        carrier: CarrierClient,
        acquirer: LabelAcquirer,
        compositor: LabelCompositor,
        *,
        outbox: Optional[OutboxWorker] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.carrier = carrier
        self.acquirer = acquirer
        self.compositor = compositor
        self.outbox = outbox
        self._sleep = sleep or asyncio.sleep

    # ---------------------------
    # Imports
    # ---------------------------

    async def import_orders(self, date_from: str, date_to: str) -> AsyncIterator[ProgressEvent]:
        params = {"dataInicial": date_from, "dataFinal": date_to}
        async for event in self._import(ORDERS_ENDPOINT, params, date_from, date_to, self._save_order):
            yield event

    async def import_invoices(self, date_from: str, date_to: str) -> AsyncIterator[ProgressEvent]:
        params = {
            "dataEmissaoInicial": f"{date_from} 00:00:00",
            "dataEmissaoFinal": f"{date_to} 23:59:59",
            "tipo": OUTGOING_INVOICE,
        }
        async for event in self._import(INVOICES_ENDPOINT, params, date_from, date_to, self._save_invoice):
            yield event

    async def _import(self, endpoint: str, params: Dict[str, Any], date_from, date_to, save) -> AsyncIterator[ProgressEvent]:
        """
        Walk every account with a token: list, fetch each detail, save. A failing
        account is reported and the next one continues; DoneEvent always comes last.
        """
        if not date_from or not date_to:
            yield LogEvent("ERROR: date_from and date_to are required.")
            yield DoneEvent()
            return

        pending: List[ProgressEvent] = []

        def log(message: str) -> None:
            pending.append(LogEvent(message))

        def flush() -> List[ProgressEvent]:
            out = list(pending)
            pending.clear()
            return out

        try:
            accounts = [a for a in await store.get_accounts() if a.token]
            for account in accounts:
                log(f"Importing '{endpoint}' for {account.company} ({date_from} to {date_to})")
                try:
                    summaries = []
                    async for summary in self.carrier.fetch_all(account.token, endpoint, params, log):
                        summaries.append(summary)
                        for event in flush():
                            yield event
                    for event in flush():
                        yield event

                    total = len(summaries)
                    for n, summary in enumerate(summaries, start=1):
                        record_id = summary.get("id")
                        try:
                            detail = await self.carrier.get_details(account.token, endpoint, record_id, log)
                            if detail:
                                await save(detail, account.company, account.token, log)
                        except Exception as e:
                            logger.exception("[IMPORT] %s record %s failed", endpoint, record_id)
                            log(f" -> ERROR saving ID {record_id}: {error_text(e)}")
                        for event in flush():
                            yield event
                        yield ProgressUpdate(round(n * 100 / total, 1))
                    log(f"{account.company}: {total} record(s) from '{endpoint}'.")
                except Exception as e:
                    logger.exception("[IMPORT] account %s failed on %s", account.company, endpoint)
                    log(f"ERROR importing {account.company}: {error_text(e)}")
                for event in flush():
                    yield event
        except Exception as e:
            logger.exception("[IMPORT] %s import aborted", endpoint)
            for event in flush():
                yield event
            yield LogEvent(f"CRITICAL ERROR: {error_text(e)}")
        yield DoneEvent()

    async def _save_order(self, detail: Dict[str, Any], company: str, token: Optional[str], log) -> None:
        row = order_row(detail)
        await store.upsert_order(row)
        if row["order_id"] and row["store_id"] and row["order_number"]:
            await store.upsert_label_record(row["order_id"], company, row["store_id"], row["order_number"])
        count = await store.upsert_items(item_rows(detail))
        log(f" -> Order {row['order_number'] or row['order_id']} saved ({count} items).")
        if token and self.outbox is not None:
            self.outbox.enqueue(row["order_id"], company, token)

    async def _save_invoice(self, detail: Dict[str, Any], company: str, token: Optional[str], log) -> None:
        row = invoice_row(detail)
        await store.upsert_invoice(row)
        log(f" -> Invoice {row['number']} (order {row['order_number']}) saved.")

    # ---------------------------
    # Labels
    # ---------------------------

    async def issue_and_compose(self, token: str, order_id: str) -> None:
        record = await store.get_label_record(str(order_id))
        if record is None:
            raise ConfigurationError(f"Label data for order {order_id} not found.")
        label_info = await self.carrier.issue_label(token, order_id, record.store_id)
        if not label_info:
            raise NotFoundError(f"Label link for order {record.order_number} not returned.")
        await self.acquirer.acquire(order_id, record.store_id, record.order_number, label_info)
        await self.compositor.compose(record.order_number)

    async def handle_outbox_item(self, item: OutboxItem) -> None:
        await self.issue_and_compose(item.token, item.order_id)

    async def process_order_label(self, token: str, order_id: str) -> bool:
        """Issue → acquire → compose for one order. Failures land on last_error."""
        try:
            await self.issue_and_compose(token, order_id)
            return True
        except Exception as e:
            logger.error("[LABEL] order %s: %s", order_id, e)
            await store.record_label_error(str(order_id), f"{ERROR_PREFIX}: {e}")
            return False

    async def process_pending_labels(self, limit: int = 20) -> int:
        """Records never downloaded, oldest first. Returns how many succeeded."""
        done = 0
        for record in await store.pending_label_records(limit):
            token = await store.get_account_token(record.company) if record.company else None
            if not token:
                continue
            if await self.process_order_label(token, record.order_id):
                done += 1
            await self._sleep(self.carrier.delay_ms * 2 / 1000)
        logger.info("[LABEL] pending pass done: %d label(s) processed", done)
        return done

    async def process_transport(self, order_id: str, company: str) -> Dict[str, str]:
        """Manual issue + download of one carrier label, without composing."""
        token = await store.get_account_token(company)
        if not token:
            raise ConfigurationError(f"Account not found: {company}")
        record = await store.get_label_record(str(order_id))
        if record is None:
            raise NotFoundError(f"Order data {order_id} not found.")
        label_info = await self.carrier.issue_label(token, order_id, record.store_id)
        if not label_info:
            raise NotFoundError("Label not found at the carrier.")
        await self.acquirer.acquire(order_id, record.store_id, record.order_number, label_info)
        return {"message": f"Label for {record.order_number} processed."}

    # ---------------------------
    # Scheduled entry points
    # ---------------------------

    async def _drain_to_log(self, events: AsyncIterator[ProgressEvent], tag: str) -> None:
        async for event in events:
            if isinstance(event, LogEvent):
                logger.info("[%s] %s", tag, event.text.strip())

    async def scheduled_import_orders(self) -> None:
        await self._drain_to_log(self.import_orders(*_last_24h()), "IMPORT")

    async def scheduled_import_invoices(self) -> None:
        await self._drain_to_log(self.import_invoices(*_last_24h()), "IMPORT")

    async def scheduled_pending_labels(self) -> None:
        await self.process_pending_labels()
