# ---------------------------
# labelflow/workers/outbox.py
# ---------------------------
"""
Follow-up work queued after an order is saved: issue the carrier label,
download it and compose the printable artifacts.

Saving the order only appends an OutboxItem; a single worker loop drains the
queue. Transient remote failures go back on the queue until the item runs
out of attempts; every failure is written to the order's LabelRecord.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from labelflow import store
from labelflow.config import settings
from labelflow.errors import TransientRemoteError

logger = logging.getLogger("uvicorn.error")

ERROR_PREFIX = "Immediate label process"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class OutboxItem:
    order_id: str
    company: str
    token: str
    attempts: int = 0
    max_attempts: int = 3
    created_at: str = field(default_factory=_utcnow)
    last_error: Optional[str] = None


OutboxHandler = Callable[[OutboxItem], Awaitable[Any]]


class OutboxWorker:
    def __init__(
        self,
        handler: OutboxHandler,
        *,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: float = 5.0,
    ):
        self._handler = handler
        self._max_attempts = settings.OUTBOX_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self._retry_delay = retry_delay_seconds
        self._queue: "asyncio.Queue[OutboxItem]" = asyncio.Queue()
        self.processed = 0
        self.failed = 0
        self.retried = 0

    def enqueue(self, order_id: Any, company: str, token: str) -> OutboxItem:
        item = OutboxItem(
            order_id=str(order_id), company=company, token=token, max_attempts=self._max_attempts
        )
        self._queue.put_nowait(item)
        logger.info("[OUTBOX] queued order %s (%s)", item.order_id, company)
        return item

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def status(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "pending": self.pending,
        }

    async def process_one(self, item: OutboxItem) -> bool:
        """Run the handler once for ``item``; True on success."""
        item.attempts += 1
        try:
            await self._handler(item)
        except Exception as e:
            item.last_error = f"{ERROR_PREFIX}: {e}"
            logger.error("[OUTBOX] order %s attempt %d/%d failed: %s",
                         item.order_id, item.attempts, item.max_attempts, e)
            await store.record_label_error(item.order_id, item.last_error)
            if isinstance(e, TransientRemoteError) and item.attempts < item.max_attempts:
                self.retried += 1
                self._requeue(item)
            else:
                self.failed += 1
            return False
        self.processed += 1
        logger.info("[OUTBOX] order %s done", item.order_id)
        return True

    def _requeue(self, item: OutboxItem) -> None:
        if self._retry_delay > 0:
            asyncio.get_running_loop().call_later(self._retry_delay, self._queue.put_nowait, item)
        else:
            self._queue.put_nowait(item)

    async def drain(self) -> None:
        """Process everything currently queued, including immediate retries."""
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                await self.process_one(item)
            finally:
                self._queue.task_done()

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("[OUTBOX] started")
        while not stop_event.is_set():
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.process_one(item)
            except Exception as e:
                logger.exception("[OUTBOX] unexpected failure for order %s: %s", item.order_id, e)
            finally:
                self._queue.task_done()
        logger.info("[OUTBOX] stopped")
