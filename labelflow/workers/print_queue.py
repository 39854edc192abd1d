# ---------------------------
# labelflow/workers/print_queue.py
# ---------------------------
"""
In-memory FIFO of print jobs pulled by remote printer agents.

A popped job is gone for good: delivery is at most once and the queue does
not survive a restart.
"""
import logging
import random
import string
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger("uvicorn.error")

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _job_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class PrintJob:
    payload: str
    id: str = field(default_factory=_job_id)
    status: str = "pending"
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PrintQueue:
    def __init__(self) -> None:
        self._jobs: Deque[PrintJob] = deque()

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, payload: str) -> PrintJob:
        job = PrintJob(payload=payload)
        self._jobs.append(job)
        logger.info("[QUEUE] job %s added; queue size %d", job.id, len(self._jobs))
        return job

    def dequeue(self) -> Optional[PrintJob]:
        if not self._jobs:
            return None
        job = self._jobs.popleft()
        logger.info("[QUEUE] job %s handed to agent; %d left", job.id, len(self._jobs))
        return job
