import re

from labelflow.workers.print_queue import PrintJob, PrintQueue


def test_fifo_and_empty():
    q = PrintQueue()
    assert q.dequeue() is None

    first = q.enqueue("^XA^FDone^FS^XZ")
    second = q.enqueue("^XA^FDtwo^FS^XZ")
    assert len(q) == 2

    assert q.dequeue() is first
    assert q.dequeue() is second
    assert q.dequeue() is None
    assert len(q) == 0


def test_job_shape():
    job = PrintJob(payload="^XA^XZ")
    assert re.match(r"^\d+-[0-9a-z]{9}$", job.id)
    assert job.status == "pending"
    assert job.created_at.endswith("Z")

    data = job.to_dict()
    assert set(data) == {"id", "payload", "status", "created_at"}
    assert data["payload"] == "^XA^XZ"


def test_ids_are_distinct():
    q = PrintQueue()
    ids = {q.enqueue("x").id for _ in range(50)}
    assert len(ids) == 50
