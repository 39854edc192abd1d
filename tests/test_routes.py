import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import seed_order
from labelflow.main_app import app
from labelflow.sync.reconcile import DoneEvent, LogEvent, ProgressUpdate
from labelflow.routes import sse_frame, sse_stream


@pytest.fixture
def client(database):
    with TestClient(app) as c:
        # keep background jobs off the network
        async def idle():
            return None

        for name in app.state.scheduler.names():
            app.state.scheduler.register(name, idle)
        yield c


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "OK"


def test_print_queue_round_trip(client):
    assert client.post("/api/queue/add-print-job", json={}).status_code == 400

    response = client.post("/api/queue/add-print-job", json={"zpl": "^XA^FDhi^FS^XZ"})
    assert response.status_code == 202
    job_id = response.json()["job"]["id"]

    response = client.get("/api/queue/get-next-job")
    assert response.status_code == 200
    assert response.json()["id"] == job_id
    assert response.json()["payload"] == "^XA^FDhi^FS^XZ"

    assert client.get("/api/queue/get-next-job").status_code == 204


def test_process_control(client):
    assert client.get("/api/processes/status").json() == {"orders": False, "invoices": False, "labels": False}

    assert client.post("/api/processes/labels/start").status_code == 200
    assert client.get("/api/processes/status").json()["labels"] is True
    assert client.post("/api/processes/labels/stop").status_code == 200
    assert client.get("/api/processes/status").json()["labels"] is False

    response = client.post("/api/processes/bogus/start")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid process."}


def test_single_zpl_counts_a_print(client):
    asyncio.run(seed_order("4242", "999"))

    response = client.get("/api/zpl/999/4242")
    assert response.status_code == 404
    assert response.json() == {"error": "ZPL file not found."}

    path = app.state.layout.bitmap("999", "4242")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("^XA^FD4242^FS^XZ", encoding="utf-8")

    response = client.get("/api/zpl/999/4242")
    assert response.status_code == 200
    assert response.text == "^XA^FD4242^FS^XZ"

    response = client.post("/api/labels/print-count", json={"order_number": "4242"})
    assert response.json() == {"message": "Counter updated.", "print_count": 2}


def test_print_count_validation(client):
    assert client.post("/api/labels/print-count", json={}).status_code == 400
    response = client.post("/api/labels/print-count", json={"order_number": "missing"})
    assert response.status_code == 404
    assert "error" in response.json()


def test_zpl_batch_endpoints(client):
    asyncio.run(seed_order("5000", "999"))
    path = app.state.layout.bitmap("999", "5000")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("^XA^FD5000^FS^XZ", encoding="utf-8")

    assert client.post("/api/labels/zpl-batch", json={"orders": []}).status_code == 400
    response = client.post(
        "/api/labels/zpl-batch",
        json={"orders": [{"store_id": "999", "order_number": "5000"}, {"store_id": "999", "order_number": "5001"}]},
    )
    body = response.json()
    assert body["processed"] == ["5000"]
    assert body["skipped"] == ["5001"]

    assert client.post("/api/labels/zpl-batch-by-filter", json={"filters": {}}).status_code == 400
    response = client.post("/api/labels/zpl-batch-by-filter", json={"filters": {"store_id": "123"}})
    assert response.status_code == 404
    assert response.json() == {"error": "No orders found."}

    response = client.post(
        "/api/labels/zpl-batch-by-filter",
        json={"filters": {"store_id": "999", "print_status": "printed"}},
    )
    assert response.status_code == 200
    assert response.json()["processed"] == ["5000"]


def test_label_lists_and_items(client):
    asyncio.run(seed_order("6000", "999", skus=("SKU-B", "SKU-A")))

    pending = client.get("/api/labels/pending").json()
    assert [r["order_number"] for r in pending] == ["6000"]
    assert set(pending[0]) == {"order_id", "order_number", "company", "created_at", "last_error"}
    assert client.get("/api/labels/ready").json() == []

    items = client.get("/api/orders/6000/items").json()
    assert [i["sku"] for i in items] == ["SKU-A", "SKU-B"]


def test_packing_slip_errors_map_to_status(client):
    assert client.post("/api/labels/packing-slip", json={}).status_code == 400

    asyncio.run(seed_order("7000", "999"))
    response = client.post("/api/labels/packing-slip", json={"order_number": "7000"})
    assert response.status_code == 409
    assert response.json()["error"].startswith("Transport file missing")

    response = client.post("/api/labels/packing-slip", json={"order_number": "nope"})
    assert response.status_code == 404


def test_process_transport_unknown_account(client):
    assert client.post("/api/labels/process-transport", json={"order_id": "1"}).status_code == 400
    response = client.post("/api/labels/process-transport", json={"order_id": "1", "company": "ghost"})
    assert response.status_code == 404


def test_import_without_dates_streams_error_then_end(client):
    response = client.get("/api/import/orders")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text == 'data: "ERROR: date_from and date_to are required."\n\ndata: "__END__"\n\n'


def test_sse_frames():
    assert sse_frame(LogEvent("olá")) == 'data: "olá"\n\n'
    assert sse_frame(ProgressUpdate(50.0)) == 'data: {"progress": 50.0}\n\n'
    assert sse_frame(DoneEvent()) == 'data: "__END__"\n\n'


def test_sse_stream_sends_keepalive_while_quiet():
    async def slow():
        await asyncio.sleep(0.05)
        yield LogEvent("late")
        yield DoneEvent()

    async def go():
        return [frame async for frame in sse_stream(slow(), keepalive_seconds=0.01)]

    frames = asyncio.run(go())
    assert frames[0] == ": keep-alive\n\n"
    assert frames[-2:] == ['data: "late"\n\n', 'data: "__END__"\n\n']


def test_filter_with_non_numeric_status_is_rejected(client):
    response = client.post(
        "/api/labels/zpl-batch-by-filter",
        json={"filters": {"store_id": "999", "status": "shipped"}},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "status must be a number."}


def test_unhandled_errors_keep_json_body(database, monkeypatch):
    async def boom(order_number):
        raise RuntimeError("items table unavailable")

    monkeypatch.setattr("labelflow.store.get_items", boom)
    assert app.debug is False
    with TestClient(app, raise_server_exceptions=False) as c:
        response = c.get("/api/orders/1/items")
    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "items table unavailable"}
