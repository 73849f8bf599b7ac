"""
HTTP and WebSocket surface, running on local storage.
"""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from app.main import app
from app.storage import StorageError, get_persistence_service


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def _product(client, product_id="1") -> dict:
    products = client.get("/api/products").json()
    return next(p for p in products if p["id"] == product_id)


def _order(client, table_id, product, quantity=1, observation=None):
    return client.post("/api/orders", json={
        "table_id": table_id,
        "items": [{"product": product, "quantity": quantity}],
        "observation": observation,
    })


def _receive_until(websocket, predicate, attempts=100) -> dict:
    for _ in range(attempts):
        message = websocket.receive_json()
        if predicate(message):
            return message
    raise AssertionError("expected message never arrived")


# =============================================================================
# ROOT & HEALTH
# =============================================================================

def test_root_and_health(client):
    assert client.get("/").json()["storage"] == "local"

    health = client.get("/health").json()
    assert health["status"] == "operational"
    assert health["storage_mode"] == "local"
    assert health["report_service"].startswith("mock")


# =============================================================================
# PRODUCTS
# =============================================================================

def test_menu_is_seeded(client):
    products = client.get("/api/products").json()

    assert len(products) == 4
    assert products[0]["name"] == "Cerveja Gelada 600ml"


def test_save_merge_and_delete_product(client):
    created = client.post("/api/products", json={"name": "Suco", "price": 5, "stock": 10}).json()
    merged = client.post("/api/products", json={"name": "Suco", "price": 6, "stock": 2}).json()

    assert merged["id"] == created["id"]
    assert merged["stock"] == 12
    assert merged["price"] == 6

    assert client.delete(f"/api/products/{created['id']}").json()["success"] is True
    assert all(p["name"] != "Suco" for p in client.get("/api/products").json())


def test_blank_product_name_is_rejected(client):
    response = client.post("/api/products", json={"name": "   ", "price": 5})

    assert response.status_code == 422


# =============================================================================
# ORDERS
# =============================================================================

def test_suco_order_takes_stock(client):
    suco = client.post("/api/products", json={"name": "Suco", "price": 5, "stock": 10}).json()

    response = _order(client, 4, suco, quantity=3, observation="Sem gelo")

    assert response.status_code == 200
    order = response.json()
    assert order["status"] == "PENDING"
    assert order["total"] == 15.0
    assert order["observation"] == "Sem gelo"
    assert _product(client, suco["id"])["stock"] == 7


def test_order_over_stock_is_refused(client):
    batata = _product(client, "4")

    response = _order(client, 2, batata, quantity=batata["stock"] + 1)

    assert response.status_code == 409
    assert _product(client, "4")["stock"] == batata["stock"]
    assert client.get("/api/orders").json()["total"] == 0


def test_order_without_items_is_invalid(client):
    response = client.post("/api/orders", json={"table_id": 1, "items": []})

    assert response.status_code == 422


def test_list_orders_with_filters(client):
    cerveja = _product(client, "1")
    _order(client, 1, cerveja)
    second = _order(client, 2, cerveja).json()
    client.patch(f"/api/orders/{second['id']}/status", json={"status": "PREPARING"})

    by_table = client.get("/api/orders", params={"table_id": 2}).json()
    by_status = client.get("/api/orders", params={"status": "PENDING"}).json()

    assert [o["id"] for o in by_table["orders"]] == [second["id"]]
    assert by_status["total"] == 1
    assert client.get("/api/orders", params={"status": "LOST"}).status_code == 422


def test_cancel_restores_stock(client):
    cerveja = _product(client, "1")
    order = _order(client, 3, cerveja, quantity=2).json()

    response = client.patch(f"/api/orders/{order['id']}/status", json={"status": "CANCELED"})

    assert response.json()["status"] == "CANCELED"
    assert _product(client, "1")["stock"] == cerveja["stock"]


def test_unknown_order_status_update_is_404(client):
    response = client.patch("/api/orders/missing/status", json={"status": "PAID"})

    assert response.status_code == 404


# =============================================================================
# TABLES
# =============================================================================

def test_table_four_pays_with_pix(client):
    cerveja = _product(client, "1")
    order = _order(client, 4, cerveja, quantity=2).json()
    _order(client, 4, cerveja, quantity=1)

    closing = client.post("/api/tables/4/close-request", json={"payment_method": "PIX"}).json()
    assert closing == {"table_id": 4, "status": "CLOSING_REQUESTED", "payment_method": "PIX"}
    assert client.get("/api/tables").json()["4"]["status"] == "CLOSING_REQUESTED"

    bill = client.get("/api/tables/4/bill").json()
    assert bill["payment_method"] == "PIX"
    assert bill["items"] == [
        {"product_id": "1", "name": "Cerveja Gelada 600ml", "quantity": 3, "price": 15.0, "total": 45.0}
    ]
    assert bill["total"] == 45.0

    finalized = client.post("/api/tables/4/finalize").json()
    assert finalized == {"success": True, "table_id": 4, "orders_paid": 2}

    assert client.get("/api/tables").json() == {}
    assert client.get("/api/tables/4/bill").json()["items"] == []
    orders = client.get("/api/orders", params={"table_id": 4}).json()["orders"]
    assert {o["status"] for o in orders} == {"PAID"}
    assert order["id"] in {o["id"] for o in orders}


def test_close_request_defaults_to_pix(client):
    response = client.post("/api/tables/6/close-request", json={})

    assert response.json()["payment_method"] == "PIX"


# =============================================================================
# REPORTS & ADMIN
# =============================================================================

def test_daily_report_uses_mock_generator(client):
    _order(client, 1, _product(client, "2"), quantity=2)

    report = client.post("/api/reports/daily").json()

    assert report["provider"] == "mock"
    assert report["sales"]["total_revenue"] == 16.0
    assert "Água de Coco" in report["report"]


def test_diagnostics(client):
    assert client.get("/api/diagnostics").json() == {
        "ok": True,
        "mode": "local",
        "message": "Local storage is working.",
    }


def test_database_config_round_trip(client, tmp_path):
    assert client.get("/api/config/database").json()["using_remote"] is False

    url = f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}"
    saved = client.put("/api/config/database", json={"database_url": url, "project_id": "barraca"})

    assert saved.json() == {"mode": "remote", "using_remote": True, "project_id": "barraca"}
    assert client.get("/api/products").json() == []

    cleared = client.delete("/api/config/database").json()
    assert cleared["using_remote"] is False
    assert len(client.get("/api/products").json()) == 4


def test_database_config_requires_url(client):
    response = client.put("/api/config/database", json={"database_url": ""})

    assert response.status_code == 400


# =============================================================================
# WEBSOCKETS
# =============================================================================

def test_products_stream_sends_snapshot(client):
    with client.websocket_connect("/ws/products") as websocket:
        snapshot = websocket.receive_json()

    assert [p["id"] for p in snapshot] == ["1", "2", "3", "4"]


def test_session_stream_reports_payment(client):
    with client.websocket_connect("/ws/tables/4/session") as websocket:
        first = websocket.receive_json()
        assert first == {"table_id": 4, "status": "OPEN", "session_ended": False}

        client.post("/api/tables/4/close-request", json={"payment_method": "PIX"})
        _receive_until(websocket, lambda m: m["status"] == "CLOSING_REQUESTED")

        client.post("/api/tables/4/finalize")
        ended = _receive_until(websocket, lambda m: m["session_ended"])

    assert ended["status"] == "OPEN"


def test_stream_closes_with_1011_when_subscribing_fails(client, monkeypatch):
    async def unavailable(callback):
        raise StorageError("Change feed unavailable")

    monkeypatch.setattr(get_persistence_service(), "subscribe_products", unavailable)

    with client.websocket_connect("/ws/products") as websocket:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()

    assert exc_info.value.code == 1011
