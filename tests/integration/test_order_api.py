"""Integration tests for the order endpoints via TestClient."""

from datetime import date, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from grocery.api import inventory_router, order_router, register_error_handlers
from grocery.inventory.ledger import ledger
from grocery.order.order import OrderStatus


@pytest.fixture()
def client(gateway, stock):
    app = FastAPI()
    app.include_router(order_router)
    app.include_router(inventory_router)
    register_error_handlers(app)
    return TestClient(app)


def _checkout_body(**overrides):
    body = {
        "customer_id": "cust-api-001",
        "line_items": [
            {"product_id": "tomatoes-1kg", "quantity": 2},
            {"product_id": "rice-5kg", "quantity": 1},
        ],
        "delivery": {
            "address": "Plot 12, Msasani, Dar es Salaam",
            "phone": "0712345678",
            "delivery_date": (date.today() + timedelta(days=1)).isoformat(),
            "time_window": "12:00-15:00",
        },
        "payment_method": "mpesa",
    }
    body.update(overrides)
    return body


def _checkout(client, **overrides):
    response = client.post("/orders", json=_checkout_body(**overrides), headers={"X-Actor-Id": "cust-api-001"})
    assert response.status_code == 201, response.text
    return response.json()


class TestCheckout:
    def test_returns_priced_order_with_checkout_link(self, client):
        data = _checkout(client)

        assert data["status"] == OrderStatus.PENDING.value
        assert data["payment_status"] == "Pending"
        assert data["subtotal"] == 11700.0
        assert data["delivery_fee"] == 3000.0
        assert data["total_amount"] == 14700.0
        assert data["currency"] == "TZS"
        assert data["delivery_phone"] == "0712345678"
        assert data["checkout_reference"].startswith("https://checkout.fake/CP_")
        assert data["status_history"][0]["actor"] == "cust-api-001"

    def test_client_cannot_set_a_discount(self, client):
        data = _checkout(client, discount=11700)

        assert data["discount"] == 0.0
        assert data["total_amount"] == 14700.0

    def test_cash_on_delivery_is_confirmed(self, client):
        data = _checkout(client, payment_method="cash_on_delivery")

        assert data["status"] == OrderStatus.CONFIRMED.value
        assert data["checkout_reference"] is None

    def test_invalid_checkout_is_422(self, client):
        body = _checkout_body(line_items=[])
        body["delivery"]["phone"] = "+254712345678"

        response = client.post("/orders", json=body)

        assert response.status_code == 422
        errors = response.json()["error"]
        assert "line_items" in errors
        assert "delivery_phone" in errors

    def test_boolean_quantity_is_422(self, client):
        body = _checkout_body(line_items=[{"product_id": "rice-5kg", "quantity": True}])

        response = client.post("/orders", json=body)

        assert response.status_code == 422
        assert ledger.quantity("rice-5kg") == 20

    def test_unparseable_body_is_422(self, client):
        response = client.post("/orders", json={"customer_id": "c"})
        assert response.status_code == 422

    def test_insufficient_stock_is_409(self, client):
        response = client.post(
            "/orders",
            json=_checkout_body(line_items=[{"product_id": "eggs-tray", "quantity": 21}]),
        )

        assert response.status_code == 409
        assert "quantity" in response.json()["error"]
        assert ledger.quantity("eggs-tray") == 20

    def test_gateway_rejection_leaves_order_pending(self, client, gateway):
        gateway.configure(should_succeed=False)

        data = _checkout(client)

        assert data["status"] == OrderStatus.PENDING.value
        assert data["payment_status"] == "Failed"
        assert data["checkout_reference"] is None


class TestTracking:
    def test_get_order_shows_payments(self, client):
        order_id = _checkout(client)["order_id"]

        response = client.get(f"/orders/{order_id}")

        assert response.status_code == 200
        data = response.json()
        assert len(data["payments"]) == 1
        assert data["payments"][0]["status"] == "Pending"
        assert data["delivery"] is None

    def test_failure_detail_is_not_exposed(self, client, gateway):
        gateway.configure(should_succeed=False, failure_reason="Subscriber blacklisted by operator")
        order_id = _checkout(client)["order_id"]

        payment = client.get(f"/orders/{order_id}").json()["payments"][0]

        assert payment["failure_reason"] == "Payment was not completed"

    def test_unknown_order_is_404(self, client):
        response = client.get("/orders/does-not-exist")
        assert response.status_code == 404

    def test_list_by_status(self, client):
        _checkout(client)
        _checkout(client, payment_method="cash_on_delivery")

        pending = client.get("/orders", params={"status": "Pending"}).json()
        confirmed = client.get("/orders", params={"status": "Confirmed"}).json()

        assert len(pending) == 1
        assert len(confirmed) == 1


class TestAdminActions:
    def test_advance_records_actor(self, client):
        order_id = _checkout(client, payment_method="cash_on_delivery")["order_id"]

        response = client.put(
            f"/orders/{order_id}/status",
            json={"status": "Preparing", "notes": "Picking started"},
            headers={"X-Actor-Id": "admin-9"},
        )

        assert response.status_code == 200
        latest = response.json()["status_history"][-1]
        assert latest["to_status"] == "Preparing"
        assert latest["actor"] == "admin-9"
        assert latest["notes"] == "Picking started"

    def test_illegal_transition_is_409(self, client):
        order_id = _checkout(client)["order_id"]

        response = client.put(f"/orders/{order_id}/status", json={"status": "Preparing"})

        assert response.status_code == 409

    def test_cancel_releases_stock(self, client):
        order_id = _checkout(client)["order_id"]

        response = client.put(f"/orders/{order_id}/cancel", json={"reason": "Changed my mind"})

        assert response.status_code == 200
        assert response.json()["status"] == OrderStatus.CANCELLED.value
        assert client.get("/inventory/rice-5kg").json()["quantity"] == 20

    def test_cancel_twice_is_409(self, client):
        order_id = _checkout(client)["order_id"]
        client.put(f"/orders/{order_id}/cancel", json={"reason": "Changed my mind"})

        response = client.put(f"/orders/{order_id}/cancel", json={"reason": "Again"})

        assert response.status_code == 409

    def test_retry_payment(self, client, gateway):
        gateway.configure(should_succeed=False)
        order_id = _checkout(client)["order_id"]
        gateway.configure(should_succeed=True)

        response = client.post(f"/orders/{order_id}/payments/retry", json={})

        assert response.status_code == 200
        assert response.json()["payment_status"] == "Pending"
        assert response.json()["checkout_reference"].startswith("https://checkout.fake/")


class TestInventoryEndpoints:
    def test_restock(self, client):
        response = client.post("/inventory/milk-1l/restock", json={"quantity": 5}, headers={"X-Actor-Id": "wh-1"})

        assert response.status_code == 200
        assert response.json() == {"product_id": "milk-1l", "quantity": 25}

    def test_restock_needs_positive_quantity(self, client):
        response = client.post("/inventory/milk-1l/restock", json={"quantity": 0})
        assert response.status_code == 422
