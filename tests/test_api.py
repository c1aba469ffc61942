"""Tests for the FastAPI API."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

CUSTOMER = {"X-User-Id": "u1"}
ADMIN = {"X-User-Id": "admin1", "X-User-Role": "admin"}
SUPPORT = {"X-User-Id": "s1", "X-User-Role": "support"}
GUEST = {"X-Guest-Token": "tok1"}

ADDRESS = {
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
    "country": "IN",
}


@pytest.fixture
def api_client(storefront, monkeypatch):
    """Create test client bound to the temp-dir storefront."""
    from cartflow import api

    monkeypatch.setattr(api, "get_storefront", lambda: storefront)
    return TestClient(api.app)


def place_order(api_client, headers=CUSTOMER, **items):
    for product_id, quantity in (items or {"A": 1}).items():
        api_client.post("/api/cart/items", json={"product_id": product_id, "quantity": quantity}, headers=headers)
    response = api_client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=headers)
    assert response.status_code == 201, response.json()
    return response.json()


class TestHealthCheck:
    def test_health(self, api_client):
        response = api_client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestCartEndpoints:
    def test_requires_identity(self, api_client):
        response = api_client.get("/api/cart")
        assert response.status_code == 401

    def test_add_and_get(self, api_client):
        response = api_client.post("/api/cart/items", json={"product_id": "A", "quantity": 2}, headers=CUSTOMER)
        assert response.status_code == 200

        data = api_client.get("/api/cart", headers=CUSTOMER).json()
        assert data["owner_key"] == "user:u1"
        assert data["items"][0]["quantity"] == 2
        assert Decimal(data["estimated_subtotal"]) == Decimal("20.00")

    def test_cart_flags_lines_beyond_stock(self, api_client):
        api_client.post("/api/cart/items", json={"product_id": "B", "quantity": 9}, headers=CUSTOMER)

        item = api_client.get("/api/cart", headers=CUSTOMER).json()["items"][0]
        assert item["available_stock"] == 5
        assert item["exceeds_stock"] is True

    def test_bad_quantity_is_400(self, api_client):
        response = api_client.post("/api/cart/items", json={"product_id": "A", "quantity": 0}, headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_unknown_product_is_404(self, api_client):
        response = api_client.post("/api/cart/items", json={"product_id": "zzz"}, headers=CUSTOMER)
        assert response.status_code == 404

    def test_set_and_remove(self, api_client):
        api_client.post("/api/cart/items", json={"product_id": "A", "quantity": 2}, headers=CUSTOMER)

        response = api_client.put("/api/cart/items/A", json={"quantity": 5}, headers=CUSTOMER)
        assert response.json()["items"][0]["quantity"] == 5

        response = api_client.delete("/api/cart/items/A", headers=CUSTOMER)
        assert response.json()["items"] == []

        response = api_client.delete("/api/cart/items/A", headers=CUSTOMER)
        assert response.status_code == 404

    def test_merge_guest_cart(self, api_client):
        api_client.post("/api/cart/items", json={"product_id": "A", "quantity": 2}, headers=CUSTOMER)
        api_client.post("/api/cart/items", json={"product_id": "A", "quantity": 3}, headers=GUEST)
        api_client.post("/api/cart/items", json={"product_id": "C", "quantity": 4}, headers=GUEST)

        response = api_client.post("/api/cart/merge", json={"guest_token": "tok1"}, headers=CUSTOMER)

        quantities = {i["product_id"]: i["quantity"] for i in response.json()["items"]}
        assert quantities == {"A": 5, "C": 4}
        assert api_client.get("/api/cart", headers=GUEST).json()["items"] == []


class TestOrderEndpoints:
    def test_checkout(self, api_client):
        order = place_order(api_client, A=2)

        assert order["status"] == "pending"
        assert Decimal(order["total"]) == Decimal("70.00")
        assert Decimal(order["shipping"]) == Decimal("50.00")
        assert api_client.get("/api/cart", headers=CUSTOMER).json()["items"] == []

    def test_empty_cart_is_400(self, api_client):
        response = api_client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=CUSTOMER)
        assert response.status_code == 400

    def test_missing_address_field_is_400(self, api_client):
        api_client.post("/api/cart/items", json={"product_id": "A"}, headers=CUSTOMER)
        address = dict(ADDRESS, city="")

        response = api_client.post("/api/orders", json={"shipping_address": address}, headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["field"] == "shipping_address.city"

    def test_insufficient_stock_is_422(self, api_client):
        api_client.post("/api/cart/items", json={"product_id": "B", "quantity": 6}, headers=CUSTOMER)

        response = api_client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=CUSTOMER)

        assert response.status_code == 422
        body = response.json()
        assert body["error_type"] == "InsufficientStockError"
        assert body["product_id"] == "B"
        assert body["available"] == 5

    def test_pos_order(self, api_client):
        response = api_client.post(
            "/api/orders/pos",
            json={
                "customer_email": "walkin@example.com",
                "items": [{"product_id": "C", "quantity": 2}],
                "shipping_address": ADDRESS,
                "shipping": "0",
            },
            headers=ADMIN,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["source"] == "pos"
        assert Decimal(body["total"]) == Decimal("14.50")

    def test_pos_order_forbidden_for_customer(self, api_client):
        response = api_client.post(
            "/api/orders/pos",
            json={
                "customer_email": "walkin@example.com",
                "items": [{"product_id": "C", "quantity": 2}],
                "shipping_address": ADDRESS,
            },
            headers=CUSTOMER,
        )
        assert response.status_code == 403

    def test_transition_and_activity(self, api_client):
        order = place_order(api_client)

        response = api_client.post(
            f"/api/orders/{order['id']}/status", json={"status": "approved"}, headers=ADMIN
        )
        assert response.status_code == 200
        assert response.json()["approved_by"] == "admin1"

        entries = api_client.get(f"/api/orders/{order['id']}/activity", headers=CUSTOMER).json()["entries"]
        assert [e["action"] for e in entries] == ["created", "approved"]

    def test_invalid_transition_is_409(self, api_client):
        order = place_order(api_client)

        response = api_client.post(
            f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=ADMIN
        )

        assert response.status_code == 409
        assert response.json()["error_type"] == "InvalidTransitionError"

    def test_stale_expected_status_is_409(self, api_client):
        order = place_order(api_client)
        api_client.post(f"/api/orders/{order['id']}/status", json={"status": "approved"}, headers=ADMIN)

        response = api_client.post(
            f"/api/orders/{order['id']}/status",
            json={"status": "cancelled", "expected_status": "pending"},
            headers=ADMIN,
        )

        assert response.status_code == 409
        assert response.json()["error_type"] == "ConflictError"

    def test_customer_cannot_transition(self, api_client):
        order = place_order(api_client)

        response = api_client.post(
            f"/api/orders/{order['id']}/status", json={"status": "approved"}, headers=CUSTOMER
        )
        assert response.status_code == 403

    def test_get_by_id_and_number(self, api_client):
        order = place_order(api_client)

        assert api_client.get(f"/api/orders/{order['id']}", headers=CUSTOMER).json()["id"] == order["id"]
        response = api_client.get(f"/api/orders/by-number/{order['order_number']}", headers=ADMIN)
        assert response.json()["id"] == order["id"]
        assert api_client.get("/api/orders/missing", headers=ADMIN).status_code == 404

    def test_list_orders_scoped(self, api_client):
        place_order(api_client, headers=CUSTOMER)
        place_order(api_client, headers={"X-User-Id": "u2"})

        assert api_client.get("/api/orders", headers=CUSTOMER).json()["count"] == 1
        assert api_client.get("/api/orders", headers=SUPPORT).json()["count"] == 2
        response = api_client.get("/api/orders", params={"status": "approved"}, headers=ADMIN)
        assert response.json()["count"] == 0

    def test_note(self, api_client):
        order = place_order(api_client)

        response = api_client.post(f"/api/orders/{order['id']}/notes", json={"note": "Fragile"}, headers=ADMIN)

        assert response.json()["notes"] == "Fragile"

    def test_reorder(self, api_client, catalog):
        order = place_order(api_client, A=1, C=2)
        catalog.delete_product("C")

        response = api_client.post(f"/api/orders/{order['id']}/reorder", headers=CUSTOMER)

        assert response.status_code == 200
        body = response.json()
        assert body["partial"] is True
        assert body["skipped"][0]["product_id"] == "C"
        assert [i["product_id"] for i in body["cart"]["items"]] == ["A"]


class TestCustomerEndpoints:
    def test_resolve_or_create_then_lookup(self, api_client):
        created = api_client.post(
            "/api/customers/resolve", json={"email": "Jane@Example.com", "name": "Jane"}, headers=ADMIN
        ).json()

        response = api_client.get("/api/customers/resolve", params={"email": "jane@example.com"}, headers=SUPPORT)
        assert response.json()["customer"]["id"] == created["id"]

    def test_lookup_without_identity_is_400(self, api_client):
        response = api_client.get("/api/customers/resolve", headers=ADMIN)
        assert response.status_code == 400

    def test_search(self, api_client):
        api_client.post("/api/customers/resolve", json={"email": "jane@example.com", "name": "Jane"}, headers=ADMIN)

        response = api_client.get("/api/customers/search", params={"q": "jan"}, headers=ADMIN)
        assert response.json()["count"] == 1


class TestShippingEndpoints:
    def test_quote_unknown_is_zero(self, api_client):
        response = api_client.get("/api/shipping/quote", params={"postal_code": "999999"})
        assert Decimal(response.json()["charge"]) == Decimal("0")

    def test_check_and_pending(self, api_client):
        response = api_client.post("/api/shipping/check", json={"postal_code": "110001"}, headers=CUSTOMER)
        assert response.json()["serviceable"] is False

        pending = api_client.get("/api/shipping/unserviceable", headers=ADMIN).json()
        assert [r["postal_code"] for r in pending] == ["110001"]

    def test_rate_crud(self, api_client):
        response = api_client.put("/api/shipping/rates/110001", json={"charge": "80.00"}, headers=ADMIN)
        assert response.status_code == 200

        rates = api_client.get("/api/shipping/rates", headers=ADMIN).json()
        assert rates["count"] == 2

        assert api_client.delete("/api/shipping/rates/110001", headers=ADMIN).status_code == 200
        assert api_client.delete("/api/shipping/rates/110001", headers=ADMIN).status_code == 404

    def test_rates_forbidden_for_customer(self, api_client):
        assert api_client.get("/api/shipping/rates", headers=CUSTOMER).status_code == 403
