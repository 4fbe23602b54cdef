"""Purchase orders: draft, confirmation, incremental receipt and cancellation."""

import pytest

from conftest import stock_of


@pytest.fixture()
def draft_order(client, admin_headers, supplier_id, main_location_id, make_product):
    def _make(quantity=10, **extra):
        product_id = make_product(f"OC-{quantity}-{len(extra)}")
        resp = client.post(
            "/api/purchase-orders",
            json={
                "supplier_id": supplier_id,
                "location_id": main_location_id,
                "items": [{"product_id": product_id, "quantity": quantity, "unit_cost_cents": 250}],
                **extra,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        return product_id, resp.get_json()

    return _make


def _confirm(client, headers, order_id):
    return client.post(f"/api/purchase-orders/{order_id}/confirm", headers=headers)


def _receive(client, headers, order, quantity):
    return client.post(
        f"/api/purchase-orders/{order['id']}/receive",
        json={"items": [{"item_id": order["items"][0]["id"], "quantity_received": quantity}]},
        headers=headers,
    )


class TestCreateOrder:

    def test_draft_with_totals(self, draft_order):
        _, order = draft_order(quantity=4, tax_cents=100)
        assert order["order_number"] == "OC-000001"
        assert order["status"] == "draft"
        assert order["subtotal_cents"] == 1000
        assert order["total_cents"] == 1100
        assert order["history"][0]["action"] == "created"

    def test_requires_items(self, client, admin_headers, supplier_id):
        resp = client.post("/api/purchase-orders", json={"supplier_id": supplier_id, "items": []},
                           headers=admin_headers)
        assert resp.status_code == 400

    def test_unknown_supplier(self, client, admin_headers):
        resp = client.post("/api/purchase-orders",
                           json={"supplier_id": 999, "items": [{"name": "Cajas", "quantity": 1}]},
                           headers=admin_headers)
        assert resp.status_code == 400


class TestLifecycle:

    def test_confirm_only_drafts(self, client, admin_headers, draft_order):
        _, order = draft_order()
        resp = _confirm(client, admin_headers, order["id"])
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "confirmed"

        again = _confirm(client, admin_headers, order["id"])
        assert again.status_code == 400

    def test_draft_cannot_be_received(self, client, admin_headers, draft_order):
        _, order = draft_order()
        assert _receive(client, admin_headers, order, 1).status_code == 400

    def test_partial_then_full_receipt(self, client, admin_headers, draft_order, main_location_id):
        product_id, order = draft_order(quantity=10)
        _confirm(client, admin_headers, order["id"])

        partial = _receive(client, admin_headers, order, 4)
        assert partial.status_code == 200
        assert partial.get_json()["status"] == "partial"
        assert stock_of(product_id, main_location_id) == 4

        # Quantities are cumulative and clamped to what was ordered.
        full = _receive(client, admin_headers, order, 25)
        assert full.status_code == 200
        body = full.get_json()
        assert body["status"] == "received"
        assert body["items"][0]["quantity_received"] == 10
        assert stock_of(product_id, main_location_id) == 10

        assert client.post(f"/api/purchase-orders/{order['id']}/cancel",
                           headers=admin_headers).status_code == 400

    def test_lowering_received_quantity_returns_stock(self, client, admin_headers, draft_order, main_location_id):
        product_id, order = draft_order(quantity=5)
        _confirm(client, admin_headers, order["id"])
        _receive(client, admin_headers, order, 3)

        resp = _receive(client, admin_headers, order, 0)
        assert resp.get_json()["status"] == "confirmed"
        assert stock_of(product_id, main_location_id) == 0

    def test_foreign_item_rejected(self, client, admin_headers, draft_order):
        _, order = draft_order()
        _confirm(client, admin_headers, order["id"])
        resp = client.post(f"/api/purchase-orders/{order['id']}/receive",
                           json={"items": [{"item_id": 999, "quantity_received": 1}]},
                           headers=admin_headers)
        assert resp.status_code == 400
        assert "does not belong" in resp.get_json()["error"]

    def test_cancel(self, client, admin_headers, draft_order):
        _, order = draft_order()
        resp = client.post(f"/api/purchase-orders/{order['id']}/cancel",
                           json={"reason": "Proveedor sin stock"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "cancelled"
        assert client.post(f"/api/purchase-orders/{order['id']}/cancel",
                           headers=admin_headers).status_code == 400


class TestEditing:

    def test_edit_confirmed_order_writes_history(self, client, admin_headers, draft_order):
        _, order = draft_order()
        _confirm(client, admin_headers, order["id"])

        resp = client.put(f"/api/purchase-orders/{order['id']}",
                          json={"notes": "Entregar por la tarde"}, headers=admin_headers)
        assert resp.status_code == 200
        changes = [h for h in resp.get_json()["history"] if h["field_changed"] == "notes"]
        assert changes[0]["new_value"] == "Entregar por la tarde"

    def test_received_order_is_read_only(self, client, admin_headers, draft_order):
        _, order = draft_order(quantity=1)
        _confirm(client, admin_headers, order["id"])
        _receive(client, admin_headers, order, 1)

        resp = client.put(f"/api/purchase-orders/{order['id']}", json={"notes": "x"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_unknown_order(self, client, admin_headers):
        assert client.get("/api/purchase-orders/999", headers=admin_headers).status_code == 404
