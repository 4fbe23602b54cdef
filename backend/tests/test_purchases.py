"""Supplier invoices: registration, stock entry, duplicate detection and cancellation."""

import pytest

from conftest import stock_of


@pytest.fixture()
def purchase_payload(supplier_id, main_location_id):
    def _payload(product_id, *, voucher_number="0001-00001234", quantity=10, unit_cost_cents=500, **extra):
        return {
            "supplier_id": supplier_id,
            "voucher_type": "FA",
            "voucher_number": voucher_number,
            "invoice_date": "2026-03-02",
            "location_id": main_location_id,
            "items": [{"product_id": product_id, "quantity": quantity, "unit_cost_cents": unit_cost_cents}],
            **extra,
        }

    return _payload


class TestCreatePurchase:

    def test_received_products_enter_stock(
        self, client, admin_headers, make_product, main_location_id, purchase_payload
    ):
        product_id = make_product("P-1", stock={main_location_id: 2})
        resp = client.post("/api/purchases",
                           json=purchase_payload(product_id, products_received=True, tax_cents=1050),
                           headers=admin_headers)
        assert resp.status_code == 201
        purchase = resp.get_json()
        assert purchase["purchase_number"] == "C-000001"
        assert purchase["subtotal_cents"] == 5000
        assert purchase["total_cents"] == 6050
        assert purchase["payment_status"] == "pending"
        assert stock_of(product_id, main_location_id) == 12

    def test_receive_later(self, client, admin_headers, make_product, main_location_id, purchase_payload):
        product_id = make_product("P-2")
        purchase = client.post("/api/purchases", json=purchase_payload(product_id), headers=admin_headers).get_json()
        assert stock_of(product_id, main_location_id) == 0

        resp = client.post(f"/api/purchases/{purchase['id']}/receive", json={}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["products_received"] is True
        assert stock_of(product_id, main_location_id) == 10

        again = client.post(f"/api/purchases/{purchase['id']}/receive", json={}, headers=admin_headers)
        assert again.status_code == 400

    def test_custom_lines_skip_stock(self, client, admin_headers, supplier_id):
        resp = client.post(
            "/api/purchases",
            json={
                "supplier_id": supplier_id,
                "voucher_type": "FC",
                "voucher_number": "77",
                "invoice_date": "2026-03-02",
                "items": [{"name": "Flete", "quantity": 1, "unit_cost_cents": 15000}],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["items"][0]["product_id"] is None

    def test_missing_fields(self, client, admin_headers, supplier_id):
        resp = client.post("/api/purchases", json={"supplier_id": supplier_id}, headers=admin_headers)
        assert resp.status_code == 400


class TestDuplicates:

    def test_same_voucher_rejected_until_cancelled(self, client, admin_headers, make_product, purchase_payload,
                                                    supplier_id):
        product_id = make_product("P-DUP")
        first = client.post("/api/purchases", json=purchase_payload(product_id), headers=admin_headers).get_json()

        dup = client.post("/api/purchases", json=purchase_payload(product_id), headers=admin_headers)
        assert dup.status_code == 400
        assert "already registered" in dup.get_json()["error"]

        check = client.get(
            f"/api/purchases/check-duplicate?supplier_id={supplier_id}&voucher_type=fa&voucher_number=0001-00001234",
            headers=admin_headers,
        ).get_json()
        assert check["duplicate"] is True
        assert check["purchase"]["id"] == first["id"]

        client.post(f"/api/purchases/{first['id']}/cancel", headers=admin_headers)
        retry = client.post("/api/purchases", json=purchase_payload(product_id), headers=admin_headers)
        assert retry.status_code == 201


class TestCancelPurchase:

    def test_cancel_reverses_stock(self, client, admin_headers, make_product, main_location_id, purchase_payload):
        product_id = make_product("P-C", stock={main_location_id: 1})
        purchase = client.post("/api/purchases", json=purchase_payload(product_id, products_received=True),
                               headers=admin_headers).get_json()
        assert stock_of(product_id, main_location_id) == 11

        resp = client.post(f"/api/purchases/{purchase['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "cancelled"
        assert stock_of(product_id, main_location_id) == 1

    def test_cancel_refused_with_payments(
        self, client, admin_headers, make_product, purchase_payload, supplier_id, methods, bank_account_id
    ):
        product_id = make_product("P-PAID")
        purchase = client.post("/api/purchases", json=purchase_payload(product_id), headers=admin_headers).get_json()
        client.post(
            "/api/supplier-payments",
            json={
                "supplier_id": supplier_id,
                "allocations": [{"purchase_id": purchase["id"], "amount_cents": 1000}],
                "methods": [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 1000,
                             "bank_account_id": bank_account_id}],
            },
            headers=admin_headers,
        )

        resp = client.post(f"/api/purchases/{purchase['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 400
        assert client.delete(f"/api/purchases/{purchase['id']}", headers=admin_headers).status_code == 400

    def test_delete_unpaid(self, client, admin_headers, make_product, main_location_id, purchase_payload):
        product_id = make_product("P-DEL")
        purchase = client.post("/api/purchases", json=purchase_payload(product_id, products_received=True),
                               headers=admin_headers).get_json()
        assert client.delete(f"/api/purchases/{purchase['id']}", headers=admin_headers).status_code == 200
        assert stock_of(product_id, main_location_id) == 0
        assert client.get(f"/api/purchases/{purchase['id']}", headers=admin_headers).status_code == 404
