"""Stock adjustments, bulk updates and availability checks."""

import pytest

from backoffice.extensions import db
from backoffice.models import StockMovement
from backoffice.services import inventory_service

from conftest import stock_of


class TestStockLedger:

    def test_adjust_records_delta_movement(self, client, admin_headers, make_product, main_location_id):
        product_id = make_product("INV-1", stock={main_location_id: 5})

        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product_id, "location_id": main_location_id, "quantity": 12, "note": "Recount"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        movement = resp.get_json()["movement"]
        assert movement["quantity_delta"] == 7
        assert movement["quantity_after"] == 12
        assert movement["reason"] == "adjustment"
        assert stock_of(product_id, main_location_id) == 12

    def test_adjust_to_same_count_is_noop(self, client, admin_headers, make_product, main_location_id):
        product_id = make_product("INV-2", stock={main_location_id: 4})
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product_id, "location_id": main_location_id, "quantity": 4},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["movement"] is None

    def test_adjust_negative_rejected(self, client, admin_headers, make_product, main_location_id):
        product_id = make_product("INV-3")
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product_id, "location_id": main_location_id, "quantity": -1},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_decrease_below_zero_raises(self, org_id, make_product, main_location_id):
        product_id = make_product("INV-4", stock={main_location_id: 2})
        with pytest.raises(inventory_service.InsufficientStockError) as exc:
            inventory_service.decrease_stock(
                org_id=org_id, product_id=product_id, location_id=main_location_id,
                quantity=3, reason="sale",
            )
        assert exc.value.available == 2
        assert exc.value.requested == 3

    def test_service_products_never_move_stock(self, org_id, make_product, main_location_id):
        service_id = make_product("SRV-1", item_type="service")
        movement = inventory_service.decrease_stock(
            org_id=org_id, product_id=service_id, location_id=main_location_id,
            quantity=10, reason="sale",
        )
        assert movement is None
        assert db.session.query(StockMovement).filter_by(product_id=service_id).count() == 0

    def test_bulk_update_counts_changes(self, client, admin_headers, make_product, main_location_id):
        a = make_product("BLK-1", stock={main_location_id: 1})
        b = make_product("BLK-2", stock={main_location_id: 8})

        resp = client.post(
            "/api/inventory/bulk",
            json={"location_id": main_location_id, "rows": [
                {"product_id": a, "quantity": 20},
                {"product_id": b, "quantity": 8},
            ]},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"updated": 1, "unchanged": 1}
        assert stock_of(a, main_location_id) == 20

    def test_bulk_update_requires_import_permission(self, client, cashier_headers, main_location_id):
        resp = client.post(
            "/api/inventory/bulk", json={"location_id": main_location_id, "rows": []}, headers=cashier_headers
        )
        assert resp.status_code == 403

    def test_movements_listing(self, client, admin_headers, make_product, main_location_id):
        product_id = make_product("MOV-1", stock={main_location_id: 3})
        resp = client.get(f"/api/inventory/movements?product_id={product_id}", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total"] == 1
        assert body["items"][0]["quantity_after"] == 3


class TestAvailability:

    def test_reports_shortages_only(self, client, admin_headers, make_product, main_location_id):
        plenty = make_product("AV-1", stock={main_location_id: 10})
        scarce = make_product("AV-2", stock={main_location_id: 1})
        service_id = make_product("AV-3", item_type="service")

        resp = client.post(
            "/api/inventory/availability",
            json={"location_id": main_location_id, "items": [
                {"product_id": plenty, "quantity": 3},
                {"product_id": scarce, "quantity": 1},
                {"product_id": scarce, "quantity": 2},
                {"product_id": service_id, "quantity": 50},
                {"product_id": None, "quantity": 1},
            ]},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["available"] is False
        assert body["shortages"] == [{
            "product_id": scarce,
            "product_name": "Producto AV-2",
            "sku": "AV-2",
            "requested": 3,
            "available": 1,
            "shortage": 2,
        }]

    def test_products_by_location_lists_positive_stock(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        make_product("LOC-1", stock={main_location_id: 2})
        make_product("LOC-2", stock={branch_location_id: 5})

        resp = client.get(f"/api/inventory/locations/{main_location_id}/products", headers=admin_headers)
        assert resp.status_code == 200
        assert [p["sku"] for p in resp.get_json()["products"]] == ["LOC-1"]
