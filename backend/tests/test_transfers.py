"""Transfers between locations: shipping, partial receipt and cancellation."""

from conftest import stock_of


def _create(client, headers, source, destination, items, **extra):
    return client.post(
        "/api/transfers",
        json={"source_location_id": source, "destination_location_id": destination, "items": items, **extra},
        headers=headers,
    )


class TestCreateTransfer:

    def test_stock_leaves_source_immediately(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id = make_product("TR-1", stock={main_location_id: 10})

        resp = _create(client, admin_headers, main_location_id, branch_location_id,
                       [{"product_id": product_id, "quantity": 4}])
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["status"] == "in_transit"
        assert body["transfer_number"].startswith("T-")
        assert body["total_quantity"] == 4
        assert body["items"][0]["pending_quantity"] == 4

        assert stock_of(product_id, main_location_id) == 6
        assert stock_of(product_id, branch_location_id) == 0

    def test_mark_as_received_completes(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id = make_product("TR-2", stock={main_location_id: 3})
        resp = _create(client, admin_headers, main_location_id, branch_location_id,
                       [{"product_id": product_id, "quantity": 3}], mark_as_received=True)
        assert resp.status_code == 201
        assert resp.get_json()["status"] == "completed"
        assert stock_of(product_id, branch_location_id) == 3

    def test_same_location_rejected(self, client, admin_headers, make_product, main_location_id):
        product_id = make_product("TR-3", stock={main_location_id: 3})
        resp = _create(client, admin_headers, main_location_id, main_location_id,
                       [{"product_id": product_id, "quantity": 1}])
        assert resp.status_code == 400

    def test_insufficient_stock_rejected(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id = make_product("TR-4", stock={main_location_id: 1})
        resp = _create(client, admin_headers, main_location_id, branch_location_id,
                       [{"product_id": product_id, "quantity": 2}])
        assert resp.status_code == 400
        assert "Insufficient stock" in resp.get_json()["error"]
        assert stock_of(product_id, main_location_id) == 1

    def test_missing_field(self, client, admin_headers, main_location_id):
        resp = client.post("/api/transfers", json={"source_location_id": main_location_id}, headers=admin_headers)
        assert resp.status_code == 400
        assert "Missing required field" in resp.get_json()["error"]


class TestReceiveAndCancel:

    def _shipped(self, client, admin_headers, make_product, source, destination):
        product_id = make_product("TR-R", stock={source: 10})
        transfer = _create(client, admin_headers, source, destination,
                           [{"product_id": product_id, "quantity": 6}]).get_json()
        return product_id, transfer

    def test_partial_then_full_receipt(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id, transfer = self._shipped(client, admin_headers, make_product, main_location_id, branch_location_id)
        item_id = transfer["items"][0]["id"]
        url = f"/api/transfers/{transfer['id']}/receive"

        first = client.post(url, json={"items": [{"item_id": item_id, "quantity_received": 2}]}, headers=admin_headers)
        assert first.status_code == 200
        assert first.get_json()["completed"] is False
        assert stock_of(product_id, branch_location_id) == 2

        # Running totals: reporting a lower figure changes nothing.
        client.post(url, json={"items": [{"item_id": item_id, "quantity_received": 1}]}, headers=admin_headers)
        assert stock_of(product_id, branch_location_id) == 2

        # Over-reporting is clamped to what was shipped.
        last = client.post(url, json={"items": [{"item_id": item_id, "quantity_received": 9}]}, headers=admin_headers)
        body = last.get_json()
        assert body["completed"] is True
        assert body["transfer"]["status"] == "completed"
        assert body["transfer"]["total_received"] == 6
        assert stock_of(product_id, branch_location_id) == 6

    def test_foreign_item_rejected(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id, transfer = self._shipped(client, admin_headers, make_product, main_location_id, branch_location_id)
        other = _create(client, admin_headers, main_location_id, branch_location_id,
                        [{"product_id": product_id, "quantity": 1}]).get_json()

        resp = client.post(
            f"/api/transfers/{transfer['id']}/receive",
            json={"items": [{"item_id": transfer["items"][0]["id"], "quantity_received": 6},
                            {"item_id": other["items"][0]["id"], "quantity_received": 1}]},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert "does not belong" in resp.get_json()["error"]
        assert stock_of(product_id, branch_location_id) == 0

    def test_cancel_returns_pending_to_source(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id, transfer = self._shipped(client, admin_headers, make_product, main_location_id, branch_location_id)
        item_id = transfer["items"][0]["id"]
        client.post(
            f"/api/transfers/{transfer['id']}/receive",
            json={"items": [{"item_id": item_id, "quantity_received": 2}]},
            headers=admin_headers,
        )

        resp = client.post(f"/api/transfers/{transfer['id']}/cancel", json={"reason": "Wrong branch"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "cancelled"
        assert stock_of(product_id, main_location_id) == 8
        assert stock_of(product_id, branch_location_id) == 2

    def test_completed_transfer_cannot_be_cancelled(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        product_id = make_product("TR-C", stock={main_location_id: 2})
        transfer = _create(client, admin_headers, main_location_id, branch_location_id,
                           [{"product_id": product_id, "quantity": 2}], mark_as_received=True).get_json()
        resp = client.post(f"/api/transfers/{transfer['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 400

    def test_unknown_transfer(self, client, admin_headers):
        assert client.post("/api/transfers/999/cancel", headers=admin_headers).status_code == 404

    def test_list_filters_by_status(
        self, client, admin_headers, make_product, main_location_id, branch_location_id
    ):
        self._shipped(client, admin_headers, make_product, main_location_id, branch_location_id)
        resp = client.get("/api/transfers?status=in_transit", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1
        assert client.get("/api/transfers?status=completed", headers=admin_headers).get_json()["total"] == 0
        assert client.get("/api/transfers?status=bogus", headers=admin_headers).status_code == 400
