"""Customer collections allocated to pending sales."""

import pytest


@pytest.fixture()
def pending_sale(client, admin_headers, main_location_id, customer_id):
    """Create an unpaid sale for the test customer: pending_sale(total_cents) -> sale dict."""
    def _make(total_cents):
        resp = client.post(
            "/api/sales",
            json={
                "location_id": main_location_id,
                "customer_id": customer_id,
                "items": [{"description": "Reparacion", "quantity": 1, "unit_price_cents": total_cents}],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        return resp.get_json()

    return _make


def _pay(client, headers, customer_id, allocations, methods):
    return client.post(
        "/api/customer-payments",
        json={"customer_id": customer_id, "allocations": allocations, "methods": methods},
        headers=headers,
    )


def _bank_balance(client, headers, bank_account_id):
    return client.get(f"/api/treasury/accounts/bank_account/{bank_account_id}",
                      headers=headers).get_json()["balance_cents"]


class TestCollections:

    def test_pending_sales_listing(self, client, admin_headers, customer_id, pending_sale):
        pending_sale(1000)
        pending_sale(2500)

        resp = client.get(f"/api/customer-payments/pending-sales?customer_id={customer_id}", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert len(body["sales"]) == 2
        assert body["total_balance_cents"] == 3500

    def test_partial_payment_by_bank_transfer(
        self, client, admin_headers, customer_id, pending_sale, methods, bank_account_id
    ):
        sale = pending_sale(3000)
        resp = _pay(client, admin_headers, customer_id,
                    [{"sale_id": sale["id"], "amount_cents": 1000}],
                    [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 1000,
                      "bank_account_id": bank_account_id, "reference": "OP 5521"}])
        assert resp.status_code == 201
        payment = resp.get_json()
        assert payment["payment_number"] == "REC-000001"
        assert payment["kind"] == "collection"
        assert payment["methods"][0]["bank_account_id"] == bank_account_id

        updated = client.get(f"/api/sales/{sale['id']}", headers=admin_headers).get_json()
        assert updated["status"] == "PENDING"
        assert updated["balance_cents"] == 2000
        assert _bank_balance(client, admin_headers, bank_account_id) == 501000

    def test_one_payment_settles_several_sales(
        self, client, admin_headers, customer_id, pending_sale, methods, register_id, open_shift_id
    ):
        first = pending_sale(1000)
        second = pending_sale(500)
        resp = _pay(client, admin_headers, customer_id,
                    [{"sale_id": first["id"], "amount_cents": 1000},
                     {"sale_id": second["id"], "amount_cents": 500}],
                    [{"payment_method_id": methods["CASH"], "amount_cents": 1500, "cash_register_id": register_id}])
        assert resp.status_code == 201

        for sale in (first, second):
            assert client.get(f"/api/sales/{sale['id']}", headers=admin_headers).get_json()["status"] == "COMPLETED"
        pending = client.get(f"/api/customer-payments/pending-sales?customer_id={customer_id}",
                             headers=admin_headers).get_json()
        assert pending["sales"] == []

    def test_totals_must_match(self, client, admin_headers, customer_id, pending_sale, methods, bank_account_id):
        sale = pending_sale(1000)
        resp = _pay(client, admin_headers, customer_id,
                    [{"sale_id": sale["id"], "amount_cents": 1000}],
                    [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 900,
                      "bank_account_id": bank_account_id}])
        assert resp.status_code == 400
        assert "must equal" in resp.get_json()["error"]

    def test_allocation_cannot_exceed_balance(
        self, client, admin_headers, customer_id, pending_sale, methods, bank_account_id
    ):
        sale = pending_sale(1000)
        resp = _pay(client, admin_headers, customer_id,
                    [{"sale_id": sale["id"], "amount_cents": 1200}],
                    [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 1200,
                      "bank_account_id": bank_account_id}])
        assert resp.status_code == 400
        assert "exceeds its balance" in resp.get_json()["error"]

    def test_bank_transfer_needs_account(self, client, admin_headers, customer_id, pending_sale, methods):
        sale = pending_sale(1000)
        resp = _pay(client, admin_headers, customer_id,
                    [{"sale_id": sale["id"], "amount_cents": 1000}],
                    [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 1000}])
        assert resp.status_code == 400

    def test_cancel_restores_balance(
        self, client, admin_headers, customer_id, pending_sale, methods, bank_account_id
    ):
        sale = pending_sale(1000)
        payment = _pay(client, admin_headers, customer_id,
                       [{"sale_id": sale["id"], "amount_cents": 1000}],
                       [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 1000,
                         "bank_account_id": bank_account_id}]).get_json()
        assert _bank_balance(client, admin_headers, bank_account_id) == 501000

        resp = client.post(f"/api/customer-payments/{payment['id']}/cancel",
                           json={"reason": "Transferencia rechazada"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "cancelled"

        restored = client.get(f"/api/sales/{sale['id']}", headers=admin_headers).get_json()
        assert restored["status"] == "PENDING"
        assert restored["balance_cents"] == 1000
        assert restored["payments"] == []
        assert _bank_balance(client, admin_headers, bank_account_id) == 500000

        again = client.post(f"/api/customer-payments/{payment['id']}/cancel", headers=admin_headers)
        assert again.status_code == 400

    def test_listing_by_status(self, client, admin_headers, customer_id, pending_sale, methods, bank_account_id):
        sale = pending_sale(1000)
        _pay(client, admin_headers, customer_id,
             [{"sale_id": sale["id"], "amount_cents": 400}],
             [{"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": 400,
               "bank_account_id": bank_account_id}])

        resp = client.get("/api/customer-payments?status=completed&search=Juana", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1
