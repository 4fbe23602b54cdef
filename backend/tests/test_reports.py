"""Sales summary report."""

import pytest


def _sell(client, headers, location_id, amount, **extra):
    resp = client.post(
        "/api/sales",
        json={"location_id": location_id,
              "items": [{"description": "Servicio", "quantity": 1, "unit_price_cents": amount}], **extra},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.get_json()


@pytest.mark.integration
class TestSalesSummary:

    def test_totals_and_payment_methods(
        self, client, admin_headers, main_location_id, customer_id, register_id, open_shift_id, methods
    ):
        paid = _sell(client, admin_headers, main_location_id, 3000, customer_id=customer_id,
                     payments=[{"payment_method_id": methods["CASH"], "amount_cents": 3000,
                                "cash_register_id": register_id}])
        _sell(client, admin_headers, main_location_id, 1500, customer_id=customer_id)
        client.post(f"/api/sales/{paid['id']}/credit-notes",
                    json={"items": [{"sale_item_id": paid["items"][0]["id"], "quantity": 1}]},
                    headers=admin_headers)

        resp = client.get("/api/reports/sales-summary", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["sales_count"] == 2
        assert body["gross_sales_cents"] == 4500
        assert body["credit_note_count"] == 1
        assert body["credit_notes_cents"] == 3000
        assert body["net_sales_cents"] == 1500
        assert body["pending_receivables"] == {"count": 1, "total_cents": 1500}

        [cash] = body["by_payment_method"]
        assert cash["method_type"] == "CASH"
        assert cash["collected_cents"] == 3000
        assert cash["net_cents"] == 3000

    def test_location_filter(self, client, admin_headers, main_location_id, branch_location_id):
        _sell(client, admin_headers, main_location_id, 1000)
        _sell(client, admin_headers, branch_location_id, 700)

        body = client.get(f"/api/reports/sales-summary?location_id={branch_location_id}",
                          headers=admin_headers).get_json()
        assert body["gross_sales_cents"] == 700

    def test_future_range_is_empty(self, client, admin_headers, main_location_id):
        _sell(client, admin_headers, main_location_id, 1000)
        body = client.get("/api/reports/sales-summary?date_from=2999-01-01", headers=admin_headers).get_json()
        assert body["sales_count"] == 0
        assert body["gross_sales_cents"] == 0

    def test_inverted_range_rejected(self, client, admin_headers):
        resp = client.get("/api/reports/sales-summary?date_from=2026-03-10&date_to=2026-03-01",
                          headers=admin_headers)
        assert resp.status_code == 400

    def test_bad_date_rejected(self, client, admin_headers):
        assert client.get("/api/reports/sales-summary?date_from=ayer", headers=admin_headers).status_code == 400

    def test_cashier_has_no_access(self, client, cashier_headers):
        assert client.get("/api/reports/sales-summary", headers=cashier_headers).status_code == 403
