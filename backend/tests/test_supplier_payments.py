"""Supplier payments: allocations, money on account and cash drawn from a drawer."""

import pytest


@pytest.fixture()
def purchase(client, admin_headers, supplier_id):
    """purchase(total_cents, number) -> purchase dict with a single custom line."""
    def _make(total_cents, voucher_number="A-1"):
        resp = client.post(
            "/api/purchases",
            json={
                "supplier_id": supplier_id,
                "voucher_type": "FA",
                "voucher_number": voucher_number,
                "invoice_date": "2026-03-02",
                "items": [{"name": "Mercaderia", "quantity": 1, "unit_cost_cents": total_cents}],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        return resp.get_json()

    return _make


def _bank(methods, bank_account_id, amount):
    return {"payment_method_id": methods["BANK_TRANSFER"], "amount_cents": amount, "bank_account_id": bank_account_id}


def _pay(client, headers, supplier_id, methods, allocations=None, **extra):
    return client.post(
        "/api/supplier-payments",
        json={"supplier_id": supplier_id, "methods": methods, "allocations": allocations or [], **extra},
        headers=headers,
    )


def _credit(client, headers, supplier_id):
    return client.get(f"/api/suppliers/{supplier_id}", headers=headers).get_json()["credit_balance_cents"]


class TestSupplierPayments:

    def test_partial_then_full_allocation(
        self, client, admin_headers, supplier_id, purchase, methods, bank_account_id
    ):
        invoice = purchase(3000)
        first = _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 1000)],
                     [{"purchase_id": invoice["id"], "amount_cents": 1000}])
        assert first.status_code == 201
        assert first.get_json()["payment_number"] == "OP-000001"

        detail = client.get(f"/api/purchases/{invoice['id']}", headers=admin_headers).get_json()
        assert detail["payment_status"] == "partial"
        assert detail["balance_cents"] == 2000

        _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 2000)],
             [{"purchase_id": invoice["id"], "amount_cents": 2000}])
        detail = client.get(f"/api/purchases/{invoice['id']}", headers=admin_headers).get_json()
        assert detail["payment_status"] == "paid"

        account = client.get(f"/api/treasury/accounts/bank_account/{bank_account_id}",
                             headers=admin_headers).get_json()
        assert account["balance_cents"] == 497000

    def test_on_account_becomes_supplier_credit(
        self, client, admin_headers, supplier_id, methods, bank_account_id
    ):
        resp = _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 5000)],
                    on_account_amount_cents=5000)
        assert resp.status_code == 201
        assert resp.get_json()["total_amount_cents"] == 5000
        assert _credit(client, admin_headers, supplier_id) == 5000

        cancel = client.post(f"/api/supplier-payments/{resp.get_json()['id']}/cancel",
                             json={"reason": "Cargado dos veces"}, headers=admin_headers)
        assert cancel.status_code == 200
        assert cancel.get_json()["status"] == "cancelled"
        assert _credit(client, admin_headers, supplier_id) == 0

    def test_allocation_over_balance(self, client, admin_headers, supplier_id, purchase, methods, bank_account_id):
        invoice = purchase(1000)
        resp = _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 1500)],
                    [{"purchase_id": invoice["id"], "amount_cents": 1500}])
        assert resp.status_code == 400
        assert "exceeds its balance" in resp.get_json()["error"]

    def test_methods_must_match_total(self, client, admin_headers, supplier_id, purchase, methods, bank_account_id):
        invoice = purchase(1000)
        resp = _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 900)],
                    [{"purchase_id": invoice["id"], "amount_cents": 1000}])
        assert resp.status_code == 400
        assert "must equal" in resp.get_json()["error"]

    def test_cash_limited_by_drawer(
        self, client, admin_headers, supplier_id, purchase, methods, register_id, open_shift_id
    ):
        invoice = purchase(20000)
        cash = {"payment_method_id": methods["CASH"], "amount_cents": 10001, "cash_register_id": register_id}
        resp = _pay(client, admin_headers, supplier_id, [cash],
                    [{"purchase_id": invoice["id"], "amount_cents": 10001}])
        assert resp.status_code == 400
        assert "Not enough cash" in resp.get_json()["error"]

        cash["amount_cents"] = 4000
        ok = _pay(client, admin_headers, supplier_id, [cash], [{"purchase_id": invoice["id"], "amount_cents": 4000}])
        assert ok.status_code == 201

        summary = client.get(f"/api/registers/shifts/{open_shift_id}/summary", headers=admin_headers).get_json()
        assert summary["current_cash_amount_cents"] == 6000

    def test_cancel_restores_purchase_balance(
        self, client, admin_headers, supplier_id, purchase, methods, bank_account_id
    ):
        invoice = purchase(1000)
        payment = _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 1000)],
                       [{"purchase_id": invoice["id"], "amount_cents": 1000}]).get_json()

        client.post(f"/api/supplier-payments/{payment['id']}/cancel", headers=admin_headers)
        detail = client.get(f"/api/purchases/{invoice['id']}", headers=admin_headers).get_json()
        assert detail["payment_status"] == "pending"
        assert detail["balance_cents"] == 1000

        again = client.post(f"/api/supplier-payments/{payment['id']}/cancel", headers=admin_headers)
        assert again.status_code == 400

    def test_list_by_supplier(self, client, admin_headers, supplier_id, methods, bank_account_id):
        _pay(client, admin_headers, supplier_id, [_bank(methods, bank_account_id, 100)], on_account_amount_cents=100)
        resp = client.get(f"/api/supplier-payments?supplier_id={supplier_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1
