"""Sales, credit notes and credit note applications."""

from conftest import stock_of


def _sell(client, headers, location_id, items, **extra):
    return client.post("/api/sales", json={"location_id": location_id, "items": items, **extra}, headers=headers)


def _cash(methods, register_id, amount):
    return {"payment_method_id": methods["CASH"], "amount_cents": amount, "cash_register_id": register_id}


# =============================================================================
# SALES
# =============================================================================


class TestCreateSale:

    def test_cash_sale_completes_and_moves_stock(
        self, client, admin_headers, make_product, main_location_id, register_id, open_shift_id, methods
    ):
        product_id = make_product("S-1", price_cents=1000, stock={main_location_id: 10})

        resp = _sell(client, admin_headers, main_location_id,
                     [{"product_id": product_id, "quantity": 2}],
                     payments=[_cash(methods, register_id, 2000)])
        assert resp.status_code == 201
        sale = resp.get_json()
        assert sale["sale_number"] == "TK-00000001"
        assert sale["status"] == "COMPLETED"
        assert sale["total_cents"] == 2000
        assert sale["balance_cents"] == 0
        assert sale["shift_id"] == open_shift_id
        assert stock_of(product_id, main_location_id) == 8

        summary = client.get(f"/api/registers/shifts/{open_shift_id}/summary", headers=admin_headers).get_json()
        assert summary["cash_collected_cents"] == 2000
        assert summary["current_cash_amount_cents"] == 12000

    def test_unpaid_sale_stays_pending(self, client, admin_headers, make_product, main_location_id, customer_id):
        product_id = make_product("S-2", price_cents=1500, stock={main_location_id: 1})
        resp = _sell(client, admin_headers, main_location_id,
                     [{"product_id": product_id, "quantity": 1}],
                     customer_id=customer_id, voucher_type="INVOICE_B", discount_cents=500, tax_cents=100)
        assert resp.status_code == 201
        sale = resp.get_json()
        assert sale["sale_number"].startswith("FB-")
        assert sale["status"] == "PENDING"
        assert sale["total_cents"] == 1100
        assert sale["balance_cents"] == 1100

    def test_card_fee_recorded(self, client, admin_headers, make_product, main_location_id, methods):
        updated = client.put(f"/api/payment-methods/{methods['CREDIT_CARD']}",
                             json={"fee_percentage_bps": 350, "fee_fixed_cents": 10}, headers=admin_headers)
        assert updated.status_code == 200

        product_id = make_product("S-FEE", price_cents=10000, stock={main_location_id: 1})
        sale = _sell(client, admin_headers, main_location_id,
                     [{"product_id": product_id, "quantity": 1}],
                     payments=[{"payment_method_id": methods["CREDIT_CARD"], "amount_cents": 10000}]).get_json()

        detail = client.get(f"/api/sales/{sale['id']}", headers=admin_headers).get_json()
        [payment] = detail["payments"]
        assert payment["fees_cents"] == 360

    def test_cash_without_open_shift_rolls_back(
        self, client, admin_headers, make_product, main_location_id, register_id, methods
    ):
        product_id = make_product("S-3", stock={main_location_id: 5})
        resp = _sell(client, admin_headers, main_location_id,
                     [{"product_id": product_id, "quantity": 1}],
                     payments=[_cash(methods, register_id, 1000)])
        assert resp.status_code == 400
        assert stock_of(product_id, main_location_id) == 5

    def test_overpayment_rejected(
        self, client, admin_headers, make_product, main_location_id, register_id, open_shift_id, methods
    ):
        product_id = make_product("S-4", price_cents=1000, stock={main_location_id: 5})
        resp = _sell(client, admin_headers, main_location_id,
                     [{"product_id": product_id, "quantity": 1}],
                     payments=[_cash(methods, register_id, 1500)])
        assert resp.status_code == 400

    def test_insufficient_stock(self, client, admin_headers, make_product, main_location_id):
        product_id = make_product("S-5", stock={main_location_id: 1})
        resp = _sell(client, admin_headers, main_location_id, [{"product_id": product_id, "quantity": 2}])
        assert resp.status_code == 400
        assert "Insufficient stock" in resp.get_json()["error"]

    def test_custom_line(self, client, admin_headers, main_location_id):
        ok = _sell(client, admin_headers, main_location_id,
                   [{"description": "Armado", "quantity": 1, "unit_price_cents": 2500}])
        assert ok.status_code == 201
        assert ok.get_json()["items"][0]["product_id"] is None

        missing_price = _sell(client, admin_headers, main_location_id, [{"description": "Armado", "quantity": 1}])
        assert missing_price.status_code == 400

    def test_list_filters(self, client, admin_headers, main_location_id):
        _sell(client, admin_headers, main_location_id,
              [{"description": "A", "quantity": 1, "unit_price_cents": 100}])
        _sell(client, admin_headers, main_location_id,
              [{"description": "B", "quantity": 1, "unit_price_cents": 100}], voucher_type="INVOICE_A")

        resp = client.get("/api/sales?voucher_type=INVOICE_A", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1
        assert client.get("/api/sales?status=PENDING", headers=admin_headers).get_json()["total"] == 2


# =============================================================================
# CREDIT NOTES
# =============================================================================


class TestCreditNotes:

    def _sale(self, client, headers, make_product, location_id, customer_id, quantity=3):
        product_id = make_product("CN-1", price_cents=1000, stock={location_id: 10})
        sale = _sell(client, headers, location_id, [{"product_id": product_id, "quantity": quantity}],
                     customer_id=customer_id).get_json()
        return product_id, sale

    def test_returns_stock_and_limits_quantity(
        self, client, admin_headers, make_product, main_location_id, customer_id
    ):
        product_id, sale = self._sale(client, admin_headers, make_product, main_location_id, customer_id)
        item_id = sale["items"][0]["id"]
        assert stock_of(product_id, main_location_id) == 7

        resp = client.post(f"/api/sales/{sale['id']}/credit-notes",
                           json={"items": [{"sale_item_id": item_id, "quantity": 2}], "reason": "Fallado"},
                           headers=admin_headers)
        assert resp.status_code == 201
        note = resp.get_json()
        assert note["voucher_type"] == "CREDIT_NOTE"
        assert note["sale_number"].startswith("NC-")
        assert note["related_sale_id"] == sale["id"]
        assert note["total_cents"] == 2000
        assert stock_of(product_id, main_location_id) == 9

        over = client.post(f"/api/sales/{sale['id']}/credit-notes",
                           json={"items": [{"sale_item_id": item_id, "quantity": 2}]},
                           headers=admin_headers)
        assert over.status_code == 400
        assert "only 1 left" in over.get_json()["error"]

    def test_lines_of_same_product_are_limited_separately(
        self, client, admin_headers, make_product, main_location_id, customer_id
    ):
        product_id = make_product("DUP", price_cents=1000, stock={main_location_id: 10})
        sale = _sell(client, admin_headers, main_location_id,
                     [{"product_id": product_id, "quantity": 2},
                      {"product_id": product_id, "quantity": 3, "unit_price_cents": 500}],
                     customer_id=customer_id).get_json()
        by_price = {item["unit_price_cents"]: item["id"] for item in sale["items"]}

        resp = client.post(f"/api/sales/{sale['id']}/credit-notes",
                           json={"items": [{"sale_item_id": by_price[1000], "quantity": 2},
                                           {"sale_item_id": by_price[500], "quantity": 3}]},
                           headers=admin_headers)
        assert resp.status_code == 201
        note = resp.get_json()
        assert note["total_cents"] == 3500
        assert sorted(item["related_sale_item_id"] for item in note["items"]) == sorted(by_price.values())
        assert stock_of(product_id, main_location_id) == 10

        over = client.post(f"/api/sales/{sale['id']}/credit-notes",
                           json={"items": [{"sale_item_id": by_price[500], "quantity": 1}]},
                           headers=admin_headers)
        assert over.status_code == 400
        assert "only 0 left" in over.get_json()["error"]

    def test_apply_to_another_sale(self, client, admin_headers, make_product, main_location_id, customer_id):
        _, sale = self._sale(client, admin_headers, make_product, main_location_id, customer_id, quantity=1)
        note = client.post(f"/api/sales/{sale['id']}/credit-notes",
                           json={"items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 1}]},
                           headers=admin_headers).get_json()

        target = _sell(client, admin_headers, main_location_id,
                       [{"description": "Servicio", "quantity": 1, "unit_price_cents": 2500}],
                       customer_id=customer_id).get_json()

        resp = client.post(f"/api/sales/credit-notes/{note['id']}/apply",
                           json={"sale_id": target["id"], "amount_cents": 600}, headers=admin_headers)
        assert resp.status_code == 201

        updated = client.get(f"/api/sales/{target['id']}", headers=admin_headers).get_json()
        assert updated["amount_paid_cents"] == 600
        assert updated["balance_cents"] == 1900

        available = client.get(f"/api/sales/credit-notes/available?customer_id={customer_id}",
                               headers=admin_headers).get_json()["credit_notes"]
        assert [n["balance_cents"] for n in available] == [400]

        too_much = client.post(f"/api/sales/credit-notes/{note['id']}/apply",
                               json={"sale_id": target["id"], "amount_cents": 401}, headers=admin_headers)
        assert too_much.status_code == 400

        # Applied notes can no longer be cancelled.
        assert client.post(f"/api/sales/credit-notes/{note['id']}/cancel", headers=admin_headers).status_code == 400

    def test_cancel_reverts_stock(self, client, admin_headers, make_product, main_location_id, customer_id):
        product_id, sale = self._sale(client, admin_headers, make_product, main_location_id, customer_id)
        note = client.post(f"/api/sales/{sale['id']}/credit-notes",
                           json={"items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 3}]},
                           headers=admin_headers).get_json()
        assert stock_of(product_id, main_location_id) == 10

        resp = client.post(f"/api/sales/credit-notes/{note['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "CANCELLED"
        assert stock_of(product_id, main_location_id) == 7

        # Cancelled notes free their quantity again.
        again = client.post(f"/api/sales/{sale['id']}/credit-notes",
                            json={"items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 3}]},
                            headers=admin_headers)
        assert again.status_code == 201

    def test_cash_refund_leaves_drawer(
        self, client, admin_headers, make_product, main_location_id, customer_id, register_id, open_shift_id, methods
    ):
        _, sale = self._sale(client, admin_headers, make_product, main_location_id, customer_id, quantity=1)
        resp = client.post(
            f"/api/sales/{sale['id']}/credit-notes",
            json={
                "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 1}],
                "refund_methods": [_cash(methods, register_id, 1000)],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["status"] == "COMPLETED"

        summary = client.get(f"/api/registers/shifts/{open_shift_id}/summary", headers=admin_headers).get_json()
        assert summary["cash_refunded_cents"] == 1000
        assert summary["current_cash_amount_cents"] == 9000

        # Refunded notes cannot be cancelled either.
        note_id = resp.get_json()["id"]
        assert client.post(f"/api/sales/credit-notes/{note_id}/cancel", headers=admin_headers).status_code == 400
