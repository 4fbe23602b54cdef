"""Treasury: balances, transfers between accounts and manual movements."""


def _balance(client, headers, account_type, account_id):
    resp = client.get(f"/api/treasury/accounts/{account_type}/{account_id}", headers=headers)
    assert resp.status_code == 200
    return resp.get_json()["balance_cents"]


class TestOverview:

    def test_totals_per_account_type(
        self, client, admin_headers, bank_account_id, safe_box_id, register_id, open_shift_id
    ):
        resp = client.get("/api/treasury/overview", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["bank_account"]["total_cents"] == 500000
        assert body["safe_box"]["total_cents"] == 20000
        assert body["cash_register"]["total_cents"] == 10000
        assert body["cash_register"]["accounts"][0]["open_shift_id"] == open_shift_id
        assert body["total_treasury_cents"] == 530000

    def test_register_without_shifts_holds_nothing(self, client, admin_headers, register_id):
        assert _balance(client, admin_headers, "cash_register", register_id) == 0
        body = client.get("/api/treasury/overview", headers=admin_headers).get_json()
        assert body["cash_register"]["accounts"][0]["balance_cents"] == 0

    def test_closed_register_keeps_cash_left_in_drawer(
        self, client, admin_headers, register_id, open_shift_id
    ):
        resp = client.post(f"/api/registers/shifts/{open_shift_id}/close",
                           json={"counted_amount_cents": 10000, "left_in_cash_cents": 2000},
                           headers=admin_headers)
        assert resp.status_code == 200

        assert _balance(client, admin_headers, "cash_register", register_id) == 2000
        body = client.get("/api/treasury/overview", headers=admin_headers).get_json()
        [register] = body["cash_register"]["accounts"]
        assert register["balance_cents"] == 2000
        assert body["cash_register"]["total_cents"] == 2000

    def test_other_org_cannot_read_account(self, client, other_admin_headers, safe_box_id):
        resp = client.get(f"/api/treasury/accounts/safe_box/{safe_box_id}", headers=other_admin_headers)
        assert resp.status_code == 404


class TestTransfers:

    def test_bank_to_safe_box_shares_reference(self, client, admin_headers, bank_account_id, safe_box_id):
        resp = client.post(
            "/api/treasury/transfers",
            json={
                "source_type": "bank_account", "source_id": bank_account_id,
                "destination_type": "safe_box", "destination_id": safe_box_id,
                "amount_cents": 30000, "description": "Retiro para cambio",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["reference"].startswith("TRF-")
        assert body["source"]["movement"]["reference"] == body["reference"]
        assert body["destination"]["movement"]["reference"] == body["reference"]

        assert _balance(client, admin_headers, "bank_account", bank_account_id) == 470000
        assert _balance(client, admin_headers, "safe_box", safe_box_id) == 50000

    def test_safe_box_cannot_go_negative(self, client, admin_headers, bank_account_id, safe_box_id):
        resp = client.post(
            "/api/treasury/transfers",
            json={
                "source_type": "safe_box", "source_id": safe_box_id,
                "destination_type": "bank_account", "destination_id": bank_account_id,
                "amount_cents": 20001,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert _balance(client, admin_headers, "bank_account", bank_account_id) == 500000

    def test_cash_register_needs_open_shift(self, client, admin_headers, safe_box_id, register_id):
        resp = client.post(
            "/api/treasury/transfers",
            json={
                "source_type": "safe_box", "source_id": safe_box_id,
                "destination_type": "cash_register", "destination_id": register_id,
                "amount_cents": 1000,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert _balance(client, admin_headers, "safe_box", safe_box_id) == 20000

    def test_safe_box_to_open_register(self, client, admin_headers, safe_box_id, register_id, open_shift_id):
        resp = client.post(
            "/api/treasury/transfers",
            json={
                "source_type": "safe_box", "source_id": safe_box_id,
                "destination_type": "cash_register", "destination_id": register_id,
                "amount_cents": 5000,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert _balance(client, admin_headers, "cash_register", register_id) == 15000

        summary = client.get(f"/api/registers/shifts/{open_shift_id}/summary", headers=admin_headers).get_json()
        assert summary["cash_in_cents"] == 5000

    def test_same_account_rejected(self, client, admin_headers, safe_box_id):
        resp = client.post(
            "/api/treasury/transfers",
            json={
                "source_type": "safe_box", "source_id": safe_box_id,
                "destination_type": "safe_box", "destination_id": safe_box_id,
                "amount_cents": 100,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 400


class TestManualMovements:

    def _withdraw(self, client, headers, safe_box_id, amount):
        return client.post(
            "/api/treasury/movements",
            json={"account_type": "safe_box", "account_id": safe_box_id,
                  "movement_type": "withdrawal", "amount_cents": amount},
            headers=headers,
        )

    def test_edit_and_delete(self, client, admin_headers, safe_box_id):
        created = self._withdraw(client, admin_headers, safe_box_id, 5000)
        assert created.status_code == 201
        movement_id = created.get_json()["id"]
        url = f"/api/treasury/movements/safe_box/{movement_id}"

        assert client.put(url, json={"amount_cents": 8000}, headers=admin_headers).status_code == 200
        assert _balance(client, admin_headers, "safe_box", safe_box_id) == 12000

        # Editing may not leave the box below zero.
        assert client.put(url, json={"amount_cents": 30000}, headers=admin_headers).status_code == 400
        assert _balance(client, admin_headers, "safe_box", safe_box_id) == 12000

        assert client.delete(url, headers=admin_headers).status_code == 200
        assert _balance(client, admin_headers, "safe_box", safe_box_id) == 20000

    def test_system_movements_are_read_only(self, client, admin_headers, safe_box_id):
        detail = client.get(f"/api/treasury/accounts/safe_box/{safe_box_id}", headers=admin_headers).get_json()
        [initial] = detail["entries"]
        assert initial["category"] == "initial"
        assert initial["editable"] is False

        url = f"/api/treasury/movements/safe_box/{initial['source_id']}"
        assert client.put(url, json={"amount_cents": 1}, headers=admin_headers).status_code == 400
        assert client.delete(url, headers=admin_headers).status_code == 400

    def test_cash_register_not_accepted(self, client, admin_headers, register_id, open_shift_id):
        resp = client.post(
            "/api/treasury/movements",
            json={"account_type": "cash_register", "account_id": register_id,
                  "movement_type": "deposit", "amount_cents": 100},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_unified_listing_by_category(self, client, admin_headers, bank_account_id, safe_box_id):
        self._withdraw(client, admin_headers, safe_box_id, 1000)
        resp = client.get("/api/treasury/movements?category=manual", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total"] == 1
        assert body["items"][0]["amount_cents"] == -1000

        all_entries = client.get("/api/treasury/movements", headers=admin_headers).get_json()
        assert all_entries["total"] == 3
        assert client.get("/api/treasury/movements?category=nope", headers=admin_headers).status_code == 400


class TestSafeBoxes:

    def test_withdraw_beyond_balance(self, client, admin_headers, safe_box_id):
        resp = client.post(
            f"/api/treasury/safe-boxes/{safe_box_id}/withdraw", json={"amount_cents": 20001}, headers=admin_headers
        )
        assert resp.status_code == 400
        assert "Insufficient funds" in resp.get_json()["error"]

    def test_deposit_then_list(self, client, admin_headers, safe_box_id):
        resp = client.post(
            f"/api/treasury/safe-boxes/{safe_box_id}/deposit", json={"amount_cents": 700}, headers=admin_headers
        )
        assert resp.status_code == 201
        boxes = client.get("/api/treasury/safe-boxes", headers=admin_headers).get_json()["safe_boxes"]
        assert boxes[0]["balance_cents"] == 20700

    def test_archived_box_refuses_cash(self, client, admin_headers, safe_box_id):
        assert client.post(f"/api/treasury/safe-boxes/{safe_box_id}/archive", headers=admin_headers).status_code == 200
        resp = client.post(
            f"/api/treasury/safe-boxes/{safe_box_id}/deposit", json={"amount_cents": 1}, headers=admin_headers
        )
        assert resp.status_code == 400
