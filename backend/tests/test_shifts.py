"""Cash registers and shifts: opening, drawer movements and blind closing."""

from backoffice.services import safe_box_service

from conftest import auth_headers


def _box_balance(safe_box_id, org_id):
    return safe_box_service.get_balance(safe_box_service.get_safe_box(safe_box_id, org_id))


# =============================================================================
# REGISTERS
# =============================================================================


class TestRegisters:

    def test_list_shows_open_shift(self, client, admin_headers, register_id, open_shift_id):
        resp = client.get("/api/registers", headers=admin_headers)
        assert resp.status_code == 200
        [register] = resp.get_json()["registers"]
        assert register["id"] == register_id
        assert register["open_shift_id"] == open_shift_id

    def test_cannot_deactivate_with_open_shift(self, client, admin_headers, register_id, open_shift_id):
        resp = client.post(f"/api/registers/{register_id}/toggle", headers=admin_headers)
        assert resp.status_code == 400

    def test_cannot_delete_with_history(self, client, admin_headers, register_id, open_shift_id):
        assert client.delete(f"/api/registers/{register_id}", headers=admin_headers).status_code == 400

    def test_duplicate_name_rejected(self, client, admin_headers, register_id, main_location_id):
        resp = client.post(
            "/api/registers", json={"location_id": main_location_id, "name": "Caja 1"}, headers=admin_headers
        )
        assert resp.status_code == 400


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================


class TestShiftLifecycle:

    def test_open_shift(self, client, admin_headers, register_id):
        resp = client.post(
            f"/api/registers/{register_id}/shifts", json={"opening_amount_cents": 5000}, headers=admin_headers
        )
        assert resp.status_code == 201
        assert resp.get_json()["status"] == "open"

        current = client.get("/api/registers/shifts/current", headers=admin_headers).get_json()
        assert current["shift"]["opening_amount_cents"] == 5000

    def test_second_open_shift_rejected(self, client, admin_headers, register_id, open_shift_id):
        resp = client.post(
            f"/api/registers/{register_id}/shifts", json={"opening_amount_cents": 0}, headers=admin_headers
        )
        assert resp.status_code == 400

    def test_cash_movements_update_drawer(self, client, admin_headers, open_shift_id):
        base = f"/api/registers/shifts/{open_shift_id}"
        assert client.post(f"{base}/cash_in", json={"amount_cents": 2500}, headers=admin_headers).status_code == 201
        assert client.post(f"{base}/cash_out", json={"amount_cents": 1000, "notes": "Cambio"},
                           headers=admin_headers).status_code == 201

        summary = client.get(f"{base}/summary", headers=admin_headers).get_json()
        assert summary["cash_in_cents"] == 2500
        assert summary["cash_out_cents"] == 1000
        assert summary["current_cash_amount_cents"] == 11500

    def test_cash_out_cannot_exceed_drawer(self, client, admin_headers, open_shift_id):
        resp = client.post(
            f"/api/registers/shifts/{open_shift_id}/cash_out", json={"amount_cents": 10001}, headers=admin_headers
        )
        assert resp.status_code == 400
        assert "Not enough cash" in resp.get_json()["error"]

    def test_close_with_discrepancy_and_safe_box_deposit(
        self, client, admin_headers, org_id, register_id, open_shift_id, safe_box_id
    ):
        resp = client.post(
            f"/api/registers/shifts/{open_shift_id}/close",
            json={
                "counted_amount_cents": 9500,
                "left_in_cash_cents": 2000,
                "discrepancy_reason": "missing_change",
                "safe_box_id": safe_box_id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        shift = resp.get_json()
        assert shift["status"] == "closed"
        assert shift["expected_amount_cents"] == 10000
        assert shift["discrepancy_cents"] == -500
        assert shift["discrepancy_reason"] == "missing_change"

        assert _box_balance(safe_box_id, org_id) == 20000 + 7500

        status = client.get(f"/api/registers/{register_id}/status", headers=admin_headers).get_json()
        assert status["active_shift"] is None
        assert status["suggested_opening_amount_cents"] == 2000

    def test_close_rejects_unknown_reason(self, client, admin_headers, open_shift_id):
        resp = client.post(
            f"/api/registers/shifts/{open_shift_id}/close",
            json={"counted_amount_cents": 0, "discrepancy_reason": "aliens"},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_left_in_cash_cannot_exceed_count(self, client, admin_headers, open_shift_id):
        resp = client.post(
            f"/api/registers/shifts/{open_shift_id}/close",
            json={"counted_amount_cents": 100, "left_in_cash_cents": 200},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_closed_shift_rejects_movements(self, client, admin_headers, open_shift_id):
        base = f"/api/registers/shifts/{open_shift_id}"
        client.post(f"{base}/close", json={"counted_amount_cents": 10000}, headers=admin_headers)
        assert client.post(f"{base}/cash_in", json={"amount_cents": 100}, headers=admin_headers).status_code == 400

    def test_deposit_during_shift(self, client, admin_headers, org_id, open_shift_id, safe_box_id):
        resp = client.post(
            f"/api/registers/shifts/{open_shift_id}/deposit",
            json={"safe_box_id": safe_box_id, "amount_cents": 4000},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["shift_movement"]["movement_type"] == "cash_out"
        assert body["safe_box_movement"]["reference"] == f"TURNO-{open_shift_id}"
        assert _box_balance(safe_box_id, org_id) == 24000

    def test_unknown_shift(self, client, admin_headers):
        resp = client.post("/api/registers/shifts/999/cash_in", json={"amount_cents": 1}, headers=admin_headers)
        assert resp.status_code == 404


# =============================================================================
# BLIND CLOSE
# =============================================================================


class TestExpectedCashVisibility:

    def test_cashier_never_sees_expected_cash(self, client, cashier_id, register_id):
        headers = auth_headers(cashier_id)
        shift = client.post(
            f"/api/registers/{register_id}/shifts", json={"opening_amount_cents": 3000}, headers=headers
        ).get_json()
        assert "expected_amount_cents" not in shift

        summary = client.get(f"/api/registers/shifts/{shift['id']}/summary", headers=headers).get_json()
        assert "current_cash_amount_cents" not in summary
        assert summary["opening_amount_cents"] == 3000

        closed = client.post(
            f"/api/registers/shifts/{shift['id']}/close", json={"counted_amount_cents": 2900}, headers=headers
        ).get_json()
        assert closed["counted_amount_cents"] == 2900
        assert "discrepancy_cents" not in closed

    def test_manager_sees_discrepancy_of_cashier_shift(self, client, cashier_id, admin_headers, register_id):
        headers = auth_headers(cashier_id)
        shift = client.post(
            f"/api/registers/{register_id}/shifts", json={"opening_amount_cents": 3000}, headers=headers
        ).get_json()
        client.post(f"/api/registers/shifts/{shift['id']}/close", json={"counted_amount_cents": 2900}, headers=headers)

        summary = client.get(f"/api/registers/shifts/{shift['id']}/summary", headers=admin_headers).get_json()
        assert summary["expected_amount_cents"] == 3000
        assert summary["discrepancy_cents"] == -100
