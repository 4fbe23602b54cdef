"""
Authentication and authorization tests.

Verifies:
- Login returns a bearer token plus the role's permissions
- Unauthenticated requests return 401
- Cashier role is denied management operations (403)
- Sessions are bound to their organization
"""

import pytest

from backoffice.extensions import db
from backoffice.models import User

from conftest import PASSWORD


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestLogin:

    def test_login_returns_token_and_permissions(self, client, admin_id):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["token"]
        assert body["user"]["id"] == admin_id
        assert "settings:write" in body["permissions"]
        assert "view_expected_cash" in body["special_actions"]

    def test_login_by_email(self, client, admin_id):
        resp = client.post("/api/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
        assert resp.status_code == 200

    def test_wrong_password(self, client, admin_id):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "Nope123!x"})
        assert resp.status_code == 401

    def test_missing_credentials(self, client):
        resp = client.post("/api/auth/login", json={"username": "admin"})
        assert resp.status_code == 400

    def test_inactive_user_cannot_login(self, client, admin_id):
        db.session.get(User, admin_id).is_active = False
        db.session.commit()
        resp = client.post("/api/auth/login", json={"username": "admin", "password": PASSWORD})
        assert resp.status_code == 401

    def test_same_username_in_two_orgs_needs_org_code(self, client, admin_id, other_org_id, password_hash):
        from conftest import create_user

        create_user(other_org_id, "admin", "admin", password_hash)

        ambiguous = client.post("/api/auth/login", json={"username": "admin", "password": PASSWORD})
        assert ambiguous.status_code == 401

        scoped = client.post(
            "/api/auth/login", json={"username": "admin", "password": PASSWORD, "org_code": "BETA"}
        )
        assert scoped.status_code == 200
        assert scoped.get_json()["org_id"] == other_org_id

    def test_logout_revokes_token(self, client, admin_headers):
        assert client.get("/api/auth/me", headers=admin_headers).status_code == 200
        assert client.post("/api/auth/logout", headers=admin_headers).status_code == 200
        assert client.get("/api/auth/me", headers=admin_headers).status_code == 401


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/settings/roles"),
            ("GET", "/api/products"),
            ("POST", "/api/inventory/adjust"),
            ("GET", "/api/transfers"),
            ("GET", "/api/registers"),
            ("GET", "/api/sales"),
            ("GET", "/api/customer-payments"),
            ("GET", "/api/purchases"),
            ("GET", "/api/purchase-orders"),
            ("GET", "/api/supplier-payments"),
            ("GET", "/api/treasury/overview"),
            ("GET", "/api/ecommerce/stores"),
            ("GET", "/api/reports/sales-summary"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# CASHIER DENIED (403)
# =============================================================================


class TestCashierDenied:

    def test_cannot_manage_roles(self, client, cashier_headers):
        resp = client.post("/api/settings/roles", json={"name": "x", "permissions": []}, headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "settings:write"

    def test_cannot_read_treasury(self, client, cashier_headers):
        assert client.get("/api/treasury/overview", headers=cashier_headers).status_code == 403

    def test_cannot_create_purchase(self, client, cashier_headers):
        resp = client.post("/api/purchases", json={}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_can_read_sales(self, client, cashier_headers):
        assert client.get("/api/sales", headers=cashier_headers).status_code == 200


# =============================================================================
# TENANT ISOLATION
# =============================================================================


class TestTenantIsolation:

    def test_products_of_other_org_are_invisible(self, client, make_product, other_admin_headers):
        product_id = make_product("ISO-1")
        assert client.get(f"/api/products/{product_id}", headers=other_admin_headers).status_code == 404

        listing = client.get("/api/products", headers=other_admin_headers).get_json()
        assert listing["total"] == 0

    def test_cannot_sell_from_other_org_location(self, client, main_location_id, other_admin_headers):
        resp = client.post(
            "/api/sales",
            json={
                "location_id": main_location_id,
                "items": [{"description": "Servicio", "quantity": 1, "unit_price_cents": 100}],
            },
            headers=other_admin_headers,
        )
        assert resp.status_code == 400
