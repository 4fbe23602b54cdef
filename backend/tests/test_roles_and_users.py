"""Role management and collaborator accounts."""

from backoffice.extensions import db
from backoffice.models import Role

from conftest import PASSWORD


def _role_id(org_id, name):
    return db.session.query(Role.id).filter_by(org_id=org_id, name=name).scalar()


def _create_role(client, headers, name, permissions, **extra):
    return client.post("/api/settings/roles", json={"name": name, "permissions": permissions, **extra},
                       headers=headers)


def _login(client, username, password=PASSWORD):
    return client.post("/api/auth/login", json={"username": username, "password": password})


class TestRoles:

    def test_custom_role_limits_access(self, client, admin_headers, main_location_id):
        role = _create_role(client, admin_headers, "Contador", ["reports:read", "treasury:read"]).get_json()
        assert role["is_system"] is False
        assert role["member_count"] == 0

        created = client.post(
            "/api/settings/users",
            json={"username": "contador", "email": "Contador@Acme.test", "password": PASSWORD,
                  "role_id": role["id"], "location_id": main_location_id},
            headers=admin_headers,
        )
        assert created.status_code == 201
        assert created.get_json()["email"] == "contador@acme.test"

        token = _login(client, "contador").get_json()["token"]
        headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/api/reports/sales-summary", headers=headers).status_code == 200
        assert client.get("/api/treasury/overview", headers=headers).status_code == 200
        denied = client.get("/api/sales", headers=headers)
        assert denied.status_code == 403
        assert denied.get_json()["required_permission"] == "sales:read"

    def test_unknown_permission_rejected(self, client, admin_headers):
        resp = _create_role(client, admin_headers, "Rara", ["sales:fly"])
        assert resp.status_code == 400
        assert "Unknown permissions" in resp.get_json()["error"]

    def test_names_are_unique_ignoring_case(self, client, admin_headers):
        _create_role(client, admin_headers, "Deposito", ["inventory:read"])
        assert _create_role(client, admin_headers, "DEPOSITO", ["inventory:read"]).status_code == 400

    def test_duplicate_appends_copy_suffix(self, client, admin_headers, org_id):
        cashier_role = _role_id(org_id, "cashier")
        first = client.post(f"/api/settings/roles/{cashier_role}/duplicate", headers=admin_headers)
        assert first.status_code == 201
        assert first.get_json()["name"] == "cashier (copia)"
        assert first.get_json()["is_system"] is False

        second = client.post(f"/api/settings/roles/{cashier_role}/duplicate", headers=admin_headers).get_json()
        assert second["name"] == "cashier (copia) 2"

    def test_system_roles_are_protected(self, client, admin_headers, org_id):
        cashier_role = _role_id(org_id, "cashier")
        assert client.delete(f"/api/settings/roles/{cashier_role}", headers=admin_headers).status_code == 400
        assert client.put(f"/api/settings/roles/{cashier_role}", json={"name": "Cajas"},
                          headers=admin_headers).status_code == 400
        assert client.put(f"/api/settings/roles/{cashier_role}", json={"permissions": ["sales:read"]},
                          headers=admin_headers).status_code == 400

        widened = client.put(f"/api/settings/roles/{cashier_role}",
                             json={"permissions": ["sales:read", "sales:write", "products:read",
                                                   "inventory:read", "customers:read", "customers:write",
                                                   "shifts:read", "shifts:write", "reports:read"]},
                             headers=admin_headers)
        assert widened.status_code == 200
        assert "reports:read" in widened.get_json()["permissions"]

    def test_role_with_members_cannot_be_deleted(self, client, admin_headers):
        role = _create_role(client, admin_headers, "Repositor", ["inventory:read"]).get_json()
        user = client.post(
            "/api/settings/users",
            json={"username": "repo", "email": "repo@acme.test", "password": PASSWORD, "role_id": role["id"]},
            headers=admin_headers,
        ).get_json()

        resp = client.delete(f"/api/settings/roles/{role['id']}", headers=admin_headers)
        assert resp.status_code == 400
        assert "active member" in resp.get_json()["error"]

        client.post(f"/api/settings/users/{user['id']}/deactivate", headers=admin_headers)
        assert client.delete(f"/api/settings/roles/{role['id']}", headers=admin_headers).status_code == 200

    def test_other_org_role_is_not_found(self, client, other_admin_headers, org_id):
        cashier_role = _role_id(org_id, "cashier")
        resp = client.put(f"/api/settings/roles/{cashier_role}", json={"description": "x"},
                          headers=other_admin_headers)
        assert resp.status_code == 404


class TestUsers:

    def test_weak_password_rejected(self, client, admin_headers):
        resp = client.post("/api/settings/users",
                           json={"username": "debil", "email": "debil@acme.test", "password": "password"},
                           headers=admin_headers)
        assert resp.status_code == 400
        assert "Password must" in resp.get_json()["error"]

    def test_duplicate_username_rejected(self, client, admin_headers, admin_id):
        resp = client.post("/api/settings/users",
                           json={"username": "admin", "email": "otro@acme.test", "password": PASSWORD},
                           headers=admin_headers)
        assert resp.status_code == 400

    def test_same_username_allowed_in_other_org(self, client, other_admin_headers, admin_id):
        resp = client.post("/api/settings/users",
                           json={"username": "admin", "email": "admin@beta.test", "password": PASSWORD},
                           headers=other_admin_headers)
        assert resp.status_code == 201

    def test_deactivated_user_cannot_log_in(self, client, admin_headers, cashier_id):
        assert _login(client, "cajero").status_code == 200

        resp = client.post(f"/api/settings/users/{cashier_id}/deactivate", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["is_active"] is False
        assert _login(client, "cajero").status_code == 401

        listed = client.get("/api/settings/users", headers=admin_headers).get_json()["users"]
        assert "cajero" not in [u["username"] for u in listed]

        client.post(f"/api/settings/users/{cashier_id}/activate", headers=admin_headers)
        assert _login(client, "cajero").status_code == 200

    def test_cannot_deactivate_yourself(self, client, admin_headers, admin_id):
        resp = client.post(f"/api/settings/users/{admin_id}/deactivate", headers=admin_headers)
        assert resp.status_code == 400

    def test_password_change(self, client, admin_headers, cashier_id):
        resp = client.put(f"/api/settings/users/{cashier_id}", json={"password": "NuevaClave9$"},
                          headers=admin_headers)
        assert resp.status_code == 200
        assert _login(client, "cajero").status_code == 401
        assert _login(client, "cajero", "NuevaClave9$").status_code == 200
