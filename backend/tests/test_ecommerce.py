"""Tiendanube client, webhook handling and stock sync."""

import hashlib
import hmac
import json

import httpx
import pytest

from backoffice.services.ecommerce import sync_service
from backoffice.services.ecommerce.tiendanube_client import (
    EcommerceError,
    TiendanubeClient,
    extract_i18n,
    parse_price,
)

from conftest import stock_of


def _client(handler, **kwargs):
    return TiendanubeClient("123", "tok", transport=httpx.MockTransport(handler), **kwargs)


# =============================================================================
# CLIENT
# =============================================================================


class TestTiendanubeClient:

    def test_auth_headers(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authentication"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": 1})

        assert _client(handler).get_product(1) == {"id": 1}
        assert seen["auth"] == "bearer tok"
        assert seen["url"].endswith("/123/products/1")

    def test_rate_limit_is_retried(self):
        calls = []
        delays = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(429)
            return httpx.Response(200, json=[])

        client = _client(handler, retry_base_delay=0.5, sleep=delays.append)
        assert client.list_webhooks() == []
        assert delays == [0.5, 1.0]

    def test_rate_limit_gives_up(self):
        client = _client(lambda request: httpx.Response(429), max_retries=1, sleep=lambda _: None)
        with pytest.raises(EcommerceError) as exc:
            client.get_products()
        assert exc.value.status_code == 429

    def test_error_status_raises(self):
        client = _client(lambda request: httpx.Response(404, text="Not Found"))
        with pytest.raises(EcommerceError) as exc:
            client.get_product(9)
        assert exc.value.status_code == 404

    def test_pagination_stops_on_short_page(self):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            return httpx.Response(200, json=[{"id": i} for i in range(2 if page == 1 else 1)])

        assert len(_client(handler).fetch_all("products", per_page=2)) == 3
        assert pages == [1, 2]


class TestParsing:

    @pytest.mark.parametrize("raw, cents", [
        ("1500.00", 150000),
        ("0.005", 1),
        (12, 1200),
        ("", None),
        (None, None),
        ("abc", None),
        ("NaN", None),
    ])
    def test_parse_price(self, raw, cents):
        assert parse_price(raw) == cents

    def test_extract_i18n_prefers_spanish(self):
        assert extract_i18n({"pt": "Camisa", "es": "Remera"}) == "Remera"
        assert extract_i18n({"en": "Shirt"}) == "Shirt"
        assert extract_i18n("Remera") == "Remera"
        assert extract_i18n(None) == ""


# =============================================================================
# STORES AND STOCK SYNC
# =============================================================================


@pytest.fixture()
def remote(monkeypatch):
    """Fake store API: records requests and serves a single product #10 with variant #20."""
    state = {"requests": [], "stock": 7}

    def handler(request):
        state["requests"].append((request.method, request.url.path, request.content))
        if request.method == "GET" and request.url.path.endswith("/products/10"):
            return httpx.Response(200, json={
                "id": 10,
                "name": {"es": "Remera lisa"},
                "published": True,
                "variants": [{"id": 20, "sku": "REM-1", "price": "2500.00", "stock": state["stock"]}],
            })
        return httpx.Response(200, json={})

    def fake_client_for(store):
        return TiendanubeClient(store.external_store_id, store.access_token,
                                transport=httpx.MockTransport(handler), sleep=lambda _: None)

    monkeypatch.setattr(sync_service, "client_for", fake_client_for)
    return state


@pytest.fixture()
def mapped_store(client, admin_headers, make_product, main_location_id):
    product_id = make_product("REM-1", stock={main_location_id: 3})
    store = client.post(
        "/api/ecommerce/stores",
        json={"external_store_id": "555", "access_token": "secret-token", "location_id": main_location_id},
        headers=admin_headers,
    ).get_json()
    mapping = client.post(
        f"/api/ecommerce/stores/{store['id']}/mappings",
        json={"product_id": product_id, "remote_product_id": 10, "remote_variant_id": 20},
        headers=admin_headers,
    )
    assert mapping.status_code == 201
    return store, product_id


def _pushes(remote):
    return [(path, json.loads(body)) for method, path, body in remote["requests"] if method == "PUT"]


@pytest.mark.integration
class TestStockSync:

    def test_stock_change_is_pushed_after_commit(
        self, client, admin_headers, remote, mapped_store, main_location_id
    ):
        _, product_id = mapped_store
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product_id, "location_id": main_location_id, "quantity": 9},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert _pushes(remote) == [("/v1/555/products/10/variants/20", {"stock": 9})]

    def test_manual_sync_forces_push(self, client, admin_headers, remote, mapped_store):
        store, _ = mapped_store
        resp = client.post(f"/api/ecommerce/stores/{store['id']}/sync-stock", headers=admin_headers)
        assert resp.status_code == 200
        [result] = resp.get_json()["results"]
        assert result["status"] == "synced"
        assert result["stock"] == 3

    def test_disconnected_store_refuses_sync(self, client, admin_headers, remote, mapped_store):
        store, _ = mapped_store
        client.post(f"/api/ecommerce/stores/{store['id']}/disconnect", headers=admin_headers)
        resp = client.post(f"/api/ecommerce/stores/{store['id']}/sync-stock", headers=admin_headers)
        assert resp.status_code == 400

    def test_store_of_other_org_is_hidden(self, client, other_admin_headers, mapped_store):
        store, _ = mapped_store
        resp = client.get(f"/api/ecommerce/stores/{store['id']}/mappings", headers=other_admin_headers)
        assert resp.status_code == 404


# =============================================================================
# WEBHOOKS
# =============================================================================


def _post_webhook(client, payload, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers[sync_service.SIGNATURE_HEADER] = signature
    return client.post("/api/ecommerce/webhooks/tiendanube", data=json.dumps(payload), headers=headers)


@pytest.mark.integration
class TestWebhooks:

    def test_product_update_pulls_stock(self, client, remote, mapped_store, main_location_id):
        _, product_id = mapped_store
        resp = _post_webhook(client, {"store_id": 555, "event": "products/updated", "id": 10})
        assert resp.status_code == 200
        assert resp.get_json()["handled"] is True
        assert stock_of(product_id, main_location_id) == 7

        # The pulled quantity is remembered, so it is not echoed back.
        assert _pushes(remote) == []

    def test_uninstall_disconnects(self, client, admin_headers, remote, mapped_store):
        store, _ = mapped_store
        resp = _post_webhook(client, {"store_id": "555", "event": "app/uninstalled"})
        assert resp.status_code == 200

        stores = client.get("/api/ecommerce/stores", headers=admin_headers).get_json()["stores"]
        assert stores[0]["is_active"] is False

    def test_unknown_store(self, client):
        assert _post_webhook(client, {"store_id": "999", "event": "orders/paid"}).status_code == 404

    def test_missing_fields(self, client):
        assert _post_webhook(client, {"event": "orders/paid"}).status_code == 400

    def test_signature_checked_when_secret_set(self, app, client, remote, mapped_store):
        app.config["TIENDANUBE_WEBHOOK_SECRET"] = "shh"
        payload = {"store_id": "555", "event": "orders/created"}

        assert _post_webhook(client, payload, signature="bogus").status_code == 401

        body = json.dumps(payload).encode()
        good = hmac.new(b"shh", body, hashlib.sha256).hexdigest()
        resp = _post_webhook(client, payload, signature=good)
        assert resp.status_code == 200
        assert resp.get_json()["handled"] is False
