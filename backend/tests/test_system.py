"""Health and version endpoints."""


def test_health_degraded_without_webhook_secret(client, org_id):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["database"]["details"]["organizations"] == 1
    assert body["checks"]["ecommerce"]["status"] == "degraded"


def test_health_healthy_with_secret(app, client):
    app.config["TIENDANUBE_WEBHOOK_SECRET"] = "shh"
    body = client.get("/health").get_json()
    assert body["status"] == "healthy"


def test_version(client):
    body = client.get("/version").get_json()
    assert body["api_version"] == "1.0.0"
    assert body["environment"] in ("development", "production")
