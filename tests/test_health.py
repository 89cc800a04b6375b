from fastapi.testclient import TestClient

from app.main import app


def test_health():
    c = TestClient(app)
    r = c.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["huggingface"] == "not configured"
    assert body["database"] in ("connected", "disconnected")


def test_health_echoes_request_id():
    c = TestClient(app)
    r = c.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


def test_protected_route_requires_token():
    c = TestClient(app)
    r = c.get("/api/users/me")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


def test_packages_catalog_is_public():
    c = TestClient(app)
    r = c.get("/api/billing/packages")
    assert r.status_code == 200
    ids = [p["id"] for p in r.json()["packages"]]
    assert ids == ["starter", "pro", "ultimate"]
