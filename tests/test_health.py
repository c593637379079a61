"""Health endpoint."""
from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert j.get("status") == "ok"
    assert j.get("database") == "ok"
    assert j.get("gateway_configured") is True
    assert r.headers.get("X-Request-ID")


def test_unknown_route_uses_error_envelope(client: TestClient):
    r = client.get("/no-such-route")
    assert r.status_code == 404
    assert r.json()["success"] is False
