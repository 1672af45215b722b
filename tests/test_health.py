from fastapi.testclient import TestClient

from campusmatch.api.main import app
from campusmatch.db.engine import build_engine


def test_health(monkeypatch):
    monkeypatch.setattr("campusmatch.api.main.build_engine", lambda: build_engine("duckdb:///:memory:"))
    client = TestClient(app)
    r = client.get("/health")
    assert r.status_code == 200

    payload = r.json()
    assert payload["status"] == "ok"
    assert payload["db"]["ok"] is True


def test_cors_preflight_allows_configured_origin():
    client = TestClient(app)
    res = client.options(
        "/health",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
    )
    assert res.headers.get("access-control-allow-origin") == "http://localhost:5173"
