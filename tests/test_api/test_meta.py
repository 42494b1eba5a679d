# tests/test_api/test_meta.py

from app.core.config import settings


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_security_headers_and_request_id(client):
    r = client.get("/healthz", headers={"X-Request-ID": "req-abc-12345"})
    assert r.headers["x-request-id"] == "req-abc-12345"
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.headers["x-frame-options"] == "DENY"
    assert r.headers["referrer-policy"] == "no-referrer"
    assert "default-src 'none'" in r.headers["content-security-policy"]
    assert "server" not in r.headers


def test_unsafe_request_id_is_replaced(client):
    r = client.get("/healthz", headers={"X-Request-ID": "bad id with spaces"})
    assert r.headers["x-request-id"] != "bad id with spaces"
    assert len(r.headers["x-request-id"]) == 36


def test_problem_json_carries_request_id(client):
    r = client.get(f"{settings.API_V1_STR}/access/check", params={"content_id": "C1"}, headers={"X-Request-ID": "trace-00000001"})
    assert r.status_code == 401
    body = r.json()
    assert body["request_id"] == "trace-00000001"
    assert body["status"] == 401 and body["instance"] == f"{settings.API_V1_STR}/access/check"


def test_metrics_exposition(client):
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "text/plain" in r.headers["content-type"]


def test_readyz_reports_db_state(client, monkeypatch):
    import app.main as main_module

    async def _down():
        return False

    monkeypatch.setattr(main_module, "db_healthcheck", _down)
    r = client.get("/readyz")
    assert r.status_code == 503
    assert r.json() == {"ready": False, "checks": {"db": False}}
