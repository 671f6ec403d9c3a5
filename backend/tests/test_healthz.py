from fastapi.testclient import TestClient


def test_healthz_always_ok(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_memory_store(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "store": "memory"}


def test_readyz_ok_with_sql_store(sql_store, test_settings, credentials, fake_time):
    from backend.main import create_app

    client = TestClient(create_app(sql_store, settings_obj=test_settings, credentials=credentials, clock=fake_time))
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json().get("store") == "sql"


def test_readyz_handles_store_down(app, monkeypatch):
    def boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(app.state.store, "ping", boom)

    resp = TestClient(app).get("/readyz")
    body = resp.json()
    assert resp.status_code == 503
    assert body.get("status") == "error"
    assert "db down" not in body.get("detail", "")
