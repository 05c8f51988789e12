def test_healthz(client):
    rv = client.get("/healthz")
    assert rv.status_code == 200
    assert rv.json["ok"] is True
    assert rv.json["stores"] == {"vera": "ok", "sourcify": "ok"}


def test_healthz_reports_unreachable_store(client, monkeypatch):
    from vera_sync.routes import health

    def fake_ping(engine):
        return "error: OperationalError" if engine is health.db.engines["sourcify"] else "ok"

    monkeypatch.setattr(health, "_ping", fake_ping)
    rv = client.get("/healthz")
    assert rv.status_code == 503
    assert rv.json["ok"] is False
    assert rv.json["stores"]["sourcify"].startswith("error")
