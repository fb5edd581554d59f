def test_health(client):
    rv = client.get("/health")
    assert rv.status_code == 200
    assert rv.json["status"] == "ok"

def test_health_checks_not_configured(client):
    rv = client.get("/health/checks")
    assert rv.status_code == 200
    js = rv.get_json()
    assert js["backend"] == "ok"
    assert js["iexec"] == "not_configured"
    assert js["chain"] == "not_configured"
    assert js["checkedAt"].endswith("Z")

def test_health_checks_rpc_down(client, settlement_config, monkeypatch):
    from shadowsettle.errors import NetworkError
    from shadowsettle.routes import health

    def boom(w3):
        raise NetworkError("connection refused")

    monkeypatch.setattr(health, "get_w3", lambda uri, use_poa=False: object())
    monkeypatch.setattr(health, "block_number", boom)

    rv = client.get("/health/checks")
    assert rv.json["chain"] == "error"
