from fastapi import status


def test_root_returns_ok(client):
    response = client.get("/")
    assert response.status_code == status.HTTP_200_OK
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "MoMo Storefront API"


def test_health_returns_ok(client):
    response = client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


def test_healthz_reports_configured_services(client, monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)

    response = client.get("/healthz")

    assert response.status_code == status.HTTP_200_OK
    payload = response.json()
    assert payload["status"] == "healthy"
    assert payload["timestamp"]
    assert payload["services"] == {
        "mtnMomo": "configured",
        "telegram": "not configured",
        "webhookSignature": "configured",
    }
