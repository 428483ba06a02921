# tests/v1/test_system.py
"""Tests for circuit, retry queue and public configuration endpoints."""

from fastapi import status

from player_dashboard.core.settings import settings


def test_public_config_excludes_secrets(client):
    response = client.get("/api/v1/system/config")
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["app"]["name"] == settings.app_name
    assert body["auth"]["audience"] == "player-dashboard-api"
    assert body["messaging"]["provider"] == "memory"
    assert settings.jwt_secret not in response.text


def test_circuits_listed_for_superadmin(client, admin_token):
    response = client.get("/api/v1/system/circuits", headers=admin_token)
    assert response.status_code == status.HTTP_200_OK
    states = {entry["name"]: entry["state"] for entry in response.json()}
    assert states == {"messaging": "closed", "push": "closed"}


def test_circuits_forbidden_for_regular_user(client, auth_token):
    response = client.get("/api/v1/system/circuits", headers=auth_token)
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json() == {"error": "Insufficient permissions"}


def test_reset_circuit(client, services, admin_token):
    async def failing():
        raise ConnectionError("down")

    services.breaker.register("messaging", failure_threshold=1)
    client.portal.call(_trip, services.breaker, failing)
    assert services.breaker.status("messaging")["state"] == "open"

    response = client.post("/api/v1/system/circuits/messaging/reset", headers=admin_token)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["state"] == "closed"


async def _trip(breaker, fn):
    try:
        await breaker.exec("messaging", fn)
    except ConnectionError:
        pass


def test_reset_unknown_circuit_is_404(client, admin_token):
    response = client.post("/api/v1/system/circuits/nope/reset", headers=admin_token)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_retry_queue_status(client, services, admin_token):
    services.retry_queue.enqueue(["P1"], {"title": "New Command", "body": "", "data": {}})

    response = client.get("/api/v1/system/retry-queue", headers=admin_token)
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["size"] == 1
    assert body["items"][0]["recipients"] == ["P1"]
    assert body["items"][0]["title"] == "New Command"
