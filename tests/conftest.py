# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("JWT_SECRET", "test-secret-key-for-player-dashboard")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MESSAGING_PROVIDER", "memory")
os.environ.setdefault("REVOCATION_BACKEND", "memory")

from player_dashboard.core.security import create_access_token
from player_dashboard.core.settings import Settings
from player_dashboard.main import app as fastapi_app
from player_dashboard.services.container import ServiceContainer, build_container
from player_dashboard.services.fabric import InMemoryFabric
from player_dashboard.services.kv_store import InMemoryKeyValueStore
from player_dashboard.services.push import PushResult
from player_dashboard.services.retry_queue import InMemoryRetryStorage


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPushSender:
    """Push sender double that records deliveries and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[list[str], dict[str, Any]]] = []
        self.fail = False
        self.closed = False

    async def send(self, tokens: Sequence[str], notification: Mapping[str, Any]) -> PushResult:
        if self.fail:
            return PushResult(success=False, error="push backend down")
        self.sent.append((list(tokens), dict(notification)))
        return PushResult(success=True, result={"sent": list(tokens)})

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def push_sender() -> RecordingPushSender:
    return RecordingPushSender()


@pytest.fixture()
def test_settings() -> Settings:
    """Settings aligned with the test environment."""
    return Settings(_env_file=None)


@pytest.fixture()
def services(test_settings: Settings, push_sender: RecordingPushSender) -> ServiceContainer:
    return build_container(
        test_settings,
        fabric=InMemoryFabric(),
        kv_store=InMemoryKeyValueStore(),
        push_sender=push_sender,
        retry_storage=InMemoryRetryStorage(),
    )


@pytest.fixture()
def app(services: ServiceContainer) -> Iterator[FastAPI]:
    fastapi_app.state.services = services
    try:
        yield fastapi_app
    finally:
        fastapi_app.state.services = None


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def bearer(subject: str = "user-1", role: str = "user", **kwargs: Any) -> dict[str, str]:
    """Return authorization headers for a freshly minted token."""
    token = create_access_token(subject, role, **kwargs)
    return {"Authorization": f"Bearer {token}"}


def signed(
    services: ServiceContainer,
    headers: Mapping[str, str],
    subject: str,
    payload: Any = None,
) -> dict[str, str]:
    """Add ``signature``/``timestamp`` headers for ``payload`` signed as ``subject``."""
    signature, timestamp = services.signer.sign({} if payload is None else payload, subject)
    return {**headers, "signature": signature, "timestamp": str(timestamp)}


@pytest.fixture()
def auth_token() -> dict[str, str]:
    """Authorization headers for a regular user."""
    return bearer("user-1", "user")


@pytest.fixture()
def admin_token() -> dict[str, str]:
    """Authorization headers for a superadmin."""
    return bearer("admin-1", "superadmin")
