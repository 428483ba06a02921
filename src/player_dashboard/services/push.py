"""Push-notification adapters.

The retry queue and the notification service only depend on the
``PushSender`` protocol. ``FcmPushSender`` talks to the FCM HTTP v1 API with
an OAuth access token minted from a service account; ``NullPushSender`` is
used when push delivery is not configured.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Protocol

import google.auth.transport.requests
import httpx
from google.oauth2 import service_account

from player_dashboard.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

FCM_SCOPES: Final[list[str]] = ["https://www.googleapis.com/auth/firebase.messaging"]
HTTP_OK = 200


@dataclass(frozen=True)
class PushResult:
    """Outcome of a push delivery attempt."""

    success: bool
    result: Any = None
    error: str | None = None


class PushSender(Protocol):
    """Anything able to deliver a notification to device tokens."""

    async def send(self, tokens: Sequence[str], notification: Mapping[str, Any]) -> PushResult: ...

    async def aclose(self) -> None: ...


def build_fcm_v1_url(project_id: str) -> str:
    return f"https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


def load_service_account_info(raw_json: str) -> dict[str, Any]:
    """Parse service account JSON supplied through configuration."""
    try:
        info = json.loads(raw_json)
    except json.JSONDecodeError as err:
        raise ConfigurationError(f"PUSH_SERVICE_ACCOUNT_JSON is not valid JSON: {err}") from err
    if not isinstance(info, dict):
        raise ConfigurationError("PUSH_SERVICE_ACCOUNT_JSON must be a JSON object")
    return info


def build_fcm_message(token: str, notification: Mapping[str, Any]) -> dict[str, Any]:
    """Build an FCM v1 message; data values must be strings on the wire."""
    data = notification.get("data") or {}
    message: dict[str, Any] = {
        "token": token,
        "notification": {
            "title": str(notification.get("title", "")),
            "body": str(notification.get("body", "")),
        },
        "android": {"priority": "high"},
    }
    if data:
        message["data"] = {
            str(key): value if isinstance(value, str) else json.dumps(value)
            for key, value in data.items()
        }
    return {"message": message}


class FcmPushSender:
    """Deliver notifications through Firebase Cloud Messaging (HTTP v1)."""

    def __init__(
        self,
        service_account_info: Mapping[str, Any],
        *,
        project_id: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        resolved_project = project_id or service_account_info.get("project_id")
        if not resolved_project:
            raise ConfigurationError("Push project id is missing from configuration")
        self.project_id = str(resolved_project)
        self._service_account_info = dict(service_account_info)
        self._credentials: service_account.Credentials | None = None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    def _refresh_token(self) -> str:
        if self._credentials is None:
            self._credentials = service_account.Credentials.from_service_account_info(
                self._service_account_info,
                scopes=FCM_SCOPES,
            )
        if not self._credentials.valid:
            self._credentials.refresh(google.auth.transport.requests.Request())
        return str(self._credentials.token)

    async def _access_token(self) -> str:
        return await asyncio.to_thread(self._refresh_token)

    async def send(self, tokens: Sequence[str], notification: Mapping[str, Any]) -> PushResult:
        if not tokens:
            return PushResult(success=False, error="No recipients")
        try:
            access_token = await self._access_token()
        except Exception as exc:
            logger.error("Failed to obtain FCM access token: %s", exc)
            return PushResult(success=False, error=f"auth: {exc}")

        headers = {"Authorization": f"Bearer {access_token}"}
        url = build_fcm_v1_url(self.project_id)
        delivered: list[str] = []
        errors: list[str] = []
        for token in tokens:
            try:
                response = await self._client.post(
                    url, json=build_fcm_message(token, notification), headers=headers
                )
            except httpx.HTTPError as exc:
                errors.append(f"{token}: {exc}")
                continue
            if response.status_code == HTTP_OK:
                delivered.append(response.json().get("name", ""))
            else:
                errors.append(f"{token}: HTTP {response.status_code}")

        if errors:
            logger.warning("Push delivery failed for %d of %d tokens", len(errors), len(tokens))
            return PushResult(success=False, result={"sent": delivered}, error="; ".join(errors))
        logger.info("Push notification delivered to %d tokens", len(delivered))
        return PushResult(success=True, result={"sent": delivered})

    async def aclose(self) -> None:
        await self._client.aclose()


class NullPushSender:
    """Sender used when push credentials are absent; accepts and discards."""

    async def send(self, tokens: Sequence[str], notification: Mapping[str, Any]) -> PushResult:
        logger.info(
            "Push delivery not configured; would have notified %d tokens: %s",
            len(tokens),
            notification.get("title"),
        )
        return PushResult(success=True, result={"sent": []})

    async def aclose(self) -> None:
        return None
