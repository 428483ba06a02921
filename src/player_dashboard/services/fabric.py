"""Messaging fabric adapters.

The dispatcher and acknowledgment listener speak to a generic pub/sub
fabric with per-channel topics and at-least-once delivery:

- ``publish(channel, event_name, body)``
- ``subscribe(channel, event_name, callback)``
- ``close(channel)``

``InMemoryFabric`` delivers within the process and is used for development
and tests. ``AblyFabric`` publishes through the Ably REST API and consumes
channels through Ably's server-sent events endpoint.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from urllib.parse import quote

import httpx

from player_dashboard.core.errors import ConfigurationError, TransportError
from player_dashboard.utils.time import now_ms

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400
SSE_PROTOCOL_VERSION: Final[str] = "1.2"
RECONNECT_DELAY_SECONDS: Final[float] = 2.0
MAX_RECONNECT_DELAY_SECONDS: Final[float] = 30.0


@dataclass(frozen=True)
class FabricMessage:
    """A message received from (or published to) a channel."""

    channel: str
    name: str
    data: Any
    timestamp: int = field(default_factory=now_ms)
    id: str | None = None


MessageCallback = Callable[[FabricMessage], Awaitable[None] | None]


class MessagingFabric(Protocol):
    """Pub/sub transport between the dashboard and players."""

    async def publish(self, channel: str, event_name: str, body: Any) -> None: ...

    async def subscribe(self, channel: str, event_name: str, callback: MessageCallback) -> None: ...

    async def close(self, channel: str) -> None: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...


async def _deliver(callback: MessageCallback, message: FabricMessage) -> None:
    try:
        result = callback(message)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.error(
            "Subscriber for %s/%s raised", message.channel, message.name, exc_info=True
        )


class InMemoryFabric:
    """Process-local fabric; subscribers run inline with the publisher."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, dict[str, list[MessageCallback]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self.published: list[FabricMessage] = []

    async def publish(self, channel: str, event_name: str, body: Any) -> None:
        message = FabricMessage(channel=channel, name=event_name, data=body)
        self.published.append(message)
        for callback in list(self._subscriptions.get(channel, {}).get(event_name, [])):
            await _deliver(callback, message)

    async def subscribe(self, channel: str, event_name: str, callback: MessageCallback) -> None:
        self._subscriptions[channel][event_name].append(callback)

    async def close(self, channel: str) -> None:
        self._subscriptions.pop(channel, None)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self._subscriptions.clear()

    def subscribed_channels(self) -> list[str]:
        return [channel for channel, events in self._subscriptions.items() if events]


def split_api_key(api_key: str) -> tuple[str, str]:
    """Split an Ably ``keyName:keySecret`` string."""
    name, sep, secret = api_key.partition(":")
    if not sep or not name or not secret:
        raise ConfigurationError("Messaging API key must have the form '<key name>:<key secret>'")
    return name, secret


def decode_sse_message(channel: str, raw: str) -> FabricMessage | None:
    """Decode the JSON payload of an Ably SSE ``data:`` line."""
    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring undecodable SSE payload on %s", channel)
        return None
    if not isinstance(envelope, dict) or "name" not in envelope:
        return None
    data = envelope.get("data")
    if envelope.get("encoding") == "json" and isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Ignoring message with invalid JSON data on %s", channel)
            return None
    return FabricMessage(
        channel=channel,
        name=str(envelope["name"]),
        data=data,
        timestamp=int(envelope.get("timestamp") or now_ms()),
        id=envelope.get("id"),
    )


class AblyFabric:
    """Fabric backed by Ably: REST for publishing, server-sent events for subscribing."""

    def __init__(
        self,
        api_key: str,
        *,
        rest_url: str = "https://rest.ably.io",
        realtime_url: str = "https://realtime.ably.io",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        key_name, key_secret = split_api_key(api_key)
        self._api_key = api_key
        self._rest_url = rest_url.rstrip("/")
        self._realtime_url = realtime_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            auth=httpx.BasicAuth(key_name, key_secret),
            timeout=httpx.Timeout(timeout_seconds, read=None),
        )
        self._handlers: dict[str, dict[str, list[MessageCallback]]] = {}
        self._streams: dict[str, asyncio.Task[None]] = {}

    async def publish(self, channel: str, event_name: str, body: Any) -> None:
        url = f"{self._rest_url}/channels/{quote(channel, safe='')}/messages"
        message = {"name": event_name, "data": json.dumps(body), "encoding": "json"}
        try:
            response = await self._client.post(url, json=message)
        except httpx.HTTPError as exc:
            raise TransportError(f"Publish to {channel} failed: {exc}") from exc
        if response.status_code >= HTTP_BAD_REQUEST:
            raise TransportError(
                f"Publish to {channel} rejected with HTTP {response.status_code}"
            )

    async def subscribe(self, channel: str, event_name: str, callback: MessageCallback) -> None:
        self._handlers.setdefault(channel, {}).setdefault(event_name, []).append(callback)
        stream = self._streams.get(channel)
        if stream is None or stream.done():
            self._streams[channel] = asyncio.create_task(
                self._consume(channel), name=f"fabric-sse:{channel}"
            )

    async def close(self, channel: str) -> None:
        self._handlers.pop(channel, None)
        stream = self._streams.pop(channel, None)
        if stream is not None:
            stream.cancel()
            await asyncio.gather(stream, return_exceptions=True)

    async def ping(self) -> bool:
        try:
            response = await self._client.get(f"{self._rest_url}/time")
        except httpx.HTTPError:
            return False
        return response.status_code < HTTP_BAD_REQUEST

    async def aclose(self) -> None:
        for channel in list(self._streams):
            await self.close(channel)
        await self._client.aclose()

    async def _consume(self, channel: str) -> None:
        delay = RECONNECT_DELAY_SECONDS
        params = {"channels": channel, "v": SSE_PROTOCOL_VERSION, "key": self._api_key}
        while channel in self._handlers:
            try:
                async with self._client.stream(
                    "GET", f"{self._realtime_url}/sse", params=params
                ) as response:
                    if response.status_code >= HTTP_BAD_REQUEST:
                        raise TransportError(f"SSE subscribe rejected with {response.status_code}")
                    delay = RECONNECT_DELAY_SECONDS
                    async for line in response.aiter_lines():
                        if line.startswith("data:"):
                            await self._dispatch(channel, line[5:].strip())
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, TransportError) as exc:
                logger.warning("Subscription to %s interrupted: %s", channel, exc)
            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_RECONNECT_DELAY_SECONDS)

    async def _dispatch(self, channel: str, raw: str) -> None:
        message = decode_sse_message(channel, raw)
        if message is None:
            return
        for callback in list(self._handlers.get(channel, {}).get(message.name, [])):
            await _deliver(callback, message)
