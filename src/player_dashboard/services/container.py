"""Explicit construction of the service graph from ``Settings``.

The FastAPI app builds one ``ServiceContainer`` at startup and stores it on
``app.state.services``; request handlers reach services through it instead
of module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from player_dashboard.core.errors import ConfigurationError
from player_dashboard.core.settings import Settings
from player_dashboard.services.ack_listener import AckCallback, AckListener
from player_dashboard.services.circuit_breaker import CircuitBreaker
from player_dashboard.services.dispatcher import Dispatcher
from player_dashboard.services.fabric import AblyFabric, InMemoryFabric, MessagingFabric
from player_dashboard.services.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)
from player_dashboard.services.maintenance import MaintenanceWorker
from player_dashboard.services.notifications import PUSH_SERVICE, NotificationService
from player_dashboard.services.push import (
    FcmPushSender,
    NullPushSender,
    PushSender,
    load_service_account_info,
)
from player_dashboard.services.registry import CommandRegistry
from player_dashboard.services.retry_queue import (
    InMemoryRetryStorage,
    JsonFileRetryStorage,
    RetryQueue,
    RetryStorage,
)
from player_dashboard.services.revocation import RevocationStore
from player_dashboard.services.signing import RequestSigner

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived service of the application."""

    settings: Settings
    breaker: CircuitBreaker
    registry: CommandRegistry
    fabric: MessagingFabric
    kv_store: KeyValueStore
    revocation: RevocationStore
    signer: RequestSigner
    push_sender: PushSender
    retry_queue: RetryQueue
    notifications: NotificationService
    dispatcher: Dispatcher
    ack_listener: AckListener
    maintenance: MaintenanceWorker

    async def start(self, *, background: bool = True) -> None:
        """Subscribe to acknowledgments and, optionally, start maintenance loops."""
        await self.ack_listener.start()
        if background:
            await self.maintenance.start()
        logger.info(
            "Services started (messaging=%s, revocation=%s)",
            self.settings.messaging_provider,
            self.settings.revocation_backend,
        )

    async def aclose(self) -> None:
        """Stop background work and release network clients."""
        await self.maintenance.stop()
        await self.ack_listener.stop()
        await self.dispatcher.close()
        self.registry.close()
        await self.fabric.aclose()
        await self.push_sender.aclose()
        await self.kv_store.aclose()
        logger.info("Services stopped")


def build_kv_store(config: Settings) -> KeyValueStore:
    if config.revocation_backend == "memory":
        return InMemoryKeyValueStore()
    return RedisKeyValueStore.from_url(config.revocation_redis_url)


def build_fabric(config: Settings) -> MessagingFabric:
    if config.messaging_provider == "memory":
        return InMemoryFabric()
    if not config.messaging_api_key:
        raise ConfigurationError("MESSAGING_API_KEY is required when MESSAGING_PROVIDER=ably")
    return AblyFabric(
        config.messaging_api_key,
        rest_url=config.messaging_rest_url,
        realtime_url=config.messaging_realtime_url,
        timeout_seconds=config.messaging_http_timeout_seconds,
    )


def build_push_sender(config: Settings) -> PushSender:
    if not config.push_service_account_json:
        logger.warning("PUSH_SERVICE_ACCOUNT_JSON not set; push notifications are disabled")
        return NullPushSender()
    return FcmPushSender(
        load_service_account_info(config.push_service_account_json),
        project_id=config.push_project_id,
        timeout_seconds=config.push_http_timeout_seconds,
    )


def build_retry_storage(config: Settings) -> RetryStorage:
    if config.retry_storage_path:
        return JsonFileRetryStorage(config.retry_storage_path)
    return InMemoryRetryStorage()


def build_container(
    config: Settings,
    *,
    fabric: MessagingFabric | None = None,
    kv_store: KeyValueStore | None = None,
    push_sender: PushSender | None = None,
    retry_storage: RetryStorage | None = None,
    on_ack: AckCallback | None = None,
) -> ServiceContainer:
    """Wire the service graph; explicit arguments override the configured adapters.

    ``on_ack`` is called with every acknowledgment that resolves a command.

    Raises:
        ConfigurationError: A required credential for the selected adapter is missing.
    """
    if not config.jwt_secret:
        raise ConfigurationError("JWT_SECRET must be set")

    breaker = CircuitBreaker()
    registry = CommandRegistry(grace_seconds=config.command_grace_seconds)
    fabric = fabric if fabric is not None else build_fabric(config)
    kv_store = kv_store if kv_store is not None else build_kv_store(config)
    push_sender = push_sender if push_sender is not None else build_push_sender(config)

    retry_queue = RetryQueue(
        retry_storage if retry_storage is not None else build_retry_storage(config),
        push_sender,
        breaker,
        service_name=PUSH_SERVICE,
        max_age_seconds=config.retry_max_age_seconds,
        grace_seconds=config.retry_grace_seconds,
        max_items=config.retry_max_items,
    )
    notifications = NotificationService(
        push_sender,
        breaker,
        retry_queue,
        failure_threshold=config.push_failure_threshold,
        reset_timeout=config.push_reset_timeout_seconds,
    )
    dispatcher = Dispatcher(
        fabric,
        registry,
        breaker,
        retry_queue,
        timeout_seconds=config.command_timeout_seconds,
        failure_threshold=config.messaging_failure_threshold,
        reset_timeout=config.messaging_reset_timeout_seconds,
    )
    revocation = RevocationStore(kv_store)
    return ServiceContainer(
        settings=config,
        breaker=breaker,
        registry=registry,
        fabric=fabric,
        kv_store=kv_store,
        revocation=revocation,
        signer=RequestSigner(config.jwt_secret, window_seconds=config.signature_window_seconds),
        push_sender=push_sender,
        retry_queue=retry_queue,
        notifications=notifications,
        dispatcher=dispatcher,
        ack_listener=AckListener(fabric, registry, on_ack, dispatcher=dispatcher),
        maintenance=MaintenanceWorker(
            retry_queue=retry_queue,
            revocation=revocation,
            breaker=breaker,
            drain_interval=config.retry_drain_interval_seconds,
            purge_interval=config.denylist_purge_interval_seconds,
            health_interval=config.health_check_interval_seconds,
        ),
    )
