"""Application settings and configuration.

This module defines all configuration options for the player dashboard
command service. Settings are loaded from environment variables with
sensible defaults; required credentials are validated when the service
container is built.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or an ``.env`` file.
    """

    # Application metadata
    app_name: str = Field(default="Player Dashboard", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    environment: str = Field(default="production", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Security and authentication
    jwt_secret: str = Field(alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_issuer: str = Field(default="player-dashboard", alias="JWT_ISSUER")
    jwt_audience: str = Field(default="player-dashboard-api", alias="JWT_AUDIENCE")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    skip_signature_verification: bool = Field(
        default=False,
        alias="SKIP_SIGNATURE_VERIFICATION",
    )
    signature_window_seconds: int = Field(default=300, alias="SIGNATURE_WINDOW_SECONDS")
    sign_request_max_skew_seconds: int = Field(
        default=30,
        alias="SIGN_REQUEST_MAX_SKEW_SECONDS",
    )

    # Messaging fabric (pub/sub between dashboard and players)
    messaging_provider: Literal["ably", "memory"] = Field(
        default="ably",
        alias="MESSAGING_PROVIDER",
    )
    messaging_api_key: str | None = Field(default=None, alias="MESSAGING_API_KEY")
    messaging_rest_url: str = Field(default="https://rest.ably.io", alias="MESSAGING_REST_URL")
    messaging_realtime_url: str = Field(
        default="https://realtime.ably.io",
        alias="MESSAGING_REALTIME_URL",
    )
    messaging_http_timeout_seconds: float = Field(
        default=10.0,
        alias="MESSAGING_HTTP_TIMEOUT_SECONDS",
    )
    messaging_failure_threshold: int = Field(default=3, alias="MESSAGING_FAILURE_THRESHOLD")
    messaging_reset_timeout_seconds: float = Field(
        default=60.0,
        alias="MESSAGING_RESET_TIMEOUT_SECONDS",
    )

    # Push notifications (FCM HTTP v1)
    push_vapid_key: str | None = Field(default=None, alias="PUSH_VAPID_KEY")
    push_project_id: str | None = Field(default=None, alias="PUSH_PROJECT_ID")
    push_service_account_json: str | None = Field(
        default=None,
        alias="PUSH_SERVICE_ACCOUNT_JSON",
    )
    push_http_timeout_seconds: float = Field(default=10.0, alias="PUSH_HTTP_TIMEOUT_SECONDS")
    push_failure_threshold: int = Field(default=3, alias="PUSH_FAILURE_THRESHOLD")
    push_reset_timeout_seconds: float = Field(default=60.0, alias="PUSH_RESET_TIMEOUT_SECONDS")

    # Revocation store (Redis-compatible key/value service with TTLs)
    revocation_backend: Literal["redis", "memory"] = Field(
        default="redis",
        alias="REVOCATION_BACKEND",
    )
    revocation_url: str | None = Field(default=None, alias="REVOCATION_URL")
    revocation_host: str = Field(default="localhost", alias="REVOCATION_HOST")
    revocation_port: int = Field(default=6379, alias="REVOCATION_PORT")
    revocation_password: str | None = Field(default=None, alias="REVOCATION_PASSWORD")
    revocation_tls: bool = Field(default=False, alias="REVOCATION_TLS")

    # Command dispatch
    command_timeout_seconds: float = Field(default=30.0, alias="COMMAND_TIMEOUT_SECONDS")
    command_grace_seconds: float = Field(default=300.0, alias="COMMAND_GRACE_SECONDS")

    # Retry queue for failed notifications
    retry_drain_interval_seconds: float = Field(
        default=300.0,
        alias="RETRY_DRAIN_INTERVAL_SECONDS",
    )
    retry_max_age_seconds: float = Field(default=86_400.0, alias="RETRY_MAX_AGE_SECONDS")
    retry_grace_seconds: float = Field(default=60.0, alias="RETRY_GRACE_SECONDS")
    retry_max_items: int = Field(default=10_000, alias="RETRY_MAX_ITEMS")
    retry_storage_path: str | None = Field(default=None, alias="RETRY_STORAGE_PATH")

    # Maintenance
    denylist_purge_interval_seconds: float = Field(
        default=3_600.0,
        alias="DENYLIST_PURGE_INTERVAL_SECONDS",
    )
    health_check_interval_seconds: float = Field(
        default=10.0,
        alias="HEALTH_CHECK_INTERVAL_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def revocation_redis_url(self) -> str:
        """Return the Redis URL for the revocation store.

        An explicit ``REVOCATION_URL`` wins; otherwise the URL is assembled
        from host, port, password and the TLS flag.
        """
        if self.revocation_url:
            return self.revocation_url
        scheme = "rediss" if self.revocation_tls else "redis"
        auth = f":{self.revocation_password}@" if self.revocation_password else ""
        return f"{scheme}://{auth}{self.revocation_host}:{self.revocation_port}/0"

    @property
    def signature_bypass_enabled(self) -> bool:
        """Return True when signed-request checks are disabled for local testing."""
        return self.environment == "development" and self.skip_signature_verification


settings = Settings()  # type: ignore[call-arg]
