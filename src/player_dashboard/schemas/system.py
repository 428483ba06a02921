"""Operational status schemas."""

from pydantic import BaseModel


class CircuitStatus(BaseModel):
    """Snapshot of one circuit."""

    name: str
    state: str
    failure_count: int
    failure_threshold: int
    reset_timeout: float
    opened_at: float | None = None
    last_failure: float | None = None
    last_success: float | None = None


class RetryItemView(BaseModel):
    recipients: list[str]
    title: str | None = None
    first_enqueued_at: float
    last_attempt_at: float


class RetryQueueStatus(BaseModel):
    size: int
    items: list[RetryItemView]
