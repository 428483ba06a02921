"""Push notification schemas."""

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    """Notification to push to a player's devices."""

    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field("", max_length=2000)
    data: dict[str, str] = Field(default_factory=dict)
    tokens: list[str] | None = Field(
        None,
        description="Device tokens; defaults to the player id when omitted",
    )


class NotificationResult(BaseModel):
    success: bool
    queued: bool = False
    error: str | None = None
