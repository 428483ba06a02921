"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .auth import LogoutResponse, RevokeRequest, RevokeResponse, SignRequest, SignResponse
from .command import CommandAccepted, CommandCreate, CommandResponse, UrlCommandRequest
from .notification import NotificationCreate, NotificationResult
from .system import CircuitStatus, RetryItemView, RetryQueueStatus

__all__ = [
    "SignRequest", "SignResponse",
    "RevokeRequest", "RevokeResponse", "LogoutResponse",
    "CommandCreate", "UrlCommandRequest", "CommandAccepted", "CommandResponse",
    "NotificationCreate", "NotificationResult",
    "CircuitStatus", "RetryItemView", "RetryQueueStatus",
]
