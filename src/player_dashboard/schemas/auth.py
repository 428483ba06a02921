"""Authentication and request-signing schemas."""

from typing import Any

from pydantic import BaseModel, Field


class SignRequest(BaseModel):
    """Envelope the caller wants signed before sending a protected request."""

    payload: Any = Field(default_factory=dict, description="JSON body of the request to sign")
    timestamp: int = Field(..., description="Client time in milliseconds since the epoch")
    subject: str = Field(..., min_length=1, description="Id of the authenticated caller")


class SignResponse(BaseModel):
    """Signature to present in the ``signature`` and ``timestamp`` headers."""

    signature: str
    timestamp: int


class RevokeRequest(BaseModel):
    """Revoke a token by identifier until its natural expiry."""

    tid: str = Field(..., min_length=1, description="Token identifier (the JWT ``jti``)")
    exp: int = Field(..., description="Token expiry in seconds since the epoch")


class RevokeResponse(BaseModel):
    tid: str
    revoked: bool


class LogoutResponse(BaseModel):
    status: str = "logged_out"
    revoked: bool
