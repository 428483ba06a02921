"""Authentication endpoints: request signing, logout and token revocation."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, HTTPException, status

from player_dashboard.api.v1.dependencies import (
    CurrentUserDep,
    ServicesDep,
    SignedRequestDep,
    SuperadminDep,
)
from player_dashboard.schemas.auth import (
    LogoutResponse,
    RevokeRequest,
    RevokeResponse,
    SignRequest,
    SignResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post(
    "/sign-request",
    summary="Sign a request envelope for the authenticated caller",
    response_model=SignResponse,
)
async def sign_request(
    body: SignRequest,
    user: CurrentUserDep,
    services: ServicesDep,
) -> SignResponse:
    """Return the MAC the caller must send with a protected request.

    The caller may only sign for itself, and only with a timestamp close to
    the server clock.
    """
    if body.subject != user.subject:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot sign requests for another user",
        )
    max_skew_ms = services.settings.sign_request_max_skew_seconds * 1000
    if abs(int(time.time() * 1000) - body.timestamp) > max_skew_ms:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid timestamp",
        )
    signature, timestamp = services.signer.sign(body.payload, body.subject, body.timestamp)
    return SignResponse(signature=signature, timestamp=timestamp)


@router.post(
    "/logout",
    summary="Revoke the presented access token",
    response_model=LogoutResponse,
)
async def logout(user: CurrentUserDep, services: ServicesDep) -> LogoutResponse:
    """Add the caller's token to the denylist until it expires."""
    revoked = await services.revocation.revoke(user.tid, user.expires_at)
    logger.info("User %s logged out", user.subject)
    return LogoutResponse(revoked=revoked)


@router.post(
    "/revoke",
    summary="Revoke any token by identifier",
    response_model=RevokeResponse,
    dependencies=[SignedRequestDep],
)
async def revoke_token(
    body: RevokeRequest,
    admin: SuperadminDep,
    services: ServicesDep,
) -> RevokeResponse:
    """Deny a token until its expiry; already-expired tokens are not stored."""
    revoked = await services.revocation.revoke(body.tid, body.exp)
    logger.info("Token %s revoked by %s (stored=%s)", body.tid, admin.subject, revoked)
    return RevokeResponse(tid=body.tid, revoked=revoked)
