"""Shared API dependencies for authentication and request signing."""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from player_dashboard.core.security import TokenClaims, decode_access_token
from player_dashboard.services.container import ServiceContainer

logger = logging.getLogger(__name__)

# HTTP Bearer scheme; missing credentials are reported by get_current_user
bearer_scheme = HTTPBearer(auto_error=False)

SIGNATURE_HEADER = "signature"
TIMESTAMP_HEADER = "timestamp"
SIGNATURE_ERROR = "Invalid request signature"


def get_services(request: Request) -> ServiceContainer:
    """Return the service container built at application startup."""
    return request.app.state.services


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def authenticate_token(token: str, services: ServiceContainer) -> TokenClaims:
    """Decode ``token`` and reject it if it has been revoked.

    Raises:
        HTTPException: 401 if the token is invalid, expired or revoked.
    """
    try:
        claims = decode_access_token(token, services.settings)
    except JWTError as err:
        raise _unauthorized() from err
    if await services.revocation.is_revoked(claims.tid):
        raise _unauthorized("Token has been revoked")
    return claims


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    services: ServicesDep,
) -> TokenClaims:
    """Get the claims of the authenticated caller from the bearer token.

    Args:
        credentials: HTTP Bearer token credentials
        services: Service container

    Returns:
        Verified token claims

    Raises:
        HTTPException: If the token is missing, invalid or revoked
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return await authenticate_token(credentials.credentials, services)


# Type alias for current user dependency
CurrentUserDep = Annotated[TokenClaims, Depends(get_current_user)]


def require_roles(*roles: str) -> Callable[[TokenClaims], Awaitable[TokenClaims]]:
    """Build a dependency that only admits callers holding one of ``roles``."""

    async def dependency(user: CurrentUserDep) -> TokenClaims:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency


SuperadminDep = Annotated[TokenClaims, Depends(require_roles("superadmin"))]


async def get_signing_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    services: ServicesDep,
) -> TokenClaims:
    """Authenticate the caller of a signed endpoint.

    Missing, invalid and revoked tokens all fail with the signature error.
    """
    try:
        return await get_current_user(credentials, services)
    except HTTPException as err:
        raise _unauthorized(SIGNATURE_ERROR) from err


async def require_signed_request(
    request: Request,
    user: Annotated[TokenClaims, Depends(get_signing_user)],
    services: ServicesDep,
) -> None:
    """Verify the ``signature``/``timestamp`` headers against the request body.

    Every rejection, including a failed bearer check, produces the same 401.
    """
    if services.settings.signature_bypass_enabled:
        logger.warning("Signature verification bypassed for %s (development mode)", user.subject)
        return

    signature = request.headers.get(SIGNATURE_HEADER)
    raw_timestamp = request.headers.get(TIMESTAMP_HEADER)
    if not signature or not raw_timestamp:
        raise _unauthorized(SIGNATURE_ERROR)
    try:
        timestamp = int(raw_timestamp)
    except ValueError as err:
        raise _unauthorized(SIGNATURE_ERROR) from err

    body = await request.body()
    try:
        payload = json.loads(body) if body else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise _unauthorized(SIGNATURE_ERROR) from err

    if not services.signer.verify(payload, signature, timestamp, user.subject):
        raise _unauthorized(SIGNATURE_ERROR)


SignedRequestDep = Depends(require_signed_request)
