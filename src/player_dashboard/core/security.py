"""Token and MAC primitives built on python-jose and HMAC-SHA256."""
from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Final

from jose import JWTError, jwt

from player_dashboard.core.settings import Settings, settings

ROLES: Final[tuple[str, ...]] = ("superadmin", "companyadmin", "user")


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a dashboard access token."""

    tid: str
    subject: str
    role: str
    issued_at: int
    expires_at: int
    company_id: str | None = None


def canonical_json(value: Any) -> str:
    """Serialize ``value`` with recursively sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_mac(secret: str, message: str) -> str:
    """Return the hex HMAC-SHA256 of ``message`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def macs_equal(expected: str, provided: str) -> bool:
    """Compare two MACs in constant time."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def create_access_token(
    subject: str,
    role: str,
    *,
    company_id: str | None = None,
    expires_in_seconds: int | None = None,
    tid: str | None = None,
    config: Settings | None = None,
) -> str:
    """Create a signed access token for an operator.

    Args:
        subject: User identifier placed in ``sub``.
        role: One of ``ROLES``.
        company_id: Optional tenant the user belongs to.
        expires_in_seconds: Lifetime override; defaults to the configured minutes.
        tid: Token identifier override; a random one is generated otherwise.
        config: Settings override, mainly for tests.

    Returns:
        Encoded JWT string.

    Raises:
        ValueError: If ``role`` is not a known role.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    cfg = config or settings
    now = int(time.time())
    lifetime = (
        expires_in_seconds
        if expires_in_seconds is not None
        else cfg.access_token_expire_minutes * 60
    )
    claims: dict[str, Any] = {
        "jti": tid or secrets.token_hex(16),
        "sub": subject,
        "role": role,
        "iat": now,
        "exp": now + lifetime,
        "iss": cfg.jwt_issuer,
        "aud": cfg.jwt_audience,
    }
    if company_id is not None:
        claims["company_id"] = company_id
    return jwt.encode(claims, cfg.jwt_secret, algorithm=cfg.jwt_algorithm)


def decode_access_token(token: str, config: Settings | None = None) -> TokenClaims:
    """Verify ``token`` and return its claims.

    Raises:
        JWTError: If the signature, expiry, issuer or audience is invalid, or a
            required claim is missing.
    """
    cfg = config or settings
    payload = jwt.decode(
        token,
        cfg.jwt_secret,
        algorithms=[cfg.jwt_algorithm],
        audience=cfg.jwt_audience,
        issuer=cfg.jwt_issuer,
    )
    try:
        claims = TokenClaims(
            tid=str(payload["jti"]),
            subject=str(payload["sub"]),
            role=str(payload["role"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            company_id=payload.get("company_id"),
        )
    except (KeyError, TypeError, ValueError) as err:
        raise JWTError("Invalid token format") from err
    if claims.role not in ROLES:
        raise JWTError("Invalid token role")
    return claims
