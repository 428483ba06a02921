"""
Operator tooling for access tokens and the denylist.

Subcommands:
1. ``mint``: issue an access token for a user and role
2. ``revoke``: add a token identifier to the denylist until its expiry
3. ``purge``: remove denylist entries whose TTL has lapsed

``purge`` is what the hourly cleanup cron runs when the API process is not
hosting the maintenance worker.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from jose import JWTError

from player_dashboard.core.security import ROLES, create_access_token, decode_access_token
from player_dashboard.core.settings import Settings, settings
from player_dashboard.services.container import build_kv_store
from player_dashboard.services.revocation import RevocationStore

logger = logging.getLogger(__name__)


def mint_token(
    subject: str,
    role: str,
    *,
    company_id: str | None = None,
    expires_in_seconds: int | None = None,
    config: Settings | None = None,
) -> str:
    """Return a freshly signed access token."""
    return create_access_token(
        subject,
        role,
        company_id=company_id,
        expires_in_seconds=expires_in_seconds,
        config=config or settings,
    )


async def revoke_token(
    store: RevocationStore,
    *,
    token: str | None = None,
    tid: str | None = None,
    exp: int | None = None,
    config: Settings | None = None,
) -> bool:
    """Revoke either an encoded token or an explicit ``tid``/``exp`` pair."""
    if token is not None:
        claims = decode_access_token(token, config or settings)
        tid, exp = claims.tid, claims.expires_at
    if tid is None or exp is None:
        raise ValueError("Either a token or both tid and exp are required")
    return await store.revoke(tid, exp)


async def purge_denylist(store: RevocationStore) -> int:
    """Remove lapsed denylist entries."""
    return await store.purge_expired()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="player-dashboard-tokens", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    mint = sub.add_parser("mint", help="Issue an access token")
    mint.add_argument("subject")
    mint.add_argument("--role", choices=ROLES, default="user")
    mint.add_argument("--company-id")
    mint.add_argument("--expires-in", type=int, help="Lifetime in seconds")

    revoke = sub.add_parser("revoke", help="Revoke a token until it expires")
    revoke.add_argument("--token")
    revoke.add_argument("--tid")
    revoke.add_argument("--exp", type=int, help="Expiry in seconds since the epoch")

    sub.add_parser("purge", help="Remove lapsed denylist entries")
    return parser


async def _run_store_command(args: argparse.Namespace, config: Settings) -> int:
    kv_store = build_kv_store(config)
    store = RevocationStore(kv_store)
    try:
        if args.command == "revoke":
            revoked = await revoke_token(
                store, token=args.token, tid=args.tid, exp=args.exp, config=config
            )
            print("revoked" if revoked else "already expired; nothing stored")
        else:
            cleared = await purge_denylist(store)
            print(f"Cleared {cleared} expired tokens from denylist")
    finally:
        await kv_store.aclose()
    return 0


def main(argv: Sequence[str] | None = None, config: Settings | None = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)
    cfg = config or settings

    if args.command == "mint":
        print(
            mint_token(
                args.subject,
                args.role,
                company_id=args.company_id,
                expires_in_seconds=args.expires_in,
                config=cfg,
            )
        )
        return 0

    try:
        return asyncio.run(_run_store_command(args, cfg))
    except (JWTError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
