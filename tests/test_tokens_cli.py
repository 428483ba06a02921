"""Tests for the operator token CLI."""

import time

import pytest

from player_dashboard.core.security import create_access_token, decode_access_token
from player_dashboard.scripts import tokens
from player_dashboard.services.kv_store import InMemoryKeyValueStore
from player_dashboard.services.revocation import RevocationStore


def test_mint_prints_decodable_token(capsys):
    assert tokens.main(["mint", "ops-1", "--role", "superadmin", "--expires-in", "120"]) == 0
    token = capsys.readouterr().out.strip()
    claims = decode_access_token(token)
    assert claims.subject == "ops-1"
    assert claims.role == "superadmin"
    assert claims.expires_at - claims.issued_at == 120


def test_mint_rejects_unknown_role():
    with pytest.raises(SystemExit):
        tokens.main(["mint", "ops-1", "--role", "root"])


@pytest.mark.asyncio
async def test_revoke_token_by_encoded_token():
    store = RevocationStore(InMemoryKeyValueStore())
    token = create_access_token("user-1", "user", tid="cli-tid")

    assert await tokens.revoke_token(store, token=token) is True
    assert await store.is_revoked("cli-tid") is True


@pytest.mark.asyncio
async def test_revoke_token_by_tid_and_exp():
    store = RevocationStore(InMemoryKeyValueStore())
    assert await tokens.revoke_token(store, tid="t", exp=int(time.time()) + 60) is True
    with pytest.raises(ValueError):
        await tokens.revoke_token(store, tid="t")


def test_revoke_and_purge_commands_use_configured_store(capsys):
    exp = int(time.time()) + 60
    assert tokens.main(["revoke", "--tid", "t1", "--exp", str(exp)]) == 0
    assert "revoked" in capsys.readouterr().out

    assert tokens.main(["purge"]) == 0
    assert "Cleared 0 expired tokens" in capsys.readouterr().out


def test_revoke_without_arguments_reports_error(capsys):
    assert tokens.main(["revoke"]) == 2
    assert "error:" in capsys.readouterr().err
