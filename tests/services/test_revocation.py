import pytest

from player_dashboard.services.kv_store import InMemoryKeyValueStore
from player_dashboard.services.revocation import RevocationStore
from tests.conftest import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return RevocationStore(InMemoryKeyValueStore(clock), clock)


@pytest.mark.asyncio
async def test_revoked_token_is_denied_until_expiry(store, clock):
    assert await store.revoke("T1", clock.now + 2) is True
    assert await store.is_revoked("T1") is True

    clock.advance(2)
    assert await store.is_revoked("T1") is False


@pytest.mark.asyncio
async def test_unknown_token_is_not_revoked(store):
    assert await store.is_revoked("never-seen") is False


@pytest.mark.asyncio
async def test_revoke_is_idempotent(store, clock):
    assert await store.revoke("T1", clock.now + 60)
    assert await store.revoke("T1", clock.now + 60)
    assert await store.is_revoked("T1")


@pytest.mark.asyncio
async def test_revoking_expired_token_is_a_no_op(store, clock):
    assert await store.revoke("T1", clock.now) is False
    assert await store.revoke("T2", clock.now - 100) is False
    assert await store.is_revoked("T1") is False


@pytest.mark.asyncio
async def test_sub_second_remaining_lifetime_is_still_denied(store, clock):
    assert await store.revoke("T1", clock.now + 0.9) is True
    assert await store.is_revoked("T1") is True

    clock.advance(0.9)
    assert await store.is_revoked("T1") is False


@pytest.mark.asyncio
async def test_entry_lives_until_token_expiry_with_fractional_clock():
    clock = FakeClock(1000.5)
    store = RevocationStore(InMemoryKeyValueStore(clock), clock)
    assert await store.revoke("K", 1600) is True

    clock.now = 1599.6
    assert await store.is_revoked("K") is True

    clock.now = 1600
    assert await store.is_revoked("K") is False


@pytest.mark.asyncio
async def test_entries_use_denylist_prefix(clock):
    kv = InMemoryKeyValueStore(clock)
    store = RevocationStore(kv, clock)
    await store.revoke("abc", clock.now + 30)
    assert await kv.get("denylist:abc") == "1"
    assert await kv.ttl("denylist:abc") == 30


@pytest.mark.asyncio
async def test_lookup_fails_open_when_store_is_down(mocker, caplog):
    kv = mocker.AsyncMock()
    kv.get.side_effect = ConnectionError("redis down")
    store = RevocationStore(kv)

    assert await store.is_revoked("T1") is False
    assert "Revocation store unavailable" in caplog.text


@pytest.mark.asyncio
async def test_purge_removes_keys_without_positive_ttl(mocker):
    kv = mocker.AsyncMock()
    kv.keys.return_value = ["denylist:a", "denylist:b", "denylist:c"]
    kv.ttl.side_effect = [-2, 0, 120]
    kv.delete.return_value = 1
    store = RevocationStore(kv)

    assert await store.purge_expired() == 2
    kv.keys.assert_awaited_once_with("denylist:*")
    assert [call.args[0] for call in kv.delete.await_args_list] == ["denylist:a", "denylist:b"]
