import asyncio

import pytest

from player_dashboard.core.errors import (
    CommandStateError,
    DuplicateCommandError,
    UnknownCommandError,
)
from player_dashboard.models.command import Command, CommandStatus, CommandType
from player_dashboard.services.registry import CommandRegistry


def _command(command_id="1-abc", player_id="P1"):
    return Command(id=command_id, player_id=player_id, type=CommandType.REBOOT, payload={})


@pytest.fixture
def registry():
    return CommandRegistry(grace_seconds=300)


def test_create_records_pending_snapshot(registry):
    created = registry.create(_command())
    assert created.status is CommandStatus.PENDING
    assert "1-abc" in registry
    assert len(registry) == 1


def test_get_returns_detached_copy(registry):
    registry.create(_command())
    snapshot = registry.get("1-abc")
    snapshot.payload["x"] = 1
    snapshot.status = CommandStatus.ACKED
    assert registry.get("1-abc").payload == {}
    assert registry.get("1-abc").status is CommandStatus.PENDING


def test_duplicate_id_is_rejected(registry):
    registry.create(_command())
    with pytest.raises(DuplicateCommandError):
        registry.create(_command())


def test_resolve_unknown_raises(registry):
    with pytest.raises(UnknownCommandError):
        registry.resolve("missing", CommandStatus.ACKED)
    assert registry.get("missing") is None


def test_resolve_to_pending_is_rejected(registry):
    registry.create(_command())
    with pytest.raises(CommandStateError):
        registry.resolve("1-abc", CommandStatus.PENDING)


def test_exactly_one_terminal_transition(registry):
    registry.create(_command())
    assert registry.resolve("1-abc", CommandStatus.ACKED) is True
    assert registry.resolve("1-abc", "acked") is False
    with pytest.raises(CommandStateError):
        registry.resolve("1-abc", CommandStatus.TIMEOUT, "late")

    command = registry.get("1-abc")
    assert command.status is CommandStatus.ACKED
    assert command.error is None
    assert command.resolved_at is not None


def test_waiters_fire_once(registry):
    registry.create(_command())
    seen = []
    registry.subscribe("1-abc", seen.append)

    registry.resolve("1-abc", CommandStatus.FAILED, "nope")
    registry.resolve("1-abc", CommandStatus.FAILED, "nope")

    assert len(seen) == 1
    assert seen[0].status is CommandStatus.FAILED
    assert seen[0].error == "nope"


def test_raising_waiter_does_not_block_others(registry, caplog):
    registry.create(_command())
    seen = []

    def broken(_command):
        raise RuntimeError("waiter bug")

    registry.subscribe("1-abc", broken)
    registry.subscribe("1-abc", seen.append)
    registry.resolve("1-abc", CommandStatus.ACKED)
    assert len(seen) == 1
    assert "waiter" in caplog.text


def test_retries_are_monotonic(registry):
    registry.create(_command())
    assert registry.increment_retries("1-abc") == 1
    assert registry.increment_retries("1-abc") == 2
    assert registry.get("1-abc").retries == 2


@pytest.mark.asyncio
async def test_subscribe_after_resolution_fires_on_next_iteration(registry):
    registry.create(_command())
    registry.resolve("1-abc", CommandStatus.ACKED)
    seen = []
    registry.subscribe("1-abc", seen.append)
    assert seen == []
    await asyncio.sleep(0)
    assert [c.status for c in seen] == [CommandStatus.ACKED]


@pytest.mark.asyncio
async def test_wait_returns_final_state(registry):
    registry.create(_command())
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, registry.resolve, "1-abc", CommandStatus.ACKED)

    command = await registry.wait("1-abc", timeout=1)
    assert command.status is CommandStatus.ACKED


@pytest.mark.asyncio
async def test_wait_times_out_without_resolving(registry):
    registry.create(_command())
    with pytest.raises(TimeoutError):
        await registry.wait("1-abc", timeout=0.01)
    assert registry.get("1-abc").status is CommandStatus.PENDING


@pytest.mark.asyncio
async def test_resolve_cancels_attached_timeout(registry):
    registry.create(_command())
    fired = []
    handle = asyncio.get_running_loop().call_later(0.02, fired.append, True)
    registry.attach_timeout("1-abc", handle)

    registry.resolve("1-abc", CommandStatus.ACKED)
    await asyncio.sleep(0.05)
    assert fired == []


@pytest.mark.asyncio
async def test_terminal_commands_are_evicted_after_grace():
    registry = CommandRegistry(grace_seconds=0.01)
    registry.create(_command())
    registry.resolve("1-abc", CommandStatus.ACKED)
    assert "1-abc" in registry

    await asyncio.sleep(0.05)
    assert "1-abc" not in registry
    assert len(registry) == 0

    # The id is forgotten together with the command.
    registry.create(_command())
    assert registry.get("1-abc").status is CommandStatus.PENDING


@pytest.mark.asyncio
async def test_close_cancels_timers(registry):
    registry.create(_command())
    fired = []
    registry.attach_timeout("1-abc", asyncio.get_running_loop().call_later(0.01, fired.append, 1))
    registry.close()
    await asyncio.sleep(0.03)
    assert fired == []
    assert len(registry) == 0
