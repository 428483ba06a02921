import asyncio
import json

import pytest

from player_dashboard.services.circuit_breaker import CircuitBreaker
from player_dashboard.services.retry_queue import (
    InMemoryRetryStorage,
    JsonFileRetryStorage,
    RetryItem,
    RetryQueue,
)
from tests.conftest import FakeClock, RecordingPushSender

NOTE = {"title": "New Command", "body": "Command type: reboot", "data": {"commandId": "1"}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return RecordingPushSender()


@pytest.fixture
def queue(clock, sender):
    return RetryQueue(InMemoryRetryStorage(), sender, clock=clock)


def _note(n):
    return {"title": f"n{n}", "body": "", "data": {}}


def test_enqueue_is_idempotent_within_dedupe_window(queue, clock):
    assert queue.enqueue(["P1"], NOTE) is True
    assert queue.enqueue(["P1"], NOTE) is False
    assert len(queue) == 1

    clock.advance(11)
    assert queue.enqueue(["P1"], NOTE) is True
    assert len(queue) == 2


def test_overflow_drops_oldest(clock, sender):
    queue = RetryQueue(InMemoryRetryStorage(), sender, max_items=3, clock=clock)
    for n in range(5):
        queue.enqueue(["P1"], _note(n))
    assert [item.notification["title"] for item in queue.items()] == ["n2", "n3", "n4"]


@pytest.mark.asyncio
async def test_drain_skips_items_inside_grace_period(queue, sender, clock):
    queue.enqueue(["P1"], NOTE)
    clock.advance(30)

    report = await queue.drain()
    assert report.skipped == 1
    assert report.delivered == 0
    assert sender.sent == []
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_drain_delivers_in_fifo_order(queue, sender, clock):
    for n in range(3):
        queue.enqueue(["P1"], _note(n))
    clock.advance(61)

    report = await queue.drain()
    assert report.delivered == 3
    assert report.remaining == 0
    assert [note["title"] for _, note in sender.sent] == ["n0", "n1", "n2"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_failed_delivery_is_kept_with_new_attempt_time(queue, sender, clock):
    queue.enqueue(["P1"], NOTE)
    clock.advance(61)
    sender.fail = True

    report = await queue.drain()
    assert report.failed == 1
    assert report.errors == ["push backend down"]
    (item,) = queue.items()
    assert item.last_attempt_at == clock.now

    # The next drain inside the grace period leaves it alone.
    clock.advance(10)
    sender.fail = False
    assert (await queue.drain()).skipped == 1

    clock.advance(60)
    assert (await queue.drain()).delivered == 1


@pytest.mark.asyncio
async def test_sender_exception_counts_as_failure(clock, mocker):
    sender = mocker.AsyncMock()
    sender.send.side_effect = ConnectionError("unreachable")
    queue = RetryQueue(InMemoryRetryStorage(), sender, clock=clock)
    queue.enqueue(["P1"], NOTE)
    clock.advance(61)

    report = await queue.drain()
    assert report.failed == 1
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_drain_drops_items_past_max_age(queue, sender, clock, caplog):
    queue.enqueue(["P1"], NOTE)
    clock.advance(86_401)

    report = await queue.drain()
    assert report.dropped == 1
    assert sender.sent == []
    assert len(queue) == 0
    assert "Dropping notification" in caplog.text


@pytest.mark.asyncio
async def test_drain_skips_everything_while_push_circuit_is_open(clock, sender):
    breaker = CircuitBreaker(clock)
    breaker.register("push", failure_threshold=1, reset_timeout=600)

    async def failing():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await breaker.exec("push", failing)

    queue = RetryQueue(InMemoryRetryStorage(), sender, breaker, clock=clock)
    queue.enqueue(["P1"], NOTE)
    clock.advance(61)

    report = await queue.drain()
    assert report.skipped == 1
    assert sender.sent == []


@pytest.mark.asyncio
async def test_items_enqueued_during_drain_are_preserved(clock):
    storage = InMemoryRetryStorage()

    class EnqueueingSender(RecordingPushSender):
        async def send(self, tokens, notification):
            queue.enqueue(["P2"], _note(99))
            return await super().send(tokens, notification)

    queue = RetryQueue(storage, EnqueueingSender(), clock=clock)
    queue.enqueue(["P1"], NOTE)
    clock.advance(61)

    report = await queue.drain()
    assert report.delivered == 1
    assert [item.recipients for item in queue.items()] == [["P2"]]


@pytest.mark.asyncio
async def test_cancelled_drain_keeps_undelivered_items(clock, tmp_path):
    started = asyncio.Event()

    class StallingSender(RecordingPushSender):
        async def send(self, tokens, notification):
            if self.sent:
                started.set()
                await asyncio.Event().wait()
            return await super().send(tokens, notification)

    storage = JsonFileRetryStorage(tmp_path / "retry.json")
    sender = StallingSender()
    queue = RetryQueue(storage, sender, clock=clock)
    for n in range(3):
        queue.enqueue(["P1"], _note(n))
    clock.advance(120)

    task = asyncio.create_task(queue.drain())
    await asyncio.wait_for(started.wait(), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert [note["title"] for _, note in sender.sent] == ["n0"]
    assert [item.notification["title"] for item in queue.items()] == ["n1", "n2"]


def test_json_file_storage_round_trip(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"other": 1}))
    storage = JsonFileRetryStorage(path)

    item = RetryItem(["P1"], dict(NOTE), 10.0, 12.0)
    storage.save([item])

    document = json.loads(path.read_text())
    assert document["other"] == 1
    assert document["failedNotifications"][0]["recipients"] == ["P1"]
    assert storage.load() == [item]


def test_json_file_storage_tolerates_missing_and_corrupt_files(tmp_path):
    path = tmp_path / "missing.json"
    storage = JsonFileRetryStorage(path)
    assert storage.load() == []

    path.write_text("{not json")
    assert storage.load() == []

    path.write_text(json.dumps({"failedNotifications": [{"recipients": ["P1"]}]}))
    assert storage.load() == []
