import pytest

from player_dashboard.services.signing import RequestSigner
from tests.conftest import FakeClock

SECRET = "signing-secret"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def signer(clock):
    return RequestSigner(SECRET, clock=clock)


def test_valid_signature_is_accepted_once(signer):
    payload = {"playerId": "P1", "url": "https://example.com"}
    mac, ts = signer.sign(payload, "U1")

    assert signer.verify(payload, mac, ts, "U1") is True
    assert signer.verify(payload, mac, ts, "U1") is False


def test_key_order_does_not_matter(signer):
    mac, ts = signer.sign({"a": 1, "b": {"y": 2, "x": 1}}, "U1")
    assert signer.verify({"b": {"x": 1, "y": 2}, "a": 1}, mac, ts, "U1")


def test_tampered_payload_is_rejected(signer):
    mac, ts = signer.sign({"url": "https://a"}, "U1")
    assert signer.verify({"url": "https://b"}, mac, ts, "U1") is False


def test_other_subject_is_rejected(signer):
    mac, ts = signer.sign({}, "U1")
    assert signer.verify({}, mac, ts, "U2") is False


def test_rejected_mac_is_not_recorded(signer):
    mac, ts = signer.sign({}, "U1")
    assert signer.verify({"x": 1}, mac, ts, "U1") is False
    assert len(signer) == 0
    assert signer.verify({}, mac, ts, "U1") is True


def test_window_boundary(signer, clock):
    now_ms = int(clock.now * 1000)
    mac_edge, ts_edge = signer.sign({}, "U1", timestamp=now_ms - 300_000)
    mac_over, ts_over = signer.sign({}, "U1", timestamp=now_ms - 300_001)

    assert signer.verify({}, mac_edge, ts_edge, "U1") is True
    assert signer.verify({}, mac_over, ts_over, "U1") is False


def test_future_timestamp_outside_window_is_rejected(signer, clock):
    mac, ts = signer.sign({}, "U1", timestamp=int(clock.now * 1000) + 300_001)
    assert signer.verify({}, mac, ts, "U1") is False


def test_seen_cache_is_swept_after_window(signer, clock):
    mac, ts = signer.sign({}, "U1")
    assert signer.verify({}, mac, ts, "U1")
    assert len(signer) == 1

    clock.advance(301)
    other_mac, other_ts = signer.sign({"n": 2}, "U1")
    assert signer.verify({"n": 2}, other_mac, other_ts, "U1")
    assert len(signer) == 1
    # The original envelope is now outside the window, so it stays rejected.
    assert signer.verify({}, mac, ts, "U1") is False


def test_different_secret_produces_different_mac(clock):
    a = RequestSigner("one", clock=clock)
    b = RequestSigner("two", clock=clock)
    mac, ts = a.sign({}, "U1")
    assert b.verify({}, mac, ts, "U1") is False
    assert a.window_seconds == 300
