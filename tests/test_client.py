from __future__ import annotations

import threading
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from sms_relay.client import PollLoop, RelayClient, Transcript
from sms_relay.errors import InvalidPhoneNumber
from sms_relay.server import create_app


def _mock_client(handler) -> RelayClient:
    http = httpx.Client(base_url="http://relay", transport=httpx.MockTransport(handler))
    return RelayClient(http=http)


def _payload(*ids: str) -> list[dict]:
    return [
        {"id": i, "sender": "+15551234567", "from": "+15551234567", "body": f"body {i}",
         "timestamp": "2026-01-01T00:00:00+00:00", "kind": "received"}
        for i in ids
    ]


def test_tick_merges_in_order():
    batches = [_payload("a", "b"), [], _payload("c")]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["poll"] == "true"
        return httpx.Response(200, json=batches.pop(0))

    transcript = Transcript()
    loop = PollLoop(_mock_client(handler), transcript)
    assert loop.tick() == 2
    assert loop.tick() == 0
    assert loop.tick() == 1
    assert [m.id for m in transcript.snapshot()] == ["a", "b", "c"]


def test_transport_failure_skips_tick():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("relay down", request=request)
        if calls["n"] == 2:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json=_payload("late"))

    transcript = Transcript()
    loop = PollLoop(_mock_client(handler), transcript)
    assert loop.tick() == 0
    assert loop.tick() == 0
    assert len(transcript) == 0
    assert loop.tick() == 1
    assert [m.id for m in transcript.snapshot()] == ["late"]


def test_no_tick_after_cancel():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json=[])

    loop = PollLoop(_mock_client(handler), Transcript(), interval=0.01)
    loop.start()
    time.sleep(0.1)
    loop.cancel()
    assert not loop.running
    seen = calls["n"]
    assert seen >= 1
    time.sleep(0.05)
    assert calls["n"] == seen
    assert loop.tick() == 0
    assert calls["n"] == seen


def test_cancel_waits_for_inflight_tick():
    entered = threading.Event()
    release = threading.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        entered.set()
        release.wait(2)
        return httpx.Response(200, json=_payload("x"))

    transcript = Transcript()
    loop = PollLoop(_mock_client(handler), transcript, interval=0.01).start()
    assert entered.wait(2)

    canceller = threading.Thread(target=loop.cancel)
    canceller.start()
    time.sleep(0.05)
    assert canceller.is_alive()  # still blocked on the running tick
    release.set()
    canceller.join(2)
    assert not canceller.is_alive()
    assert not loop.running
    assert [m.id for m in transcript.snapshot()] == ["x"]


def test_context_manager_and_no_restart():
    loop = PollLoop(_mock_client(lambda r: httpx.Response(200, json=[])), Transcript(), interval=0.01)
    with loop:
        assert loop.running
    assert not loop.running
    with pytest.raises(RuntimeError):
        loop.start()


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PollLoop(_mock_client(lambda r: httpx.Response(200, json=[])), Transcript(), interval=0)


def test_transcript_sent_entries_are_local():
    transcript = Transcript()
    sent = transcript.add_sent("hello there")
    assert sent.kind == "sent"
    assert sent.sender == "You"
    assert transcript.snapshot() == [sent]


def test_send_validates_locally():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be hit
        raise AssertionError("request should not be sent")

    client = _mock_client(handler)
    with pytest.raises(ValueError):
        client.send("", "hi")
    with pytest.raises(ValueError):
        client.send("+15551234567", "   ")
    with pytest.raises(InvalidPhoneNumber):
        client.send("12ab", "hi")


def test_end_to_end_against_app(missing_config: str):
    """Inbound callback -> buffer -> poll loop tick -> transcript."""
    http = TestClient(create_app(missing_config))
    client = RelayClient(http=http)
    transcript = Transcript()
    loop = PollLoop(client, transcript)

    http.post("/api/receive-sms", data={"From": "+15551234567", "Body": "hello", "MessageSid": "SM1"})
    http.post("/api/receive-sms", data={"From": "+15557654321", "Body": "again", "MessageSid": "SM2"})

    assert loop.tick() == 2
    assert loop.tick() == 0
    entries = transcript.snapshot()
    assert [(m.id, m.sender, m.body) for m in entries] == [
        ("SM1", "+15551234567", "hello"),
        ("SM2", "+15557654321", "again"),
    ]
    assert all(m.kind == "received" for m in entries)


def test_malformed_drain_payload_skips_tick_and_loop_survives():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(200, json={"error": "oops"})
        if calls["n"] == 2:
            return httpx.Response(200, json=["not an object"])
        return httpx.Response(200, json=_payload("ok"))

    transcript = Transcript()
    loop = PollLoop(_mock_client(handler), transcript, interval=0.01).start()
    deadline = time.monotonic() + 2
    while len(transcript) == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert loop.running
    loop.cancel()
    assert calls["n"] >= 3
    assert [m.id for m in transcript.snapshot()][:1] == ["ok"]


def test_poll_rejects_non_list_payload():
    client = _mock_client(lambda r: httpx.Response(200, json={"error": "oops"}))
    with pytest.raises(ValueError):
        client.poll()


def test_send_records_sent_entry_on_success():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "messageId": "SMout1"})

    transcript = Transcript()
    data = _mock_client(handler).send("+1 555 123 4567", "hi there", transcript)
    assert data["ok"] is True
    entries = transcript.snapshot()
    assert [(m.kind, m.sender, m.body) for m in entries] == [("sent", "You", "hi there")]


def test_send_error_response_records_nothing():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "Carrier error: bad number", "code": 21211})

    transcript = Transcript()
    data = _mock_client(handler).send("+15551234567", "hi", transcript)
    assert data["ok"] is False
    assert data["code"] == 21211
    assert len(transcript) == 0


def test_send_non_json_error_body_is_returned():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    transcript = Transcript()
    data = _mock_client(handler).send("+15551234567", "hi", transcript)
    assert data == {"error": "<html>Bad Gateway</html>", "ok": False}
    assert len(transcript) == 0


def test_client_and_loop_from_config(missing_config: str, monkeypatch: pytest.MonkeyPatch):
    from sms_relay.config import load_config

    monkeypatch.setenv("SMS_RELAY__POLL__BASE_URL", "http://relay.example:9000/")
    monkeypatch.setenv("SMS_RELAY__POLL__INTERVAL_SECONDS", "0.5")
    cfg = load_config(missing_config)

    client = RelayClient.from_config(cfg)
    try:
        assert str(client._http.base_url).rstrip("/") == "http://relay.example:9000"
    finally:
        client.close()
    loop = PollLoop.from_config(client, Transcript(), cfg)
    assert loop.interval == 0.5


def test_from_config_defaults():
    client = RelayClient.from_config({})
    try:
        assert str(client._http.base_url).rstrip("/") == "http://127.0.0.1:8000"
    finally:
        client.close()
    assert PollLoop.from_config(client, Transcript(), {}).interval == 2.0
