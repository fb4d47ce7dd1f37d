"""Browser-side half of the relay: transcript, HTTP client and poll loop.

The relay offers no push channel, so a consumer calls ``GET
/api/receive-sms?poll=true`` on a fixed cadence and appends whatever comes
back to its local transcript. Messages it sends are recorded locally as
``sent`` entries; they never pass through the relay buffer.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .models import SENT, Message, fallback_id
from .outbound import normalize_number

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 2.0
DEFAULT_BASE_URL = "http://127.0.0.1:8000"


class Transcript:
    """Ordered list of sent and received messages held by one client view."""

    def __init__(self) -> None:
        self._entries: List[Message] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def extend_received(self, messages: Iterable[Message]) -> None:
        with self._lock:
            self._entries.extend(messages)

    def add_sent(self, body: str, sender: str = "You") -> Message:
        msg = Message(id=fallback_id(), sender=sender, body=body, kind=SENT)
        with self._lock:
            self._entries.append(msg)
        return msg

    def snapshot(self) -> List[Message]:
        with self._lock:
            return list(self._entries)


class RelayClient:
    """Small synchronous client for the relay's HTTP surface."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 10.0,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self._http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **kwargs: Any) -> "RelayClient":
        poll = cfg.get("poll", {}) or {}
        return cls(str(poll.get("base_url") or DEFAULT_BASE_URL), **kwargs)

    def close(self) -> None:
        self._http.close()

    def poll(self) -> List[Message]:
        """One drain request.

        Raises httpx errors on transport or HTTP failure and ValueError when
        the body is not a JSON array of message objects.
        """
        resp = self._http.get("/api/receive-sms", params={"poll": "true"})
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, list) or not all(isinstance(i, dict) for i in payload):
            raise ValueError(f"Unexpected drain payload: {str(payload)[:200]}")
        return [Message.from_dict(item) for item in payload]

    def send(self, to: str, body: str, transcript: Optional[Transcript] = None) -> Dict[str, Any]:
        """Dispatch an SMS through the relay's outbound endpoint.

        Field presence and E.164 format are checked before any request is
        made. Returns the JSON body; the caller decides what to do with a
        non-2xx answer (it is returned, not raised). When ``transcript`` is
        given, an accepted message is recorded in it as a ``sent`` entry.
        """
        if not (to or "").strip():
            raise ValueError("Please enter a phone number")
        if not (body or "").strip():
            raise ValueError("Please enter a message")
        to = normalize_number(to)
        resp = self._http.post("/api/send-sms", json={"to": to, "body": body})
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {"error": resp.text}
        data.setdefault("ok", resp.is_success)
        if resp.is_success and transcript is not None:
            transcript.add_sent(body)
        return data


class PollLoop:
    """Periodically drains the relay into a transcript.

    A failed tick is skipped without retry, backoff or user-visible error; the
    next tick simply tries again. After :meth:`cancel` returns no tick runs and
    nothing more is merged into the transcript.
    """

    def __init__(
        self,
        client: RelayClient,
        transcript: Transcript,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.client = client
        self.transcript = transcript
        self.interval = float(interval)
        self._stop = threading.Event()
        # held for the whole of a tick so cancel() can wait one out
        self._tick_lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, client: RelayClient, transcript: Transcript, cfg: Dict[str, Any]) -> "PollLoop":
        poll = cfg.get("poll", {}) or {}
        return cls(client, transcript, float(poll.get("interval_seconds") or DEFAULT_INTERVAL))

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> int:
        """Run one poll; return how many messages were merged."""
        with self._tick_lock:
            if self._stop.is_set():
                return 0
            try:
                messages = self.client.poll()
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("Poll tick skipped: %s", e)
                return 0
            if messages:
                self.transcript.extend_received(messages)
            return len(messages)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()

    def start(self) -> "PollLoop":
        if self.running:
            return self
        if self._stop.is_set():
            raise RuntimeError("PollLoop cannot be restarted after cancel()")
        self._thread = threading.Thread(target=self._run, name="sms-relay-poll", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop.set()
        # wait out a tick that is mid-flight
        with self._tick_lock:
            pass
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def __enter__(self) -> "PollLoop":
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.cancel()
