"""Message value type and the request/response shapes of the HTTP layer."""
from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

RECEIVED = "received"
SENT = "sent"

_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def fallback_id() -> str:
    """Identifier for messages the carrier did not tag with a MessageSid.

    Millisecond timestamp plus a process-wide counter, so two messages in the
    same tick still get distinct ids.
    """
    with _id_lock:
        seq = next(_id_counter)
    return f"{int(time.time() * 1000)}-{seq}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """One SMS as seen by the relay (inbound) or a client transcript (sent)."""
    id: str
    sender: str
    body: str
    received_at: datetime = field(default_factory=_utc_now)
    kind: str = RECEIVED

    @classmethod
    def inbound(cls, sender: str, body: str, external_id: Optional[str] = None) -> "Message":
        return cls(id=external_id or fallback_id(), sender=sender, body=body)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Parse the wire shape produced by :meth:`to_dict`.

        Accepts either ``sender`` or ``from`` and either ``timestamp`` or
        ``receivedAt``.
        """
        ts = data.get("timestamp") or data.get("receivedAt")
        received_at = datetime.fromisoformat(ts) if isinstance(ts, str) else _utc_now()
        return cls(
            id=str(data.get("id") or fallback_id()),
            sender=str(data.get("sender") or data.get("from") or ""),
            body=str(data.get("body") or ""),
            received_at=received_at,
            kind=str(data.get("kind") or data.get("type") or RECEIVED),
        )

    def to_dict(self) -> Dict[str, Any]:
        ts = self.received_at.isoformat()
        return {
            "id": self.id,
            "sender": self.sender,
            "from": self.sender,
            "body": self.body,
            "timestamp": ts,
            "kind": self.kind,
        }


# -----------------------------
# Outbound request/response
# -----------------------------
class SendRequest(BaseModel):
    # Optional so that missing fields map to our own 400, not a 422.
    to: Optional[str] = Field(default=None, description="Destination number, E.164.")
    body: Optional[str] = Field(default=None, description="Message text.")


class SendResponse(BaseModel):
    success: bool = True
    messageId: Optional[str] = None
    status: Optional[str] = None
    to: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")

    model_config = {"populate_by_name": True}
