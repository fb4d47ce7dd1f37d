"""Bounded, lock-guarded FIFO holding inbound messages until a client drains them."""
from __future__ import annotations

import logging
import threading
from typing import List

from .models import Message

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class RelayBuffer:
    """Process-wide holding area for undelivered inbound messages.

    Only two operations touch the contents:

        append(msg)   -> None            producer side; evicts the oldest on overflow
        drain_all()   -> List[Message]   consumer side; read-and-clear

    Both run under one lock, so a message is returned by at most one drain and
    never lost to a race. Overflow eviction is silent; this is an
    ephemeral relay, not a store. Contents vanish with the process.

    Two pollers draining the same buffer split its contents between them;
    assume a single logical consumer per instance.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._items: List[Message] = []
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def append(self, msg: Message) -> None:
        with self._lock:
            self._items.append(msg)
            if len(self._items) > self._capacity:
                evicted = self._items.pop(0)
            else:
                evicted = None
        if evicted is not None:
            logger.debug("Relay buffer full (%d); evicted %s", self._capacity, evicted.id)

    def drain_all(self) -> List[Message]:
        """Return everything buffered, oldest first, and leave the buffer empty."""
        with self._lock:
            drained, self._items = self._items, []
        return drained
