"""Ephemeral SMS relay between a carrier webhook and a polling browser client.

Inbound SMS arrive on the carrier callback, wait in a bounded in-memory
buffer, and are handed to the next poll exactly once. Outbound SMS are
passed straight through to the carrier API.

Typical usage
-------------
from sms_relay import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

__all__ = [
    "create_app",
    "RelayBuffer",
    "Message",
    "PollLoop",
    "RelayClient",
    "Transcript",
    "__version__",
    "get_version",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


from .buffer import RelayBuffer  # noqa: E402
from .client import PollLoop, RelayClient, Transcript  # noqa: E402
from .models import Message  # noqa: E402
from .server import create_app  # noqa: E402
