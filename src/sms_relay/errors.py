"""Exceptions raised by the relay and its carrier collaborator."""
from __future__ import annotations

from typing import Any, Optional


class RelayError(Exception):
    """Base class for sms_relay errors."""


class InvalidPhoneNumber(RelayError, ValueError):
    """Destination address is not in E.164 format."""

    def __init__(self, number: str) -> None:
        super().__init__(
            "Invalid phone number format. Please use E.164 format (e.g., +1234567890)"
        )
        self.number = number


class ProviderError(RelayError):
    """Carrier API rejected or failed a request.

    ``code`` and ``message`` are whatever the provider supplied; ``status`` is
    the HTTP status the provider answered with, if known.
    """

    def __init__(self, code: Any, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.status = status
