"""Outbound SMS dispatch through the carrier's REST API (Twilio)."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from .errors import InvalidPhoneNumber, ProviderError

logger = logging.getLogger(__name__)

E164_RE = re.compile(r"^\+?[1-9]\d{1,14}$")


def normalize_number(number: str) -> str:
    """Strip whitespace and check the result against E.164.

    Raises InvalidPhoneNumber if it does not match.
    """
    cleaned = re.sub(r"\s", "", number or "")
    if not E164_RE.match(cleaned):
        raise InvalidPhoneNumber(number)
    return cleaned


class CarrierClient:
    """Thin wrapper over ``twilio.rest.Client`` for sending one SMS.

    The underlying client is built lazily so that a relay configured without
    credentials can still accept inbound callbacks.
    """

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        phone_number: Optional[str],
        *,
        client: Any = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.phone_number = phone_number
        self._client = client

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "CarrierClient":
        c = cfg.get("carrier", {}) or {}
        return cls(c.get("account_sid"), c.get("auth_token"), c.get("phone_number"))

    def _get_client(self) -> Any:
        if self._client is None:
            if not (self.account_sid and self.auth_token):
                raise ProviderError("credentials", "Carrier credentials are not configured.")
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def send(self, to: str, body: str) -> Dict[str, Any]:
        """Send ``body`` to ``to`` from the configured number.

        Returns ``{"sid", "status", "to", "from"}``. Provider failures are
        raised as ProviderError with the provider's code and message; nothing
        is retried here.
        """
        to = normalize_number(to)
        try:
            msg = self._get_client().messages.create(body=body, to=to, from_=self.phone_number)
        except TwilioRestException as e:
            logger.error("Carrier rejected message to %s: [%s] %s", to, e.code, e.msg)
            raise ProviderError(e.code, e.msg, e.status) from e
        return {
            "sid": msg.sid,
            "status": str(msg.status) if msg.status is not None else None,
            "to": msg.to,
            "from": msg.from_,
        }
