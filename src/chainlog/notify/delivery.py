"""
Delivery channels for rendered notifications.

Mail templating and SMTP are outside this package; a deployment plugs in a
webhook that relays to its mailer. ``LogDelivery`` records every message
through diagnostics and is always safe to enable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ..core import diagnostics

_COMPONENT = "notify"


@dataclass(frozen=True)
class Envelope:
    kind: str
    sender: str
    recipients: tuple[str, ...]
    subject: str
    text: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "from": self.sender,
            "to": list(self.recipients),
            "subject": self.subject,
            "text": self.text,
            "fields": dict(self.fields),
        }


class Delivery(Protocol):
    async def deliver(self, envelope: Envelope) -> None:
        """Send ``envelope``; raise on failure."""


class LogDelivery:
    name = "log"

    async def deliver(self, envelope: Envelope) -> None:
        diagnostics.info(
            _COMPONENT,
            "notification",
            kind=envelope.kind,
            to=list(envelope.recipients),
            subject=envelope.subject,
        )


class WebhookDelivery:
    """POST each envelope as JSON to a relay endpoint."""

    name = "webhook"

    def __init__(
        self,
        endpoint: str,
        *,
        secret: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._secret = secret
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._last_status: int | None = None

    @property
    def last_status(self) -> int | None:
        return self._last_status

    async def deliver(self, envelope: Envelope) -> None:
        headers: dict[str, str] = {}
        if self._secret:
            headers["X-Webhook-Secret"] = self._secret
        resp = await self._client.post(
            self._endpoint, json=envelope.to_dict(), headers=headers
        )
        self._last_status = resp.status_code
        resp.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
