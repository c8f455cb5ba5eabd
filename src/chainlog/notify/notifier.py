"""
Notifier: turns projection notifications and operator alerts into
deliveries.

Rules:
- nothing is sent while the store's ``initial_sync`` flag is set
- user mail requires the uuid to be whitelisted (empty list allows all)
  and the account to be active (no recorded status counts as active)
- operator alerts of one kind are sent at most once per
  ``alert_throttle_seconds``, tracked in ``last_alert:<kind>``

Delivery failures are logged and never propagate into ingestion.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Iterable, Sequence

from ..core import diagnostics
from ..core.settings import NotifySettings
from ..store.metadata import ALERT_KEY_PREFIX, MetadataStore
from .delivery import Delivery, Envelope
from .models import Audience, Notification

_COMPONENT = "notify"


class Notifier:
    def __init__(
        self,
        settings: NotifySettings,
        store: MetadataStore,
        deliveries: Sequence[Delivery],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._deliveries = list(deliveries)
        self._clock = clock
        self.suppressed = 0

    def whitelisted(self, uuid: str | None) -> bool:
        allowed = self._settings.whitelist
        return not allowed or (uuid is not None and uuid in allowed)

    @staticmethod
    def active(status: str | None) -> bool:
        return status is None or status == "active"

    def envelope_for(self, note: Notification) -> Envelope | None:
        if note.audience is Audience.USER:
            if not self.whitelisted(note.uuid) or not self.active(note.user_status):
                return None
            if not note.to:
                return None
            return Envelope(
                kind=note.kind,
                sender=self._settings.from_address,
                recipients=note.to,
                subject=self._settings.user_prefix + note.subject,
                text=note.body,
                fields={"uuid": note.uuid, "when": note.when},
            )
        return Envelope(
            kind=note.kind,
            sender=self._settings.from_address,
            recipients=tuple(self._settings.operators),
            subject=self._settings.operator_prefix + note.subject,
            text=note.body,
            fields={"uuid": note.uuid, "when": note.when, **note.fields},
        )

    async def notify(self, notes: Iterable[Notification]) -> int:
        """Deliver ``notes``; returns the number of envelopes sent."""
        notes = list(notes)
        if not notes:
            return 0
        if await asyncio.to_thread(self._store.initial_sync):
            self.suppressed += len(notes)
            return 0
        sent = 0
        for note in notes:
            envelope = self.envelope_for(note)
            if envelope is None:
                continue
            await self._send(envelope)
            sent += 1
        return sent

    async def alert(self, kind: str, subject: str, body: str, **fields: Any) -> bool:
        """Throttled operator alert. Returns True when it was sent."""
        diagnostics.error(_COMPONENT, subject, alert=kind, **fields)
        if await asyncio.to_thread(self._store.initial_sync):
            self.suppressed += 1
            return False
        key = ALERT_KEY_PREFIX + kind
        now = self._clock()
        last = await asyncio.to_thread(self._store.get, key)
        if last is not None and now - float(last) < self._settings.alert_throttle_seconds:
            return False
        await asyncio.to_thread(self._store.put, key, repr(now))
        await self._send(
            Envelope(
                kind=kind,
                sender=self._settings.from_address,
                recipients=tuple(self._settings.operators),
                subject=self._settings.operator_prefix + subject,
                text=body,
                fields=fields,
            )
        )
        return True

    async def _send(self, envelope: Envelope) -> None:
        for delivery in self._deliveries:
            try:
                await delivery.deliver(envelope)
            except Exception as exc:
                diagnostics.error(
                    _COMPONENT,
                    "failed sending notification",
                    kind=envelope.kind,
                    channel=getattr(delivery, "name", type(delivery).__name__),
                    error=str(exc),
                )
