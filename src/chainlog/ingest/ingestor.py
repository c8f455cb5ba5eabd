"""
ChangelogIngestor: poll the change feed and feed the signer in order.

States: ``IDLE -> CHECKING -> {IDLE | UPDATING} -> IDLE``.

``check`` queries the feed at the committed serial with a tiny result cap. If
the committed serial is no longer retained the chain cannot be extended
safely and ``LogContinuityError`` is raised without touching any state. If
something newer exists an ``update`` is scheduled, unless one is already
pending.

``update`` fetches one bounded batch and drains it through a
``SerialOrderedQueue``: records reach validation, signing and projection
one at a time in increasing serial order. Duplicates are dropped. A
malformed record or a failed commit aborts the rest of the batch; what was
already committed stays committed and the next poll resumes from there.
Projection failures happen after the entry is signed: they are logged and
alerted and the batch continues.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import TYPE_CHECKING

from ..core import diagnostics
from ..core.concurrency import SerialOrderedQueue
from ..core.errors import (
    ChainlogError,
    LogContinuityError,
    ProjectionError,
    StaleEntryError,
)
from ..metrics.metrics import MetricsCollector
from ..store.metadata import KEY_INITIAL_SYNC, MetadataStore
from .entries import ChangeRecord, validate_record
from .source import ChangelogSource

if TYPE_CHECKING:
    from ..signer import ChainSigner
    from ..notify.notifier import Notifier
    from ..store.projection import ProjectionUpdater

_COMPONENT = "ingestor"
INITIAL_SYNC_LOG_EVERY = 500


class IngestState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    UPDATING = "updating"


class ChangelogIngestor:
    def __init__(
        self,
        source: ChangelogSource,
        signer: ChainSigner,
        store: MetadataStore,
        *,
        projection: ProjectionUpdater | None = None,
        notifier: Notifier | None = None,
        metrics: MetricsCollector | None = None,
        check_size_limit: int = 2,
        batch_size_limit: int = 2000,
    ) -> None:
        if check_size_limit < 2:
            raise ValueError("check_size_limit must be >= 2")
        self._source = source
        self._signer = signer
        self._store = store
        self._projection = projection
        self._notifier = notifier
        self._metrics = metrics or MetricsCollector(enabled=False)
        self._check_limit = check_size_limit
        self._batch_limit = batch_size_limit
        self._in_check = False
        self._in_update = False
        self._update_task: asyncio.Task[int] | None = None
        self._batch_committed = 0

    @property
    def state(self) -> IngestState:
        if self._in_check:
            return IngestState.CHECKING
        if self._in_update:
            return IngestState.UPDATING
        return IngestState.IDLE

    @property
    def update_pending(self) -> bool:
        return self._update_task is not None and not self._update_task.done()

    async def check(self) -> bool:
        """Check the feed. Returns True when an update was scheduled."""
        if self._in_check:
            return False
        self._in_check = True
        try:
            serial = self._signer.serial
            records = await self._source.search(serial, self._check_limit)
            got_base = False
            newer = False
            for record in records:
                seen = record.serial()
                if seen > serial:
                    newer = True
                elif seen == serial:
                    got_base = True
            if serial != -1 and not got_base:
                raise LogContinuityError(
                    f"changelog no longer retains committed serial {serial}",
                    component=_COMPONENT,
                    serial=serial,
                )
            if newer:
                if not self.update_pending:
                    diagnostics.info(_COMPONENT, "updating serial", from_serial=serial)
                    self._update_task = asyncio.create_task(self.update(serial))
                    return True
                return False
            if await asyncio.to_thread(self._store.initial_sync):
                await asyncio.to_thread(self._store.put, KEY_INITIAL_SYNC, "0")
                diagnostics.info(
                    _COMPONENT,
                    "initial sync-up complete, will begin to send notifications now",
                    serial=serial,
                )
            return False
        finally:
            self._in_check = False

    async def wait_for_update(self) -> int:
        """Await the scheduled update, if any. Returns entries committed."""
        task = self._update_task
        if task is None:
            return 0
        try:
            return await task
        finally:
            if self._update_task is task:
                self._update_task = None

    async def update(self, from_serial: int) -> int:
        """Fetch and apply one batch of entries newer than ``from_serial``."""
        if self._in_update:
            return 0
        self._in_update = True
        self._batch_committed = 0
        try:
            records = await self._source.search(from_serial, self._batch_limit)
            queue: SerialOrderedQueue[ChangeRecord] = SerialOrderedQueue(
                self._process, key=lambda r: r.serial()
            )
            try:
                for record in records:
                    queue.push(record)
                await queue.drain()
            except ChainlogError as exc:
                await self._metrics.record_error(type(exc).__name__)
                diagnostics.error(
                    _COMPONENT,
                    "failed to process changelog entry; batch aborted",
                    error=exc.message,
                    error_type=type(exc).__name__,
                    serial=self._signer.serial,
                    details=exc.context.details,
                )
                raise
            finally:
                queue.close()
            return self._batch_committed
        finally:
            self._in_update = False

    async def _process(self, record: ChangeRecord) -> None:
        serial = record.serial()
        if serial <= self._signer.serial:
            await self._metrics.record_duplicate()
            return
        entry = validate_record(record)
        started = time.perf_counter()
        try:
            await self._signer.sign_and_append(entry)
        except StaleEntryError:
            await self._metrics.record_duplicate()
            return
        await self._metrics.record_signed(duration_seconds=time.perf_counter() - started)
        self._batch_committed += 1

        initial = await asyncio.to_thread(self._store.initial_sync)
        if not initial or serial % INITIAL_SYNC_LOG_EVERY == 0:
            diagnostics.debug(_COMPONENT, "processed changelog entry", serial=serial)

        if self._projection is None:
            return
        try:
            notes = await asyncio.to_thread(self._projection.apply, entry)
        except ProjectionError as exc:
            await self._metrics.record_projection_error()
            diagnostics.error(
                _COMPONENT,
                "projection failed for signed entry",
                serial=serial,
                error=exc.message,
            )
            if self._notifier is not None:
                await self._notifier.alert(
                    "projection",
                    "Failed to apply directory change",
                    f"Serial {serial} ({entry.targetdn}) was signed but could not "
                    f"be applied: {exc.message}",
                    serial=serial,
                )
            return
        if self._notifier is not None and notes:
            await self._notifier.notify(notes)

    async def poll_once(self) -> int:
        """One tick: check, then run any scheduled update to completion."""
        scheduled = await self.check()
        if not scheduled:
            return 0
        return await self.wait_for_update()

    async def run(self, interval: float, stop: asyncio.Event) -> None:
        """Poll at a fixed interval until ``stop`` is set."""
        while not stop.is_set():
            try:
                await self.poll_once()
            except LogContinuityError as exc:
                await self._metrics.record_error(type(exc).__name__)
                diagnostics.error(_COMPONENT, exc.message, serial=self._signer.serial)
                if self._notifier is not None:
                    await self._notifier.alert(
                        "continuity",
                        "Changelog continuity lost",
                        f"{exc.message}. The signed log cannot be extended until an "
                        "operator intervenes.",
                        serial=self._signer.serial,
                    )
            except ChainlogError as exc:
                diagnostics.warn(
                    _COMPONENT,
                    "failed to check for changelog update",
                    error=exc.message,
                    error_type=type(exc).__name__,
                )
            except Exception as exc:
                diagnostics.error(
                    _COMPONENT, "unexpected error while polling", error=str(exc)
                )
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
