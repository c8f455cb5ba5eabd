"""
Long-running ingestion service: wires settings into the store, signer,
projection, notifier and ingestor, and polls until signalled.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

from .core import diagnostics
from .core.settings import Settings
from .ingest.dn import DnClassifier
from .ingest.ingestor import ChangelogIngestor
from .ingest.source import ChangelogSource, LdapChangelogSource
from .metrics.metrics import MetricsCollector
from .notify.delivery import Delivery, LogDelivery, WebhookDelivery
from .notify.notifier import Notifier
from .signer import ChainSigner
from .store.logfile import AppendOnlyLog
from .store.metadata import MetadataStore
from .store.projection import ProjectionUpdater

_COMPONENT = "service"


class ChainlogService:
    def __init__(
        self,
        settings: Settings,
        *,
        source: ChangelogSource | None = None,
        deliveries: list[Delivery] | None = None,
    ) -> None:
        self.settings = settings
        self.store = MetadataStore(settings.store.sqlite_path)
        self.log = AppendOnlyLog(settings.log.path, file_mode=settings.log.file_mode)
        self.metrics = MetricsCollector(enabled=settings.enable_metrics)
        self.signer = ChainSigner(self.store, self.log)
        self.projection = ProjectionUpdater(
            self.store, DnClassifier(settings.directory)
        )
        self._webhook: WebhookDelivery | None = None
        if deliveries is None:
            deliveries = [LogDelivery()]
            if settings.notify.webhook_url:
                self._webhook = WebhookDelivery(
                    settings.notify.webhook_url,
                    secret=settings.notify.webhook_secret,
                    timeout_seconds=settings.notify.webhook_timeout_seconds,
                )
                deliveries.append(self._webhook)
        self.notifier = Notifier(settings.notify, self.store, deliveries)
        self.source = source or LdapChangelogSource(settings.changelog)
        self.ingestor = ChangelogIngestor(
            self.source,
            self.signer,
            self.store,
            projection=self.projection,
            notifier=self.notifier,
            metrics=self.metrics,
            check_size_limit=settings.changelog.check_size_limit,
            batch_size_limit=settings.changelog.batch_size_limit,
        )
        self._stop = asyncio.Event()

    async def start(self) -> None:
        await self.signer.start()
        diagnostics.info(
            _COMPONENT,
            "service started",
            serial=self.signer.serial,
            initial_sync=await asyncio.to_thread(self.store.initial_sync),
        )

    def request_stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        await self.start()
        try:
            await self.ingestor.run(
                self.settings.changelog.poll_interval_seconds, self._stop
            )
        finally:
            await self.close()

    async def close(self) -> None:
        if self._webhook is not None:
            await self._webhook.aclose()
        closer: Any = getattr(self.source, "close", None)
        if callable(closer):
            closer()
        self.store.close()
        diagnostics.info(_COMPONENT, "service stopped", serial=self.signer.serial)


async def run_service(settings: Settings) -> None:
    service = ChainlogService(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_stop)
        except (NotImplementedError, RuntimeError):
            pass
    await service.run()
