"""
Changelog sources.

The ingestor only needs one operation: fetch records whose sequence number
is at least ``min_serial``, capped at ``size_limit`` results. Connection
pooling, retries and TLS are the source's business.
"""

from __future__ import annotations

import asyncio
import importlib
import random
from typing import Any, Protocol

from ..core.errors import ConfigurationError
from ..core.settings import ChangelogSettings
from .entries import ChangeRecord


class ChangelogSource(Protocol):
    async def search(self, min_serial: int, size_limit: int) -> list[ChangeRecord]:
        """Records with changenumber >= ``min_serial``, at most ``size_limit``."""


class InMemoryChangelog:
    """Changelog held in memory; used by tests and local tooling.

    ``shuffle`` delivers each result set in random order, which is how the
    ordering guarantees of the ingestor are exercised.
    """

    def __init__(self, *, shuffle: bool = False, seed: int | None = None) -> None:
        self._records: dict[int, ChangeRecord] = {}
        self._shuffle = shuffle
        self._random = random.Random(seed)
        self.searches: list[tuple[int, int]] = []

    def add(self, record: ChangeRecord) -> None:
        self._records[record.serial()] = record

    def extend(self, records: list[ChangeRecord]) -> None:
        for record in records:
            self.add(record)

    def truncate_before(self, serial: int) -> None:
        """Drop retained history below ``serial`` (feed compaction)."""
        for key in [k for k in self._records if k < serial]:
            del self._records[key]

    async def search(self, min_serial: int, size_limit: int) -> list[ChangeRecord]:
        self.searches.append((min_serial, size_limit))
        matching = sorted(k for k in self._records if k >= min_serial)[:size_limit]
        results = [self._records[k] for k in matching]
        if self._shuffle:
            self._random.shuffle(results)
        return results


class LdapChangelogSource:
    """Thin adapter over ``ldap3`` (optional ``chainlog[ldap]`` extra)."""

    def __init__(self, settings: ChangelogSettings, *, connection: Any | None = None) -> None:
        self._settings = settings
        self._ldap3 = importlib.import_module("ldap3")
        if connection is None:
            if not settings.url:
                raise ConfigurationError("changelog.url is required for the LDAP source")
            server = self._ldap3.Server(
                settings.url, connect_timeout=settings.timeout_seconds
            )
            password = (
                settings.bind_password.get_secret_value()
                if settings.bind_password is not None
                else None
            )
            connection = self._ldap3.Connection(
                server,
                user=settings.bind_dn,
                password=password,
                auto_bind=True,
                receive_timeout=settings.timeout_seconds,
            )
        self._conn = connection

    def _search(self, min_serial: int, size_limit: int) -> list[ChangeRecord]:
        self._conn.search(
            search_base=self._settings.base,
            search_filter=f"(changenumber>={min_serial})",
            search_scope=self._ldap3.LEVEL,
            attributes=self._ldap3.ALL_ATTRIBUTES,
            size_limit=size_limit,
        )
        records: list[ChangeRecord] = []
        for item in self._conn.response or []:
            if item.get("type") != "searchResEntry":
                continue
            raw = item.get("raw_attributes") or {}
            attrs = {
                name.lower(): [
                    v.decode("utf-8") if isinstance(v, bytes) else str(v) for v in vals
                ]
                for name, vals in raw.items()
            }
            records.append(ChangeRecord(attributes=attrs))
        return records

    async def search(self, min_serial: int, size_limit: int) -> list[ChangeRecord]:
        return await asyncio.to_thread(self._search, min_serial, size_limit)

    def close(self) -> None:
        self._conn.unbind()
