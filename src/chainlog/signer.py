"""
ChainSigner: the single owner of the rotating chain secret.

Each ``sign_and_append`` is one atomic step:

1. reject entries at or below the committed serial (``StaleEntryError``)
2. tag the canonical entry with the current secret
3. inside one metadata transaction, rotate the stored secret (exactly one
   row must change), append ``entry + tag`` to the log with fsync, record
   the new serial, then commit

The append happens before the commit. A crash between the two leaves the
log one entry ahead of the store; ``recover`` detects that on start (the
last line's serial exceeds the stored serial and its tag verifies under the
stored secret) and rolls the store forward without re-signing.

Entries are serialized through an ``asyncio.Lock``; the blocking file and
database work runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from .core import diagnostics
from .core.canonical import TAG_FIELD, b64decode, b64encode
from .core.chain import compute_tag, next_secret, tags_equal
from .core.errors import (
    ConfigurationError,
    ErrorRecoveryStrategy,
    SignCommitError,
    StaleEntryError,
)
from .store.logfile import AppendOnlyLog
from .store.metadata import KEY_SECRET, KEY_SERIAL, MetadataStore

if TYPE_CHECKING:
    from .ingest.entries import ChangeEntry

_COMPONENT = "signer"


class ChainSigner:
    def __init__(self, store: MetadataStore, log: AppendOnlyLog) -> None:
        self._store = store
        self._log = log
        self._lock = asyncio.Lock()
        self._secret: bytes | None = None
        self._serial = -1
        self._needs_recovery = True

    @property
    def serial(self) -> int:
        return self._serial

    @property
    def started(self) -> bool:
        return self._secret is not None and not self._needs_recovery

    async def start(self) -> None:
        """Load state from the store and reconcile it with the log tail."""
        async with self._lock:
            await asyncio.to_thread(self._recover)

    def _load(self) -> None:
        raw = self._store.get(KEY_SECRET)
        if raw is None:
            raise ConfigurationError(
                "metadata store is not initialized; run 'chainlog init' first",
                component=_COMPONENT,
            )
        self._secret = b64decode(raw)
        self._serial = self._store.serial()

    def _recover(self) -> None:
        self._load()
        assert self._secret is not None
        last = self._log.last_record()
        if last is not None:
            last_serial = int(last.get("changenumber", -1))
            if last_serial > self._serial:
                if not tags_equal(compute_tag(self._secret, last), last.get(TAG_FIELD)):
                    raise SignCommitError(
                        f"log tail (serial {last_serial}) is ahead of the store "
                        f"(serial {self._serial}) and does not verify",
                        recovery_strategy=ErrorRecoveryStrategy.OPERATOR,
                        component=_COMPONENT,
                        log_serial=last_serial,
                        stored_serial=self._serial,
                    )
                rotated = next_secret(self._secret)
                with self._store.transaction():
                    if self._store.update(KEY_SECRET, b64encode(rotated)) != 1:
                        raise SignCommitError("did not update secret", component=_COMPONENT)
                    self._store.put(KEY_SERIAL, str(last_serial))
                diagnostics.warn(
                    _COMPONENT,
                    "log tail was appended but not committed; store rolled forward",
                    serial=last_serial,
                    previous_serial=self._serial,
                )
                self._secret = rotated
                self._serial = last_serial
        self._needs_recovery = False

    async def sign_and_append(
        self, entry: ChangeEntry, expected_serial: int | None = None
    ) -> dict[str, Any]:
        """Tag, append and commit ``entry``. Returns the committed record."""
        async with self._lock:
            if self._needs_recovery:
                await asyncio.to_thread(self._recover)
            if expected_serial is not None and expected_serial != self._serial:
                raise SignCommitError(
                    f"signer is at serial {self._serial}, caller expected {expected_serial}",
                    component=_COMPONENT,
                    serial=entry.serial,
                )
            if entry.serial <= self._serial:
                raise StaleEntryError(
                    f"serial {entry.serial} already applied (current {self._serial})",
                    component=_COMPONENT,
                    serial=entry.serial,
                )
            return await asyncio.to_thread(self._commit, entry)

    def _commit(self, entry: ChangeEntry) -> dict[str, Any]:
        assert self._secret is not None
        record = entry.to_log_record()
        rotated = next_secret(self._secret)
        appended = False
        try:
            tag = compute_tag(self._secret, record)
            with self._store.transaction():
                if self._store.update(KEY_SECRET, b64encode(rotated)) != 1:
                    raise SignCommitError("did not update secret", component=_COMPONENT)
                record[TAG_FIELD] = tag
                self._log.append(record)
                appended = True
                self._store.put(KEY_SERIAL, str(entry.serial))
        except SignCommitError:
            self._needs_recovery = appended
            raise
        except Exception as exc:
            # append landed but commit did not: reconcile before the next sign
            self._needs_recovery = appended
            raise SignCommitError(
                f"failed to commit serial {entry.serial}: {exc}",
                cause=exc,
                component=_COMPONENT,
                serial=entry.serial,
                appended=appended,
            ) from exc
        self._secret = rotated
        self._serial = entry.serial
        return record
