"""
Append-only JSON Lines log file.

Line 1 is the header ``{"challenge": "<hex>"}``; every following line is a
signed change entry carrying a ``tag``. The file is only ever opened for
append, and every append is fsynced before it returns. A failed append
truncates back to the previous length, so a write either lands whole or
not at all.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping

from ..core.canonical import decode_json, encode_line
from ..core.errors import AlreadyInitializedError, ChainlogError, ErrorCategory

HEADER_FIELD = "challenge"


class LogFormatError(ChainlogError):
    """The log file is missing its header or holds unparsable lines."""

    default_category = ErrorCategory.VERIFICATION

    def __init__(self, message: str, *, line: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, line=line, **kwargs)
        self.line = line


@dataclass(frozen=True)
class LogLine:
    """One parsed log line with its 1-based line number."""

    lineno: int
    record: dict[str, Any]


class AppendOnlyLog:
    def __init__(self, path: str | Path, *, file_mode: int = 0o600) -> None:
        self._path = Path(path)
        self._mode = file_mode

    @property
    def path(self) -> Path:
        return self._path

    def has_content(self) -> bool:
        try:
            return self._path.stat().st_size > 0
        except FileNotFoundError:
            return False

    def create(self, challenge: bytes) -> None:
        """Write the header line. Refuses to touch a non-empty file."""
        if self.has_content():
            raise AlreadyInitializedError(
                f"log file {self._path} already has content", path=str(self._path)
            )
        flags = os.O_WRONLY | os.O_CREAT | os.O_APPEND
        if not self._path.exists():
            flags |= os.O_EXCL
        fd = os.open(self._path, flags, self._mode)
        try:
            self._write_all(fd, encode_line({HEADER_FIELD: challenge.hex()}))
            os.fsync(fd)
        finally:
            os.close(fd)

    def append(self, record: Mapping[str, Any]) -> None:
        """Append one record durably; all-or-nothing on failure."""
        data = encode_line(record)
        fd = os.open(self._path, os.O_WRONLY | os.O_APPEND)
        try:
            start = os.fstat(fd).st_size
            try:
                self._write_all(fd, data)
                os.fsync(fd)
            except OSError:
                os.ftruncate(fd, start)
                raise
        finally:
            os.close(fd)

    @staticmethod
    def _write_all(fd: int, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            if written <= 0:
                raise OSError("short write to log file")
            view = view[written:]

    def read_challenge(self) -> bytes:
        with open(self._path, "rb") as f:
            first = f.readline()
        try:
            header = decode_json(first.decode("utf-8"))
            return bytes.fromhex(header[HEADER_FIELD])
        except (ValueError, KeyError, TypeError) as exc:
            raise LogFormatError(
                f"{self._path}: line 1 is not a challenge header", cause=exc, line=1
            ) from exc

    def _parse(self, lineno: int, raw: bytes) -> dict[str, Any]:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise LogFormatError(
                f"{self._path}: line {lineno} is not valid UTF-8", cause=exc, line=lineno
            ) from exc
        try:
            record = decode_json(text)
        except ValueError as exc:
            raise LogFormatError(
                f"{self._path}: line {lineno} is not valid JSON: {exc}",
                cause=exc,
                line=lineno,
            ) from exc
        if not isinstance(record, dict):
            raise LogFormatError(
                f"{self._path}: line {lineno} is not an object", line=lineno
            )
        return record

    def lines(self) -> Iterator[LogLine]:
        """Yield parsed entries after the header, with their line numbers.

        Raises ``LogFormatError`` carrying the line number at the first line
        that is not UTF-8, not JSON, or holds a non-finite number.
        """
        with open(self._path, "rb") as f:
            for lineno, raw in enumerate(f, start=1):
                if lineno == 1:
                    continue
                raw = raw.strip()
                if not raw:
                    continue
                yield LogLine(lineno=lineno, record=self._parse(lineno, raw))

    def last_record(self) -> dict[str, Any] | None:
        """Return the final entry, or None when only the header exists."""
        last: LogLine | None = None
        for line in self.lines():
            last = line
        return None if last is None else last.record
