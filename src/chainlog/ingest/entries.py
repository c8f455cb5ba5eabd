"""
Change-record validation.

A ``ChangeRecord`` is what the feed hands over: a bag of attributes, each
with a list of string values. ``validate_record`` turns it into a
``ChangeEntry`` (the exact object that gets signed) or raises
``MalformedEntryError``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..core.canonical import decode_json
from ..core.errors import MalformedEntryError

CHANGELOG_OBJECTCLASS = "changeLogEntry"
CHANGE_TYPES = ("add", "modify", "delete")

_REQUIRED = ("targetdn", "changetype", "objectclass", "changetime", "changenumber", "changes")


@dataclass(frozen=True)
class ChangeRecord:
    """Raw changelog record as returned by a ``ChangelogSource``."""

    attributes: Mapping[str, Sequence[str]]

    @classmethod
    def build(
        cls,
        *,
        changenumber: int,
        targetdn: str,
        changetype: str,
        changes: Any,
        changetime: str = "2016-01-01T00:00:00.000Z",
        entry: Any = None,
        **extra: str,
    ) -> ChangeRecord:
        attrs: dict[str, list[str]] = {
            "objectclass": [CHANGELOG_OBJECTCLASS],
            "changenumber": [str(changenumber)],
            "targetdn": [targetdn],
            "changetype": [changetype],
            "changetime": [changetime],
            "changes": [json.dumps(changes)],
        }
        if entry is not None:
            attrs["entry"] = [json.dumps(entry)]
        for k, v in extra.items():
            attrs[k] = [v]
        return cls(attributes=attrs)

    def serial(self) -> int:
        """Strictly parse the sequence number."""
        vals = self.attributes.get("changenumber")
        if not vals or len(vals) != 1:
            raise MalformedEntryError("record has no single changenumber")
        raw = str(vals[0]).strip()
        if not (raw.isascii() and raw.isdigit()):
            raise MalformedEntryError(f"changenumber is not a number: {raw!r}")
        return int(raw, 10)


@dataclass(frozen=True)
class ChangeEntry:
    """A validated change, ready to be signed."""

    serial: int
    targetdn: str
    changetype: str
    changetime: str
    changes: Any
    entry: Any = None
    extra: Mapping[str, str] = field(default_factory=dict)

    def to_log_record(self) -> dict[str, Any]:
        record: dict[str, Any] = dict(self.extra)
        record.update(
            {
                "objectclass": CHANGELOG_OBJECTCLASS,
                "targetdn": self.targetdn,
                "changetype": self.changetype,
                "changetime": self.changetime,
                "changenumber": self.serial,
                "changes": self.changes,
            }
        )
        if self.entry is not None:
            record["entry"] = self.entry
        return record


def _single_values(record: ChangeRecord, serial: int) -> dict[str, str]:
    values: dict[str, str] = {}
    for name, vals in record.attributes.items():
        key = name.lower()
        if key in values:
            raise MalformedEntryError(
                f"attribute {key!r} repeated", serial=serial, attribute=key
            )
        if isinstance(vals, (str, bytes)) or len(vals) != 1:
            raise MalformedEntryError(
                f"attribute {key!r} must carry exactly one value",
                serial=serial,
                attribute=key,
            )
        values[key] = str(vals[0])
    return values


def _decode(raw: str, what: str, serial: int) -> Any:
    try:
        return decode_json(raw)
    except ValueError as exc:
        raise MalformedEntryError(
            f"{what} is not valid JSON: {exc}", cause=exc, serial=serial
        ) from exc


def validate_record(record: ChangeRecord) -> ChangeEntry:
    serial = record.serial()
    values = _single_values(record, serial)
    for name in _REQUIRED:
        if name not in values:
            raise MalformedEntryError(f"missing attribute {name!r}", serial=serial)
    if values["objectclass"] != CHANGELOG_OBJECTCLASS:
        raise MalformedEntryError(
            f"unexpected objectclass {values['objectclass']!r}", serial=serial
        )

    changetype = values["changetype"]
    changes = _decode(values["changes"], "changes", serial)
    entry = _decode(values["entry"], "entry", serial) if "entry" in values else None

    if changetype in ("add", "delete"):
        if entry is not None:
            raise MalformedEntryError(
                f"{changetype} must not carry a pre-image", serial=serial
            )
        if not isinstance(changes, dict):
            raise MalformedEntryError(
                f"{changetype} changes must be an object", serial=serial
            )
    elif changetype == "modify":
        if not isinstance(entry, dict):
            raise MalformedEntryError("modify must carry a pre-image", serial=serial)
        if not isinstance(changes, list) or not all(
            isinstance(ch, dict) for ch in changes
        ):
            raise MalformedEntryError(
                "modify changes must be a list of operations", serial=serial
            )
    else:
        raise MalformedEntryError(
            f"unrecognized change type {changetype!r}", serial=serial
        )

    known = set(_REQUIRED) | {"entry"}
    return ChangeEntry(
        serial=serial,
        targetdn=values["targetdn"],
        changetype=changetype,
        changetime=values["changetime"],
        changes=changes,
        entry=entry,
        extra={k: v for k, v in values.items() if k not in known},
    )
