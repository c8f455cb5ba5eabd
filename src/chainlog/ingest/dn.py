"""
Distinguished-name grammar for routing change entries.

A DN is parsed into its relative-name components and matched root-first
against a small table of shapes:

    o=smartdc                                   suffix (required)
    ou=users, uuid=U                            user
    ou=users, uuid=U, fingerprint=F             ssh key of user U
    ou=groups, cn=operators|readers             privilege group

Anything else under the suffix is ignored. A DN outside the suffix is a
``MalformedEntryError``: the feed should never produce one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..core.errors import MalformedEntryError
from ..core.settings import DirectorySettings


class TargetKind(str, Enum):
    USER = "user"
    KEY = "key"
    GROUP = "group"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Rdn:
    attr: str
    value: str


@dataclass(frozen=True)
class DnTarget:
    kind: TargetKind
    uuid: str | None = None
    fingerprint: str | None = None
    group: str | None = None


def _split_unescaped(text: str, sep: str) -> list[str]:
    parts: list[str] = []
    buf: list[str] = []
    escaped = False
    for ch in text:
        if escaped:
            buf.append(ch)
            escaped = False
        elif ch == "\\":
            buf.append(ch)
            escaped = True
        elif ch == sep:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    parts.append("".join(buf))
    return parts


def _unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            out.append(next(chars, ""))
        else:
            out.append(ch)
    return "".join(out)


def parse_dn(dn: str) -> list[Rdn]:
    """Parse ``dn`` into components, leaf first."""
    if not isinstance(dn, str) or not dn.strip():
        raise MalformedEntryError(f"empty distinguished name: {dn!r}")
    rdns: list[Rdn] = []
    for part in _split_unescaped(dn, ","):
        if len(_split_unescaped(part, "+")) > 1:
            raise MalformedEntryError(f"multi-valued RDN not supported: {dn!r}")
        attr, sep, value = part.partition("=")
        attr = attr.strip().lower()
        value = _unescape(value.strip())
        if not sep or not attr or not value:
            raise MalformedEntryError(f"bad RDN {part.strip()!r} in {dn!r}")
        rdns.append(Rdn(attr=attr, value=value))
    return rdns


class DnClassifier:
    """Route DNs to projection targets for one directory layout."""

    def __init__(self, directory: DirectorySettings | None = None) -> None:
        cfg = directory or DirectorySettings()
        self._suffix = list(reversed(parse_dn(cfg.suffix)))
        self._users_ou = cfg.users_ou
        self._groups_ou = cfg.groups_ou
        self._groups = {cfg.operators_cn, cfg.readers_cn}
        self._operators_cn = cfg.operators_cn
        self._readers_cn = cfg.readers_cn

    @property
    def operators_group(self) -> str:
        return self._operators_cn

    @property
    def readers_group(self) -> str:
        return self._readers_cn

    def _strip_suffix(self, dn: str) -> list[Rdn]:
        root_first = list(reversed(parse_dn(dn)))
        for i, want in enumerate(self._suffix):
            if i >= len(root_first):
                raise MalformedEntryError(f"{dn!r} is shorter than the suffix")
            got = root_first[i]
            if got.attr != want.attr or got.value.lower() != want.value.lower():
                raise MalformedEntryError(
                    f"{dn!r} is not under the directory suffix "
                    f"(unexpected {got.attr}={got.value})",
                    dn=dn,
                )
        return root_first[len(self._suffix) :]

    def classify(self, dn: str) -> DnTarget:
        rest = self._strip_suffix(dn)
        if not rest:
            return DnTarget(TargetKind.IGNORED)
        head = rest[0]
        if head.attr == "ou" and head.value == self._users_ou:
            if len(rest) < 2 or rest[1].attr != "uuid":
                return DnTarget(TargetKind.IGNORED)
            uuid = rest[1].value
            if len(rest) == 2:
                return DnTarget(TargetKind.USER, uuid=uuid)
            if len(rest) == 3 and rest[2].attr == "fingerprint":
                return DnTarget(TargetKind.KEY, uuid=uuid, fingerprint=rest[2].value)
            return DnTarget(TargetKind.IGNORED)
        if head.attr == "ou" and head.value == self._groups_ou:
            if len(rest) == 2 and rest[1].attr == "cn" and rest[1].value in self._groups:
                return DnTarget(TargetKind.GROUP, group=rest[1].value)
            return DnTarget(TargetKind.IGNORED)
        return DnTarget(TargetKind.IGNORED)

    def user_uuid(self, dn: str) -> str:
        """Resolve a group member DN; anything but a user DN is malformed."""
        target = self.classify(dn)
        if target.kind is not TargetKind.USER or target.uuid is None:
            raise MalformedEntryError(f"{dn!r} is not a user DN", dn=dn)
        return target.uuid
