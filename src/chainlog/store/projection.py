"""
Domain projection: users, SSH keys and privilege groups.

The projection is a read-optimized cache derived from signed entries. It is
only updated after an entry has been durably signed; a failure here never
un-signs anything. ``ProjectionUpdater.apply`` runs one entry in its own
transaction and returns the notifications the change warrants.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed25519, rsa
from cryptography.hazmat.primitives.serialization import load_ssh_public_key

from ..core.errors import MalformedEntryError, ProjectionError
from ..ingest.dn import DnClassifier, DnTarget, TargetKind
from ..ingest.entries import ChangeEntry
from ..notify.models import Notification, operator_notice, user_notice
from .metadata import MetadataStore

USER_OBJECTCLASS = "sdcperson"
_TRACKED_USER_ATTRS = ("login", "userpassword", "email", "status")


@dataclass(frozen=True)
class KeyInfo:
    fingerprint: str
    name: str | None
    key_type: str
    bits: int | None
    comment: str | None

    def describe(self) -> str:
        size = f" {self.bits}-bit" if self.bits else ""
        label = f" {self.name!r}" if self.name else ""
        comment = f" ({self.comment})" if self.comment else ""
        return f"{self.key_type}{size} key{label} {self.fingerprint}{comment}"


def describe_ssh_key(fingerprint: str, name: str | None, openssh: str | None) -> KeyInfo:
    """Summarize an OpenSSH public key line for notifications."""
    parts = (openssh or "").split(None, 2)
    key_type = parts[0] if parts else "unknown"
    comment = parts[2].strip() if len(parts) == 3 else None
    bits: int | None = None
    if openssh:
        try:
            key = load_ssh_public_key(openssh.encode("utf-8"))
        except (ValueError, UnsupportedAlgorithm):
            key = None
        if isinstance(key, rsa.RSAPublicKey):
            key_type, bits = "RSA", key.key_size
        elif isinstance(key, dsa.DSAPublicKey):
            key_type, bits = "DSA", key.key_size
        elif isinstance(key, ec.EllipticCurvePublicKey):
            key_type, bits = "ECDSA", key.curve.key_size
        elif isinstance(key, ed25519.Ed25519PublicKey):
            key_type, bits = "ED25519", 256
    return KeyInfo(fingerprint, name, key_type, bits, comment)


def _first(changes: dict[str, Any], attr: str) -> Any:
    vals = changes.get(attr)
    if isinstance(vals, list):
        return vals[0] if vals else None
    return vals


def _privileged(row: sqlite3.Row | None) -> bool:
    return row is not None and (row["operator"] == 1 or row["reader"] == 1)


class ProjectionUpdater:
    """Applies signed change entries to the users/keys tables."""

    def __init__(self, store: MetadataStore, classifier: DnClassifier) -> None:
        self._store = store
        self._dn = classifier

    def apply(self, entry: ChangeEntry) -> list[Notification]:
        try:
            target = self._dn.classify(entry.targetdn)
            if target.kind is TargetKind.IGNORED:
                return []
            with self._store.transaction():
                if target.kind is TargetKind.USER:
                    return self._apply_user(entry, target)
                if target.kind is TargetKind.KEY:
                    return self._apply_key(entry, target)
                return self._apply_group(entry, target)
        except ProjectionError:
            raise
        except (MalformedEntryError, sqlite3.Error, KeyError, TypeError, ValueError) as exc:
            raise ProjectionError(
                f"failed to project serial {entry.serial}: {exc}",
                cause=exc,
                serial=entry.serial,
                targetdn=entry.targetdn,
            ) from exc

    def user(self, uuid: str) -> sqlite3.Row | None:
        return self._store.fetchone("SELECT * FROM users WHERE uuid = ?", (uuid,))

    def keys(self, uuid: str) -> list[sqlite3.Row]:
        return self._store.fetchall(
            "SELECT fingerprint, name, comment FROM keys WHERE uuid = ?", (uuid,)
        )

    # users

    def _apply_user(self, entry: ChangeEntry, target: DnTarget) -> list[Notification]:
        uuid = target.uuid or ""
        row = self.user(uuid)
        if row is None and entry.changetype != "add":
            raise ProjectionError(
                f"got {entry.changetype} for user {uuid} which does not exist",
                serial=entry.serial,
                uuid=uuid,
            )
        if entry.changetype == "add":
            return self._user_added(entry, uuid)
        if entry.changetype == "modify":
            return self._user_modified(entry, uuid, row)
        return self._user_deleted(entry, uuid, row)

    def _user_added(self, entry: ChangeEntry, uuid: str) -> list[Notification]:
        changes = entry.changes
        classes = changes.get("objectclass") or []
        if USER_OBJECTCLASS not in classes:
            raise ProjectionError(
                f"entry for user {uuid} is missing objectclass {USER_OBJECTCLASS}",
                serial=entry.serial,
            )
        self._store.execute(
            "INSERT OR REPLACE INTO users "
            "(uuid, login, userpassword, email, status, operator, reader) "
            "VALUES (?, ?, ?, ?, ?, 0, 0)",
            (
                uuid,
                _first(changes, "login"),
                _first(changes, "userpassword"),
                _first(changes, "email"),
                _first(changes, "status"),
            ),
        )
        return []

    def _user_modified(
        self, entry: ChangeEntry, uuid: str, row: sqlite3.Row
    ) -> list[Notification]:
        current = {a: row[a] for a in _TRACKED_USER_ATTRS}
        updates: dict[str, str] = {}
        for change in entry.changes:
            mod = change.get("modification")
            if not isinstance(mod, dict):
                raise ProjectionError(
                    "modify operation without a modification object",
                    serial=entry.serial,
                )
            if change.get("operation") not in ("add", "replace"):
                continue
            attr = mod.get("type")
            if attr not in _TRACKED_USER_ATTRS:
                continue
            vals = mod.get("vals") or []
            if len(vals) != 1:
                raise ProjectionError(
                    f"{attr} change must carry one value", serial=entry.serial
                )
            if current[attr] != vals[0]:
                updates[attr] = vals[0]

        notes: list[Notification] = []
        when = entry.changetime
        privileged = _privileged(row)
        login = current["login"]
        status = updates.get("status", current["status"])
        if "login" in updates:
            notes.append(
                operator_notice(
                    "changed-login",
                    f"Account {login} login name changed",
                    f"The login of account {uuid} changed from {login} to "
                    f"{updates['login']} at {when}.",
                    uuid=uuid,
                    when=when,
                )
            )
        if "userpassword" in updates:
            notes.append(
                user_notice(
                    "pw-changed",
                    "Your password has been changed",
                    f"The password for your {login} account was changed at {when}.",
                    to=(current["email"],),
                    uuid=uuid,
                    status=status,
                    when=when,
                )
            )
            if privileged:
                notes.append(
                    operator_notice(
                        "oper-pw-changed",
                        f"Password changed for operator {login}",
                        f"Operator {login} ({uuid}) changed password at {when}.",
                        uuid=uuid,
                        when=when,
                    )
                )
        if "email" in updates:
            old, new = current["email"], updates["email"]
            notes.append(
                user_notice(
                    "email-changed",
                    "Your email address has been changed",
                    f"The email address for {login} changed from {old} to {new} at {when}.",
                    to=(old, new),
                    uuid=uuid,
                    status=status,
                    when=when,
                )
            )
            if privileged:
                notes.append(
                    operator_notice(
                        "oper-email-changed",
                        f"Operator email change for {login}",
                        f"Operator {login} ({uuid}) changed email from {old} to {new} at {when}.",
                        uuid=uuid,
                        when=when,
                    )
                )
        if updates:
            assignments = ", ".join(f"{attr} = ?" for attr in updates)
            self._store.execute(
                f"UPDATE users SET {assignments} WHERE uuid = ?",
                (*updates.values(), uuid),
            )
        return notes

    def _user_deleted(
        self, entry: ChangeEntry, uuid: str, row: sqlite3.Row
    ) -> list[Notification]:
        notes: list[Notification] = []
        if _privileged(row):
            notes.append(
                operator_notice(
                    "deleted-operator",
                    f"Operator account {row['login']} deleted",
                    f"Operator account {row['login']} ({uuid}) was deleted at "
                    f"{entry.changetime}.",
                    uuid=uuid,
                    when=entry.changetime,
                )
            )
        self._store.execute("DELETE FROM users WHERE uuid = ?", (uuid,))
        return notes

    # keys

    def _apply_key(self, entry: ChangeEntry, target: DnTarget) -> list[Notification]:
        if entry.changetype == "modify":
            raise ProjectionError("keys cannot be modified", serial=entry.serial)
        uuid = target.uuid or ""
        fingerprint = target.fingerprint or ""
        info = describe_ssh_key(
            fingerprint,
            _first(entry.changes, "name"),
            _first(entry.changes, "openssh"),
        )
        others = [r["fingerprint"] for r in self.keys(uuid) if r["fingerprint"] != fingerprint]
        row = self.user(uuid)

        if entry.changetype == "add":
            self._store.execute(
                "INSERT OR REPLACE INTO keys (uuid, fingerprint, name, comment) "
                "VALUES (?, ?, ?, ?)",
                (uuid, fingerprint, info.name, info.comment),
            )
            kind, verb, where = "added-key", "added to", "New SSH key added to your account"
        else:
            self._store.execute(
                "DELETE FROM keys WHERE uuid = ? AND fingerprint = ?",
                (uuid, fingerprint),
            )
            kind, verb, where = "deleted-key", "deleted from", "SSH key deleted from your account"

        if row is None:
            return []
        when = entry.changetime
        body = (
            f"{info.describe()} was {verb} account {row['login']} at {when}. "
            f"Other keys on the account: {', '.join(others) or 'none'}."
        )
        notes = [
            user_notice(
                kind,
                where,
                body,
                to=(row["email"],),
                uuid=uuid,
                status=row["status"],
                when=when,
            )
        ]
        if _privileged(row):
            notes.append(
                operator_notice(
                    f"oper-{kind}",
                    f"SSH key {verb} operator {row['login']}",
                    body,
                    uuid=uuid,
                    when=when,
                    fingerprint=fingerprint,
                )
            )
        return notes

    # groups

    def _apply_group(self, entry: ChangeEntry, target: DnTarget) -> list[Notification]:
        group = target.group or ""
        column = "operator" if group == self._dn.operators_group else "reader"
        if entry.changetype == "add":
            members = entry.changes.get("uniquemember") or []
            ops = [
                {"operation": "add", "modification": {"type": "uniquemember", "vals": [m]}}
                for m in members
            ]
        elif entry.changetype == "modify":
            ops = entry.changes
        else:
            return []

        notes: list[Notification] = []
        for change in ops:
            mod = change.get("modification") or {}
            if mod.get("type") != "uniquemember":
                continue
            operation = change.get("operation")
            if operation not in ("add", "delete"):
                continue
            vals = mod.get("vals") or []
            if len(vals) != 1:
                raise ProjectionError(
                    "uniquemember change must carry one value", serial=entry.serial
                )
            uuid = self._dn.user_uuid(vals[0])
            row = self.user(uuid)
            if operation == "add":
                if row is None:
                    raise ProjectionError(
                        f"tried to add unknown user {uuid} to {group}",
                        serial=entry.serial,
                        uuid=uuid,
                    )
                if row[column] == 1:
                    continue
                self._store.execute(
                    f"UPDATE users SET {column} = 1 WHERE uuid = ?", (uuid,)
                )
                notes.append(
                    operator_notice(
                        "new-operator",
                        f"New {column} account {row['login']}",
                        f"Account {row['login']} ({uuid}) was added to {group} at "
                        f"{entry.changetime}.",
                        uuid=uuid,
                        when=entry.changetime,
                        group=group,
                    )
                )
            else:
                self._store.execute(
                    f"UPDATE users SET {column} = 0 WHERE uuid = ?", (uuid,)
                )
                if row is not None:
                    notes.append(
                        operator_notice(
                            "deleted-operator",
                            f"Demoted {column} account {row['login']}",
                            f"Account {row['login']} ({uuid}) was removed from "
                            f"{group} at {entry.changetime}.",
                            uuid=uuid,
                            when=entry.changetime,
                            group=group,
                        )
                    )
        return notes
