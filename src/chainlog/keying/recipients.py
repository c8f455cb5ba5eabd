"""
Per-recipient share encryption for out-of-band distribution.

Each share is sealed to a named recipient's Curve25519 public key with a
libsodium sealed box, so only that recipient can open it. Encryption is a
pure side effect of bootstrap: nothing here feeds back into the splitting
algebra.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Protocol

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from ..core.errors import InvalidParametersError
from .shamir import Share

ARMOR_BEGIN = "-----BEGIN CHAINLOG SHARE-----"
ARMOR_END = "-----END CHAINLOG SHARE-----"


class ShareEncryptor(Protocol):
    """Protocol for wrapping a share for a named recipient."""

    def encrypt(self, recipient: str, share: Share) -> str:
        """Return an armored ciphertext for ``recipient``."""


@dataclass(frozen=True)
class Recipient:
    name: str
    public_key: bytes

    @classmethod
    def parse(cls, text: str) -> Recipient:
        """Parse ``name:base64-public-key``."""
        name, sep, key_part = text.strip().partition(":")
        if not sep or not name:
            raise InvalidParametersError(
                f"recipient must be name:base64key, got {text!r}"
            )
        try:
            key = base64.b64decode(key_part.strip(), validate=True)
        except ValueError as exc:
            raise InvalidParametersError(
                f"recipient {name!r} has an undecodable key", cause=exc
            ) from exc
        if len(key) != PublicKey.SIZE:
            raise InvalidParametersError(
                f"recipient {name!r} key must be {PublicKey.SIZE} bytes",
                recipient=name,
            )
        return cls(name=name, public_key=key)


def _armor(payload: bytes, recipient: str) -> str:
    body = base64.b64encode(payload).decode("ascii")
    lines = [body[i : i + 64] for i in range(0, len(body), 64)]
    return "\n".join([ARMOR_BEGIN, f"Recipient: {recipient}", "", *lines, ARMOR_END])


def _dearmor(text: str) -> bytes:
    lines = [ln.strip() for ln in text.strip().splitlines()]
    try:
        start = lines.index(ARMOR_BEGIN)
        end = lines.index(ARMOR_END)
    except ValueError as exc:
        raise InvalidParametersError("share is not armored", cause=exc) from exc
    body = [ln for ln in lines[start + 1 : end] if ln and ":" not in ln]
    return base64.b64decode("".join(body))


class SealedBoxEncryptor:
    """ShareEncryptor backed by PyNaCl sealed boxes."""

    def __init__(self, recipients: list[Recipient]) -> None:
        self._keys = {r.name: PublicKey(r.public_key) for r in recipients}

    @property
    def recipients(self) -> list[str]:
        return list(self._keys)

    def encrypt(self, recipient: str, share: Share) -> str:
        key = self._keys.get(recipient)
        if key is None:
            raise InvalidParametersError(
                f"unknown recipient {recipient!r}", recipient=recipient
            )
        sealed = SealedBox(key).encrypt(share.encode().encode("ascii"))
        return _armor(sealed, recipient)


def open_share(armored: str, private_key: bytes) -> Share:
    """Recipient-side inverse of ``SealedBoxEncryptor.encrypt``."""
    try:
        plain = SealedBox(PrivateKey(private_key)).decrypt(_dearmor(armored))
    except CryptoError as exc:
        raise InvalidParametersError("share could not be decrypted", cause=exc) from exc
    return Share.parse(plain.decode("ascii"))
