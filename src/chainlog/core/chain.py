"""
Hash-chain primitives.

The chain secret for entry ``i`` is ``secret_i``; after tagging an entry it
is replaced by ``OneWayHash(secret_i)``, so holding the current secret
never reveals an earlier one. The first secret is bound to the log's
challenge:

    secret_0 = HMAC-SHA1(root_secret, challenge)

HMAC-SHA1 matches the challenge-response function of the hardware token,
so a token programmed with the root secret answers the same ``secret_0``.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Any, Mapping

from .canonical import b64encode, canonicalize

ROOT_SECRET_BYTES = 20
CHALLENGE_BYTES = 32


def generate_root_secret() -> bytes:
    return secrets.token_bytes(ROOT_SECRET_BYTES)


def generate_challenge() -> bytes:
    return secrets.token_bytes(CHALLENGE_BYTES)


def derive_initial_secret(root_secret: bytes, challenge: bytes) -> bytes:
    """Derive ``secret_0`` from the root secret and the log challenge."""
    return hmac.new(root_secret, challenge, hashlib.sha1).digest()


def next_secret(secret: bytes) -> bytes:
    """One-way rotation applied after every committed entry."""
    return hashlib.sha1(secret).digest()


def advance(secret: bytes, steps: int) -> bytes:
    for _ in range(steps):
        secret = next_secret(secret)
    return secret


def compute_tag(secret: bytes, entry: Mapping[str, Any]) -> str:
    """HMAC-SHA256 over the canonical encoding, base64 encoded."""
    return b64encode(hmac.new(secret, canonicalize(entry), hashlib.sha256).digest())


def tags_equal(a: Any, b: Any) -> bool:
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(a.encode("ascii", "replace"), b.encode("ascii", "replace"))
