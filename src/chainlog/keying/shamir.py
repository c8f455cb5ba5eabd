"""
Threshold splitting of the root secret (Shamir over GF(2^8)).

Each byte of the secret is the constant term of an independent random
polynomial of degree ``r - 1``; share ``x`` holds the evaluations at ``x``.
Any ``r`` shares interpolate the constant terms back; ``r - 1`` shares are
consistent with every possible secret.

The scheme carries no threshold in the shares, so ``combine`` with too few
shares silently yields a wrong value. Callers pass ``check`` (typically a
closure over the log's challenge and first tag) to turn that into an
``InsufficientSharesError``.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Iterable

from ..core.errors import InsufficientSharesError, InvalidParametersError

MAX_SHARES = 255

# GF(2^8) with the AES reduction polynomial x^8 + x^4 + x^3 + x + 1 and
# generator 3.
_EXP = [0] * 512
_LOG = [0] * 256


def _build_tables() -> None:
    x = 1
    for i in range(255):
        _EXP[i] = x
        _LOG[x] = i
        # multiply by the generator (x + 1)
        x ^= (x << 1) ^ (0x11B if x & 0x80 else 0)
        x &= 0xFF
    for i in range(255, 512):
        _EXP[i] = _EXP[i - 255]


_build_tables()


def _mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return _EXP[_LOG[a] + _LOG[b]]


def _div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("division by zero in GF(256)")
    if a == 0:
        return 0
    return _EXP[(_LOG[a] - _LOG[b]) % 255]


def _eval_poly(coeffs: list[int], x: int) -> int:
    # Horner, highest degree first
    result = 0
    for c in reversed(coeffs):
        result = _mul(result, x) ^ c
    return result


@dataclass(frozen=True)
class Share:
    """One fragment of a split secret: evaluation point and payload."""

    index: int
    value: bytes

    def encode(self) -> str:
        return f"{self.index}-{self.value.hex()}"

    @classmethod
    def parse(cls, text: str) -> Share:
        index_part, sep, value_part = text.strip().partition("-")
        if not sep:
            raise InvalidParametersError(f"malformed share: {text!r}")
        try:
            index = int(index_part, 10)
            value = bytes.fromhex(value_part)
        except ValueError as exc:
            raise InvalidParametersError(f"malformed share: {text!r}", cause=exc) from exc
        if not 1 <= index <= MAX_SHARES or not value:
            raise InvalidParametersError(f"malformed share: {text!r}")
        return cls(index=index, value=value)


def split(secret: bytes, n: int, r: int) -> list[Share]:
    """Split ``secret`` into ``n`` shares, any ``r`` of which reconstruct it."""
    if r < 1 or r > n:
        raise InvalidParametersError(
            f"threshold must satisfy 1 <= r <= n (got r={r}, n={n})", n=n, r=r
        )
    if n > MAX_SHARES:
        raise InvalidParametersError(f"at most {MAX_SHARES} shares supported", n=n)
    if not secret:
        raise InvalidParametersError("cannot split an empty secret")

    values = [bytearray(len(secret)) for _ in range(n)]
    for pos, byte in enumerate(secret):
        coeffs = [byte] + list(secrets.token_bytes(r - 1))
        for i in range(n):
            values[i][pos] = _eval_poly(coeffs, i + 1)
    return [Share(index=i + 1, value=bytes(v)) for i, v in enumerate(values)]


def _interpolate_at_zero(points: list[tuple[int, int]]) -> int:
    total = 0
    for i, (xi, yi) in enumerate(points):
        num = 1
        den = 1
        for j, (xj, _) in enumerate(points):
            if i == j:
                continue
            # Lagrange basis at 0: prod xj / (xj - xi); subtraction is xor
            num = _mul(num, xj)
            den = _mul(den, xj ^ xi)
        total ^= _mul(yi, _div(num, den))
    return total


def combine(
    shares: Iterable[Share],
    *,
    check: Callable[[bytes], bool] | None = None,
) -> bytes:
    """Reconstruct the secret from ``shares``.

    ``check`` receives the candidate secret; a falsy result raises
    ``InsufficientSharesError``.
    """
    unique: dict[int, Share] = {}
    for share in shares:
        seen = unique.get(share.index)
        if seen is not None and seen.value != share.value:
            raise InvalidParametersError(
                f"conflicting shares for index {share.index}", index=share.index
            )
        unique[share.index] = share
    if not unique:
        raise InsufficientSharesError("no shares supplied")
    lengths = {len(s.value) for s in unique.values()}
    if len(lengths) != 1:
        raise InvalidParametersError("shares have inconsistent lengths")

    ordered = sorted(unique.values(), key=lambda s: s.index)
    length = lengths.pop()
    secret = bytes(
        _interpolate_at_zero([(s.index, s.value[pos]) for s in ordered])
        for pos in range(length)
    )
    if check is not None and not check(secret):
        raise InsufficientSharesError(
            "reconstructed secret does not match the log; "
            "too few or wrong shares supplied",
            shares=len(ordered),
        )
    return secret


def parse_secret(text: str, *, check: Callable[[bytes], bool] | None = None) -> bytes:
    """Accept a raw hex root secret or comma-separated shares."""
    parts = [p for p in (t.strip() for t in text.split(",")) if p]
    if len(parts) > 1:
        return combine((Share.parse(p) for p in parts), check=check)
    try:
        secret = bytes.fromhex(text.strip())
    except ValueError as exc:
        raise InvalidParametersError("secret must be hex or comma-separated shares", cause=exc) from exc
    if not secret:
        raise InvalidParametersError("empty secret")
    if check is not None and not check(secret):
        raise InsufficientSharesError("supplied secret does not match the log")
    return secret
