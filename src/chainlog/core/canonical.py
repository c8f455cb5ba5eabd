"""
Canonical serialization and base64 helpers for the signed log.

``canonicalize`` is a correctness-critical contract shared verbatim by the
signer and the verifier: a tag is only reproducible if both sides produce
the same bytes for the same entry. The encoding therefore pins down every
degree of freedom JSON leaves open:

- keys sorted lexicographically at every nesting level
- compact separators, no insignificant whitespace
- UTF-8 output without ASCII escaping
- NaN/Infinity rejected (no portable JSON spelling)
- the ``tag`` field excluded

Changing any of these invalidates every existing log.
"""

from __future__ import annotations

import base64
import json
import math
from typing import Any, Mapping

TAG_FIELD = "tag"


def canonicalize(entry: Mapping[str, Any]) -> bytes:
    """Produce the deterministic byte encoding of ``entry`` minus its tag."""
    payload = {k: v for k, v in entry.items() if k != TAG_FIELD}
    serialized = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return serialized.encode("utf-8")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} is not allowed")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number {text} is out of range")
    return value


def decode_json(data: str | bytes) -> Any:
    """Parse JSON, refusing anything ``canonicalize`` could not encode back.

    Raises ``ValueError`` for invalid JSON and for NaN, Infinity or
    overflowing numbers.
    """
    return json.loads(data, parse_constant=_reject_constant, parse_float=_finite_float)


def encode_line(record: Mapping[str, Any]) -> bytes:
    """Encode a full log record (tag included) as one newline-terminated line."""
    serialized = json.dumps(
        dict(record),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return serialized.encode("utf-8") + b"\n"


def b64encode(data: bytes) -> str:
    """Standard base64 with padding."""
    return base64.b64encode(data).decode("ascii")


def b64decode(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"), validate=True)
