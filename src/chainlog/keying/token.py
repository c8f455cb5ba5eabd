"""
HardwareChallenge: derive secret_0 from a challenge via an external token.

The token holds an HMAC-SHA1 key that never leaves the device. ``respond``
sends the log challenge and returns the token's HMAC, which equals
``derive_initial_secret(root, challenge)`` when the token was programmed
with ``root``. The exchange may wait on a physical touch, so every call is
bounded by an explicit timeout and reports ``TokenTimeout`` separately from
``TokenDeclined`` and ``TokenUnavailable``.
"""

from __future__ import annotations

import subprocess
from typing import Protocol, Sequence

from ..core import diagnostics
from ..core.errors import TokenDeclined, TokenTimeout, TokenUnavailable

_COMPONENT = "token"


class TokenTransport(Protocol):
    """Request/response exchange with a challenge-response token."""

    def challenge_response(self, challenge: bytes, *, timeout: float) -> bytes:
        """Send ``challenge`` and return the token's HMAC."""

    def program(self, secret: bytes, *, timeout: float) -> None:
        """Install ``secret`` as the token's HMAC key."""


def _looks_absent(stderr: str) -> bool:
    text = stderr.lower()
    return "no yubikey" in text or "not found" in text or "no device" in text


class YubiKeyTransport:
    """Transport driving the ``ykchalresp`` / ``ykpersonalize`` tools."""

    def __init__(
        self,
        *,
        slot: int = 2,
        challenge_command: str = "ykchalresp",
        program_command: str = "ykpersonalize",
    ) -> None:
        self._slot = slot
        self._challenge_command = challenge_command
        self._program_command = program_command

    def _run(self, argv: Sequence[str], timeout: float) -> str:
        try:
            proc = subprocess.run(
                list(argv),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise TokenUnavailable(
                f"{argv[0]} not installed", cause=exc, component=_COMPONENT
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise TokenTimeout(
                f"token did not answer within {timeout:g}s",
                cause=exc,
                component=_COMPONENT,
                timeout_seconds=timeout,
            ) from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            error_cls = TokenUnavailable if _looks_absent(stderr) else TokenDeclined
            raise error_cls(
                f"{argv[0]} failed: {stderr or 'exit ' + str(proc.returncode)}",
                component=_COMPONENT,
                returncode=proc.returncode,
            )
        return proc.stdout

    def challenge_response(self, challenge: bytes, *, timeout: float) -> bytes:
        out = self._run(
            [self._challenge_command, f"-{self._slot}", "-H", "-x", challenge.hex()],
            timeout,
        )
        try:
            return bytes.fromhex(out.strip())
        except ValueError as exc:
            raise TokenDeclined(
                "token returned a non-hex response", cause=exc, component=_COMPONENT
            ) from exc

    def program(self, secret: bytes, *, timeout: float) -> None:
        self._run(
            [
                self._program_command,
                f"-{self._slot}",
                f"-a{secret.hex()}",
                "-ochal-resp",
                "-ochal-hmac",
                "-ochal-btn-trig",
                "-ohmac-lt64",
                "-y",
            ],
            timeout,
        )


class HardwareChallenge:
    """Secret derivation through a challenge-response token."""

    def __init__(self, transport: TokenTransport, *, timeout: float = 60.0) -> None:
        self._transport = transport
        self._timeout = timeout

    def respond(self, challenge: bytes) -> bytes:
        diagnostics.info(_COMPONENT, "waiting for token response (touch may be required)")
        response = self._transport.challenge_response(challenge, timeout=self._timeout)
        if not response:
            raise TokenDeclined("token returned an empty response", component=_COMPONENT)
        return response

    def program(self, secret: bytes) -> None:
        """Provision ``secret`` onto the token, replacing any prior key."""
        self._transport.program(secret, timeout=self._timeout)
        diagnostics.info(_COMPONENT, "token programmed")
