from __future__ import annotations

import hashlib
import hmac
import subprocess
from typing import Any

import pytest

from chainlog.core.chain import derive_initial_secret
from chainlog.core.errors import TokenDeclined, TokenTimeout, TokenUnavailable
from chainlog.keying.token import HardwareChallenge, YubiKeyTransport


class FakeToken:
    """In-memory HMAC-SHA1 challenge-response token."""

    def __init__(self) -> None:
        self.key: bytes | None = None
        self.timeouts: list[float] = []

    def challenge_response(self, challenge: bytes, *, timeout: float) -> bytes:
        self.timeouts.append(timeout)
        if self.key is None:
            raise TokenUnavailable("not programmed")
        return hmac.new(self.key, challenge, hashlib.sha1).digest()

    def program(self, secret: bytes, *, timeout: float) -> None:
        self.key = secret


def test_programmed_token_answers_secret0() -> None:
    token = FakeToken()
    hc = HardwareChallenge(token, timeout=12.5)
    root = b"r" * 20
    challenge = b"c" * 32
    hc.program(root)
    assert hc.respond(challenge) == derive_initial_secret(root, challenge)
    assert token.timeouts == [12.5]


class _Completed:
    def __init__(self, returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _patch_run(monkeypatch: pytest.MonkeyPatch, fn: Any) -> list[list[str]]:
    calls: list[list[str]] = []

    def fake_run(argv: list[str], **kwargs: Any) -> Any:
        calls.append(argv)
        assert kwargs["timeout"] == 5.0
        return fn(argv)

    monkeypatch.setattr(subprocess, "run", fake_run)
    return calls


def test_yubikey_challenge_response_argv(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_run(monkeypatch, lambda argv: _Completed(0, stdout="0a0b0c\n"))
    transport = YubiKeyTransport(slot=2)
    assert transport.challenge_response(b"\x01\x02", timeout=5.0) == b"\x0a\x0b\x0c"
    assert calls == [["ykchalresp", "-2", "-H", "-x", "0102"]]


def test_yubikey_program_argv(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_run(monkeypatch, lambda argv: _Completed(0))
    YubiKeyTransport(slot=2).program(b"\xaa\xbb", timeout=5.0)
    assert calls == [
        [
            "ykpersonalize",
            "-2",
            "-aaabb",
            "-ochal-resp",
            "-ochal-hmac",
            "-ochal-btn-trig",
            "-ohmac-lt64",
            "-y",
        ]
    ]


def test_missing_tool_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(argv: list[str]) -> Any:
        raise FileNotFoundError(argv[0])

    _patch_run(monkeypatch, boom)
    with pytest.raises(TokenUnavailable):
        YubiKeyTransport().challenge_response(b"x", timeout=5.0)


def test_absent_device_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_run(
        monkeypatch,
        lambda argv: _Completed(1, stderr="Yubikey core error: no yubikey present"),
    )
    with pytest.raises(TokenUnavailable):
        YubiKeyTransport().challenge_response(b"x", timeout=5.0)


def test_refusal_is_declined(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_run(monkeypatch, lambda argv: _Completed(1, stderr="operation refused"))
    with pytest.raises(TokenDeclined):
        YubiKeyTransport().challenge_response(b"x", timeout=5.0)


def test_no_touch_is_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    def slow(argv: list[str]) -> Any:
        raise subprocess.TimeoutExpired(argv, 5.0)

    _patch_run(monkeypatch, slow)
    with pytest.raises(TokenTimeout):
        YubiKeyTransport().challenge_response(b"x", timeout=5.0)


def test_garbage_response_is_declined(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_run(monkeypatch, lambda argv: _Completed(0, stdout="not hex"))
    with pytest.raises(TokenDeclined):
        YubiKeyTransport().challenge_response(b"x", timeout=5.0)
