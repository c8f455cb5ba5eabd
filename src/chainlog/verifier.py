"""
ChainVerifier: offline re-validation of a signed log.

Starting from ``secret_0`` the verifier walks the log strictly in order,
tracking the current secret and the one before it. For each entry:

- a tag under the current secret is accepted and the secret rotates
- a tag under the previous secret means the secret was not advanced: the
  same tag as the last accepted entry is a benign duplicate, any other tag
  is reported as a ``TagReuseAnomaly``; the secret does not rotate
- otherwise up to ``max_elision_steps`` further rotations are tried; a match
  after rotating is accepted with an ``ElisionAnomaly``
- no match is a terminal ``ChainVerificationMismatch``

Anomalies are collected in the report. Only a report without a failure
that reached the end of the log counts as a pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from .core import diagnostics
from .core.canonical import TAG_FIELD
from .core.chain import compute_tag, derive_initial_secret, next_secret, tags_equal
from .core.errors import (
    ChainAnomaly,
    ChainVerificationMismatch,
    ElisionAnomaly,
    TagReuseAnomaly,
)
from .keying.token import HardwareChallenge
from .store.logfile import AppendOnlyLog, LogFormatError, LogLine

_COMPONENT = "verifier"

DEFAULT_MAX_ELISION_STEPS = 4

SecretSource = Callable[[bytes], bytes]


def secret_from_root(root_secret: bytes) -> SecretSource:
    """secret_0 from a root secret (raw or reconstructed from shares)."""
    return lambda challenge: derive_initial_secret(root_secret, challenge)


def secret_from_token(token: HardwareChallenge) -> SecretSource:
    """secret_0 from a challenge-response token programmed with the root."""
    return token.respond


@dataclass
class VerifyReport:
    entries: int = 0
    duplicates: int = 0
    anomalies: list[ChainAnomaly] = field(default_factory=list)
    failure: ChainVerificationMismatch | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def warnings(self) -> list[str]:
        return [a.message for a in self.anomalies]


class ChainVerifier:
    def __init__(self, *, max_elision_steps: int = DEFAULT_MAX_ELISION_STEPS) -> None:
        if max_elision_steps < 0:
            raise ValueError("max_elision_steps must be >= 0")
        self._max_steps = max_elision_steps

    @property
    def max_elision_steps(self) -> int:
        return self._max_steps

    def verify_lines(self, lines: Iterable[LogLine], secret0: bytes) -> VerifyReport:
        report = VerifyReport()
        cur = secret0
        prev: bytes | None = None
        prev_tag: str | None = None
        prev_line = 1

        entries = iter(lines)
        while True:
            try:
                line = next(entries, None)
            except LogFormatError as exc:
                return self._unreadable(report, exc.message, exc.line or prev_line + 1)
            if line is None:
                break
            record = line.record
            tag = record.get(TAG_FIELD)
            try:
                computed = compute_tag(cur, record)
            except (TypeError, ValueError) as exc:
                return self._unreadable(
                    report, f"line {line.lineno}: entry cannot be encoded: {exc}", line.lineno
                )
            if tags_equal(computed, tag):
                prev, cur = cur, next_secret(cur)
                prev_tag, prev_line = tag, line.lineno
                report.entries += 1
                continue

            if prev is not None and tags_equal(compute_tag(prev, record), tag):
                if tags_equal(tag, prev_tag):
                    report.duplicates += 1
                    continue
                anomaly = TagReuseAnomaly(
                    f"line {line.lineno}: tag produced with the previous secret "
                    "(secret was not rotated)",
                    line=line.lineno,
                    component=_COMPONENT,
                )
                report.anomalies.append(anomaly)
                diagnostics.warn(_COMPONENT, anomaly.message, line=line.lineno)
                continue

            step = 1
            trial = cur
            valid = False
            while step <= self._max_steps and not valid:
                trial = next_secret(trial)
                step += 1
                computed = compute_tag(trial, record)
                valid = tags_equal(computed, tag)

            if not valid:
                report.failure = ChainVerificationMismatch(
                    f"line {line.lineno}: tag mismatch",
                    line=line.lineno,
                    included_tag=tag if isinstance(tag, str) else None,
                    computed_tag=computed,
                    step=step,
                    component=_COMPONENT,
                )
                diagnostics.error(
                    _COMPONENT,
                    "verification failed",
                    line=line.lineno,
                    included_tag=tag,
                    computed_tag=computed,
                    step=step,
                )
                return report

            anomaly = ElisionAnomaly(
                f"entries appear to have been elided between lines "
                f"{prev_line} and {line.lineno}",
                line=line.lineno,
                skipped=step - 1,
                component=_COMPONENT,
            )
            report.anomalies.append(anomaly)
            diagnostics.warn(
                _COMPONENT, anomaly.message, line=line.lineno, skipped=step - 1
            )
            prev, cur = trial, next_secret(trial)
            prev_tag, prev_line = tag, line.lineno
            report.entries += 1

        return report

    def _unreadable(self, report: VerifyReport, message: str, lineno: int) -> VerifyReport:
        report.failure = ChainVerificationMismatch(
            message,
            line=lineno,
            included_tag=None,
            computed_tag=None,
            step=0,
            component=_COMPONENT,
        )
        diagnostics.error(_COMPONENT, "verification failed", line=lineno, reason=message)
        return report

    def verify_file(self, path: str | Path, secret_source: SecretSource) -> VerifyReport:
        log = AppendOnlyLog(path)
        secret0 = secret_source(log.read_challenge())
        return self.verify_lines(log.lines(), secret0)

    def root_secret_matches(self, path: str | Path, root_secret: bytes) -> bool:
        """Fingerprint check: does ``root_secret`` explain the first tagged entry?

        Tolerates the same elision bound as verification. A log without
        entries cannot disprove anything and passes.
        """
        log = AppendOnlyLog(path)
        secret = derive_initial_secret(root_secret, log.read_challenge())
        try:
            first = next(log.lines(), None)
        except LogFormatError:
            # unreadable entries are reported by verification itself
            return True
        if first is None:
            return True
        tag = first.record.get(TAG_FIELD)
        for _ in range(self._max_steps + 1):
            if tags_equal(compute_tag(secret, first.record), tag):
                return True
            secret = next_secret(secret)
        return False
