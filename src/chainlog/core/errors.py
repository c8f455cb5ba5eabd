"""
Standardized error types for chainlog.

Every error raised by the signer, verifier, ingestor and bootstrap paths
derives from ``ChainlogError`` and carries an ``ErrorContext`` describing
its category, severity and the recovery strategy an operator (or the
polling loop) should apply.

Recovery summary:
- ``ConfigurationError``: fatal, abort startup
- ``LogContinuityError``: fatal to the ingestion run, operator intervention
- ``MalformedEntryError`` / ``SignCommitError``: abort the batch, retried on
  the next poll tick from the last committed serial
- ``StaleEntryError``: local recovery, the entry is dropped
- ``ChainVerificationMismatch``: terminal for the verifier
- ``ChainAnomaly`` subclasses: collected as warnings, never raised
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Broad classification used for alert routing."""

    CONFIGURATION = "configuration"
    BOOTSTRAP = "bootstrap"
    HARDWARE = "hardware"
    INGEST = "ingest"
    SIGNING = "signing"
    VERIFICATION = "verification"
    PROJECTION = "projection"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorRecoveryStrategy(str, Enum):
    NONE = "none"  # Terminal, stop and report
    SKIP = "skip"  # Drop the offending item, continue
    NEXT_POLL = "next_poll"  # Abort the pass, next poll tick retries
    OPERATOR = "operator"  # Requires manual intervention


@dataclass
class ErrorContext:
    """Structured context captured when an error is created."""

    error_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    category: ErrorCategory = ErrorCategory.INGEST
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    recovery_strategy: ErrorRecoveryStrategy = ErrorRecoveryStrategy.NONE
    component: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "category": self.category.value,
            "severity": self.severity.value,
            "recovery_strategy": self.recovery_strategy.value,
            "component": self.component,
            "details": dict(self.details),
        }


class ChainlogError(Exception):
    """Base class for all chainlog errors."""

    default_category: ErrorCategory = ErrorCategory.INGEST
    default_severity: ErrorSeverity = ErrorSeverity.MEDIUM
    default_recovery: ErrorRecoveryStrategy = ErrorRecoveryStrategy.NONE

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        severity: ErrorSeverity | None = None,
        recovery_strategy: ErrorRecoveryStrategy | None = None,
        component: str | None = None,
        cause: BaseException | None = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            category=category or self.default_category,
            severity=severity or self.default_severity,
            recovery_strategy=recovery_strategy or self.default_recovery,
            component=component,
            details=details,
        )
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": self.context.to_dict(),
        }
        if self.__cause__ is not None:
            data["cause"] = repr(self.__cause__)
        return data


class ConfigurationError(ChainlogError):
    default_category = ErrorCategory.CONFIGURATION
    default_severity = ErrorSeverity.CRITICAL
    default_recovery = ErrorRecoveryStrategy.OPERATOR


class AlreadyInitializedError(ChainlogError):
    """Bootstrap refused: the store or the log already holds state."""

    default_category = ErrorCategory.BOOTSTRAP
    default_severity = ErrorSeverity.HIGH
    default_recovery = ErrorRecoveryStrategy.OPERATOR


class InvalidParametersError(ChainlogError):
    """Threshold parameters outside ``1 <= r <= n`` (or similar misuse)."""

    default_category = ErrorCategory.BOOTSTRAP
    default_severity = ErrorSeverity.HIGH


class InsufficientSharesError(ChainlogError):
    """Shares did not reconstruct a root secret consistent with the log."""

    default_category = ErrorCategory.BOOTSTRAP
    default_severity = ErrorSeverity.HIGH
    default_recovery = ErrorRecoveryStrategy.OPERATOR


class TokenError(ChainlogError):
    default_category = ErrorCategory.HARDWARE
    default_severity = ErrorSeverity.HIGH
    default_recovery = ErrorRecoveryStrategy.OPERATOR


class TokenUnavailable(TokenError):
    """No token present, or the transport tooling is missing."""


class TokenDeclined(TokenError):
    """The token refused the request (no touch, wrong slot, ...)."""


class TokenTimeout(TokenError):
    """The token did not answer within the configured timeout."""


class LogContinuityError(ChainlogError):
    """The feed no longer retains the last committed serial."""

    default_category = ErrorCategory.INGEST
    default_severity = ErrorSeverity.CRITICAL
    default_recovery = ErrorRecoveryStrategy.OPERATOR


class MalformedEntryError(ChainlogError):
    default_category = ErrorCategory.INGEST
    default_severity = ErrorSeverity.HIGH
    default_recovery = ErrorRecoveryStrategy.NEXT_POLL


class StaleEntryError(ChainlogError):
    """Entry serial is not beyond the committed serial; already applied."""

    default_category = ErrorCategory.SIGNING
    default_severity = ErrorSeverity.LOW
    default_recovery = ErrorRecoveryStrategy.SKIP


class SignCommitError(ChainlogError):
    """Append or metadata commit failed during the atomic sign step."""

    default_category = ErrorCategory.SIGNING
    default_severity = ErrorSeverity.CRITICAL
    default_recovery = ErrorRecoveryStrategy.NEXT_POLL


class ProjectionError(ChainlogError):
    """Downstream projection could not apply an already-signed entry."""

    default_category = ErrorCategory.PROJECTION
    default_severity = ErrorSeverity.HIGH
    default_recovery = ErrorRecoveryStrategy.SKIP


class ChainVerificationMismatch(ChainlogError):
    """Terminal verification failure at a given log line."""

    default_category = ErrorCategory.VERIFICATION
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        *,
        line: int,
        included_tag: str | None,
        computed_tag: str | None,
        step: int,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.line = line
        self.included_tag = included_tag
        self.computed_tag = computed_tag
        self.step = step


class ChainAnomaly(ChainlogError):
    """Non-fatal verification finding; collected rather than raised."""

    default_category = ErrorCategory.VERIFICATION
    default_severity = ErrorSeverity.LOW

    def __init__(self, message: str, *, line: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.line = line


class TagReuseAnomaly(ChainAnomaly):
    """A tag was produced with a secret that should already have rotated."""


class ElisionAnomaly(ChainAnomaly):
    """Entries appear to be missing before the given line."""

    def __init__(
        self, message: str, *, line: int, skipped: int, **kwargs: Any
    ) -> None:
        super().__init__(message, line=line, **kwargs)
        self.skipped = skipped


__all__ = [
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorRecoveryStrategy",
    "ErrorContext",
    "ChainlogError",
    "ConfigurationError",
    "AlreadyInitializedError",
    "InvalidParametersError",
    "InsufficientSharesError",
    "TokenError",
    "TokenUnavailable",
    "TokenDeclined",
    "TokenTimeout",
    "LogContinuityError",
    "MalformedEntryError",
    "StaleEntryError",
    "SignCommitError",
    "ProjectionError",
    "ChainVerificationMismatch",
    "ChainAnomaly",
    "TagReuseAnomaly",
    "ElisionAnomaly",
]
