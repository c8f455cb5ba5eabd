"""
Core building blocks: errors, settings, canonical encoding and chain math.
"""

from .canonical import b64decode, b64encode, canonicalize, decode_json, encode_line
from .chain import (
    CHALLENGE_BYTES,
    ROOT_SECRET_BYTES,
    compute_tag,
    derive_initial_secret,
    generate_challenge,
    generate_root_secret,
    next_secret,
)
from .errors import (
    AlreadyInitializedError,
    ChainAnomaly,
    ChainlogError,
    ChainVerificationMismatch,
    ConfigurationError,
    ElisionAnomaly,
    ErrorCategory,
    ErrorRecoveryStrategy,
    ErrorSeverity,
    InsufficientSharesError,
    InvalidParametersError,
    LogContinuityError,
    MalformedEntryError,
    ProjectionError,
    SignCommitError,
    StaleEntryError,
    TagReuseAnomaly,
    TokenDeclined,
    TokenError,
    TokenTimeout,
    TokenUnavailable,
)
from .settings import Settings, load_settings

__all__ = [
    "CHALLENGE_BYTES",
    "ROOT_SECRET_BYTES",
    "b64decode",
    "b64encode",
    "canonicalize",
    "decode_json",
    "encode_line",
    "compute_tag",
    "derive_initial_secret",
    "generate_challenge",
    "generate_root_secret",
    "next_secret",
    "ChainAnomaly",
    "ChainlogError",
    "ChainVerificationMismatch",
    "ConfigurationError",
    "ElisionAnomaly",
    "ErrorCategory",
    "ErrorRecoveryStrategy",
    "ErrorSeverity",
    "InsufficientSharesError",
    "AlreadyInitializedError",
    "InvalidParametersError",
    "LogContinuityError",
    "MalformedEntryError",
    "ProjectionError",
    "SignCommitError",
    "StaleEntryError",
    "TagReuseAnomaly",
    "TokenDeclined",
    "TokenError",
    "TokenTimeout",
    "TokenUnavailable",
    "Settings",
    "load_settings",
]
