"""
chainlog: forward-secure, hash-chained audit log of directory changes.

Public API:
- ChainSigner / ChainVerifier: sign and re-validate the log
- ChangelogIngestor: poll the change feed and feed the signer in order
- split / combine / HardwareChallenge: root secret lifecycle
- initialize: one-time bootstrap
"""

from __future__ import annotations

from ._version import __version__
from .bootstrap import BootstrapResult, initialize
from .core.canonical import canonicalize
from .core.chain import compute_tag, derive_initial_secret, next_secret
from .core.errors import ChainlogError
from .core.settings import Settings, load_settings
from .ingest.ingestor import ChangelogIngestor
from .keying.shamir import Share, combine, split
from .keying.token import HardwareChallenge
from .signer import ChainSigner
from .verifier import ChainVerifier, VerifyReport

__all__ = [
    "__version__",
    "BootstrapResult",
    "initialize",
    "canonicalize",
    "compute_tag",
    "derive_initial_secret",
    "next_secret",
    "ChainlogError",
    "Settings",
    "load_settings",
    "ChangelogIngestor",
    "Share",
    "combine",
    "split",
    "HardwareChallenge",
    "ChainSigner",
    "ChainVerifier",
    "VerifyReport",
]
