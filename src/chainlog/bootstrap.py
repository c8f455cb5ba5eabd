"""
One-time initialization of a log and its metadata store.

Generates the root secret and the log challenge, derives ``secret_0``,
splits the root into shares (optionally sealing each to a recipient),
optionally programs a hardware token with it, writes the log header and
seeds the store. The root secret is never persisted; after this returns
only the shares and the token can reproduce it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .core import diagnostics
from .core.canonical import b64encode
from .core.chain import derive_initial_secret, generate_challenge, generate_root_secret
from .core.errors import AlreadyInitializedError, InvalidParametersError, TokenError
from .keying.recipients import ShareEncryptor
from .keying.shamir import Share, split
from .keying.token import HardwareChallenge
from .store.logfile import AppendOnlyLog
from .store.metadata import (
    KEY_CHALLENGE,
    KEY_INITIAL_SYNC,
    KEY_SECRET,
    KEY_SERIAL,
    MetadataStore,
)

_COMPONENT = "bootstrap"

DEFAULT_PIECES = 3
DEFAULT_REQUIRED = 2


@dataclass
class BootstrapResult:
    challenge: bytes
    pieces: int
    required: int
    shares: list[Share] = field(default_factory=list)
    sealed: dict[str, str] = field(default_factory=dict)
    token_programmed: bool = False


def initialize(
    store: MetadataStore,
    log: AppendOnlyLog,
    *,
    pieces: int = DEFAULT_PIECES,
    required: int = DEFAULT_REQUIRED,
    encryptor: ShareEncryptor | None = None,
    recipients: Sequence[str] = (),
    token: HardwareChallenge | None = None,
) -> BootstrapResult:
    if store.is_initialized():
        raise AlreadyInitializedError(
            f"metadata store {store.path} is already initialized",
            component=_COMPONENT,
        )
    if log.has_content():
        raise AlreadyInitializedError(
            f"log file {log.path} already has content", component=_COMPONENT
        )
    if recipients and len(recipients) != pieces:
        raise InvalidParametersError(
            f"{len(recipients)} recipients given for {pieces} pieces",
            component=_COMPONENT,
        )
    if recipients and encryptor is None:
        raise InvalidParametersError("recipients given without an encryptor")

    root = generate_root_secret()
    challenge = generate_challenge()
    shares = split(root, pieces, required)
    result = BootstrapResult(challenge=challenge, pieces=pieces, required=required)
    if recipients and encryptor is not None:
        result.sealed = {
            name: encryptor.encrypt(name, share) for name, share in zip(recipients, shares)
        }
    else:
        result.shares = shares

    if token is not None:
        try:
            token.program(root)
            result.token_programmed = True
        except TokenError as exc:
            diagnostics.warn(
                _COMPONENT,
                "failed to program hardware token; shares remain the only recovery path",
                error=exc.message,
            )

    log.create(challenge)
    with store.transaction():
        store.put(KEY_CHALLENGE, b64encode(challenge))
        store.put(KEY_SECRET, b64encode(derive_initial_secret(root, challenge)))
        store.put(KEY_SERIAL, "-1")
        store.put(KEY_INITIAL_SYNC, "1")
    diagnostics.info(
        _COMPONENT,
        "log initialized",
        log=str(log.path),
        pieces=pieces,
        required=required,
        token=result.token_programmed,
    )
    return result
