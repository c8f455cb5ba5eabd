"""
Command-line entry point.

    chainlog init          generate the root secret, split it, seed store and log
    chainlog verify LOG    re-validate a signed log (-s hex|shares or -y)
    chainlog program-token write the root secret to a hardware token
    chainlog run           poll the changelog and sign entries until stopped

Exit codes: 0 success, 1 verification failure, 2 usage or runtime error.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Callable, TextIO

from .bootstrap import DEFAULT_PIECES, DEFAULT_REQUIRED, initialize
from .core.errors import ChainlogError, InvalidParametersError
from .core.settings import Settings, load_settings
from .keying.recipients import Recipient, SealedBoxEncryptor
from .keying.shamir import parse_secret
from .keying.token import HardwareChallenge, YubiKeyTransport
from .service import run_service
from .store.logfile import AppendOnlyLog
from .store.metadata import MetadataStore
from .verifier import ChainVerifier, VerifyReport, secret_from_root, secret_from_token

EXIT_OK = 0
EXIT_VERIFY_FAILED = 1
EXIT_ERROR = 2


def _token(settings: Settings) -> HardwareChallenge:
    transport = YubiKeyTransport(
        slot=settings.token.slot,
        challenge_command=settings.token.challenge_command,
        program_command=settings.token.program_command,
    )
    return HardwareChallenge(transport, timeout=settings.token.timeout_seconds)


def _cmd_init(
    args: argparse.Namespace,
    settings: Settings,
    out: TextIO,
    confirm: Callable[[str], str],
) -> int:
    if not args.yes:
        answer = confirm(
            "This generates a new root secret and a new log. "
            "Type 'yes' to continue: "
        )
        if answer.strip().lower() != "yes":
            out.write("aborted\n")
            return EXIT_ERROR

    encryptor = None
    names: list[str] = []
    if args.recipient:
        parsed = [Recipient.parse(r) for r in args.recipient]
        encryptor = SealedBoxEncryptor(parsed)
        names = [r.name for r in parsed]

    store = MetadataStore(settings.store.sqlite_path)
    try:
        result = initialize(
            store,
            AppendOnlyLog(settings.log.path, file_mode=settings.log.file_mode),
            pieces=args.pieces,
            required=args.required,
            encryptor=encryptor,
            recipients=names,
            token=_token(settings) if args.yubikey else None,
        )
    finally:
        store.close()

    out.write(
        f"Log initialized. {result.required} of {result.pieces} pieces "
        "are required to recover the root secret.\n"
    )
    for share in result.shares:
        out.write(f"piece {share.index}: {share.encode()}\n")
    for name, armored in result.sealed.items():
        out.write(f"\npiece for {name}:\n{armored}\n")
    if args.yubikey:
        state = "programmed" if result.token_programmed else "NOT programmed"
        out.write(f"hardware token {state}\n")
    return EXIT_OK


def _print_report(report: VerifyReport, out: TextIO, err: TextIO) -> None:
    for warning in report.warnings:
        err.write(f"WARNING: {warning}\n")
    failure = report.failure
    if failure is not None:
        err.write(f"Verification failed at line {failure.line}\n")
        err.write(f"Included tag    = {failure.included_tag}\n")
        err.write(f"Calculated tag  = {failure.computed_tag}\n")
        err.write(f"Step            = {failure.step}\n")
        if failure.computed_tag is None:
            err.write(f"Reason          = {failure.message}\n")
        return
    out.write("Log validated ok\n")


def _cmd_verify(
    args: argparse.Namespace, settings: Settings, out: TextIO, err: TextIO
) -> int:
    steps = (
        args.max_elision
        if args.max_elision is not None
        else settings.verify.max_elision_steps
    )
    verifier = ChainVerifier(max_elision_steps=steps)
    if args.yubikey:
        source = secret_from_token(_token(settings))
    elif args.secret:
        root = parse_secret(
            args.secret, check=lambda s: verifier.root_secret_matches(args.path, s)
        )
        source = secret_from_root(root)
    else:
        raise InvalidParametersError("one of --secret or --yubikey is required")
    report = verifier.verify_file(args.path, source)
    _print_report(report, out, err)
    return EXIT_OK if report.ok else EXIT_VERIFY_FAILED


def _cmd_program_token(args: argparse.Namespace, settings: Settings, out: TextIO) -> int:
    check = None
    if args.log:
        verifier = ChainVerifier(max_elision_steps=settings.verify.max_elision_steps)
        check = lambda s: verifier.root_secret_matches(args.log, s)  # noqa: E731
    root = parse_secret(args.secret, check=check)
    _token(settings).program(root)
    out.write(f"wrote secret to hardware token slot {settings.token.slot}\n")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chainlog")
    parser.add_argument("-c", "--config", help="JSON configuration file")
    sub = parser.add_subparsers(dest="command")

    i = sub.add_parser("init", help="Initialize a new signed log")
    i.add_argument("-n", "--pieces", type=int, default=DEFAULT_PIECES)
    i.add_argument("-r", "--required", type=int, default=DEFAULT_REQUIRED)
    i.add_argument(
        "--recipient",
        action="append",
        default=[],
        help="name:base64-curve25519-key; one per piece, seals that piece",
    )
    i.add_argument("-y", "--yubikey", action="store_true", help="Program a token too")
    i.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    v = sub.add_parser("verify", help="Verify a signed log")
    v.add_argument("path")
    v.add_argument("-s", "--secret", help="Root secret as hex, or comma-separated pieces")
    v.add_argument("-y", "--yubikey", action="store_true", help="Use a hardware token")
    v.add_argument("--max-elision", type=int, default=None)

    p = sub.add_parser("program-token", help="Write the root secret to a token")
    p.add_argument("-s", "--secret", required=True)
    p.add_argument("--log", help="Check the secret against this log first")

    sub.add_parser("run", help="Run the ingestion service")
    return parser


def main(
    argv: list[str] | None = None,
    *,
    out: TextIO | None = None,
    err: TextIO | None = None,
    confirm: Callable[[str], str] = input,
) -> int:
    out = out or sys.stdout
    err = err or sys.stderr
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(err)
        return EXIT_ERROR
    try:
        settings = load_settings(args.config)
        if args.command == "init":
            return _cmd_init(args, settings, out, confirm)
        if args.command == "verify":
            return _cmd_verify(args, settings, out, err)
        if args.command == "program-token":
            return _cmd_program_token(args, settings, out)
        asyncio.run(run_service(settings))
        return EXIT_OK
    except ChainlogError as exc:
        err.write(f"chainlog: error: {exc.message}\n")
        return EXIT_ERROR
    except OSError as exc:
        err.write(f"chainlog: error: {exc}\n")
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
