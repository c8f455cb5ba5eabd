from __future__ import annotations

import asyncio
import base64
import io
import json
import re
from pathlib import Path

import pytest
from nacl.public import PrivateKey

from chainlog.cli import EXIT_ERROR, EXIT_OK, EXIT_VERIFY_FAILED, main
from chainlog.ingest.entries import ChangeRecord, validate_record
from chainlog.keying.recipients import open_share
from chainlog.keying.shamir import Share, combine
from chainlog.keying.token import YubiKeyTransport
from chainlog.signer import ChainSigner
from chainlog.store.logfile import AppendOnlyLog
from chainlog.store.metadata import MetadataStore


class Env:
    def __init__(self, tmp_path: Path) -> None:
        self.db = tmp_path / "chainlog.db"
        self.log = tmp_path / "changelog.jsonl"
        self.config = tmp_path / "chainlog.json"
        self.config.write_text(
            json.dumps(
                {"store": {"sqlite_path": str(self.db)}, "log": {"path": str(self.log)}}
            )
        )

    def run(self, *argv: str, confirm=input) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        code = main(["-c", str(self.config), *argv], out=out, err=err, confirm=confirm)
        return code, out.getvalue(), err.getvalue()

    def sign(self, count: int) -> None:
        async def go() -> None:
            store = MetadataStore(self.db)
            try:
                signer = ChainSigner(store, AppendOnlyLog(self.log))
                await signer.start()
                for serial in range(1, count + 1):
                    record = ChangeRecord.build(
                        changenumber=serial,
                        targetdn=f"cn=n{serial}, ou=config, o=smartdc",
                        changetype="add",
                        changes={"value": [str(serial)]},
                    )
                    await signer.sign_and_append(validate_record(record))
            finally:
                store.close()

        asyncio.run(go())


@pytest.fixture
def env(tmp_path: Path) -> Env:
    return Env(tmp_path)


def _pieces(output: str) -> list[str]:
    return re.findall(r"^piece \d+: (\S+)$", output, re.MULTILINE)


def test_init_sign_verify_round(env: Env) -> None:
    code, out, _ = env.run("init", "--yes")
    assert code == EXIT_OK
    assert "2 of 3 pieces" in out
    pieces = _pieces(out)
    assert len(pieces) == 3

    env.sign(5)
    code, out, err = env.run("verify", str(env.log), "-s", ",".join(pieces[1:]))
    assert code == EXIT_OK
    assert out.strip() == "Log validated ok"
    assert err == ""


def test_verify_with_hex_root(env: Env) -> None:
    _, out, _ = env.run("init", "--yes", "-n", "2", "-r", "2")
    root = combine([Share.parse(p) for p in _pieces(out)])
    env.sign(2)
    code, out, _ = env.run("verify", str(env.log), "-s", root.hex())
    assert code == EXIT_OK


def test_single_piece_is_not_enough(env: Env) -> None:
    _, out, _ = env.run("init", "--yes")
    env.sign(1)
    code, _, err = env.run("verify", str(env.log), "-s", _pieces(out)[0])
    assert code == EXIT_ERROR
    assert err.startswith("chainlog: error:")


def test_tampered_log_reports_mismatch(env: Env) -> None:
    _, out, _ = env.run("init", "--yes")
    env.sign(4)
    lines = env.log.read_text().splitlines()
    record = json.loads(lines[3])
    record["changes"] = {"value": ["forged"]}
    lines[3] = json.dumps(record)
    env.log.write_text("\n".join(lines) + "\n")

    code, out, err = env.run("verify", str(env.log), "-s", ",".join(_pieces(out)[:2]))
    assert code == EXIT_VERIFY_FAILED
    assert "Verification failed at line 4" in err
    assert "Included tag    = " + record["tag"] in err
    assert "Calculated tag  = " in err
    assert "Log validated ok" not in out


def _corrupt_line(env: Env, lineno: int, old: bytes, new: bytes) -> None:
    lines = env.log.read_bytes().split(b"\n")
    assert old in lines[lineno - 1]
    lines[lineno - 1] = lines[lineno - 1].replace(old, new, 1)
    env.log.write_bytes(b"\n".join(lines))


def test_invalid_utf8_line_fails_verification(env: Env) -> None:
    _, out, _ = env.run("init", "--yes")
    env.sign(3)
    _corrupt_line(env, 3, b"cn=n2", b"cn=\xff2")

    code, out, err = env.run("verify", str(env.log), "-s", ",".join(_pieces(out)[:2]))
    assert code == EXIT_VERIFY_FAILED
    assert "Verification failed at line 3" in err
    assert "not valid UTF-8" in err
    assert "Traceback" not in err
    assert "Log validated ok" not in out


def test_nan_in_log_fails_verification(env: Env) -> None:
    _, out, _ = env.run("init", "--yes")
    env.sign(3)
    _corrupt_line(env, 3, b'"changenumber":2', b'"changenumber":NaN')

    code, out, err = env.run("verify", str(env.log), "-s", ",".join(_pieces(out)[:2]))
    assert code == EXIT_VERIFY_FAILED
    assert "Verification failed at line 3" in err
    assert "Calculated tag  = None" in err
    assert "Log validated ok" not in out


def test_elided_entries_warn_but_pass(env: Env) -> None:
    _, out, _ = env.run("init", "--yes")
    env.sign(5)
    lines = env.log.read_text().splitlines()
    del lines[2]
    env.log.write_text("\n".join(lines) + "\n")
    code, out2, err = env.run("verify", str(env.log), "-s", ",".join(_pieces(out)[:2]))
    assert code == EXIT_OK
    assert "WARNING: entries appear to have been elided between lines 2 and 3" in err
    assert "Log validated ok" in out2


def test_init_refuses_second_run(env: Env) -> None:
    assert env.run("init", "--yes")[0] == EXIT_OK
    code, _, err = env.run("init", "--yes")
    assert code == EXIT_ERROR
    assert "already initialized" in err


def test_init_prompt_can_abort(env: Env) -> None:
    code, out, _ = env.run("init", confirm=lambda prompt: "no")
    assert code == EXIT_ERROR
    assert "aborted" in out
    assert not env.log.exists()


def test_init_seals_pieces_for_recipients(env: Env) -> None:
    keys = [PrivateKey.generate() for _ in range(3)]
    args = []
    for i, key in enumerate(keys):
        encoded = base64.b64encode(bytes(key.public_key)).decode()
        args += ["--recipient", f"r{i}:{encoded}"]
    code, out, _ = env.run("init", "--yes", *args)
    assert code == EXIT_OK
    assert _pieces(out) == []
    blocks = re.findall(
        r"-----BEGIN CHAINLOG SHARE-----.*?-----END CHAINLOG SHARE-----", out, re.DOTALL
    )
    assert len(blocks) == 3
    shares = [open_share(blocks[i], bytes(keys[i])) for i in (0, 2)]
    env.sign(1)
    code, _, _ = env.run(
        "verify", str(env.log), "-s", ",".join(s.encode() for s in shares)
    )
    assert code == EXIT_OK


def test_verify_needs_a_secret(env: Env) -> None:
    env.run("init", "--yes")
    code, _, err = env.run("verify", str(env.log))
    assert code == EXIT_ERROR
    assert "--secret" in err


def test_no_command_prints_help() -> None:
    err = io.StringIO()
    assert main([], out=io.StringIO(), err=err) == EXIT_ERROR
    assert "usage:" in err.getvalue()


def test_missing_config_file(tmp_path: Path) -> None:
    err = io.StringIO()
    code = main(["-c", str(tmp_path / "nope.json"), "verify", "x"], err=err)
    assert code == EXIT_ERROR
    assert "config file not found" in err.getvalue()


def test_program_token_checks_pieces_against_log(
    env: Env, monkeypatch: pytest.MonkeyPatch
) -> None:
    programmed: list[bytes] = []

    def fake_program(self, secret: bytes, *, timeout: float) -> None:
        programmed.append(secret)

    monkeypatch.setattr(YubiKeyTransport, "program", fake_program)
    _, out, _ = env.run("init", "--yes")
    pieces = _pieces(out)
    env.sign(2)

    code, out, _ = env.run(
        "program-token", "-s", ",".join(pieces[:2]), "--log", str(env.log)
    )
    assert code == EXIT_OK
    assert "slot 2" in out
    assert programmed == [combine([Share.parse(p) for p in pieces[:2]])]

    code, _, err = env.run("program-token", "-s", pieces[0], "--log", str(env.log))
    assert code == EXIT_ERROR
    assert len(programmed) == 1
