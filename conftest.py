"""
Root pytest configuration.
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from chainlog.bootstrap import BootstrapResult, initialize
from chainlog.ingest.entries import ChangeRecord
from chainlog.keying.shamir import combine
from chainlog.store.logfile import AppendOnlyLog
from chainlog.store.metadata import MetadataStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "critical: Tests that must never fail - chain integrity",
    )
    config.addinivalue_line(
        "markers",
        "security: Security-critical tests (secrets, shares, tamper detection)",
    )
    config.addinivalue_line(
        "markers",
        "integration: End-to-end tests across bootstrap, ingest and verify",
    )
    config.addinivalue_line(
        "markers",
        "property: Property-based tests (may be slow)",
    )


@pytest.fixture(autouse=True)
def reset_diagnostics_cache() -> Generator[None, None, None]:
    """Drop cached component loggers so each test gets fresh ones."""
    import chainlog.core.diagnostics as diag

    diag._loggers.clear()
    yield
    diag._loggers.clear()


@dataclass
class Bootstrapped:
    store: MetadataStore
    log: AppendOnlyLog
    root: bytes
    result: BootstrapResult


@pytest.fixture
def bootstrapped(tmp_path: Path) -> Generator[Bootstrapped, None, None]:
    """A freshly initialized store and log, plus the recovered root secret."""
    store = MetadataStore(tmp_path / "chainlog.db")
    log = AppendOnlyLog(tmp_path / "changelog.jsonl")
    result = initialize(store, log, pieces=3, required=2)
    root = combine(result.shares[:2])
    yield Bootstrapped(store=store, log=log, root=root, result=result)
    store.close()


class Feed:
    """Factories for realistic changelog records."""

    suffix = "o=smartdc"

    @staticmethod
    def user_dn(uuid: str) -> str:
        return f"uuid={uuid}, ou=users, o=smartdc"

    @classmethod
    def user_add(
        cls,
        serial: int,
        uuid: str,
        *,
        login: str | None = None,
        email: str | None = None,
        password: str = "hash-1",
        status: str | None = None,
    ) -> ChangeRecord:
        changes: dict[str, Any] = {
            "objectclass": ["sdcperson"],
            "login": [login or f"user-{uuid}"],
            "email": [email or f"{uuid}@example.com"],
            "userpassword": [password],
        }
        if status is not None:
            changes["status"] = [status]
        return ChangeRecord.build(
            changenumber=serial,
            targetdn=cls.user_dn(uuid),
            changetype="add",
            changes=changes,
        )

    @classmethod
    def user_modify(
        cls, serial: int, uuid: str, pre: dict[str, Any], **attrs: str
    ) -> ChangeRecord:
        changes = [
            {"operation": "replace", "modification": {"type": k, "vals": [v]}}
            for k, v in attrs.items()
        ]
        return ChangeRecord.build(
            changenumber=serial,
            targetdn=cls.user_dn(uuid),
            changetype="modify",
            changes=changes,
            entry=pre,
        )

    @classmethod
    def group_add_member(cls, serial: int, group: str, uuid: str) -> ChangeRecord:
        return ChangeRecord.build(
            changenumber=serial,
            targetdn=f"cn={group}, ou=groups, o=smartdc",
            changetype="modify",
            changes=[
                {
                    "operation": "add",
                    "modification": {"type": "uniquemember", "vals": [cls.user_dn(uuid)]},
                }
            ],
            entry={"cn": [group]},
        )

    @staticmethod
    def noise(serial: int) -> ChangeRecord:
        """A change outside any projected subtree."""
        return ChangeRecord.build(
            changenumber=serial,
            targetdn=f"cn=setting-{serial}, ou=config, o=smartdc",
            changetype="add",
            changes={"objectclass": ["config"], "value": [str(serial)]},
        )


@pytest.fixture
def feed() -> type[Feed]:
    return Feed
