from __future__ import annotations

import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from chainlog.core.errors import ProjectionError
from chainlog.ingest.dn import DnClassifier
from chainlog.ingest.entries import ChangeRecord, validate_record
from chainlog.notify.models import Audience
from chainlog.store.projection import ProjectionUpdater, describe_ssh_key


@pytest.fixture
def projection(bootstrapped) -> ProjectionUpdater:
    return ProjectionUpdater(bootstrapped.store, DnClassifier())


def _apply(projection: ProjectionUpdater, record: ChangeRecord):
    return projection.apply(validate_record(record))


def _openssh(comment: str = "me@laptop") -> str:
    key = ed25519.Ed25519PrivateKey.generate().public_key()
    line = key.public_bytes(Encoding.OpenSSH, PublicFormat.OpenSSH).decode()
    return f"{line} {comment}"


def _key_record(serial: int, uuid: str, fp: str, changetype: str = "add", **changes):
    body = {"objectclass": ["sdckey"], "fingerprint": [fp], **changes}
    return ChangeRecord.build(
        changenumber=serial,
        targetdn=f"fingerprint={fp}, uuid={uuid}, ou=users, o=smartdc",
        changetype=changetype,
        changes=body if changetype != "modify" else [],
        entry=None if changetype != "modify" else {"fingerprint": [fp]},
    )


def _delete(serial: int, dn: str) -> ChangeRecord:
    return ChangeRecord.build(
        changenumber=serial, targetdn=dn, changetype="delete", changes={}
    )


def test_user_add_is_silent_and_stored(projection, feed) -> None:
    notes = _apply(projection, feed.user_add(1, "u1", login="alice", status="active"))
    assert notes == []
    row = projection.user("u1")
    assert row["login"] == "alice"
    assert row["email"] == "u1@example.com"
    assert row["status"] == "active"
    assert row["operator"] == 0 and row["reader"] == 0


def test_user_add_requires_person_objectclass(projection) -> None:
    record = ChangeRecord.build(
        changenumber=1,
        targetdn="uuid=u1, ou=users, o=smartdc",
        changetype="add",
        changes={"objectclass": ["sdcaccountpolicy"]},
    )
    with pytest.raises(ProjectionError):
        _apply(projection, record)
    assert projection.user("u1") is None


def test_password_change_notifies_user_only(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1", login="alice"))
    notes = _apply(projection, feed.user_modify(2, "u1", {}, userpassword="hash-2"))
    assert [n.kind for n in notes] == ["pw-changed"]
    assert notes[0].audience is Audience.USER
    assert notes[0].to == ("u1@example.com",)
    assert projection.user("u1")["userpassword"] == "hash-2"


def test_unchanged_value_is_not_a_change(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1", password="same"))
    assert _apply(projection, feed.user_modify(2, "u1", {}, userpassword="same")) == []


def test_operator_changes_copy_the_operators(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1", login="root-ish"))
    promoted = _apply(projection, feed.group_add_member(2, "operators", "u1"))
    assert [n.kind for n in promoted] == ["new-operator"]
    assert promoted[0].audience is Audience.OPERATORS
    assert projection.user("u1")["operator"] == 1

    notes = _apply(
        projection,
        feed.user_modify(3, "u1", {}, email="new@example.com", login="renamed"),
    )
    kinds = [n.kind for n in notes]
    assert kinds == ["changed-login", "email-changed", "oper-email-changed"]
    email = notes[1]
    assert email.to == ("u1@example.com", "new@example.com")
    row = projection.user("u1")
    assert row["email"] == "new@example.com" and row["login"] == "renamed"


def test_readers_group_sets_reader_flag(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1"))
    _apply(projection, feed.group_add_member(2, "readers", "u1"))
    row = projection.user("u1")
    assert row["reader"] == 1 and row["operator"] == 0
    # repeated membership is a no-op
    assert _apply(projection, feed.group_add_member(3, "readers", "u1")) == []


def test_group_member_removal(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1"))
    _apply(projection, feed.group_add_member(2, "operators", "u1"))
    record = ChangeRecord.build(
        changenumber=3,
        targetdn="cn=operators, ou=groups, o=smartdc",
        changetype="modify",
        changes=[
            {
                "operation": "delete",
                "modification": {"type": "uniquemember", "vals": [feed.user_dn("u1")]},
            }
        ],
        entry={"cn": ["operators"]},
    )
    notes = _apply(projection, record)
    assert [n.kind for n in notes] == ["deleted-operator"]
    assert projection.user("u1")["operator"] == 0


def test_group_add_of_unknown_member_fails(projection, feed) -> None:
    with pytest.raises(ProjectionError):
        _apply(projection, feed.group_add_member(1, "operators", "ghost"))


def test_group_created_with_members(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1"))
    record = ChangeRecord.build(
        changenumber=2,
        targetdn="cn=operators, ou=groups, o=smartdc",
        changetype="add",
        changes={"objectclass": ["groupofuniquenames"], "uniquemember": [feed.user_dn("u1")]},
    )
    assert [n.kind for n in _apply(projection, record)] == ["new-operator"]


def test_unknown_user_modify_and_delete_fail(projection, feed) -> None:
    with pytest.raises(ProjectionError):
        _apply(projection, feed.user_modify(1, "ghost", {}, email="x@example.com"))
    with pytest.raises(ProjectionError):
        _apply(projection, _delete(2, feed.user_dn("ghost")))


def test_operator_delete_notifies(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1", login="alice"))
    _apply(projection, feed.group_add_member(2, "operators", "u1"))
    notes = _apply(projection, _delete(3, feed.user_dn("u1")))
    assert [n.kind for n in notes] == ["deleted-operator"]
    assert projection.user("u1") is None


def test_key_add_and_delete(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1", login="alice"))
    fp = "aa:bb:cc"
    notes = _apply(
        projection,
        _key_record(2, "u1", fp, name=["laptop"], openssh=[_openssh("alice@laptop")]),
    )
    assert [n.kind for n in notes] == ["added-key"]
    assert "ED25519 256-bit key 'laptop' aa:bb:cc (alice@laptop)" in notes[0].body
    assert [r["fingerprint"] for r in projection.keys("u1")] == [fp]

    notes = _apply(projection, _key_record(3, "u1", fp, changetype="delete"))
    assert [n.kind for n in notes] == ["deleted-key"]
    assert projection.keys("u1") == []


def test_operator_key_add_copies_operators(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1"))
    _apply(projection, feed.group_add_member(2, "operators", "u1"))
    notes = _apply(projection, _key_record(3, "u1", "ff:ee", openssh=[_openssh()]))
    assert [n.kind for n in notes] == ["added-key", "oper-added-key"]


def test_key_for_unknown_user_is_stored_quietly(projection) -> None:
    assert _apply(projection, _key_record(1, "nobody", "aa:aa")) == []
    assert len(projection.keys("nobody")) == 1


def test_key_modify_is_rejected(projection, feed) -> None:
    _apply(projection, feed.user_add(1, "u1"))
    with pytest.raises(ProjectionError):
        _apply(projection, _key_record(2, "u1", "aa:bb", changetype="modify"))


def test_ignored_subtree(projection, feed) -> None:
    assert _apply(projection, feed.noise(1)) == []


def test_describe_unparseable_key() -> None:
    info = describe_ssh_key("aa", None, "ssh-rsa not-base64 comment here")
    assert info.key_type == "ssh-rsa"
    assert info.bits is None
    assert info.comment == "comment here"
    assert info.describe() == "ssh-rsa key aa (comment here)"
