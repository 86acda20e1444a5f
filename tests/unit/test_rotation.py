from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest

from common.errors import ConsistencyError, FilesystemError, OperationAborted, RemoteAPIError, ValidationError
from credentials import rotation
from credentials import store as credfile
from credentials.models import (
    AccessKeyDescriptor,
    CredentialRecord,
    KeyStatus,
    RotationAction,
    RotationState,
)
from credentials.rotation import KeyRotationEngine, plan_rotation, resolve_current
from credentials.store import CredentialStore


OLD_ID = "AKIAOLD"
OLD_SECRET = "oldSecret"


class FakeIdentity:
    """In-memory stand-in for IdentityClient that records every remote call."""

    def __init__(self, keys: List[AccessKeyDescriptor], *, fail_on: Optional[str] = None):
        self.keys = {k.id: k for k in keys}
        self.fail_on = fail_on
        self.calls: List[tuple] = []
        self._n = 0

    def _maybe_fail(self, op: str) -> None:
        if self.fail_on == op:
            raise RemoteAPIError(f"{op} failed", operation=op, code="Boom")

    def who_am_i(self) -> str:
        self.calls.append(("who_am_i",))
        self._maybe_fail("who_am_i")
        return "arn:aws:iam::123456789012:user/alice"

    def list_access_keys(self, *, with_last_used: bool = True) -> List[AccessKeyDescriptor]:
        self.calls.append(("list",))
        self._maybe_fail("list")
        return list(self.keys.values())

    def create_access_key(self, *, profile_label: str = "default") -> CredentialRecord:
        self.calls.append(("create",))
        self._maybe_fail("create")
        self._n += 1
        key_id = f"AKIANEW{self._n}"
        self.keys[key_id] = AccessKeyDescriptor(id=key_id, status=KeyStatus.ACTIVE)
        return CredentialRecord(access_key_id=key_id, secret_access_key=f"newSecret{self._n}", profile_label=profile_label)

    def deactivate_access_key(self, key_id: str) -> None:
        self.calls.append(("deactivate", key_id))
        self._maybe_fail("deactivate")
        self.keys[key_id] = AccessKeyDescriptor(id=key_id, status=KeyStatus.INACTIVE)

    def delete_access_key(self, key_id: str) -> None:
        self.calls.append(("delete", key_id))
        self._maybe_fail("delete")
        del self.keys[key_id]

    @property
    def remote_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] not in ("who_am_i", "list")]


def _key(key_id: str, status: KeyStatus = KeyStatus.ACTIVE) -> AccessKeyDescriptor:
    return AccessKeyDescriptor(id=key_id, status=status)


def _store(tmp_path: Path, text: Optional[str] = None) -> CredentialStore:
    path = tmp_path / "credentials"
    if text is None:
        text = f"[default]\naws_access_key_id = {OLD_ID}\naws_secret_access_key = {OLD_SECRET}\n"
    path.write_text(text)
    return CredentialStore(path)


def _current() -> CredentialRecord:
    return CredentialRecord(access_key_id=OLD_ID, secret_access_key=OLD_SECRET)


class _Prompts:
    def __init__(self, answer: bool = True):
        self.answer = answer
        self.questions: List[str] = []

    def __call__(self, question: str) -> bool:
        self.questions.append(question)
        return self.answer


# -------- plan_rotation --------

def test_plan_single_key():
    [plan] = plan_rotation([_key(OLD_ID)], OLD_ID)
    assert plan.action is RotationAction.DEACTIVATE_OLDEST
    assert plan.target_key_id == OLD_ID
    assert plan.verb == "deactivate"


def test_plan_two_keys_frees_the_other_first():
    plans = plan_rotation([_key("AKIAOTHER", KeyStatus.INACTIVE), _key(OLD_ID)], OLD_ID, delete_old=True)
    assert [(p.action, p.target_key_id) for p in plans] == [
        (RotationAction.DELETE_ONLY_OTHER, "AKIAOTHER"),
        (RotationAction.DELETE_OLDEST, OLD_ID),
    ]


@pytest.mark.parametrize(
    "keys",
    [
        [],
        [_key("AKIAOTHER")],
        [_key("A"), _key("B"), _key(OLD_ID)],
    ],
)
def test_plan_rejects_inconsistent_inventory(keys):
    with pytest.raises(ValidationError):
        plan_rotation(keys, OLD_ID)


# -------- KeyRotationEngine --------

def test_single_key_delete_leaves_exactly_the_new_key(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)])
    store = _store(tmp_path)
    prompts = _Prompts()

    result = KeyRotationEngine(identity, store, _current(), delete_old=True, confirm=prompts).run()

    assert result.state is RotationState.DONE
    assert list(identity.keys) == [result.new_key_id]
    assert identity.remote_calls == [("create",), ("delete", OLD_ID)]
    assert prompts.questions == [f"Do you want to create a new key and delete {OLD_ID}?"]
    text = store.path.read_text()
    assert credfile.verify(text, "AKIANEW1", "newSecret1")
    assert OLD_SECRET not in text


def test_single_key_deactivate_leaves_one_active_key(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)])
    engine = KeyRotationEngine(identity, _store(tmp_path), _current(), confirm=_Prompts())

    result = engine.run()

    active = [k.id for k in identity.keys.values() if k.active]
    assert active == [result.new_key_id]
    assert identity.keys[OLD_ID].status is KeyStatus.INACTIVE
    assert engine.state is RotationState.DONE


def test_two_keys_deletes_other_before_creating(tmp_path: Path):
    identity = FakeIdentity([_key("AKIAOTHER", KeyStatus.INACTIVE), _key(OLD_ID)])
    prompts = _Prompts()

    KeyRotationEngine(identity, _store(tmp_path), _current(), delete_old=True, confirm=prompts).run()

    assert identity.remote_calls == [("delete", "AKIAOTHER"), ("create",), ("delete", OLD_ID)]
    assert len(prompts.questions) == 1
    assert "Do you want to delete AKIAOTHER and create a new key?" in prompts.questions[0]
    assert "WARNING" not in prompts.questions[0]


def test_two_keys_warns_when_other_key_is_active(tmp_path: Path):
    identity = FakeIdentity([_key("AKIAOTHER"), _key(OLD_ID)])
    prompts = _Prompts()

    KeyRotationEngine(identity, _store(tmp_path), _current(), confirm=prompts).run()

    assert prompts.questions[0].startswith("WARNING: AKIAOTHER is currently Active!")


def test_declined_confirmation_changes_nothing(tmp_path: Path):
    identity = FakeIdentity([_key("AKIAOTHER"), _key(OLD_ID)])
    store = _store(tmp_path)
    before = store.path.read_text()
    engine = KeyRotationEngine(identity, store, _current(), confirm=_Prompts(answer=False))

    with pytest.raises(OperationAborted):
        engine.run()

    assert identity.remote_calls == []
    assert store.path.read_text() == before
    assert engine.state is RotationState.ABORTED
    assert engine.last_committed is RotationState.DECIDED


def test_assume_yes_skips_prompts(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)])

    def never(_q: str) -> bool:
        raise AssertionError("should not prompt")

    KeyRotationEngine(identity, _store(tmp_path), _current(), confirm=never, assume_yes=True).run()

    assert ("create",) in identity.calls


@pytest.mark.parametrize(
    "text",
    [
        "",
        "[default]\naws_access_key_id = AKIAOLD\n",
        "[default]\naws_access_key_id = AKIAOLDER\naws_secret_access_key = oldSecret\n",
    ],
)
def test_credentials_not_found_makes_no_remote_call(tmp_path: Path, text: str):
    identity = FakeIdentity([_key(OLD_ID)])
    engine = KeyRotationEngine(identity, _store(tmp_path, text), _current(), confirm=_Prompts())

    with pytest.raises(ValidationError) as ei:
        engine.run()

    assert identity.calls == []
    assert f"aws_access_key_id={OLD_ID}" in str(ei.value)
    assert engine.last_committed is RotationState.START


def test_missing_credentials_file_makes_no_remote_call(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)])
    engine = KeyRotationEngine(identity, CredentialStore(tmp_path / "nope"), _current(), confirm=_Prompts())

    with pytest.raises(ValidationError):
        engine.run()

    assert identity.calls == []


def test_verify_failure_deletes_new_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    identity = FakeIdentity([_key(OLD_ID)])
    store = _store(tmp_path)
    before = store.path.read_text()
    monkeypatch.setattr(rotation.credfile, "verify", lambda *_a: False)
    engine = KeyRotationEngine(identity, store, _current(), delete_old=True, confirm=_Prompts())

    with pytest.raises(ConsistencyError):
        engine.run()

    assert identity.remote_calls == [("create",), ("delete", "AKIANEW1")]
    assert list(identity.keys) == [OLD_ID]
    assert store.path.read_text() == before
    assert engine.last_committed is RotationState.CREATED


def test_failed_save_deletes_new_key_and_keeps_old(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    identity = FakeIdentity([_key(OLD_ID)])
    store = _store(tmp_path)
    before = store.path.read_text()

    def broken_save(_text: str) -> None:
        raise FilesystemError("disk full", source_path=str(store.path))

    monkeypatch.setattr(store, "save", broken_save)
    engine = KeyRotationEngine(identity, store, _current(), delete_old=True, confirm=_Prompts())

    with pytest.raises(FilesystemError):
        engine.run()

    assert ("delete", "AKIANEW1") in identity.calls
    assert ("delete", OLD_ID) not in identity.calls
    assert list(identity.keys) == [OLD_ID]
    assert store.path.read_text() == before
    assert engine.last_committed is RotationState.CREATED


def test_compensation_failure_is_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    identity = FakeIdentity([_key(OLD_ID)], fail_on="delete")
    monkeypatch.setattr(rotation.credfile, "verify", lambda *_a: False)
    engine = KeyRotationEngine(identity, _store(tmp_path), _current(), confirm=_Prompts())

    with pytest.raises(ConsistencyError) as ei:
        engine.run()

    assert "AKIANEW1" in str(ei.value)
    assert "manually" in str(ei.value)


def test_who_am_i_failure_reports_start(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)], fail_on="who_am_i")
    engine = KeyRotationEngine(identity, _store(tmp_path), _current(), confirm=_Prompts())

    with pytest.raises(RemoteAPIError) as ei:
        engine.run()

    assert ei.value.last_state == "Start"
    assert identity.remote_calls == []


def test_create_failure_reports_decided(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)], fail_on="create")
    store = _store(tmp_path)
    before = store.path.read_text()
    engine = KeyRotationEngine(identity, store, _current(), confirm=_Prompts())

    with pytest.raises(RemoteAPIError) as ei:
        engine.run()

    assert ei.value.last_state == "Decided"
    assert store.path.read_text() == before


def test_retire_failure_keeps_new_key_on_disk(tmp_path: Path):
    identity = FakeIdentity([_key(OLD_ID)], fail_on="deactivate")
    store = _store(tmp_path)

    with pytest.raises(RemoteAPIError) as ei:
        KeyRotationEngine(identity, store, _current(), confirm=_Prompts()).run()

    assert ei.value.last_state == "Persisted"
    assert credfile.verify(store.path.read_text(), "AKIANEW1", "newSecret1")


# -------- resolve_current --------

class _Frozen:
    def __init__(self, access_key, secret_key, token=None):
        self.access_key = access_key
        self.secret_key = secret_key
        self.token = token


class _Creds:
    def __init__(self, frozen):
        self._frozen = frozen

    def get_frozen_credentials(self):
        return self._frozen


class _Session:
    def __init__(self, creds):
        self._creds = creds

    def get_credentials(self):
        return self._creds


def test_resolve_current_reads_session_credentials():
    record = resolve_current("work", session=_Session(_Creds(_Frozen(OLD_ID, OLD_SECRET))))
    assert record.access_key_id == OLD_ID
    assert record.secret_access_key == OLD_SECRET
    assert record.profile_label == "work"


def test_resolve_current_rejects_missing_and_temporary_credentials():
    with pytest.raises(ValidationError):
        resolve_current(None, session=_Session(None))
    with pytest.raises(ValidationError):
        resolve_current("sso", session=_Session(_Creds(_Frozen("ASIATEMP", "s", token="tok"))))
