from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from botocore.exceptions import BotoCoreError

from common.aws import open_session
from common.errors import (
    ChefError,
    ConsistencyError,
    FilesystemError,
    OperationAborted,
    RemoteAPIError,
    ValidationError,
)
from common.prompt import Confirm, ask_yes_no

from . import store as credfile
from .iam import IdentityClient
from .models import (
    AccessKeyDescriptor,
    CredentialRecord,
    RotationAction,
    RotationPlan,
    RotationResult,
    RotationState,
)
from .store import CredentialStore


logger = logging.getLogger(__name__)

MAX_KEYS_PER_IDENTITY = 2


def plan_rotation(
    keys: Sequence[AccessKeyDescriptor],
    current_key_id: str,
    *,
    delete_old: bool = False,
) -> List[RotationPlan]:
    """
    Decide what to remove, in execution order.

    - Two keys: the key not in use locally is deleted first to free a slot,
      then the current key is retired once the new one is installed.
    - One key (the current one): it is retired once the new one is installed.

    The current key must be one of `keys`; anything else means the local file
    and the remote identity disagree and nothing is planned.
    """
    ids = [k.id for k in keys]
    if len(ids) > MAX_KEYS_PER_IDENTITY:
        raise ValidationError(f"Identity has {len(ids)} access keys; at most {MAX_KEYS_PER_IDENTITY} are expected")
    if current_key_id not in ids:
        raise ValidationError(
            f"Access key {current_key_id} is not among the keys of this identity ({', '.join(ids) or 'none'})"
        )

    retire = RotationPlan(
        action=RotationAction.DELETE_OLDEST if delete_old else RotationAction.DEACTIVATE_OLDEST,
        target_key_id=current_key_id,
    )
    if len(ids) == MAX_KEYS_PER_IDENTITY:
        other = next(i for i in ids if i != current_key_id)
        return [RotationPlan(action=RotationAction.DELETE_ONLY_OTHER, target_key_id=other), retire]
    return [retire]


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


class KeyRotationEngine:
    """
    Replace the active access key pair of one profile without a lock-out window.

    States advance Start → Identified → Inventoried → Decided → Created →
    Persisted → Retired → Done; any failure moves to Aborted and re-raises.
    `last_committed` keeps the state reached before the failure.

    Notes
    - Nothing remote is touched until the current key pair has been found in
      the credentials file.
    - If the new pair cannot be recorded locally the new key is deleted again
      before aborting.
    - The old key stays usable until the new one is persisted, so every IAM
      call of the run is signed with the old key.
    """

    def __init__(
        self,
        identity: IdentityClient,
        store: CredentialStore,
        current: CredentialRecord,
        *,
        delete_old: bool = False,
        confirm: Confirm = ask_yes_no,
        assume_yes: bool = False,
    ) -> None:
        self._identity = identity
        self._store = store
        self._current = current
        self._delete_old = delete_old
        self._confirm = confirm
        self._assume_yes = assume_yes
        self.state = RotationState.START
        self.last_committed = RotationState.START

    def _advance(self, state: RotationState) -> None:
        logger.debug("Rotation %s -> %s", self.state.value, state.value)
        self.state = state
        self.last_committed = state

    def _ask(self, question: str) -> None:
        if self._assume_yes:
            return
        if not self._confirm(question):
            raise OperationAborted("Rotation cancelled; no access key was changed.")

    # -------- Public API --------
    def run(self) -> RotationResult:
        try:
            return self._run()
        except ChefError as ex:
            if isinstance(ex, RemoteAPIError) and ex.last_state is None:
                ex.last_state = self.last_committed.value
            self.state = RotationState.ABORTED
            logger.debug("Rotation aborted after %s", self.last_committed.value)
            raise

    # -------- Transitions --------
    def _run(self) -> RotationResult:
        current = self._current
        text = self._identify(current)
        arn = self._who_am_i()
        self._advance(RotationState.IDENTIFIED)

        keys = self._identity.list_access_keys()
        self._report_keys(keys)
        self._advance(RotationState.INVENTORIED)

        plans = plan_rotation(keys, current.access_key_id, delete_old=self._delete_old)
        self._advance(RotationState.DECIDED)
        retire = plans[-1]
        for plan in plans[:-1]:
            self._free_slot(plan, keys)
        if len(plans) == 1:
            self._ask(f"Do you want to create a new key and {retire.verb} {retire.target_key_id}?")

        new = self._identity.create_access_key(profile_label=current.profile_label)
        logger.info("Created access key %s.", new.access_key_id)
        self._advance(RotationState.CREATED)

        self._persist(text, current, new)
        self._advance(RotationState.PERSISTED)

        self._retire(retire)
        self._advance(RotationState.RETIRED)

        logger.info(
            "Please note that it may take a minute for your new access key to propagate in the AWS control plane."
        )
        self._advance(RotationState.DONE)
        return RotationResult(
            identity_arn=arn,
            old_key_id=current.access_key_id,
            new_key_id=new.access_key_id,
            plans=plans,
            state=self.state,
        )

    def _identify(self, current: CredentialRecord) -> str:
        logger.info('Using access key %s from profile "%s".', current.access_key_id, current.profile_label)
        text = self._store.load()
        # A malformed file is better detected now than after creating a key
        if not credfile.find_key_pair(text, current.access_key_id, current.secret_access_key):
            raise ValidationError(
                f"Unable to find your credentials in {self._store.path}.\n"
                "Please make sure your file is formatted like the following:\n\n"
                f"{credfile.expected_format(current.access_key_id)}"
            )
        if credfile.count_occurrences(text, current.access_key_id) > 1:
            logger.warning(
                "Access key %s appears in more than one profile of %s; every occurrence will be replaced.",
                current.access_key_id,
                self._store.path,
            )
        return text

    def _who_am_i(self) -> str:
        try:
            arn = self._identity.who_am_i()
        except RemoteAPIError:
            logger.error("Error getting caller identity. Is the key disabled?")
            raise
        logger.info("Your user ARN is: %s", arn)
        return arn

    def _report_keys(self, keys: Sequence[AccessKeyDescriptor]) -> None:
        logger.info("You have %d access key%s associated with your user:", len(keys), _plural(len(keys)))
        for key in keys:
            logger.info("- %s", key.describe())

    def _free_slot(self, plan: RotationPlan, keys: Sequence[AccessKeyDescriptor]) -> None:
        target = next(k for k in keys if k.id == plan.target_key_id)
        question = (
            "You have two access keys, which is the max number of access keys.\n"
            f"Do you want to delete {target.id} and create a new key?"
        )
        if target.active:
            question = f"WARNING: {target.id} is currently Active!\n{question}"
        self._ask(question)
        self._identity.delete_access_key(target.id)
        logger.info("Deleted access key %s.", target.id)

    def _persist(self, text: str, current: CredentialRecord, new: CredentialRecord) -> None:
        updated = credfile.replace(
            text,
            current.access_key_id,
            current.secret_access_key,
            new.access_key_id,
            new.secret_access_key,
        )
        if not credfile.verify(updated, new.access_key_id, new.secret_access_key):
            self._compensate(new)
            raise ConsistencyError(
                "Failed to replace old access key. Aborting.\n"
                f"Please verify that the file {self._store.path} is formatted correctly."
            )
        try:
            self._store.save(updated)
        except FilesystemError:
            self._compensate(new)
            raise

    def _compensate(self, new: CredentialRecord) -> None:
        try:
            self._identity.delete_access_key(new.access_key_id)
        except RemoteAPIError as ex:
            raise ConsistencyError(
                f"Could not record new access key {new.access_key_id} locally and could not delete it: {ex}. "
                "Delete it manually."
            ) from ex
        logger.info("Deleted access key %s.", new.access_key_id)

    def _retire(self, plan: RotationPlan) -> None:
        if plan.deletes:
            self._identity.delete_access_key(plan.target_key_id)
            logger.info("Deleted old access key %s.", plan.target_key_id)
        else:
            self._identity.deactivate_access_key(plan.target_key_id)
            logger.info("Deactivated old access key %s.", plan.target_key_id)
            logger.info("Please make sure this key is not used elsewhere.")


def resolve_current(profile: Optional[str], *, session: Optional[object] = None) -> CredentialRecord:
    """Resolve the key pair a boto3 session for `profile` would sign with."""
    label = profile or "default"
    sess = session or open_session(profile)
    try:
        creds = sess.get_credentials()
    except BotoCoreError as ex:
        raise ValidationError(f"Unable to load credentials for profile \"{label}\": {ex}") from ex
    if creds is None:
        raise ValidationError(f"No credentials found for profile \"{label}\"")
    frozen = creds.get_frozen_credentials()
    if frozen.token:
        raise ValidationError(
            f"Profile \"{label}\" uses temporary credentials; only long-lived access keys can be rotated"
        )
    return CredentialRecord(
        access_key_id=frozen.access_key,
        secret_access_key=frozen.secret_key,
        profile_label=label,
    )


__all__ = ["KeyRotationEngine", "plan_rotation", "resolve_current"]
