from __future__ import annotations

import logging
from typing import List, Optional

import boto3

from common.aws import call_api as _call, open_client, open_session
from common.errors import RemoteAPIError

from .models import AccessKeyDescriptor, CredentialRecord, KeyStatus, LastUsed


logger = logging.getLogger(__name__)


class IdentityClient:
    """
    STS/IAM operations used by key rotation, bound to one profile's credentials.

    IAM calls omit `UserName`, so they act on the user that owns the access
    key signing the request. Clients can be injected for tests; otherwise
    they are created from a boto3 session for `profile`.
    """

    def __init__(
        self,
        *,
        sts: Optional[object] = None,
        iam: Optional[object] = None,
        profile: Optional[str] = None,
        session: Optional[boto3.Session] = None,
    ) -> None:
        if sts is None or iam is None:
            session = session or open_session(profile)
        self._sts = sts or open_client(session, "sts")
        self._iam = iam or open_client(session, "iam")

    # -------- Public API --------
    def who_am_i(self) -> str:
        resp = _call("GetCallerIdentity", self._sts.get_caller_identity)
        return str(resp["Arn"])

    def list_access_keys(self, *, with_last_used: bool = True) -> List[AccessKeyDescriptor]:
        resp = _call("ListAccessKeys", self._iam.list_access_keys)
        keys: List[AccessKeyDescriptor] = []
        for meta in resp.get("AccessKeyMetadata", []):
            key_id = meta["AccessKeyId"]
            keys.append(
                AccessKeyDescriptor(
                    id=key_id,
                    status=KeyStatus(meta.get("Status", KeyStatus.ACTIVE.value)),
                    created_at=meta.get("CreateDate"),
                    last_used=self._last_used(key_id) if with_last_used else None,
                )
            )
        return keys

    def create_access_key(self, *, profile_label: str = "default") -> CredentialRecord:
        resp = _call("CreateAccessKey", self._iam.create_access_key)
        key = resp["AccessKey"]
        return CredentialRecord(
            access_key_id=key["AccessKeyId"],
            secret_access_key=key["SecretAccessKey"],
            profile_label=profile_label,
        )

    def deactivate_access_key(self, key_id: str) -> None:
        _call(
            "UpdateAccessKey",
            self._iam.update_access_key,
            AccessKeyId=key_id,
            Status=KeyStatus.INACTIVE.value,
        )

    def delete_access_key(self, key_id: str) -> None:
        _call("DeleteAccessKey", self._iam.delete_access_key, AccessKeyId=key_id)

    # -------- Internal --------
    def _last_used(self, key_id: str) -> Optional[LastUsed]:
        # Usage detail is informational; a failure here leaves it unknown
        try:
            resp = _call("GetAccessKeyLastUsed", self._iam.get_access_key_last_used, AccessKeyId=key_id)
        except RemoteAPIError as ex:
            logger.debug("Unable to fetch last-used detail for %s: %s", key_id, ex)
            return None
        detail = resp.get("AccessKeyLastUsed", {})
        return LastUsed(
            used_at=detail.get("LastUsedDate"),
            service_name=detail.get("ServiceName"),
            region=detail.get("Region"),
        )


__all__ = ["IdentityClient"]
