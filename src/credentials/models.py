from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class KeyStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class CredentialRecord(BaseModel):
    """
    One access-key pair as recorded in the shared credentials file.

    The secret is kept out of `repr` so records can be logged safely.
    """

    access_key_id: str
    secret_access_key: str = Field(repr=False)
    profile_label: str = "default"


class LastUsed(BaseModel):
    used_at: Optional[datetime] = None
    service_name: Optional[str] = None
    region: Optional[str] = None

    def describe(self) -> str:
        if self.used_at is None:
            return "never used"
        return f"last used {self.used_at.isoformat()} for service {self.service_name} in {self.region}"


class AccessKeyDescriptor(BaseModel):
    """
    Remote metadata for one access key of the calling identity.

    Fields
    - id: access key id.
    - status: Active or Inactive.
    - created_at: creation timestamp reported by IAM.
    - last_used: usage detail when it could be fetched, else None.
    """

    id: str
    status: KeyStatus
    created_at: Optional[datetime] = None
    last_used: Optional[LastUsed] = None

    @property
    def active(self) -> bool:
        return self.status is KeyStatus.ACTIVE

    def describe(self) -> str:
        created = self.created_at.isoformat() if self.created_at else "unknown"
        parts = [self.status.value, f"created {created}"]
        if self.last_used is not None:
            parts.append(self.last_used.describe())
        return f"{self.id} ({', '.join(parts)})"


class RotationAction(str, Enum):
    DELETE_OLDEST = "DeleteOldest"
    DEACTIVATE_OLDEST = "DeactivateOldest"
    DELETE_ONLY_OTHER = "DeleteOnlyOther"


class RotationPlan(BaseModel):
    action: RotationAction
    target_key_id: str

    @property
    def deletes(self) -> bool:
        return self.action is not RotationAction.DEACTIVATE_OLDEST

    @property
    def verb(self) -> str:
        return "delete" if self.deletes else "deactivate"


class RotationState(str, Enum):
    START = "Start"
    IDENTIFIED = "Identified"
    INVENTORIED = "Inventoried"
    DECIDED = "Decided"
    CREATED = "Created"
    PERSISTED = "Persisted"
    RETIRED = "Retired"
    DONE = "Done"
    ABORTED = "Aborted"

    @property
    def terminal(self) -> bool:
        return self in (RotationState.DONE, RotationState.ABORTED)


class RotationResult(BaseModel):
    identity_arn: str
    old_key_id: str
    new_key_id: str
    plans: List[RotationPlan] = Field(default_factory=list)
    state: RotationState = RotationState.DONE


__all__ = [
    "AccessKeyDescriptor",
    "CredentialRecord",
    "KeyStatus",
    "LastUsed",
    "RotationAction",
    "RotationPlan",
    "RotationResult",
    "RotationState",
]
