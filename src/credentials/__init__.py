"""
Access-key rotation for the AWS shared credentials file.

- store: find, replace and verify a key pair in the credentials file
- iam: STS/IAM calls bound to one profile
- rotation: the rotation state machine
"""

from .models import (
    AccessKeyDescriptor,
    CredentialRecord,
    RotationAction,
    RotationPlan,
    RotationResult,
    RotationState,
)
from .rotation import KeyRotationEngine, plan_rotation
from .store import CredentialStore

__all__ = [
    "AccessKeyDescriptor",
    "CredentialRecord",
    "CredentialStore",
    "KeyRotationEngine",
    "RotationAction",
    "RotationPlan",
    "RotationResult",
    "RotationState",
    "plan_rotation",
]
