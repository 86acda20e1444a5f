from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import RemoteAPIError, ValidationError


T = TypeVar("T")


def call_api(operation: str, fn: Callable[..., T], **kwargs: Any) -> T:
    """Invoke one boto3 operation, translating botocore failures to RemoteAPIError.

    No retries: a failed call is reported to the caller as-is.
    """
    try:
        return fn(**kwargs)
    except ClientError as e:
        err = e.response.get("Error", {})
        code = err.get("Code")
        message = err.get("Message") or str(e)
        raise RemoteAPIError(f"{operation} failed: {message}", operation=operation, code=code) from e
    except BotoCoreError as e:
        raise RemoteAPIError(f"{operation} failed: {e}", operation=operation) from e


def open_session(profile: Optional[str] = None, region_name: Optional[str] = None) -> boto3.Session:
    """Create a boto3 session; an unknown profile is a configuration error."""
    try:
        return boto3.Session(profile_name=profile or None, region_name=region_name)
    except BotoCoreError as e:
        raise ValidationError(f"Unable to open AWS profile \"{profile}\": {e}") from e


def open_client(session: boto3.Session, service: str) -> Any:
    try:
        return session.client(service)
    except BotoCoreError as e:
        raise ValidationError(f"Unable to create the {service} client: {e}") from e


__all__ = ["call_api", "open_client", "open_session"]
