from __future__ import annotations

from typing import Optional


class ChefError(RuntimeError):
    """Base error for chefcli. The CLI turns any of these into a non-zero exit."""

    exit_code = 1


class ValidationError(ChefError):
    """Missing configuration, malformed credential file or missing local prerequisite."""


class ArchiveExistsError(ValidationError):
    """The output archive already exists and will not be overwritten."""


class DuplicateEntryError(ValidationError):
    """Two entries resolved to the same archive path."""


class ArchiveSealedError(ChefError):
    """A write was attempted after the archive was finalized."""


class FilesystemError(ChefError):
    """A source file could not be read while building an archive."""

    def __init__(self, message: str, *, source_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.source_path = source_path


class RemoteAPIError(ChefError):
    """
    An AWS API call failed.

    `last_state` names the last state that was fully committed before the
    failure so the operator knows where to resume by hand.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        code: Optional[str] = None,
        last_state: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.code = code
        self.last_state = last_state


class ConsistencyError(ChefError):
    """The credential file did not contain the new key pair after replacement."""


class OperationAborted(ChefError):
    """The operator declined a confirmation prompt."""


class BuildToolError(ChefError):
    """An external build tool (docker, terraform) exited with an error."""


__all__ = [
    "ChefError",
    "ValidationError",
    "ArchiveExistsError",
    "DuplicateEntryError",
    "ArchiveSealedError",
    "FilesystemError",
    "RemoteAPIError",
    "ConsistencyError",
    "OperationAborted",
    "BuildToolError",
]
