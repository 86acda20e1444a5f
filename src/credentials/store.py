from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from common.errors import FilesystemError, ValidationError


logger = logging.getLogger(__name__)

ENV_CREDENTIALS_FILE = "AWS_SHARED_CREDENTIALS_FILE"
KEY_ID_FIELD = "aws_access_key_id"
SECRET_FIELD = "aws_secret_access_key"
FILE_MODE = 0o600


def _field_pattern(field: str, value: str) -> re.Pattern[str]:
    # Whole line only: a key id that is a prefix of another must not match
    return re.compile(rf"(?m)^{field} *= *{re.escape(value)}(?=[ \t]*\r?$)")


def find_key_pair(text: str, access_key_id: str, secret_access_key: str) -> bool:
    """True when both the key id line and the secret line are present.

    The two fields are matched independently, each anchored at line start.
    """
    if not access_key_id or not secret_access_key:
        return False
    return bool(
        _field_pattern(KEY_ID_FIELD, access_key_id).search(text)
        and _field_pattern(SECRET_FIELD, secret_access_key).search(text)
    )


def replace(text: str, old_id: str, old_secret: str, new_id: str, new_secret: str) -> str:
    """Substitute the old key pair with the new one throughout the file.

    The substitution is not limited to one profile: a key pair reused under
    several profiles is rotated everywhere it appears.
    """
    text = _field_pattern(KEY_ID_FIELD, old_id).sub(lambda _m: f"{KEY_ID_FIELD}={new_id}", text)
    text = _field_pattern(SECRET_FIELD, old_secret).sub(lambda _m: f"{SECRET_FIELD}={new_secret}", text)
    return text


def verify(text: str, new_id: str, new_secret: str) -> bool:
    return find_key_pair(text, new_id, new_secret)


def count_occurrences(text: str, access_key_id: str) -> int:
    return len(_field_pattern(KEY_ID_FIELD, access_key_id).findall(text))


def expected_format(access_key_id: str) -> str:
    return f"{KEY_ID_FIELD}={access_key_id}\n{SECRET_FIELD}=..."


class CredentialStore:
    """
    The AWS shared credentials file, read once and rewritten once per run.

    Notes
    - The caller is assumed to have exclusive access to the file for the
      duration of a rotation; nothing here locks it.
    - `save()` writes a sibling temp file and renames it over the original,
      leaving the file with owner-only permissions.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else self.default_path()

    @staticmethod
    def default_path() -> Path:
        explicit = os.environ.get(ENV_CREDENTIALS_FILE)
        if explicit:
            return Path(explicit).expanduser()
        try:
            home = Path.home()
        except RuntimeError as ex:
            raise ValidationError(
                "Could not locate your home directory. "
                f"Please set the {ENV_CREDENTIALS_FILE} environment variable."
            ) from ex
        return home / ".aws" / "credentials"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError as ex:
            raise ValidationError(f"Credentials file {self._path} does not exist") from ex
        except OSError as ex:
            raise ValidationError(f"Unable to read credentials file {self._path}: {ex}") from ex

    def save(self, text: str) -> None:
        # Write through a symlinked credentials file rather than replacing the link
        target = Path(os.path.realpath(self._path))
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=".credentials-", dir=target.parent)
        except OSError as ex:
            raise FilesystemError(
                f"Unable to write credentials file {self._path}: {ex}", source_path=str(self._path)
            ) from ex
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                os.chmod(tmp_name, FILE_MODE)
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except OSError as ex:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise FilesystemError(
                f"Unable to write credentials file {self._path}: {ex}", source_path=str(self._path)
            ) from ex
        os.chmod(target, FILE_MODE)
        logger.info("Wrote new key pair to %s", self._path)

    # Module functions exposed on the store for callers holding an instance
    find_key_pair = staticmethod(find_key_pair)
    replace = staticmethod(replace)
    verify = staticmethod(verify)
    count_occurrences = staticmethod(count_occurrences)


__all__ = [
    "CredentialStore",
    "count_occurrences",
    "expected_format",
    "find_key_pair",
    "replace",
    "verify",
]
