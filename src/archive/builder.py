from __future__ import annotations

import logging
import os
import shutil
import stat
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Literal, Optional, Set

from common.errors import (
    ArchiveExistsError,
    ArchiveSealedError,
    DuplicateEntryError,
    FilesystemError,
    ValidationError,
)

from .walker import ArchiveEntry


logger = logging.getLogger(__name__)

# Fixed record timestamp so the same tree always produces the same bytes
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
COPY_CHUNK = 1024 * 1024

ErrorPolicy = Literal["abort", "skip"]


@dataclass
class ArchiveResult:
    path: Path
    entry_count: int = 0
    bytes_in: int = 0
    skipped: List[FilesystemError] = field(default_factory=list)


class ArchiveBuilder:
    """
    Sequential ZIP writer with exclusive creation and a single finalize step.

    Usage
    - `ArchiveBuilder(path)` creates `path` exclusively; an existing file is
      never opened or truncated (`ArchiveExistsError`).
    - `add(entries)` may be called any number of times against the same open
      archive, e.g. the function code first and then its dependencies.
    - `seal()` writes the central directory. Until then the file at `path`
      is not a valid archive. Writes after `seal()` raise `ArchiveSealedError`.
    - Used as a context manager, the archive is sealed on success and removed
      on error.

    Error policy
    - "abort" (default): the first unreadable source raises `FilesystemError`.
    - "skip": sources that cannot be opened are recorded in
      `ArchiveResult.skipped` and the build continues. A read failure after a
      record has been started always raises, since a ZIP record cannot be
      retracted.
    """

    def __init__(
        self,
        output_path: str | os.PathLike[str],
        *,
        on_error: ErrorPolicy = "abort",
        compression: int = zipfile.ZIP_DEFLATED,
    ) -> None:
        if on_error not in ("abort", "skip"):
            raise ValueError("on_error must be 'abort' or 'skip'")
        self._path = Path(output_path)
        self._on_error = on_error
        self._compression = compression
        try:
            self._fh = open(self._path, "xb")
        except FileExistsError as ex:
            raise ArchiveExistsError(
                f"{self._path} already exists. Remove it or choose another archive name."
            ) from ex
        except OSError as ex:
            raise FilesystemError(
                f"Unable to create archive {self._path}: {ex}", source_path=str(self._path)
            ) from ex
        self._zip = zipfile.ZipFile(self._fh, mode="w", compression=compression)
        self._names: Set[str] = set()
        self._sealed = False
        self._result = ArchiveResult(path=self._path)

    # -------- Context manager --------
    def __enter__(self) -> "ArchiveBuilder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._sealed:
            return
        if exc_type is not None:
            self.discard()
        else:
            self.seal()

    # -------- Properties --------
    @property
    def path(self) -> Path:
        return self._path

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def names(self) -> List[str]:
        return sorted(self._names)

    # -------- Core operations --------
    def add(self, entries: Iterable[ArchiveEntry]) -> int:
        """Write every entry in order; returns how many records were added."""
        self._ensure_open()
        added = 0
        for entry in entries:
            if entry.error is not None:
                self._handle_failure(
                    FilesystemError(
                        f"Unable to read directory {entry.source_path}: {entry.error}",
                        source_path=entry.source_path,
                    )
                )
                continue
            if entry.is_directory:
                continue
            if self._write(entry):
                added += 1
        return added

    def add_file(self, source_path: str | os.PathLike[str], archive_path: str) -> bool:
        self._ensure_open()
        return self._write(ArchiveEntry(source_path=os.fspath(source_path), archive_path=archive_path))

    def seal(self) -> ArchiveResult:
        """Finalize the archive. Valid exactly once."""
        self._ensure_open()
        try:
            self._zip.close()
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as ex:
            self.discard()
            raise FilesystemError(
                f"Unable to finalize archive {self._path}: {ex}", source_path=str(self._path)
            ) from ex
        except BaseException:
            self.discard()
            raise
        self._sealed = True
        self._fh.close()
        logger.info(
            "ZIP archive is ready. The name of the archive is %s (%d entries).",
            self._path.name,
            self._result.entry_count,
        )
        return self._result

    def discard(self) -> None:
        """Abandon the build and remove the partial file."""
        if self._sealed:
            return
        self._sealed = True
        try:
            self._zip.close()
        except (OSError, ValueError) as ex:
            logger.debug("Ignoring error while closing discarded archive %s: %s", self._path, ex)
        finally:
            self._fh.close()
            try:
                self._path.unlink()
            except FileNotFoundError:
                pass
        logger.debug("Discarded partial archive %s", self._path)

    # -------- Internal --------
    def _ensure_open(self) -> None:
        if self._sealed:
            raise ArchiveSealedError(f"Archive {self._path} is already finalized")

    def _handle_failure(self, err: FilesystemError) -> None:
        if self._on_error == "abort":
            raise err
        logger.warning("Skipping %s: %s", err.source_path, err)
        self._result.skipped.append(err)

    def _write(self, entry: ArchiveEntry) -> bool:
        name = entry.archive_path.replace(os.sep, "/").lstrip("/")
        if not name or name.endswith("/"):
            raise ValidationError(f"Invalid archive path {entry.archive_path!r} for {entry.source_path}")
        if name in self._names:
            raise DuplicateEntryError(f"Duplicate archive path {name!r} (from {entry.source_path})")

        try:
            st = os.stat(entry.source_path)
            src = open(entry.source_path, "rb")
        except OSError as ex:
            self._handle_failure(
                FilesystemError(f"Unable to read {entry.source_path}: {ex}", source_path=entry.source_path)
            )
            return False

        info = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
        info.compress_type = self._compression
        info.external_attr = (stat.S_IMODE(st.st_mode) | stat.S_IFREG) << 16
        info.file_size = st.st_size

        with src:
            try:
                with self._zip.open(info, mode="w") as dst:
                    shutil.copyfileobj(src, dst, COPY_CHUNK)
            except OSError as ex:
                raise FilesystemError(
                    f"Failed while copying {entry.source_path}: {ex}", source_path=entry.source_path
                ) from ex

        self._names.add(name)
        self._result.entry_count += 1
        self._result.bytes_in += st.st_size
        logger.debug("Added %s as %s", entry.source_path, name)
        return True


def build(
    entries: Iterable[ArchiveEntry],
    output_path: str | os.PathLike[str],
    *,
    on_error: ErrorPolicy = "abort",
    extra: Optional[Iterable[ArchiveEntry]] = None,
) -> ArchiveResult:
    """Build and seal an archive in one call; `extra` is written after `entries`."""
    with ArchiveBuilder(output_path, on_error=on_error) as builder:
        builder.add(entries)
        if extra is not None:
            builder.add(extra)
        return builder.seal()


__all__ = ["ArchiveBuilder", "ArchiveResult", "build", "FIXED_DATE_TIME"]
