from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterator, Optional, Set

from common.errors import ValidationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveEntry:
    source_path: str
    archive_path: str
    is_directory: bool = False
    error: Optional[OSError] = None


def _join(prefix: str, name: str) -> str:
    return f"{prefix.rstrip('/')}/{name}" if prefix else name


def _normalize_root(relocation_root: str) -> str:
    return relocation_root.replace(os.sep, "/").lstrip("/")


def walk(root_path: str | os.PathLike[str], relocation_root: str = "") -> Iterator[ArchiveEntry]:
    """
    Enumerate the files under `root_path` as archive entries.

    - A regular file yields one entry placed at `relocation_root` (the file
      name is appended when `relocation_root` is empty or ends in "/").
    - A directory yields one entry per file at any depth, placed at
      `relocation_root` + the "/"-separated path relative to `root_path`.
      Children are visited in name order, sub-directories before later
      siblings.
    - A directory that cannot be listed yields an `is_directory` entry with
      `error` set; the walk carries on with its siblings.

    The result is a generator; call `walk` again to start over.
    """
    root = os.fspath(root_path)
    prefix = _normalize_root(relocation_root)

    if os.path.isfile(root):
        name = os.path.basename(root)
        target = f"{prefix}{name}" if (not prefix or prefix.endswith("/")) else prefix
        yield ArchiveEntry(source_path=os.path.abspath(root), archive_path=target)
        return

    if not os.path.isdir(root):
        raise ValidationError(f"Path to package does not exist: {root}")

    yield from _walk_dir(os.path.abspath(root), prefix, set())


def _walk_dir(directory: str, prefix: str, ancestors: Set[str]) -> Iterator[ArchiveEntry]:
    # Only a directory that is its own ancestor is cut; aliases elsewhere are walked
    real = os.path.realpath(directory)
    if real in ancestors:
        logger.debug("Skipping symlink loop at %s", directory)
        return
    ancestors.add(real)
    try:
        yield from _walk_children(directory, prefix, ancestors)
    finally:
        ancestors.discard(real)


def _walk_children(directory: str, prefix: str, ancestors: Set[str]) -> Iterator[ArchiveEntry]:
    try:
        with os.scandir(directory) as it:
            children = sorted(it, key=lambda e: e.name)
    except OSError as ex:
        logger.warning("Unable to list %s: %s", directory, ex)
        yield ArchiveEntry(
            source_path=directory,
            archive_path=prefix,
            is_directory=True,
            error=ex,
        )
        return

    for child in children:
        archive_path = _join(prefix, child.name)
        try:
            is_dir = child.is_dir()
        except OSError:
            is_dir = False
        if is_dir:
            logger.debug("Adding sub-directory %s", child.path)
            yield from _walk_dir(child.path, archive_path, ancestors)
        else:
            yield ArchiveEntry(source_path=child.path, archive_path=archive_path)


__all__ = ["ArchiveEntry", "walk"]
