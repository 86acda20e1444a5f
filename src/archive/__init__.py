"""
Deterministic ZIP packaging of a working directory.

- walker: enumerate files as (source path, archive path) entries
- builder: stream entries into an exclusively-created, sealed-once ZIP
"""

from .builder import ArchiveBuilder, ArchiveResult, build
from .walker import ArchiveEntry, walk

__all__ = ["ArchiveBuilder", "ArchiveEntry", "ArchiveResult", "build", "walk"]
