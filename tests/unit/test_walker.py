from __future__ import annotations

import os
from pathlib import Path

import pytest

from archive.walker import ArchiveEntry, walk
from common.errors import ValidationError


def _make_tree(root: Path) -> None:
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "a.txt").write_text("a")
    (root / "z.txt").write_text("z")
    (root / "sub" / "b.txt").write_text("b")
    (root / "sub" / "deeper" / "c.txt").write_text("c")


def test_single_file_placed_at_relocation_root(tmp_path: Path):
    f = tmp_path / "handler.py"
    f.write_text("def handler(e, c): pass\n")

    entries = list(walk(f, "handler.py"))
    assert entries == [ArchiveEntry(source_path=str(f), archive_path="handler.py")]


@pytest.mark.parametrize("root", ["", "/"])
def test_single_file_with_empty_root_uses_basename(tmp_path: Path, root: str):
    f = tmp_path / "fn.py"
    f.write_text("x")

    [entry] = list(walk(f, root))
    assert entry.archive_path == "fn.py"


def test_single_file_under_directory_prefix(tmp_path: Path):
    f = tmp_path / "fn.py"
    f.write_text("x")

    [entry] = list(walk(f, "src/"))
    assert entry.archive_path == "src/fn.py"


def test_directory_is_walked_pre_order_sorted(tmp_path: Path):
    _make_tree(tmp_path)

    paths = [e.archive_path for e in walk(tmp_path, "")]
    assert paths == ["a.txt", "sub/b.txt", "sub/deeper/c.txt", "z.txt"]


def test_directory_under_prefix(tmp_path: Path):
    _make_tree(tmp_path)

    paths = [e.archive_path for e in walk(tmp_path, "python/")]
    assert paths == ["python/a.txt", "python/sub/b.txt", "python/sub/deeper/c.txt", "python/z.txt"]

    # Prefix without trailing slash behaves the same
    assert [e.archive_path for e in walk(tmp_path, "python")] == paths


def test_one_entry_per_file_resolving_back_to_source(tmp_path: Path):
    _make_tree(tmp_path)
    (tmp_path / "empty").mkdir()

    entries = list(walk(tmp_path, ""))
    files = sorted(str(p) for p in tmp_path.rglob("*") if p.is_file())

    assert sorted(e.source_path for e in entries) == files
    for e in entries:
        assert not e.is_directory
        assert not e.archive_path.startswith("/")
        assert os.path.samefile(tmp_path / e.archive_path, e.source_path)


def test_walk_restarts_when_called_again(tmp_path: Path):
    _make_tree(tmp_path)

    first = list(walk(tmp_path, ""))
    second = list(walk(tmp_path, ""))
    assert first == second


def test_missing_root_raises_validation_error(tmp_path: Path):
    with pytest.raises(ValidationError):
        list(walk(tmp_path / "nope", ""))


def test_unlistable_directory_is_reported_not_fatal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _make_tree(tmp_path)
    broken = str(tmp_path / "sub")
    real_scandir = os.scandir

    def flaky_scandir(path):
        if os.fspath(path) == broken:
            raise PermissionError(13, "Permission denied", broken)
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", flaky_scandir)

    entries = list(walk(tmp_path, ""))
    errors = [e for e in entries if e.error is not None]
    assert len(errors) == 1
    assert errors[0].is_directory
    assert errors[0].source_path == broken
    # Siblings are still walked
    assert [e.archive_path for e in entries if e.error is None] == ["a.txt", "z.txt"]


def test_symlinked_directory_loop_is_not_reentered(tmp_path: Path):
    _make_tree(tmp_path)
    try:
        (tmp_path / "sub" / "loop").symlink_to(tmp_path, target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    paths = [e.archive_path for e in walk(tmp_path, "")]
    assert paths == ["a.txt", "sub/b.txt", "sub/deeper/c.txt", "z.txt"]


def test_symlinked_sibling_directory_is_walked_under_both_names(tmp_path: Path):
    (tmp_path / "real").mkdir()
    (tmp_path / "real" / "x.py").write_text("x")
    try:
        (tmp_path / "alias").symlink_to(tmp_path / "real", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    paths = [e.archive_path for e in walk(tmp_path, "")]
    assert paths == ["alias/x.py", "real/x.py"]
