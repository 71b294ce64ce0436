"""
Tests for the folder size report.
"""

import os

import pytest

from winadmin.services.folder_size import FolderSizeWalker, format_size, get_folder_sizes


@pytest.fixture
def tree(tmp_path):
    """
    root/
        top.txt         5 bytes
        a/
            a.bin       100 bytes
            sub/
                s.bin   50 bytes
        b/
            b.bin       10 bytes
    """
    (tmp_path / "top.txt").write_bytes(b"x" * 5)
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "a.bin").write_bytes(b"x" * 100)
    (tmp_path / "a" / "sub").mkdir()
    (tmp_path / "a" / "sub" / "s.bin").write_bytes(b"x" * 50)
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "b.bin").write_bytes(b"x" * 10)
    return tmp_path


def by_name(rows, root):
    return {os.path.relpath(r.path, root): r for r in rows}


@pytest.mark.parametrize(
    "num_bytes, expected",
    [(0, "0 B"), (1023, "1023 B"), (1536, "1.50 KB"), (5 * 1024 ** 2, "5.00 MB"), (3 * 1024 ** 4, "3.00 TB")],
)
def test_format_size(num_bytes, expected):
    assert format_size(num_bytes) == expected


def test_sizes_include_everything_below(tree):
    """Test that a folder's size covers its whole subtree, not just the reported levels."""
    rows = by_name(get_folder_sizes(str(tree), max_depth=1), tree)

    assert set(rows) == {".", "a", "b"}
    assert rows["."].size_bytes == 165
    assert rows["."].file_count == 4
    assert rows["."].folder_count == 3
    assert rows["a"].size_bytes == 150
    assert rows["a"].folder_count == 1
    assert rows["b"].size_bytes == 10


def test_sorted_by_size_then_path(tree):
    rows = get_folder_sizes(str(tree), max_depth=2)
    assert [os.path.relpath(r.path, tree) for r in rows] == [".", "a", os.path.join("a", "sub"), "b"]


def test_sorted_by_path_and_top(tree):
    rows = get_folder_sizes(str(tree), max_depth=1, sort="path", top=2)
    assert len(rows) == 2
    assert rows[0].depth == 0


def test_depth_zero_reports_root_only(tree):
    rows = get_folder_sizes(str(tree), max_depth=0)
    assert len(rows) == 1
    assert rows[0].size_bytes == 165


def test_include_files_within_reported_levels(tree):
    rows = by_name(get_folder_sizes(str(tree), max_depth=1, include_files=True), tree)
    assert "top.txt" in rows
    assert rows["top.txt"].is_dir is False
    assert rows["top.txt"].size_bytes == 5
    # a/a.bin sits at depth 2
    assert os.path.join("a", "a.bin") not in rows


def test_symlinks_are_skipped_by_default(tree):
    try:
        os.symlink(tree / "a", tree / "link", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not available")

    rows = by_name(get_folder_sizes(str(tree), max_depth=1), tree)
    assert "link" not in rows
    assert rows["."].size_bytes == 165

    rows = by_name(get_folder_sizes(str(tree), max_depth=1, follow_symlinks=True), tree)
    assert rows["link"].size_bytes == 150
    assert rows["."].size_bytes == 315


def test_unreadable_folder_is_counted_as_error(tree, monkeypatch):
    real_scandir = os.scandir

    def scandir(path):
        if os.path.basename(path) == "b":
            raise PermissionError(13, "Access is denied", path)
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)
    rows = by_name(get_folder_sizes(str(tree), max_depth=1), tree)

    assert rows["b"].errors == 1
    assert rows["b"].size_bytes == 0
    assert rows["."].errors == 1
    assert rows["."].size_bytes == 155


def test_missing_root(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_folder_sizes(str(tmp_path / "nope"))


def test_root_must_be_a_folder(tree):
    with pytest.raises(NotADirectoryError):
        get_folder_sizes(str(tree / "top.txt"))


def test_invalid_arguments(tree):
    with pytest.raises(ValueError):
        get_folder_sizes(str(tree), sort="name")
    with pytest.raises(ValueError, match="top must be 0 or greater"):
        get_folder_sizes(str(tree), top=-1)
    with pytest.raises(ValueError):
        FolderSizeWalker(max_depth=-1)
