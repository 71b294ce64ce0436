"""
Folder size report.

Walks a directory tree and reports the total size of every folder down to
a given depth. Sizes always include everything below a folder; the depth
only limits which folders show up in the report.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


@dataclass
class FolderSize:
    path: str
    depth: int
    size_bytes: int = 0
    file_count: int = 0
    folder_count: int = 0
    errors: int = 0
    is_dir: bool = True

    @property
    def size(self) -> str:
        return format_size(self.size_bytes)


def format_size(num_bytes: int) -> str:
    """Render a byte count with a 1024-based unit, e.g. 1536 -> '1.50 KB'."""
    size = float(num_bytes)
    for unit in SIZE_UNITS:
        if abs(size) < 1024 or unit == SIZE_UNITS[-1]:
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{num_bytes} B"


def _is_junction(entry: os.DirEntry) -> bool:
    # DirEntry.is_junction() only exists on Python 3.12+
    is_junction = getattr(entry, "is_junction", None)
    return bool(is_junction and is_junction())


class FolderSizeWalker:
    """Bounded-depth folder size aggregation."""

    def __init__(self, max_depth: int = 1, include_files: bool = False, follow_symlinks: bool = False):
        if max_depth < 0:
            raise ValueError("max_depth must be 0 or greater")
        self.max_depth = max_depth
        self.include_files = include_files
        self.follow_symlinks = follow_symlinks
        self.rows: List[FolderSize] = []

    def walk(self, root: str) -> List[FolderSize]:
        root = os.path.abspath(root)
        if not os.path.exists(root):
            raise FileNotFoundError(f"Folder not found: {root}")
        if not os.path.isdir(root):
            raise NotADirectoryError(f"Not a folder: {root}")

        self.rows = []
        self._walk(root, 0)
        return self.rows

    def _walk(self, path: str, depth: int) -> FolderSize:
        node = FolderSize(path=path, depth=depth)
        reported = depth <= self.max_depth

        try:
            with os.scandir(path) as entries:
                children = list(entries)
        except OSError as e:
            # Access denied, folder removed mid-walk, path too long...
            logger.warning("Cannot read %s: %s", path, e)
            node.errors += 1
            if reported:
                self.rows.append(node)
            return node

        for entry in children:
            try:
                if not self.follow_symlinks and (entry.is_symlink() or _is_junction(entry)):
                    continue
                if entry.is_dir(follow_symlinks=self.follow_symlinks):
                    child = self._walk(entry.path, depth + 1)
                    node.size_bytes += child.size_bytes
                    node.file_count += child.file_count
                    node.folder_count += child.folder_count + 1
                    node.errors += child.errors
                elif entry.is_file(follow_symlinks=self.follow_symlinks):
                    file_size = entry.stat(follow_symlinks=self.follow_symlinks).st_size
                    node.size_bytes += file_size
                    node.file_count += 1
                    if self.include_files and depth + 1 <= self.max_depth:
                        self.rows.append(FolderSize(
                            path=entry.path, depth=depth + 1,
                            size_bytes=file_size, file_count=1, is_dir=False,
                        ))
            except OSError as e:
                logger.warning("Cannot read %s: %s", entry.path, e)
                node.errors += 1

        if reported:
            self.rows.append(node)
        return node


def get_folder_sizes(
    root: str,
    max_depth: int = 1,
    include_files: bool = False,
    follow_symlinks: bool = False,
    sort: str = "size",
    top: Optional[int] = None,
) -> List[FolderSize]:
    """
    Report folder sizes under `root`.

    Args:
        root: Folder to start from (depth 0)
        max_depth: Deepest level listed in the report
        include_files: Also list individual files within the reported levels
        follow_symlinks: Descend into symlinks and junctions
        sort: "size" (largest first) or "path"
        top: Keep only the first N rows after sorting

    Returns:
        List of FolderSize rows
    """
    if top is not None and top < 0:
        raise ValueError("top must be 0 or greater")
    if sort not in ("size", "path"):
        raise ValueError(f"Unknown sort order: {sort}")

    walker = FolderSizeWalker(max_depth=max_depth, include_files=include_files, follow_symlinks=follow_symlinks)
    rows = walker.walk(root)

    if sort == "size":
        rows.sort(key=lambda r: (-r.size_bytes, r.path.lower()))
    else:
        rows.sort(key=lambda r: r.path.lower())

    if top is not None:
        rows = rows[:top]

    total_errors = next((r.errors for r in walker.rows if r.depth == 0), 0)
    if total_errors:
        logger.warning("%d items under %s could not be read", total_errors, root)
    return rows
