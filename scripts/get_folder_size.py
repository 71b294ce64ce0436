"""
Report folder sizes below a path.

Usage:
    python -m scripts.get_folder_size C:\\Users
    python -m scripts.get_folder_size D:\\Shares --depth 2 --top 25
    python -m scripts.get_folder_size C:\\Data --sort path --csv
    python -m scripts.get_folder_size C:\\Data --include-files --output C:\\temp\\sizes.csv
"""

import argparse
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table, write_csv_report
from winadmin.services.folder_size import format_size, get_folder_sizes

logger = logging.getLogger("get_folder_size")

CSV_COLUMNS = ["path", "depth", "size_bytes", "size", "file_count", "folder_count", "errors", "is_dir"]


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Report folder sizes")
    parser.add_argument("path", help="Folder to measure")
    parser.add_argument("--depth", type=int, default=1, help="Deepest folder level to list (0 = only the root)")
    parser.add_argument("--top", type=int, help="Only show the N largest entries")
    parser.add_argument("--sort", choices=("size", "path"), default="size")
    parser.add_argument("--include-files", action="store_true", help="List files as well as folders")
    parser.add_argument("--follow-symlinks", action="store_true", help="Descend into symlinks and junctions")
    parser.add_argument("--csv", action="store_true", help="Export the report to CSV")
    parser.add_argument("--output", help="CSV path (default: timestamped file in the report directory)")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)
    if args.depth < 0:
        parser.error("--depth must be 0 or greater")
    if args.top is not None and args.top < 0:
        parser.error("--top must be 0 or greater")

    try:
        rows = get_folder_sizes(
            args.path,
            max_depth=args.depth,
            include_files=args.include_files,
            follow_symlinks=args.follow_symlinks,
            sort=args.sort,
            top=args.top,
        )
    except (FileNotFoundError, NotADirectoryError) as e:
        logger.error("%s", e)
        return 2

    print(format_table(
        [[format_size(r.size_bytes), r.file_count, r.folder_count, r.path + ("" if r.is_dir else " (file)")]
         for r in rows],
        ["Size", "Files", "Folders", "Path"],
    ))

    if args.csv or args.output:
        report_rows = [{**vars(r), "size": r.size} for r in rows]
        path = write_csv_report(report_rows, "folder_size", settings.report_dir, args.output, columns=CSV_COLUMNS)
        print(f"\nReport written to {path}")

    return 1 if any(r.errors for r in rows) else 0


if __name__ == "__main__":
    sys.exit(main())
