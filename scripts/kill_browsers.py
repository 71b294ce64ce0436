"""
Close web browsers, e.g. before pushing a browser update.

Usage:
    python -m scripts.kill_browsers
    python -m scripts.kill_browsers chrome msedge
    python -m scripts.kill_browsers firefox --no-force --dry-run
"""

import argparse
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table
from winadmin.services.browsers import KNOWN_BROWSERS, kill_browsers

logger = logging.getLogger("kill_browsers")


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Terminate browser processes")
    parser.add_argument("browsers", nargs="*", help=f"Browsers to close (default: all of {', '.join(KNOWN_BROWSERS)})")
    parser.add_argument("--no-force", action="store_true", help="Ask the browsers to close instead of killing them")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        results = kill_browsers(args.browsers or None, force=not args.no_force, dry_run=args.dry_run)
    except ValueError as e:
        logger.error("%s", e)
        return 2

    running = [r for r in results if r.was_running]
    if not running:
        print("No browsers running.")
        return 0

    print(format_table(
        [[r.name, r.process_count, "dry run" if r.dry_run else ("killed" if r.killed else "FAILED"), r.error or ""]
         for r in running],
        ["Browser", "Processes", "Result", "Error"],
    ))
    return 1 if any(r.error for r in running) else 0


if __name__ == "__main__":
    sys.exit(main())
