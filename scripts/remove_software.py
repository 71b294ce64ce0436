"""
Silently uninstall unwanted software.

Without --pattern a built-in list of common OEM trialware is used.

Usage:
    python -m scripts.remove_software --dry-run
    python -m scripts.remove_software --pattern "McAfee*" --pattern "*Toolbar*"
    python -m scripts.remove_software --pattern "Norton*" --exclude "Norton Password Manager"
"""

import argparse
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table, write_json_report
from winadmin.services.registry import RegistryError
from winadmin.services.software import DEFAULT_UNWANTED_PATTERNS, find_apps, list_installed_apps, remove_apps

logger = logging.getLogger("remove_software")


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Remove unwanted software")
    parser.add_argument("--pattern", action="append", dest="patterns", help="Wildcard name to remove (repeatable)")
    parser.add_argument("--exclude", action="append", default=[], help="Wildcard name to keep (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be removed")
    parser.add_argument("--timeout", type=int, default=1800, help="Seconds allowed per uninstall")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)
    patterns = args.patterns or DEFAULT_UNWANTED_PATTERNS

    try:
        targets = find_apps(list_installed_apps(), patterns, args.exclude)
    except RegistryError as e:
        logger.error("%s", e)
        return 2

    if not targets:
        logger.info("No installed applications match %s", ", ".join(patterns))
        return 0

    results = remove_apps(targets, dry_run=args.dry_run, timeout=args.timeout)

    print(format_table(
        [[r.name, "dry run" if r.dry_run else ("removed" if r.success else "FAILED"), r.exit_code, r.error or ""]
         for r in results],
        ["Application", "Result", "Exit code", "Error"],
    ))
    report = write_json_report(results, "software_removal", settings.report_dir)
    print(f"\nReport written to {report}")

    if any(r.reboot_required for r in results):
        logger.warning("A restart is required to finish removing some applications")

    failed = sum(1 for r in results if not r.success)
    logger.info("Removal complete: %d succeeded, %d failed", len(results) - failed, failed)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
