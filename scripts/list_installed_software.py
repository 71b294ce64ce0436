"""
List installed applications from the registry uninstall keys.

Usage:
    python -m scripts.list_installed_software
    python -m scripts.list_installed_software --filter "*Adobe*" --csv
"""

import argparse
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table, write_csv_report
from winadmin.services.registry import RegistryError
from winadmin.services.software import find_apps, list_installed_apps

logger = logging.getLogger("list_installed_software")


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="List installed software")
    parser.add_argument("--filter", action="append", dest="patterns", help="Wildcard name filter (repeatable)")
    parser.add_argument("--csv", action="store_true", help="Export the list to CSV")
    parser.add_argument("--output", help="CSV path (default: timestamped file in the report directory)")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        apps = list_installed_apps()
    except RegistryError as e:
        logger.error("%s", e)
        return 2

    if args.patterns:
        apps = find_apps(apps, args.patterns)

    print(format_table([[a.name, a.version, a.publisher] for a in apps], ["Name", "Version", "Publisher"]))
    print(f"\n{len(apps)} application(s)")

    if args.csv or args.output:
        path = write_csv_report(apps, "installed_software", settings.report_dir, args.output)
        print(f"Report written to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
