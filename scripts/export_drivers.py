"""
Export third-party drivers from the running system.

Usage:
    python -m scripts.export_drivers C:\\Drivers\\%COMPUTERNAME%
    python -m scripts.export_drivers D:\\Drivers --method pnputil
    python -m scripts.export_drivers D:\\Drivers --list-only
"""

import argparse
import asyncio
import logging
import os
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table, write_csv_report
from winadmin.services.drivers import EXPORT_METHODS, DriverService
from winadmin.services.powershell import PowerShellError

logger = logging.getLogger("export_drivers")


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Export third-party drivers")
    parser.add_argument("destination", help="Folder the drivers are exported to")
    parser.add_argument("--method", choices=EXPORT_METHODS, default="dism")
    parser.add_argument("--list-only", action="store_true", help="Only write the driver inventory")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)
    destination = os.path.expandvars(args.destination)
    service = DriverService()

    try:
        drivers = await service.list_third_party_drivers()
    except PowerShellError as e:
        logger.error("%s", e)
        return 1

    print(format_table(
        [[d.class_name, d.provider, d.version, d.original_file_name] for d in drivers],
        ["Class", "Provider", "Version", "INF"],
    ))

    inventory = os.path.join(destination, "drivers.csv")
    write_csv_report(drivers, "drivers", settings.report_dir, inventory)

    if args.list_only:
        return 0

    try:
        result = await service.export_drivers(destination, method=args.method)
    except PowerShellError as e:
        logger.error("%s", e)
        return 1

    print(f"\nExported {result.exported} driver package(s) to {result.destination}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
