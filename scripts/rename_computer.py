"""
Rename this computer, by default to <prefix><BIOS serial number>.

Domain-joined machines need domain credentials; the password can come from
the WINADMIN_DOMAIN_PASSWORD environment variable instead of the command line.

Usage:
    python -m scripts.rename_computer --prefix LT- --dry-run
    python -m scripts.rename_computer --name SALES-PC-07 --restart
    python -m scripts.rename_computer --prefix DT- --domain-user CONTOSO\\joinacct
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.services.computer_name import ComputerNameError, ComputerNameService, build_computer_name
from winadmin.services.powershell import PowerShellError

logger = logging.getLogger("rename_computer")


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Rename this computer")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--name", help="Exact new name")
    target.add_argument("--prefix", help="Name prefix; the BIOS serial number is appended")
    parser.add_argument("--domain-user", help="Account allowed to rename the AD computer object")
    parser.add_argument("--restart", action="store_true", help="Restart immediately after renaming")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)
    service = ComputerNameService()

    domain_password = None
    if args.domain_user:
        domain_password = os.environ.get("WINADMIN_DOMAIN_PASSWORD") or getpass.getpass(
            f"Password for {args.domain_user}: "
        )

    try:
        if args.name:
            new_name = args.name
        else:
            new_name = build_computer_name(args.prefix, await service.get_serial_number())
        result = await service.rename(
            new_name,
            domain_user=args.domain_user,
            domain_password=domain_password,
            restart=args.restart,
            dry_run=args.dry_run,
        )
    except ComputerNameError as e:
        logger.error("%s", e)
        return 2
    except PowerShellError as e:
        logger.error("%s", e)
        return 1

    if result.dry_run and result.old_name.upper() != result.new_name:
        print(f"DRY RUN: would rename {result.old_name} -> {result.new_name}")
    elif not result.changed:
        print(f"{result.old_name} already has the requested name")
    else:
        print(f"Renamed {result.old_name} -> {result.new_name}")
        if result.restart_required:
            print("Restart the computer to apply the new name.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
