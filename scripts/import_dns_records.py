"""
Import DNS records from a CSV into an existing Azure DNS zone.

CSV columns: name,type,ttl,value[,priority]. Rows with the same name and
type become one record set; existing record sets of that name/type are replaced.

Usage:
    python -m scripts.import_dns_records contoso.com records.csv
    python -m scripts.import_dns_records contoso.com records.csv --dry-run
"""

import argparse
import asyncio
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table
from winadmin.services.azure_dns import AzureDnsError, AzureDnsService, parse_records_csv, record_properties

logger = logging.getLogger("import_dns_records")


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Import DNS records into an Azure DNS zone")
    parser.add_argument("zone")
    parser.add_argument("csv_file")
    parser.add_argument("--dry-run", action="store_true", help="Validate the CSV without calling Azure")
    parser.add_argument("--resource-group", default=settings.azure_resource_group)
    parser.add_argument("--subscription", default=settings.azure_subscription_id)
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        with open(args.csv_file, encoding="utf-8-sig") as handle:
            records, errors = parse_records_csv(handle.read())
    except OSError as e:
        logger.error("%s", e)
        return 2

    for record in records:
        try:
            record_properties(record)
        except ValueError as e:
            errors.append(str(e))

    for error in errors:
        logger.error("%s", error)
    if errors:
        return 2

    print(format_table(
        [[r.type, r.name, r.ttl, " | ".join(r.values)] for r in records],
        ["Type", "Name", "TTL", "Values"],
    ))
    if args.dry_run:
        print(f"\n{len(records)} record set(s) valid, nothing changed (dry run)")
        return 0

    try:
        service = AzureDnsService(args.subscription, args.resource_group)
        if await service.get_zone(args.zone) is None:
            logger.error("Zone %s does not exist in resource group %s", args.zone, args.resource_group)
            return 2
    except AzureDnsError as e:
        logger.error("%s", e)
        return 1

    results = await service.import_records(args.zone, records)
    failed = [r for r in results if not r.success]
    for r in failed:
        print(f"FAILED {r.type} {r.name}: {r.error}")
    print(f"\n{len(results) - len(failed)}/{len(results)} record set(s) imported into {args.zone}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
