"""
Create Azure DNS zones and their standard records.

For every zone the script creates (or reuses) the zone, adds the records
from --records (CSV: name,type,ttl,value[,priority]) and prints the Azure
name servers to set at the registrar.

Usage:
    python -m scripts.provision_dns_zone contoso.com
    python -m scripts.provision_dns_zone contoso.com fabrikam.com --records baseline.csv
    python -m scripts.provision_dns_zone --file zones.txt --records baseline.csv --tag owner=it
    python -m scripts.provision_dns_zone contoso.com --m365
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import write_json_report
from winadmin.services.azure_dns import AzureDnsError, AzureDnsService, DnsRecordSet, parse_records_csv

logger = logging.getLogger("provision_dns_zone")


def microsoft365_records(zone: str) -> List[DnsRecordSet]:
    """Baseline Microsoft 365 mail records for a zone."""
    return [
        DnsRecordSet(name="@", type="MX", values=[f"0 {zone.replace('.', '-')}.mail.protection.outlook.com"]),
        DnsRecordSet(name="@", type="TXT", values=["v=spf1 include:spf.protection.outlook.com -all"]),
        DnsRecordSet(name="autodiscover", type="CNAME", values=["autodiscover.outlook.com"]),
        DnsRecordSet(name="_dmarc", type="TXT", values=[f"v=DMARC1; p=none; rua=mailto:dmarc@{zone}"]),
    ]


def parse_tags(values: List[str]) -> Dict[str, str]:
    tags = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Tag must be key=value: {item!r}")
        tags[key.strip()] = value.strip()
    return tags


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Provision Azure DNS zones")
    parser.add_argument("zones", nargs="*", help="Zone names")
    parser.add_argument("--file", help="File with one zone per line")
    parser.add_argument("--records", help="CSV of records to create in every zone")
    parser.add_argument("--m365", action="store_true", help="Add Microsoft 365 MX/SPF/autodiscover/DMARC records")
    parser.add_argument("--tag", action="append", default=[], help="Zone tag key=value (repeatable)")
    parser.add_argument("--resource-group", default=settings.azure_resource_group)
    parser.add_argument("--subscription", default=settings.azure_subscription_id)
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    zones = [z.strip().lower().rstrip(".") for z in args.zones]
    records: List[DnsRecordSet] = []
    errors: List[str] = []
    try:
        if args.file:
            with open(args.file, encoding="utf-8") as handle:
                zones.extend(
                    line.strip().lower().rstrip(".") for line in handle if line.strip() and not line.startswith("#")
                )
        if args.records:
            with open(args.records, encoding="utf-8-sig") as handle:
                records, errors = parse_records_csv(handle.read())
    except OSError as e:
        logger.error("%s", e)
        return 2

    zones = [z for z in zones if z]
    if not zones:
        parser.error("give at least one zone or --file")

    if args.records:
        for error in errors:
            logger.error("%s: %s", args.records, error)
        if errors:
            return 2

    try:
        tags = parse_tags(args.tag)
        service = AzureDnsService(args.subscription, args.resource_group)
    except (ValueError, AzureDnsError) as e:
        logger.error("%s", e)
        return 2

    results = []
    for zone in zones:
        zone_records = records + (microsoft365_records(zone) if args.m365 else [])
        result = await service.provision_zone(zone, zone_records, tags=tags or None)
        results.append(result)

        state = "existing" if result.already_existed else "created"
        if result.error:
            print(f"\n{zone}: FAILED - {result.error}")
            continue
        print(f"\n{zone} ({state})")
        print("  Name servers: " + ", ".join(result.name_servers))
        for record in result.records:
            print(f"  {record.type:<6} {record.name:<24} {'ok' if record.success else 'FAILED: ' + (record.error or '')}")

    report = write_json_report(results, "dns_zones", settings.report_dir)
    print(f"\nReport written to {report}")

    ok = sum(1 for r in results if r.success)
    logger.info("Zone provisioning complete: %d/%d successful", ok, len(results))
    return 0 if ok == len(results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
