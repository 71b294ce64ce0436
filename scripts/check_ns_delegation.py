"""
Check that domains are delegated to the name servers of their Azure DNS zone.

Usage:
    python -m scripts.check_ns_delegation contoso.com
    python -m scripts.check_ns_delegation contoso.com --expected ns1-01.azure-dns.com --expected ns2-01.azure-dns.net
"""

import argparse
import asyncio
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table
from winadmin.services.azure_dns import AzureDnsError, AzureDnsService, check_ns_delegation

logger = logging.getLogger("check_ns_delegation")


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Verify NS delegation of Azure DNS zones")
    parser.add_argument("domains", nargs="+")
    parser.add_argument("--expected", action="append", help="Expected name server (skips the Azure lookup)")
    parser.add_argument("--resource-group", default=settings.azure_resource_group)
    parser.add_argument("--subscription", default=settings.azure_subscription_id)
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    service = None
    if not args.expected:
        try:
            service = AzureDnsService(args.subscription, args.resource_group)
        except AzureDnsError as e:
            logger.error("%s", e)
            return 2

    rows = []
    all_ok = True
    for domain in args.domains:
        expected = args.expected
        if service is not None:
            try:
                zone = await service.get_zone(domain)
            except AzureDnsError as e:
                logger.error("%s: %s", domain, e)
                zone = None
            if zone is None:
                rows.append([domain, "NO ZONE", "", ""])
                all_ok = False
                continue
            expected = zone.name_servers

        result = await check_ns_delegation(domain, expected)
        all_ok = all_ok and result.delegated
        rows.append([
            domain,
            "delegated" if result.delegated else (result.error or "MISMATCH"),
            ", ".join(result.current),
            ", ".join(result.expected),
        ])

    print(format_table(rows, ["Domain", "Status", "Current NS", "Expected NS"]))
    return 0 if all_ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
