"""
Audit MX, SPF, DMARC and DKIM records for one or more domains.

Usage:
    python -m scripts.check_mail_records example.com
    python -m scripts.check_mail_records example.com contoso.com --details
    python -m scripts.check_mail_records --file domains.txt --csv
    python -m scripts.check_mail_records example.com --selector s1 --selector s2
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.core.reports import format_table, write_csv_report
from winadmin.services.mail_records import MailAuditResult, MailRecordChecker

logger = logging.getLogger("check_mail_records")

CSV_COLUMNS = [
    "domain", "overall",
    "mx_status", "mx_summary", "mx_records",
    "spf_status", "spf_summary", "spf_record",
    "dmarc_status", "dmarc_summary", "dmarc_record",
    "dkim_status", "dkim_summary", "dkim_selectors",
    "error",
]


def read_domains(path: str) -> List[str]:
    """One domain per line; blank lines and '#' comments are ignored. A CSV's first column is used."""
    domains = []
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            value = line.split("#", 1)[0].split(",", 1)[0].strip()
            if value and value.lower() not in ("domain", "domain_name", "name"):
                domains.append(value)
    return domains


def to_row(result: MailAuditResult) -> dict:
    return {
        "domain": result.domain,
        "overall": result.overall if not result.error else "error",
        "mx_status": result.mx.status,
        "mx_summary": result.mx.summary,
        "mx_records": "; ".join(result.mx.records),
        "spf_status": result.spf.status,
        "spf_summary": result.spf.summary,
        "spf_record": "; ".join(result.spf.records),
        "dmarc_status": result.dmarc.status,
        "dmarc_summary": result.dmarc.summary,
        "dmarc_record": "; ".join(result.dmarc.records),
        "dkim_status": result.dkim.status,
        "dkim_summary": result.dkim.summary,
        "dkim_selectors": ", ".join(result.dkim_selectors),
        "error": result.error or "",
    }


def print_details(result: MailAuditResult) -> None:
    print(f"\n=== {result.domain} ===")
    if result.error:
        print(f"  ERROR: {result.error}")
        return
    for label, check in (("MX", result.mx), ("SPF", result.spf), ("DMARC", result.dmarc), ("DKIM", result.dkim)):
        print(f"  {label:<6} {check.status.upper():<6} {check.summary}")
        for record in check.records:
            print(f"           record: {record}")
        for detail in check.details:
            print(f"           {detail}")


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Audit DKIM/SPF/DMARC/MX records")
    parser.add_argument("domains", nargs="*", help="Domains to check")
    parser.add_argument("--file", help="File with one domain per line")
    parser.add_argument("--selector", action="append", dest="selectors", help="DKIM selector to try (repeatable)")
    parser.add_argument("--details", action="store_true", help="Print every record and DMARC tag")
    parser.add_argument("--csv", action="store_true", help="Export the results to CSV")
    parser.add_argument("--output", help="CSV path (default: timestamped file in the report directory)")
    parser.add_argument("--max-concurrency", type=int, default=10, help="Domains checked in parallel")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    domains = list(args.domains)
    if args.file:
        try:
            domains.extend(read_domains(args.file))
        except OSError as e:
            logger.error("%s", e)
            return 2
    if not domains:
        parser.error("give at least one domain or --file")

    checker = MailRecordChecker(dkim_selectors=args.selectors)
    results = await checker.check_domains(domains, max_concurrent=max(1, args.max_concurrency))

    rows = [to_row(r) for r in results]
    print(format_table(
        [[r["domain"], r["overall"], r["mx_status"], r["spf_status"], r["dmarc_status"], r["dkim_status"]]
         for r in rows],
        ["Domain", "Overall", "MX", "SPF", "DMARC", "DKIM"],
    ))

    if args.details:
        for result in results:
            print_details(result)

    if args.csv or args.output:
        path = write_csv_report(rows, "mail_records", settings.report_dir, args.output, columns=CSV_COLUMNS)
        print(f"\nReport written to {path}")

    return 1 if any(r["overall"] in ("fail", "error") for r in rows) else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
