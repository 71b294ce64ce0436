"""
Mail Records Audit - Check a domain's MX, SPF, DMARC and DKIM records.

Only public DNS is queried; nothing needs credentials. DMARC records are
parsed tag by tag against the tags defined in RFC 7489 so that typos and
unsupported values show up in the report.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import dns.exception
import dns.resolver
from pydantic import BaseModel, Field

from winadmin.core.config import get_settings

logger = logging.getLogger(__name__)

# Labels of 1-63 characters; the TLD may be punycode (xn--p1ai) but not all digits
DOMAIN_REGEX = re.compile(
    r'^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+(?!\d+$)[a-z0-9][a-z0-9-]{0,61}[a-z0-9]$'
)

# Selectors used by the common mail providers (Microsoft 365, Google, Mailchimp, generic)
DEFAULT_DKIM_SELECTORS = [
    "selector1", "selector2", "google", "default", "k1", "k2", "s1", "s2", "dkim", "mail",
]

SPF_LOOKUP_LIMIT = 10
SPF_LOOKUP_MECHANISMS = ("include", "a", "mx", "ptr", "exists")

STATUS_ORDER = {"pass": 0, "warn": 1, "fail": 2, "error": 3}


@dataclass(frozen=True)
class DmarcTag:
    name: str
    description: str
    allowed: Optional[Tuple[str, ...]] = None
    default: Optional[str] = None


DMARC_TAGS: Dict[str, DmarcTag] = {
    "v": DmarcTag("Version", "Protocol version", ("DMARC1",)),
    "p": DmarcTag("Policy", "Policy applied to mail that fails DMARC", ("none", "quarantine", "reject")),
    "sp": DmarcTag("Subdomain policy", "Policy applied to subdomains", ("none", "quarantine", "reject")),
    "np": DmarcTag("Non-existent subdomain policy", "Policy for subdomains that do not exist",
                   ("none", "quarantine", "reject")),
    "pct": DmarcTag("Percentage", "Percentage of failing mail the policy applies to", default="100"),
    "rua": DmarcTag("Aggregate reports", "Where aggregate (daily) reports are sent"),
    "ruf": DmarcTag("Forensic reports", "Where per-message failure reports are sent"),
    "adkim": DmarcTag("DKIM alignment", "DKIM identifier alignment mode", ("r", "s"), "r"),
    "aspf": DmarcTag("SPF alignment", "SPF identifier alignment mode", ("r", "s"), "r"),
    "fo": DmarcTag("Failure options", "When forensic reports are generated", ("0", "1", "d", "s"), "0"),
    "rf": DmarcTag("Report format", "Format of forensic reports", ("afrf", "iodef"), "afrf"),
    "ri": DmarcTag("Report interval", "Seconds between aggregate reports", default="86400"),
}

POLICY_MEANINGS = {
    "none": "No action, monitoring only",
    "quarantine": "Failing mail is sent to spam/junk",
    "reject": "Failing mail is rejected",
}

ALIGNMENT_MEANINGS = {"r": "relaxed", "s": "strict"}


class DnsLookupError(Exception):
    """Raised when a DNS query times out."""
    pass


class CheckResult(BaseModel):
    status: str = "fail"  # pass / warn / fail / error
    summary: str = ""
    records: List[str] = Field(default_factory=list)
    details: List[str] = Field(default_factory=list)


class DmarcRecord(BaseModel):
    raw: str
    tags: Dict[str, str] = Field(default_factory=dict)
    unknown_tags: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def policy(self) -> Optional[str]:
        value = self.tags.get("p")
        return value.lower() if value else None

    @property
    def subdomain_policy(self) -> Optional[str]:
        value = self.tags.get("sp")
        return value.lower() if value else self.policy

    @property
    def pct(self) -> int:
        try:
            return int(self.tags.get("pct", "100"))
        except ValueError:
            return 100

    @property
    def is_valid(self) -> bool:
        return not self.errors


class MailAuditResult(BaseModel):
    domain: str
    mx: CheckResult = Field(default_factory=CheckResult)
    spf: CheckResult = Field(default_factory=CheckResult)
    dmarc: CheckResult = Field(default_factory=CheckResult)
    dkim: CheckResult = Field(default_factory=CheckResult)
    dkim_selectors: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def overall(self) -> str:
        return max((self.mx.status, self.spf.status, self.dmarc.status, self.dkim.status),
                   key=lambda s: STATUS_ORDER.get(s, 3))


# === DMARC ===

def _check_uri_list(tag: str, value: str, errors: List[str]) -> None:
    for uri in value.split(","):
        uri = uri.strip()
        if not uri.lower().startswith("mailto:") or "@" not in uri:
            errors.append(f"{tag}: invalid report address {uri!r} (expected mailto:user@domain)")


def parse_dmarc(record: str) -> DmarcRecord:
    """
    Parse a DMARC TXT record into its tags and validate each known tag.

    Tag names are case-insensitive; empty segments (e.g. a trailing ';') are ignored.
    """
    result = DmarcRecord(raw=record)
    order: List[str] = []

    for segment in record.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            result.errors.append(f"Malformed tag: {segment!r}")
            continue

        tag, value = segment.split("=", 1)
        tag = tag.strip().lower()
        value = value.strip()

        if tag in result.tags:
            result.errors.append(f"Duplicate tag: {tag}")
            continue
        result.tags[tag] = value
        order.append(tag)
        if tag not in DMARC_TAGS:
            result.unknown_tags.append(tag)

    tags = result.tags
    errors = result.errors

    if not order or order[0] != "v":
        errors.append("v=DMARC1 must be the first tag")
    if tags.get("v", "").upper() != "DMARC1" and "v" in tags:
        errors.append(f"v: unsupported version {tags['v']!r}")

    if "p" not in tags:
        errors.append("Required tag p is missing")

    for tag in ("p", "sp", "np"):
        if tag in tags and tags[tag].lower() not in DMARC_TAGS[tag].allowed:
            errors.append(f"{tag}: invalid policy {tags[tag]!r}")

    if "pct" in tags:
        if not tags["pct"].isdigit() or not 0 <= int(tags["pct"]) <= 100:
            errors.append(f"pct: must be a whole number from 0 to 100, got {tags['pct']!r}")

    for tag in ("adkim", "aspf"):
        if tag in tags and tags[tag].lower() not in DMARC_TAGS[tag].allowed:
            errors.append(f"{tag}: must be 'r' or 's', got {tags[tag]!r}")

    if "ri" in tags and not tags["ri"].isdigit():
        errors.append(f"ri: must be a whole number of seconds, got {tags['ri']!r}")

    if "fo" in tags:
        for option in tags["fo"].split(":"):
            if option.strip().lower() not in DMARC_TAGS["fo"].allowed:
                errors.append(f"fo: unknown option {option.strip()!r}")

    if "rf" in tags:
        for fmt in tags["rf"].split(","):
            if fmt.strip().lower() not in DMARC_TAGS["rf"].allowed:
                errors.append(f"rf: unknown report format {fmt.strip()!r}")

    for tag in ("rua", "ruf"):
        if tag in tags:
            _check_uri_list(tag, tags[tag], errors)

    return result


def classify_dmarc(record: DmarcRecord) -> Tuple[str, str]:
    """Return (status, summary) for a parsed DMARC record."""
    if not record.is_valid or record.policy not in POLICY_MEANINGS:
        return "fail", "Invalid DMARC record"

    if record.policy == "none":
        return "warn", "Monitoring only (p=none)"

    if record.policy == "quarantine" and record.pct < 100:
        return "warn", f"Partially enforced (p={record.policy}, pct={record.pct})"
    return "pass", f"Enforced (p={record.policy})"


def describe_dmarc(record: DmarcRecord) -> List[str]:
    """Human-readable explanation of each tag in the record."""
    lines = []
    for tag, value in record.tags.items():
        known = DMARC_TAGS.get(tag)
        if known is None:
            lines.append(f"{tag}={value}: unknown tag")
            continue

        meaning = ""
        if tag in ("p", "sp", "np"):
            meaning = POLICY_MEANINGS.get(value.lower(), "")
        elif tag in ("adkim", "aspf"):
            meaning = ALIGNMENT_MEANINGS.get(value.lower(), "")
        elif tag == "pct":
            meaning = f"policy applies to {value}% of failing mail"

        line = f"{tag} ({known.name}): {value}"
        if meaning:
            line += f" - {meaning}"
        lines.append(line)

    for tag in ("sp", "adkim", "aspf"):
        if tag not in record.tags and record.is_valid:
            default = record.policy if tag == "sp" else DMARC_TAGS[tag].default
            lines.append(f"{tag} ({DMARC_TAGS[tag].name}): not set, defaults to {default}")
    return lines


# === SPF ===

def evaluate_spf(records: List[str]) -> CheckResult:
    spf = [r for r in records if r.lower() == "v=spf1" or r.lower().startswith("v=spf1 ")]
    result = CheckResult(records=spf)

    if not spf:
        result.status, result.summary = "fail", "No SPF record"
        return result
    if len(spf) > 1:
        result.status, result.summary = "fail", f"Multiple SPF records ({len(spf)})"
        result.details.append("Receivers treat more than one SPF record as a permanent error")
        return result

    terms = spf[0].split()[1:]
    lookups = 0
    all_qualifier = None
    has_redirect = False

    for term in terms:
        lower = term.lower()
        if lower.startswith("redirect="):
            has_redirect = True
            lookups += 1
            continue
        mechanism = lower.lstrip("+-~?")
        qualifier = lower[0] if lower[0] in "+-~?" else "+"
        name = re.split(r"[:/]", mechanism, maxsplit=1)[0]
        if name == "all":
            all_qualifier = qualifier
        elif name in SPF_LOOKUP_MECHANISMS:
            lookups += 1
            if name == "ptr":
                result.details.append("ptr mechanism is deprecated")

    statuses = []
    if all_qualifier == "-":
        statuses.append("pass")
        result.summary = "Hard fail (-all)"
    elif all_qualifier == "~":
        statuses.append("pass")
        result.summary = "Soft fail (~all)"
    elif all_qualifier == "?":
        statuses.append("warn")
        result.summary = "Neutral (?all)"
    elif all_qualifier == "+":
        statuses.append("fail")
        result.summary = "Allows any sender (+all)"
    elif has_redirect:
        statuses.append("pass")
        result.summary = "Delegated via redirect"
    else:
        statuses.append("warn")
        result.summary = "No 'all' mechanism"

    result.details.append(f"{lookups} DNS lookup(s)")
    if lookups > SPF_LOOKUP_LIMIT:
        statuses.append("warn")
        result.details.append(f"Exceeds the {SPF_LOOKUP_LIMIT} DNS lookup limit")

    result.status = max(statuses, key=STATUS_ORDER.get)
    return result


# === DKIM ===

def parse_dkim(record: str) -> Dict[str, str]:
    tags = {}
    for segment in record.split(";"):
        if "=" in segment:
            tag, value = segment.split("=", 1)
            tags[tag.strip().lower()] = "".join(value.split())
    return tags


def is_dkim_record(record: str) -> bool:
    tags = parse_dkim(record)
    return tags.get("v", "").upper() == "DKIM1" or "p" in tags


class MailRecordChecker:
    """Check MX, SPF, DMARC and DKIM for domains using dnspython."""

    def __init__(
        self,
        resolver: Optional[dns.resolver.Resolver] = None,
        dkim_selectors: Optional[List[str]] = None,
    ):
        settings = get_settings()
        if resolver is None:
            resolver = dns.resolver.Resolver()
            resolver.timeout = settings.dns_timeout
            resolver.lifetime = settings.dns_lifetime
        self.resolver = resolver
        self.dkim_selectors = dkim_selectors or settings.dkim_selectors_list or DEFAULT_DKIM_SELECTORS

    async def _resolve(self, name: str, rdtype: str) -> list:
        """Resolve in a thread; a missing name or record yields an empty list."""
        def _resolve_sync():
            return list(self.resolver.resolve(name, rdtype))

        try:
            return await asyncio.to_thread(_resolve_sync)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
            return []
        except dns.resolver.Timeout as e:
            raise DnsLookupError(f"DNS timeout resolving {rdtype} {name}") from e
        except dns.exception.DNSException as e:
            raise DnsLookupError(f"DNS error resolving {rdtype} {name}: {e}") from e

    async def resolve_txt(self, name: str) -> List[str]:
        answers = await self._resolve(name, "TXT")
        records = []
        for rdata in answers:
            chunks = [s.decode("utf-8", errors="replace") if isinstance(s, bytes) else s for s in rdata.strings]
            records.append("".join(chunks))
        return records

    async def check_mx(self, domain: str) -> CheckResult:
        answers = await self._resolve(domain, "MX")
        mx = sorted(
            ((int(r.preference), str(r.exchange).rstrip(".") or ".") for r in answers),
            key=lambda item: (item[0], item[1]),
        )
        result = CheckResult(records=[f"{pref} {host}" for pref, host in mx])

        if not mx:
            result.status, result.summary = "fail", "No MX records"
        elif len(mx) == 1 and mx[0][1] == ".":
            result.status, result.summary = "warn", "Null MX: domain accepts no mail"
        else:
            result.status, result.summary = "pass", f"{len(mx)} MX record(s), primary {mx[0][1]}"
        return result

    async def check_spf(self, domain: str) -> CheckResult:
        return evaluate_spf(await self.resolve_txt(domain))

    async def check_dmarc(self, domain: str) -> CheckResult:
        txts = await self.resolve_txt(f"_dmarc.{domain}")
        dmarc = [t for t in txts if t.strip().lower().startswith("v=dmarc1")]
        result = CheckResult(records=dmarc)

        if not dmarc:
            result.status, result.summary = "fail", "No DMARC record"
            return result
        if len(dmarc) > 1:
            result.status, result.summary = "fail", f"Multiple DMARC records ({len(dmarc)})"
            return result

        parsed = parse_dmarc(dmarc[0])
        result.status, result.summary = classify_dmarc(parsed)
        result.details = parsed.errors + describe_dmarc(parsed)
        return result

    async def check_dkim(self, domain: str) -> Tuple[CheckResult, List[str]]:
        result = CheckResult()
        found: List[str] = []
        revoked: List[str] = []

        for selector in self.dkim_selectors:
            name = f"{selector}._domainkey.{domain}"
            for record in await self.resolve_txt(name):
                if not is_dkim_record(record):
                    continue
                tags = parse_dkim(record)
                result.records.append(f"{selector}: {record}")
                if not tags.get("p"):
                    revoked.append(selector)
                    result.details.append(f"{selector}: key revoked (empty p=)")
                else:
                    found.append(selector)
                    result.details.append(f"{selector}: k={tags.get('k', 'rsa')}")
                break

        if found:
            result.status, result.summary = "pass", f"Selectors found: {', '.join(found)}"
        elif revoked:
            result.status, result.summary = "warn", f"Only revoked keys: {', '.join(revoked)}"
        else:
            result.status = "fail"
            result.summary = f"No DKIM key on {len(self.dkim_selectors)} common selectors"
        return result, found

    async def check_domain(self, domain: str) -> MailAuditResult:
        domain = domain.strip().lower().rstrip(".")
        result = MailAuditResult(domain=domain)

        if not DOMAIN_REGEX.match(domain):
            result.error = f"Invalid domain format: {domain}"
            for check in (result.mx, result.spf, result.dmarc, result.dkim):
                check.status, check.summary = "error", "Not checked"
            return result

        logger.info("Checking mail records for %s", domain)

        async def _guard(name: str, coro):
            try:
                return await coro
            except DnsLookupError as e:
                logger.warning("[%s] %s check failed: %s", domain, name, e)
                return CheckResult(status="error", summary=str(e))

        mx, spf, dmarc, dkim = await asyncio.gather(
            _guard("MX", self.check_mx(domain)),
            _guard("SPF", self.check_spf(domain)),
            _guard("DMARC", self.check_dmarc(domain)),
            _guard("DKIM", self.check_dkim(domain)),
        )
        result.mx, result.spf, result.dmarc = mx, spf, dmarc
        if isinstance(dkim, tuple):
            result.dkim, result.dkim_selectors = dkim
        else:
            result.dkim = dkim

        logger.info(
            "[%s] MX=%s SPF=%s DMARC=%s DKIM=%s",
            domain, result.mx.status, result.spf.status, result.dmarc.status, result.dkim.status,
        )
        return result

    async def check_domains(self, domains: List[str], max_concurrent: int = 10) -> List[MailAuditResult]:
        """Check multiple domains with controlled concurrency."""
        semaphore = asyncio.Semaphore(max_concurrent)

        async def check_with_semaphore(domain: str) -> MailAuditResult:
            async with semaphore:
                return await self.check_domain(domain)

        clean_domains = [d.strip() for d in domains if d.strip()]
        tasks = [check_with_semaphore(d) for d in clean_domains]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        final_results = []
        for i, r in enumerate(results):
            if isinstance(r, Exception):
                logger.error("Mail record check failed for %s: %s", clean_domains[i], r)
                failed = MailAuditResult(domain=clean_domains[i].lower(), error=str(r))
                for check in (failed.mx, failed.spf, failed.dmarc, failed.dkim):
                    check.status, check.summary = "error", "Not checked"
                final_results.append(failed)
            else:
                final_results.append(r)

        return final_results
