"""
Tests for the mail records audit: DMARC parsing, SPF evaluation, DKIM
discovery and the per-domain check with a fake resolver.
"""

import dns.exception
import dns.name
import dns.resolver
import pytest

from winadmin.services.mail_records import (
    DEFAULT_DKIM_SELECTORS,
    DOMAIN_REGEX,
    MailRecordChecker,
    classify_dmarc,
    describe_dmarc,
    evaluate_spf,
    is_dkim_record,
    parse_dkim,
    parse_dmarc,
)


# === DMARC parsing ===

def test_parse_dmarc_valid_record():
    """Test parsing a complete, valid DMARC record."""
    record = parse_dmarc("v=DMARC1; p=reject; sp=quarantine; pct=100; rua=mailto:dmarc@example.com; adkim=s")
    assert record.is_valid
    assert record.policy == "reject"
    assert record.subdomain_policy == "quarantine"
    assert record.pct == 100
    assert record.tags["rua"] == "mailto:dmarc@example.com"
    assert record.unknown_tags == []


def test_parse_dmarc_is_case_insensitive_and_ignores_trailing_separator():
    record = parse_dmarc("V=DMARC1; P=Quarantine;")
    assert record.is_valid
    assert record.policy == "quarantine"
    assert record.subdomain_policy == "quarantine"


def test_parse_dmarc_missing_policy():
    """Test that p= is required."""
    record = parse_dmarc("v=DMARC1; rua=mailto:dmarc@example.com")
    assert not record.is_valid
    assert "Required tag p is missing" in record.errors


def test_parse_dmarc_version_must_come_first():
    record = parse_dmarc("p=none; v=DMARC1")
    assert "v=DMARC1 must be the first tag" in record.errors


def test_parse_dmarc_invalid_values():
    """Test that each bad tag value is reported separately."""
    record = parse_dmarc("v=DMARC1; p=block; pct=150; adkim=x; ri=daily; fo=2; rf=json; rua=dmarc@example.com")
    errors = " | ".join(record.errors)
    assert "p: invalid policy 'block'" in errors
    assert "pct: must be a whole number from 0 to 100" in errors
    assert "adkim: must be 'r' or 's'" in errors
    assert "ri: must be a whole number of seconds" in errors
    assert "fo: unknown option '2'" in errors
    assert "rf: unknown report format 'json'" in errors
    assert "rua: invalid report address" in errors


def test_parse_dmarc_duplicate_and_malformed_tags():
    record = parse_dmarc("v=DMARC1; p=none; p=reject; garbage")
    assert "Duplicate tag: p" in record.errors
    assert "Malformed tag: 'garbage'" in record.errors
    assert record.policy == "none"


def test_parse_dmarc_unknown_tag_is_not_an_error():
    record = parse_dmarc("v=DMARC1; p=none; foo=bar")
    assert record.is_valid
    assert record.unknown_tags == ["foo"]


def test_parse_dmarc_failure_options_are_colon_separated():
    record = parse_dmarc("v=DMARC1; p=none; fo=1:d:s")
    assert record.is_valid


@pytest.mark.parametrize(
    "raw, status, summary",
    [
        ("v=DMARC1; p=reject", "pass", "Enforced (p=reject)"),
        ("v=DMARC1; p=reject; pct=50", "pass", "Enforced (p=reject)"),
        ("v=DMARC1; p=quarantine; pct=25", "warn", "Partially enforced (p=quarantine, pct=25)"),
        ("v=DMARC1; p=none", "warn", "Monitoring only (p=none)"),
        ("v=DMARC1; p=bogus", "fail", "Invalid DMARC record"),
    ],
)
def test_classify_dmarc(raw, status, summary):
    assert classify_dmarc(parse_dmarc(raw)) == (status, summary)


def test_describe_dmarc_lists_defaults():
    lines = describe_dmarc(parse_dmarc("v=DMARC1; p=reject; pct=50"))
    assert "p (Policy): reject - Failing mail is rejected" in lines
    assert "pct (Percentage): 50 - policy applies to 50% of failing mail" in lines
    assert "sp (Subdomain policy): not set, defaults to reject" in lines
    assert "adkim (DKIM alignment): not set, defaults to r" in lines


# === SPF ===

def test_spf_missing():
    result = evaluate_spf(["google-site-verification=abc"])
    assert result.status == "fail"
    assert result.summary == "No SPF record"


def test_spf_multiple_records():
    result = evaluate_spf(["v=spf1 -all", "v=spf1 include:_spf.google.com ~all"])
    assert result.status == "fail"
    assert result.summary == "Multiple SPF records (2)"


@pytest.mark.parametrize(
    "record, status, summary",
    [
        ("v=spf1 include:spf.protection.outlook.com -all", "pass", "Hard fail (-all)"),
        ("v=spf1 mx ~all", "pass", "Soft fail (~all)"),
        ("v=spf1 a ?all", "warn", "Neutral (?all)"),
        ("v=spf1 +all", "fail", "Allows any sender (+all)"),
        ("v=spf1 all", "fail", "Allows any sender (+all)"),
        ("v=spf1 redirect=_spf.example.net", "pass", "Delegated via redirect"),
        ("v=spf1 ip4:192.0.2.0/24", "warn", "No 'all' mechanism"),
    ],
)
def test_spf_all_qualifiers(record, status, summary):
    result = evaluate_spf([record])
    assert result.status == status
    assert result.summary == summary


def test_spf_lookup_limit():
    """Test that more than 10 DNS-querying mechanisms downgrades to warn."""
    includes = " ".join(f"include:spf{i}.example.net" for i in range(11))
    result = evaluate_spf([f"v=spf1 {includes} -all"])
    assert result.status == "warn"
    assert "11 DNS lookup(s)" in result.details
    assert "Exceeds the 10 DNS lookup limit" in result.details


def test_spf_counts_lookups_and_flags_ptr():
    result = evaluate_spf(["v=spf1 a mx ptr ip4:192.0.2.1 include:_spf.example.net -all"])
    assert result.status == "pass"
    assert "4 DNS lookup(s)" in result.details
    assert "ptr mechanism is deprecated" in result.details


# === DKIM ===

def test_parse_dkim_strips_whitespace_in_values():
    tags = parse_dkim("v=DKIM1; k=rsa; p=MIGf MA0G")
    assert tags == {"v": "DKIM1", "k": "rsa", "p": "MIGfMA0G"}


def test_is_dkim_record():
    assert is_dkim_record("v=DKIM1; p=abc")
    assert is_dkim_record("k=rsa; p=abc")
    assert not is_dkim_record("v=spf1 -all")


# === Checker ===

@pytest.fixture
def example_resolver(fake_resolver_factory, rdata):
    return fake_resolver_factory({
        ("example.com", "MX"): [rdata.mx(20, "backup.example.com."), rdata.mx(10, "mail.example.com.")],
        ("example.com", "TXT"): [
            rdata.txt("google-site-verification=abc"),
            rdata.txt("v=spf1 include:spf.protection.outlook.com ", "-all"),
        ],
        ("_dmarc.example.com", "TXT"): [rdata.txt("v=DMARC1; p=quarantine; pct=50")],
        ("selector1._domainkey.example.com", "TXT"): [rdata.txt("v=DKIM1; k=rsa; ", "p=MIGfMA0GCSqGSIb3")],
        ("selector2._domainkey.example.com", "TXT"): dns.resolver.NoAnswer(),
    })


@pytest.mark.asyncio
async def test_check_domain(example_resolver):
    """Test a full audit of a domain with every record type present."""
    checker = MailRecordChecker(resolver=example_resolver, dkim_selectors=["selector1", "selector2"])
    result = await checker.check_domain(" Example.COM. ")

    assert result.domain == "example.com"
    assert result.error is None

    assert result.mx.status == "pass"
    assert result.mx.records == ["10 mail.example.com", "20 backup.example.com"]
    assert result.mx.summary == "2 MX record(s), primary mail.example.com"

    assert result.spf.status == "pass"
    assert result.spf.records == ["v=spf1 include:spf.protection.outlook.com -all"]

    assert result.dmarc.status == "warn"
    assert result.dmarc.summary == "Partially enforced (p=quarantine, pct=50)"

    assert result.dkim.status == "pass"
    assert result.dkim_selectors == ["selector1"]
    assert result.dkim.details == ["selector1: k=rsa"]

    assert result.overall == "warn"


@pytest.mark.asyncio
async def test_check_domain_without_records(fake_resolver_factory):
    checker = MailRecordChecker(resolver=fake_resolver_factory(), dkim_selectors=["selector1"])
    result = await checker.check_domain("empty.example")

    assert result.mx.summary == "No MX records"
    assert result.spf.summary == "No SPF record"
    assert result.dmarc.summary == "No DMARC record"
    assert result.dkim.summary == "No DKIM key on 1 common selectors"
    assert result.overall == "fail"


@pytest.mark.asyncio
async def test_null_mx_and_revoked_dkim(fake_resolver_factory, rdata):
    resolver = fake_resolver_factory({
        ("parked.example", "MX"): [rdata.mx(0, ".")],
        ("s1._domainkey.parked.example", "TXT"): [rdata.txt("v=DKIM1; p=")],
    })
    checker = MailRecordChecker(resolver=resolver, dkim_selectors=["s1"])
    result = await checker.check_domain("parked.example")

    assert result.mx.status == "warn"
    assert result.mx.summary == "Null MX: domain accepts no mail"
    assert result.dkim.status == "warn"
    assert result.dkim_selectors == []
    assert "s1: key revoked (empty p=)" in result.dkim.details


@pytest.mark.asyncio
async def test_multiple_dmarc_records(fake_resolver_factory, rdata):
    resolver = fake_resolver_factory({
        ("_dmarc.example.net", "TXT"): [rdata.txt("v=DMARC1; p=none"), rdata.txt("v=DMARC1; p=reject")],
    })
    checker = MailRecordChecker(resolver=resolver, dkim_selectors=["s1"])
    result = await checker.check_dmarc("example.net")
    assert result.status == "fail"
    assert result.summary == "Multiple DMARC records (2)"


@pytest.mark.asyncio
async def test_dns_timeout_marks_check_as_error(fake_resolver_factory):
    """Test that a timeout on one lookup does not abort the other checks."""
    resolver = fake_resolver_factory({("slow.example", "MX"): dns.resolver.Timeout()})
    checker = MailRecordChecker(resolver=resolver, dkim_selectors=["s1"])
    result = await checker.check_domain("slow.example")

    assert result.mx.status == "error"
    assert "DNS timeout resolving MX slow.example" in result.mx.summary
    assert result.spf.status == "fail"
    assert result.overall == "error"


@pytest.mark.asyncio
async def test_invalid_domain_is_not_queried(fake_resolver_factory):
    resolver = fake_resolver_factory()
    checker = MailRecordChecker(resolver=resolver)
    result = await checker.check_domain("not a domain")

    assert result.error == "Invalid domain format: not a domain"
    assert result.overall == "error"
    assert resolver.queries == []


@pytest.mark.parametrize(
    "domain, valid",
    [
        ("example.com", True),
        ("mail.sub.example.co.uk", True),
        ("example.xn--p1ai", True),
        ("xn--e1afmkfd.xn--p1ai", True),
        ("a" * 63 + ".com", True),
        ("a" * 64 + ".com", False),
        ("example.123", False),
        ("-example.com", False),
        ("example", False),
    ],
)
def test_domain_regex(domain, valid):
    assert bool(DOMAIN_REGEX.match(domain)) is valid


@pytest.mark.asyncio
async def test_check_domain_with_punycode_tld(fake_resolver_factory, rdata):
    resolver = fake_resolver_factory({("example.xn--p1ai", "MX"): [rdata.mx(10, "mx.example.xn--p1ai.")]})
    checker = MailRecordChecker(resolver=resolver, dkim_selectors=["s1"])
    result = await checker.check_domain("Example.XN--P1AI")

    assert result.error is None
    assert ("example.xn--p1ai", "MX") in resolver.queries
    assert result.mx.status == "pass"


@pytest.mark.asyncio
async def test_resolver_errors_mark_check_as_error(fake_resolver_factory):
    """Test that any dnspython error is reported per check instead of escaping."""
    resolver = fake_resolver_factory({
        ("broken.example", "MX"): dns.name.LabelTooLong(),
        ("_dmarc.broken.example", "TXT"): dns.exception.DNSException("bad response"),
    })
    checker = MailRecordChecker(resolver=resolver, dkim_selectors=["s1"])
    result = await checker.check_domain("broken.example")

    assert result.mx.status == "error"
    assert result.mx.summary.startswith("DNS error resolving MX broken.example")
    assert result.dmarc.status == "error"
    assert result.spf.status == "fail"
    assert result.overall == "error"


@pytest.mark.asyncio
async def test_check_domains_reports_unexpected_failure(example_resolver, monkeypatch):
    checker = MailRecordChecker(resolver=example_resolver, dkim_selectors=["selector1"])
    check_domain = checker.check_domain

    async def flaky_check(domain):
        if domain.lower() == "crash.example":
            raise RuntimeError("resolver crashed")
        return await check_domain(domain)

    monkeypatch.setattr(checker, "check_domain", flaky_check)
    results = await checker.check_domains(["example.com", "Crash.Example"])

    assert [r.domain for r in results] == ["example.com", "crash.example"]
    assert results[0].error is None
    failed = results[1]
    assert failed.error == "resolver crashed"
    assert [c.status for c in (failed.mx, failed.spf, failed.dmarc, failed.dkim)] == ["error"] * 4
    assert failed.overall == "error"


@pytest.mark.asyncio
async def test_check_domains_keeps_input_order(example_resolver):
    checker = MailRecordChecker(resolver=example_resolver, dkim_selectors=["selector1"])
    results = await checker.check_domains(["example.com", "  ", "bad_domain", "missing.example"])

    assert [r.domain for r in results] == ["example.com", "bad_domain", "missing.example"]
    assert results[0].overall == "warn"
    assert results[1].error is not None
    assert results[2].mx.status == "fail"


def test_default_selectors(monkeypatch):
    """Test that selectors come from settings before falling back to the built-in list."""
    checker = MailRecordChecker(resolver=object())
    assert checker.dkim_selectors == DEFAULT_DKIM_SELECTORS

    from winadmin.core.config import get_settings
    monkeypatch.setenv("DKIM_SELECTORS", "mta1,mta2")
    get_settings.cache_clear()
    checker = MailRecordChecker(resolver=object())
    assert checker.dkim_selectors == ["mta1", "mta2"]
