from __future__ import annotations

import asyncio
import csv
import io
import logging
import re
from typing import Any, Callable, Optional, List

import dns.exception
import dns.resolver
import httpx
import msal
from pydantic import BaseModel, Field

from winadmin.core.config import get_settings

logger = logging.getLogger(__name__)

ARM_SCOPE = "https://management.azure.com/.default"
SUPPORTED_RECORD_TYPES = ("A", "AAAA", "CNAME", "MX", "TXT", "NS", "SRV", "CAA")
TXT_CHUNK_SIZE = 255


class AzureDnsError(Exception):
    """Custom exception for Azure DNS (ARM) API errors."""

    def __init__(self, message: str, status_code: int | None = None, response_body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class DnsZone(BaseModel):
    name: str
    id: str = ""
    name_servers: list[str] = Field(default_factory=list)
    number_of_record_sets: int = 0


class DnsRecordSet(BaseModel):
    """
    One record set: every value shares the name, type and TTL.

    Value formats per type:
        A/AAAA/CNAME/NS  "target"
        MX               "preference exchange"   e.g. "10 mail.example.com"
        TXT              "any text" (split into 255 character chunks on write)
        SRV              "priority weight port target"
        CAA              "flags tag value"       e.g. "0 issue letsencrypt.org"
    """
    name: str = "@"
    type: str
    ttl: int = 3600
    values: list[str] = Field(default_factory=list)


class RecordResult(BaseModel):
    name: str
    type: str
    success: bool
    error: Optional[str] = None


class ZoneProvisionResult(BaseModel):
    zone: str
    success: bool = False
    already_existed: bool = False
    name_servers: list[str] = Field(default_factory=list)
    records: list[RecordResult] = Field(default_factory=list)
    error: Optional[str] = None


class NsDelegationResult(BaseModel):
    domain: str
    expected: list[str]
    current: list[str] = Field(default_factory=list)
    delegated: bool = False
    error: Optional[str] = None


def msal_token_provider(client_id: str, client_secret: str, tenant_id: str) -> Callable[[], str]:
    """Build a token provider using the MSAL client-credentials flow."""
    app = msal.ConfidentialClientApplication(
        client_id,
        authority=f"https://login.microsoftonline.com/{tenant_id}",
        client_credential=client_secret,
    )

    def _acquire() -> str:
        result = app.acquire_token_for_client(scopes=[ARM_SCOPE])
        if "access_token" not in result:
            raise AzureDnsError(
                f"Token acquisition failed: {result.get('error_description') or result.get('error')}"
            )
        return result["access_token"]

    return _acquire


def _split_txt(value: str) -> list[str]:
    return [value[i:i + TXT_CHUNK_SIZE] for i in range(0, len(value), TXT_CHUNK_SIZE)] or [""]


def record_properties(record: DnsRecordSet) -> dict[str, Any]:
    """Translate a record set into the ARM `properties` body."""
    rtype = record.type.upper()
    if rtype not in SUPPORTED_RECORD_TYPES:
        raise ValueError(f"Unsupported record type: {record.type}")
    if not record.values:
        raise ValueError(f"{rtype} record '{record.name}' has no values")

    props: dict[str, Any] = {"TTL": record.ttl}

    if rtype == "A":
        props["ARecords"] = [{"ipv4Address": v} for v in record.values]
    elif rtype == "AAAA":
        props["AAAARecords"] = [{"ipv6Address": v} for v in record.values]
    elif rtype == "CNAME":
        if len(record.values) > 1:
            raise ValueError(f"CNAME record '{record.name}' can only have one value")
        props["CNAMERecord"] = {"cname": record.values[0]}
    elif rtype == "NS":
        props["NSRecords"] = [{"nsdname": v} for v in record.values]
    elif rtype == "TXT":
        props["TXTRecords"] = [{"value": _split_txt(v)} for v in record.values]
    elif rtype == "MX":
        mx = []
        for v in record.values:
            parts = v.split()
            if len(parts) != 2 or not parts[0].isdigit():
                raise ValueError(f"MX value must be 'preference exchange': {v!r}")
            mx.append({"preference": int(parts[0]), "exchange": parts[1]})
        props["MXRecords"] = mx
    elif rtype == "SRV":
        srv = []
        for v in record.values:
            parts = v.split()
            if len(parts) != 4 or not all(p.isdigit() for p in parts[:3]):
                raise ValueError(f"SRV value must be 'priority weight port target': {v!r}")
            srv.append({
                "priority": int(parts[0]),
                "weight": int(parts[1]),
                "port": int(parts[2]),
                "target": parts[3],
            })
        props["SRVRecords"] = srv
    elif rtype == "CAA":
        caa = []
        for v in record.values:
            parts = v.split(None, 2)
            if len(parts) != 3 or not parts[0].isdigit():
                raise ValueError(f"CAA value must be 'flags tag value': {v!r}")
            caa.append({"flags": int(parts[0]), "tag": parts[1], "value": parts[2].strip('"')})
        props["caaRecords"] = caa

    return props


def parse_records_csv(content: str) -> tuple[list[DnsRecordSet], list[str]]:
    """
    Parse a records CSV. Expected columns: name, type, value (required), ttl, priority (optional).
    Rows with the same name and type are merged into one record set.
    Returns (record_sets, errors).
    """
    errors: list[str] = []
    merged: dict[tuple[str, str], DnsRecordSet] = {}

    reader = csv.DictReader(io.StringIO(content))
    columns = {c.strip().lower(): c for c in (reader.fieldnames or [])}

    def _col(*names: str) -> str | None:
        for n in names:
            if n in columns:
                return columns[n]
        return None

    name_col = _col("name", "host", "record", "recordname")
    type_col = _col("type", "recordtype", "record_type")
    value_col = _col("value", "content", "data", "target")
    ttl_col = _col("ttl")
    prio_col = _col("priority", "preference", "pref")

    if not (name_col and type_col and value_col):
        errors.append(
            f"CSV must have 'name', 'type' and 'value' columns. Found: {', '.join(reader.fieldnames or [])}"
        )
        return [], errors

    for i, row in enumerate(reader, start=2):
        name = (row.get(name_col) or "").strip() or "@"
        rtype = (row.get(type_col) or "").strip().upper()
        value = (row.get(value_col) or "").strip()

        if not rtype and not value:
            continue
        if rtype not in SUPPORTED_RECORD_TYPES:
            errors.append(f"Row {i}: Unsupported record type: {rtype or '(empty)'}")
            continue
        if not value:
            errors.append(f"Row {i}: Missing value for {rtype} {name}")
            continue

        ttl = 3600
        ttl_raw = (row.get(ttl_col) or "").strip() if ttl_col else ""
        if ttl_raw:
            if not ttl_raw.isdigit():
                errors.append(f"Row {i}: Invalid TTL: {ttl_raw}")
                continue
            ttl = int(ttl_raw)

        if rtype == "MX":
            prio_raw = (row.get(prio_col) or "").strip() if prio_col else ""
            if prio_raw:
                if not prio_raw.isdigit():
                    errors.append(f"Row {i}: Invalid MX priority: {prio_raw}")
                    continue
                value = f"{prio_raw} {value}"
            elif not re.match(r"^\d+\s+\S+$", value):
                errors.append(f"Row {i}: MX record {name} needs a priority")
                continue

        key = (name.lower(), rtype)
        if key in merged:
            merged[key].values.append(value)
        else:
            merged[key] = DnsRecordSet(name=name, type=rtype, ttl=ttl, values=[value])

    return list(merged.values()), errors


class AzureDnsService:
    """Async client for Azure DNS zone operations through Azure Resource Manager."""

    BASE_URL = "https://management.azure.com"
    API_VERSION = "2018-05-01"

    def __init__(
        self,
        subscription_id: str | None = None,
        resource_group: str | None = None,
        token_provider: Callable[[], str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._subscription_id = subscription_id or settings.azure_subscription_id
        self._resource_group = resource_group or settings.azure_resource_group
        if not self._subscription_id or not self._resource_group:
            raise AzureDnsError("Azure subscription ID and resource group are required")

        if token_provider is None:
            if not settings.azure_client_id or not settings.azure_client_secret or not settings.azure_tenant_id:
                raise AzureDnsError("Azure client ID, client secret, and tenant ID are required")
            token_provider = msal_token_provider(
                settings.azure_client_id, settings.azure_client_secret, settings.azure_tenant_id
            )
        self._token_provider = token_provider
        self._transport = transport
        self._token: str | None = None

    @property
    def _zones_path(self) -> str:
        return (
            f"/subscriptions/{self._subscription_id}/resourceGroups/{self._resource_group}"
            f"/providers/Microsoft.Network/dnsZones"
        )

    async def _headers(self) -> dict[str, str]:
        if self._token is None:
            self._token = await asyncio.to_thread(self._token_provider)
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> dict[str, Any] | None:
        """Make an async request to the ARM API. `endpoint` may be a full nextLink URL."""
        url = endpoint if endpoint.startswith("http") else f"{self.BASE_URL}{endpoint}"
        params = None if "api-version=" in url else {"api-version": self.API_VERSION}
        logger.debug("Azure DNS API %s %s", method, url)

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                headers=await self._headers(),
                json=json_data,
            )

        logger.debug("Response status: %s", response.status_code)

        if response.status_code == 404 and allow_404:
            return None

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text}

        if response.status_code >= 400:
            error = data.get("error", {}) if isinstance(data, dict) else {}
            error_msg = error.get("message") or response.reason_phrase or "Unknown error"
            raise AzureDnsError(
                message=f"Azure DNS API error: {error_msg}",
                status_code=response.status_code,
                response_body=data,
            )

        return data

    @staticmethod
    def _zone_from_response(data: dict[str, Any]) -> DnsZone:
        props = data.get("properties", {})
        return DnsZone(
            name=data.get("name", ""),
            id=data.get("id", ""),
            name_servers=props.get("nameServers", []) or [],
            number_of_record_sets=props.get("numberOfRecordSets", 0) or 0,
        )

    async def get_zone(self, zone: str) -> Optional[DnsZone]:
        """Return the zone, or None if it does not exist in the resource group."""
        logger.info("Checking if zone exists: %s", zone)
        data = await self._request("GET", f"{self._zones_path}/{zone}", allow_404=True)
        if data is None:
            logger.info("No zone found for domain: %s", zone)
            return None
        return self._zone_from_response(data)

    async def list_zones(self) -> List[DnsZone]:
        zones: list[DnsZone] = []
        endpoint: str | None = self._zones_path
        while endpoint:
            data = await self._request("GET", endpoint) or {}
            zones.extend(self._zone_from_response(z) for z in data.get("value", []))
            endpoint = data.get("nextLink")
        return zones

    async def create_zone(self, zone: str, tags: dict[str, str] | None = None) -> DnsZone:
        """
        Create (or overwrite the metadata of) a public DNS zone.

        Returns:
            DnsZone with the Azure name servers to delegate to
        """
        logger.info("Creating Azure DNS zone for domain: %s", zone)

        body: dict[str, Any] = {"location": "global", "properties": {"zoneType": "Public"}}
        if tags:
            body["tags"] = tags

        data = await self._request("PUT", f"{self._zones_path}/{zone}", json_data=body) or {}
        created = self._zone_from_response(data)
        logger.info("Zone created: id=%s, nameservers=%s", created.id, created.name_servers)
        return created

    async def get_or_create_zone(self, zone: str, tags: dict[str, str] | None = None) -> tuple[DnsZone, bool]:
        """
        Get existing zone or create new one.

        Returns:
            (zone, already_existed)
        """
        existing = await self.get_zone(zone)
        if existing:
            logger.info("Using existing zone for %s (%d record sets)", zone, existing.number_of_record_sets)
            return existing, True
        return await self.create_zone(zone, tags), False

    async def list_record_sets(self, zone: str) -> List[dict[str, Any]]:
        """Get all record sets of a zone, following nextLink paging."""
        records: list[dict[str, Any]] = []
        endpoint: str | None = f"{self._zones_path}/{zone}/recordsets"
        while endpoint:
            data = await self._request("GET", endpoint) or {}
            for r in data.get("value", []):
                records.append({
                    "name": r.get("name", ""),
                    "type": r.get("type", "").rsplit("/", 1)[-1],
                    "ttl": r.get("properties", {}).get("TTL"),
                    "fqdn": r.get("properties", {}).get("fqdn", ""),
                })
            endpoint = data.get("nextLink")
        logger.debug("Found %d record sets in zone %s", len(records), zone)
        return records

    async def create_record_set(self, zone: str, record: DnsRecordSet) -> dict[str, Any]:
        """Create or replace one record set."""
        rtype = record.type.upper()
        logger.info("Creating %s record set %s in zone %s (%d values)", rtype, record.name, zone, len(record.values))
        body = {"properties": record_properties(record)}
        return await self._request(
            "PUT", f"{self._zones_path}/{zone}/{rtype}/{record.name}", json_data=body
        ) or {}

    async def delete_record_set(self, zone: str, record_type: str, name: str) -> bool:
        logger.info("Deleting %s record set %s from zone %s", record_type, name, zone)
        await self._request("DELETE", f"{self._zones_path}/{zone}/{record_type.upper()}/{name}")
        return True

    async def import_records(self, zone: str, records: list[DnsRecordSet]) -> list[RecordResult]:
        """Create every record set; a failed record does not stop the rest."""
        results: list[RecordResult] = []
        for record in records:
            result = RecordResult(name=record.name, type=record.type.upper(), success=False)
            try:
                await self.create_record_set(zone, record)
                result.success = True
            except (AzureDnsError, ValueError) as e:
                result.error = str(e)
                logger.error("Failed to create %s %s in %s: %s", record.type, record.name, zone, e)
            results.append(result)
        return results

    async def provision_zone(
        self,
        zone: str,
        records: list[DnsRecordSet] | None = None,
        tags: dict[str, str] | None = None,
    ) -> ZoneProvisionResult:
        """Create the zone if needed, then add the given record sets."""
        result = ZoneProvisionResult(zone=zone)
        try:
            dns_zone, existed = await self.get_or_create_zone(zone, tags)
        except AzureDnsError as e:
            result.error = str(e)
            logger.error("Failed to provision zone %s: %s", zone, e)
            return result

        result.already_existed = existed
        result.name_servers = dns_zone.name_servers
        result.records = await self.import_records(zone, records or [])
        result.success = all(r.success for r in result.records)

        ok = sum(1 for r in result.records if r.success)
        logger.info("Zone %s provisioned: %d/%d record sets created", zone, ok, len(result.records))
        return result


def _normalize_ns(names: list[str]) -> list[str]:
    return sorted({n.rstrip(".").lower() for n in names if n})


async def check_ns_delegation(
    domain: str,
    expected_ns: list[str],
    resolver: dns.resolver.Resolver | None = None,
) -> NsDelegationResult:
    """
    Check if the domain's live NS records match the expected name servers.

    Comparison ignores case, order and trailing dots.
    """
    expected = _normalize_ns(expected_ns)
    result = NsDelegationResult(domain=domain, expected=expected)

    if resolver is None:
        settings = get_settings()
        resolver = dns.resolver.Resolver()
        resolver.timeout = settings.dns_timeout
        resolver.lifetime = settings.dns_lifetime

    def _resolve_sync() -> list[str]:
        answers = resolver.resolve(domain, "NS")
        return _normalize_ns([str(rdata.target) for rdata in answers])

    try:
        result.current = await asyncio.to_thread(_resolve_sync)
    except dns.resolver.NXDOMAIN:
        result.error = "Domain not found (NXDOMAIN)"
    except dns.resolver.NoAnswer:
        result.error = "No NS records found"
    except dns.resolver.NoNameservers:
        result.error = "No name servers could answer"
    except dns.resolver.Timeout:
        result.error = "DNS timeout"
    except dns.exception.DNSException as e:
        result.error = f"DNS lookup failed: {e}"

    result.delegated = bool(result.current) and result.current == expected
    logger.info(
        "NS delegation check for %s: current=%s, expected=%s, delegated=%s",
        domain, result.current, expected, result.delegated,
    )
    return result
