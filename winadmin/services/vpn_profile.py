"""
VPN profile configuration using the built-in Windows VPN client cmdlets
(Add-VpnConnection / Set-VpnConnection / Add-VpnConnectionRoute).
"""

import ipaddress
import json
import logging
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from winadmin.services.powershell import PowerShellRunner, emit_json, powershell, ps_bool, ps_quote

logger = logging.getLogger(__name__)

TunnelType = Literal["Automatic", "Ikev2", "L2tp", "Pptp", "Sstp"]
AuthenticationMethod = Literal["Eap", "MSChapv2", "Pap", "Chap", "MachineCertificate"]
EncryptionLevel = Literal["NoEncryption", "Optional", "Required", "Maximum"]


class VpnProfileError(Exception):
    """Raised when a VPN profile definition cannot be loaded."""
    pass


class VpnProfile(BaseModel):
    name: str
    server_address: str
    tunnel_type: TunnelType = "Automatic"
    authentication_method: AuthenticationMethod = "MSChapv2"
    encryption_level: EncryptionLevel = "Required"
    l2tp_psk: Optional[str] = Field(default=None, repr=False)
    split_tunneling: bool = False
    remember_credential: bool = True
    all_user_connection: bool = True
    dns_suffix: Optional[str] = None
    routes: List[str] = Field(default_factory=list)

    @field_validator("name", "server_address")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("routes")
    @classmethod
    def _valid_routes(cls, routes: List[str]) -> List[str]:
        normalized = []
        for route in routes:
            try:
                normalized.append(str(ipaddress.ip_network(route.strip(), strict=False)))
            except ValueError:
                raise ValueError(f"invalid route {route!r}, expected CIDR notation") from None
        return normalized

    @model_validator(mode="after")
    def _check_combinations(self) -> "VpnProfile":
        if self.l2tp_psk and self.tunnel_type != "L2tp":
            raise ValueError("l2tp_psk can only be used with tunnel_type 'L2tp'")
        if self.routes and not self.split_tunneling:
            raise ValueError("routes require split_tunneling")
        return self


def load_vpn_profiles(path: str) -> List[VpnProfile]:
    """Load one profile (JSON object) or several (JSON array) from a file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise VpnProfileError(f"Cannot read VPN profile file {path}: {e}") from e

    items = data if isinstance(data, list) else [data]
    try:
        return [VpnProfile(**item) for item in items]
    except (TypeError, ValidationError) as e:
        raise VpnProfileError(f"Invalid VPN profile in {path}: {e}") from e


class VpnApplyResult(BaseModel):
    name: str
    action: str = ""  # created / updated / replaced
    success: bool = False
    routes_added: int = 0
    error: Optional[str] = None


def _connection_params(profile: VpnProfile, include_name: bool = True) -> str:
    params = []
    if include_name:
        params.append(f"-Name {ps_quote(profile.name)}")
    params += [
        f"-ServerAddress {ps_quote(profile.server_address)}",
        f"-TunnelType {profile.tunnel_type}",
        f"-AuthenticationMethod {profile.authentication_method}",
        f"-EncryptionLevel {profile.encryption_level}",
        f"-SplitTunneling:{ps_bool(profile.split_tunneling)}",
        f"-RememberCredential:{ps_bool(profile.remember_credential)}",
    ]
    if profile.all_user_connection:
        params.append("-AllUserConnection")
    if profile.l2tp_psk:
        params.append(f"-L2tpPsk {ps_quote(profile.l2tp_psk)}")
    if profile.dns_suffix:
        params.append(f"-DnsSuffix {ps_quote(profile.dns_suffix)}")
    return " ".join(params + ["-Force"])


def build_vpn_script(profile: VpnProfile, replace: bool = False) -> str:
    """
    Render an idempotent script: an existing connection with the same name is
    updated in place (or removed and recreated with `replace`), otherwise created.
    """
    name = ps_quote(profile.name)
    scope = " -AllUserConnection" if profile.all_user_connection else ""

    lines = [
        '$ErrorActionPreference = "Stop"',
        f"$existing = Get-VpnConnection -Name {name}{scope} -ErrorAction SilentlyContinue",
        '$action = "created"',
        "if ($existing) {",
    ]
    if replace:
        lines += [
            f"    Remove-VpnConnection -Name {name}{scope} -Force",
            f"    Add-VpnConnection {_connection_params(profile)}",
            '    $action = "replaced"',
        ]
    else:
        lines += [
            f"    Set-VpnConnection -Name {name} {_connection_params(profile, include_name=False)}",
            '    $action = "updated"',
        ]
    lines += [
        "} else {",
        f"    Add-VpnConnection {_connection_params(profile)}",
        "}",
        "$routes = 0",
    ]
    for route in profile.routes:
        lines += [
            f"$have = Get-VpnConnection -Name {name}{scope} | Select-Object -ExpandProperty Routes"
            f" | Where-Object {{ $_.DestinationPrefix -eq {ps_quote(route)} }}",
            "if (-not $have) {",
            f"    Add-VpnConnectionRoute -ConnectionName {name} -DestinationPrefix {ps_quote(route)}{scope}",
            "    $routes++",
            "}",
        ]
    lines.append(emit_json("@{ Action = $action; Routes = $routes }"))
    return "\n".join(lines)


class VpnProfileService:
    def __init__(self, runner: PowerShellRunner = None):
        self.runner = runner or powershell

    async def apply(self, profile: VpnProfile, replace: bool = False) -> VpnApplyResult:
        logger.info(
            "Applying VPN profile %s -> %s (%s, %s)",
            profile.name, profile.server_address, profile.tunnel_type, profile.authentication_method,
        )
        result = VpnApplyResult(name=profile.name)

        ps_result = await self.runner.run(build_vpn_script(profile, replace=replace))
        if not ps_result.success:
            result.error = (ps_result.error or "unknown error").strip()
            logger.error("Failed to apply VPN profile %s: %s", profile.name, result.error)
            return result

        data = ps_result.json_data
        if isinstance(data, list):
            data = data[0] if data else {}
        data = data or {}

        result.success = True
        result.action = data.get("Action", "created")
        result.routes_added = int(data.get("Routes", 0))
        logger.info("VPN profile %s %s (%d routes added)", profile.name, result.action, result.routes_added)
        return result
