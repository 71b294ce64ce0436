"""
Computer renaming

Builds a NetBIOS-safe name (usually prefix + BIOS serial number) and renames
the machine with Rename-Computer. Domain-joined machines are renamed with
domain credentials so the AD computer object follows.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from winadmin.services.powershell import (
    PowerShellError,
    PowerShellRunner,
    emit_json,
    powershell,
    ps_bool,
    ps_quote,
)

logger = logging.getLogger(__name__)

NETBIOS_MAX_LENGTH = 15
VALID_NAME = re.compile(r"^[A-Z0-9][A-Z0-9-]*$")


class ComputerNameError(Exception):
    """Raised for invalid computer names or failed renames."""
    pass


@dataclass
class RenameResult:
    old_name: str
    new_name: str
    success: bool
    changed: bool = False
    restart_required: bool = False
    dry_run: bool = False
    error: Optional[str] = None


def build_computer_name(prefix: str, serial: str, max_length: int = NETBIOS_MAX_LENGTH) -> str:
    """
    Combine prefix and serial number into a valid computer name.

    The serial is truncated from the left so the (usually unique) tail of it
    survives when the full name would be longer than 15 characters.
    """
    clean_prefix = re.sub(r"[^A-Z0-9-]", "", (prefix or "").upper())
    clean_serial = re.sub(r"[^A-Z0-9]", "", (serial or "").upper())

    room = max_length - len(clean_prefix)
    if room < 0:
        raise ComputerNameError(f"Prefix {prefix!r} is longer than {max_length} characters")
    if room and len(clean_serial) > room:
        clean_serial = clean_serial[-room:]
    elif not room:
        clean_serial = ""

    name = (clean_prefix + clean_serial).strip("-")
    validate_computer_name(name)
    return name


def validate_computer_name(name: str) -> None:
    if not name:
        raise ComputerNameError("Computer name is empty")
    if len(name) > NETBIOS_MAX_LENGTH:
        raise ComputerNameError(f"Computer name {name!r} is longer than {NETBIOS_MAX_LENGTH} characters")
    if not VALID_NAME.match(name.upper()) or name.endswith("-"):
        raise ComputerNameError(f"Computer name {name!r} may only contain letters, digits and hyphens")
    if name.isdigit():
        raise ComputerNameError(f"Computer name {name!r} cannot be all digits")


class ComputerNameService:
    """Computer identity lookups and renames via CIM and Rename-Computer."""

    def __init__(self, runner: PowerShellRunner = None):
        self.runner = runner or powershell

    async def get_system_info(self) -> dict:
        script = "\n".join([
            '$ErrorActionPreference = "Stop"',
            "$cs = Get-CimInstance -ClassName Win32_ComputerSystem",
            "$bios = Get-CimInstance -ClassName Win32_BIOS",
            "$info = [pscustomobject]@{",
            "    Name = $env:COMPUTERNAME",
            "    SerialNumber = $bios.SerialNumber",
            "    PartOfDomain = [bool]$cs.PartOfDomain",
            "    Domain = $cs.Domain",
            "}",
            emit_json("$info"),
        ])
        rows = await self.runner.run_json(script, "read computer information")
        return rows[0]

    async def get_current_name(self) -> str:
        return (await self.get_system_info())["Name"]

    async def get_serial_number(self) -> str:
        serial = ((await self.get_system_info()).get("SerialNumber") or "").strip()
        if not serial or serial.lower() in ("to be filled by o.e.m.", "default string", "system serial number"):
            raise ComputerNameError(f"BIOS reports no usable serial number ({serial!r})")
        return serial

    async def is_domain_joined(self) -> bool:
        return bool((await self.get_system_info()).get("PartOfDomain"))

    async def name_exists_in_ad(self, name: str) -> Optional[bool]:
        """
        Check Active Directory for a computer object with this name.

        Returns None when the ActiveDirectory module is not installed.
        """
        # AD filter values are single-quoted; a quote inside is doubled
        filter_value = name.replace("'", "''")
        script = "\n".join([
            "if (-not (Get-Module -ListAvailable -Name ActiveDirectory)) {",
            emit_json("@{ Available = $false; Exists = $false }"),
            "    exit 0",
            "}",
            "Import-Module ActiveDirectory -ErrorAction Stop",
            f"$name = {ps_quote(filter_value)}",
            "$found = Get-ADComputer -Filter \"Name -eq '$name'\" -ErrorAction Stop",
            emit_json("@{ Available = $true; Exists = [bool]$found }"),
        ])
        row = (await self.runner.run_json(script, "query Active Directory"))[0]
        if not row.get("Available"):
            logger.warning("ActiveDirectory module not available, skipping AD name check")
            return None
        return bool(row.get("Exists"))

    async def rename(
        self,
        new_name: str,
        domain_user: Optional[str] = None,
        domain_password: Optional[str] = None,
        restart: bool = False,
        dry_run: bool = False,
    ) -> RenameResult:
        new_name = new_name.upper()
        validate_computer_name(new_name)

        info = await self.get_system_info()
        current = info["Name"]
        result = RenameResult(old_name=current, new_name=new_name, success=False, dry_run=dry_run)

        if current.upper() == new_name:
            logger.info("Computer is already named %s", new_name)
            result.success = True
            return result

        if info.get("PartOfDomain"):
            if not domain_user or not domain_password:
                raise ComputerNameError(
                    f"{current} is joined to {info.get('Domain')}; domain credentials are required to rename it"
                )
            if await self.name_exists_in_ad(new_name):
                raise ComputerNameError(f"A computer named {new_name} already exists in Active Directory")

        if dry_run:
            logger.info("DRY RUN: would rename %s to %s", current, new_name)
            result.success = True
            return result

        lines = ['$ErrorActionPreference = "Stop"']
        command = f"Rename-Computer -NewName {ps_quote(new_name)} -Force"
        if domain_user and domain_password:
            lines += [
                f"$secure = ConvertTo-SecureString {ps_quote(domain_password)} -AsPlainText -Force",
                f"$cred = New-Object System.Management.Automation.PSCredential({ps_quote(domain_user)}, $secure)",
            ]
            command += " -DomainCredential $cred"
        command += f" -Restart:{ps_bool(restart)}"
        lines.append(command)

        logger.info("Renaming %s to %s (restart=%s)", current, new_name, restart)
        ps_result = await self.runner.run("\n".join(lines))
        if not ps_result.success:
            raise PowerShellError(f"Rename-Computer failed: {ps_result.error or 'unknown error'}",
                                  output=ps_result.output, error=ps_result.error)

        result.success = True
        result.changed = True
        result.restart_required = not restart
        logger.info("Renamed %s to %s%s", current, new_name, "" if restart else ", restart required")
        return result
