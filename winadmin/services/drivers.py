"""
Driver extraction

Exports the third-party (OEM) drivers of the running system so they can be
injected into a deployment image or reinstalled after a rebuild.
"""

import logging
import ntpath
import os
from dataclasses import dataclass
from typing import List, Optional

from winadmin.services.powershell import PowerShellError, PowerShellRunner, emit_json, powershell, ps_quote

logger = logging.getLogger(__name__)

EXPORT_METHODS = ("dism", "pnputil")


@dataclass
class DriverInfo:
    published_name: str
    original_file_name: str
    provider: str = ""
    class_name: str = ""
    version: str = ""
    date: str = ""


@dataclass
class DriverExportResult:
    destination: str
    method: str
    success: bool
    exported: int = 0
    error: Optional[str] = None


class DriverService:
    """Driver inventory and export via DISM cmdlets or pnputil."""

    def __init__(self, runner: PowerShellRunner = None):
        self.runner = runner or powershell

    async def list_third_party_drivers(self) -> List[DriverInfo]:
        script = "\n".join([
            '$ErrorActionPreference = "Stop"',
            "$drivers = Get-WindowsDriver -Online | ForEach-Object {",
            "    [pscustomobject]@{",
            "        PublishedName = $_.Driver",
            "        OriginalFileName = $_.OriginalFileName",
            "        Provider = $_.ProviderName",
            "        ClassName = $_.ClassName",
            "        Version = $_.Version",
            "        Date = $_.Date.ToString('yyyy-MM-dd')",
            "    }",
            "}",
            emit_json("$drivers"),
        ])
        rows = await self.runner.run_json(script, "list drivers")
        drivers = [
            DriverInfo(
                published_name=r.get("PublishedName") or "",
                original_file_name=ntpath.basename(r.get("OriginalFileName") or ""),
                provider=r.get("Provider") or "",
                class_name=r.get("ClassName") or "",
                version=r.get("Version") or "",
                date=r.get("Date") or "",
            )
            for r in rows if r
        ]
        drivers.sort(key=lambda d: (d.class_name.lower(), d.provider.lower(), d.published_name))
        logger.info("Found %d third-party drivers", len(drivers))
        return drivers

    async def export_drivers(self, destination: str, method: str = "dism") -> DriverExportResult:
        """
        Export all third-party drivers into `destination`.

        Returns:
            DriverExportResult with the number of driver folders the export added

        Raises:
            ValueError: on an unknown method
            PowerShellError: if the export command fails
        """
        if method not in EXPORT_METHODS:
            raise ValueError(f"Unknown export method {method!r}, expected one of {', '.join(EXPORT_METHODS)}")

        destination = os.path.abspath(destination)
        os.makedirs(destination, exist_ok=True)
        logger.info("Exporting drivers to %s using %s", destination, method)

        if method == "dism":
            export = f"Export-WindowsDriver -Online -Destination {ps_quote(destination)} | Out-Null"
        else:
            export = "\n".join([
                f"pnputil.exe /export-driver * {ps_quote(destination)} | Out-Null",
                'if ($LASTEXITCODE -ne 0) { throw "pnputil exited with code $LASTEXITCODE" }',
            ])

        # Only folders created by this export are counted
        script = "\n".join([
            '$ErrorActionPreference = "Stop"',
            f"$before = @(Get-ChildItem -Path {ps_quote(destination)} -Directory | Select-Object -ExpandProperty Name)",
            export,
            f"$count = @(Get-ChildItem -Path {ps_quote(destination)} -Directory"
            " | Where-Object { $before -notcontains $_.Name }).Count",
            emit_json("@{ Exported = $count }"),
        ])

        result = await self.runner.run(script, timeout=3600)
        if not result.success:
            raise PowerShellError(f"Driver export failed: {result.error or 'unknown error'}",
                                  output=result.output, error=result.error)

        data = result.json_data
        if isinstance(data, list):
            data = data[0] if data else {}
        exported = int((data or {}).get("Exported", 0))
        logger.info("Exported %d driver packages to %s", exported, destination)
        return DriverExportResult(destination=destination, method=method, success=True, exported=exported)
