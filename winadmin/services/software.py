"""
Installed software inventory and unattended removal.

Applications are read from the registry uninstall keys (the same list
"Apps & features" shows). Removal prefers the MSI product code, then the
vendor's quiet uninstall string, then the regular uninstall string with a
silent switch added.
"""

import fnmatch
import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from winadmin.services.registry import WindowsRegistry

logger = logging.getLogger(__name__)

UNINSTALL_KEYS = [
    ("HKLM", r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
    ("HKLM", r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall"),
    ("HKCU", r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
]

# Preinstalled trialware and adware commonly found on new OEM machines
DEFAULT_UNWANTED_PATTERNS = [
    "McAfee*",
    "Norton*",
    "WildTangent*",
    "*Toolbar*",
    "ExpressVPN*",
    "Booking.com*",
    "Candy Crush*",
    "Dropbox*Promotion*",
]

MSI_PRODUCT_CODE = re.compile(r"msiexec(?:\.exe)?\b.*?/[IX]\s*(\{[0-9A-F\-]{36}\})", re.IGNORECASE)
GUID = re.compile(r"^\{[0-9A-F\-]{36}\}$", re.IGNORECASE)
SILENT_SWITCHES = re.compile(r"(?:^|\s)(?:/S|/silent|/quiet|/verysilent|/qn|-s|--silent|-silent)(?:\s|$)", re.IGNORECASE)

# 1605: product not installed, 1641/3010: success, reboot required
MSI_SUCCESS_CODES = {0, 1605, 1641, 3010}
REBOOT_CODES = {1641, 3010}


class SoftwareRemovalError(Exception):
    """Raised when no uninstall command can be built for an application."""
    pass


@dataclass
class InstalledApp:
    name: str
    version: str = ""
    publisher: str = ""
    uninstall_string: str = ""
    quiet_uninstall_string: str = ""
    product_code: Optional[str] = None
    key_path: str = ""


@dataclass
class RemovalResult:
    name: str
    command: str
    success: bool
    exit_code: Optional[int] = None
    reboot_required: bool = False
    dry_run: bool = False
    error: Optional[str] = None


def list_installed_apps(registry=None) -> List[InstalledApp]:
    """Read every visible application from the uninstall keys, sorted by name."""
    registry = registry or WindowsRegistry()
    apps: List[InstalledApp] = []
    seen = set()

    for hive, path in UNINSTALL_KEYS:
        for subkey in registry.list_subkeys(hive, path):
            key_path = f"{path}\\{subkey}"
            values = registry.get_values(hive, key_path)
            name = str(values.get("DisplayName") or "").strip()
            if not name or values.get("SystemComponent") == 1 or values.get("ParentKeyName"):
                continue

            uninstall = str(values.get("UninstallString") or "").strip()
            product_code = None
            if values.get("WindowsInstaller") == 1 and GUID.match(subkey):
                product_code = subkey.upper()
            else:
                match = MSI_PRODUCT_CODE.search(uninstall)
                if match:
                    product_code = match.group(1).upper()

            app = InstalledApp(
                name=name,
                version=str(values.get("DisplayVersion") or ""),
                publisher=str(values.get("Publisher") or ""),
                uninstall_string=uninstall,
                quiet_uninstall_string=str(values.get("QuietUninstallString") or "").strip(),
                product_code=product_code,
                key_path=f"{hive}\\{key_path}",
            )
            dedupe_key = (app.name.lower(), app.version, app.product_code)
            if dedupe_key in seen:
                continue
            seen.add(dedupe_key)
            apps.append(app)

    apps.sort(key=lambda a: a.name.lower())
    logger.info("Found %d installed applications", len(apps))
    return apps


def find_apps(
    apps: Sequence[InstalledApp],
    patterns: Sequence[str],
    exclude: Sequence[str] = (),
) -> List[InstalledApp]:
    """Select apps whose name matches any wildcard pattern (case-insensitive) and no exclusion."""
    def _matches(name: str, pats: Sequence[str]) -> bool:
        return any(fnmatch.fnmatch(name.lower(), p.lower()) for p in pats)

    return [a for a in apps if _matches(a.name, patterns) and not _matches(a.name, exclude)]


def build_uninstall_command(app: InstalledApp) -> str:
    product_code = app.product_code
    if not product_code and app.uninstall_string:
        # MSI installers often register "MsiExec.exe /I{code}", which repairs instead of removing
        match = MSI_PRODUCT_CODE.search(app.uninstall_string)
        if match:
            product_code = match.group(1).upper()
    if product_code:
        return f"msiexec.exe /X{product_code} /qn /norestart"
    if app.quiet_uninstall_string:
        return app.quiet_uninstall_string
    if not app.uninstall_string:
        raise SoftwareRemovalError(f"No uninstall command registered for {app.name}")

    command = app.uninstall_string
    if SILENT_SWITCHES.search(command):
        return command

    executable = command.strip('"').split('"')[0].lower()
    if re.search(r"unins\d{3}\.exe", executable):
        # Inno Setup
        return f"{command} /VERYSILENT /SUPPRESSMSGBOXES /NORESTART"
    if re.search(r"uninst[^\\]*\.exe", executable):
        # NSIS
        return f"{command} /S"
    return f"{command} /quiet"


def remove_apps(apps: Sequence[InstalledApp], dry_run: bool = False, timeout: int = 1800) -> List[RemovalResult]:
    """Run the silent uninstall for each app. One failure does not stop the rest."""
    results: List[RemovalResult] = []

    for app in apps:
        try:
            command = build_uninstall_command(app)
        except SoftwareRemovalError as e:
            logger.error("%s", e)
            results.append(RemovalResult(name=app.name, command="", success=False, error=str(e)))
            continue

        if dry_run:
            logger.info("DRY RUN: would remove %s with: %s", app.name, command)
            results.append(RemovalResult(name=app.name, command=command, success=True, dry_run=True))
            continue

        logger.info("Removing %s %s", app.name, app.version)
        result = RemovalResult(name=app.name, command=command, success=False)
        try:
            proc = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
            result.exit_code = proc.returncode
            result.success = proc.returncode in MSI_SUCCESS_CODES
            result.reboot_required = proc.returncode in REBOOT_CODES
            if not result.success:
                result.error = (proc.stderr or "").strip() or f"Exit code {proc.returncode}"
        except subprocess.TimeoutExpired:
            result.error = f"Timed out after {timeout}s"
        except OSError as e:
            result.error = str(e)

        if result.success:
            logger.info("Removed %s (exit code %s)", app.name, result.exit_code)
        else:
            logger.error("Failed to remove %s: %s", app.name, result.error)
        results.append(result)

    return results
