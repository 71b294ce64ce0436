from winadmin.services.azure_dns import AzureDnsError, AzureDnsService
from winadmin.services.powershell import (
    PowerShellError,
    PowerShellRunner,
    PowerShellResult,
    powershell,
    PWSH_PATH,
)
from winadmin.services.mail_records import MailRecordChecker, parse_dmarc
from winadmin.services.registry import RegistryError, WindowsRegistry


__all__ = [
    # Azure DNS
    "AzureDnsError",
    "AzureDnsService",
    # PowerShell
    "PowerShellError",
    "PowerShellRunner",
    "PowerShellResult",
    "powershell",
    "PWSH_PATH",
    # Mail records
    "MailRecordChecker",
    "parse_dmarc",
    # Registry
    "RegistryError",
    "WindowsRegistry",
]
