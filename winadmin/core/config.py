from functools import lru_cache
import json

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    log_level: str = "INFO"

    # Azure DNS (app registration with DNS Zone Contributor on the resource group)
    azure_client_id: str | None = None
    azure_client_secret: str | None = None
    azure_tenant_id: str | None = None
    azure_subscription_id: str | None = None
    azure_resource_group: str | None = None

    # PowerShell
    pwsh_path: str | None = None  # Falls back to powershell.exe / pwsh detection
    powershell_timeout: int = 300

    # Reports land here unless a script is given an explicit output path
    report_dir: str = "reports"

    # DNS resolution used by the mail record audit and NS checks
    dns_timeout: float = 5.0
    dns_lifetime: float = 10.0

    dkim_selectors: str = ""

    @property
    def dkim_selectors_list(self) -> list[str]:
        """Parse dkim_selectors as comma-separated string or JSON array."""
        if not self.dkim_selectors:
            return []
        if self.dkim_selectors.startswith('['):
            return json.loads(self.dkim_selectors)
        return [s.strip() for s in self.dkim_selectors.split(',') if s.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
