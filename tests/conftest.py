"""
Pytest configuration and fixtures.

Platform seams (PowerShell, registry, DNS) are replaced with in-memory
fakes so the tests run on any OS without network access.
"""

import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import dns.resolver
import pytest

from winadmin.core.config import get_settings
from winadmin.services.powershell import JSON_BEGIN, JSON_END, PowerShellResult, PowerShellRunner


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate tests from a developer's .env and environment."""
    for name in ("DKIM_SELECTORS", "AZURE_SUBSCRIPTION_ID", "AZURE_RESOURCE_GROUP",
                 "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZURE_TENANT_ID"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def ps_output(data: Any, text: str = "") -> str:
    """Build stdout the way emit_json() prints it."""
    return f"{text}\n{JSON_BEGIN}\n{json.dumps(data)}\n{JSON_END}\n"


class FakeRunner(PowerShellRunner):
    """PowerShellRunner that records scripts and replays queued results."""

    def __init__(self, results: Optional[List[PowerShellResult]] = None):
        super().__init__(timeout=30, pwsh_path="pwsh")
        self.scripts: List[str] = []
        self.results = list(results or [])

    def queue_json(self, data: Any) -> None:
        self.results.append(PowerShellResult(success=True, output=ps_output(data), json_data=data))

    def queue_failure(self, error: str) -> None:
        self.results.append(PowerShellResult(success=False, output="", error=error))

    async def run(self, script: str, timeout: int = None) -> PowerShellResult:
        self.scripts.append(script)
        if not self.results:
            return PowerShellResult(success=True, output="")
        return self.results.pop(0)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


class FakeRegistry:
    """Dict-backed stand-in for WindowsRegistry."""

    def __init__(self):
        self.keys: Dict[tuple, Dict[str, Any]] = {}

    def add_key(self, hive: str, path: str, values: Optional[Dict[str, Any]] = None) -> None:
        self.keys[(hive.upper(), path.lower())] = dict(values or {})

    def list_subkeys(self, hive: str, path: str) -> List[str]:
        prefix = path.lower() + "\\"
        names = []
        for (h, p) in self.keys:
            if h == hive.upper() and p.startswith(prefix) and "\\" not in p[len(prefix):]:
                names.append(p[len(prefix):])
        return sorted(names)

    def get_values(self, hive: str, path: str) -> Dict[str, Any]:
        return dict(self.keys.get((hive.upper(), path.lower()), {}))

    def set_value(self, hive: str, path: str, name: str, value: Any) -> None:
        self.keys.setdefault((hive.upper(), path.lower()), {})[name] = value

    def delete_value(self, hive: str, path: str, name: str) -> None:
        self.keys.get((hive.upper(), path.lower()), {}).pop(name, None)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


def txt(*chunks: str) -> SimpleNamespace:
    return SimpleNamespace(strings=tuple(c.encode() for c in chunks))


def mx(preference: int, exchange: str) -> SimpleNamespace:
    return SimpleNamespace(preference=preference, exchange=exchange)


def ns(target: str) -> SimpleNamespace:
    return SimpleNamespace(target=target)


class FakeResolver:
    """
    Minimal dns.resolver.Resolver replacement.

    Unknown names raise NXDOMAIN; an Exception instance as answer is raised.
    """

    def __init__(self, answers: Optional[Dict[tuple, Any]] = None):
        self.answers = {(name.lower(), rdtype): value for (name, rdtype), value in (answers or {}).items()}
        self.queries: List[tuple] = []

    def resolve(self, name: str, rdtype: str):
        self.queries.append((name, rdtype))
        key = (name.lower(), rdtype)
        if key not in self.answers:
            raise dns.resolver.NXDOMAIN()
        value = self.answers[key]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def fake_resolver_factory():
    return FakeResolver


@pytest.fixture
def rdata():
    """Builders for dnspython-like answer objects."""
    return SimpleNamespace(txt=txt, mx=mx, ns=ns)
