"""
Tests for the PowerShell runner and its JSON hand-off.
"""

import os
import subprocess
from types import SimpleNamespace

import pytest

from winadmin.services.powershell import (
    PowerShellError,
    PowerShellRunner,
    emit_json,
    extract_json,
    ps_bool,
    ps_quote,
)


def test_ps_quote():
    assert ps_quote("plain") == "'plain'"
    assert ps_quote("it's") == "'it''s'"
    assert ps_quote("$env:PATH") == "'$env:PATH'"


def test_ps_bool():
    assert ps_bool(True) == "$true"
    assert ps_bool(False) == "$false"


def test_emit_json():
    lines = emit_json("$rows", depth=3).splitlines()
    assert lines == [
        'Write-Output "<<<JSON>>>"',
        "ConvertTo-Json -InputObject @($rows) -Depth 3 -Compress",
        'Write-Output "<<<END>>>"',
    ]


def test_extract_json():
    output = 'WARNING: something\n<<<JSON>>>\n[{"Name":"PC01"}]\n<<<END>>>\n'
    assert extract_json(output) == [{"Name": "PC01"}]
    assert extract_json("no markers here") is None
    assert extract_json("<<<JSON>>>\n{broken\n<<<END>>>") is None
    assert extract_json("<<<JSON>>>\n\n<<<END>>>") is None


@pytest.mark.asyncio
async def test_run_uses_temp_script_file(monkeypatch):
    """Test that scripts are written to a .ps1 file which is removed afterwards."""
    seen = {}

    def fake_run(args, **kwargs):
        script_path = args[-1]
        seen["args"] = args
        seen["path"] = script_path
        with open(script_path, encoding="utf-8") as f:
            seen["script"] = f.read()
        return SimpleNamespace(returncode=0, stdout='<<<JSON>>>\n{"Ok":true}\n<<<END>>>\n', stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    runner = PowerShellRunner(timeout=10, pwsh_path="pwsh")

    result = await runner.run("Write-Output 'hi'")

    assert result.success
    assert result.json_data == {"Ok": True}
    assert seen["args"][:5] == ["pwsh", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass"]
    assert seen["args"][5] == "-File"
    assert seen["path"].endswith(".ps1")
    assert seen["script"] == "Write-Output 'hi'"
    assert not os.path.exists(seen["path"])


@pytest.mark.asyncio
async def test_run_timeout(monkeypatch):
    def fake_run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = await PowerShellRunner(timeout=10, pwsh_path="pwsh").run("Start-Sleep 60", timeout=2)

    assert not result.success
    assert result.error == "Timed out after 2s"


@pytest.mark.asyncio
async def test_run_missing_executable(monkeypatch):
    def fake_run(args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = await PowerShellRunner(timeout=10, pwsh_path="/nope/pwsh").run_command("Get-Date")

    assert not result.success
    assert result.error.startswith("Could not start /nope/pwsh")


@pytest.mark.asyncio
async def test_run_json_wraps_single_object(fake_runner):
    fake_runner.queue_json({"Name": "PC01"})
    assert await fake_runner.run_json("script", "read") == [{"Name": "PC01"}]


@pytest.mark.asyncio
async def test_run_json_errors(fake_runner):
    fake_runner.queue_failure("boom")
    with pytest.raises(PowerShellError, match="Failed to read things: boom"):
        await fake_runner.run_json("script", "read things")

    with pytest.raises(PowerShellError, match="no JSON output"):
        await fake_runner.run_json("script", "read things")
