"""
PowerShell Runner

Executes PowerShell scripts from Python.
Works on both Windows (powershell.exe) and Linux (pwsh).

Scripts hand structured data back by printing it between the
<<<JSON>>> and <<<END>>> markers, see emit_json().
"""

import asyncio
import json
import os
import sys
import subprocess
import tempfile
import logging
from typing import Optional, Any
from dataclasses import dataclass

from winadmin.core.config import get_settings

logger = logging.getLogger(__name__)

JSON_BEGIN = "<<<JSON>>>"
JSON_END = "<<<END>>>"


def _default_pwsh_path() -> str:
    configured = get_settings().pwsh_path or os.environ.get("PWSH_PATH")
    if configured:
        return configured
    if sys.platform == "win32":
        return "powershell.exe"
    return "/usr/bin/pwsh"


PWSH_PATH = _default_pwsh_path()


class PowerShellError(Exception):
    """Raised when a PowerShell script fails or returns unusable output."""

    def __init__(self, message: str, output: str = "", error: Optional[str] = None) -> None:
        super().__init__(message)
        self.output = output
        self.error = error


@dataclass
class PowerShellResult:
    """Result of PowerShell execution."""
    success: bool
    output: str
    error: Optional[str] = None
    json_data: Optional[Any] = None


def ps_quote(value: Any) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def ps_bool(value: bool) -> str:
    return "$true" if value else "$false"


def emit_json(expression: str, depth: int = 5) -> str:
    """PowerShell lines that print `expression` as a JSON array between the markers."""
    return "\n".join([
        f'Write-Output "{JSON_BEGIN}"',
        f"ConvertTo-Json -InputObject @({expression}) -Depth {depth} -Compress",
        f'Write-Output "{JSON_END}"',
    ])


def extract_json(output: str) -> Optional[Any]:
    if JSON_BEGIN not in output:
        return None
    try:
        json_str = output.split(JSON_BEGIN)[1].split(JSON_END)[0].strip()
        return json.loads(json_str) if json_str else None
    except (IndexError, json.JSONDecodeError) as e:
        logger.warning("Could not parse JSON block from PowerShell output: %s", e)
        return None


class PowerShellRunner:
    """Execute PowerShell scripts from Python."""

    def __init__(self, timeout: Optional[int] = None, pwsh_path: Optional[str] = None):
        self.timeout = timeout or get_settings().powershell_timeout
        self.pwsh_path = pwsh_path or PWSH_PATH

    def _execute(self, args: list[str], timeout: int) -> tuple[bool, str, str]:
        try:
            result = subprocess.run(
                [self.pwsh_path, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", *args],
                capture_output=True,
                text=True,
                timeout=timeout,
                encoding='utf-8',
                errors='replace'
            )
            return result.returncode == 0, result.stdout or "", result.stderr or ""
        except subprocess.TimeoutExpired:
            return False, "", f"Timed out after {timeout}s"
        except OSError as e:
            return False, "", f"Could not start {self.pwsh_path}: {e}"

    async def run(self, script: str, timeout: Optional[int] = None) -> PowerShellResult:
        """
        Execute a PowerShell script using subprocess.run() in a thread pool.

        Uses asyncio.to_thread() for Windows compatibility - asyncio.create_subprocess_exec()
        throws NotImplementedError on Windows with the default event loop.
        """
        timeout = timeout or self.timeout

        with tempfile.NamedTemporaryFile(mode='w', suffix='.ps1', delete=False, encoding='utf-8') as f:
            f.write(script)
            script_path = f.name

        try:
            success, output, error = await asyncio.to_thread(
                self._execute, ["-File", script_path], timeout
            )
        finally:
            try:
                os.unlink(script_path)
            except OSError:
                pass

        if not success:
            logger.debug("PowerShell script failed: %s", error.strip())

        return PowerShellResult(
            success=success,
            output=output,
            error=error if error else None,
            json_data=extract_json(output),
        )

    async def run_command(self, command: str, timeout: Optional[int] = None) -> PowerShellResult:
        """Run a single PowerShell command line."""
        timeout = timeout or self.timeout
        success, output, error = await asyncio.to_thread(
            self._execute, ["-Command", command], timeout
        )
        return PowerShellResult(
            success=success,
            output=output,
            error=error if error else None,
            json_data=extract_json(output),
        )

    async def run_json(self, script: str, action: str, timeout: Optional[int] = None) -> list:
        """
        Run a script that ends with emit_json() and return the decoded list.

        Raises:
            PowerShellError: if the script fails or prints no JSON block
        """
        result = await self.run(script, timeout=timeout)
        if not result.success:
            raise PowerShellError(f"Failed to {action}: {result.error or 'unknown error'}",
                                  output=result.output, error=result.error)
        if result.json_data is None:
            raise PowerShellError(f"Failed to {action}: no JSON output",
                                  output=result.output, error=result.error)
        data = result.json_data
        return data if isinstance(data, list) else [data]


# Singleton instance for easy import
powershell = PowerShellRunner()
