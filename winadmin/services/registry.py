"""
Thin wrapper around winreg.

Services take a registry object instead of calling winreg directly so the
same code can be exercised off Windows with an in-memory registry.
"""

import logging
import os
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Raised when the registry cannot be read or written."""
    pass


class WindowsRegistry:
    """Registry access through winreg. Keys are addressed as ("HKLM", r"SOFTWARE\\...")."""

    def __init__(self) -> None:
        if os.name != "nt":
            raise RegistryError("The Windows registry is only available on Windows")
        import winreg
        self._winreg = winreg
        self._hives = {
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKU": winreg.HKEY_USERS,
        }

    def _hive(self, hive: str):
        try:
            return self._hives[hive.upper()]
        except KeyError:
            raise RegistryError(f"Unknown registry hive: {hive}") from None

    def list_subkeys(self, hive: str, path: str) -> List[str]:
        winreg = self._winreg
        try:
            with winreg.OpenKey(self._hive(hive), path) as key:
                count = winreg.QueryInfoKey(key)[0]
                return [winreg.EnumKey(key, i) for i in range(count)]
        except FileNotFoundError:
            return []

    def get_values(self, hive: str, path: str) -> Dict[str, Any]:
        winreg = self._winreg
        values: Dict[str, Any] = {}
        try:
            with winreg.OpenKey(self._hive(hive), path) as key:
                count = winreg.QueryInfoKey(key)[1]
                for i in range(count):
                    name, data, _ = winreg.EnumValue(key, i)
                    values[name] = data
        except FileNotFoundError:
            pass
        return values

    def set_value(self, hive: str, path: str, name: str, value: Any) -> None:
        winreg = self._winreg
        value_type = winreg.REG_DWORD if isinstance(value, int) else winreg.REG_SZ
        try:
            with winreg.CreateKeyEx(self._hive(hive), path, 0, winreg.KEY_SET_VALUE) as key:
                winreg.SetValueEx(key, name, 0, value_type, value)
        except OSError as e:
            raise RegistryError(f"Could not write {hive}\\{path}\\{name}: {e}") from e

    def delete_value(self, hive: str, path: str, name: str) -> None:
        winreg = self._winreg
        try:
            with winreg.OpenKey(self._hive(hive), path, 0, winreg.KEY_SET_VALUE) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise RegistryError(f"Could not delete {hive}\\{path}\\{name}: {e}") from e
