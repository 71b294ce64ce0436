import logging
import os
import struct
from typing import Dict, List, Optional

from pydantic import BaseModel

from winadmin.services.registry import WindowsRegistry

logger = logging.getLogger(__name__)

OEM_HIVE = "HKLM"
OEM_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\OEMInformation"
RECOMMENDED_LOGO_SIZE = (120, 120)

# Model field -> registry value name
OEM_VALUES = {
    "manufacturer": "Manufacturer",
    "model": "Model",
    "support_hours": "SupportHours",
    "support_phone": "SupportPhone",
    "support_url": "SupportURL",
    "logo": "Logo",
}


class OemInformation(BaseModel):
    """Support/branding details shown under Settings > System > About."""
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    support_hours: Optional[str] = None
    support_phone: Optional[str] = None
    support_url: Optional[str] = None
    logo: Optional[str] = None

    def registry_values(self) -> Dict[str, str]:
        return {
            OEM_VALUES[field]: value
            for field, value in self.model_dump().items()
            if value is not None
        }


def bmp_dimensions(path: str) -> Optional[tuple]:
    """Width and height of a BMP file, or None if it is not a BMP."""
    with open(path, "rb") as f:
        header = f.read(26)
    if len(header) < 26 or header[:2] != b"BM":
        return None
    width, height = struct.unpack("<ii", header[18:26])
    return width, abs(height)


def validate_logo(path: str) -> None:
    if not os.path.isfile(path):
        raise ValueError(f"Logo file not found: {path}")
    if not path.lower().endswith(".bmp"):
        raise ValueError("Logo must be a .bmp file")
    size = bmp_dimensions(path)
    if size is None:
        raise ValueError(f"Logo is not a valid bitmap: {path}")
    if size != RECOMMENDED_LOGO_SIZE:
        logger.warning("Logo is %dx%d, Windows expects 120x120 and will scale it", *size)


def read_oem_info(registry=None) -> OemInformation:
    registry = registry or WindowsRegistry()
    values = registry.get_values(OEM_HIVE, OEM_KEY)
    return OemInformation(**{
        field: values[name] for field, name in OEM_VALUES.items() if name in values
    })


def apply_oem_info(info: OemInformation, registry=None, clear: bool = False) -> List[str]:
    """
    Write OEM information to the registry.

    Values already holding the requested data are left alone. With `clear`,
    OEM values that are not part of `info` are removed.

    Returns:
        Names of the registry values that were written or deleted

    Raises:
        ValueError: if the logo is missing or not a bitmap
        RegistryError: if the key cannot be written (usually: not elevated)
    """
    registry = registry or WindowsRegistry()
    if info.logo:
        validate_logo(info.logo)

    current = registry.get_values(OEM_HIVE, OEM_KEY)
    wanted = info.registry_values()
    changed: List[str] = []

    for name, value in wanted.items():
        if current.get(name) == value:
            logger.info("%s already set to %r", name, value)
            continue
        logger.info("Setting %s = %r", name, value)
        registry.set_value(OEM_HIVE, OEM_KEY, name, value)
        changed.append(name)

    if clear:
        for name in OEM_VALUES.values():
            if name in current and name not in wanted:
                logger.info("Removing %s", name)
                registry.delete_value(OEM_HIVE, OEM_KEY, name)
                changed.append(name)

    if not changed:
        logger.info("OEM information already up to date")
    return changed

