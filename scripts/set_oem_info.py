"""
Set the OEM support information shown in Settings > System > About.

Usage:
    python -m scripts.set_oem_info --manufacturer "Contoso IT" --support-phone "+1 555 0100"
    python -m scripts.set_oem_info --manufacturer "Contoso IT" --logo C:\\Branding\\oem.bmp --clear
    python -m scripts.set_oem_info --show
"""

import argparse
import logging
import sys

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.services.oem_info import OEM_VALUES, OemInformation, apply_oem_info, read_oem_info
from winadmin.services.registry import RegistryError

logger = logging.getLogger("set_oem_info")


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Set OEM branding information")
    parser.add_argument("--manufacturer")
    parser.add_argument("--model")
    parser.add_argument("--support-hours")
    parser.add_argument("--support-phone")
    parser.add_argument("--support-url")
    parser.add_argument("--logo", help="120x120 .bmp file")
    parser.add_argument("--clear", action="store_true", help="Remove OEM values that are not given")
    parser.add_argument("--show", action="store_true", help="Only print the current values")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        if not args.show:
            info = OemInformation(**{field: getattr(args, field) for field in OEM_VALUES})
            if not info.registry_values() and not args.clear:
                parser.error("nothing to set")
            changed = apply_oem_info(info, clear=args.clear)
            logger.info("Changed values: %s", ", ".join(changed) or "none")
        current = read_oem_info()
    except ValueError as e:
        logger.error("%s", e)
        return 2
    except RegistryError as e:
        logger.error("%s (run elevated)", e)
        return 1

    for field, name in OEM_VALUES.items():
        print(f"{name:<14} {getattr(current, field) or ''}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
