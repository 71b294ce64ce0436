"""
Create or update a Windows VPN connection.

Usage:
    python -m scripts.add_vpn_profile --name "Contoso VPN" --server vpn.contoso.com --tunnel-type Ikev2 --auth Eap
    python -m scripts.add_vpn_profile --name "Branch" --server 203.0.113.10 --tunnel-type L2tp --split-tunneling \\
        --route 10.10.0.0/16 --route 10.20.0.0/16
    python -m scripts.add_vpn_profile --config profiles.json --replace

The L2TP pre-shared key is read from WINADMIN_VPN_PSK when --l2tp-psk is not given.
"""

import argparse
import asyncio
import logging
import os
import sys

from pydantic import ValidationError

from winadmin.core.config import get_settings
from winadmin.core.logging_config import configure_logging
from winadmin.services.vpn_profile import VpnProfile, VpnProfileError, VpnProfileService, load_vpn_profiles

logger = logging.getLogger("add_vpn_profile")


async def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Configure a VPN connection")
    parser.add_argument("--config", help="JSON file with one profile or a list of profiles")
    parser.add_argument("--name")
    parser.add_argument("--server")
    parser.add_argument("--tunnel-type", default="Automatic")
    parser.add_argument("--auth", default="MSChapv2", help="Authentication method")
    parser.add_argument("--encryption", default="Required")
    parser.add_argument("--l2tp-psk")
    parser.add_argument("--split-tunneling", action="store_true")
    parser.add_argument("--route", action="append", default=[], help="CIDR route for split tunneling (repeatable)")
    parser.add_argument("--dns-suffix")
    parser.add_argument("--current-user", action="store_true", help="Create for the current user only")
    parser.add_argument("--no-remember-credential", action="store_true")
    parser.add_argument("--replace", action="store_true", help="Remove and recreate an existing connection")
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        if args.config:
            profiles = load_vpn_profiles(args.config)
        else:
            if not args.name or not args.server:
                parser.error("--name and --server are required without --config")
            psk = args.l2tp_psk or (os.environ.get("WINADMIN_VPN_PSK") if args.tunnel_type == "L2tp" else None)
            profiles = [VpnProfile(
                name=args.name,
                server_address=args.server,
                tunnel_type=args.tunnel_type,
                authentication_method=args.auth,
                encryption_level=args.encryption,
                l2tp_psk=psk,
                split_tunneling=args.split_tunneling,
                remember_credential=not args.no_remember_credential,
                all_user_connection=not args.current_user,
                dns_suffix=args.dns_suffix,
                routes=args.route,
            )]
    except (VpnProfileError, ValidationError) as e:
        logger.error("%s", e)
        return 2

    service = VpnProfileService()
    failed = 0
    for profile in profiles:
        result = await service.apply(profile, replace=args.replace)
        if result.success:
            print(f"{result.name}: {result.action} ({result.routes_added} route(s) added)")
        else:
            failed += 1
            print(f"{result.name}: FAILED - {result.error}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
