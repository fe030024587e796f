#!/usr/bin/env python3
"""Re-issue a certificate when it is missing or expires within a window."""

import argparse
import json
import sys
from datetime import timedelta
from pathlib import Path

from certdepot.lib.config import add_backend_arguments, backend_config_from_args, parse_duration
from certdepot.lib.depot import Depot
from certdepot.lib.lifecycle import CertificateOptions
from certdepot.lib.logging_config import LOGGER, set_verbose


def renew_certificate(depot: Depot, opts: CertificateOptions, within: timedelta) -> bool:
    """Create the certificate described by opts if absent or expiring within the window.

    Returns:
        True if a new certificate was issued
    """
    renewed = opts.create_certificate_on_expiration(depot, within)
    if renewed:
        LOGGER.info("Issued certificate for %s signed by %s", opts.common_name, opts.ca)
    else:
        LOGGER.info("Certificate for %s is valid beyond %s", opts.common_name, within)
    return renewed


def main() -> int:
    """Run certificate renewal.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Renew a certificate that is missing or about to expire"
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="JSON file with certificate options (common_name, host, ca, expires, ...)",
    )
    parser.add_argument(
        "--within",
        default="7d",
        help="Renew if the certificate expires within this window (default: 7d)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log backend operations")
    add_backend_arguments(parser)
    args = parser.parse_args()

    set_verbose(args.verbose)

    try:
        opts = CertificateOptions.from_dict(json.loads(args.config.read_text()))
        depot = backend_config_from_args(args).open_depot()
        renew_certificate(depot, opts, parse_duration(args.within))
        return 0

    except Exception as e:
        LOGGER.error("Certificate renewal failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
