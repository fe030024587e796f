#!/usr/bin/env python3
"""Bootstrap a depot with a CA and a service certificate from a JSON config."""

import argparse
import json
import sys
from pathlib import Path

from certdepot.lib.bootstrap import BootstrapDepotConfig, bootstrap_depot
from certdepot.lib.config import add_backend_arguments, backend_config_from_args
from certdepot.lib.depot import Depot
from certdepot.lib.logging_config import LOGGER, set_verbose
from certdepot.lib.tags import crt_tag


def load_bootstrap_config(path: Path) -> BootstrapDepotConfig:
    """Read a BootstrapDepotConfig from a JSON file.

    ``ca_cert_file`` and ``ca_key_file`` may point at PEM files instead of
    inlining ``ca_cert`` and ``ca_key``; relative paths resolve against the
    config file's directory.
    """
    data = json.loads(path.read_text())
    for inline, file_key in (("ca_cert", "ca_cert_file"), ("ca_key", "ca_key_file")):
        pem_path = data.pop(file_key, None)
        if pem_path:
            data[inline] = (path.parent / pem_path).read_text()
    return BootstrapDepotConfig.from_dict(data)


def run_bootstrap(depot: Depot, config: BootstrapDepotConfig) -> None:
    """Bootstrap the depot and log what it now holds."""
    had_ca = depot.check(crt_tag(config.ca_name))
    had_service = depot.check(crt_tag(config.service_name))

    bootstrap_depot(depot, config)

    if had_ca and had_service:
        LOGGER.info(
            "Depot already bootstrapped for CA %s and service %s",
            config.ca_name,
            config.service_name,
        )
    else:
        LOGGER.info(
            "Bootstrapped depot for CA %s and service %s", config.ca_name, config.service_name
        )


def main() -> int:
    """Run depot bootstrap.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Ensure a depot holds a CA and a service certificate"
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="JSON file with ca_name, service_name, ca_opts and service_opts",
    )
    parser.add_argument("--verbose", action="store_true", help="Log backend operations")
    add_backend_arguments(parser)
    args = parser.parse_args()

    set_verbose(args.verbose)

    try:
        config = load_bootstrap_config(args.config)
        depot = backend_config_from_args(args).open_depot()
        run_bootstrap(depot, config)
        return 0

    except Exception as e:
        LOGGER.error("Bootstrap failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
