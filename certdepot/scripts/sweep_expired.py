#!/usr/bin/env python3
"""List or delete depot records whose ttl is at or before a cutoff."""

import argparse
import sys
from datetime import UTC, datetime

from certdepot.lib.config import add_backend_arguments, backend_config_from_args
from certdepot.lib.depot import Depot
from certdepot.lib.errors import InvalidArgumentError
from certdepot.lib.logging_config import LOGGER, set_verbose
from certdepot.lib.models import DepotRecord
from certdepot.lib.storage import ExpirationManager


def parse_cutoff(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    try:
        cutoff = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid ISO timestamp {value!r}") from e
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=UTC)
    return cutoff


def sweep_expired(depot: Depot, cutoff: datetime, delete: bool = False) -> list[DepotRecord]:
    """Find records expiring at or before cutoff, deleting them when asked.

    Args:
        depot: Depot over a record backend
        cutoff: Inclusive ttl bound
        delete: Remove the matching records entirely

    Returns:
        Records that matched before any deletion

    Raises:
        InvalidArgumentError: If the depot's backend does not track ttls
    """
    if not isinstance(depot, ExpirationManager):
        raise InvalidArgumentError(f"{type(depot.backend).__name__} does not track expiration")

    records = depot.find_expires_before(cutoff)
    for record in records:
        LOGGER.info("%s expires at %s", record.id, record.ttl.isoformat() if record.ttl else "-")

    if delete and records:
        depot.delete_expires_before(cutoff)
        LOGGER.info("Deleted %d records expiring before %s", len(records), cutoff.isoformat())

    return records


def main() -> int:
    """Run the expired record sweep.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(description="List or delete depot records past their ttl")
    parser.add_argument(
        "--before",
        type=parse_cutoff,
        default=None,
        help="ISO 8601 cutoff (default: now)",
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete matching records instead of only listing them",
    )
    parser.add_argument("--verbose", action="store_true", help="Log backend operations")
    add_backend_arguments(parser)
    args = parser.parse_args()

    set_verbose(args.verbose)
    cutoff = args.before or datetime.now(UTC)

    try:
        depot = backend_config_from_args(args).open_depot()
        records = sweep_expired(depot, cutoff, delete=args.delete)
        LOGGER.info("Found %d records expiring before %s", len(records), cutoff.isoformat())
        return 0

    except Exception as e:
        LOGGER.error("Sweep failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
