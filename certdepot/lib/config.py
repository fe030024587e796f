"""Depot and backend configuration dataclasses."""

import argparse
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.x509 import oid

from certdepot.lib.errors import InvalidArgumentError

if TYPE_CHECKING:
    from certdepot.lib.depot import Depot

BACKENDS = ("file", "dynamodb", "sql", "s3")

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: timedelta | int | float | str) -> timedelta:
    """Parse a duration given as timedelta, seconds, or a string like ``"1h"`` or ``"30d"``."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    match = _DURATION.match(value)
    if match is None:
        raise InvalidArgumentError(f"invalid duration {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=float(amount) * _DURATION_UNITS[unit])


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name. Empty fields are left out."""

    common_name: str
    country: str = ""
    state: str = ""
    locality: str = ""
    organization: str = ""
    organizational_unit: str = ""

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name for certificate generation."""
        attributes = [
            (oid.NameOID.COUNTRY_NAME, self.country),
            (oid.NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (oid.NameOID.LOCALITY_NAME, self.locality),
            (oid.NameOID.ORGANIZATION_NAME, self.organization),
            (oid.NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (oid.NameOID.COMMON_NAME, self.common_name),
        ]
        return x509.Name(
            [x509.NameAttribute(name_oid, value) for name_oid, value in attributes if value]
        )


@dataclass
class DepotOptions:
    """Defaults used by a depot when generating credentials."""

    ca: str = ""
    default_expiration: timedelta = timedelta(days=365)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DepotOptions":
        return cls(
            ca=data.get("ca", ""),
            default_expiration=parse_duration(data.get("default_expiration", 365 * 86400)),
        )


@dataclass
class S3DepotOptions:
    """S3 depot configuration."""

    bucket: str = ""
    prefix: str = "certdepot"
    region: str = "eu-west-2"
    depot: DepotOptions = field(default_factory=DepotOptions)

    def validate(self) -> None:
        if not self.bucket:
            raise InvalidArgumentError("must specify an S3 bucket")
        self.prefix = self.prefix.strip("/")


@dataclass
class DynamoDBDepotOptions:
    """DynamoDB document depot configuration."""

    table_name: str = ""
    region: str = ""
    expire_after: timedelta = timedelta(0)
    depot: DepotOptions = field(default_factory=DepotOptions)

    def validate(self) -> None:
        """Fill unset fields with defaults."""
        if not self.table_name:
            self.table_name = "certs"
        if not self.region:
            self.region = "eu-west-2"
        if self.expire_after <= timedelta(0):
            self.expire_after = timedelta(days=30)


@dataclass
class SQLDepotOptions:
    """Relational depot configuration."""

    database_url: str = ""
    table_name: str = ""
    expire_after: timedelta = timedelta(0)
    depot: DepotOptions = field(default_factory=DepotOptions)

    def validate(self) -> None:
        """Fill unset fields with defaults."""
        if not self.database_url:
            self.database_url = "sqlite://"
        if not self.table_name:
            self.table_name = "certs"
        if self.expire_after <= timedelta(0):
            self.expire_after = timedelta(days=30)


@dataclass
class BackendConfig:
    """Selects and configures one storage backend."""

    kind: str = "file"
    path: Path = Path("certs")
    table_name: str = ""
    database_url: str = ""
    bucket: str = ""
    region: str = ""
    expire_after: timedelta = timedelta(0)
    depot: DepotOptions = field(default_factory=DepotOptions)

    def open_depot(self) -> "Depot":
        """Construct the configured backend and wrap it in a depot."""
        from certdepot.lib.depot import make_depot

        if self.kind == "file":
            from certdepot.lib.file_backend import FileBackend

            return make_depot(FileBackend(self.path), self.depot)
        if self.kind == "dynamodb":
            from certdepot.lib.dynamodb_backend import DynamoDBBackend

            return make_depot(
                DynamoDBBackend(
                    DynamoDBDepotOptions(
                        table_name=self.table_name,
                        region=self.region,
                        expire_after=self.expire_after,
                        depot=self.depot,
                    )
                ),
                self.depot,
            )
        if self.kind == "sql":
            from certdepot.lib.sql_backend import SQLBackend

            backend = SQLBackend(
                SQLDepotOptions(
                    database_url=self.database_url,
                    table_name=self.table_name,
                    expire_after=self.expire_after,
                    depot=self.depot,
                )
            )
            backend.create_schema()
            return make_depot(backend, self.depot)
        if self.kind == "s3":
            from certdepot.lib.s3_backend import S3Backend

            return make_depot(
                S3Backend(
                    S3DepotOptions(
                        bucket=self.bucket,
                        region=self.region or "eu-west-2",
                        depot=self.depot,
                    )
                ),
                self.depot,
            )
        raise InvalidArgumentError(f"unknown backend {self.kind!r}")


def add_backend_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the backend selection flags shared by the scripts."""
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default="file",
        help="Storage backend (default: file)",
    )
    parser.add_argument(
        "--path",
        type=Path,
        default=Path("certs"),
        help="Directory for the file backend (default: certs)",
    )
    parser.add_argument("--table-name", default="", help="DynamoDB or SQL table name")
    parser.add_argument("--database-url", default="", help="SQLAlchemy database URL")
    parser.add_argument("--bucket", default="", help="S3 bucket name")
    parser.add_argument("--region", default="", help="AWS region")
    parser.add_argument(
        "--expire-after",
        default="30d",
        help="Grace period after which expired certificates are unreadable (default: 30d)",
    )
    parser.add_argument("--ca", default="", help="Default CA name for the depot")


def backend_config_from_args(args: argparse.Namespace) -> BackendConfig:
    """Build a BackendConfig from parsed backend flags."""
    return BackendConfig(
        kind=args.backend,
        path=args.path,
        table_name=args.table_name,
        database_url=args.database_url,
        bucket=args.bucket,
        region=args.region,
        expire_after=parse_duration(args.expire_after),
        depot=DepotOptions(ca=args.ca),
    )
