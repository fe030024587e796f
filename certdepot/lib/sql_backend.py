"""Relational backend: one row per entity with four PEM columns and a ttl column."""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from certdepot.lib.cert_utils import deserialize_certificate, validity_bounds
from certdepot.lib.config import SQLDepotOptions
from certdepot.lib.errors import BackendError, ExpiredError, InvalidArgumentError, NotFoundError
from certdepot.lib.models import DepotRecord
from certdepot.lib.storage import ExpirationManager, StorageBackend
from certdepot.lib.tags import ID_FIELD, RECORD_FIELDS, TTL_FIELD, ArtifactKind, Tag, format_name

logger = logging.getLogger(__name__)

_EXPIRING_KINDS = {ArtifactKind.CERTIFICATE, ArtifactKind.REVOCATION_LIST}


def _decode_pem(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidArgumentError("data is not PEM text") from e


def _to_db_time(value: datetime) -> datetime:
    """Store timestamps as naive UTC so every dialect compares them the same way."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def _from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _row_to_record(row: Row[Any]) -> DepotRecord:
    mapping = row._mapping
    fields = {field: mapping[field] or "" for field in RECORD_FIELDS.values()}
    return DepotRecord(id=mapping[ID_FIELD], ttl=_from_db_time(mapping[TTL_FIELD]), **fields)


def build_table(name: str, metadata: MetaData) -> Table:
    """Define the depot table: primary key ``id``, blob columns and ``ttl``."""
    return Table(
        name,
        metadata,
        Column(ID_FIELD, String(255), primary_key=True),
        *(Column(field, Text, nullable=True) for field in RECORD_FIELDS.values()),
        Column(TTL_FIELD, DateTime, nullable=True, index=True),
    )


class SQLBackend(StorageBackend, ExpirationManager):
    """Record-style backend on a SQLAlchemy engine (PostgreSQL, SQLite, ...)."""

    def __init__(self, options: SQLDepotOptions, engine: Engine | None = None) -> None:
        """Initialize relational backend.

        Args:
            options: Database URL, table name and expiry grace period
            engine: Existing engine to reuse instead of connecting to options.database_url
        """
        options.validate()
        self.options = options
        self.engine = engine or create_engine(options.database_url, echo=False)
        self.metadata = MetaData()
        self.table = build_table(options.table_name, self.metadata)

    def create_schema(self) -> None:
        """Create the depot table if it does not exist."""
        try:
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise BackendError(f"problem creating table {self.options.table_name}: {e}") from e

    def _fetch(self, name: str) -> Row[Any] | None:
        with self.engine.connect() as conn:
            return conn.execute(
                select(self.table).where(self.table.c[ID_FIELD] == name)
            ).first()

    def put(self, tag: Tag, data: bytes) -> None:
        if not data:
            raise InvalidArgumentError("data is empty")

        name = tag.record_name
        values: dict[str, Any] = {tag.field: _decode_pem(data)}
        if tag.kind is ArtifactKind.CERTIFICATE:
            try:
                _, not_after = validity_bounds(deserialize_certificate(data))
                values[TTL_FIELD] = _to_db_time(not_after)
            except InvalidArgumentError:
                pass

        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(self.table).where(self.table.c[ID_FIELD] == name).values(**values)
                )
                if result.rowcount == 0:
                    conn.execute(self.table.insert().values({ID_FIELD: name, **values}))
        except SQLAlchemyError as e:
            raise BackendError(f"problem adding {tag} to {self.options.table_name}: {e}") from e
        logger.debug("Put %s.%s into %s", name, tag.field, self.options.table_name)

    def get(self, tag: Tag) -> bytes:
        name = tag.record_name
        try:
            row = self._fetch(name)
        except SQLAlchemyError as e:
            raise BackendError(
                f"problem looking up {name} in {self.options.table_name}: {e}"
            ) from e
        if row is None:
            raise NotFoundError(f"could not find {name} in {self.options.table_name}")

        record = _row_to_record(row)
        data: str = getattr(record, tag.field)
        if not data:
            raise NotFoundError(f"no {tag.field} available for {name}")

        if tag.kind in _EXPIRING_KINDS and record.ttl is not None:
            if datetime.now(UTC) - record.ttl > self.options.expire_after:
                raise ExpiredError(f"{tag.field} for {name} has expired")

        return data.encode("utf-8")

    def check(self, tag: Tag) -> bool:
        name = tag.record_name
        try:
            row = self._fetch(name)
        except SQLAlchemyError as e:
            logger.warning("Check of %s.%s failed: %s", name, tag.field, e)
            return False
        return row is not None and bool(row._mapping[tag.field])

    def delete(self, tag: Tag) -> None:
        name = tag.record_name
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(self.table)
                    .where(self.table.c[ID_FIELD] == name)
                    .values({tag.field: None})
                )
        except SQLAlchemyError as e:
            raise BackendError(f"problem deleting {name}.{tag.field}: {e}") from e

    def put_ttl(self, name: str, expiration: datetime) -> None:
        """Set ttl for name; expiration must lie within the stored certificate's validity."""
        name = format_name(name)
        expiration = expiration.astimezone(UTC)

        try:
            row = self._fetch(name)
        except SQLAlchemyError as e:
            raise BackendError(f"problem looking up {name}: {e}") from e
        if row is None or not row._mapping[RECORD_FIELDS[ArtifactKind.CERTIFICATE]]:
            raise NotFoundError(f"could not find certificate for {name}")

        cert_pem = row._mapping[RECORD_FIELDS[ArtifactKind.CERTIFICATE]]
        cert = deserialize_certificate(cert_pem.encode("utf-8"))
        not_before, not_after = validity_bounds(cert)
        if expiration < not_before or expiration > not_after:
            raise InvalidArgumentError(
                f"cannot set expiration to {expiration} because it must be between "
                f"{not_before} and {not_after}"
            )

        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(self.table)
                    .where(self.table.c[ID_FIELD] == name)
                    .values({TTL_FIELD: _to_db_time(expiration)})
                )
        except SQLAlchemyError as e:
            raise BackendError(f"problem updating TTL for {name}: {e}") from e

    def get_ttl(self, name: str) -> datetime:
        name = format_name(name)
        try:
            row = self._fetch(name)
        except SQLAlchemyError as e:
            raise BackendError(f"problem looking up {name}: {e}") from e
        if row is None:
            raise NotFoundError(f"could not find {name}")

        ttl = _from_db_time(row._mapping[TTL_FIELD])
        if ttl is None:
            raise NotFoundError(f"no TTL set for {name}")
        return ttl

    def _expires_before(self, cutoff: datetime) -> Any:
        ttl = self.table.c[TTL_FIELD]
        return ttl.is_not(None) & (ttl <= _to_db_time(cutoff))

    def find_expires_before(self, cutoff: datetime) -> list[DepotRecord]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(self.table).where(self._expires_before(cutoff))).all()
        except SQLAlchemyError as e:
            raise BackendError(f"problem finding expired records: {e}") from e
        return [_row_to_record(row) for row in rows]

    def delete_expires_before(self, cutoff: datetime) -> None:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(self.table).where(self._expires_before(cutoff)))
        except SQLAlchemyError as e:
            raise BackendError(f"problem removing expired records: {e}") from e
        logger.info("Deleted %d expired records from %s", result.rowcount, self.options.table_name)
