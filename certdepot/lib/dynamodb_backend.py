"""DynamoDB document backend: one item per entity holding up to four PEM blobs and a ttl."""

import logging
from datetime import UTC, datetime
from typing import Any, cast

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource
from mypy_boto3_dynamodb.type_defs import TableAttributeValueTypeDef

from certdepot.lib.cert_utils import deserialize_certificate, validity_bounds
from certdepot.lib.config import DynamoDBDepotOptions
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


def _ttl_from_item(item: dict[str, TableAttributeValueTypeDef]) -> datetime | None:
    raw_ttl = item.get(TTL_FIELD)
    if raw_ttl is None:
        return None
    return datetime.fromtimestamp(int(cast(int, raw_ttl)), UTC)


def _parse_item_to_record(item: dict[str, TableAttributeValueTypeDef]) -> DepotRecord:
    """Convert raw DynamoDB item to DepotRecord with explicit casts."""
    fields = {
        field: str(item.get(field, "")) for field in RECORD_FIELDS.values()
    }
    return DepotRecord(id=str(item[ID_FIELD]), ttl=_ttl_from_item(item), **fields)


def _is_condition_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DynamoDBBackend(StorageBackend, ExpirationManager):
    """Record-style backend on a DynamoDB table keyed by ``id``.

    The ``ttl`` attribute is stored as epoch seconds so the table's native
    TTL setting can reap expired entities.
    """

    def __init__(self, options: DynamoDBDepotOptions) -> None:
        """Initialize DynamoDB backend.

        Args:
            options: Table name, AWS region and expiry grace period
        """
        options.validate()
        self.options = options
        self.resource: DynamoDBServiceResource = boto3.resource(
            "dynamodb", region_name=options.region
        )
        self.table = self.resource.Table(options.table_name)

    def _get_item(self, name: str) -> dict[str, TableAttributeValueTypeDef] | None:
        response = self.table.get_item(Key={ID_FIELD: name})
        return response.get("Item")

    def put(self, tag: Tag, data: bytes) -> None:
        if not data:
            raise InvalidArgumentError("data is empty")

        name = tag.record_name
        update = "SET #f = :data"
        names = {"#f": tag.field}
        values: dict[str, Any] = {":data": _decode_pem(data)}

        if tag.kind is ArtifactKind.CERTIFICATE:
            try:
                _, not_after = validity_bounds(deserialize_certificate(data))
            except InvalidArgumentError:
                not_after = None
            if not_after is not None:
                update += ", #ttl = :ttl"
                names["#ttl"] = TTL_FIELD
                values[":ttl"] = int(not_after.timestamp())

        try:
            self.table.update_item(
                Key={ID_FIELD: name},
                UpdateExpression=update,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            raise BackendError(f"problem adding {tag} to {self.options.table_name}: {e}") from e
        logger.debug("Put %s.%s into %s", name, tag.field, self.options.table_name)

    def get(self, tag: Tag) -> bytes:
        name = tag.record_name
        try:
            item = self._get_item(name)
        except ClientError as e:
            raise BackendError(
                f"problem looking up {name} in {self.options.table_name}: {e}"
            ) from e
        if item is None:
            raise NotFoundError(f"could not find {name} in {self.options.table_name}")

        data = str(item.get(tag.field, ""))
        if not data:
            raise NotFoundError(f"no {tag.field} available for {name}")

        if tag.kind in _EXPIRING_KINDS:
            ttl = _ttl_from_item(item)
            if ttl is not None and datetime.now(UTC) - ttl > self.options.expire_after:
                raise ExpiredError(f"{tag.field} for {name} has expired")

        return data.encode("utf-8")

    def check(self, tag: Tag) -> bool:
        name = tag.record_name
        try:
            item = self._get_item(name)
        except ClientError as e:
            logger.warning("Check of %s.%s failed: %s", name, tag.field, e)
            return False
        return item is not None and bool(item.get(tag.field))

    def delete(self, tag: Tag) -> None:
        name = tag.record_name
        try:
            self.table.update_item(
                Key={ID_FIELD: name},
                UpdateExpression="REMOVE #f",
                ConditionExpression=Attr(ID_FIELD).exists(),
                ExpressionAttributeNames={"#f": tag.field},
            )
        except ClientError as e:
            if _is_condition_failure(e):
                logger.debug("Nothing to delete for %s.%s", name, tag.field)
                return
            raise BackendError(f"problem deleting {name}.{tag.field}: {e}") from e

    def put_ttl(self, name: str, expiration: datetime) -> None:
        """Set ttl for name; expiration must lie within the stored certificate's validity."""
        name = format_name(name)
        expiration = expiration.astimezone(UTC)

        try:
            item = self._get_item(name)
        except ClientError as e:
            raise BackendError(f"problem looking up {name}: {e}") from e
        if item is None or not item.get(RECORD_FIELDS[ArtifactKind.CERTIFICATE]):
            raise NotFoundError(f"could not find certificate for {name}")

        cert_pem = str(item[RECORD_FIELDS[ArtifactKind.CERTIFICATE]])
        cert = deserialize_certificate(cert_pem.encode("utf-8"))
        not_before, not_after = validity_bounds(cert)
        if expiration < not_before or expiration > not_after:
            raise InvalidArgumentError(
                f"cannot set expiration to {expiration} because it must be between "
                f"{not_before} and {not_after}"
            )

        try:
            self.table.update_item(
                Key={ID_FIELD: name},
                UpdateExpression="SET #ttl = :ttl",
                ConditionExpression=Attr(ID_FIELD).exists(),
                ExpressionAttributeNames={"#ttl": TTL_FIELD},
                ExpressionAttributeValues={":ttl": int(expiration.timestamp())},
            )
        except ClientError as e:
            if _is_condition_failure(e):
                raise NotFoundError(f"could not find {name}") from e
            raise BackendError(f"problem updating TTL for {name}: {e}") from e

    def get_ttl(self, name: str) -> datetime:
        name = format_name(name)
        try:
            item = self._get_item(name)
        except ClientError as e:
            raise BackendError(f"problem looking up {name}: {e}") from e
        if item is None:
            raise NotFoundError(f"could not find {name}")

        ttl = _ttl_from_item(item)
        if ttl is None:
            raise NotFoundError(f"no TTL set for {name}")
        return ttl

    def _scan_expires_before(
        self, cutoff: datetime, **kwargs: Any
    ) -> list[dict[str, TableAttributeValueTypeDef]]:
        items: list[dict[str, TableAttributeValueTypeDef]] = []
        filter_expression = Attr(TTL_FIELD).lte(int(cutoff.timestamp()))

        response = self.table.scan(FilterExpression=filter_expression, **kwargs)
        items.extend(response.get("Items", []))

        # Handle pagination
        while "LastEvaluatedKey" in response:
            response = self.table.scan(
                FilterExpression=filter_expression,
                ExclusiveStartKey=response["LastEvaluatedKey"],
                **kwargs,
            )
            items.extend(response.get("Items", []))

        return items

    def find_expires_before(self, cutoff: datetime) -> list[DepotRecord]:
        try:
            items = self._scan_expires_before(cutoff)
        except ClientError as e:
            raise BackendError(f"problem finding expired records: {e}") from e
        return [_parse_item_to_record(item) for item in items]

    def delete_expires_before(self, cutoff: datetime) -> None:
        try:
            items = self._scan_expires_before(
                cutoff,
                ProjectionExpression="#id",
                ExpressionAttributeNames={"#id": ID_FIELD},
            )
            with self.table.batch_writer() as batch:
                for item in items:
                    batch.delete_item(Key={ID_FIELD: item[ID_FIELD]})
        except ClientError as e:
            raise BackendError(f"problem removing expired records: {e}") from e
        logger.info("Deleted %d expired records from %s", len(items), self.options.table_name)
