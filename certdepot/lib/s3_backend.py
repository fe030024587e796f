"""S3 backend storing one object per artifact."""

import logging

import boto3
from botocore.exceptions import ClientError

from certdepot.lib.config import S3DepotOptions
from certdepot.lib.errors import (
    AlreadyExistsError,
    BackendError,
    InvalidArgumentError,
    NotFoundError,
)
from certdepot.lib.storage import StorageBackend
from certdepot.lib.tags import Tag, sanitize_name

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in _MISSING_CODES


class S3Backend(StorageBackend):
    """Stores artifacts as ``s3://<bucket>/<prefix>/<name>.<ext>``.

    Same strict semantics as the filesystem backend: writes never overwrite
    and deletes of missing objects fail.
    """

    def __init__(self, options: S3DepotOptions) -> None:
        """Initialize S3 backend.

        Args:
            options: Bucket, key prefix and AWS region
        """
        options.validate()
        self.options = options
        self.client = boto3.client("s3", region_name=options.region)

    def key_for(self, tag: Tag) -> str:
        name = f"{sanitize_name(tag.record_name)}.{tag.extension}"
        if self.options.prefix:
            return f"{self.options.prefix}/{name}"
        return name

    def _exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.options.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_missing(e):
                return False
            raise

    def put(self, tag: Tag, data: bytes) -> None:
        if not data:
            raise InvalidArgumentError("data is empty")

        key = self.key_for(tag)
        try:
            if self._exists(key):
                raise AlreadyExistsError(f"{key} already exists")
            self.client.put_object(
                Bucket=self.options.bucket,
                Key=key,
                Body=data,
                ContentType="application/x-pem-file",
            )
        except ClientError as e:
            raise BackendError(f"problem uploading {key}: {e}") from e
        logger.debug("Uploaded s3://%s/%s", self.options.bucket, key)

    def get(self, tag: Tag) -> bytes:
        key = self.key_for(tag)
        try:
            response = self.client.get_object(Bucket=self.options.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError(f"{key} not found") from e
            raise BackendError(f"problem downloading {key}: {e}") from e

        data = response["Body"].read()
        if not data:
            raise NotFoundError(f"{key} is empty")
        return data

    def check(self, tag: Tag) -> bool:
        key = self.key_for(tag)
        try:
            return self._exists(key)
        except ClientError as e:
            logger.warning("Check of s3://%s/%s failed: %s", self.options.bucket, key, e)
            return False

    def delete(self, tag: Tag) -> None:
        key = self.key_for(tag)
        try:
            if not self._exists(key):
                raise NotFoundError(f"{key} not found")
            self.client.delete_object(Bucket=self.options.bucket, Key=key)
        except ClientError as e:
            raise BackendError(f"problem deleting {key}: {e}") from e
        logger.debug("Deleted s3://%s/%s", self.options.bucket, key)
