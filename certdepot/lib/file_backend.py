"""Filesystem backend storing one PEM file per artifact."""

import logging
import os
from pathlib import Path

from certdepot.lib.errors import (
    AlreadyExistsError,
    BackendError,
    InvalidArgumentError,
    NotFoundError,
)
from certdepot.lib.storage import StorageBackend
from certdepot.lib.tags import ArtifactKind, Tag, sanitize_name

logger = logging.getLogger(__name__)

KEY_PERMISSIONS = 0o440
PUBLIC_PERMISSIONS = 0o444


class FileBackend(StorageBackend):
    """Stores artifacts as ``<root>/<name>.crt|.key|.csr|.crl``.

    Writes never overwrite and deletes of missing files fail.
    """

    def __init__(self, root: Path | str) -> None:
        """Initialize file backend, creating the root directory if needed.

        Args:
            root: Directory holding the artifact files
        """
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendError(f"could not create depot directory {self.root}: {e}") from e

    def path_for(self, tag: Tag) -> Path:
        return self.root / f"{sanitize_name(tag.record_name)}.{tag.extension}"

    def put(self, tag: Tag, data: bytes) -> None:
        if not data:
            raise InvalidArgumentError("data is empty")

        path = self.path_for(tag)
        mode = KEY_PERMISSIONS if tag.kind is ArtifactKind.PRIVATE_KEY else PUBLIC_PERMISSIONS
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        except FileExistsError as e:
            raise AlreadyExistsError(f"{path.name} already exists") from e
        except OSError as e:
            raise BackendError(f"problem creating {path}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            # Never leave a partial file behind.
            path.unlink(missing_ok=True)
            raise BackendError(f"problem writing {path}: {e}") from e
        logger.debug("Wrote %s", path)

    def get(self, tag: Tag) -> bytes:
        path = self.path_for(tag)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"{path.name} not found") from e
        except OSError as e:
            raise BackendError(f"problem reading {path}: {e}") from e

        if not data:
            raise NotFoundError(f"{path.name} is empty")
        return data

    def check(self, tag: Tag) -> bool:
        path = self.path_for(tag)
        try:
            return path.is_file()
        except OSError as e:
            logger.warning("Check of %s failed: %s", path, e)
            return False

    def delete(self, tag: Tag) -> None:
        path = self.path_for(tag)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(f"{path.name} not found") from e
        except OSError as e:
            raise BackendError(f"problem deleting {path}: {e}") from e
        logger.debug("Deleted %s", path)
