"""Storage contracts implemented by every depot backend."""

from abc import ABC, abstractmethod
from datetime import datetime

from certdepot.lib.models import DepotRecord
from certdepot.lib.tags import Tag


class StorageBackend(ABC):
    """Byte-oriented key/value contract over tags."""

    @abstractmethod
    def put(self, tag: Tag, data: bytes) -> None:
        """Store data at tag.

        Raises:
            InvalidArgumentError: If data is empty
            AlreadyExistsError: If the backend refuses to overwrite an artifact
        """

    @abstractmethod
    def get(self, tag: Tag) -> bytes:
        """Return data stored at tag.

        Raises:
            NotFoundError: If nothing (or only an empty value) is stored at tag
        """

    @abstractmethod
    def check(self, tag: Tag) -> bool:
        """Return True if an artifact exists at tag. Never raises."""

    @abstractmethod
    def delete(self, tag: Tag) -> None:
        """Remove the artifact at tag and nothing else."""


class ExpirationManager(ABC):
    """Optional capability: per-entity ttl tracking and expiry queries."""

    @abstractmethod
    def put_ttl(self, name: str, expiration: datetime) -> None:
        """Set the ttl of an existing record.

        Raises:
            NotFoundError: If no record or certificate exists for name
            InvalidArgumentError: If expiration is outside the certificate's validity
        """

    @abstractmethod
    def get_ttl(self, name: str) -> datetime:
        """Return the ttl of a record.

        Raises:
            NotFoundError: If no record exists for name or it has no ttl
        """

    @abstractmethod
    def find_expires_before(self, cutoff: datetime) -> list[DepotRecord]:
        """Return records whose ttl is set and not after cutoff."""

    @abstractmethod
    def delete_expires_before(self, cutoff: datetime) -> None:
        """Delete whole records whose ttl is set and not after cutoff."""
