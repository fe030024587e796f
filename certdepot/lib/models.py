"""Credential, record and key-encryption models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from certdepot.lib.cert_utils import deserialize_certificate, deserialize_private_key
from certdepot.lib.errors import DepotError


@dataclass(frozen=True)
class KeyEncryption:
    """How a private key is stored: plaintext, or protected by a passphrase."""

    passphrase: bytes | None = None

    @classmethod
    def none(cls) -> "KeyEncryption":
        return cls()

    @classmethod
    def passphrase_protected(cls, passphrase: str | bytes) -> "KeyEncryption":
        if isinstance(passphrase, str):
            passphrase = passphrase.encode("utf-8")
        return cls(passphrase=passphrase)

    @classmethod
    def from_passphrase(cls, passphrase: str) -> "KeyEncryption":
        """Empty passphrase means no encryption."""
        if passphrase:
            return cls.passphrase_protected(passphrase)
        return cls.none()

    @property
    def encrypted(self) -> bool:
        return bool(self.passphrase)


@dataclass
class Credentials:
    """CA certificate, certificate and private key for one server name.

    All three are PEM-encoded bytes.
    """

    server_name: str
    ca_cert: bytes
    cert: bytes
    key: bytes

    @classmethod
    def from_pem(
        cls, ca_cert: bytes, cert: bytes, key: bytes, server_name: str = ""
    ) -> "Credentials":
        """Build credentials, checking that every PEM blob parses.

        Raises:
            InvalidArgumentError: If any blob is not valid PEM of its kind
        """
        for label, parse, data in (
            ("CA certificate", deserialize_certificate, ca_cert),
            ("certificate", deserialize_certificate, cert),
            ("private key", deserialize_private_key, key),
        ):
            try:
                parse(data)
            except DepotError as e:
                raise e.with_context(f"invalid {label}") from e

        return cls(server_name=server_name, ca_cert=ca_cert, cert=cert, key=key)

    def to_dict(self) -> dict[str, str]:
        return {
            "server_name": self.server_name,
            "ca_cert": self.ca_cert.decode("utf-8"),
            "cert": self.cert.decode("utf-8"),
            "key": self.key.decode("utf-8"),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credentials":
        return cls.from_pem(
            ca_cert=data["ca_cert"].encode("utf-8"),
            cert=data["cert"].encode("utf-8"),
            key=data["key"].encode("utf-8"),
            server_name=data.get("server_name", ""),
        )


@dataclass
class DepotRecord:
    """One entity as stored by record-style backends.

    Blob fields hold PEM text; empty string means the artifact is absent.
    """

    id: str
    cert: str = ""
    private_key: str = ""
    cert_req: str = ""
    cert_revoc_list: str = ""
    ttl: datetime | None = None
