"""Tags address a single artifact (kind) of a named entity in a depot."""

import re
from dataclasses import dataclass
from enum import Enum

_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")


class ArtifactKind(Enum):
    """Kinds of PKI artifact stored per entity."""

    CERTIFICATE = "certificate"
    PRIVATE_KEY = "private_key"
    CERTIFICATE_REQUEST = "certificate_request"
    REVOCATION_LIST = "revocation_list"


FILE_EXTENSIONS: dict[ArtifactKind, str] = {
    ArtifactKind.CERTIFICATE: "crt",
    ArtifactKind.PRIVATE_KEY: "key",
    ArtifactKind.CERTIFICATE_REQUEST: "csr",
    ArtifactKind.REVOCATION_LIST: "crl",
}

RECORD_FIELDS: dict[ArtifactKind, str] = {
    ArtifactKind.CERTIFICATE: "cert",
    ArtifactKind.PRIVATE_KEY: "private_key",
    ArtifactKind.CERTIFICATE_REQUEST: "cert_req",
    ArtifactKind.REVOCATION_LIST: "cert_revoc_list",
}

ID_FIELD = "id"
TTL_FIELD = "ttl"


def format_name(name: str) -> str:
    """Replace spaces with underscores."""
    return name.replace(" ", "_")


def sanitize_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with an underscore."""
    return _FILENAME_UNSAFE.sub("_", name)


@dataclass(frozen=True)
class Tag:
    """Entity name paired with an artifact kind."""

    name: str
    kind: ArtifactKind

    @property
    def record_name(self) -> str:
        """Name used as the backend key (file stem, document id, row id)."""
        if self.kind is ArtifactKind.CERTIFICATE_REQUEST:
            return sanitize_name(self.name)
        return format_name(self.name)

    @property
    def field(self) -> str:
        """Record field holding this artifact in record-style backends."""
        return RECORD_FIELDS[self.kind]

    @property
    def extension(self) -> str:
        """File extension for this artifact in object-style backends."""
        return FILE_EXTENSIONS[self.kind]

    def __str__(self) -> str:
        return f"{self.record_name}.{self.extension}"


def crt_tag(name: str) -> Tag:
    return Tag(name, ArtifactKind.CERTIFICATE)


def priv_key_tag(name: str) -> Tag:
    return Tag(name, ArtifactKind.PRIVATE_KEY)


def csr_tag(name: str) -> Tag:
    return Tag(name, ArtifactKind.CERTIFICATE_REQUEST)


def crl_tag(name: str) -> Tag:
    return Tag(name, ArtifactKind.REVOCATION_LIST)
