"""Backend-agnostic depot facade over a storage backend."""

import logging
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from certdepot.lib.cert_utils import (
    deserialize_certificate,
    deserialize_crl,
    deserialize_csr,
    deserialize_private_key,
    serialize_certificate,
    serialize_crl,
    serialize_csr,
    serialize_private_key,
    validity_bounds,
)
from certdepot.lib.config import DepotOptions
from certdepot.lib.errors import DepotError
from certdepot.lib.models import Credentials, DepotRecord, KeyEncryption
from certdepot.lib.storage import ExpirationManager, StorageBackend
from certdepot.lib.tags import Tag, crl_tag, crt_tag, csr_tag, priv_key_tag

logger = logging.getLogger(__name__)


class Depot(StorageBackend):
    """Stores, finds and generates credentials on top of a storage backend."""

    def __init__(self, backend: StorageBackend, options: DepotOptions | None = None) -> None:
        """Initialize depot.

        Args:
            backend: Storage backend holding the artifacts
            options: Default CA name and expiration used by find/generate
        """
        self.backend = backend
        self.options = options or DepotOptions()

    def put(self, tag: Tag, data: bytes) -> None:
        self.backend.put(tag, data)

    def get(self, tag: Tag) -> bytes:
        return self.backend.get(tag)

    def check(self, tag: Tag) -> bool:
        return self.backend.check(tag)

    def delete(self, tag: Tag) -> None:
        self.backend.delete(tag)

    def delete_if_exists(self, *tags: Tag) -> None:
        """Delete every tag that is present, attempting all before raising the first error."""
        errors: list[DepotError] = []
        for tag in tags:
            if self.check(tag):
                try:
                    self.delete(tag)
                except DepotError as e:
                    errors.append(e)
        if errors:
            raise errors[0]

    # Typed artifact helpers

    def put_certificate(self, name: str, cert: x509.Certificate) -> None:
        self.put(crt_tag(name), serialize_certificate(cert))

    def get_certificate(self, name: str) -> x509.Certificate:
        return deserialize_certificate(self.get(crt_tag(name)))

    def check_certificate(self, name: str) -> bool:
        return self.check(crt_tag(name))

    def delete_certificate(self, name: str) -> None:
        self.delete(crt_tag(name))

    def put_signing_request(self, name: str, csr: x509.CertificateSigningRequest) -> None:
        self.put(csr_tag(name), serialize_csr(csr))

    def get_signing_request(self, name: str) -> x509.CertificateSigningRequest:
        return deserialize_csr(self.get(csr_tag(name)))

    def check_signing_request(self, name: str) -> bool:
        return self.check(csr_tag(name))

    def delete_signing_request(self, name: str) -> None:
        self.delete(csr_tag(name))

    def put_private_key(
        self, name: str, key: RSAPrivateKey, encryption: KeyEncryption | None = None
    ) -> None:
        """Store a private key in plaintext or passphrase-protected form."""
        encryption = encryption or KeyEncryption.none()
        self.put(priv_key_tag(name), serialize_private_key(key, encryption.passphrase))

    def get_private_key(self, name: str, encryption: KeyEncryption | None = None) -> RSAPrivateKey:
        encryption = encryption or KeyEncryption.none()
        return deserialize_private_key(self.get(priv_key_tag(name)), encryption.passphrase)

    def check_private_key(self, name: str) -> bool:
        return self.check(priv_key_tag(name))

    def delete_private_key(self, name: str) -> None:
        self.delete(priv_key_tag(name))

    def put_revocation_list(self, name: str, crl: x509.CertificateRevocationList) -> None:
        self.put(crl_tag(name), serialize_crl(crl))

    def get_revocation_list(self, name: str) -> x509.CertificateRevocationList:
        return deserialize_crl(self.get(crl_tag(name)))

    def check_revocation_list(self, name: str) -> bool:
        return self.check(crl_tag(name))

    def delete_revocation_list(self, name: str) -> None:
        self.delete(crl_tag(name))

    def validity_bounds(self, name: str) -> tuple[datetime, datetime]:
        """Return (not_before, not_after) of the certificate stored under name."""
        try:
            return validity_bounds(self.get_certificate(name))
        except DepotError as e:
            raise e.with_context("problem getting certificate") from e

    # Credential bundles

    def save(self, name: str, credentials: Credentials) -> None:
        """Replace the key and certificate stored under name.

        The key is written before the certificate so a reader never sees a
        certificate without its key.
        """
        try:
            self.delete_if_exists(csr_tag(name), priv_key_tag(name), crt_tag(name))
        except DepotError as e:
            raise e.with_context("problem deleting existing credentials") from e

        try:
            self.put(priv_key_tag(name), credentials.key)
        except DepotError as e:
            raise e.with_context("problem saving key") from e

        try:
            self.put(crt_tag(name), credentials.cert)
        except DepotError as e:
            raise e.with_context("problem saving certificate") from e

        if isinstance(self, ExpirationManager):
            try:
                _, not_after = validity_bounds(deserialize_certificate(credentials.cert))
                self.put_ttl(name, not_after)
            except DepotError as e:
                raise e.with_context("could not put expiration on credentials") from e

        logger.info("Saved credentials for %s", name)

    def find(self, name: str) -> Credentials:
        """Assemble stored CA certificate, certificate and key for name."""
        blobs = []
        for label, tag in (
            ("CA certificate", crt_tag(self.options.ca)),
            ("certificate", crt_tag(name)),
            ("key", priv_key_tag(name)),
        ):
            try:
                blobs.append(self.get(tag))
            except DepotError as e:
                raise e.with_context(f"problem getting {label}") from e

        ca_cert, cert, key = blobs
        try:
            return Credentials.from_pem(ca_cert, cert, key, server_name=name)
        except DepotError as e:
            raise e.with_context("could not create credentials") from e

    def generate(self, name: str) -> Credentials:
        """Issue fresh credentials for name from the default CA without persisting them."""
        from certdepot.lib.lifecycle import CertificateOptions

        opts = CertificateOptions(
            ca=self.options.ca,
            common_name=name,
            host=name,
            expires=self.options.default_expiration,
        )

        try:
            ca_pem = self.get(crt_tag(self.options.ca))
        except DepotError as e:
            raise e.with_context("problem getting CA certificate") from e

        csr, key = opts.cert_request_in_memory()
        try:
            cert = opts.sign_in_memory(self, csr)
        except DepotError as e:
            raise e.with_context("problem signing certificate request") from e

        return Credentials.from_pem(
            ca_cert=ca_pem,
            cert=serialize_certificate(cert),
            key=serialize_private_key(key),
            server_name=name,
        )


class ExpiringDepot(Depot, ExpirationManager):
    """Depot over a backend that also tracks per-entity ttls."""

    backend: ExpirationManager  # type: ignore[assignment]

    def __init__(self, backend: StorageBackend, options: DepotOptions | None = None) -> None:
        if not isinstance(backend, ExpirationManager):
            raise TypeError(f"{type(backend).__name__} does not manage expiration")
        super().__init__(backend, options)

    def put_ttl(self, name: str, expiration: datetime) -> None:
        self.backend.put_ttl(name, expiration)

    def get_ttl(self, name: str) -> datetime:
        return self.backend.get_ttl(name)

    def find_expires_before(self, cutoff: datetime) -> list[DepotRecord]:
        return self.backend.find_expires_before(cutoff)

    def delete_expires_before(self, cutoff: datetime) -> None:
        self.backend.delete_expires_before(cutoff)


def make_depot(backend: StorageBackend, options: DepotOptions | None = None) -> Depot:
    """Wrap a backend in a depot, exposing ttl operations when the backend supports them."""
    if isinstance(backend, ExpirationManager):
        return ExpiringDepot(backend, options)
    return Depot(backend, options)
