"""Certificate lifecycle: initialize CAs, request certificates and sign them into a depot.

An entity moves Unissued -> CSR-issued -> Signed according to which
artifacts the depot holds for it. There are no backward transitions except
through deletion on expiration.
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from certdepot.lib.cert_utils import (
    DEFAULT_KEY_BITS,
    generate_private_key,
    is_certificate_authority,
    load_private_key_file,
    parse_ips,
    parse_uris,
)
from certdepot.lib.certificate_builder import CertificateBuilder
from certdepot.lib.config import DistinguishedName, parse_duration
from certdepot.lib.depot import Depot
from certdepot.lib.errors import (
    AlreadyExistsError,
    DepotError,
    InvalidArgumentError,
    NotAuthorizedToSignError,
)
from certdepot.lib.models import KeyEncryption
from certdepot.lib.storage import ExpirationManager
from certdepot.lib.tags import crt_tag, csr_tag, format_name, priv_key_tag, sanitize_name

logger = logging.getLogger(__name__)

# Short keys accepted by from_dict, as used in serialized configuration.
_ALIASES = {
    "o": "organization",
    "c": "country",
    "l": "locality",
    "cn": "common_name",
    "ou": "organizational_unit",
    "st": "province",
    "dns": "domain",
}


@dataclass
class CertificateOptions:
    """Options for init, cert_request and sign.

    Subject and key fields apply to init and cert_request; ``expires``
    applies to init and sign; host, CA and intermediate fields apply to sign.
    """

    passphrase: str = ""
    key_bits: int = DEFAULT_KEY_BITS
    organization: str = ""
    country: str = ""
    locality: str = ""
    common_name: str = ""
    organizational_unit: str = ""
    province: str = ""
    ip: list[str] = field(default_factory=list)
    domain: list[str] = field(default_factory=list)
    uri: list[str] = field(default_factory=list)
    key: str = ""
    expires: timedelta = timedelta(days=365)
    host: str = ""
    ca: str = ""
    ca_passphrase: str = ""
    intermediate: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CertificateOptions":
        """Build options from a JSON-style mapping; ``expires`` may be seconds or ``"1h"``."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = _ALIASES.get(raw_key, raw_key)
            if key not in known:
                raise InvalidArgumentError(f"unknown certificate option {raw_key!r}")
            kwargs[key] = value
        if "expires" in kwargs:
            kwargs["expires"] = parse_duration(kwargs["expires"])
        return cls(**kwargs)

    def _subject(self, common_name: str) -> DistinguishedName:
        return DistinguishedName(
            common_name=common_name,
            country=self.country,
            state=self.province,
            locality=self.locality,
            organization=self.organization,
            organizational_unit=self.organizational_unit,
        )

    def _expires_at(self) -> datetime:
        if self.expires <= timedelta(0):
            raise InvalidArgumentError("expiration must be positive")
        return datetime.now(timezone.utc) + self.expires

    def _get_or_create_private_key(self) -> RSAPrivateKey:
        if self.key:
            return load_private_key_file(self.key)
        return generate_private_key(self.key_bits or DEFAULT_KEY_BITS)

    def certificate_request_name(self) -> str:
        """CommonName, else the first domain entry."""
        if self.common_name:
            return self.common_name
        if self.domain:
            return self.domain[0]
        raise InvalidArgumentError("must provide a common name or domain")

    def init(self, depot: Depot) -> None:
        """Create a self-signed CA, its key and an empty CRL under common_name.

        Raises:
            InvalidArgumentError: If common_name is empty
            AlreadyExistsError: If a certificate or key already exists for the CA
        """
        if not self.common_name:
            raise InvalidArgumentError("must provide common name of CA")
        name = format_name(self.common_name)

        if depot.check(crt_tag(name)) or depot.check(priv_key_tag(name)):
            raise AlreadyExistsError(f"CA with name {name!r} already exists")

        key = self._get_or_create_private_key()
        expires_at = self._expires_at()
        cert = CertificateBuilder.build_certificate_authority(
            subject_dn=self._subject(self.common_name),
            private_key=key,
            expires_at=expires_at,
        )

        try:
            depot.put_certificate(name, cert)
        except DepotError as e:
            raise e.with_context("problem saving certificate authority") from e

        _store_private_key(depot, name, key, KeyEncryption.from_passphrase(self.passphrase))

        # Some consumers refuse to load a CA without a CRL.
        crl = CertificateBuilder.build_revocation_list(cert, key, expires_at)
        try:
            depot.put_revocation_list(name, crl)
        except DepotError as e:
            raise e.with_context("problem saving certificate revocation list") from e

        _record_ttl(depot, name, cert)
        logger.info("Initialized certificate authority %s", name)

    def cert_request_in_memory(self) -> tuple[x509.CertificateSigningRequest, RSAPrivateKey]:
        """Build a CSR and its key without touching any depot."""
        ips = parse_ips(self.ip)
        uris = parse_uris(self.uri)
        name = self.certificate_request_name()

        key = self._get_or_create_private_key()
        csr = CertificateBuilder.build_signing_request(
            subject_dn=self._subject(name),
            private_key=key,
            ips=ips,
            domains=self.domain,
            uris=uris,
        )
        return csr, key

    def cert_request(self, depot: Depot) -> None:
        """Create and store a CSR plus its key under the sanitized request name.

        Raises:
            InvalidArgumentError: If no name is available or an IP/URI is malformed
            AlreadyExistsError: If a CSR or key already exists for the name
        """
        name = sanitize_name(self.certificate_request_name())
        parse_ips(self.ip)
        parse_uris(self.uri)

        if depot.check(csr_tag(name)) or depot.check(priv_key_tag(name)):
            raise AlreadyExistsError(f"certificate request for {name!r} already exists")

        csr, key = self.cert_request_in_memory()
        try:
            depot.put_signing_request(name, csr)
        except DepotError as e:
            raise e.with_context("problem saving certificate request") from e

        _store_private_key(depot, name, key, KeyEncryption.from_passphrase(self.passphrase))
        logger.info("Created certificate request for %s", name)

    def sign_in_memory(self, depot: Depot, csr: x509.CertificateSigningRequest) -> x509.Certificate:
        """Sign a CSR with the CA stored in the depot and return the certificate."""
        if not self.ca:
            raise InvalidArgumentError("must provide name of CA")
        ca_name = format_name(self.ca)

        try:
            ca_cert = depot.get_certificate(ca_name)
        except DepotError as e:
            raise e.with_context("problem getting CA certificate") from e

        if not is_certificate_authority(ca_cert):
            raise NotAuthorizedToSignError(f"{self.ca} is not allowed to sign certificates")

        encryption = KeyEncryption.from_passphrase(self.ca_passphrase)
        try:
            ca_key = depot.get_private_key(ca_name, encryption)
        except DepotError as e:
            state = "encrypted" if encryption.encrypted else "unencrypted (assumed)"
            raise e.with_context(f"problem getting {state} CA key") from e

        expires_at = self._expires_at()
        try:
            if self.intermediate:
                return CertificateBuilder.build_intermediate_ca(csr, ca_cert, ca_key, expires_at)
            return CertificateBuilder.build_host_certificate(csr, ca_cert, ca_key, expires_at)
        except DepotError as e:
            raise e.with_context("problem creating certificate") from e

    def sign(self, depot: Depot) -> None:
        """Sign the CSR stored for host with the named CA and store the certificate.

        Raises:
            InvalidArgumentError: If host or CA is missing
            AlreadyExistsError: If a certificate already exists for host
            NotFoundError: If the CSR, CA certificate or CA key is missing
            NotAuthorizedToSignError: If the CA certificate is not a CA
        """
        if not self.host:
            raise InvalidArgumentError("must provide name of host")
        if not self.ca:
            raise InvalidArgumentError("must provide name of CA")
        name = format_name(self.host)

        if depot.check(crt_tag(name)):
            raise AlreadyExistsError(f"certificate for {name!r} already exists")

        try:
            csr = depot.get_signing_request(name)
        except DepotError as e:
            raise e.with_context("problem getting host's certificate signing request") from e

        cert = self.sign_in_memory(depot, csr)
        try:
            depot.put_certificate(name, cert)
        except DepotError as e:
            raise e.with_context("problem saving certificate") from e

        _record_ttl(depot, name, cert)
        logger.info("Signed certificate for %s with CA %s", name, self.ca)

    def create_certificate(self, depot: Depot) -> None:
        """Request and sign a certificate in one step."""
        try:
            self.cert_request(depot)
        except DepotError as e:
            raise e.with_context("problem creating the certificate request") from e
        try:
            self.sign(depot)
        except DepotError as e:
            raise e.with_context("problem signing the certificate request") from e

    def create_certificate_on_expiration(self, depot: Depot, after: timedelta) -> bool:
        """Issue a certificate if none exists or the current one expires within after.

        Returns True if a certificate was created. Not meant for CA entities.
        """
        missing = True
        if depot.check(crt_tag(self.common_name)):
            try:
                missing = delete_on_expiration(depot, self.common_name, after)
            except DepotError as e:
                raise e.with_context("problem deleting expiring certificate") from e

        if not missing:
            return False

        try:
            self.create_certificate(depot)
        except DepotError as e:
            raise e.with_context("problem creating certificate") from e
        return True


def delete_on_expiration(depot: Depot, name: str, after: timedelta) -> bool:
    """Delete the certificate (and its CSR unless a CA, and its key) if it expires within after.

    Returns True if the certificate was deleted.
    """
    if not depot.check(crt_tag(name)):
        return False

    try:
        cert = depot.get_certificate(name)
    except DepotError as e:
        raise e.with_context("problem getting certificate from the depot") from e

    if cert.not_valid_after_utc >= datetime.now(timezone.utc) + after:
        return False

    try:
        depot.delete_certificate(name)
    except DepotError as e:
        raise e.with_context("problem deleting expiring certificate") from e

    if not is_certificate_authority(cert):
        try:
            depot.delete_if_exists(csr_tag(name))
        except DepotError as e:
            raise e.with_context("problem deleting expiring certificate signing request") from e

    try:
        depot.delete_if_exists(priv_key_tag(name))
    except DepotError as e:
        raise e.with_context("problem deleting expiring certificate key") from e

    logger.info("Deleted expiring certificate for %s", name)
    return True


def _store_private_key(
    depot: Depot, name: str, key: RSAPrivateKey, encryption: KeyEncryption
) -> None:
    try:
        depot.put_private_key(name, key, encryption)
    except DepotError as e:
        state = "encrypted " if encryption.encrypted else ""
        raise e.with_context(f"problem saving {state}private key") from e


def _record_ttl(depot: Depot, name: str, cert: x509.Certificate) -> None:
    if not isinstance(depot, ExpirationManager):
        return
    try:
        depot.put_ttl(name, cert.not_valid_after_utc)
    except DepotError as e:
        raise e.with_context("problem setting certificate TTL") from e
