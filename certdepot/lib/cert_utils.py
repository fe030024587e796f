"""Certificate utility functions for key generation, PEM import/export and field extraction."""

import ipaddress
import uuid
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from certdepot.lib.errors import InvalidArgumentError

DEFAULT_KEY_BITS = 2048


def generate_private_key(key_size: int = DEFAULT_KEY_BITS) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey, passphrase: bytes | None = None) -> bytes:
    """Serialize private key to PEM format (PKCS8, encrypted when a passphrase is given)."""
    if passphrase:
        encryption: serialization.KeySerializationEncryption = (
            serialization.BestAvailableEncryption(passphrase)
        )
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def deserialize_private_key(pem_data: bytes, passphrase: bytes | None = None) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes, decrypting with passphrase if given.

    Raises:
        InvalidArgumentError: If the PEM is malformed, the passphrase is wrong
            or the key is not RSA
    """
    try:
        key = serialization.load_pem_private_key(pem_data, password=passphrase or None)
    except (ValueError, TypeError) as e:
        raise InvalidArgumentError(f"could not load private key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise InvalidArgumentError("expected RSA private key")
    return key


def load_private_key_file(path: str | Path) -> RSAPrivateKey:
    """Read an unencrypted PEM private key from disk."""
    try:
        pem_data = Path(path).read_bytes()
    except OSError as e:
        raise InvalidArgumentError(f"problem reading key from {path}: {e}") from e
    return deserialize_private_key(pem_data)


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    try:
        return x509.load_pem_x509_certificate(pem_data)
    except ValueError as e:
        raise InvalidArgumentError(f"could not load certificate: {e}") from e


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def deserialize_csr(pem_data: bytes) -> x509.CertificateSigningRequest:
    """Deserialize CSR from PEM bytes."""
    try:
        return x509.load_pem_x509_csr(pem_data)
    except ValueError as e:
        raise InvalidArgumentError(f"could not load certificate signing request: {e}") from e


def serialize_crl(crl: x509.CertificateRevocationList) -> bytes:
    """Serialize CRL to PEM format."""
    return crl.public_bytes(serialization.Encoding.PEM)


def deserialize_crl(pem_data: bytes) -> x509.CertificateRevocationList:
    """Deserialize CRL from PEM bytes."""
    try:
        return x509.load_pem_x509_crl(pem_data)
    except ValueError as e:
        raise InvalidArgumentError(f"could not load certificate revocation list: {e}") from e


def generate_serial_number() -> int:
    """Generate certificate serial number from UUID4.

    Uses UUID v4 (random) for serial numbers with 128-bit values
    (~122 bits effective entropy), above the 64-bit CSPRNG baseline.

    Returns:
        Integer serial number for x509.CertificateBuilder.serial_number()
    """
    return uuid.uuid4().int


def validity_bounds(cert: x509.Certificate) -> tuple[datetime, datetime]:
    """Return (not_before, not_after) of a certificate as aware UTC datetimes."""
    return cert.not_valid_before_utc, cert.not_valid_after_utc


def is_certificate_authority(cert: x509.Certificate) -> bool:
    """Return True if the certificate's basic constraints mark it as a CA.

    Path length and constraint criticality are not checked.
    """
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    return constraints.ca


def get_common_name(name: x509.Name) -> str:
    """Return the first CN attribute of a name, or empty string."""
    attributes = name.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    if not attributes:
        return ""
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8")


def parse_ips(values: list[str]) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    """Parse and validate IP addresses for subject alternative names.

    Raises:
        InvalidArgumentError: If any value is not a valid IP address
    """
    ips = []
    for value in values:
        value = value.strip()
        if not value:
            continue
        try:
            ips.append(ipaddress.ip_address(value))
        except ValueError as e:
            raise InvalidArgumentError(f"invalid IP address {value!r}") from e
    return ips


def parse_uris(values: list[str]) -> list[str]:
    """Validate URIs for subject alternative names.

    Raises:
        InvalidArgumentError: If any value lacks a scheme or a host/path
    """
    uris = []
    for value in values:
        value = value.strip()
        if not value:
            continue
        parsed = urlparse(value)
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise InvalidArgumentError(f"invalid URI {value!r}")
        uris.append(value)
    return uris
