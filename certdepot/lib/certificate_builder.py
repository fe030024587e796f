"""Certificate builder for X.509 certificate, CSR and CRL construction."""

import ipaddress
from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import ExtendedKeyUsageOID

from certdepot.lib.cert_utils import generate_serial_number
from certdepot.lib.config import DistinguishedName
from certdepot.lib.errors import InvalidArgumentError

_CA_KEY_USAGE = x509.KeyUsage(
    digital_signature=False,
    content_commitment=False,
    key_encipherment=False,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=True,
    crl_sign=True,
    encipher_only=False,
    decipher_only=False,
)


class CertificateBuilder:
    """Builds X.509 certificates, signing requests and revocation lists."""

    @staticmethod
    def build_certificate_authority(
        subject_dn: DistinguishedName,
        private_key: RSAPrivateKey,
        expires_at: datetime,
    ) -> x509.Certificate:
        """Build self-signed CA certificate.

        Args:
            subject_dn: Distinguished name for certificate subject
            private_key: RSA private key for signing
            expires_at: End of the validity window

        Returns:
            Self-signed X.509 certificate with CA extensions
        """
        subject = subject_dn.to_x509_name()
        not_before = datetime.now(timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(private_key.public_key())
            .serial_number(generate_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(expires_at)
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=None),
                critical=True,
            )
            .add_extension(_CA_KEY_USAGE, critical=True)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                critical=False,
            )
        )

        return builder.sign(private_key, hashes.SHA256())

    @staticmethod
    def build_signing_request(
        subject_dn: DistinguishedName,
        private_key: RSAPrivateKey,
        ips: list[ipaddress.IPv4Address | ipaddress.IPv6Address] | None = None,
        domains: list[str] | None = None,
        uris: list[str] | None = None,
    ) -> x509.CertificateSigningRequest:
        """Build CSR with optional subject alternative names."""
        san: list[x509.GeneralName] = []
        san.extend(x509.DNSName(domain) for domain in domains or [])
        san.extend(x509.IPAddress(ip) for ip in ips or [])
        san.extend(x509.UniformResourceIdentifier(uri) for uri in uris or [])

        builder = x509.CertificateSigningRequestBuilder().subject_name(subject_dn.to_x509_name())
        if san:
            builder = builder.add_extension(x509.SubjectAlternativeName(san), critical=False)

        return builder.sign(private_key, hashes.SHA256())

    @staticmethod
    def build_intermediate_ca(
        csr: x509.CertificateSigningRequest,
        ca_cert: x509.Certificate,
        ca_key: RSAPrivateKey,
        expires_at: datetime,
    ) -> x509.Certificate:
        """Build intermediate CA certificate from CSR, signed by the issuing CA.

        Args:
            csr: Certificate signing request from intermediate CA
            ca_cert: Issuing CA certificate
            ca_key: Issuing CA private key for signing
            expires_at: End of the validity window

        Returns:
            X.509 certificate signed by the CA with pathlen:0 constraint

        Raises:
            InvalidArgumentError: If CSR signature is invalid
        """
        builder = _issued_builder(csr, ca_cert, expires_at)
        builder = builder.add_extension(
            x509.BasicConstraints(ca=True, path_length=0),
            critical=True,
        ).add_extension(_CA_KEY_USAGE, critical=True)

        return builder.sign(ca_key, hashes.SHA256())

    @staticmethod
    def build_host_certificate(
        csr: x509.CertificateSigningRequest,
        ca_cert: x509.Certificate,
        ca_key: RSAPrivateKey,
        expires_at: datetime,
    ) -> x509.Certificate:
        """Build end-entity certificate from CSR, signed by the CA.

        The CA never sees the host's private key. Subject alternative names
        requested in the CSR are copied into the certificate.

        Raises:
            InvalidArgumentError: If CSR signature is invalid
        """
        builder = (
            _issued_builder(csr, ca_cert, expires_at)
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=False,
            )
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                ),
                critical=False,
            )
        )

        try:
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            builder = builder.add_extension(san.value, critical=san.critical)
        except x509.ExtensionNotFound:
            pass

        return builder.sign(ca_key, hashes.SHA256())

    @staticmethod
    def build_revocation_list(
        ca_cert: x509.Certificate,
        ca_key: RSAPrivateKey,
        next_update: datetime,
    ) -> x509.CertificateRevocationList:
        """Build an empty CRL issued by the CA."""
        return (
            x509.CertificateRevocationListBuilder()
            .issuer_name(ca_cert.subject)
            .last_update(datetime.now(timezone.utc))
            .next_update(next_update)
            .sign(ca_key, hashes.SHA256())
        )


def _issued_builder(
    csr: x509.CertificateSigningRequest,
    ca_cert: x509.Certificate,
    expires_at: datetime,
) -> x509.CertificateBuilder:
    if not csr.is_signature_valid:
        raise InvalidArgumentError("CSR signature validation failed")

    public_key = csr.public_key()
    return (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(ca_cert.subject)
        .public_key(public_key)
        .serial_number(generate_serial_number())
        .not_valid_before(datetime.now(timezone.utc))
        .not_valid_after(expires_at)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),  # type: ignore[arg-type]
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key()),  # type: ignore[arg-type]
            critical=False,
        )
    )
