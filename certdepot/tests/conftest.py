"""Test fixtures for certdepot tests."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from certdepot.lib.cert_utils import generate_private_key
from certdepot.lib.certificate_builder import CertificateBuilder
from certdepot.lib.config import DepotOptions, DistinguishedName, S3DepotOptions, SQLDepotOptions
from certdepot.lib.depot import Depot, make_depot
from certdepot.lib.file_backend import FileBackend
from certdepot.lib.lifecycle import CertificateOptions
from certdepot.lib.s3_backend import S3Backend
from certdepot.lib.sql_backend import SQLBackend
from certdepot.lib.storage import StorageBackend

CA_NAME = "root"
SERVICE_NAME = "svc"

BACKEND_KINDS = ["file", "sql", "s3"]


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the backend makes."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}

    @staticmethod
    def _missing(operation: str, code: str) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": "Not Found"}}, operation)

    def head_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if (Bucket, Key) not in self.objects:
            raise self._missing("HeadObject", "404")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def put_object(self, Bucket: str, Key: str, Body: bytes, **kwargs: Any) -> dict[str, Any]:
        self.objects[(Bucket, Key)] = Body
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if (Bucket, Key) not in self.objects:
            raise self._missing("GetObject", "NoSuchKey")
        body = MagicMock()
        body.read.return_value = self.objects[(Bucket, Key)]
        return {"Body": body}

    def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.objects.pop((Bucket, Key), None)
        return {}


@pytest.fixture
def depot_options() -> DepotOptions:
    """Return depot options pointing at the test CA."""
    return DepotOptions(ca=CA_NAME, default_expiration=timedelta(hours=1))


@pytest.fixture
def file_backend(tmp_path: Path) -> FileBackend:
    """Return filesystem backend rooted in a temporary directory."""
    return FileBackend(tmp_path / "depot")


@pytest.fixture
def sql_backend() -> SQLBackend:
    """Return relational backend on an in-memory SQLite database."""
    backend = SQLBackend(SQLDepotOptions(database_url="sqlite://", expire_after=timedelta(days=30)))
    backend.create_schema()
    return backend


@pytest.fixture
def fake_s3() -> FakeS3Client:
    """Return empty in-memory S3 client."""
    return FakeS3Client()


@pytest.fixture
def s3_backend(fake_s3: FakeS3Client) -> Generator[S3Backend]:
    """Return S3 backend whose boto3 client is the in-memory fake."""
    with patch("certdepot.lib.s3_backend.boto3") as mock_boto3:
        mock_boto3.client.return_value = fake_s3
        yield S3Backend(S3DepotOptions(bucket="test-bucket"))


@pytest.fixture(params=BACKEND_KINDS)
def backend(request: pytest.FixtureRequest) -> StorageBackend:
    """Return each storage backend in turn."""
    return request.getfixturevalue(f"{request.param}_backend")


@pytest.fixture
def depot(backend: StorageBackend, depot_options: DepotOptions) -> Depot:
    """Return a depot over each storage backend in turn."""
    return make_depot(backend, depot_options)


@pytest.fixture
def file_depot(file_backend: FileBackend, depot_options: DepotOptions) -> Depot:
    """Return depot over the filesystem backend."""
    return make_depot(file_backend, depot_options)


@pytest.fixture
def sql_depot(sql_backend: SQLBackend, depot_options: DepotOptions) -> Depot:
    """Return expiring depot over the relational backend."""
    return make_depot(sql_backend, depot_options)


@pytest.fixture
def ca_opts() -> CertificateOptions:
    """Return options creating the test CA with a one hour lifetime."""
    return CertificateOptions(common_name=CA_NAME, expires=timedelta(hours=1))


@pytest.fixture
def service_opts() -> CertificateOptions:
    """Return options creating the service certificate signed by the test CA."""
    return CertificateOptions(
        common_name=SERVICE_NAME,
        host=SERVICE_NAME,
        ca=CA_NAME,
        expires=timedelta(hours=1),
    )


@pytest.fixture
def ca_key() -> RSAPrivateKey:
    """Generate RSA private key for the CA."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def ca_cert(ca_key: RSAPrivateKey) -> x509.Certificate:
    """Generate self-signed CA certificate valid for one day."""
    return CertificateBuilder.build_certificate_authority(
        subject_dn=DistinguishedName(common_name="Test Root CA", country="GB", organization="Test Org"),
        private_key=ca_key,
        expires_at=datetime.now(UTC) + timedelta(days=1),
    )


@pytest.fixture
def host_key() -> RSAPrivateKey:
    """Generate RSA private key for a host certificate."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def host_csr(host_key: RSAPrivateKey) -> x509.CertificateSigningRequest:
    """Generate host CSR with a DNS alternative name."""
    return CertificateBuilder.build_signing_request(
        subject_dn=DistinguishedName(common_name="host.example.com"),
        private_key=host_key,
        domains=["host.example.com"],
    )


@pytest.fixture
def host_cert(
    host_csr: x509.CertificateSigningRequest,
    ca_cert: x509.Certificate,
    ca_key: RSAPrivateKey,
) -> x509.Certificate:
    """Generate host certificate signed by the CA, valid for one hour."""
    return CertificateBuilder.build_host_certificate(
        csr=host_csr,
        ca_cert=ca_cert,
        ca_key=ca_key,
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )
