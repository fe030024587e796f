"""Tests for ttl tracking on the relational backend."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from certdepot.lib.config import DepotOptions, SQLDepotOptions
from certdepot.lib.depot import ExpiringDepot, make_depot
from certdepot.lib.errors import ExpiredError, InvalidArgumentError, NotFoundError
from certdepot.lib.lifecycle import CertificateOptions
from certdepot.lib.sql_backend import SQLBackend
from certdepot.lib.tags import crl_tag, crt_tag, priv_key_tag

CA_NAME = "root"


@pytest.fixture
def expiring_depot(sql_backend: SQLBackend) -> ExpiringDepot:
    """Return expiring depot holding a CA and hosts a and b, plus key-only entity c."""
    depot = make_depot(sql_backend, DepotOptions(ca=CA_NAME))
    assert isinstance(depot, ExpiringDepot)

    CertificateOptions(common_name=CA_NAME, expires=timedelta(hours=2)).init(depot)
    for name in ("a", "b"):
        CertificateOptions(
            common_name=name, host=name, ca=CA_NAME, expires=timedelta(hours=1)
        ).create_certificate(depot)
    depot.put(priv_key_tag("c"), b"c's fake private key")
    return depot


def _force_ttl(backend: SQLBackend, name: str, ttl: datetime) -> None:
    """Write a ttl directly, bypassing the validity bounds check."""
    with backend.engine.begin() as conn:
        conn.execute(
            update(backend.table)
            .where(backend.table.c.id == name)
            .values(ttl=ttl.astimezone(UTC).replace(tzinfo=None))
        )


class TestPutGetTTL:
    """Tests for put_ttl() and get_ttl()."""

    def test_put_ttl_within_validity(self, expiring_depot: ExpiringDepot) -> None:
        """A ttl inside the certificate's validity is stored and read back."""
        not_before, not_after = expiring_depot.validity_bounds("a")
        ttl = not_before + (not_after - not_before) / 2
        ttl = ttl.replace(microsecond=0)

        expiring_depot.put_ttl("a", ttl)

        assert expiring_depot.get_ttl("a") == ttl

    @pytest.mark.parametrize("offset", [timedelta(days=-1), timedelta(days=1)])
    def test_put_ttl_outside_validity(
        self, expiring_depot: ExpiringDepot, offset: timedelta
    ) -> None:
        """A ttl before NotBefore or after NotAfter is rejected."""
        not_before, not_after = expiring_depot.validity_bounds("a")
        ttl = not_before + offset if offset < timedelta(0) else not_after + offset

        with pytest.raises(InvalidArgumentError, match="must be between"):
            expiring_depot.put_ttl("a", ttl)
        assert expiring_depot.get_ttl("a") == not_after

    def test_put_ttl_without_record(self, expiring_depot: ExpiringDepot) -> None:
        """No record for the name raises NotFoundError."""
        with pytest.raises(NotFoundError):
            expiring_depot.put_ttl("nobody", datetime.now(UTC))

    def test_put_ttl_without_certificate(self, expiring_depot: ExpiringDepot) -> None:
        """A record without a certificate has no bounds to check against."""
        with pytest.raises(NotFoundError, match="certificate"):
            expiring_depot.put_ttl("c", datetime.now(UTC))

    def test_get_ttl_missing(self, expiring_depot: ExpiringDepot) -> None:
        """Unknown names and records without ttl raise NotFoundError."""
        with pytest.raises(NotFoundError):
            expiring_depot.get_ttl("nobody")
        with pytest.raises(NotFoundError, match="no TTL"):
            expiring_depot.get_ttl("c")

    def test_ttl_names_are_normalized(self, sql_backend: SQLBackend) -> None:
        """Spaces in the entity name map to the stored id."""
        depot = make_depot(sql_backend)
        CertificateOptions(common_name="my root", expires=timedelta(hours=1)).init(depot)

        assert isinstance(depot, ExpiringDepot)
        assert depot.get_ttl("my root") == depot.get_ttl("my_root")


class TestExpiresBefore:
    """Tests for find_expires_before() and delete_expires_before()."""

    def test_find_expires_before(self, expiring_depot: ExpiringDepot, sql_backend: SQLBackend) -> None:
        """Exactly the records with a ttl at or before the cutoff are returned."""
        now = datetime.now(UTC).replace(microsecond=0)
        _force_ttl(sql_backend, "a", now - timedelta(minutes=10))
        _force_ttl(sql_backend, "b", now + timedelta(minutes=40))

        records = expiring_depot.find_expires_before(now)

        assert [record.id for record in records] == ["a"]
        assert records[0].cert.startswith("-----BEGIN CERTIFICATE-----")
        assert records[0].ttl == now - timedelta(minutes=10)

    def test_cutoff_is_inclusive(self, expiring_depot: ExpiringDepot, sql_backend: SQLBackend) -> None:
        """A ttl equal to the cutoff matches."""
        cutoff = datetime.now(UTC).replace(microsecond=0)
        _force_ttl(sql_backend, "a", cutoff)

        assert [record.id for record in expiring_depot.find_expires_before(cutoff)] == ["a"]

    def test_records_without_ttl_never_match(self, expiring_depot: ExpiringDepot) -> None:
        """Entities with no ttl are excluded whatever the cutoff."""
        records = expiring_depot.find_expires_before(datetime.now(UTC) + timedelta(days=365))

        assert sorted(record.id for record in records) == sorted([CA_NAME, "a", "b"])

    def test_delete_expires_before(self, expiring_depot: ExpiringDepot, sql_backend: SQLBackend) -> None:
        """Matching records are removed entirely, others stay."""
        now = datetime.now(UTC)
        _force_ttl(sql_backend, "a", now - timedelta(minutes=10))

        expiring_depot.delete_expires_before(now)

        assert not expiring_depot.check(crt_tag("a"))
        assert not expiring_depot.check(priv_key_tag("a"))
        with pytest.raises(NotFoundError):
            expiring_depot.get_ttl("a")
        assert expiring_depot.check(crt_tag("b"))
        assert expiring_depot.check(priv_key_tag("c"))


class TestExpiredReads:
    """Reads of certificates and CRLs past ttl plus the grace period fail."""

    @pytest.fixture
    def short_grace_backend(self, sql_backend: SQLBackend) -> SQLBackend:
        """Return a second backend on the same database with a one minute grace period."""
        return SQLBackend(
            SQLDepotOptions(database_url="sqlite://", expire_after=timedelta(minutes=1)),
            engine=sql_backend.engine,
        )

    def test_expired_certificate_and_crl(
        self,
        expiring_depot: ExpiringDepot,
        sql_backend: SQLBackend,
        short_grace_backend: SQLBackend,
    ) -> None:
        """Past the grace period certificates and CRLs raise ExpiredError, keys do not."""
        _force_ttl(sql_backend, CA_NAME, datetime.now(UTC) - timedelta(minutes=5))

        with pytest.raises(ExpiredError):
            short_grace_backend.get(crt_tag(CA_NAME))
        with pytest.raises(ExpiredError):
            short_grace_backend.get(crl_tag(CA_NAME))
        assert short_grace_backend.get(priv_key_tag(CA_NAME))

    def test_within_grace_period(
        self, expiring_depot: ExpiringDepot, sql_backend: SQLBackend
    ) -> None:
        """Inside the default grace period expired certificates are still readable."""
        _force_ttl(sql_backend, CA_NAME, datetime.now(UTC) - timedelta(minutes=5))

        assert expiring_depot.get_certificate(CA_NAME)
