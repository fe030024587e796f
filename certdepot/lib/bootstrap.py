"""Idempotent bootstrap of a depot holding a CA and one service certificate."""

import logging
from dataclasses import dataclass
from typing import Any

from certdepot.lib.depot import Depot
from certdepot.lib.errors import DepotError, InvalidArgumentError
from certdepot.lib.lifecycle import CertificateOptions
from certdepot.lib.tags import crt_tag, priv_key_tag

logger = logging.getLogger(__name__)


@dataclass
class BootstrapDepotConfig:
    """Inputs for bootstrap_depot.

    ca_cert and ca_key import operator-supplied CA material and must be given
    together. ca_opts is only used when no CA certificate exists; service_opts
    only when no service certificate exists.
    """

    ca_name: str
    service_name: str
    ca_cert: str = ""
    ca_key: str = ""
    ca_opts: CertificateOptions | None = None
    service_opts: CertificateOptions | None = None

    def validate(self) -> None:
        """Check every invariant and report all violations together.

        Raises:
            InvalidArgumentError: If any invariant is violated
        """
        problems = []
        if not self.ca_name or not self.service_name:
            problems.append("must specify the name of the CA and service")
        if bool(self.ca_cert) != bool(self.ca_key):
            problems.append("must provide both cert and key if bootstrapping with an existing CA")
        if self.ca_opts is not None and self.ca_opts.common_name != self.ca_name:
            problems.append("ca_name and ca_opts.common_name must be the same")
        if self.service_opts is not None and self.service_opts.common_name != self.service_name:
            problems.append("service_name and service_opts.common_name must be the same")
        if self.service_opts is not None and self.service_opts.ca != self.ca_name:
            problems.append("ca_name and service_opts.ca must be the same")

        if problems:
            raise InvalidArgumentError("; ".join(problems))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BootstrapDepotConfig":
        """Build config from a JSON-style mapping with nested option objects."""
        ca_opts = data.get("ca_opts")
        service_opts = data.get("service_opts")
        return cls(
            ca_name=data.get("ca_name", ""),
            service_name=data.get("service_name", ""),
            ca_cert=data.get("ca_cert", ""),
            ca_key=data.get("ca_key", ""),
            ca_opts=CertificateOptions.from_dict(ca_opts) if ca_opts is not None else None,
            service_opts=(
                CertificateOptions.from_dict(service_opts) if service_opts is not None else None
            ),
        )


def bootstrap_depot(depot: Depot, config: BootstrapDepotConfig) -> Depot:
    """Ensure the depot holds a certificate and key for both the CA and the service.

    Safe to call repeatedly: existing certificates are left alone, and a
    failed call can be retried to resume where it stopped.

    Args:
        depot: Depot to populate
        config: Names, optional CA material and creation options

    Returns:
        The same depot

    Raises:
        DepotError: From whichever step failed, wrapped with that step's context
    """
    config.validate()

    if config.ca_cert:
        try:
            _import_ca(depot, config)
        except DepotError as e:
            raise e.with_context("problem adding a CA cert") from e

    if not depot.check(crt_tag(config.ca_name)):
        try:
            _create_ca(depot, config)
        except DepotError as e:
            raise e.with_context("problem during certificate creation") from e

    if not depot.check(crt_tag(config.service_name)):
        try:
            _create_service_certificate(depot, config)
        except DepotError as e:
            raise e.with_context("problem checking the service certificate") from e

    return depot


def _import_ca(depot: Depot, config: BootstrapDepotConfig) -> None:
    cert_tag = crt_tag(config.ca_name)
    key_tag = priv_key_tag(config.ca_name)

    if depot.check(cert_tag):
        try:
            if depot.get(cert_tag).decode("utf-8") == config.ca_cert:
                logger.debug("CA certificate for %s already imported", config.ca_name)
                return
        except DepotError as e:
            logger.warning("Could not read existing CA certificate for %s: %s", config.ca_name, e)

    # Strict backends refuse to overwrite, so replaced material goes first.
    depot.delete_if_exists(cert_tag, key_tag)

    try:
        depot.put(cert_tag, config.ca_cert.encode("utf-8"))
    except DepotError as e:
        raise e.with_context("problem adding CA cert to depot") from e
    try:
        depot.put(key_tag, config.ca_key.encode("utf-8"))
    except DepotError as e:
        raise e.with_context("problem adding CA key to depot") from e
    logger.info("Imported CA certificate for %s", config.ca_name)


def _create_ca(depot: Depot, config: BootstrapDepotConfig) -> None:
    if config.ca_opts is None:
        raise InvalidArgumentError("cannot create a new CA with no CA options")
    try:
        config.ca_opts.init(depot)
    except DepotError as e:
        raise e.with_context("problem initializing the CA") from e
    try:
        _create_service_certificate(depot, config)
    except DepotError as e:
        raise e.with_context("problem creating the server cert") from e


def _create_service_certificate(depot: Depot, config: BootstrapDepotConfig) -> None:
    if config.service_opts is None:
        raise InvalidArgumentError("cannot create a new server cert with no service options")
    try:
        config.service_opts.cert_request(depot)
    except DepotError as e:
        raise e.with_context("problem creating service cert request") from e
    try:
        config.service_opts.sign(depot)
    except DepotError as e:
        raise e.with_context("problem signing service key") from e
