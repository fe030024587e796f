"""Error taxonomy for depot, lifecycle and bootstrap operations."""


class DepotError(Exception):
    """Base class for all certificate depot errors."""

    def with_context(self, context: str) -> "DepotError":
        """Return an error of the same class prefixed with operation context.

        Used as ``raise err.with_context("problem saving key") from err`` so the
        error category survives wrapping.
        """
        return type(self)(f"{context}: {self}")


class InvalidArgumentError(DepotError, ValueError):
    """Missing required field, malformed IP/URI/name or empty data."""


class AlreadyExistsError(DepotError):
    """An artifact already exists where a new one was to be created."""


class NotFoundError(DepotError, LookupError):
    """Artifact or record is missing."""


class NotAuthorizedToSignError(DepotError):
    """Referenced CA certificate lacks the CA basic constraint."""


class ExpiredError(DepotError):
    """Record ttl is past its expiry window."""


class BackendError(DepotError):
    """I/O or connection failure from the storage medium."""
