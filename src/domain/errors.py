"""Error taxonomy shared by the domain, application and infrastructure layers."""
from __future__ import annotations


class DomainError(Exception):
    """Base class for every error the core raises on purpose."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """Image or metadata version does not exist."""


class NotAuthorizedError(DomainError):
    """Identity lacks the capability the operation requires."""


class ValidationError(DomainError):
    """Malformed bundle, filter, sort or export format."""


class StorageFailure(DomainError):
    """The persistence collaborator failed; never retried by the core."""


# shared by "missing" and "denied" image lookups so callers cannot tell a private image from a missing one
IMAGE_UNAVAILABLE = "Image not found or access denied"
