"""Exceptions raised by the policy store, repository and matching service."""

from ai_services.exceptions import (
    PCheckError,
    ConfigError,
    ValidationError,
    BackendError,
)


class LoadError(PCheckError):
    """Raised when the policy folder cannot be loaded."""
    pass


class ConflictError(PCheckError):
    """Raised when two policy documents resolve to the same identifier."""
    pass


class NotFoundError(PCheckError):
    """Raised when a policy identifier is unknown."""
    pass


class NotReadyError(PCheckError):
    """Raised when the repository is read before initialization has completed."""
    pass


class ServiceUnavailableError(PCheckError):
    """Raised when a match cannot be computed because the backend failed."""
    pass


__all__ = [
    'PCheckError',
    'ConfigError',
    'ValidationError',
    'BackendError',
    'LoadError',
    'ConflictError',
    'NotFoundError',
    'NotReadyError',
    'ServiceUnavailableError',
]
