"""Custom exceptions for embedding services and the policy server."""


class PCheckError(Exception):
    """Base exception for every error raised by the policy server."""
    pass


class ConfigError(PCheckError):
    """Raised when required configuration is missing or invalid."""
    pass


class ValidationError(PCheckError):
    """Raised when caller input is rejected before any work is done."""
    pass


class BackendError(PCheckError):
    """Base exception for embedding backend failures."""
    pass


class BackendUnavailable(BackendError):
    """Raised when the embedding backend times out or cannot be reached."""
    pass


class RateLimitExceeded(BackendError):
    """Raised when the backend or the local limiter refuses a request."""
    pass


class AuthenticationError(BackendError):
    """Raised when the backend rejects the credentials."""
    pass


class InvalidResponse(BackendError):
    """Raised when the backend response is malformed or has the wrong shape."""
    pass
