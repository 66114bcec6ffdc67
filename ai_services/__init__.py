"""AI Services Module - Embedding backends behind one interface."""

from .base import (
    EmbeddingProvider,
    EmbeddingOutcome,
    EmbeddingClient
)
from .exceptions import (
    PCheckError,
    ConfigError,
    ValidationError,
    BackendError,
    BackendUnavailable,
    RateLimitExceeded,
    AuthenticationError,
    InvalidResponse
)
from .cache import EmbeddingCache
from .rate_limiter import RateLimiter
from .hash_service import DeterministicHashEmbeddingClient
from .openai_service import AzureOpenAIEmbeddingClient
from .registry import build_embedding_client

__all__ = [
    'EmbeddingProvider',
    'EmbeddingOutcome',
    'EmbeddingClient',
    'PCheckError',
    'ConfigError',
    'ValidationError',
    'BackendError',
    'BackendUnavailable',
    'RateLimitExceeded',
    'AuthenticationError',
    'InvalidResponse',
    'EmbeddingCache',
    'RateLimiter',
    'DeterministicHashEmbeddingClient',
    'AzureOpenAIEmbeddingClient',
    'build_embedding_client'
]
