from __future__ import annotations
import logging
from typing import Any, Optional

from .base import EmbeddingClient, EmbeddingProvider
from .exceptions import ConfigError
from .hash_service import DeterministicHashEmbeddingClient
from .openai_service import AzureOpenAIEmbeddingClient
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def build_embedding_client(settings: Any) -> EmbeddingClient:
    """
    Simple factory so the app never imports vendor-specific code elsewhere.

    Examples:
      build_embedding_client(load_settings())
      build_embedding_client(replace(settings, embed_provider="hash"))
    """
    name = (settings.embed_provider or EmbeddingProvider.AZURE_OPENAI.value).lower()

    if name == EmbeddingProvider.AZURE_OPENAI.value:
        rate_limiter: Optional[RateLimiter] = None
        if settings.requests_per_minute:
            rate_limiter = RateLimiter(
                requests_per_minute=settings.requests_per_minute,
                tokens_per_minute=settings.tokens_per_minute,
            )
        return AzureOpenAIEmbeddingClient(
            api_key=settings.api_key,
            endpoint=settings.endpoint,
            deployment_name=settings.deployment_name,
            api_version=settings.api_version,
            dimensions=settings.embed_dimensions,
            batch_size=settings.embed_batch_size,
            request_timeout=settings.request_timeout,
            rate_limiter=rate_limiter,
        )

    if name == EmbeddingProvider.HASH.value:
        logger.warning("Using the offline hash embedding client; scores are not semantic")
        return DeterministicHashEmbeddingClient(dimension=settings.embed_dimensions or 64)

    raise ConfigError(f"Unknown embedding provider: {name}")
