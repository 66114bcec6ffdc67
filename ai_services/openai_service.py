# ai_services/openai_service.py
"""
Azure OpenAI Embedding Client

Features:
- Eager validation of credentials (fails at construction, not first use)
- Bounded retry with exponential backoff for transient failures
- Batched embedding with per-input failure reporting
- Query embedding cache
- Optional client-side rate limiting
- Token and request metrics
"""

import logging
from threading import Lock
from typing import List, Dict, Any, Optional, Sequence

from openai import (
    AzureOpenAI,
    OpenAIError,
    RateLimitError,
    APITimeoutError,
    APIConnectionError,
    InternalServerError,
    AuthenticationError as OpenAIAuthenticationError,
    PermissionDeniedError,
)
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from .base import EmbeddingClient, EmbeddingOutcome, EmbeddingProvider, require_text
from .cache import EmbeddingCache
from .exceptions import (
    BackendError,
    BackendUnavailable,
    RateLimitExceeded,
    AuthenticationError,
    InvalidResponse,
    ConfigError,
    ValidationError,
)
from .rate_limiter import RateLimiter, count_tokens

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-02-01"

# Two retries on top of the first attempt
MAX_ATTEMPTS = 3

TRANSIENT_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError, InternalServerError)

# Translated errors that say nothing about individual inputs
SERVICE_WIDE_ERRORS = (BackendUnavailable, RateLimitExceeded, AuthenticationError)


class AzureOpenAIEmbeddingClient(EmbeddingClient):
    """
    Embedding client backed by an Azure OpenAI embedding deployment.

    Retries live here and nowhere else: at most two retries per request,
    then the failure is translated into a BackendError subclass.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        deployment_name: str,
        api_version: str = DEFAULT_API_VERSION,
        dimensions: Optional[int] = None,
        batch_size: int = 16,
        request_timeout: float = 30.0,
        enable_caching: bool = True,
        cache: Optional[EmbeddingCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_wait=None,
        client=None,
    ):
        """
        Initialize the Azure OpenAI client.

        Args:
            api_key: Azure OpenAI API key
            endpoint: Azure OpenAI resource endpoint
            deployment_name: Embedding model deployment name
            api_version: Azure OpenAI REST API version
            dimensions: Fixed vector length (None = learned from first response)
            batch_size: Inputs sent per embeddings request
            request_timeout: Per-request timeout in seconds
            enable_caching: Cache vectors returned by embed()
            cache: Cache instance to use instead of a private one
            rate_limiter: Optional client-side limiter
            retry_wait: tenacity wait strategy (defaults to exponential backoff)
            client: Pre-built SDK client, mainly for tests
        """
        missing = [
            name for name, value in (
                ("api_key", api_key),
                ("endpoint", endpoint),
                ("deployment_name", deployment_name),
            )
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise ConfigError(
                f"Azure OpenAI embedding client requires non-empty: {', '.join(missing)}"
            )
        if batch_size <= 0:
            raise ConfigError("batch_size must be a positive integer")

        super().__init__(dimension=dimensions)

        self.provider = EmbeddingProvider.AZURE_OPENAI.value
        self.model_name = deployment_name
        self.deployment_name = deployment_name
        self.batch_size = batch_size
        self._requested_dimensions = dimensions
        self._dimension_lock = Lock()

        self.client = client or AzureOpenAI(
            api_key=api_key,
            azure_endpoint=endpoint,
            api_version=api_version,
            timeout=request_timeout,
            max_retries=0,
        )

        self.cache = cache if cache is not None else (EmbeddingCache() if enable_caching else None)
        self.rate_limiter = rate_limiter

        self._retrying = Retrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=retry_wait if retry_wait is not None else wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=self._log_retry,
            reraise=True,
        )

        # Metrics
        self.total_requests = 0
        self.failed_requests = 0
        self.retried_requests = 0
        self.cached_requests = 0
        self.total_tokens_used = 0

        logger.info(f"Azure OpenAI embedding client initialized: deployment={deployment_name}, "
                    f"batch_size={batch_size}, caching={self.cache is not None}")

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            ValidationError: If text is empty
            BackendError: On network, auth, quota or response failures
        """
        require_text(text)

        if self.cache is not None:
            cached = self.cache.get(self.model_name, text)
            if cached is not None:
                self.cached_requests += 1
                return cached

        vector = self._embed_inputs([text])[0]

        if self.cache is not None:
            self.cache.set(self.model_name, text, vector)
        return vector

    def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingOutcome]:
        """
        Embed many texts in chunks of ``batch_size``.

        A chunk rejected for its content is retried one input at a time so each
        outcome carries its own error. An outage, rate limit or credential
        failure ends the batch: every input not yet embedded gets that error.
        """
        outcomes: List[Optional[EmbeddingOutcome]] = [None] * len(texts)
        pending: List[int] = []

        for index, text in enumerate(texts):
            try:
                require_text(text)
            except ValidationError as e:
                outcomes[index] = EmbeddingOutcome(index=index, text=text, error=e)
            else:
                pending.append(index)

        for start in range(0, len(pending), self.batch_size):
            chunk = pending[start:start + self.batch_size]
            try:
                vectors = self._embed_inputs([texts[i] for i in chunk])
            except SERVICE_WIDE_ERRORS as e:
                self._fail_remaining(outcomes, texts, pending[start:], e)
                break
            except BackendError as e:
                if len(chunk) == 1:
                    outcomes[chunk[0]] = EmbeddingOutcome(index=chunk[0], text=texts[chunk[0]], error=e)
                    continue
                logger.warning(f"Batch of {len(chunk)} inputs failed ({e}); "
                               f"retrying inputs one at a time")
                for position, i in enumerate(chunk):
                    try:
                        vector = self._embed_inputs([texts[i]])[0]
                    except SERVICE_WIDE_ERRORS as service_error:
                        self._fail_remaining(outcomes, texts, pending[start + position:], service_error)
                        return outcomes
                    except BackendError as input_error:
                        outcomes[i] = EmbeddingOutcome(index=i, text=texts[i], error=input_error)
                    else:
                        outcomes[i] = EmbeddingOutcome(index=i, text=texts[i], vector=vector)
                continue

            for i, vector in zip(chunk, vectors):
                outcomes[i] = EmbeddingOutcome(index=i, text=texts[i], vector=vector)

        return outcomes

    @staticmethod
    def _fail_remaining(outcomes: List[Optional[EmbeddingOutcome]], texts: Sequence[str],
                        indices: List[int], error: BackendError) -> None:
        """Give every remaining input the service-wide error without sending more requests."""
        logger.error(f"❌ Embedding service unavailable for the batch ({error}); "
                     f"{len(indices)} inputs left unembedded")
        for i in indices:
            outcomes[i] = EmbeddingOutcome(index=i, text=texts[i], error=error)

    def _embed_inputs(self, inputs: List[str]) -> List[List[float]]:
        """Send one embeddings request (with retries) and validate the response."""
        if self.rate_limiter is not None:
            self.rate_limiter.wait_if_needed(count_tokens(inputs, self.model_name))

        self.total_requests += 1
        try:
            response = self._retrying.copy()(self._create_embeddings, inputs)
        except OpenAIError as e:
            self.failed_requests += 1
            logger.error(f"❌ Azure OpenAI embedding request failed: {e}")
            raise self._translate_error(e) from e

        try:
            return self._extract_vectors(response, len(inputs))
        except InvalidResponse:
            self.failed_requests += 1
            raise

    def _create_embeddings(self, inputs: List[str]):
        extra_args = {}
        if self._requested_dimensions is not None:
            extra_args["dimensions"] = self._requested_dimensions
        return self.client.embeddings.create(
            model=self.deployment_name,
            input=inputs,
            **extra_args
        )

    def _extract_vectors(self, response, expected: int) -> List[List[float]]:
        data = getattr(response, "data", None)
        if not data or len(data) != expected:
            got = len(data) if data else 0
            raise InvalidResponse(f"Expected {expected} embeddings, received {got}")

        items = sorted(data, key=lambda item: item.index)
        vectors = [list(map(float, item.embedding)) for item in items]

        lengths = {len(v) for v in vectors}
        if len(lengths) != 1 or 0 in lengths:
            raise InvalidResponse(f"Embeddings in one response have inconsistent lengths: {sorted(lengths)}")
        length = lengths.pop()

        with self._dimension_lock:
            if self._dimension is None:
                self._dimension = length
                logger.info(f"Embedding dimension fixed at {length}")
            elif self._dimension != length:
                raise InvalidResponse(
                    f"Embedding length {length} does not match dimension {self._dimension}"
                )

        usage = getattr(response, "usage", None)
        if usage is not None:
            self.total_tokens_used += getattr(usage, "total_tokens", 0) or 0

        return vectors

    def _log_retry(self, retry_state):
        self.retried_requests += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(f"⏳ Retrying embeddings request (attempt {retry_state.attempt_number} "
                       f"of {MAX_ATTEMPTS}) after: {exc}")

    @staticmethod
    def _translate_error(e: OpenAIError) -> BackendError:
        if isinstance(e, RateLimitError):
            return RateLimitExceeded(f"Rate limit exceeded: {e}")
        if isinstance(e, (APITimeoutError, APIConnectionError, InternalServerError)):
            return BackendUnavailable(f"Embedding service unavailable: {e}")
        if isinstance(e, (OpenAIAuthenticationError, PermissionDeniedError)):
            return AuthenticationError(f"Embedding service rejected credentials: {e}")
        return BackendError(f"Azure OpenAI error: {e}")

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get client metrics.

        Returns:
            Dictionary with all metrics
        """
        metrics = {
            "provider": self.provider,
            "model": self.model_name,
            "dimension": self._dimension,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "retried_requests": self.retried_requests,
            "cached_requests": self.cached_requests,
            "total_tokens_used": self.total_tokens_used,
        }

        if self.cache is not None:
            metrics["cache_metrics"] = self.cache.get_metrics()

        if self.rate_limiter is not None:
            metrics["rate_limiter_metrics"] = self.rate_limiter.get_metrics()

        return metrics
