"""Query orchestration: embed the text, rank policies, apply the score floor."""

import logging
import numbers
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import List, Optional

from ai_services.base import EmbeddingClient
from .exceptions import BackendError, NotReadyError, ServiceUnavailableError, ValidationError
from .models import SimilarityResult
from .repository import PolicyRepository

logger = logging.getLogger(__name__)


class PolicyMatchingService:
    """
    Matches free text against the policy repository.

    An empty result always means "no policy scored high enough"; a backend
    failure or timeout raises ServiceUnavailableError instead.
    """

    def __init__(self, repository: PolicyRepository, embedding_client: EmbeddingClient,
                 default_timeout: Optional[float] = None, max_workers: int = 4):
        if default_timeout is not None and default_timeout <= 0:
            raise ValidationError("default_timeout must be positive")
        self._repository = repository
        self._client = embedding_client
        self.default_timeout = default_timeout
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def match(self, query_text: str, k: int = 5, min_score: float = 0.0,
              timeout: Optional[float] = None) -> List[SimilarityResult]:
        """
        Return up to ``k`` policies scoring at least ``min_score``, best first.

        Args:
            query_text: Free text to match
            k: Maximum number of results
            min_score: Cosine similarity floor in [-1, 1]
            timeout: Seconds to wait for the query embedding (None = default)

        Raises:
            ValidationError: Invalid arguments; raised before any embedding call
            ServiceUnavailableError: The embedding backend failed or timed out
            NotReadyError: The repository has not finished initializing
        """
        if not isinstance(query_text, str) or not query_text.strip():
            raise ValidationError("Query text must be a non-empty string")
        if isinstance(k, bool) or not isinstance(k, numbers.Integral) or k < 1:
            raise ValidationError("k must be a positive integer")
        if isinstance(min_score, bool) or not isinstance(min_score, numbers.Real) \
                or not -1.0 <= min_score <= 1.0:
            raise ValidationError("min_score must be a number between -1 and 1")
        if timeout is not None and timeout <= 0:
            raise ValidationError("timeout must be positive")

        if not self._repository.is_ready:
            raise NotReadyError("Policy repository is not ready")

        query_vector = self._embed_query(query_text, timeout if timeout is not None else self.default_timeout)
        results = self._repository.nearest(query_vector, int(k))
        return [r for r in results if r.score >= min_score]

    def _embed_query(self, text: str, timeout: Optional[float]) -> List[float]:
        try:
            if timeout is None:
                return self._client.embed(text)

            future = self._get_executor().submit(self._client.embed, text)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                future.cancel()
                logger.warning(f"Query embedding abandoned after {timeout:.2f}s")
                raise ServiceUnavailableError(
                    f"Embedding the query timed out after {timeout:.2f}s"
                ) from None
        except BackendError as e:
            logger.error(f"❌ Query embedding failed: {e}")
            raise ServiceUnavailableError(f"Embedding service unavailable: {e}") from e

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="policy-match",
                )
            return self._executor

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
