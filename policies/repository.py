"""
Policy repository: the authoritative in-memory index of policies and their
embeddings.

Initialization is single-flight. The first caller loads and embeds every
policy without holding any lock, then publishes an immutable snapshot in one
assignment. Callers arriving meanwhile wait on an event. Once published,
the snapshot is read without locking.
"""

import logging
import math
import numbers
import threading
import time
from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ai_services.base import EmbeddingClient, EmbeddingOutcome
from .exceptions import (
    BackendError,
    LoadError,
    NotFoundError,
    NotReadyError,
    PCheckError,
    ValidationError,
)
from .models import LoadWarning, Policy, RepositoryStatus, SimilarityResult
from .similarity import normalize_rows, rank_by_cosine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    policies: Tuple[Policy, ...]
    by_id: Mapping[str, Policy]
    embedded: Tuple[Policy, ...]
    embedded_ids: Tuple[str, ...]
    matrix: Optional[np.ndarray]
    dimension: Optional[int]
    warnings: Tuple[LoadWarning, ...]


class PolicyRepository:
    """
    Owns every Policy and its embedding for the lifetime of the process.

    Args:
        store: Object with ``load(path) -> list[Policy]`` and ``warnings``
        embedding_client: Embedding backend used once, during initialization
        data_folder: Folder handed to the store
        strict_embedding: Fail initialization on the first policy that
            cannot be embedded instead of keeping it unembedded
    """

    def __init__(self, store, embedding_client: EmbeddingClient, data_folder: str,
                 strict_embedding: bool = False):
        self._store = store
        self._client = embedding_client
        self.data_folder = data_folder
        self.strict_embedding = strict_embedding

        self._state_lock = threading.Lock()
        self._settled = threading.Event()
        self._status = RepositoryStatus.NEW
        self._snapshot: Optional[_Snapshot] = None
        self._error: Optional[BaseException] = None

        self.embedding_passes = 0

    @property
    def status(self) -> RepositoryStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status is RepositoryStatus.READY

    def initialize(self, timeout: Optional[float] = None) -> None:
        """
        Load and embed every policy exactly once.

        Concurrent callers block until the first caller finishes, or raise
        NotReadyError once ``timeout`` seconds have passed.

        Raises:
            LoadError, ConflictError: The store could not load the folder
            BackendError: Embedding failed in strict mode
            NotReadyError: Timed out waiting, or the repository was shut down
        """
        with self._state_lock:
            status = self._status
            leader = status is RepositoryStatus.NEW
            if leader:
                self._status = RepositoryStatus.LOADING

        if leader:
            self._run_initialization()
            return

        if status is RepositoryStatus.CLOSED:
            raise NotReadyError("Policy repository has been shut down")

        if not self._settled.wait(timeout):
            raise NotReadyError("Policy repository is still initializing")

        if self._status is RepositoryStatus.FAILED:
            self._raise_failure()
        if self._status is not RepositoryStatus.READY:
            raise NotReadyError(f"Policy repository is {self._status.value}")

    def _run_initialization(self):
        started = time.monotonic()
        logger.info(f"Initializing policy repository from {self.data_folder}")

        try:
            snapshot = self._build_snapshot()
        except BaseException as e:
            with self._state_lock:
                if self._status is RepositoryStatus.LOADING:
                    self._status = RepositoryStatus.FAILED
                    self._error = e
            self._settled.set()
            logger.error(f"❌ Policy repository initialization failed: {e}")
            raise

        with self._state_lock:
            published = self._status is RepositoryStatus.LOADING
            if published:
                self._snapshot = snapshot
                self._status = RepositoryStatus.READY
        self._settled.set()

        if not published:
            raise NotReadyError("Policy repository was shut down during initialization")

        logger.info(f"✅ Policy repository ready: {len(snapshot.policies)} policies, "
                    f"{len(snapshot.embedded)} embedded, dimension={snapshot.dimension}, "
                    f"time={time.monotonic() - started:.2f}s")

    def _raise_failure(self):
        error = self._error
        if isinstance(error, PCheckError):
            raise type(error)(str(error)) from error
        raise LoadError(f"Policy repository initialization failed: {error}") from error

    def _build_snapshot(self) -> _Snapshot:
        policies = self._store.load(self.data_folder)
        warnings = tuple(getattr(self._store, "warnings", ()))
        policies, dimension = self._embed_policies(policies)

        embedded = tuple(p for p in policies if p.is_embedded)
        matrix = None
        if embedded:
            matrix = normalize_rows([p.embedding for p in embedded])
            matrix.setflags(write=False)

        return _Snapshot(
            policies=tuple(policies),
            by_id=MappingProxyType({p.id: p for p in policies}),
            embedded=embedded,
            embedded_ids=tuple(p.id for p in embedded),
            matrix=matrix,
            dimension=dimension,
            warnings=warnings,
        )

    def _embed_policies(self, policies: Sequence[Policy]) -> Tuple[List[Policy], Optional[int]]:
        """One embedding pass over every policy. Returns new Policy objects."""
        self.embedding_passes += 1
        outcomes = self._client.embed_batch([p.embedding_text() for p in policies])
        if len(outcomes) != len(policies):
            raise BackendError(
                f"Embedding client returned {len(outcomes)} results for {len(policies)} policies"
            )

        dimension = self._client.dimension
        if dimension is None:
            lengths = Counter(len(o.vector) for o in outcomes if o.ok)
            dimension = lengths.most_common(1)[0][0] if lengths else None

        result: List[Policy] = []
        for policy, outcome in zip(policies, outcomes):
            reason = self._rejection_reason(outcome, dimension)
            if reason is None:
                result.append(policy.with_embedding(outcome.vector))
                continue

            if self.strict_embedding:
                raise BackendError(f'Failed to embed policy "{policy.id}": {reason}') from outcome.error
            logger.warning(f"Policy {policy.id} left unembedded: {reason}")
            result.append(policy.without_embedding(reason))

        return result, dimension

    @staticmethod
    def _rejection_reason(outcome: EmbeddingOutcome, dimension: Optional[int]) -> Optional[str]:
        if not outcome.ok:
            return str(outcome.error) if outcome.error else "no vector returned"
        if len(outcome.vector) != dimension:
            return f"vector length {len(outcome.vector)} does not match dimension {dimension}"
        if not all(math.isfinite(v) for v in outcome.vector):
            return "vector contains NaN or infinite values"
        if not any(outcome.vector):
            return "zero-magnitude vector"
        return None

    def _require_snapshot(self) -> _Snapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise NotReadyError(f"Policy repository is not ready (status={self._status.value})")
        return snapshot

    def all(self) -> Tuple[Policy, ...]:
        """Every policy, in load order."""
        return self._require_snapshot().policies

    def find_by_id(self, policy_id: str) -> Policy:
        snapshot = self._require_snapshot()
        try:
            return snapshot.by_id[policy_id]
        except KeyError:
            raise NotFoundError(f'Policy "{policy_id}" not found') from None

    def nearest(self, query_vector: Sequence[float], k: int) -> List[SimilarityResult]:
        """
        Up to ``k`` embedded policies most similar to ``query_vector``.

        Results are ordered by descending cosine similarity; equal scores are
        ordered by policy id. Unembedded policies never appear.

        Raises:
            ValidationError: Bad ``k``, wrong dimension or zero-magnitude query
        """
        if isinstance(k, bool) or not isinstance(k, numbers.Integral) or k < 1:
            raise ValidationError("k must be a positive integer")

        snapshot = self._require_snapshot()
        ranked = rank_by_cosine(snapshot.matrix, snapshot.embedded_ids, query_vector, int(k))
        return [SimilarityResult(policy=snapshot.embedded[row], score=score) for row, score in ranked]

    def unembedded(self) -> Tuple[Policy, ...]:
        return tuple(p for p in self._require_snapshot().policies if not p.is_embedded)

    @property
    def embedded_count(self) -> int:
        return len(self._require_snapshot().embedded)

    @property
    def dimension(self) -> Optional[int]:
        return self._require_snapshot().dimension

    @property
    def warnings(self) -> Tuple[LoadWarning, ...]:
        return self._require_snapshot().warnings

    def shutdown(self) -> None:
        """Release the snapshot. Later reads raise NotReadyError."""
        with self._state_lock:
            self._status = RepositoryStatus.CLOSED
            self._snapshot = None
        self._settled.set()
        logger.info("Policy repository shut down")
