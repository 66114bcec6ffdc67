from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Policy:
    """A policy document, optionally with its embedding."""
    id: str
    title: str
    body: str
    source_path: str
    embedding: Optional[Tuple[float, ...]] = None
    embedding_error: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), hash=False)

    def __post_init__(self):
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None

    def embedding_text(self) -> str:
        """Text sent to the embedding model."""
        if self.title and not self.body.startswith(self.title):
            return f"{self.title}\n\n{self.body}"
        return self.body

    def with_embedding(self, vector: Sequence[float]) -> "Policy":
        return replace(self, embedding=tuple(float(v) for v in vector), embedding_error=None)

    def without_embedding(self, reason: str) -> "Policy":
        return replace(self, embedding=None, embedding_error=reason)


@dataclass(frozen=True)
class SimilarityResult:
    policy: Policy
    score: float


@dataclass(frozen=True)
class LoadWarning:
    """A policy file that was skipped during loading."""
    path: str
    reason: str


class RepositoryStatus(Enum):
    NEW = "new"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"
