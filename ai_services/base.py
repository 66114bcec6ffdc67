"""Base classes and interfaces for embedding services."""

from abc import ABC, abstractmethod
from enum import Enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Sequence

from .exceptions import ValidationError


class EmbeddingProvider(Enum):
    """Supported embedding backends."""
    AZURE_OPENAI = "azure"
    HASH = "hash"


@dataclass(frozen=True)
class EmbeddingOutcome:
    """Result of embedding one input of a batch."""
    index: int
    text: str
    vector: Optional[List[float]] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.vector is not None


def require_text(text: str) -> str:
    """Reject empty or whitespace-only input before it reaches a backend."""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Text to embed must be a non-empty string")
    return text


class EmbeddingClient(ABC):
    """
    Abstract base class for embedding backends.

    Implementations turn text into fixed-length vectors. The dimension is
    either configured up front or fixed by the first successful response.
    """

    model_name: str = "unknown"

    def __init__(self, dimension: Optional[int] = None):
        if dimension is not None and dimension <= 0:
            raise ValidationError("Embedding dimension must be a positive integer")
        self._dimension = dimension

    @property
    def dimension(self) -> Optional[int]:
        """Vector length D, or None until the first vector has been produced."""
        return self._dimension

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embed one text. Raises ValidationError or BackendError."""
        pass

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingOutcome]:
        """Embed many texts, returning one outcome per input in input order."""
        pass

    def get_metrics(self) -> Dict[str, Any]:
        return {"model": self.model_name, "dimension": self._dimension}
