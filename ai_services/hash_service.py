# ai_services/hash_service.py
"""Offline embedding client for local development and demos."""

import hashlib
import math
import re
from typing import List, Sequence

from .base import EmbeddingClient, EmbeddingOutcome, EmbeddingProvider, require_text
from .exceptions import ValidationError

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class DeterministicHashEmbeddingClient(EmbeddingClient):
    """Deterministic hash-based embedding client.

    Each lowercase word is hashed into one of ``dimension`` buckets with a
    hashed sign, and the bag of words is normalized to unit length. Texts
    that share vocabulary therefore score higher under cosine similarity,
    which is enough to exercise the matching pipeline without a model.
    """

    def __init__(self, dimension: int = 64):
        super().__init__(dimension=dimension)
        self.provider = EmbeddingProvider.HASH.value
        self.model_name = f"hash-{dimension}"
        self.total_requests = 0

    def embed(self, text: str) -> List[float]:
        """Generate a deterministic embedding vector for text."""
        require_text(text)
        self.total_requests += 1
        return self._vectorize(text)

    def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingOutcome]:
        outcomes = []
        for index, text in enumerate(texts):
            try:
                vector = self.embed(text)
            except ValidationError as e:
                outcomes.append(EmbeddingOutcome(index=index, text=text, error=e))
            else:
                outcomes.append(EmbeddingOutcome(index=index, text=text, vector=vector))
        return outcomes

    def _vectorize(self, text: str) -> List[float]:
        vector = [0.0] * self._dimension
        tokens = _TOKEN_PATTERN.findall(text.lower()) or [text.strip()]

        for token in tokens:
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            # Opposite signs cancelled out; fall back to the whole-text bucket
            digest = hashlib.md5(text.strip().encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self._dimension] = 1.0
            return vector

        return [v / norm for v in vector]
