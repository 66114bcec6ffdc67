# ai_services/cache.py
"""Embedding cache to avoid re-embedding repeated query texts."""

import hashlib
import time
import logging
from collections import OrderedDict
from threading import Lock
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    LRU cache for embedding vectors.
    Avoids repeated identical requests to the backend.
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: int = 3600):
        """
        Initialize cache.

        Args:
            max_size: Maximum number of cached vectors
            ttl_seconds: Time-to-live for cached items (default 1 hour)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, Tuple[Tuple[float, ...], float]]" = OrderedDict()
        self._lock = Lock()

        # Metrics
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _create_key(model: str, text: str) -> str:
        """Create cache key from model name and text."""
        return hashlib.sha256(f"{model}\x00{text}".encode("utf-8")).hexdigest()

    def get(self, model: str, text: str) -> Optional[List[float]]:
        """Get cached vector if available and fresh."""
        key = self._create_key(model, text)
        now = time.monotonic()

        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                vector, stored_at = cached
                if now - stored_at < self.ttl_seconds:
                    self._entries.move_to_end(key)
                    self.hits += 1
                    return list(vector)
                # Expired
                del self._entries[key]
            self.misses += 1
            return None

    def set(self, model: str, text: str, vector: List[float]):
        """Store a vector in the cache."""
        key = self._create_key(model, text)

        with self._lock:
            self._entries[key] = (tuple(vector), time.monotonic())
            self._entries.move_to_end(key)
            # Evict least recently used if full
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self):
        """Clear all cached items."""
        with self._lock:
            self._entries.clear()
        logger.info("Embedding cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def get_metrics(self) -> Dict:
        """Get cache metrics."""
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / max(total, 1),
            "size": len(self._entries),
            "max_size": self.max_size
        }
