# ai_services/rate_limiter.py
"""
Rate Limiter - Sliding Window

Keeps embedding traffic under the deployment's requests-per-minute and
tokens-per-minute quotas.

Features:
- Dual limiting (requests per minute AND tokens per minute)
- Sliding window for accurate tracking
- Thread-safe operation; waiting happens outside the lock
- Bounded wait, after which the request is refused
"""

import time
import logging
from collections import deque
from threading import Lock
from typing import Callable, Dict, Any, Optional, Sequence, Tuple
from datetime import datetime

import tiktoken

from .exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


def count_tokens(texts: Sequence[str], model: str) -> int:
    """
    Count total tokens for a list of texts using tiktoken.
    """
    try:
        enc = tiktoken.encoding_for_model(model)
    except KeyError:
        # fallback to a default encoding if model not recognized
        enc = tiktoken.get_encoding("cl100k_base")
    return sum(len(enc.encode(t)) for t in texts)


class RateLimiter:
    """
    Sliding window rate limiter.

    Tracks requests and tokens spent over the last minute. Callers that would
    exceed either limit wait for capacity, up to ``max_wait_seconds``.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        tokens_per_minute: int = 90000,
        max_wait_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Max requests per minute
            tokens_per_minute: Max tokens per minute
            max_wait_seconds: Longest a caller may wait for capacity
            clock: Monotonic time source
            sleep: Sleep function used while waiting
        """
        if requests_per_minute <= 0 or tokens_per_minute <= 0:
            raise ValueError("Rate limits must be positive")
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self.max_wait_seconds = max_wait_seconds
        self._clock = clock
        self._sleep = sleep

        # Sliding window tracking: (timestamp, tokens)
        self._usage: deque = deque()

        self._lock = Lock()

        # Metrics
        self.total_requests = 0
        self.total_tokens = 0
        self.total_wait_time = 0.0
        self.rate_limit_hits = 0
        self.last_limit_hit: Optional[datetime] = None

        logger.info(f"Rate limiter initialized: {requests_per_minute} req/min, "
                    f"{tokens_per_minute} tokens/min")

    def try_acquire(self, estimated_tokens: int = 1000) -> Tuple[bool, float]:
        """
        Try to record a request without waiting.

        Returns:
            Tuple of (allowed, seconds until capacity frees up)
        """
        # Oversized requests are capped so they still fit an empty window
        estimated_tokens = min(estimated_tokens, self.tokens_per_minute)

        with self._lock:
            now = self._clock()
            self._clean_old_entries(now)

            if self._has_capacity(estimated_tokens):
                self._usage.append((now, estimated_tokens))
                self.total_requests += 1
                self.total_tokens += estimated_tokens
                return True, 0.0

            self.rate_limit_hits += 1
            self.last_limit_hit = datetime.now()
            return False, self._time_until_capacity(now, estimated_tokens)

    def wait_if_needed(self, estimated_tokens: int = 1000):
        """
        Block until the request is allowed.

        Raises:
            RateLimitExceeded: If capacity does not free up within max_wait_seconds
        """
        start_wait = self._clock()

        while True:
            allowed, retry_after = self.try_acquire(estimated_tokens)
            if allowed:
                waited = self._clock() - start_wait
                if waited > 0:
                    self.total_wait_time += waited
                    logger.info(f"Rate limit cleared after {waited:.1f}s")
                return

            waited = self._clock() - start_wait
            if waited + retry_after > self.max_wait_seconds:
                logger.warning(f"⏸️  Rate limit: {self._get_limit_reason(estimated_tokens)}")
                raise RateLimitExceeded(
                    f"Local rate limit would require waiting {retry_after:.1f}s "
                    f"(limit {self.max_wait_seconds:.1f}s)"
                )

            self._sleep(max(retry_after, 0.01))

    def _has_capacity(self, estimated_tokens: int) -> bool:
        """Check per-minute limits."""
        if len(self._usage) >= self.requests_per_minute:
            return False

        total_tokens = sum(tokens for _, tokens in self._usage)
        return total_tokens + estimated_tokens <= self.tokens_per_minute

    def _time_until_capacity(self, now: float, estimated_tokens: int) -> float:
        """Seconds until enough old entries leave the window."""
        running_tokens = sum(tokens for _, tokens in self._usage)
        running_requests = len(self._usage)

        for timestamp, tokens in self._usage:
            running_tokens -= tokens
            running_requests -= 1
            if (running_requests < self.requests_per_minute
                    and running_tokens + estimated_tokens <= self.tokens_per_minute):
                return max(0.0, timestamp + WINDOW_SECONDS - now)

        return WINDOW_SECONDS

    def _clean_old_entries(self, now: float):
        """Remove entries older than the window."""
        cutoff = now - WINDOW_SECONDS
        while self._usage and self._usage[0][0] <= cutoff:
            self._usage.popleft()

    def _get_limit_reason(self, estimated_tokens: int) -> str:
        """Get human-readable reason for rate limit."""
        reasons = []
        with self._lock:
            if len(self._usage) >= self.requests_per_minute:
                reasons.append(f"Request limit ({self.requests_per_minute}/min)")

            total_tokens = sum(tokens for _, tokens in self._usage)
            if total_tokens + estimated_tokens > self.tokens_per_minute:
                reasons.append(f"Token limit ({self.tokens_per_minute}/min)")

        return " | ".join(reasons) if reasons else "Rate limit exceeded"

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get rate limiter metrics.

        Returns:
            Dictionary with all metrics
        """
        with self._lock:
            self._clean_old_entries(self._clock())
            requests_last_minute = len(self._usage)
            tokens_last_minute = sum(tokens for _, tokens in self._usage)

        return {
            "limits": {
                "requests_per_minute": self.requests_per_minute,
                "tokens_per_minute": self.tokens_per_minute,
            },
            "current_usage": {
                "requests_last_minute": requests_last_minute,
                "tokens_last_minute": tokens_last_minute,
            },
            "all_time_metrics": {
                "total_requests": self.total_requests,
                "total_tokens": self.total_tokens,
                "rate_limit_hits": self.rate_limit_hits,
                "total_wait_time": round(self.total_wait_time, 2),
                "last_limit_hit": self.last_limit_hit.isoformat() if self.last_limit_hit else None
            },
        }

    def __repr__(self) -> str:
        """String representation."""
        return (f"RateLimiter(requests_per_minute={self.requests_per_minute}, "
                f"tokens_per_minute={self.tokens_per_minute})")
