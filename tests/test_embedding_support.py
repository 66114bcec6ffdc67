"""Tests for the offline hash client, the embedding cache and the rate limiter."""

import math

import pytest

from ai_services import (
    DeterministicHashEmbeddingClient,
    EmbeddingCache,
    RateLimitExceeded,
    RateLimiter,
    ValidationError,
)
from policies.similarity import cosine_similarity


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_hash_client_is_deterministic_and_unit_length():
    client = DeterministicHashEmbeddingClient(dimension=32)

    first = client.embed("Knee MRI after physical therapy")
    second = client.embed("Knee MRI after physical therapy")

    assert first == second
    assert len(first) == 32
    assert math.sqrt(sum(v * v for v in first)) == pytest.approx(1.0)


def test_hash_client_scores_shared_vocabulary_higher():
    client = DeterministicHashEmbeddingClient(dimension=256)
    query = client.embed("knee mri imaging")

    related = cosine_similarity(query, client.embed("knee mri imaging requirements"))
    unrelated = cosine_similarity(query, client.embed("cardiac rehabilitation phase two"))

    assert related > unrelated


def test_hash_client_batch_reports_empty_inputs():
    client = DeterministicHashEmbeddingClient(dimension=8)
    outcomes = client.embed_batch(["text", "", "!!!"])

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, ValidationError)
    assert any(outcomes[2].vector)


def test_hash_client_rejects_bad_dimension():
    with pytest.raises(ValidationError):
        DeterministicHashEmbeddingClient(dimension=0)


def test_cache_hit_miss_and_model_isolation():
    cache = EmbeddingCache(max_size=10)
    cache.set("model-a", "text", [1.0, 2.0])

    assert cache.get("model-a", "text") == [1.0, 2.0]
    assert cache.get("model-b", "text") is None
    assert cache.get_metrics()["hits"] == 1
    assert cache.get_metrics()["misses"] == 1


def test_cache_evicts_least_recently_used():
    cache = EmbeddingCache(max_size=2)
    cache.set("m", "a", [1.0])
    cache.set("m", "b", [2.0])
    cache.get("m", "a")
    cache.set("m", "c", [3.0])

    assert cache.get("m", "b") is None
    assert cache.get("m", "a") == [1.0]
    assert len(cache) == 2


def test_cache_entries_expire():
    cache = EmbeddingCache(ttl_seconds=0)
    cache.set("m", "a", [1.0])
    assert cache.get("m", "a") is None


def test_cached_vectors_are_copies():
    cache = EmbeddingCache()
    cache.set("m", "a", [1.0])
    cache.get("m", "a").append(99.0)
    assert cache.get("m", "a") == [1.0]


def test_rate_limiter_allows_within_limits():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=3, tokens_per_minute=100, clock=clock, sleep=clock.sleep)

    for _ in range(3):
        limiter.wait_if_needed(10)

    assert clock.sleeps == []
    assert limiter.get_metrics()["current_usage"]["requests_last_minute"] == 3


def test_rate_limiter_waits_for_the_window_to_slide():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=2, tokens_per_minute=1000, max_wait_seconds=120,
                          clock=clock, sleep=clock.sleep)

    limiter.wait_if_needed(10)
    limiter.wait_if_needed(10)
    limiter.wait_if_needed(10)

    assert clock.now == pytest.approx(60.0)
    assert limiter.rate_limit_hits == 1


def test_rate_limiter_counts_tokens():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=100, tokens_per_minute=50, clock=clock, sleep=clock.sleep)

    allowed, _ = limiter.try_acquire(40)
    assert allowed
    allowed, retry_after = limiter.try_acquire(20)
    assert not allowed
    assert retry_after == pytest.approx(60.0)


def test_rate_limiter_refuses_when_wait_is_too_long():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=1, tokens_per_minute=1000, max_wait_seconds=5,
                          clock=clock, sleep=clock.sleep)

    limiter.wait_if_needed(1)
    with pytest.raises(RateLimitExceeded):
        limiter.wait_if_needed(1)
    assert clock.sleeps == []
