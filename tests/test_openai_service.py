from types import SimpleNamespace

import httpx
import openai
import pytest
from tenacity import wait_none

from ai_services import (
    AuthenticationError,
    AzureOpenAIEmbeddingClient,
    BackendError,
    BackendUnavailable,
    ConfigError,
    InvalidResponse,
    RateLimitExceeded,
    ValidationError,
)

URL = "https://example.openai.azure.com/openai/deployments/embed/embeddings"


def _request():
    return httpx.Request("POST", URL)


def _status_error(cls, status):
    return cls(f"HTTP {status}", response=httpx.Response(status, request=_request()), body=None)


def _response(vectors):
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)],
        usage=SimpleNamespace(total_tokens=len(vectors) * 3),
    )


class StubEmbeddings:
    """Stands in for ``client.embeddings``; replays scripted results."""

    def __init__(self, script=None, handler=None):
        self.script = list(script or [])
        self.handler = handler
        self.calls = []

    def create(self, model, input, **kwargs):
        self.calls.append(list(input))
        if self.script:
            step = self.script.pop(0)
            if isinstance(step, Exception):
                raise step
            return step
        return self.handler(list(input))


def make_client(stub, **kwargs):
    kwargs.setdefault("retry_wait", wait_none())
    return AzureOpenAIEmbeddingClient(
        api_key="key",
        endpoint="https://example.openai.azure.com",
        deployment_name="embed",
        client=SimpleNamespace(embeddings=stub),
        **kwargs
    )


def simple_vectors(inputs):
    return _response([[float(len(text)), 1.0] for text in inputs])


@pytest.mark.parametrize("missing", ["api_key", "endpoint", "deployment_name"])
def test_missing_credential_fails_at_construction(missing):
    values = {"api_key": "key", "endpoint": "https://example", "deployment_name": "embed"}
    values[missing] = "  " if missing == "endpoint" else ""

    with pytest.raises(ConfigError, match=missing):
        AzureOpenAIEmbeddingClient(**values)


def test_embed_returns_vector_and_fixes_dimension():
    stub = StubEmbeddings(handler=simple_vectors)
    client = make_client(stub)

    assert client.dimension is None
    assert client.embed("abc") == [3.0, 1.0]
    assert client.dimension == 2
    assert stub.calls == [["abc"]]


def test_empty_text_is_rejected_without_a_request():
    stub = StubEmbeddings(handler=simple_vectors)
    client = make_client(stub)

    with pytest.raises(ValidationError):
        client.embed("  ")
    assert stub.calls == []


def test_transient_failure_is_retried():
    stub = StubEmbeddings(script=[openai.APIConnectionError(request=_request())], handler=simple_vectors)
    client = make_client(stub)

    assert client.embed("abc") == [3.0, 1.0]
    assert len(stub.calls) == 2
    assert client.get_metrics()["retried_requests"] == 1


def test_retries_are_bounded_to_two():
    stub = StubEmbeddings(script=[openai.APITimeoutError(request=_request()) for _ in range(5)])
    client = make_client(stub)

    with pytest.raises(BackendUnavailable):
        client.embed("abc")
    assert len(stub.calls) == 3


def test_rate_limit_maps_to_rate_limit_exceeded():
    stub = StubEmbeddings(script=[_status_error(openai.RateLimitError, 429) for _ in range(3)])
    client = make_client(stub)

    with pytest.raises(RateLimitExceeded):
        client.embed("abc")
    assert len(stub.calls) == 3


def test_authentication_failure_is_not_retried():
    stub = StubEmbeddings(script=[_status_error(openai.AuthenticationError, 401)])
    client = make_client(stub)

    with pytest.raises(AuthenticationError):
        client.embed("abc")
    assert len(stub.calls) == 1


def test_wrong_vector_length_is_invalid_response():
    stub = StubEmbeddings(script=[_response([[1.0, 0.0]]), _response([[1.0, 0.0, 0.0]])])
    client = make_client(stub, enable_caching=False)

    client.embed("first")
    with pytest.raises(InvalidResponse):
        client.embed("second")


def test_missing_vectors_are_invalid_response():
    stub = StubEmbeddings(script=[_response([])])
    client = make_client(stub)

    with pytest.raises(InvalidResponse):
        client.embed("a")


def test_batch_preserves_order_across_chunks():
    stub = StubEmbeddings(handler=simple_vectors)
    client = make_client(stub, batch_size=2)

    outcomes = client.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"])

    assert [o.vector[0] for o in outcomes] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert [o.index for o in outcomes] == [0, 1, 2, 3, 4]
    assert stub.calls == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]


def test_batch_reports_exactly_which_inputs_failed():
    def handler(inputs):
        if any("poison" in text for text in inputs):
            raise _status_error(openai.BadRequestError, 400)
        return simple_vectors(inputs)

    stub = StubEmbeddings(handler=handler)
    client = make_client(stub)

    outcomes = client.embed_batch(["ok", "poison pill", "", "fine"])

    assert [o.ok for o in outcomes] == [True, False, False, True]
    assert isinstance(outcomes[1].error, BackendError)
    assert isinstance(outcomes[2].error, ValidationError)
    assert outcomes[3].vector == [4.0, 1.0]
    # one failed batch, then one request per non-empty input
    assert stub.calls == [["ok", "poison pill", "fine"], ["ok"], ["poison pill"], ["fine"]]


def test_batch_auth_failure_marks_chunk_without_splitting():
    stub = StubEmbeddings(script=[_status_error(openai.AuthenticationError, 401)])
    client = make_client(stub)

    outcomes = client.embed_batch(["a", "b", "c"])

    assert all(isinstance(o.error, AuthenticationError) for o in outcomes)
    assert len(stub.calls) == 1


def test_query_embeddings_are_cached():
    stub = StubEmbeddings(handler=simple_vectors)
    client = make_client(stub)

    assert client.embed("same text") == client.embed("same text")
    assert len(stub.calls) == 1
    assert client.get_metrics()["cache_metrics"]["hits"] == 1


def test_batch_calls_bypass_the_cache():
    stub = StubEmbeddings(handler=simple_vectors)
    client = make_client(stub)

    client.embed_batch(["x"])
    client.embed_batch(["x"])
    assert len(stub.calls) == 2


def test_outage_costs_one_retried_request_per_batch():
    def down(inputs):
        raise openai.APIConnectionError(request=_request())

    stub = StubEmbeddings(handler=down)
    client = make_client(stub, batch_size=16)

    outcomes = client.embed_batch([f"policy {n}" for n in range(40)])

    assert all(isinstance(o.error, BackendUnavailable) for o in outcomes)
    # first attempt plus two retries, then the rest of the batch is not sent
    assert len(stub.calls) == 3
    assert client.get_metrics()["retried_requests"] == 2


def test_rate_limited_batch_is_not_split():
    stub = StubEmbeddings(script=[_status_error(openai.RateLimitError, 429) for _ in range(3)])
    client = make_client(stub, batch_size=4)

    outcomes = client.embed_batch(["a", "b", "c", "d"])

    assert all(isinstance(o.error, RateLimitExceeded) for o in outcomes)
    assert len(stub.calls) == 3


def test_outage_while_splitting_stops_the_batch():
    def handler(inputs):
        if len(inputs) > 1:
            raise _status_error(openai.BadRequestError, 400)
        if inputs == ["first"]:
            return simple_vectors(inputs)
        raise openai.APITimeoutError(request=_request())

    stub = StubEmbeddings(handler=handler)
    client = make_client(stub, batch_size=3)

    outcomes = client.embed_batch(["first", "second", "third", "fourth"])

    assert outcomes[0].vector == [5.0, 1.0]
    assert all(isinstance(o.error, BackendUnavailable) for o in outcomes[1:])
    # failed batch, "first" alone, then three attempts for "second"
    assert stub.calls == [["first", "second", "third"], ["first"]] + [["second"]] * 3
