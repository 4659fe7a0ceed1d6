import threading

import httpx
import pytest

from conftest import FakeEmbeddingProvider, make_client, run, vec
from knowledge.errors import (
    AuthFailedError,
    EmbeddingProviderError,
    EmbeddingTimeoutError,
    InvalidInputError,
    OperationCancelledError,
    ProviderUnavailableError,
    RateLimitedError,
)
from knowledge.services.embeddings import EmbeddingCircuitBreaker


def test_embed_preserves_order_across_batches(provider):
    texts = [f"text {i}" for i in range(5)]
    for i, text in enumerate(texts):
        provider.vectors[text] = vec(float(i + 1))
    client = make_client(provider, batch_size=2)

    vectors = run(client.embed(texts))

    assert [vector[0] for vector in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert sorted(len(call) for call in provider.calls) == [1, 2, 2]


def test_response_reassembled_by_index():
    def handler(request):
        data = [
            {"index": 1, "embedding": [0.0, 1.0]},
            {"index": 0, "embedding": [1.0, 0.0]},
        ]
        return httpx.Response(200, json={"data": data})

    client = make_client(FakeEmbeddingProvider(), transport=httpx.MockTransport(handler))
    assert run(client.embed(["first", "second"])) == [[1.0, 0.0], [0.0, 1.0]]


def test_sends_model_and_bearer_token(provider):
    client = make_client(provider)
    run(client.embed_one("hello"))
    assert provider.headers[0]["authorization"] == "Bearer test-key"


def test_transient_errors_are_retried(provider):
    provider.statuses = [429, 503]
    client = make_client(provider)

    vector = run(client.embed_one("retry me"))

    assert len(vector) == 64
    assert provider.call_count == 3


def test_retries_are_bounded(provider):
    provider.statuses = [429, 429, 429, 429]
    client = make_client(provider, max_attempts=3)

    with pytest.raises(RateLimitedError):
        run(client.embed(["still limited"]))
    assert provider.call_count == 3


def test_auth_failure_is_not_retried(provider):
    provider.statuses = [401]
    client = make_client(provider)

    with pytest.raises(AuthFailedError):
        run(client.embed(["secret"]))
    assert provider.call_count == 1


def test_invalid_input_is_not_retried(provider):
    provider.statuses = [400]
    client = make_client(provider)

    with pytest.raises(InvalidInputError):
        run(client.embed(["bad"]))
    assert provider.call_count == 1


def test_timeouts_become_typed_errors():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ReadTimeout("read timed out", request=request)

    client = make_client(FakeEmbeddingProvider(), transport=httpx.MockTransport(handler), max_attempts=2)
    with pytest.raises(EmbeddingTimeoutError):
        run(client.embed(["slow"]))
    assert len(attempts) == 2


def test_malformed_response_raises():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    client = make_client(FakeEmbeddingProvider(), transport=httpx.MockTransport(handler))
    with pytest.raises(EmbeddingProviderError):
        run(client.embed(["anything"]))


def test_non_json_body_is_a_provider_error():
    def handler(request):
        return httpx.Response(200, text="<html>Bad gateway</html>")

    client = make_client(FakeEmbeddingProvider(), transport=httpx.MockTransport(handler))
    with pytest.raises(EmbeddingProviderError):
        run(client.embed(["anything"]))


def test_failed_batch_reported_without_losing_others(provider):
    provider.fail_texts["broken"] = 503
    client = make_client(provider, batch_size=2, max_attempts=2)

    outcomes = run(client.embed_batches(["ok one", "ok two", "broken", "ok three"]))

    assert [outcome.start for outcome in outcomes] == [0, 2]
    assert outcomes[0].ok and len(outcomes[0].vectors) == 2
    assert not outcomes[1].ok
    assert isinstance(outcomes[1].error, ProviderUnavailableError)


def test_cancelled_before_any_call(provider):
    cancel = threading.Event()
    cancel.set()
    client = make_client(provider)

    with pytest.raises(OperationCancelledError):
        run(client.embed(["never sent"], cancel_event=cancel))
    assert provider.call_count == 0


def test_open_circuit_short_circuits(provider):
    provider.statuses = [503]
    breaker = EmbeddingCircuitBreaker(failure_threshold=1, cooldown_seconds=60)
    client = make_client(provider, max_attempts=1, circuit_breaker=breaker)

    with pytest.raises(ProviderUnavailableError):
        run(client.embed(["first"]))
    assert breaker.status()["open"] is True

    with pytest.raises(ProviderUnavailableError):
        run(client.embed(["second"]))
    assert provider.call_count == 1


def test_empty_input_makes_no_calls(provider):
    client = make_client(provider)
    assert run(client.embed([])) == []
    assert provider.call_count == 0
