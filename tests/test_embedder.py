"""Tests for embedding generation, validation and retry behaviour."""
import math

import pytest

from app.errors import (
    AuthenticationError,
    EmbeddingError,
    MalformedResponseError,
    RateLimitError,
    ServiceTimeoutError,
    ServiceUnavailableError,
    ValidationError,
)
from app.rag.embedder import (
    EmbeddingGenerator,
    cosine_similarity,
    normalize_embedding,
    validate_embedding,
)
from tests.fakes import DIM, FakeEmbeddingClient, SleepRecorder


def make_generator(client, sleep=None, **kwargs):
    return EmbeddingGenerator(
        client,
        dimensions=DIM,
        base_delay=0.5,
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_embed_returns_validated_vector(embedder, embedding_client):
    result = await embedder.embed("hello world")

    assert len(result.embedding) == DIM
    assert result.tokens == 2
    assert result.text == "hello world"
    assert embedding_client.calls == ["hello world"]


@pytest.mark.asyncio
async def test_empty_text_rejected_without_calling_api(embedder, embedding_client):
    with pytest.raises(ValidationError):
        await embedder.embed("   ")
    assert embedding_client.calls == []


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff():
    client = FakeEmbeddingClient(
        failures=[RateLimitError("429"), ServiceUnavailableError("503"), None]
    )
    sleep = SleepRecorder()
    generator = make_generator(client, sleep=sleep)

    result = await generator.embed("retry me")

    assert len(result.embedding) == DIM
    assert len(client.calls) == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_embedding_error():
    client = FakeEmbeddingClient(failures=[ServiceTimeoutError("timeout")] * 10)
    sleep = SleepRecorder()
    generator = make_generator(client, sleep=sleep, max_retries=3)

    with pytest.raises(EmbeddingError) as exc_info:
        await generator.embed("never works")

    assert exc_info.value.attempts == 4
    assert isinstance(exc_info.value.original_error, ServiceTimeoutError)
    assert len(client.calls) == 4
    assert sleep.delays == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    client = FakeEmbeddingClient(failures=[AuthenticationError("bad key")])
    sleep = SleepRecorder()
    generator = make_generator(client, sleep=sleep)

    with pytest.raises(EmbeddingError) as exc_info:
        await generator.embed("text")

    assert exc_info.value.attempts == 1
    assert len(client.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_wrong_dimension_is_rejected_without_retry():
    client = FakeEmbeddingClient(vector_fn=lambda text: [0.1, 0.2, 0.3])
    sleep = SleepRecorder()
    generator = make_generator(client, sleep=sleep)

    with pytest.raises(EmbeddingError) as exc_info:
        await generator.embed("text")

    assert isinstance(exc_info.value.original_error, MalformedResponseError)
    assert len(client.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_non_finite_values_are_rejected():
    client = FakeEmbeddingClient(vector_fn=lambda text: [math.nan] * DIM)
    generator = make_generator(client)

    with pytest.raises(EmbeddingError):
        await generator.embed("text")


@pytest.mark.asyncio
async def test_long_input_is_truncated():
    client = FakeEmbeddingClient()
    generator = make_generator(client, max_input_length=10)

    result = await generator.embed("abcdefghijklmnopqrstuvwxyz")

    assert client.calls == ["abcdefghij"]
    assert result.text == "abcdefghij"


@pytest.mark.asyncio
async def test_batch_splits_requests_and_keeps_order():
    client = FakeEmbeddingClient()
    sleep = SleepRecorder()
    generator = make_generator(client, sleep=sleep, batch_size=2, batch_delay=0.25)
    texts = [f"text number {i}" for i in range(5)]

    result = await generator.embed_batch(texts)

    assert [len(batch) for batch in client.calls] == [2, 2, 1]
    assert [e.index for e in result.embeddings] == [0, 1, 2, 3, 4]
    assert [e.text for e in result.embeddings] == texts
    assert sleep.delays == [0.25, 0.25]
    assert result.total_tokens == 15
    assert result.cost > 0


@pytest.mark.asyncio
async def test_batch_reorders_by_reported_index():
    class ReversedClient(FakeEmbeddingClient):
        async def embeddings(self, texts, model=None):
            response = await super().embeddings(texts, model)
            response["data"].reverse()
            return response

    client = ReversedClient()
    generator = make_generator(client)
    texts = ["alpha", "beta", "gamma"]

    result = await generator.embed_batch(texts)

    for item, text in zip(result.embeddings, texts):
        assert item.embedding == client.vector_fn(text)


@pytest.mark.asyncio
async def test_batch_count_mismatch_fails():
    class ShortClient(FakeEmbeddingClient):
        async def embeddings(self, texts, model=None):
            response = await super().embeddings(texts, model)
            response["data"] = response["data"][:1]
            return response

    generator = make_generator(ShortClient())

    with pytest.raises(EmbeddingError):
        await generator.embed_batch(["one", "two"])


@pytest.mark.asyncio
async def test_empty_batch_makes_no_calls(embedder, embedding_client):
    result = await embedder.embed_batch([])
    assert result.embeddings == []
    assert embedding_client.calls == []


def test_validate_embedding():
    assert validate_embedding([0.0] * DIM, DIM)
    assert validate_embedding([1] * DIM, DIM)
    assert not validate_embedding([0.0] * (DIM - 1), DIM)
    assert not validate_embedding(None, DIM)
    assert not validate_embedding("not a vector", DIM)
    assert not validate_embedding([True] * DIM, DIM)
    assert not validate_embedding([math.inf] + [0.0] * (DIM - 1), DIM)
    assert not validate_embedding(["0.1"] * DIM, DIM)


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 0]) == 0.0

    with pytest.raises(ValueError):
        cosine_similarity([1, 0], [1, 0, 0])


def test_normalize_embedding():
    assert normalize_embedding([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert normalize_embedding([0.0, 0.0]) == [0.0, 0.0]


def test_generator_stats(embedder):
    stats = embedder.get_stats()
    assert stats["dimensions"] == DIM
    assert stats["max_retries"] == 3


class ScalarItemsClient:
    """Returns a data list whose items are not objects."""

    def __init__(self):
        self.calls = []

    async def embeddings(self, texts, model=None):
        self.calls.append(texts)
        count = 1 if isinstance(texts, str) else len(texts)
        return {"data": ["oops"] * count, "usage": {"total_tokens": 1}}


@pytest.mark.asyncio
async def test_non_object_item_is_rejected_without_retry():
    client = ScalarItemsClient()
    sleep = SleepRecorder()
    generator = make_generator(client, sleep=sleep)

    with pytest.raises(EmbeddingError) as exc_info:
        await generator.embed("text")

    assert isinstance(exc_info.value.original_error, MalformedResponseError)
    assert len(client.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_batch_with_non_object_items_fails():
    generator = make_generator(ScalarItemsClient())

    with pytest.raises(EmbeddingError) as exc_info:
        await generator.embed_batch(["one", "two"])

    assert isinstance(exc_info.value.original_error, MalformedResponseError)
