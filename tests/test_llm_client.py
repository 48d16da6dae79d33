"""Tests for the OpenAI-compatible client's error classification."""
import json

import httpx
import pytest

from app.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    PermanentError,
    RateLimitError,
    RetryableError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)
from app.llm_client import OpenAIClient


def make_client(handler, api_key="sk-test"):
    return OpenAIClient(
        base_url="https://llm.test/v1",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


def respond(status_code, body=None, headers=None):
    def handler(request):
        return httpx.Response(status_code, json=body, headers=headers)
    return handler


@pytest.mark.asyncio
async def test_chat_returns_content_and_usage():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{"message": {"content": "  An answer.  "}}],
            "usage": {"total_tokens": 57},
        })

    client = make_client(handler)
    result = await client.chat(
        [{"role": "user", "content": "hi"}], model="gpt-test", temperature=0.2, max_tokens=300
    )

    assert result == {"content": "An answer.", "tokens": 57}
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["payload"]["model"] == "gpt-test"
    assert seen["payload"]["temperature"] == 0.2
    assert seen["payload"]["max_tokens"] == 300


@pytest.mark.asyncio
async def test_chat_with_no_choices_returns_empty_content():
    client = make_client(respond(200, {"choices": [], "usage": {}}))
    result = await client.chat([{"role": "user", "content": "hi"}])
    assert result == {"content": "", "tokens": 0}


@pytest.mark.asyncio
async def test_embeddings_request_payload():
    seen = {}

    def handler(request):
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1]}]})

    client = make_client(handler)
    data = await client.embeddings(["one"], model="embed-test")

    assert data["data"][0]["embedding"] == [0.1]
    assert seen["payload"] == {"model": "embed-test", "input": ["one"], "encoding_format": "float"}


@pytest.mark.asyncio
async def test_embeddings_missing_data_is_malformed():
    client = make_client(respond(200, {"object": "list"}))
    with pytest.raises(MalformedResponseError):
        await client.embeddings("text")


@pytest.mark.asyncio
async def test_rate_limit_is_retryable_with_retry_after():
    client = make_client(respond(429, {"error": "slow down"}, {"retry-after": "7"}))

    with pytest.raises(RateLimitError) as exc_info:
        await client.embeddings("text")

    assert isinstance(exc_info.value, RetryableError)
    assert exc_info.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_server_error_is_retryable():
    client = make_client(respond(502, {"error": "bad gateway"}))
    with pytest.raises(ServiceUnavailableError):
        await client.chat([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_failures_are_permanent(status):
    client = make_client(respond(status, {"error": "nope"}))
    with pytest.raises(AuthenticationError) as exc_info:
        await client.embeddings("text")
    assert isinstance(exc_info.value, PermanentError)


@pytest.mark.asyncio
async def test_other_client_errors_are_permanent():
    client = make_client(respond(400, {"error": "bad request"}))
    with pytest.raises(PermanentError) as exc_info:
        await client.embeddings("text")
    assert not isinstance(exc_info.value, AuthenticationError)


@pytest.mark.asyncio
async def test_invalid_json_is_malformed():
    client = make_client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(MalformedResponseError):
        await client.chat([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_timeout_is_retryable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler)
    with pytest.raises(ServiceTimeoutError):
        await client.embeddings("text")


@pytest.mark.asyncio
async def test_connection_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    with pytest.raises(ServiceTimeoutError):
        await client.embeddings("text")


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = make_client(handler, api_key="")
    with pytest.raises(ConfigurationError):
        await client.embeddings("text")
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [["not", "an", "object"], "just text", 42])
async def test_non_object_body_is_malformed(body):
    client = make_client(respond(200, body))

    with pytest.raises(MalformedResponseError):
        await client.embeddings("hello")
    with pytest.raises(MalformedResponseError):
        await client.chat([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_embedding_items_must_be_objects():
    client = make_client(respond(200, {"data": ["not an object"], "usage": {}}))

    with pytest.raises(MalformedResponseError):
        await client.embeddings("hello")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "choice",
    ["plain string", {"message": "not an object"}, {"message": {"content": ["a", "b"]}}],
)
async def test_malformed_chat_choice(choice):
    client = make_client(respond(200, {"choices": [choice], "usage": {}}))

    with pytest.raises(MalformedResponseError):
        await client.chat([{"role": "user", "content": "hi"}])
