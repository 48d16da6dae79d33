"""Tests for the HTTP API."""
import time

import httpx
import pytest

from app import config, db, main
from app.errors import AuthenticationError, RateLimitError
from app.rag.embedder import EmbeddingGenerator
from app.sync.webhook import generate_signature
from app.sync.wordpress import WordPressClient
from tests.fakes import DIM, FakeEmbeddingClient, FakeLLM, SleepRecorder

PORTFOLIO_SECRET = "portfolio-secret"
WEBHOOK_SECRET = "webhook-secret"

ITEMS = [
    {"path": "skills.md#backend", "heading": "Backend", "content": "Python projects: APIs with Quart and FAISS search services."},
    {"path": "skills.md#frontend", "heading": "Frontend", "content": "Python projects rarely need it, but I also write React and TypeScript."},
]

POST = {
    "id": 11,
    "slug": "faiss-notes",
    "status": "publish",
    "title": {"rendered": "FAISS notes"},
    "content": {"rendered": "<h2>Index types</h2><p>Flat inner product indexes are exact and simple to run.</p>"},
    "excerpt": {"rendered": "<p>What I learned.</p>"},
}


def wordpress_stub(request):
    return httpx.Response(404)


@pytest.fixture
def llm():
    return FakeLLM(reply="Sam builds Python APIs (skills.md).", tokens=31)


@pytest.fixture
def install_services(monkeypatch, vector_store, embedder, llm):
    monkeypatch.setattr(config, "PORTFOLIO_SECRET", PORTFOLIO_SECRET)
    monkeypatch.setattr(config, "WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "SITE_URL", "https://example.com")

    def install(rate_limit_seconds=0, llm_client=None, embedder_override=None):
        services = main.build_services(
            llm_client=llm_client or llm,
            wordpress_client=WordPressClient(
                api_url="https://blog.test/wp-json/wp/v2",
                transport=httpx.MockTransport(wordpress_stub),
            ),
            vector_store=vector_store,
            embedder=embedder_override or embedder,
            rate_limit_seconds=rate_limit_seconds,
        )
        services.pipeline.chunk_delay = 0
        monkeypatch.setattr(main, "services", services)
        return services

    return install


@pytest.fixture
def client(install_services):
    install_services()
    return main.app.test_client()


def signed_payload(action="published", wp_post_id=11, **fields):
    timestamp = int(time.time())
    return {
        "action": action,
        "wp_post_id": wp_post_id,
        "timestamp": timestamp,
        "signature": generate_signature(wp_post_id, timestamp, WEBHOOK_SECRET),
        **fields,
    }


async def seed(client, items=ITEMS, **extra):
    return await client.post(
        "/api/rag",
        json={"action": "seed", "items": items, **extra},
        headers={"x-portfolio-secret": PORTFOLIO_SECRET},
    )


# /api/rag


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"x-portfolio-secret": "wrong"}])
async def test_rag_requires_secret(client, headers):
    response = await client.post("/api/rag", json={"action": "list"}, headers=headers)

    assert response.status_code == 401
    assert (await response.get_json())["success"] is False


@pytest.mark.asyncio
async def test_rag_rejects_everything_when_secret_unset(client, monkeypatch):
    monkeypatch.setattr(config, "PORTFOLIO_SECRET", "")

    response = await client.post(
        "/api/rag", json={"action": "list"}, headers={"x-portfolio-secret": ""}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_seed_list_and_clear(client):
    response = await seed(client)
    data = await response.get_json()

    assert response.status_code == 200
    assert data["processed"] == 2
    assert data["unchanged"] == 0

    again = await (await seed(client)).get_json()
    assert again["unchanged"] == 2

    forced = await (await seed(client, force=True)).get_json()
    assert forced["processed"] == 2

    listing = await client.post(
        "/api/rag", json={"action": "list"}, headers={"x-portfolio-secret": PORTFOLIO_SECRET}
    )
    listed = await listing.get_json()
    assert listed["count"] == 2
    assert {d["id"] for d in listed["documents"]} == {"skills.md#backend", "skills.md#frontend"}

    cleared = await client.post(
        "/api/rag", json={"action": "clear"}, headers={"x-portfolio-secret": PORTFOLIO_SECRET}
    )
    assert (await cleared.get_json()) == {"success": True, "deleted": 2}
    assert db.list_documents("portfolio") == []


@pytest.mark.asyncio
async def test_seed_validation_errors(client):
    missing = await seed(client, items=[])
    assert missing.status_code == 400

    invalid = await seed(client, items=[{"path": "a.md"}])
    assert invalid.status_code == 400
    assert (await invalid.get_json())["error"] == "Each item needs a path and content"

    unknown = await client.post(
        "/api/rag", json={"action": "drop"}, headers={"x-portfolio-secret": PORTFOLIO_SECRET}
    )
    assert unknown.status_code == 400


# /api/chat


@pytest.mark.asyncio
async def test_chat_answers_with_citations(client, llm):
    await seed(client)

    response = await client.post("/api/chat", json={"question": "What Python projects do you build?"})
    data = await response.get_json()

    assert response.status_code == 200
    assert data["answer"] == "Sam builds Python APIs (skills.md)."
    assert data["refusal"] is False
    assert data["citations"]
    assert data["citations"][0]["url"].startswith("https://example.com/portfolio/skills.md#")
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_chat_refuses_denied_topics(client, llm, embedding_client):
    response = await client.post("/api/chat", json={"question": "What is your salary?"})
    data = await response.get_json()

    assert response.status_code == 200
    assert data["refusal"] is True
    assert data["answer"] is None
    assert data["message"]
    assert llm.calls == []
    assert embedding_client.calls == []


@pytest.mark.asyncio
async def test_chat_refuses_when_nothing_matches(client, llm):
    response = await client.post("/api/chat", json={"question": "Tell me about your work"})
    data = await response.get_json()

    assert data["refusal"] is True
    assert llm.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"question": "hi"}, {"question": "x" * 501}])
async def test_chat_rejects_invalid_questions(client, body):
    response = await client.post("/api/chat", json=body)

    assert response.status_code == 400
    assert "error" in await response.get_json()


@pytest.mark.asyncio
async def test_chat_is_rate_limited_per_client(install_services):
    install_services(rate_limit_seconds=60)
    client = main.app.test_client()

    first = await client.post(
        "/api/chat", json={"question": "What is your salary?"}, headers={"X-Forwarded-For": "9.9.9.9"}
    )
    second = await client.post(
        "/api/chat", json={"question": "What is your salary?"}, headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"}
    )
    other = await client.post(
        "/api/chat", json={"question": "What is your salary?"}, headers={"X-Forwarded-For": "8.8.8.8"}
    )

    assert first.status_code == 200
    assert second.status_code == 429
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_chat_transient_failure_returns_busy_message(install_services):
    failing = EmbeddingGenerator(
        FakeEmbeddingClient(failures=[RateLimitError("429 from upstream")] * 5),
        dimensions=DIM,
        max_retries=1,
        sleep=SleepRecorder(),
    )
    install_services(embedder_override=failing)
    client = main.app.test_client()

    response = await client.post("/api/chat", json={"question": "What Python projects do you build?"})
    data = await response.get_json()

    assert response.status_code == 503
    assert "429 from upstream" not in data["error"]


@pytest.mark.asyncio
async def test_chat_permanent_failure_hides_details(install_services):
    install_services(llm_client=FakeLLM(error=AuthenticationError("key sk-live-123 rejected")))
    client = main.app.test_client()
    await seed(client)

    response = await client.post("/api/chat", json={"question": "What Python projects do you build?"})
    data = await response.get_json()

    assert response.status_code == 502
    assert "sk-live" not in data["error"]


# /api/blog-sync and /api/blog-content


@pytest.mark.asyncio
async def test_blog_sync_publish_then_content(client):
    response = await client.post("/api/blog-sync", json=signed_payload(post_data=POST))
    data = await response.get_json()

    assert response.status_code == 200
    assert data["success"] is True
    assert data["action"] == "published"
    assert data["wp_post_id"] == 11
    assert data["chunks_processed"] == 1

    content = await client.get("/api/blog-content/faiss-notes")
    body = await content.get_json()

    assert content.status_code == 200
    assert body["title"] == "FAISS notes"
    assert body["sections"][0]["id"] == "index-types"
    assert '<h2 id="index-types">' in body["content_with_anchors"]
    assert body["reading_time"] == 1


@pytest.mark.asyncio
async def test_blog_sync_delete_hides_content(client):
    await client.post("/api/blog-sync", json=signed_payload(post_data=POST))

    response = await client.post("/api/blog-sync", json=signed_payload(action="trashed"))

    assert (await response.get_json())["message"] == "Post marked as deleted"
    assert (await client.get("/api/blog-content/faiss-notes")).status_code == 404


@pytest.mark.asyncio
async def test_blog_sync_test_action(client):
    response = await client.post("/api/blog-sync", json=signed_payload(action="test"))
    data = await response.get_json()

    assert response.status_code == 200
    assert data["message"] == "Test webhook received successfully"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_blog_sync_rejects_bad_signature(client):
    payload = signed_payload()
    payload["signature"] = "f" * 64

    response = await client.post("/api/blog-sync", json=payload)

    assert response.status_code == 401
    assert db.list_documents() == []


@pytest.mark.asyncio
async def test_blog_sync_rejects_stale_payload(client):
    timestamp = int(time.time()) - config.WEBHOOK_MAX_AGE - 60
    payload = {
        "action": "published",
        "wp_post_id": 11,
        "timestamp": timestamp,
        "signature": generate_signature(11, timestamp, WEBHOOK_SECRET),
        "post_data": POST,
    }

    response = await client.post("/api/blog-sync", json=payload)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_blog_sync_missing_fields(client):
    response = await client.post("/api/blog-sync", json={"action": "published"})

    assert response.status_code == 400
    assert (await response.get_json())["error"] == "Missing required fields"


@pytest.mark.asyncio
async def test_blog_sync_missing_post_is_upstream_error(client):
    response = await client.post("/api/blog-sync", json=signed_payload())

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_blog_content_unknown_slug(client):
    response = await client.get("/api/blog-content/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_blog_content_ignores_portfolio_documents(client):
    await seed(client, items=[{"path": "bio.md", "content": "Based in Lisbon, writing Python services since 2012."}])
    response = await client.get("/api/blog-content/bio.md")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_blog_search_content_aggregates_recent_posts(client):
    newer = {**POST, "id": 12, "slug": "quart-tips", "title": {"rendered": "Quart <em>tips</em>"},
             "modified": "2024-06-01T08:00:00"}
    await client.post("/api/blog-sync", json=signed_payload(post_data={**POST, "modified": "2024-05-01T10:00:00"}))
    await client.post("/api/blog-sync", json=signed_payload(wp_post_id=12, post_data=newer))
    await seed(client, items=[{"path": "bio.md", "content": "Based in Lisbon, writing Python services since 2012."}])

    response = await client.get("/api/blog-search-content")
    data = await response.get_json()

    assert response.status_code == 200
    assert data["postCount"] == 2
    assert data["posts"] == [
        {"slug": "quart-tips", "title": "Quart tips", "date": "2024-06-01T08:00:00"},
        {"slug": "faiss-notes", "title": "FAISS notes", "date": "2024-05-01T10:00:00"},
    ]
    assert '1. "Quart tips"' in data["content"]
    assert "Published: 2024-05-01" in data["content"]
    assert "Summary: What I learned." in data["content"]
    assert "Content Preview: Index types Flat inner product indexes" in data["content"]
    assert "Lisbon" not in data["content"]


@pytest.mark.asyncio
async def test_blog_search_content_skips_deleted_posts(client):
    await client.post("/api/blog-sync", json=signed_payload(post_data=POST))
    await client.post("/api/blog-sync", json=signed_payload(action="trashed"))

    data = await (await client.get("/api/blog-search-content")).get_json()

    assert data["postCount"] == 0
    assert data["posts"] == []


# /api/ai-generate


@pytest.mark.asyncio
async def test_ai_generate(client, llm):
    response = await client.post(
        "/api/ai-generate", json={"content": "Some post text.", "type": "overview"}
    )
    data = await response.get_json()

    assert response.status_code == 200
    assert data == {
        "success": True,
        "content": "Sam builds Python APIs (skills.md).",
        "type": "overview",
        "tokens_used": 31,
    }
    assert llm.calls[0]["max_tokens"] == 600


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"type": "overview"},
        {"content": "text"},
        {"content": "text", "type": "poem"},
        {"content": "text", "type": "custom_question"},
    ],
)
async def test_ai_generate_validation(client, body):
    response = await client.post("/api/ai-generate", json=body)
    assert response.status_code == 400


# Health


@pytest.mark.asyncio
async def test_health(client):
    live = await client.get("/health/live")
    assert (await live.get_json()) == {"status": "alive"}

    ready = await client.get("/health/ready")
    data = await ready.get_json()
    assert ready.status_code == 200
    assert data["index"] is True
    assert data["database"] is True


@pytest.mark.asyncio
async def test_unknown_route(client):
    response = await client.get("/api/missing")
    assert response.status_code == 404
