"""Main Quart application for the portfolio and blog assistant."""
import hmac
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional
from quart import Quart, jsonify, request
from pydantic import ValidationError as PayloadValidationError
import structlog

from app import config, db
from app.content.generator import (
    ContentGenerator,
    build_blog_search_context,
    parse_content_mode,
)
from app.errors import (
    ConfigurationError,
    EmbeddingError,
    RAGServiceError,
    RetryableError,
    ValidationError,
    WebhookVerificationError,
)
from app.llm_client import OpenAIClient
from app.log import configure_logging
from app.rag.cleaner import strip_html
from app.rag.citations import CitationBuilder
from app.rag.embedder import EmbeddingGenerator
from app.rag.ingest import BLOG_COLLECTION, PORTFOLIO_COLLECTION, IngestPipeline
from app.rag.orchestrator import RAGOrchestrator
from app.rag.retriever import Retriever
from app.rag.sections import process_blog_content
from app.rag.store_faiss import FAISSVectorStore, get_vector_store
from app.ratelimit import RateLimiter
from app.sync.handler import BlogSyncHandler
from app.sync.webhook import WebhookPayload, verify_signature
from app.sync.wordpress import WordPressClient

configure_logging()

logger = structlog.get_logger()

app = Quart(__name__)


@dataclass
class Services:
    """Explicitly constructed collaborators shared by the request handlers."""

    vector_store: FAISSVectorStore
    pipeline: IngestPipeline
    orchestrator: RAGOrchestrator
    sync_handler: BlogSyncHandler
    content_generator: ContentGenerator
    chat_limiter: RateLimiter
    sync_limiter: RateLimiter
    content_limiter: RateLimiter


def build_services(
    llm_client=None,
    wordpress_client: Optional[WordPressClient] = None,
    vector_store: Optional[FAISSVectorStore] = None,
    embedder: Optional[EmbeddingGenerator] = None,
    rate_limit_seconds: float = None,
) -> Services:
    """Wire the service graph. Every argument can be replaced with a fake in tests."""
    llm_client = llm_client or OpenAIClient()

    vector_store = vector_store or get_vector_store()

    embedder = embedder or EmbeddingGenerator(llm_client)
    pipeline = IngestPipeline(embedder, vector_store)

    return Services(
        vector_store=vector_store,
        pipeline=pipeline,
        orchestrator=RAGOrchestrator(
            Retriever(embedder, vector_store, collection=PORTFOLIO_COLLECTION),
            llm_client,
            CitationBuilder(),
        ),
        sync_handler=BlogSyncHandler(pipeline, wordpress_client or WordPressClient()),
        content_generator=ContentGenerator(llm_client),
        chat_limiter=RateLimiter(min_interval=rate_limit_seconds),
        sync_limiter=RateLimiter(min_interval=rate_limit_seconds),
        content_limiter=RateLimiter(min_interval=rate_limit_seconds),
    )


services: Optional[Services] = None


def get_services() -> Services:
    """Get or build the process-wide service graph."""
    global services
    if services is None:
        db.init_database()
        services = build_services()
    return services


@app.before_serving
async def startup():
    get_services()
    logger.info("app_started", vector_count=services.vector_store.get_stats()["vector_count"])


def _client_id() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def _error_response(error: RAGServiceError, event: str):
    """Map a service error to a status code and a fixed user-facing message."""
    logger.error(event, **error.to_dict())

    if isinstance(error, ValidationError):
        return jsonify({"success": False, "error": error.message}), 400
    if isinstance(error, WebhookVerificationError):
        return jsonify({"success": False, "error": "Invalid signature"}), 401
    if isinstance(error, ConfigurationError):
        return jsonify({"success": False, "error": "Service configuration error"}), 500

    transient = isinstance(error, RetryableError) or (
        isinstance(error, EmbeddingError) and isinstance(error.original_error, RetryableError)
    )
    if transient:
        return jsonify({
            "success": False,
            "error": "The service is busy right now. Please try again in a moment.",
        }), 503

    return jsonify({
        "success": False,
        "error": "Something went wrong. Please try again.",
    }), 502


@app.route("/api/chat", methods=["POST"])
async def chat():
    """Answer a question about the portfolio.

    Expects JSON body:
    {
        "question": "What frontend frameworks do you use?"
    }

    Returns JSON:
    {
        "answer": "..." | null,
        "refusal": false,
        "message": "...",      // only on refusal
        "citations": [...]
    }
    """
    svc = get_services()

    if not svc.chat_limiter.hit(_client_id()):
        return jsonify({
            "error": "Please wait a moment before asking another question.",
            "refusal": False,
        }), 429

    try:
        data = await request.get_json(silent=True) or {}
        result = await svc.orchestrator.answer(data.get("question"))

        logger.info("chat_response_sent", state=result.state.value, tokens=result.tokens_used)
        return jsonify(result.to_dict())

    except RAGServiceError as e:
        return _error_response(e, "chat_endpoint_error")

    except Exception as e:
        logger.error("chat_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "Something went wrong. Please try again."}), 500


@app.route("/api/rag", methods=["POST"])
async def manage_portfolio():
    """Seed, list or clear the portfolio knowledge base.

    Requires the x-portfolio-secret header. Body:
    {"action": "seed", "items": [{"path", "heading", "content"}], "force": false}
    {"action": "list"}
    {"action": "clear"}
    """
    secret = request.headers.get("x-portfolio-secret", "")
    if not config.PORTFOLIO_SECRET or not hmac.compare_digest(
        secret.encode("utf-8"), config.PORTFOLIO_SECRET.encode("utf-8")
    ):
        logger.warning("portfolio_secret_rejected", client_id=_client_id())
        return jsonify({"success": False, "error": "Unauthorized"}), 401

    svc = get_services()

    try:
        data = await request.get_json(silent=True) or {}
        action = data.get("action")

        if action == "seed":
            items = data.get("items")
            if not isinstance(items, list) or not items:
                raise ValidationError("Items array is required")

            results = await svc.pipeline.seed_items(items, force=bool(data.get("force")))
            return jsonify({
                "success": True,
                "processed": sum(1 for r in results if r.status == "processed"),
                "unchanged": sum(1 for r in results if r.status == "unchanged"),
                "failed": sum(1 for r in results if r.status == "failed"),
                "results": [r.to_dict() for r in results],
            })

        if action == "list":
            documents = svc.pipeline.list_documents(PORTFOLIO_COLLECTION)
            return jsonify({"success": True, "count": len(documents), "documents": documents})

        if action == "clear":
            count = await svc.pipeline.clear(PORTFOLIO_COLLECTION)
            return jsonify({"success": True, "deleted": count})

        raise ValidationError("Invalid action. Must be 'seed', 'list', or 'clear'")

    except RAGServiceError as e:
        return _error_response(e, "rag_endpoint_error")

    except Exception as e:
        logger.error("rag_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"success": False, "error": "Internal server error"}), 500


@app.route("/api/blog-sync", methods=["POST"])
async def blog_sync():
    """Receive a signed WordPress webhook and update the blog index."""
    svc = get_services()

    if not svc.sync_limiter.hit(_client_id()):
        return jsonify({"success": False, "error": "Rate limited"}), 429

    try:
        data = await request.get_json(silent=True)
        try:
            payload = WebhookPayload.model_validate(data or {})
        except PayloadValidationError:
            raise ValidationError("Missing required fields")

        verify_signature(payload, config.WEBHOOK_SECRET, config.WEBHOOK_MAX_AGE)

        result = await svc.sync_handler.handle(payload)

        response = {
            "success": True,
            "action": payload.action,
            "wp_post_id": payload.wp_post_id,
            **result,
        }
        if payload.action == "test":
            response["timestamp"] = datetime.now(timezone.utc).isoformat()
        return jsonify(response)

    except RAGServiceError as e:
        return _error_response(e, "blog_sync_error")

    except Exception as e:
        logger.error("blog_sync_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"success": False, "error": "Internal server error"}), 500


@app.route("/api/blog-content/<slug>", methods=["GET"])
async def blog_content(slug: str):
    """Return a stored post with sections and anchor-injected markup."""
    try:
        document = db.get_document(slug)
        if (
            not document
            or document["collection"] != BLOG_COLLECTION
            or document["deleted_at"] is not None
        ):
            return jsonify({"error": "Blog post not found"}), 404

        processed = process_blog_content(document["markup"])

        return jsonify({
            "slug": document["id"],
            "title": document["title"],
            "content": strip_html(document["markup"]),
            "excerpt": document["excerpt"],
            "raw_content": document["markup"],
            "modified_at": document["modified_at"],
            "sections": [asdict(s) for s in processed.sections],
            "content_with_anchors": processed.content_with_anchors,
            "word_count": processed.word_count,
            "reading_time": processed.reading_time,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        })

    except Exception as e:
        logger.error("blog_content_error", error=str(e), slug=slug)
        return jsonify({"error": "Failed to fetch blog content"}), 500


@app.route("/api/blog-search-content", methods=["GET"])
async def blog_search_content():
    """Aggregate recent posts into context for blog-wide search questions."""
    try:
        posts = db.get_recent_documents(BLOG_COLLECTION, config.BLOG_SEARCH_POST_LIMIT)
        return jsonify(build_blog_search_context(posts))

    except Exception as e:
        logger.error("blog_search_content_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "Failed to fetch blog posts"}), 500


@app.route("/api/ai-generate", methods=["POST"])
async def ai_generate():
    """Generate an overview, takeaways, questions or an answer about blog content.

    Expects JSON body:
    {
        "content": "post text",
        "type": "overview" | "takeaways" | "questions" | "custom_question" | "blog_search",
        "question": "required for custom_question and blog_search"
    }
    """
    svc = get_services()

    if not svc.content_limiter.hit(_client_id()):
        return jsonify({
            "success": False,
            "error": "Rate limited. Please wait before making another request.",
        }), 429

    try:
        data = await request.get_json(silent=True) or {}
        content = data.get("content")
        if not content or not data.get("type"):
            raise ValidationError("Missing content or type parameter")

        mode = parse_content_mode(data.get("type"), data.get("question"))
        result = await svc.content_generator.generate(content, mode)
        return jsonify(result.to_dict())

    except RAGServiceError as e:
        return _error_response(e, "ai_generate_error")

    except Exception as e:
        logger.error("ai_generate_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"success": False, "error": "Internal server error"}), 500


@app.route("/health/ready")
async def health_ready():
    """Readiness probe - check the index is loaded and the database answers."""
    checks = {"status": "healthy", "index": False, "database": False}

    try:
        stats = get_services().vector_store.get_stats()
        checks["index"] = stats["initialized"]
        checks["vector_count"] = stats["vector_count"]

        checks["chunk_count"] = db.get_chunk_count(live_only=True)
        checks["database"] = True

        if not checks["index"]:
            checks["status"] = "unhealthy"

        return jsonify(checks), 200 if checks["status"] == "healthy" else 503

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        return jsonify(checks), 503


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
