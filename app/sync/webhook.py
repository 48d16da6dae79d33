"""WordPress webhook payloads and HMAC signature verification."""
import hashlib
import hmac
import time
from typing import Optional
from pydantic import BaseModel, Field
import structlog

from app.errors import WebhookVerificationError

logger = structlog.get_logger()

UPSERT_ACTIONS = ("published", "updated", "untrashed")
DELETE_ACTIONS = ("deleted", "trashed")
STATUS_ACTIONS = ("unpublished", "status_changed")


class Rendered(BaseModel):
    """A WordPress REST field with rendered HTML."""
    rendered: str = ""


class WordPressPost(BaseModel):
    """Post as returned by the WordPress REST API (wp/v2/posts)."""
    id: int
    slug: str
    title: Rendered = Field(default_factory=Rendered)
    content: Rendered = Field(default_factory=Rendered)
    excerpt: Rendered = Field(default_factory=Rendered)
    status: str = "publish"
    date: Optional[str] = None
    modified: Optional[str] = None


class WebhookPayload(BaseModel):
    """Signed event sent by the blog sync plugin."""
    action: str
    wp_post_id: int
    timestamp: int
    signature: str
    slug: Optional[str] = None
    status: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    post_data: Optional[WordPressPost] = None
    message: Optional[str] = None


def generate_signature(post_id: int, timestamp: int, secret: str) -> str:
    """HMAC-SHA256 hex digest of the post id followed by the timestamp."""
    return hmac.new(
        secret.encode("utf-8"),
        f"{post_id}{timestamp}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(
    payload: WebhookPayload,
    secret: str,
    max_age: int,
    now: Optional[float] = None,
) -> None:
    """Check a payload's signature and freshness.

    Args:
        payload: Parsed webhook payload
        secret: Shared HMAC secret
        max_age: Maximum allowed distance between payload timestamp and now, in seconds
        now: Current unix time (defaults to time.time())

    Raises:
        WebhookVerificationError: Secret missing, signature mismatch or stale payload
    """
    if not secret:
        logger.error("webhook_secret_not_configured")
        raise WebhookVerificationError("Webhook secret is not configured")

    expected = generate_signature(payload.wp_post_id, payload.timestamp, secret)
    if not hmac.compare_digest(expected, payload.signature):
        logger.warning(
            "webhook_signature_invalid",
            action=payload.action,
            wp_post_id=payload.wp_post_id,
            timestamp=payload.timestamp,
        )
        raise WebhookVerificationError("Invalid signature")

    now = time.time() if now is None else now
    age = now - payload.timestamp
    if abs(age) > max_age:
        logger.warning(
            "webhook_payload_stale",
            action=payload.action,
            wp_post_id=payload.wp_post_id,
            age_seconds=int(age),
        )
        raise WebhookVerificationError("Stale webhook payload", details={"age": int(age)})
