"""Dispatch of verified blog webhooks onto the ingest pipeline."""
from typing import Any, Dict, Optional
import structlog

from app import db
from app.errors import PermanentError
from app.rag.cleaner import clean_content
from app.rag.ingest import BLOG_COLLECTION, DocumentInput, IngestPipeline
from app.sync.webhook import (
    DELETE_ACTIONS,
    STATUS_ACTIONS,
    UPSERT_ACTIONS,
    WebhookPayload,
    WordPressPost,
)
from app.sync.wordpress import WordPressClient

logger = structlog.get_logger()


def post_to_document(post: WordPressPost) -> DocumentInput:
    return DocumentInput(
        document_id=post.slug,
        collection=BLOG_COLLECTION,
        title=clean_content(post.title.rendered) or post.slug,
        content=post.content.rendered,
        excerpt=post.excerpt.rendered or None,
        status=post.status,
        modified_at=post.modified,
        external_id=str(post.id),
    )


class BlogSyncHandler:
    """Applies blog events (publish, update, delete, status change) to the index."""

    def __init__(self, pipeline: IngestPipeline, wordpress_client: Optional[WordPressClient] = None):
        self.pipeline = pipeline
        self.wordpress_client = wordpress_client or WordPressClient()

    async def handle(self, payload: WebhookPayload) -> Dict[str, Any]:
        """Process a verified webhook.

        Returns:
            Result fields for the API response
        """
        logger.info("webhook_received", action=payload.action, wp_post_id=payload.wp_post_id)

        if payload.action == "test":
            return {"message": "Test webhook received successfully"}
        if payload.action in UPSERT_ACTIONS:
            return await self._upsert(payload)
        if payload.action in DELETE_ACTIONS:
            return await self._delete(payload)
        if payload.action in STATUS_ACTIONS:
            return await self._status_change(payload)

        logger.warning("webhook_action_unknown", action=payload.action)
        return {"message": "Action processed (no-op)"}

    async def _upsert(self, payload: WebhookPayload) -> Dict[str, Any]:
        post = payload.post_data
        if post is None:
            post = await self.wordpress_client.fetch_post(payload.wp_post_id)
            if post is None:
                raise PermanentError(
                    "Post not found in WordPress", details={"wp_post_id": payload.wp_post_id}
                )

        if post.status != "publish":
            logger.info("post_not_published_skipped", wp_post_id=post.id, status=post.status)
            return {"message": "Post not published, skipped"}

        result = await self.pipeline.ingest_document(post_to_document(post))

        messages = {
            "processed": "Post processed successfully",
            "unchanged": "Content unchanged, skipped",
            "failed": "Post stored but no chunks could be embedded",
        }
        return {"message": messages[result.status], **result.to_dict()}

    def _resolve_document_id(self, payload: WebhookPayload) -> Optional[str]:
        document = db.get_document_by_external_id(BLOG_COLLECTION, str(payload.wp_post_id))
        if document:
            return document["id"]
        if payload.post_data:
            return payload.post_data.slug
        return payload.slug

    async def _delete(self, payload: WebhookPayload, status: Optional[str] = None) -> Dict[str, Any]:
        document_id = self._resolve_document_id(payload)
        deleted = False
        if document_id:
            deleted = await self.pipeline.soft_delete(document_id, status=status)

        return {
            "message": "Post marked as deleted" if deleted else "Post not indexed, nothing to delete",
            "document_id": document_id,
        }

    async def _status_change(self, payload: WebhookPayload) -> Dict[str, Any]:
        old_status = payload.old_status
        new_status = payload.new_status or payload.status

        if old_status == "publish" and new_status != "publish":
            return await self._delete(payload, status=new_status)

        if old_status != "publish" and new_status == "publish":
            return await self._upsert(payload)

        return {
            "message": "Status change processed",
            "old_status": old_status,
            "new_status": new_status,
        }
