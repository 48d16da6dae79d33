"""Ingest pipeline for blog posts and portfolio items.

Orchestrates:
- Cleaning, chunking and fingerprinting
- Change detection (unchanged fingerprint short-circuits reprocessing)
- Sequential per-chunk embedding with failure isolation
- Vector and metadata storage
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
import structlog

from app import config, db
from app.errors import EmbeddingError, ValidationError
from app.rag.chunker import TokenChunker
from app.rag.embedder import EmbeddingGenerator
from app.rag.processor import get_processing_stats, process_document
from app.rag.store_faiss import EmbeddedChunk, FAISSVectorStore

logger = structlog.get_logger()

BLOG_COLLECTION = "blog"
PORTFOLIO_COLLECTION = "portfolio"


@dataclass
class DocumentInput:
    """A document as received from its source (webhook or seed request)."""

    document_id: str
    title: str
    content: str
    collection: str = BLOG_COLLECTION
    excerpt: Optional[str] = None
    heading: Optional[str] = None
    status: str = "publish"
    modified_at: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class IngestResult:
    document_id: str
    status: str  # processed | unchanged | failed
    chunks_processed: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    word_count: int = 0
    content_hash: str = ""
    failed_chunks: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "status": self.status,
            "chunks_processed": self.chunks_processed,
            "total_chunks": self.total_chunks,
            "total_tokens": self.total_tokens,
            "word_count": self.word_count,
        }


class IngestPipeline:
    """Pipeline for ingesting documents into the RAG system."""

    def __init__(
        self,
        embedder: EmbeddingGenerator,
        vector_store: FAISSVectorStore,
        chunker: Optional[TokenChunker] = None,
        chunk_delay: float = None,
        sleep: Callable[[float], Awaitable[None]] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedding generator used for every chunk
            vector_store: Loaded vector store
            chunker: Chunker (default settings if not provided)
            chunk_delay: Pause between chunk embedding calls in seconds
            sleep: Awaitable sleep function (asyncio.sleep by default)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or TokenChunker()
        self.chunk_delay = chunk_delay if chunk_delay is not None else config.EMBED_CHUNK_DELAY
        self._sleep = sleep or asyncio.sleep

        self.stats = {
            "documents_processed": 0,
            "documents_unchanged": 0,
            "documents_failed": 0,
            "documents_deleted": 0,
            "chunks_embedded": 0,
            "chunks_failed": 0,
            "embedding_tokens": 0,
        }

        logger.info(
            "ingest_pipeline_initialized",
            max_tokens=self.chunker.max_tokens,
            overlap_tokens=self.chunker.overlap_tokens,
            chunk_delay=self.chunk_delay,
        )

    async def ingest_document(self, document: DocumentInput, force: bool = False) -> IngestResult:
        """Process, embed and store one document.

        Args:
            document: Document to ingest
            force: Reprocess even when the content fingerprint is unchanged

        Returns:
            IngestResult; status is 'unchanged' when no work was needed and
            'failed' when no chunk could be embedded
        """
        processed = process_document(
            document.title, document.content, document.excerpt, chunker=self.chunker
        )

        existing = db.get_document(document.document_id)
        if (
            not force
            and existing
            and existing["deleted_at"] is None
            and existing["content_hash"] == processed.content_hash
        ):
            logger.info(
                "document_unchanged_skipped",
                document_id=document.document_id,
                content_hash=processed.content_hash[:12],
            )
            self.stats["documents_unchanged"] += 1
            return IngestResult(
                document_id=document.document_id,
                status="unchanged",
                total_chunks=len(processed.chunks),
                word_count=processed.word_count,
                content_hash=processed.content_hash,
            )

        await self._retire_renamed(document)

        # The fingerprint is recorded only once the new vectors are stored
        db.upsert_document(
            document_id=document.document_id,
            collection=document.collection,
            title=document.title,
            markup=document.content,
            excerpt=document.excerpt,
            heading=document.heading,
            status=document.status,
            content_hash=None,
            modified_at=document.modified_at,
            external_id=document.external_id,
        )

        logger.info(
            "ingesting_document",
            document_id=document.document_id,
            collection=document.collection,
            **get_processing_stats(processed),
        )

        embedded: List[EmbeddedChunk] = []
        failed_chunks: List[int] = []
        total_tokens = 0

        for position, chunk in enumerate(processed.chunks):
            if position:
                await self._sleep(self.chunk_delay)

            try:
                result = await self.embedder.embed(chunk.content)
            except EmbeddingError as e:
                # One bad chunk must not abort the rest of the document
                logger.error(
                    "chunk_embedding_failed",
                    document_id=document.document_id,
                    chunk_index=chunk.chunk_index,
                    attempts=e.attempts,
                    error=e.message,
                )
                failed_chunks.append(chunk.chunk_index)
                continue

            embedded.append(
                EmbeddedChunk(
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                    tokens=chunk.tokens,
                    embedding=result.embedding,
                )
            )
            total_tokens += result.tokens or chunk.tokens

        await self.vector_store.upsert(document.document_id, embedded)
        self.vector_store.save_index()

        status = "processed"
        if processed.chunks and not embedded:
            # No fingerprint is stored, so the next event for this document retries
            status = "failed"
            self.stats["documents_failed"] += 1
        else:
            db.set_content_hash(document.document_id, processed.content_hash)
            self.stats["documents_processed"] += 1

        self.stats["chunks_embedded"] += len(embedded)
        self.stats["chunks_failed"] += len(failed_chunks)
        self.stats["embedding_tokens"] += total_tokens

        logger.info(
            "document_ingested",
            document_id=document.document_id,
            status=status,
            chunks_processed=len(embedded),
            total_chunks=len(processed.chunks),
            failed_chunks=len(failed_chunks),
        )

        return IngestResult(
            document_id=document.document_id,
            status=status,
            chunks_processed=len(embedded),
            total_chunks=len(processed.chunks),
            total_tokens=total_tokens,
            word_count=processed.word_count,
            content_hash=processed.content_hash,
            failed_chunks=failed_chunks,
        )

    async def _retire_renamed(self, document: DocumentInput) -> None:
        """Soft-delete the previous row of a source document whose id (slug) changed."""
        if not document.external_id:
            return

        previous = db.get_document_by_external_id(document.collection, document.external_id)
        if (
            previous
            and previous["id"] != document.document_id
            and previous["deleted_at"] is None
        ):
            logger.info(
                "document_renamed",
                old_id=previous["id"],
                new_id=document.document_id,
            )
            await self.soft_delete(previous["id"])

    async def soft_delete(self, document_id: str, status: Optional[str] = None) -> bool:
        """Mark a document deleted and drop its vectors.

        Returns:
            True if a live document was deleted
        """
        deleted = db.mark_document_deleted(document_id, status=status)
        removed = await self.vector_store.remove_document(document_id)
        if removed:
            self.vector_store.save_index()

        if deleted:
            self.stats["documents_deleted"] += 1

        logger.info(
            "document_soft_deleted",
            document_id=document_id,
            deleted=deleted,
            vectors_removed=removed,
        )
        return deleted

    async def seed_items(self, items: List[Dict[str, Any]], force: bool = False) -> List[IngestResult]:
        """Ingest portfolio items of the form {path, heading, content}.

        Raises:
            ValidationError: If any item lacks a path or content (nothing is ingested)
        """
        documents = []
        for position, item in enumerate(items):
            path = str(item.get("path") or "").strip()
            content = str(item.get("content") or "").strip()
            if not path or not content:
                raise ValidationError(
                    "Each item needs a path and content", details={"item": position}
                )

            heading = item.get("heading") or None
            documents.append(
                DocumentInput(
                    document_id=path,
                    collection=PORTFOLIO_COLLECTION,
                    title=heading or path,
                    content=content,
                    heading=heading,
                )
            )

        results = []
        for document in documents:
            results.append(await self.ingest_document(document, force=force))

        logger.info(
            "portfolio_seeded",
            items=len(results),
            processed=sum(1 for r in results if r.status == "processed"),
            unchanged=sum(1 for r in results if r.status == "unchanged"),
        )
        return results

    async def clear(self, collection: str) -> int:
        """Remove every document and vector of a collection.

        Returns:
            Number of documents removed
        """
        await self.vector_store.remove_collection(collection)
        count = db.delete_collection(collection)
        self.vector_store.save_index()
        return count

    def list_documents(self, collection: Optional[str] = None) -> List[Dict[str, Any]]:
        return db.list_documents(collection)
