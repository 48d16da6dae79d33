"""Document processing: cleaning, chunking and content fingerprinting."""
import hashlib
import re
from dataclasses import dataclass, field
from typing import List, Optional

from app import config
from app.rag.chunker import TextChunk, TokenChunker
from app.rag.cleaner import clean_content


@dataclass
class ProcessedDocument:
    """Chunks and fingerprint for one document."""

    chunks: List[TextChunk] = field(default_factory=list)
    total_tokens: int = 0
    content_hash: str = ""
    word_count: int = 0


def generate_content_hash(text: str) -> str:
    """SHA-256 fingerprint of text, insensitive to whitespace and case edits."""
    normalized = re.sub(r"\s+", " ", text or "").strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def process_document(
    title: str,
    content: str,
    excerpt: Optional[str] = None,
    chunker: Optional[TokenChunker] = None,
) -> ProcessedDocument:
    """Clean, chunk and fingerprint a document.

    The title and excerpt are prepended to the chunked text so they are
    searchable, but the fingerprint covers the cleaned body only.

    Args:
        title: Document title (may contain markup)
        content: Raw markup or plain text
        excerpt: Optional summary (may contain markup)
        chunker: Chunker to use (default settings if not provided)

    Returns:
        ProcessedDocument
    """
    chunker = chunker or TokenChunker()

    clean_body = clean_content(content)
    clean_title = clean_content(title) if title else ""
    clean_excerpt = clean_content(excerpt) if excerpt else ""

    parts = []
    if clean_title:
        parts.append(f"# {clean_title}")
    if clean_excerpt:
        parts.append(clean_excerpt)
    if clean_body:
        parts.append(clean_body)
    full_text = "\n\n".join(parts)

    chunks = [
        chunk
        for chunk in chunker.chunk_text(full_text)
        if is_valid_chunk(chunk, chunker.max_tokens, chunker.min_chunk_length)
    ]
    for index, chunk in enumerate(chunks):
        chunk.chunk_index = index

    return ProcessedDocument(
        chunks=chunks,
        total_tokens=sum(chunk.tokens for chunk in chunks),
        content_hash=generate_content_hash(clean_body),
        word_count=len(full_text.split()),
    )


def is_valid_chunk(chunk: TextChunk, max_tokens: int = None, min_length: int = None) -> bool:
    """Check a chunk is within the configured size bounds."""
    max_tokens = max_tokens or config.MAX_TOKENS_PER_CHUNK
    min_length = min_length if min_length is not None else config.MIN_CHUNK_LENGTH
    return (
        len(chunk.content.strip()) >= min_length
        and 0 < chunk.tokens <= max_tokens
    )


def calculate_embedding_cost(tokens: int) -> float:
    """Estimated embedding cost in USD."""
    return (tokens / 1000) * config.EMBEDDING_COST_PER_1K_TOKENS


def get_processing_stats(processed: ProcessedDocument) -> dict:
    chunk_count = len(processed.chunks)
    return {
        "chunk_count": chunk_count,
        "total_tokens": processed.total_tokens,
        "average_tokens_per_chunk": (
            round(processed.total_tokens / chunk_count) if chunk_count else 0
        ),
        "word_count": processed.word_count,
        "content_hash": processed.content_hash,
        "estimated_cost": calculate_embedding_cost(processed.total_tokens),
    }
