"""Token-aware text chunking with overlap for the RAG pipeline.

Token boundaries come from a tiktoken encoding so chunk sizes line up with
what the embedding model is billed for. If the encoder cannot be loaded or
fails on the input, a paragraph splitter with a characters-per-token
estimate takes over.
"""
import math
import re
from typing import Any, List, Optional
from dataclasses import dataclass
import structlog
import tiktoken

from app import config

logger = structlog.get_logger()

# tiktoken decodes a cut multi-byte character as U+FFFD
REPLACEMENT_CHAR = "\ufffd"
# A UTF-8 character spans at most four bytes, so at most three tokens can be cut off
MAX_SPLIT_TOKENS = 3


@dataclass
class TextChunk:
    """A token-bounded slice of a document's text."""

    content: str
    tokens: int
    chunk_index: int


class TokenChunker:
    """Sliding-window chunker over a token sequence."""

    def __init__(
        self,
        max_tokens: int = None,
        overlap_tokens: int = None,
        min_chunk_length: int = None,
        max_content_length: int = None,
        encoding_name: str = None,
        encoding: Optional[Any] = None,
    ):
        """Initialize the chunker.

        Args:
            max_tokens: Maximum tokens per chunk (default from config)
            overlap_tokens: Tokens shared by consecutive chunks (default from config)
            min_chunk_length: Chunks shorter than this many characters are dropped
            max_content_length: Input longer than this many characters is truncated
            encoding_name: tiktoken encoding to load lazily (default from config)
            encoding: Pre-built encoder exposing encode()/decode(); skips tiktoken loading
        """
        self.max_tokens = max_tokens if max_tokens is not None else config.MAX_TOKENS_PER_CHUNK
        self.overlap_tokens = (
            overlap_tokens if overlap_tokens is not None else config.CHUNK_OVERLAP_TOKENS
        )
        self.min_chunk_length = (
            min_chunk_length if min_chunk_length is not None else config.MIN_CHUNK_LENGTH
        )
        self.max_content_length = max_content_length or config.MAX_CONTENT_LENGTH
        self.encoding_name = encoding_name or config.TOKENIZER_ENCODING
        self._encoding = encoding

        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")

        if self.overlap_tokens < 0 or self.overlap_tokens >= self.max_tokens:
            raise ValueError(
                f"Overlap ({self.overlap_tokens}) must be in [0, max_tokens) "
                f"(max_tokens={self.max_tokens})"
            )

        logger.debug(
            "chunker_initialized",
            max_tokens=self.max_tokens,
            overlap_tokens=self.overlap_tokens,
            encoding=self.encoding_name,
        )

    def _get_encoding(self):
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def count_tokens(self, text: str) -> int:
        """Count tokens in text, estimating from length if the encoder is unavailable."""
        try:
            return len(self._get_encoding().encode(text))
        except Exception as e:
            logger.warning("token_count_estimated", error=str(e))
            return math.ceil(len(text) / config.FALLBACK_CHARS_PER_TOKEN)

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping token-bounded chunks.

        Args:
            text: Normalized plain text

        Returns:
            List of TextChunk objects with contiguous indices starting at 0
        """
        if not text or len(text) < self.min_chunk_length:
            return []

        if len(text) > self.max_content_length:
            logger.info(
                "content_truncated",
                original_length=len(text),
                max_length=self.max_content_length,
            )
            text = text[: self.max_content_length] + "..."

        try:
            encoding = self._get_encoding()
            tokens = encoding.encode(text)

            if len(tokens) <= self.max_tokens:
                return [TextChunk(content=text, tokens=len(tokens), chunk_index=0)]

            chunks = self._sliding_window(tokens, encoding)

        except Exception as e:
            logger.warning(
                "token_chunking_failed_using_fallback",
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._fallback_chunking(text)

        logger.info(
            "text_chunked",
            text_length=len(text),
            total_tokens=len(tokens),
            chunk_count=len(chunks),
        )

        return chunks

    def _sliding_window(self, tokens: List[int], encoding) -> List[TextChunk]:
        """Emit windows of max_tokens, each overlapping the previous one by overlap_tokens."""
        chunks: List[TextChunk] = []
        total = len(tokens)
        start = 0

        while start < total:
            end = min(start + self.max_tokens, total)
            if end < total:
                end = self._align_end(tokens, start, end, encoding)
            first = self._align_start(tokens, start, end, encoding) if start else start

            content, token_count = self._decode_window(tokens[first:end], encoding)

            if len(content) >= self.min_chunk_length:
                chunks.append(
                    TextChunk(content=content, tokens=token_count, chunk_index=len(chunks))
                )
            else:
                logger.debug("short_window_skipped", start_token=start, length=len(content))

            if end >= total:
                break

            start = end - self.overlap_tokens

        return chunks

    def _align_end(self, tokens: List[int], start: int, end: int, encoding) -> int:
        """Pull a window end back off a multi-byte character split between tokens.

        The end never moves so far back that the next window would not advance.
        """
        for _ in range(MAX_SPLIT_TOKENS):
            if end - 1 - self.overlap_tokens <= start:
                break
            if not encoding.decode(tokens[start:end]).endswith(REPLACEMENT_CHAR):
                break
            end -= 1
        return end

    def _align_start(self, tokens: List[int], start: int, end: int, encoding) -> int:
        """Skip leading tokens that continue a character begun in the previous window."""
        first = start
        for _ in range(MAX_SPLIT_TOKENS):
            if first + 1 >= end:
                break
            if not encoding.decode(tokens[first:end]).startswith(REPLACEMENT_CHAR):
                break
            first += 1
        return first

    def _decode_window(self, window: List[int], encoding):
        """Decode a token window to trimmed text whose re-encoded size fits max_tokens.

        BPE re-encoding of decoded text can differ from the source slice at
        window edges, so the window is shrunk until the trimmed text fits.
        """
        while window:
            content = encoding.decode(window).strip()
            token_count = len(encoding.encode(content))
            if token_count <= self.max_tokens:
                return content, token_count
            window = window[:-1]
        return "", 0

    def _fallback_chunking(self, text: str) -> List[TextChunk]:
        """Greedy paragraph packing using a characters-per-token estimate. Never raises."""
        chars_per_token = config.FALLBACK_CHARS_PER_TOKEN
        max_chars = self.max_tokens * chars_per_token

        pieces: List[str] = []
        for paragraph in re.split(r"\n\s*\n", text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            # Oversized paragraphs are hard-split so every chunk stays within budget
            for offset in range(0, len(paragraph), max_chars):
                pieces.append(paragraph[offset : offset + max_chars])

        packed: List[str] = []
        current = ""
        for piece in pieces:
            if current and len(current) + 2 + len(piece) > max_chars:
                packed.append(current)
                current = piece
            else:
                current = f"{current}\n\n{piece}" if current else piece
        if current:
            packed.append(current)

        chunks: List[TextChunk] = []
        for content in packed:
            content = content.strip()
            if len(content) < self.min_chunk_length:
                continue
            chunks.append(
                TextChunk(
                    content=content,
                    tokens=math.ceil(len(content) / chars_per_token),
                    chunk_index=len(chunks),
                )
            )

        logger.info("fallback_chunking_completed", chunk_count=len(chunks))
        return chunks

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_tokens": 0,
                "avg_tokens": 0,
                "min_tokens": 0,
                "max_tokens": 0,
            }

        token_counts = [c.tokens for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_tokens": sum(token_counts),
            "avg_tokens": sum(token_counts) // len(chunks),
            "min_tokens": min(token_counts),
            "max_tokens": max(token_counts),
            "overlap": self.overlap_tokens,
        }

