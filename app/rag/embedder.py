"""Embedding generation with validation, retries and batching.

Transient failures (rate limits, 5xx, timeouts) are retried in a bounded
loop with exponential backoff. Permanent failures and exhausted retries
surface as EmbeddingError; callers decide whether that aborts their unit
of work.
"""
import asyncio
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
import structlog

from app import config
from app.errors import (
    EmbeddingError,
    MalformedResponseError,
    PermanentError,
    RetryableError,
    ValidationError,
)

logger = structlog.get_logger()


@dataclass
class EmbeddingResult:
    """A validated embedding for one input text."""

    embedding: List[float]
    tokens: int
    text: str
    index: Optional[int] = None


@dataclass
class BatchEmbeddingResult:
    """Embeddings for a list of texts, in input order."""

    embeddings: List[EmbeddingResult] = field(default_factory=list)
    total_tokens: int = 0
    cost: float = 0.0


def validate_embedding(embedding: Any, dimensions: int = None) -> bool:
    """Check a vector has exactly `dimensions` finite numeric values."""
    dimensions = dimensions or config.EMBEDDING_DIMENSIONS

    if not isinstance(embedding, (list, tuple)):
        return False

    if len(embedding) != dimensions:
        return False

    return all(
        isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)
        for value in embedding
    )


def normalize_embedding(embedding: Sequence[float]) -> List[float]:
    """Scale a vector to unit length (zero vectors are returned unchanged)."""
    magnitude = math.sqrt(sum(value * value for value in embedding))
    if magnitude == 0:
        return list(embedding)
    return [value / magnitude for value in embedding]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 if either is zero)."""
    if len(a) != len(b):
        raise ValueError("Embeddings must have the same dimensions")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot / (norm_a * norm_b)


def calculate_cost(tokens: int) -> float:
    """Estimated embedding cost in USD."""
    return (tokens / 1000) * config.EMBEDDING_COST_PER_1K_TOKENS


class EmbeddingGenerator:
    """Converts text into fixed-dimension vectors through an injected API client."""

    def __init__(
        self,
        client,
        model: str = None,
        dimensions: int = None,
        max_retries: int = None,
        base_delay: float = None,
        max_input_length: int = None,
        batch_size: int = None,
        batch_delay: float = None,
        sleep: Callable[[float], Awaitable[None]] = None,
    ):
        """Initialize the generator.

        Args:
            client: Object with an async embeddings(texts, model) method (OpenAIClient)
            model: Embedding model name (default from config)
            dimensions: Expected vector length (default from config)
            max_retries: Retries after the first attempt on transient failures
            base_delay: First backoff delay in seconds, doubled each retry
            max_input_length: Inputs are truncated to this many characters
            batch_size: Maximum texts per batch request
            batch_delay: Pause between batch requests in seconds
            sleep: Awaitable sleep function (asyncio.sleep by default)
        """
        self.client = client
        self.model = model or config.EMBEDDING_MODEL
        self.dimensions = dimensions or config.EMBEDDING_DIMENSIONS
        self.max_retries = max_retries if max_retries is not None else config.EMBED_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else config.EMBED_BASE_DELAY
        self.max_input_length = max_input_length or config.EMBED_MAX_INPUT_LENGTH
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE
        self.batch_delay = batch_delay if batch_delay is not None else config.EMBED_BATCH_DELAY
        self._sleep = sleep or asyncio.sleep

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_input_length:
            return text[: self.max_input_length]
        return text

    async def _with_retries(self, operation: Callable[[], Awaitable[Any]], **log_context) -> Any:
        """Run operation, retrying RetryableError up to max_retries times."""
        attempt = 0
        while True:
            try:
                return await operation()

            except RetryableError as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "embedding_retries_exhausted",
                        attempts=attempt + 1,
                        error_type=type(e).__name__,
                        **log_context,
                    )
                    raise EmbeddingError(
                        f"Failed to generate embedding after {attempt + 1} attempts: {e.message}",
                        attempts=attempt + 1,
                        details=log_context,
                        original_error=e,
                    ) from e

                delay = self.base_delay * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "embedding_retry_scheduled",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay=delay,
                    error_type=type(e).__name__,
                    **log_context,
                )
                await self._sleep(delay)

            except PermanentError as e:
                logger.error(
                    "embedding_generation_failed",
                    attempts=attempt + 1,
                    error_type=type(e).__name__,
                    error=e.message,
                    **log_context,
                )
                raise EmbeddingError(
                    f"Failed to generate embedding: {e.message}",
                    attempts=attempt + 1,
                    details=log_context,
                    original_error=e,
                ) from e

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate an embedding for a single text.

        Raises:
            ValidationError: If text is empty
            EmbeddingError: On permanent failure or after exhausting retries
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        truncated = self._truncate(text)

        async def request() -> EmbeddingResult:
            response = await self.client.embeddings(truncated, model=self.model)
            data = response.get("data") or []
            if data and not isinstance(data[0], dict):
                raise MalformedResponseError("Embedding item is not an object")
            embedding = data[0].get("embedding") if data else None

            if not validate_embedding(embedding, self.dimensions):
                raise MalformedResponseError(
                    f"Invalid embedding: expected {self.dimensions} finite values, "
                    f"got {len(embedding) if isinstance(embedding, list) else 0}"
                )

            return EmbeddingResult(
                embedding=list(embedding),
                tokens=(response.get("usage") or {}).get("total_tokens", 0),
                text=truncated,
            )

        return await self._with_retries(request, text_length=len(text))

    async def embed_batch(self, texts: List[str]) -> BatchEmbeddingResult:
        """Generate embeddings for many texts, one request per batch.

        Returns:
            BatchEmbeddingResult with one embedding per input, in input order

        Raises:
            EmbeddingError: If any batch fails (including a malformed vector)
        """
        if not texts:
            return BatchEmbeddingResult()

        results: List[EmbeddingResult] = []
        total_tokens = 0

        for start in range(0, len(texts), self.batch_size):
            batch = [self._truncate(text) for text in texts[start : start + self.batch_size]]
            batch_results, batch_tokens = await self._with_retries(
                lambda batch=batch, start=start: self._request_batch(batch, start),
                batch_start=start,
                batch_size=len(batch),
            )
            results.extend(batch_results)
            total_tokens += batch_tokens

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(results),
            )

            if start + self.batch_size < len(texts):
                await self._sleep(self.batch_delay)

        return BatchEmbeddingResult(
            embeddings=results,
            total_tokens=total_tokens,
            cost=calculate_cost(total_tokens),
        )

    async def _request_batch(self, batch: List[str], start: int):
        response = await self.client.embeddings(batch, model=self.model)
        data = response.get("data") or []

        if len(data) != len(batch):
            raise MalformedResponseError(
                f"Batch returned {len(data)} embeddings for {len(batch)} inputs"
            )
        if not all(isinstance(item, dict) for item in data):
            raise MalformedResponseError("Batch embedding items must be objects")

        # The API reports each item's input position; fall back to response order
        ordered = sorted(
            enumerate(data), key=lambda pair: pair[1].get("index", pair[0])
        )

        batch_results = []
        for position, (_, item) in enumerate(ordered):
            embedding = item.get("embedding")
            if not validate_embedding(embedding, self.dimensions):
                raise MalformedResponseError("Invalid embedding dimensions in batch")
            batch_results.append(
                EmbeddingResult(
                    embedding=list(embedding),
                    tokens=0,  # per-item usage is not reported for batches
                    text=batch[position],
                    index=start + position,
                )
            )

        return batch_results, (response.get("usage") or {}).get("total_tokens", 0)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "dimensions": self.dimensions,
            "max_input_length": self.max_input_length,
            "batch_size": self.batch_size,
            "max_retries": self.max_retries,
            "cost_per_1k_tokens": config.EMBEDDING_COST_PER_1K_TOKENS,
        }
