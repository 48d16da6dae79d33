"""Retriever for semantic search over indexed documents.

Handles:
- Query embedding generation
- Vector search with similarity threshold
- Context formatting for the LLM prompt
"""
from typing import List, Optional
import structlog

from app import config
from app.rag.embedder import EmbeddingGenerator
from app.rag.ingest import PORTFOLIO_COLLECTION
from app.rag.store_faiss import FAISSVectorStore, SimilarityMatch

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(
        self,
        embedder: EmbeddingGenerator,
        vector_store: FAISSVectorStore,
        top_k: int = None,
        min_similarity: float = None,
        collection: Optional[str] = PORTFOLIO_COLLECTION,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding generator for queries
            vector_store: Loaded vector store
            top_k: Number of results to retrieve (default from config)
            min_similarity: Cosine similarity threshold (default from config)
            collection: Collection to search (None searches everything)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.min_similarity = (
            min_similarity if min_similarity is not None else config.SIM_THRESHOLD
        )
        self.collection = collection

        logger.info(
            "retriever_initialized",
            top_k=self.top_k,
            min_similarity=self.min_similarity,
            collection=self.collection,
        )

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[SimilarityMatch]:
        """Retrieve relevant chunks for a query.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            Matches sorted by similarity (best first)

        Raises:
            EmbeddingError: If the query cannot be embedded
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = top_k or self.top_k

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        result = await self.embedder.embed(query)

        matches = await self.vector_store.query(
            result.embedding,
            k=top_k,
            min_similarity=self.min_similarity,
            collection=self.collection,
        )

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(matches),
            top_similarity=matches[0].similarity if matches else None,
        )

        return matches


def format_context(matches: List[SimilarityMatch]) -> str:
    """Format matches as labelled context blocks for the LLM prompt."""
    blocks = []
    for i, match in enumerate(matches, 1):
        heading = f" - {match.heading}" if match.heading else ""
        blocks.append(f"[Source {i}: {match.path}{heading}]\n{match.content.strip()}")
    return "\n\n".join(blocks)
