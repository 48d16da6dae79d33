"""FAISS vector store for semantic search.

Handles:
- FAISS index initialization, loading and rebuilding from SQLite
- Per-document vector replacement (delete-then-insert)
- Cosine similarity search with thresholding and stable ordering
- Metadata persistence
"""
import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import numpy as np
import faiss
import structlog

from app import config, db

logger = structlog.get_logger()


@dataclass
class EmbeddedChunk:
    """A chunk ready to be stored: text plus its embedding."""

    chunk_index: int
    content: str
    tokens: int
    embedding: List[float]


@dataclass
class SimilarityMatch:
    """A stored chunk returned by a vector query."""

    chunk_id: int
    document_id: str
    collection: str
    title: str
    heading: Optional[str]
    content: str
    chunk_index: int
    similarity: float

    @property
    def path(self) -> str:
        """Source path: the blog slug or the portfolio item path."""
        return self.document_id


class FAISSVectorStore:
    """FAISS-based vector store keyed by SQLite chunk ids."""

    def __init__(self, index_dir: Path = None, dimension: int = None):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory to store index and metadata (default: DATA_DIR)
            dimension: Embedding dimension (default from config)
        """
        self.index_dir = Path(index_dir) if index_dir else config.DATA_DIR
        self.dimension = dimension or config.EMBEDDING_DIMENSIONS

        self.index_path = self.index_dir / config.VECTOR_INDEX_PATH.name
        self.metadata_path = self.index_dir / config.METADATA_PATH.name

        self.index: Optional[faiss.Index] = None
        self.metadata: Dict[str, Any] = {}

        # Serializes writers so a document's vectors are never half-replaced
        self._lock = asyncio.Lock()

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=self.dimension,
        )

    def init_new_index(self) -> None:
        """Initialize a new, empty FAISS index."""
        # Inner product over L2-normalized vectors is cosine similarity
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

        self.metadata = {
            "embedding_model": config.EMBEDDING_MODEL,
            "embedding_dimension": self.dimension,
            "index_type": "IndexIDMap2(IndexFlatIP)",
            "vector_count": 0,
        }

        logger.info("faiss_index_initialized", dimension=self.dimension)

    def load_index(self) -> None:
        """Load existing FAISS index from disk.

        Raises:
            FileNotFoundError: If index files don't exist
            ValueError: If the stored dimension differs from the configured one
            RuntimeError: If loading fails
        """
        if not self.index_path.exists():
            raise FileNotFoundError(f"Index not found: {self.index_path}")

        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {self.metadata_path}")

        try:
            with open(self.metadata_path, "r") as f:
                self.metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Failed to load metadata: {e}") from e

        stored_dim = self.metadata.get("embedding_dimension")
        if stored_dim != self.dimension:
            raise ValueError(
                f"Dimension mismatch: index was built with "
                f"{self.metadata.get('embedding_model')} (dim={stored_dim}), "
                f"but the configured dimension is {self.dimension}. "
                f"Please rebuild the index."
            )

        try:
            self.index = faiss.read_index(str(self.index_path))
        except RuntimeError as e:
            raise RuntimeError(f"Failed to load FAISS index: {e}") from e

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
        )

    def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            RuntimeError: If no index is loaded
        """
        if self.index is None:
            raise RuntimeError("No index to save. Initialize or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.metadata["vector_count"] = self.index.ntotal

        faiss.write_index(self.index, str(self.index_path))

        with open(self.metadata_path, "w") as f:
            json.dump(self.metadata, f, indent=2)

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    def init_or_load(self) -> None:
        """Load the index from disk, or build one from the database.

        When the index files are missing but SQLite still holds chunks, the
        index is rebuilt from the stored embeddings.
        """
        if self.index_path.exists() and self.metadata_path.exists():
            logger.info("existing_index_detected", path=str(self.index_path))
            self.load_index()
            return

        logger.info("no_index_found_initializing_new")
        self.init_new_index()

        if db.get_chunk_count(live_only=True):
            self.rebuild_from_database()

    def rebuild_from_database(self) -> int:
        """Recreate the index from the embeddings stored in SQLite.

        Returns:
            Number of vectors in the rebuilt index
        """
        logger.warning("rebuilding_index_from_database", index_dir=str(self.index_dir))
        self.init_new_index()

        ids = []
        vectors = []
        for chunk_id, embedding in db.iter_live_embeddings():
            if embedding.shape[0] != self.dimension:
                logger.warning(
                    "stored_embedding_skipped",
                    chunk_id=chunk_id,
                    dimension=int(embedding.shape[0]),
                )
                continue
            ids.append(chunk_id)
            vectors.append(embedding)

        if ids:
            self.index.add_with_ids(
                self._prepare(vectors), np.asarray(ids, dtype=np.int64)
            )

        self.save_index()
        logger.info("index_rebuilt", vector_count=self.index.ntotal)
        return self.index.ntotal

    def _require_index(self) -> faiss.Index:
        if self.index is None:
            raise RuntimeError("No index initialized. Call init_or_load() first.")
        return self.index

    def _prepare(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        """Convert to a float32 matrix, check the dimension and L2-normalize."""
        matrix = np.array(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {matrix.shape[-1] if matrix.ndim else 0}"
            )
        faiss.normalize_L2(matrix)
        return matrix

    def _remove_ids(self, ids: List[int]) -> int:
        if not ids:
            return 0
        return int(self._require_index().remove_ids(np.asarray(ids, dtype=np.int64)))

    async def upsert(self, document_id: str, chunks: List[EmbeddedChunk]) -> List[int]:
        """Replace every stored chunk and vector of a document.

        Args:
            document_id: Owning document (its row must already exist)
            chunks: New chunks with embeddings

        Returns:
            Chunk ids (= vector ids) of the inserted chunks
        """
        index = self._require_index()
        matrix = self._prepare([c.embedding for c in chunks]) if chunks else None

        async with self._lock:
            rows = [
                (chunk.chunk_index, chunk.content, chunk.tokens, matrix[i].tobytes())
                for i, chunk in enumerate(chunks)
            ]
            old_ids, new_ids = db.replace_chunks(document_id, rows)

            removed = self._remove_ids(old_ids)
            if new_ids:
                index.add_with_ids(matrix, np.asarray(new_ids, dtype=np.int64))

        logger.info(
            "document_vectors_replaced",
            document_id=document_id,
            removed=removed,
            added=len(new_ids),
            total_vectors=index.ntotal,
        )

        return new_ids

    async def remove_document(self, document_id: str) -> int:
        """Drop a document's vectors from the index (rows stay in SQLite).

        Returns:
            Number of vectors removed
        """
        async with self._lock:
            removed = self._remove_ids(db.get_chunk_ids_for_document(document_id))

        logger.info("document_vectors_removed", document_id=document_id, removed=removed)
        return removed

    async def remove_collection(self, collection: str) -> int:
        """Drop every vector belonging to a collection."""
        async with self._lock:
            return self._remove_ids(db.get_chunk_ids_for_collection(collection))

    async def query(
        self,
        query_vector: Sequence[float],
        k: int = None,
        min_similarity: float = None,
        collection: Optional[str] = None,
    ) -> List[SimilarityMatch]:
        """Find the stored chunks most similar to a query vector.

        Args:
            query_vector: Query embedding
            k: Maximum number of matches (default from config)
            min_similarity: Matches below this cosine similarity are dropped
            collection: Restrict results to one collection

        Returns:
            At most k matches, sorted by descending similarity, ties broken
            by ascending chunk id
        """
        index = self._require_index()
        k = k or config.RETRIEVAL_TOP_K
        min_similarity = (
            min_similarity if min_similarity is not None else config.SIM_THRESHOLD
        )

        if index.ntotal == 0:
            logger.warning("empty_index_no_results")
            return []

        query = self._prepare([query_vector])

        # Flat search is exhaustive anyway; filtered queries look at everything
        search_k = index.ntotal if collection else min(index.ntotal, k * 2)
        scores, ids = index.search(query, search_k)

        scored = {
            int(chunk_id): float(score)
            for chunk_id, score in zip(ids[0].tolist(), scores[0].tolist())
            if chunk_id != -1
        }

        matches = []
        for row in db.get_chunks_by_ids(list(scored)):
            if collection and row["collection"] != collection:
                continue

            similarity = min(1.0, scored[row["id"]])
            if similarity < min_similarity:
                continue

            matches.append(
                SimilarityMatch(
                    chunk_id=row["id"],
                    document_id=row["document_id"],
                    collection=row["collection"],
                    title=row["title"],
                    heading=row["heading"],
                    content=row["content"],
                    chunk_index=row["chunk_index"],
                    similarity=similarity,
                )
            )

        matches.sort(key=lambda m: (-m.similarity, m.chunk_id))
        matches = matches[:k]

        logger.info(
            "vector_search_completed",
            top_k=k,
            results_found=len(matches),
            top_similarity=matches[0].similarity if matches else None,
        )

        return matches

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store.

        Returns:
            Dictionary with store statistics
        """
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": self.dimension,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "index_exists_on_disk": self.index_path.exists(),
            "metadata": self.metadata,
        }


# Singleton instance for convenience
_store_instance: Optional[FAISSVectorStore] = None


def get_vector_store() -> FAISSVectorStore:
    """Get or create a singleton vector store instance.

    Returns:
        FAISSVectorStore instance

    Note: This loads the index if it exists
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = FAISSVectorStore()
        _store_instance.init_or_load()
    return _store_instance
