"""Database initialization and helpers for the portfolio RAG service.

SQLite database for storing:
- Documents (blog posts and portfolio items) with their content fingerprint
- Text chunks with their embeddings
- Mapping between FAISS vector IDs and chunks (the chunk row id is the vector id)
"""
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import numpy as np
import structlog

from app import config

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - documents: one row per blog post or portfolio item
    - chunks: text chunks with float32 embedding blobs
    """
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                collection TEXT NOT NULL,
                external_id TEXT,
                title TEXT NOT NULL,
                markup TEXT NOT NULL,
                excerpt TEXT,
                heading TEXT,
                status TEXT NOT NULL DEFAULT 'publish',
                content_hash TEXT,
                modified_at TEXT,
                deleted_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                tokens INTEGER NOT NULL,
                embedding BLOB NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(document_id, chunk_index)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_collection
            ON documents(collection)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_external_id
            ON documents(collection, external_id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document_id
            ON chunks(document_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def embedding_to_blob(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def blob_to_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


# Documents


def upsert_document(
    document_id: str,
    collection: str,
    title: str,
    markup: str,
    excerpt: Optional[str] = None,
    heading: Optional[str] = None,
    status: str = "publish",
    content_hash: Optional[str] = None,
    modified_at: Optional[str] = None,
    external_id: Optional[str] = None,
) -> None:
    """Insert or update a document row.

    Updating a soft-deleted document restores it (clears deleted_at).
    """
    now = _now()
    conn = get_connection()

    try:
        conn.execute("""
            INSERT INTO documents (
                id, collection, external_id, title, markup, excerpt, heading,
                status, content_hash, modified_at, deleted_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                collection = excluded.collection,
                external_id = excluded.external_id,
                title = excluded.title,
                markup = excluded.markup,
                excerpt = excluded.excerpt,
                heading = excluded.heading,
                status = excluded.status,
                content_hash = excluded.content_hash,
                modified_at = excluded.modified_at,
                deleted_at = NULL,
                updated_at = excluded.updated_at
        """, (
            document_id,
            collection,
            external_id,
            title,
            markup,
            excerpt,
            heading,
            status,
            content_hash,
            modified_at,
            now,
            now,
        ))
        conn.commit()

    except Exception as e:
        conn.rollback()
        logger.error("document_upsert_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_document(document_id: str) -> Optional[Dict[str, Any]]:
    """Get a document by id, including soft-deleted ones."""
    conn = get_connection()

    try:
        row = conn.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def get_document_by_external_id(collection: str, external_id: str) -> Optional[Dict[str, Any]]:
    """Get the most recently updated document with this source-system id."""
    conn = get_connection()

    try:
        row = conn.execute("""
            SELECT * FROM documents
            WHERE collection = ? AND external_id = ?
            ORDER BY updated_at DESC
            LIMIT 1
        """, (collection, str(external_id))).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def get_recent_documents(collection: str, limit: int) -> List[Dict[str, Any]]:
    """Most recently modified live documents in a collection, newest first."""
    conn = get_connection()

    try:
        rows = conn.execute("""
            SELECT id, title, excerpt, markup, modified_at, created_at
            FROM documents
            WHERE collection = ? AND deleted_at IS NULL
            ORDER BY COALESCE(modified_at, created_at) DESC, id
            LIMIT ?
        """, (collection, limit)).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def set_content_hash(document_id: str, content_hash: Optional[str]) -> None:
    conn = get_connection()

    try:
        conn.execute(
            "UPDATE documents SET content_hash = ?, updated_at = ? WHERE id = ?",
            (content_hash, _now(), document_id),
        )
        conn.commit()
    finally:
        conn.close()


def mark_document_deleted(document_id: str, status: Optional[str] = None) -> bool:
    """Set the soft-delete marker on a document.

    Args:
        document_id: Document to mark
        status: Optional new status to record alongside the marker

    Returns:
        True if a live document was marked
    """
    conn = get_connection()

    try:
        now = _now()
        cursor = conn.execute("""
            UPDATE documents
            SET deleted_at = ?, updated_at = ?, status = COALESCE(?, status)
            WHERE id = ? AND deleted_at IS NULL
        """, (now, now, status, document_id))
        conn.commit()
        return cursor.rowcount > 0

    except Exception as e:
        conn.rollback()
        logger.error("document_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def list_documents(
    collection: Optional[str] = None, include_deleted: bool = False
) -> List[Dict[str, Any]]:
    """List documents with their chunk counts (markup omitted)."""
    conditions = []
    params: List[Any] = []

    if collection:
        conditions.append("d.collection = ?")
        params.append(collection)
    if not include_deleted:
        conditions.append("d.deleted_at IS NULL")

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    conn = get_connection()

    try:
        rows = conn.execute(f"""
            SELECT
                d.id, d.collection, d.external_id, d.title, d.heading, d.status,
                d.content_hash, d.modified_at, d.deleted_at, d.updated_at,
                COUNT(c.id) AS chunk_count
            FROM documents d
            LEFT JOIN chunks c ON c.document_id = d.id
            {where}
            GROUP BY d.id
            ORDER BY d.id
        """, params).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def delete_collection(collection: str) -> int:
    """Hard-delete every document (and chunk) in a collection.

    Returns:
        Number of documents deleted
    """
    conn = get_connection()

    try:
        conn.execute("""
            DELETE FROM chunks
            WHERE document_id IN (SELECT id FROM documents WHERE collection = ?)
        """, (collection,))
        cursor = conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
        conn.commit()

        logger.info("collection_cleared", collection=collection, count=cursor.rowcount)
        return cursor.rowcount

    except Exception as e:
        conn.rollback()
        logger.error("collection_clear_failed", error=str(e), collection=collection)
        raise
    finally:
        conn.close()


# Chunks


def get_chunk_ids_for_document(document_id: str) -> List[int]:
    conn = get_connection()

    try:
        rows = conn.execute(
            "SELECT id FROM chunks WHERE document_id = ? ORDER BY id", (document_id,)
        ).fetchall()
        return [row["id"] for row in rows]
    finally:
        conn.close()


def get_chunk_ids_for_collection(collection: str) -> List[int]:
    conn = get_connection()

    try:
        rows = conn.execute("""
            SELECT c.id FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE d.collection = ?
        """, (collection,)).fetchall()
        return [row["id"] for row in rows]
    finally:
        conn.close()


def replace_chunks(
    document_id: str,
    chunks: List[Tuple[int, str, int, bytes]],
) -> Tuple[List[int], List[int]]:
    """Replace all chunks of a document in one transaction.

    Args:
        document_id: Owning document
        chunks: (chunk_index, content, tokens, embedding_blob) tuples

    Returns:
        Tuple of (removed chunk ids, inserted chunk ids)
    """
    conn = get_connection()
    now = _now()

    try:
        old_ids = [
            row["id"]
            for row in conn.execute(
                "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchall()
        ]
        conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))

        new_ids = []
        for chunk_index, content, tokens, blob in chunks:
            cursor = conn.execute("""
                INSERT INTO chunks (
                    document_id, chunk_index, content, tokens, embedding, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (document_id, chunk_index, content, tokens, blob, now))
            new_ids.append(cursor.lastrowid)

        conn.commit()
        return old_ids, new_ids

    except Exception as e:
        conn.rollback()
        logger.error("chunk_replace_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_chunks_by_ids(chunk_ids: List[int]) -> List[Dict[str, Any]]:
    """Retrieve live chunks (soft-deleted documents excluded) with document fields.

    Args:
        chunk_ids: Chunk row ids (= FAISS vector ids)

    Returns:
        List of chunk dictionaries in no particular order
    """
    if not chunk_ids:
        return []

    conn = get_connection()

    try:
        placeholders = ",".join("?" * len(chunk_ids))
        rows = conn.execute(f"""
            SELECT
                c.id, c.document_id, c.chunk_index, c.content, c.tokens,
                d.collection, d.title, d.heading
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE c.id IN ({placeholders}) AND d.deleted_at IS NULL
        """, list(chunk_ids)).fetchall()
        return [dict(row) for row in rows]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def iter_live_embeddings() -> Iterator[Tuple[int, np.ndarray]]:
    """Yield (chunk_id, embedding) for every chunk of a non-deleted document."""
    conn = get_connection()

    try:
        cursor = conn.execute("""
            SELECT c.id, c.embedding FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE d.deleted_at IS NULL
            ORDER BY c.id
        """)
        for row in cursor:
            yield row["id"], blob_to_embedding(row["embedding"])
    finally:
        conn.close()


def get_chunk_count(live_only: bool = False) -> int:
    """Get the total number of chunks in the database."""
    conn = get_connection()

    try:
        if live_only:
            row = conn.execute("""
                SELECT COUNT(*) FROM chunks c
                JOIN documents d ON d.id = c.document_id
                WHERE d.deleted_at IS NULL
            """).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
        return row[0]
    finally:
        conn.close()
