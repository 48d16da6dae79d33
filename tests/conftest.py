"""Pytest configuration and shared fixtures."""
import pytest

from app import db
from app.rag.chunker import TokenChunker
from app.rag.embedder import EmbeddingGenerator
from app.rag.ingest import IngestPipeline
from app.rag.store_faiss import FAISSVectorStore
from tests.fakes import DIM, CharEncoding, FakeEmbeddingClient, SleepRecorder


@pytest.fixture(autouse=True)
def temp_database(tmp_path, monkeypatch):
    """Point the SQLite helpers at a fresh database for every test."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "test.sqlite")
    db.init_database()
    return db.DB_PATH


@pytest.fixture
def char_chunker():
    return TokenChunker(
        max_tokens=1000,
        overlap_tokens=100,
        min_chunk_length=50,
        encoding=CharEncoding(),
    )


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def embedder(embedding_client, sleep_recorder):
    return EmbeddingGenerator(
        embedding_client,
        dimensions=DIM,
        base_delay=0.5,
        sleep=sleep_recorder,
    )


@pytest.fixture
def vector_store(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path / "index", dimension=DIM)
    store.init_new_index()
    return store


@pytest.fixture
def pipeline(embedder, vector_store, char_chunker, sleep_recorder):
    return IngestPipeline(
        embedder,
        vector_store,
        chunker=char_chunker,
        chunk_delay=0.1,
        sleep=sleep_recorder,
    )
