"""Pytest configuration and fixtures for the embedding server tests."""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from embedding_server.db import Database
from embedding_server.errors import EmbeddingServerError, UpstreamUnavailable
from embedding_server.main import create_app
from embedding_server.rag.chunker import TextChunker
from embedding_server.rag.gateway import EmbeddingGateway
from embedding_server.rag.ingest import IngestPipeline
from embedding_server.rag.orchestrator import RAGOrchestrator
from embedding_server.rag.store import DocumentStore, InMemoryEmbeddingStore


# Pipeline chunk parameters (the configured defaults)
PIPELINE_CHUNK_PARAMS = {
    "min_tokens": 100,
    "max_tokens": 256,
    "overlap_tokens": 25,
    "chars_per_token": 4,
}

SENTENCE = "The quick brown fox jumps over the lazy dog."


def letter_histogram(text: str) -> List[float]:
    """Deterministic fake embedding: letter counts plus a constant component."""
    lowered = text.lower()
    return [float(lowered.count(c)) for c in "abcdefghijklmnopqrstuvwxyz"] + [1.0]


def long_text(length: int = 2400) -> str:
    """Repeated sentences cut to exactly ``length`` characters."""
    repeated = " ".join([SENTENCE] * (length // len(SENTENCE) + 2))
    return repeated[:length]


class FakeGateway(EmbeddingGateway):
    """In-process gateway with scripted vectors, answers and failures."""

    def __init__(
        self,
        vectors: Optional[Dict[str, Sequence[float]]] = None,
        answer: str = "Generated answer",
    ):
        self.vectors = dict(vectors or {})
        self.answer = answer
        self.embed_calls: List[str] = []
        self.generate_calls: List[Tuple[str, Optional[str]]] = []
        self.fail_embed_after: Optional[int] = None
        self.generate_error: Optional[EmbeddingServerError] = None
        self.delays: Dict[str, float] = {}
        self.available = True

    async def embed(self, text: str) -> List[float]:
        if self.fail_embed_after is not None and len(self.embed_calls) >= self.fail_embed_after:
            raise UpstreamUnavailable("Ollama is unreachable")
        self.embed_calls.append(text)
        if text in self.delays:
            await asyncio.sleep(self.delays[text])
        if text in self.vectors:
            return list(self.vectors[text])
        return letter_histogram(text)

    async def generate(self, question: str, context: Optional[str] = None) -> str:
        self.generate_calls.append((question, context))
        if self.generate_error is not None:
            raise self.generate_error
        return self.answer

    async def is_available(self) -> bool:
        return self.available


@pytest.fixture
def gateway() -> FakeGateway:
    """Fresh fake gateway."""
    return FakeGateway()


@pytest.fixture
def database():
    """Initialized in-memory SQLite database."""
    db = Database(":memory:")
    db.init()
    yield db
    db.close()


@pytest.fixture
def embedding_store() -> InMemoryEmbeddingStore:
    return InMemoryEmbeddingStore()


@pytest.fixture
def document_store(database) -> DocumentStore:
    return DocumentStore(database)


@pytest.fixture
def chunker() -> TextChunker:
    """Chunker with the pipeline's configured defaults."""
    return TextChunker(**PIPELINE_CHUNK_PARAMS)


@pytest.fixture
def pipeline(gateway, embedding_store, document_store, chunker) -> IngestPipeline:
    return IngestPipeline(
        gateway,
        embedding_store=embedding_store,
        document_store=document_store,
        chunker=chunker,
        concurrency=1,
    )


@pytest.fixture
def orchestrator(gateway, pipeline, embedding_store, document_store) -> RAGOrchestrator:
    return RAGOrchestrator(
        gateway,
        pipeline,
        embedding_store=embedding_store,
        document_store=document_store,
        preview_chars=300,
    )


@pytest.fixture
async def client(gateway):
    """Quart test client over an in-memory database and the fake gateway."""
    app = create_app(
        database=Database(":memory:"),
        gateway=gateway,
        embedding_store=InMemoryEmbeddingStore(),
    )
    async with app.test_app() as test_app:
        yield test_app.test_client()
