"""RAG orchestration: embed the question, retrieve, generate, attribute.

Handles:
- Semantic search over standalone embeddings
- Question answering over standalone embeddings (optionally ungrounded)
- Question answering over document chunks with navigable sources
"""
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
import structlog

from embedding_server import config
from embedding_server.errors import ValidationError
from embedding_server.rag.gateway import EmbeddingGateway
from embedding_server.rag.ingest import IngestPipeline, truncate
from embedding_server.rag.store import (
    DocumentChunkRecord,
    DocumentStore,
    EmbeddingStore,
    RetrievalResult,
    StoredRecord,
)

logger = structlog.get_logger()


def format_percent(similarity: float) -> str:
    """Similarity as a percentage string with one decimal, e.g. ``"87.5%"``."""
    return f"{round(similarity * 100, 1):.1f}%"


@dataclass(frozen=True)
class SearchHit:
    """A standalone record returned by semantic search."""

    id: int
    text: str
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "similarity": self.similarity}


@dataclass(frozen=True)
class RecordSource:
    """Attribution for an answer grounded on a standalone record."""

    id: int
    text: str
    similarity: float
    similarity_percent: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "similarity": self.similarity,
            "similarity_percent": self.similarity_percent,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class DocumentSource:
    """Attribution for an answer grounded on a document chunk."""

    document_id: int
    document_name: str
    chunk_index: int
    heading: str
    text: str
    similarity: float
    similarity_percent: str
    reference: str

    def to_dict(self, base_url: str = "") -> Dict[str, Any]:
        """Render the source; ``base_url`` turns the reference into a link."""
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "chunk_index": self.chunk_index,
            "heading": self.heading,
            "text": self.text,
            "similarity": self.similarity,
            "similarity_percent": self.similarity_percent,
            "link": base_url.rstrip("/") + self.reference,
        }


Source = Union[RecordSource, DocumentSource]


@dataclass(frozen=True)
class RAGAnswer:
    """Generated answer with the sources it was grounded on."""

    question: str
    answer: str
    used_retrieval: bool
    sources: List[Source] = field(default_factory=list)

    def to_dict(self, base_url: str = "") -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "used_retrieval": self.used_retrieval,
            "sources": [
                s.to_dict(base_url) if isinstance(s, DocumentSource) else s.to_dict()
                for s in self.sources
            ],
        }


class RAGOrchestrator:
    """Retrieval-augmented question answering over the stores."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        pipeline: IngestPipeline,
        embedding_store: Optional[EmbeddingStore] = None,
        document_store: Optional[DocumentStore] = None,
        preview_chars: int = None,
    ):
        """Initialize the orchestrator.

        Args:
            gateway: Embedding/generation backend
            pipeline: Pipeline used to embed queries (never saves them)
            embedding_store: Standalone records to search
            document_store: Document chunks to search
            preview_chars: Cap for source text previews (default from config)
        """
        self.gateway = gateway
        self.pipeline = pipeline
        self.embedding_store = embedding_store
        self.document_store = document_store
        self.preview_chars = preview_chars or config.SOURCE_PREVIEW_CHARS

    async def _embed_query(self, query: str) -> List[float]:
        result = await self.pipeline.embed_text(query, save=False)
        return result.vector

    @staticmethod
    def _validate(text: str, top_k: int, label: str = "Question") -> None:
        if not text or not text.strip():
            raise ValidationError(f"{label} cannot be empty")
        if top_k < 1:
            raise ValidationError("top_k must be at least 1", details=str(top_k))

    async def search(self, query: str, top_k: int = None, truncate_text: bool = True) -> List[SearchHit]:
        """Semantic search over standalone records.

        Raises:
            ValidationError: Blank query or top_k below 1
            UpstreamError: If embedding the query fails
        """
        top_k = config.SEARCH_TOP_K if top_k is None else top_k
        self._validate(query, top_k, label="Query")

        vector = await self._embed_query(query)
        results = self.embedding_store.search(vector, top_k)

        return [
            SearchHit(
                id=r.record.id,
                text=truncate(r.record.text, self.preview_chars) if truncate_text else r.record.text,
                similarity=r.similarity,
            )
            for r in results
        ]

    async def _generate_ungrounded(self, question: str) -> RAGAnswer:
        answer = await self.gateway.generate(question, None)
        return RAGAnswer(question=question, answer=answer, used_retrieval=False)

    async def answer(
        self, question: str, top_k: int = None, use_retrieval: bool = True
    ) -> RAGAnswer:
        """Answer a question, grounded on standalone records when possible.

        When retrieval is disabled or finds nothing the answer comes from
        general knowledge and ``used_retrieval`` is False.

        Raises:
            ValidationError: Blank question or top_k below 1
            UpstreamError: If embedding or generation fails
        """
        top_k = config.RAG_TOP_K if top_k is None else top_k
        self._validate(question, top_k)

        if not use_retrieval:
            logger.info("rag_retrieval_disabled", question_preview=question[:100])
            return await self._generate_ungrounded(question)

        vector = await self._embed_query(question)
        results: List[RetrievalResult[StoredRecord]] = self.embedding_store.search(vector, top_k)

        if not results:
            logger.info("no_relevant_context_found", question_preview=question[:100])
            return await self._generate_ungrounded(question)

        context = "\n\n".join(
            f"Record {r.record.id} (similarity: {format_percent(r.similarity)}):\n{r.record.text}"
            for r in results
        )
        answer = await self.gateway.generate(question, context)

        sources = [
            RecordSource(
                id=r.record.id,
                text=truncate(r.record.text, self.preview_chars),
                similarity=r.similarity,
                similarity_percent=format_percent(r.similarity),
                created_at=r.record.created_at,
            )
            for r in results
        ]

        logger.info(
            "rag_answer_generated",
            num_sources=len(sources),
            context_length=len(context),
            answer_length=len(answer),
        )

        return RAGAnswer(question=question, answer=answer, used_retrieval=True, sources=sources)

    @staticmethod
    def _chunk_label(record: DocumentChunkRecord) -> str:
        if record.heading_context:
            return f"{record.document_name} > {record.heading_context}"
        return record.document_name

    async def answer_from_documents(self, question: str, top_k: int = None) -> RAGAnswer:
        """Answer a question grounded on document chunks, with sources.

        Raises:
            ValidationError: Blank question or top_k below 1
            UpstreamError: If embedding or generation fails
        """
        top_k = config.RAG_TOP_K if top_k is None else top_k
        self._validate(question, top_k)

        vector = await self._embed_query(question)
        results: List[RetrievalResult[DocumentChunkRecord]] = self.document_store.search(vector, top_k)

        if not results:
            logger.info("no_relevant_chunks_found", question_preview=question[:100])
            return await self._generate_ungrounded(question)

        context = "\n\n".join(
            f"Document: {self._chunk_label(r.record)}\n"
            f"Chunk: {r.record.chunk_index + 1}\n"
            f"Similarity: {format_percent(r.similarity)}\n"
            f"Text: {r.record.text}"
            for r in results
        )
        answer = await self.gateway.generate(question, context)

        sources = [
            DocumentSource(
                document_id=r.record.document_id,
                document_name=r.record.document_name,
                chunk_index=r.record.chunk_index,
                heading=r.record.heading_context,
                text=truncate(r.record.text, self.preview_chars),
                similarity=r.similarity,
                similarity_percent=format_percent(r.similarity),
                reference=r.record.reference,
            )
            for r in results
        ]

        logger.info(
            "document_rag_answer_generated",
            num_sources=len(sources),
            context_length=len(context),
            answer_length=len(answer),
        )

        return RAGAnswer(question=question, answer=answer, used_retrieval=True, sources=sources)
