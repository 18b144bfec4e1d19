"""Ingestion pipeline: chunk, embed, normalize, store.

Two paths:
- ad-hoc texts: chunk embeddings are averaged into one vector which is
  optionally stored in the embedding store
- documents: every chunk is stored with its own vector under the document
"""
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from dataclasses import dataclass
import structlog

from embedding_server import config
from embedding_server.errors import ValidationError
from embedding_server.rag.chunker import Chunk, TextChunker, chunker_from_config
from embedding_server.rag.gateway import EmbeddingGateway, embed_texts
from embedding_server.rag.md_parser import MarkdownParser
from embedding_server.rag.normalizer import Vector, average, normalize
from embedding_server.rag.store import DocumentStore, EmbeddingStore

logger = structlog.get_logger()

TEXT_PREVIEW_CHARS = 500
CHUNK_PREVIEW_CHARS = 200
VECTOR_PREVIEW_DIMS = 10


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, marking the cut with an ellipsis."""
    return text[:limit] + "..." if len(text) > limit else text


@dataclass(frozen=True)
class ChunkEmbedding:
    """A chunk and its normalized vector."""

    chunk: Chunk
    vector: Vector

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.chunk.index,
            "text": truncate(self.chunk.text, CHUNK_PREVIEW_CHARS),
            "token_count": self.chunk.estimated_token_count,
            "embedding": self.vector[:VECTOR_PREVIEW_DIMS],
        }


@dataclass(frozen=True)
class EmbedResult:
    """Final vector of an ad-hoc text plus per-chunk detail."""

    id: Optional[int]
    text: str
    vector: Vector
    chunks: List[ChunkEmbedding]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": truncate(self.text, TEXT_PREVIEW_CHARS),
            "embedding": self.vector,
            "chunks": [c.to_dict() for c in self.chunks] if len(self.chunks) > 1 else None,
        }


@dataclass(frozen=True)
class DocumentUpload:
    """Outcome of a document ingestion."""

    document_id: int
    file_name: str
    file_size: int
    chunks_created: int
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "chunks_created": self.chunks_created,
            "created_at": self.created_at,
        }


class IngestPipeline:
    """Drives chunker, gateway, normalizer and stores for new text."""

    def __init__(
        self,
        gateway: EmbeddingGateway,
        embedding_store: Optional[EmbeddingStore] = None,
        document_store: Optional[DocumentStore] = None,
        chunker: Optional[TextChunker] = None,
        concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            gateway: Embedding backend
            embedding_store: Store for ad-hoc texts (required to save them)
            document_store: Store for documents (required to ingest them)
            chunker: Text chunker (default built from config)
            concurrency: Embed calls in flight per request (default from config)
        """
        self.gateway = gateway
        self.embedding_store = embedding_store
        self.document_store = document_store
        self.chunker = chunker or chunker_from_config()
        self.concurrency = max(1, concurrency or config.EMBED_CONCURRENCY)
        self.parser = MarkdownParser()

        logger.info(
            "ingest_pipeline_initialized",
            concurrency=self.concurrency,
            **self.chunker.settings(),
        )

    async def _embed_chunks(
        self,
        chunks: Sequence[Chunk],
        on_batch: Optional[Callable[[List[ChunkEmbedding]], None]] = None,
    ) -> List[ChunkEmbedding]:
        """Embed and normalize chunks in order, ``concurrency`` at a time.

        ``on_batch`` sees each finished batch before the next one starts.
        """
        embedded: List[ChunkEmbedding] = []

        for i in range(0, len(chunks), self.concurrency):
            batch = chunks[i : i + self.concurrency]
            raw_vectors = await embed_texts(
                self.gateway, [c.text for c in batch], self.concurrency
            )
            batch_embedded = [
                ChunkEmbedding(chunk=chunk, vector=normalize(raw))
                for chunk, raw in zip(batch, raw_vectors)
            ]

            if on_batch:
                on_batch(batch_embedded)
            embedded.extend(batch_embedded)

            logger.debug(
                "chunks_embedded",
                batch_size=len(batch),
                total_so_far=len(embedded),
            )

        return embedded

    async def embed_text(self, text: str, save: bool = True) -> EmbedResult:
        """Embed one text, averaging over chunks when it is long.

        Args:
            text: Text to embed
            save: Persist the final vector in the embedding store

        Returns:
            EmbedResult (``id`` is None when not saved)

        Raises:
            ValidationError: If the text is blank
            UpstreamError: If the gateway fails; nothing is stored
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        chunks = self.chunker.chunk_text(text)
        embedded = await self._embed_chunks(chunks)

        if len(embedded) == 1:
            final_vector = embedded[0].vector
        else:
            final_vector = average([e.vector for e in embedded])

        record_id = None
        if save:
            if self.embedding_store is None:
                raise RuntimeError("No embedding store configured")
            record_id = self.embedding_store.insert(text, final_vector)

        logger.info(
            "text_embedded",
            id=record_id,
            text_length=len(text),
            chunk_count=len(chunks),
            dimension=len(final_vector),
        )

        return EmbedResult(id=record_id, text=text, vector=final_vector, chunks=embedded)

    async def embed_batch(self, texts: Sequence[str], save: bool = True) -> List[EmbedResult]:
        """Embed several texts one after another.

        Raises:
            ValidationError: If the list is empty or any text is blank
        """
        if not texts:
            raise ValidationError("Texts list cannot be empty")
        for position, text in enumerate(texts):
            if not text or not text.strip():
                raise ValidationError("Text cannot be empty", details=f"texts[{position}]")

        return [await self.embed_text(text, save=save) for text in texts]

    async def ingest_document(self, file_name: str, content: str) -> DocumentUpload:
        """Store a markdown document and one embedded record per chunk.

        Chunks already written stay in place if the gateway fails partway;
        the failure propagates to the caller.

        Raises:
            ValidationError: Blank name, blank content or non-.md file
            UpstreamError: If the gateway fails
        """
        if self.document_store is None:
            raise RuntimeError("No document store configured")
        if not file_name or not file_name.strip():
            raise ValidationError("File name cannot be empty")
        if not content or not content.strip():
            raise ValidationError("Content cannot be empty")
        if not file_name.lower().endswith(".md"):
            raise ValidationError("Only .md files are supported", details=file_name)

        doc = self.parser.parse(content)
        document_id = self.document_store.insert_document(file_name, content, title=doc.title)

        chunks = self.chunker.chunk_text(content)

        def store_batch(batch: List[ChunkEmbedding]) -> None:
            for item in batch:
                self.document_store.insert_chunk(
                    document_id,
                    item.chunk,
                    item.vector,
                    heading_context=self.parser.get_heading_context(
                        doc.headings, item.chunk.start_offset
                    ),
                )

        try:
            await self._embed_chunks(chunks, on_batch=store_batch)
        except Exception as e:
            logger.error(
                "document_ingestion_failed",
                document_id=document_id,
                file_name=file_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        document = self.document_store.find_document(document_id)

        logger.info(
            "document_ingested",
            document_id=document_id,
            file_name=file_name,
            chunks_created=len(chunks),
        )

        return DocumentUpload(
            document_id=document_id,
            file_name=file_name,
            file_size=document.file_size,
            chunks_created=len(chunks),
            created_at=document.created_at,
        )

    async def ingest_directory(
        self, docs_dir: Path, progress_callback=None
    ) -> Dict[str, Any]:
        """Ingest every markdown file under a directory as a document.

        A failing file is logged and counted; the rest continue.

        Args:
            docs_dir: Directory searched recursively for .md files
            progress_callback: Optional callback function(current, total, file_path)

        Returns:
            Dictionary with ingestion statistics

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        if not docs_dir.exists():
            raise FileNotFoundError(f"Documents directory not found: {docs_dir}")

        md_files = sorted(docs_dir.rglob("*.md"))
        logger.info("markdown_files_discovered", count=len(md_files), docs_dir=str(docs_dir))

        stats = {"files_processed": 0, "files_failed": 0, "chunks_created": 0}

        for idx, file_path in enumerate(md_files, 1):
            if progress_callback:
                progress_callback(idx, len(md_files), file_path)
            try:
                content = file_path.read_text(encoding="utf-8")
                upload = await self.ingest_document(file_path.name, content)
            except Exception as e:
                logger.error("file_ingestion_failed", path=str(file_path), error=str(e))
                stats["files_failed"] += 1
                continue

            stats["files_processed"] += 1
            stats["chunks_created"] += upload.chunks_created

        logger.info("ingest_directory_completed", **stats)
        return stats
