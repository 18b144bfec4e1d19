"""Retrieval stores with exact top-K cosine similarity search.

Two stores:
- ``EmbeddingStore``: standalone ``(id, text, vector, created_at)`` records,
  in memory or in SQLite
- ``DocumentStore``: documents and their chunks in SQLite, with cascading
  delete

Search is a linear scan computing cosine similarity against every stored
vector. Records are immutable once inserted; deletes only remove.
"""
import itertools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar
import structlog

from embedding_server.db import Database
from embedding_server.rag.chunker import Chunk
from embedding_server.rag.normalizer import cosine_similarity

logger = structlog.get_logger()

RecordT = TypeVar("RecordT")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class StoredRecord:
    """A standalone text with its normalized embedding."""

    id: int
    text: str
    vector: List[float]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "embedding": self.vector,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class DocumentRecord:
    """An uploaded document (content itself is not carried around)."""

    id: int
    file_name: str
    file_size: int
    created_at: str
    title: Optional[str] = None
    chunk_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "title": self.title,
            "chunk_count": self.chunk_count,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class DocumentChunkRecord:
    """A chunk of a document with its normalized embedding."""

    id: int
    document_id: int
    document_name: str
    chunk_index: int
    text: str
    vector: List[float] = field(repr=False)
    start_offset: int
    end_offset: int
    token_count: int
    heading_context: str = ""

    @property
    def reference(self) -> str:
        """Logical address of this chunk on the HTTP surface."""
        return f"/api/documents/{self.document_id}/chunks/{self.chunk_index}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "chunk_index": self.chunk_index,
            "text": self.text,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "token_count": self.token_count,
            "heading_context": self.heading_context,
        }


@dataclass(frozen=True)
class RetrievalResult(Generic[RecordT]):
    """A record paired with its similarity to a query."""

    record: RecordT
    similarity: float


def rank_by_similarity(
    query_vector: Sequence[float],
    records: Iterable[Any],
    top_k: int,
) -> List[RetrievalResult]:
    """Score every record against the query and keep the best ``top_k``.

    Ordered by descending similarity; equal scores keep ascending id order.

    Raises:
        DimensionMismatch: If a stored vector differs in length from the query
    """
    if top_k <= 0:
        return []

    scored = [
        RetrievalResult(record=record, similarity=cosine_similarity(query_vector, record.vector))
        for record in records
    ]
    scored.sort(key=lambda result: (-result.similarity, result.record.id))
    return scored[:top_k]


class EmbeddingStore(ABC):
    """Append-only store of standalone embedding records."""

    @abstractmethod
    def insert(self, text: str, vector: Sequence[float]) -> int:
        """Store a record and return its freshly assigned id."""

    @abstractmethod
    def find_by_id(self, record_id: int) -> Optional[StoredRecord]:
        """Return the record or None."""

    @abstractmethod
    def find_all(self) -> List[StoredRecord]:
        """Return every record in insertion order."""

    @abstractmethod
    def delete(self, record_id: int) -> bool:
        """Remove a record. True if it existed."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored records."""

    def search(self, query_vector: Sequence[float], top_k: int) -> List[RetrievalResult]:
        """Top-K records by cosine similarity to ``query_vector``."""
        results = rank_by_similarity(query_vector, self.find_all(), top_k)
        logger.info(
            "embedding_search_completed",
            top_k=top_k,
            results_found=len(results),
            top_similarity=results[0].similarity if results else None,
        )
        return results


class InMemoryEmbeddingStore(EmbeddingStore):
    """Embedding store kept in a dict; contents are lost on restart."""

    def __init__(self):
        self._records: Dict[int, StoredRecord] = {}
        self._ids = itertools.count(1)

    def insert(self, text: str, vector: Sequence[float]) -> int:
        record_id = next(self._ids)
        self._records[record_id] = StoredRecord(
            id=record_id,
            text=text,
            vector=list(vector),
            created_at=utc_now(),
        )
        return record_id

    def find_by_id(self, record_id: int) -> Optional[StoredRecord]:
        return self._records.get(record_id)

    def find_all(self) -> List[StoredRecord]:
        return list(self._records.values())

    def delete(self, record_id: int) -> bool:
        return self._records.pop(record_id, None) is not None

    def count(self) -> int:
        return len(self._records)


class SQLiteEmbeddingStore(EmbeddingStore):
    """Embedding store persisted in the ``embeddings`` table."""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _row_to_record(row) -> StoredRecord:
        return StoredRecord(
            id=row["id"],
            text=row["text"],
            vector=json.loads(row["embedding_json"]),
            created_at=row["created_at"],
        )

    def insert(self, text: str, vector: Sequence[float]) -> int:
        with self.database.transaction() as cursor:
            cursor.execute(
                "INSERT INTO embeddings (text, embedding_json, created_at) VALUES (?, ?, ?)",
                (text, json.dumps(list(vector)), utc_now()),
            )
            record_id = cursor.lastrowid
        logger.debug("embedding_stored", id=record_id, dimension=len(vector))
        return record_id

    def find_by_id(self, record_id: int) -> Optional[StoredRecord]:
        row = self.database.connection.execute(
            "SELECT id, text, embedding_json, created_at FROM embeddings WHERE id = ?",
            (record_id,),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def find_all(self) -> List[StoredRecord]:
        rows = self.database.connection.execute(
            "SELECT id, text, embedding_json, created_at FROM embeddings ORDER BY id"
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def delete(self, record_id: int) -> bool:
        with self.database.transaction() as cursor:
            cursor.execute("DELETE FROM embeddings WHERE id = ?", (record_id,))
            deleted = cursor.rowcount > 0
        logger.info("embedding_deleted", id=record_id, deleted=deleted)
        return deleted

    def count(self) -> int:
        return self.database.connection.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]


class DocumentStore:
    """Documents and their chunks persisted in SQLite."""

    CHUNK_COLUMNS = """
        c.id, c.document_id, d.file_name, c.chunk_index, c.text,
        c.embedding_json, c.start_offset, c.end_offset, c.token_count,
        c.heading_context
    """

    DOCUMENT_QUERY = """
        SELECT d.id, d.file_name, d.file_size, d.title, d.created_at,
               (SELECT COUNT(*) FROM chunks c WHERE c.document_id = d.id) AS chunk_count
        FROM documents d
    """

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _row_to_document(row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            file_name=row["file_name"],
            file_size=row["file_size"],
            created_at=row["created_at"],
            title=row["title"],
            chunk_count=row["chunk_count"],
        )

    @staticmethod
    def _row_to_chunk(row) -> DocumentChunkRecord:
        return DocumentChunkRecord(
            id=row["id"],
            document_id=row["document_id"],
            document_name=row["file_name"],
            chunk_index=row["chunk_index"],
            text=row["text"],
            vector=json.loads(row["embedding_json"]),
            start_offset=row["start_offset"],
            end_offset=row["end_offset"],
            token_count=row["token_count"],
            heading_context=row["heading_context"] or "",
        )

    def insert_document(self, file_name: str, content: str, title: Optional[str] = None) -> int:
        """Store a document and return its id.

        ``file_size`` is the UTF-8 byte length of the content.
        """
        with self.database.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO documents (file_name, file_size, title, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (file_name, len(content.encode("utf-8")), title, content, utc_now()),
            )
            document_id = cursor.lastrowid
        logger.info("document_stored", id=document_id, file_name=file_name)
        return document_id

    def insert_chunk(
        self,
        document_id: int,
        chunk: Chunk,
        vector: Sequence[float],
        heading_context: Optional[str] = None,
    ) -> int:
        """Store one chunk of a document with its normalized vector."""
        with self.database.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO chunks (
                    document_id, chunk_index, text, embedding_json,
                    start_offset, end_offset, token_count, heading_context, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document_id,
                    chunk.index,
                    chunk.text,
                    json.dumps(list(vector)),
                    chunk.start_offset,
                    chunk.end_offset,
                    chunk.estimated_token_count,
                    heading_context,
                    utc_now(),
                ),
            )
            return cursor.lastrowid

    def find_document(self, document_id: int) -> Optional[DocumentRecord]:
        row = self.database.connection.execute(
            self.DOCUMENT_QUERY + " WHERE d.id = ?", (document_id,)
        ).fetchone()
        return self._row_to_document(row) if row else None

    def find_all_documents(self) -> List[DocumentRecord]:
        rows = self.database.connection.execute(self.DOCUMENT_QUERY + " ORDER BY d.id").fetchall()
        return [self._row_to_document(row) for row in rows]

    def find_document_content(self, document_id: int) -> Optional[str]:
        row = self.database.connection.execute(
            "SELECT content FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return row["content"] if row else None

    def find_chunks_by_document(self, document_id: int) -> List[DocumentChunkRecord]:
        """All chunks of a document ordered by chunk index."""
        rows = self.database.connection.execute(
            f"""
            SELECT {self.CHUNK_COLUMNS}
            FROM chunks c JOIN documents d ON d.id = c.document_id
            WHERE c.document_id = ?
            ORDER BY c.chunk_index
            """,
            (document_id,),
        ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def find_chunk(self, document_id: int, chunk_index: int) -> Optional[DocumentChunkRecord]:
        row = self.database.connection.execute(
            f"""
            SELECT {self.CHUNK_COLUMNS}
            FROM chunks c JOIN documents d ON d.id = c.document_id
            WHERE c.document_id = ? AND c.chunk_index = ?
            """,
            (document_id, chunk_index),
        ).fetchone()
        return self._row_to_chunk(row) if row else None

    def find_all_chunks(self) -> List[DocumentChunkRecord]:
        rows = self.database.connection.execute(
            f"""
            SELECT {self.CHUNK_COLUMNS}
            FROM chunks c JOIN documents d ON d.id = c.document_id
            ORDER BY c.id
            """
        ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def delete_document(self, document_id: int) -> bool:
        """Delete a document; its chunks go with it."""
        with self.database.transaction() as cursor:
            cursor.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            chunks_deleted = cursor.rowcount
            cursor.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            deleted = cursor.rowcount > 0
        logger.info(
            "document_deleted",
            id=document_id,
            deleted=deleted,
            chunks_deleted=chunks_deleted,
        )
        return deleted

    def count_documents(self) -> int:
        return self.database.connection.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def count_chunks(self) -> int:
        return self.database.connection.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def search(self, query_vector: Sequence[float], top_k: int) -> List[RetrievalResult]:
        """Top-K chunks across all documents by cosine similarity."""
        results = rank_by_similarity(query_vector, self.find_all_chunks(), top_k)
        logger.info(
            "chunk_search_completed",
            top_k=top_k,
            results_found=len(results),
            top_similarity=results[0].similarity if results else None,
        )
        return results
