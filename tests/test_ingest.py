"""Tests for the ingestion pipeline."""
import asyncio

import pytest

from embedding_server.errors import UpstreamUnavailable, ValidationError
from embedding_server.rag.gateway import embed_texts
from embedding_server.rag.ingest import IngestPipeline, truncate
from embedding_server.rag.normalizer import average, normalize

from conftest import FakeGateway, letter_histogram, long_text


async def test_embed_short_text_stores_normalized_vector(pipeline, embedding_store, gateway):
    """Test that a short text is embedded once, normalized and stored."""
    result = await pipeline.embed_text("hello world")

    assert gateway.embed_calls == ["hello world"]
    assert result.id == 1
    assert result.vector == pytest.approx(normalize(letter_histogram("hello world")))
    assert embedding_store.find_by_id(1).text == "hello world"
    assert result.to_dict()["chunks"] is None


async def test_embed_long_text_averages_chunks(pipeline, gateway):
    """Test that a long text is embedded per chunk and averaged."""
    text = long_text(2400)
    result = await pipeline.embed_text(text)

    assert len(gateway.embed_calls) == 3
    expected = average([normalize(letter_histogram(t)) for t in gateway.embed_calls])
    assert result.vector == pytest.approx(expected)
    assert len(result.to_dict()["chunks"]) == 3


async def test_embed_without_saving(pipeline, embedding_store):
    """Test that save=False leaves the store untouched."""
    result = await pipeline.embed_text("query only", save=False)

    assert result.id is None
    assert embedding_store.count() == 0


async def test_embed_blank_text_rejected(pipeline, gateway):
    """Test that blank text is rejected before any gateway call."""
    with pytest.raises(ValidationError):
        await pipeline.embed_text("   ")
    assert gateway.embed_calls == []


async def test_embed_failure_stores_nothing(pipeline, embedding_store, gateway):
    """Test that a failing chunk aborts the embed and nothing is stored."""
    gateway.fail_embed_after = 1

    with pytest.raises(UpstreamUnavailable):
        await pipeline.embed_text(long_text(2400))

    assert embedding_store.count() == 0


async def test_embed_batch(pipeline, embedding_store):
    """Test that a batch stores one record per text in order."""
    results = await pipeline.embed_batch(["alpha", "beta"])

    assert [r.id for r in results] == [1, 2]
    assert [r.text for r in embedding_store.find_all()] == ["alpha", "beta"]


async def test_embed_batch_validation(pipeline, embedding_store):
    """Test that an empty list or a blank entry rejects the whole batch."""
    with pytest.raises(ValidationError):
        await pipeline.embed_batch([])
    with pytest.raises(ValidationError):
        await pipeline.embed_batch(["fine", " "])
    assert embedding_store.count() == 0


async def test_ingest_document_stores_chunks(pipeline, document_store):
    """Test that a 2400-char document yields three stored chunks."""
    upload = await pipeline.ingest_document("fox.md", long_text(2400))

    assert upload.chunks_created == 3
    assert upload.file_size == 2400
    chunks = document_store.find_chunks_by_document(upload.document_id)
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert document_store.find_document(upload.document_id).chunk_count == 3

    assert document_store.delete_document(upload.document_id)
    assert document_store.count_chunks() == 0


async def test_ingest_document_validation(pipeline, document_store):
    """Test that bad names and blank content are rejected."""
    with pytest.raises(ValidationError):
        await pipeline.ingest_document("notes.txt", "content")
    with pytest.raises(ValidationError):
        await pipeline.ingest_document("notes.md", "  ")
    with pytest.raises(ValidationError):
        await pipeline.ingest_document(" ", "content")
    assert document_store.count_documents() == 0


async def test_ingest_failure_keeps_written_chunks(pipeline, document_store, gateway):
    """Test that chunks stored before a gateway failure stay in place."""
    gateway.fail_embed_after = 2

    with pytest.raises(UpstreamUnavailable):
        await pipeline.ingest_document("fox.md", long_text(2400))

    assert document_store.count_documents() == 1
    assert document_store.count_chunks() == 2


async def test_ingest_title_and_headings(pipeline, document_store):
    """Test that frontmatter title and heading breadcrumbs are recorded."""
    content = (
        "# Guide\n\n" + long_text(1500) + "\n\n## Setup\n\n" + long_text(1500)
    )
    upload = await pipeline.ingest_document("guide.md", content)
    chunks = document_store.find_chunks_by_document(upload.document_id)

    assert chunks[0].heading_context == "# Guide"
    assert chunks[-1].heading_context == "# Guide > ## Setup"

    titled = await pipeline.ingest_document("titled.md", "---\ntitle: Handbook\n---\nBody text.")
    assert document_store.find_document(titled.document_id).title == "Handbook"


async def test_concurrent_ingest_preserves_order(gateway, embedding_store, document_store, chunker):
    """Test that parallel embedding stores chunks in chunk order."""
    pipeline = IngestPipeline(
        gateway,
        embedding_store=embedding_store,
        document_store=document_store,
        chunker=chunker,
        concurrency=3,
    )
    upload = await pipeline.ingest_document("fox.md", long_text(2400))

    chunks = document_store.find_chunks_by_document(upload.document_id)
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    for chunk in chunks:
        assert chunk.vector == pytest.approx(normalize(letter_histogram(chunk.text)))


async def test_embed_texts_keeps_input_order():
    """Test that slow early calls do not reorder results."""
    gateway = FakeGateway()
    gateway.delays = {"aaa": 0.05, "bbb": 0.01}

    vectors = await embed_texts(gateway, ["aaa", "bbb", "ccc"], concurrency=3)

    assert vectors == [letter_histogram(t) for t in ["aaa", "bbb", "ccc"]]
    assert sorted(gateway.embed_calls) == ["aaa", "bbb", "ccc"]


async def test_embed_texts_failure_propagates():
    """Test that one failing call fails the whole parallel embed."""
    gateway = FakeGateway()
    gateway.fail_embed_after = 1
    gateway.delays = {"aaa": 0.01}

    with pytest.raises(UpstreamUnavailable):
        await embed_texts(gateway, ["aaa", "bbb", "ccc"], concurrency=3)
    await asyncio.sleep(0)


async def test_ingest_directory(pipeline, document_store, tmp_path):
    """Test that markdown files are ingested and failures are counted."""
    (tmp_path / "a.md").write_text("# A\n\nFirst document.", encoding="utf-8")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "b.md").write_text("Second document.", encoding="utf-8")
    (tmp_path / "empty.md").write_text("   ", encoding="utf-8")
    (tmp_path / "skip.txt").write_text("Not markdown.", encoding="utf-8")

    seen = []
    stats = await pipeline.ingest_directory(tmp_path, progress_callback=lambda i, n, p: seen.append(p.name))

    assert stats == {"files_processed": 2, "files_failed": 1, "chunks_created": 2}
    assert sorted(seen) == ["a.md", "b.md", "empty.md"]
    assert sorted(d.file_name for d in document_store.find_all_documents()) == ["a.md", "b.md"]


async def test_ingest_directory_missing(pipeline, tmp_path):
    """Test that a missing directory raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        await pipeline.ingest_directory(tmp_path / "missing")


def test_truncate():
    """Test that only over-long text gets the ellipsis."""
    assert truncate("short", 10) == "short"
    assert truncate("x" * 12, 10) == "x" * 10 + "..."
