"""Tests for overlapping text chunking."""
import pytest

from embedding_server.rag.chunker import TextChunker, chunk_text

from conftest import PIPELINE_CHUNK_PARAMS, long_text


def test_short_text_is_single_chunk():
    """Test that text within max size comes back as one trimmed chunk."""
    chunks = chunk_text("  Hello world.  ")

    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].text == "Hello world."
    assert chunks[0].start_offset == 0
    assert chunks[0].end_offset == len("Hello world.")


def test_blank_text_has_no_chunks():
    """Test that empty and whitespace-only text produce no chunks."""
    assert chunk_text("") == []
    assert chunk_text("   \n\t ") == []


def test_token_estimate_is_at_least_one():
    """Test that tiny chunks still count as one token."""
    chunks = chunk_text("Hi")
    assert chunks[0].estimated_token_count == 1


def test_long_text_splits_on_sentences(chunker):
    """Test that a 2400-char text with pipeline settings gives three sentence-aligned chunks."""
    text = long_text(2400)
    chunks = chunker.chunk_text(text)

    assert [(c.start_offset, c.end_offset) for c in chunks] == [
        (0, 990),
        (890, 1890),
        (1790, 2400),
    ]
    assert [c.index for c in chunks] == [0, 1, 2]
    assert chunks[0].text.endswith("dog.")
    assert chunks[1].text.endswith("dog.")


def test_chunks_overlap_and_cover_text(chunker):
    """Test that consecutive chunks overlap and the last one reaches the end."""
    text = long_text(5000)
    chunks = chunker.chunk_text(text)

    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(text)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_offset > previous.start_offset
        assert current.start_offset <= previous.end_offset


def test_chunks_respect_max_size(chunker):
    """Test that no chunk exceeds the max character budget."""
    for chunk in chunker.chunk_text(long_text(8000)):
        assert len(chunk.text) <= chunker.max_chars
        assert chunk.end_offset - chunk.start_offset <= chunker.max_chars


def test_chunking_is_deterministic(chunker):
    """Test that the same input always gives the same chunks."""
    text = long_text(3333)
    assert chunker.chunk_text(text) == chunker.chunk_text(text)


def test_breaks_on_whitespace_without_sentences(chunker):
    """Test that text without terminators is split at word boundaries."""
    text = ("lorem " * 400).strip()
    chunks = chunker.chunk_text(text)

    assert len(chunks) > 1
    for chunk in chunks[:-1]:
        assert text[chunk.end_offset - 1].isspace()
        assert chunk.text.endswith("lorem")


def test_hard_cut_without_boundaries(chunker):
    """Test that text with no spaces is cut at the max size."""
    text = "x" * 5000
    chunks = chunker.chunk_text(text)

    assert chunks[0].end_offset == chunker.max_chars
    assert chunks[1].start_offset == chunker.max_chars - chunker.overlap_chars
    assert chunks[-1].end_offset == len(text)


def test_pathological_input_terminates():
    """Test that 100k characters without boundaries chunk in bounded steps."""
    chunks = chunk_text("a" * 100_000)

    assert len(chunks) == 27
    assert chunks[-1].end_offset == 100_000


def test_forced_progress_when_overlap_would_stall():
    """Test that a short word break larger than the overlap step still advances."""
    text = "ab cdefghijklmnopqrstuvwxyz"
    chunks = chunk_text(text, min_tokens=0, max_tokens=10, overlap_tokens=8, chars_per_token=1)

    assert chunks[0].text == "ab"
    assert chunks[1].start_offset == 3
    starts = [c.start_offset for c in chunks]
    assert starts == sorted(set(starts))
    assert chunks[-1].end_offset == len(text)


def test_offsets_refer_to_trimmed_text():
    """Test that leading whitespace does not shift offsets."""
    chunks = chunk_text("\n\n   " + "y" * 50)
    assert chunks[0].start_offset == 0
    assert chunks[0].end_offset == 50


@pytest.mark.parametrize(
    "params",
    [
        {"max_tokens": 0},
        {"chars_per_token": 0},
        {"min_tokens": 2000, "max_tokens": 1000},
        {"overlap_tokens": 1000, "max_tokens": 1000},
        {"overlap_tokens": -1},
    ],
)
def test_invalid_parameters_rejected(params):
    """Test that inconsistent chunk parameters raise ValueError."""
    with pytest.raises(ValueError):
        TextChunker(**params)


def test_settings_report_parameters():
    """Test that settings mirror the constructor arguments."""
    assert TextChunker(**PIPELINE_CHUNK_PARAMS).settings() == PIPELINE_CHUNK_PARAMS
