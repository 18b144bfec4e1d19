"""Text chunking with overlap for the RAG pipeline.

Character-based chunking with token counts estimated from a fixed
characters-per-token ratio, so no tokenizer is needed.
"""
from typing import List
from dataclasses import dataclass
import structlog

from embedding_server import config

logger = structlog.get_logger()

SENTENCE_ENDERS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


@dataclass(frozen=True)
class Chunk:
    """A chunk of text with its position in the trimmed source text."""

    index: int
    text: str
    start_offset: int
    end_offset: int
    estimated_token_count: int


class TextChunker:
    """Splits text into overlapping chunks on sentence or word boundaries."""

    def __init__(
        self,
        min_tokens: int = 500,
        max_tokens: int = 1000,
        overlap_tokens: int = 75,
        chars_per_token: int = 4,
    ):
        """Initialize the text chunker.

        Args:
            min_tokens: Smallest chunk worth breaking at a boundary
            max_tokens: Hard upper bound for a chunk
            overlap_tokens: Overlap carried into the next chunk
            chars_per_token: Characters assumed per token
        """
        if chars_per_token < 1:
            raise ValueError(f"chars_per_token must be positive, got {chars_per_token}")
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be positive, got {max_tokens}")
        if not 0 <= min_tokens <= max_tokens:
            raise ValueError(
                f"min_tokens ({min_tokens}) must be between 0 and "
                f"max_tokens ({max_tokens})"
            )
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError(
                f"Overlap ({overlap_tokens}) must be less than "
                f"max_tokens ({max_tokens})"
            )

        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self.chars_per_token = chars_per_token

        self.min_chars = min_tokens * chars_per_token
        self.max_chars = max_tokens * chars_per_token
        self.overlap_chars = overlap_tokens * chars_per_token

    def chunk_text(self, text: str) -> List[Chunk]:
        """Split text into overlapping chunks.

        Offsets refer to the trimmed text. Chunk text is the trimmed slice
        between the offsets.

        Args:
            text: Text to chunk

        Returns:
            Ordered list of Chunk objects (empty for blank input)
        """
        trimmed = text.strip()
        text_length = len(trimmed)

        if not trimmed:
            return []

        if text_length <= self.max_chars:
            return [
                Chunk(
                    index=0,
                    text=trimmed,
                    start_offset=0,
                    end_offset=text_length,
                    estimated_token_count=self.estimate_tokens(trimmed),
                )
            ]

        chunks: List[Chunk] = []
        current = 0
        iterations = 0

        while current < text_length:
            iterations += 1
            end = min(current + self.max_chars, text_length)

            if end < text_length:
                end = self._find_break_point(trimmed, current, end)

            chunk_content = trimmed[current:end].strip()

            if chunk_content:
                chunks.append(
                    Chunk(
                        index=len(chunks),
                        text=chunk_content,
                        start_offset=current,
                        end_offset=end,
                        estimated_token_count=self.estimate_tokens(chunk_content),
                    )
                )

            if end >= text_length:
                break

            previous_start = current
            current = end - self.overlap_chars

            # Forced progress
            if current <= previous_start:
                current = end

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
            iterations=iterations,
        )

        return chunks

    def _find_break_point(self, text: str, start: int, max_end: int) -> int:
        """Find where a chunk starting at ``start`` should end.

        Prefers the last sentence terminator past the minimum chunk size,
        then the last whitespace boundary, then a hard cut at ``max_end``.
        """
        threshold = start + self.min_chars

        sentence_end = self._last_sentence_end(text, threshold, max_end)
        if sentence_end > threshold:
            return sentence_end

        word_end = self._last_word_end(text, max_end)
        if word_end > threshold:
            return word_end

        return max_end

    @staticmethod
    def _last_sentence_end(text: str, lower: int, upper: int) -> int:
        """Position just past the last sentence terminator inside [lower, upper)."""
        last_end = -1
        for ender in SENTENCE_ENDERS:
            pos = text.rfind(ender, lower, upper)
            if pos != -1:
                last_end = max(last_end, pos + len(ender))
        return last_end

    @staticmethod
    def _last_word_end(text: str, end: int) -> int:
        """Position just past the last whitespace character at or before ``end``."""
        pos = end
        while pos > 0 and not text[pos - 1].isspace():
            pos -= 1
        return pos if pos > 0 else end

    def estimate_tokens(self, text: str) -> int:
        return max(1, len(text) // self.chars_per_token)

    def settings(self) -> dict:
        """Chunk settings as reported by the stats endpoint."""
        return {
            "min_tokens": self.min_tokens,
            "max_tokens": self.max_tokens,
            "overlap_tokens": self.overlap_tokens,
            "chars_per_token": self.chars_per_token,
        }


def chunker_from_config() -> TextChunker:
    """Build a chunker with the configured pipeline parameters."""
    return TextChunker(
        min_tokens=config.CHUNK_MIN_TOKENS,
        max_tokens=config.CHUNK_MAX_TOKENS,
        overlap_tokens=config.CHUNK_OVERLAP_TOKENS,
        chars_per_token=config.CHARS_PER_TOKEN,
    )


# Convenience function
def chunk_text(
    text: str,
    min_tokens: int = 500,
    max_tokens: int = 1000,
    overlap_tokens: int = 75,
    chars_per_token: int = 4,
) -> List[Chunk]:
    """Chunk text with the given parameters (convenience function).

    Args:
        text: Text to chunk
        min_tokens: Smallest chunk worth breaking at a boundary
        max_tokens: Hard upper bound for a chunk
        overlap_tokens: Overlap carried into the next chunk
        chars_per_token: Characters assumed per token

    Returns:
        List of Chunk objects
    """
    chunker = TextChunker(min_tokens, max_tokens, overlap_tokens, chars_per_token)
    return chunker.chunk_text(text)
