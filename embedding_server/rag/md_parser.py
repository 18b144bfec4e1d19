"""Markdown parser for uploaded documents.

Handles:
- YAML frontmatter parsing (the ``title`` field names the document)
- Heading hierarchy extraction, so each chunk can carry the section it
  starts in
"""
import re
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass
import yaml
import structlog

logger = structlog.get_logger()


@dataclass
class Heading:
    """Represents a markdown heading with hierarchy."""

    level: int  # 1-6 for h1-h6
    text: str
    char_position: int


@dataclass
class MarkdownDocument:
    """Parsed markdown document.

    Heading positions are offsets into ``text``, the stripped content, which
    is what the chunker works on.
    """

    text: str
    frontmatter: Dict[str, Any]
    headings: List[Heading]

    @property
    def title(self) -> Optional[str]:
        title = self.frontmatter.get("title")
        return str(title) if title is not None else None


class MarkdownParser:
    """Parser for markdown documents with frontmatter support."""

    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.MULTILINE)

    def parse(self, content: str) -> MarkdownDocument:
        """Parse markdown content.

        Args:
            content: Raw markdown text

        Returns:
            MarkdownDocument with frontmatter and headings of the stripped text
        """
        text = content.strip()
        frontmatter = self._parse_frontmatter(text)
        headings = self._extract_headings(text)

        logger.debug(
            "markdown_parsed",
            has_frontmatter=bool(frontmatter),
            heading_count=len(headings),
            content_length=len(text),
        )

        return MarkdownDocument(text=text, frontmatter=frontmatter, headings=headings)

    def _parse_frontmatter(self, content: str) -> Dict[str, Any]:
        """Extract YAML frontmatter from the start of the content."""
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            return {}

        return frontmatter if isinstance(frontmatter, dict) else {}

    def _extract_headings(self, content: str) -> List[Heading]:
        """Extract all markdown headings with their positions.

        Lines inside fenced code blocks are skipped.
        """
        fences = self._fenced_ranges(content)
        headings = []

        for match in self.HEADING_PATTERN.finditer(content):
            position = match.start()
            if any(start <= position < end for start, end in fences):
                continue
            headings.append(
                Heading(
                    level=len(match.group(1)),
                    text=match.group(2).strip(),
                    char_position=position,
                )
            )

        return headings

    @staticmethod
    def _fenced_ranges(content: str) -> List[Tuple[int, int]]:
        ranges = []
        opened_at = None
        for match in re.finditer(r"^```.*$", content, re.MULTILINE):
            if opened_at is None:
                opened_at = match.start()
            else:
                ranges.append((opened_at, match.end()))
                opened_at = None
        if opened_at is not None:
            ranges.append((opened_at, len(content)))
        return ranges

    def get_heading_context(self, headings: List[Heading], char_position: int) -> str:
        """Get the heading breadcrumb in effect at a character position.

        Args:
            headings: All headings of the document
            char_position: Position to get context for

        Returns:
            Breadcrumb like "# Main > ## Sub > ### Detail", or "" before any heading
        """
        context_stack: List[Heading] = []

        for heading in headings:
            if heading.char_position > char_position:
                break
            # Pop headings at same or deeper level
            while context_stack and context_stack[-1].level >= heading.level:
                context_stack.pop()
            context_stack.append(heading)

        return " > ".join(f"{'#' * h.level} {h.text}" for h in context_stack)
