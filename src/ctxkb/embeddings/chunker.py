"""
Overlapping character chunker for long entity content.

Provides:
- Boundary-aware splitting (paragraph, line, sentence, word, hard cut)
- Chunk count estimation
- Header-prefixed chunks so every vector is self-describing
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ctxkb.models import Entity

DEFAULT_MAX_CHARS = 4000
DEFAULT_OVERLAP_CHARS = 200
DEFAULT_MIN_CHUNK_CHARS = 100

SENTENCE_END = re.compile(r".*[.!?]\s", re.DOTALL)
IDENTIFIER_PARTS = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


@dataclass
class Chunk:
    """A slice of entity content."""

    index: int
    text: str
    start_offset: int
    end_offset: int


@dataclass
class ChunkResult:
    """Chunks produced for one entity."""

    entity_id: str
    chunks: list[Chunk] = field(default_factory=list)
    was_split: bool = False


def find_boundary(text: str, search_start: int, search_end: int) -> int:
    """
    Pick a split offset inside ``text[search_start:search_end]``.

    Preference: paragraph break, line break, sentence end, word boundary,
    then a hard cut at ``search_end``.
    """
    region = text[search_start:search_end]

    idx = region.rfind("\n\n")
    if idx >= 0:
        return search_start + idx + 2

    idx = region.rfind("\n")
    if idx >= 0:
        return search_start + idx + 1

    match = SENTENCE_END.match(region)
    if match:
        return search_start + match.end()

    idx = region.rfind(" ")
    if idx >= 0:
        return search_start + idx + 1

    return search_end


def split_text(
    content: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    min_chunk_chars: int = DEFAULT_MIN_CHUNK_CHARS,
) -> list[Chunk]:
    """
    Split text into overlapping chunks of at most ``max_chars``.

    A trailing chunk shorter than ``min_chunk_chars`` is folded into the
    previous chunk.
    """
    if len(content) <= max_chars:
        return [Chunk(index=0, text=content, start_offset=0, end_offset=len(content))]

    chunks: list[Chunk] = []
    pos = 0

    while pos < len(content):
        end = min(pos + max_chars, len(content))
        split_at = end
        if end < len(content):
            split_at = find_boundary(content, max(pos + max_chars - overlap_chars, pos), end)

        text = content[pos:split_at]

        if len(text) < min_chunk_chars and chunks:
            prev = chunks[-1]
            prev.text = content[prev.start_offset : split_at]
            prev.end_offset = split_at
            break

        chunks.append(Chunk(index=len(chunks), text=text, start_offset=pos, end_offset=split_at))

        pos = split_at - overlap_chars
        if pos <= chunks[-1].start_offset:
            pos = split_at

        if split_at >= len(content):
            break

    return chunks


def chunk_entity(
    entity: "Entity",
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    min_chunk_chars: int = DEFAULT_MIN_CHUNK_CHARS,
) -> ChunkResult:
    """
    Chunk an entity's content (falling back to summary, then name).

    Content at or below ``max_chars`` yields one chunk with
    ``was_split=False``.
    """
    content = entity.content or entity.summary or entity.name or ""
    chunks = split_text(content, max_chars, overlap_chars, min_chunk_chars)
    return ChunkResult(entity_id=entity.id, chunks=chunks, was_split=len(chunks) > 1)


def estimate_chunk_count(
    content_length: int,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
) -> int:
    if content_length <= max_chars:
        return 1
    step = max_chars - overlap_chars
    return math.ceil((content_length - overlap_chars) / step)


def split_identifier(name: str) -> str:
    """``parseHTTPResponse_body`` -> ``parse HTTP Response body``."""
    words = IDENTIFIER_PARTS.findall(name)
    return " ".join(words) if words else name


def build_entity_header(entity: "Entity") -> str:
    parts = [f"{entity.type}: {split_identifier(entity.name)}"]
    if entity.file_path:
        parts.append("in " + "/".join(entity.file_path.split("/")[-2:]))
    if entity.summary:
        parts.append(entity.summary)
    return "\n".join(parts)


def chunk_entity_for_embedding(
    entity: "Entity",
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_chars: int = DEFAULT_OVERLAP_CHARS,
    min_chunk_chars: int = DEFAULT_MIN_CHUNK_CHARS,
) -> list[str]:
    """
    Texts to embed for a long entity, each prefixed with the entity header.

    Returns:
        One text per chunk; a single text when header and content fit.
    """
    header = build_entity_header(entity)
    content = entity.content or ""

    if not content or len(header) + 2 + len(content) <= max_chars:
        return [f"{header}\n\n{content}" if content else header]

    budget = max(max_chars - len(header) - 2, overlap_chars + min_chunk_chars + 1)
    chunks = split_text(content, budget, overlap_chars, min_chunk_chars)
    return [f"{header}\n\n{chunk.text}" for chunk in chunks]
