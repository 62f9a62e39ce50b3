"""Token-bounded text chunking with hierarchy-aware metadata.

Four strategies are supported:

- ``sentence``: greedily pack whole sentences up to the token budget
- ``paragraph``: pack whole paragraphs, falling back to sentences for long ones
- ``semantic``: sentence packing that closes a chunk once it reaches 80% of the
  budget or hits a paragraph break past half of it
- ``sliding_window``: fixed word windows with a word overlap

Tokens are estimated as ``ceil(len(text) / 4)``; every strategy except
``sliding_window`` guarantees that estimate never exceeds ``max_tokens``.
"""

from __future__ import annotations

import math
import re

from models.embeddings import (
    ChunkContext,
    ChunkingConfig,
    ChunkMetadata,
    ChunkStrategy,
    ContentChunk,
    ContentType,
)

Span = tuple[int, int]

_SENTENCE_RE = re.compile(r"[^.!?\n]+(?:[.!?]+|(?=\n)|$)")
_PARAGRAPH_RE = re.compile(r"\S(?:.*?)(?=\n\s*\n|\Z)", re.DOTALL)
_WORD_RE = re.compile(r"\S+")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")

SEMANTIC_CLOSE_RATIO = 0.8
SEMANTIC_PARAGRAPH_RATIO = 0.5
WORDS_PER_TOKEN = 0.75

_CONTENT_TYPE_HINTS: list[tuple[ContentType, tuple[str, ...]]] = [
    ("academic", ("academic", "scholar", "arxiv", "pubmed", "paper")),
    ("community", ("community", "reddit", "forum", "stack", "discussion")),
    ("video", ("video", "youtube", "vimeo")),
    ("computational", ("computational", "wolfram", "math", "calculator")),
]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def classify_content_type(agent_name: str | None) -> ContentType:
    """Map an agent name onto the coarse content type used for retrieval filters."""
    if not agent_name:
        return "general"
    lowered = agent_name.lower()
    for content_type, hints in _CONTENT_TYPE_HINTS:
        if any(hint in lowered for hint in hints):
            return content_type
    return "general"


def build_embedding_text(chunk: ContentChunk) -> str:
    """Prefix a chunk with its place in the topic tree before embedding it."""
    meta = chunk.metadata
    header = []
    if meta.parent_topic:
        header.append(f"Topic: {meta.parent_topic}")
    if meta.subtopic:
        header.append(f"Subtopic: {meta.subtopic}")
    if meta.difficulty:
        header.append(f"Difficulty: {meta.difficulty}")
    if meta.hierarchy.path:
        header.append("Path: " + " > ".join(meta.hierarchy.path))
    if not header:
        return chunk.content
    return "\n".join(header) + "\n\n" + chunk.content


class TextChunker:
    """Splits text into ``ContentChunk``s according to a ``ChunkingConfig``."""

    def chunk(
        self,
        text: str,
        context: ChunkContext,
        config: ChunkingConfig | None = None,
    ) -> list[ContentChunk]:
        config = config or ChunkingConfig()
        if not text or not text.strip():
            return []

        spans = self.split(text, config)
        content_type = classify_content_type(context.agent_source)
        chunks = []
        for index, (start, end) in enumerate(spans):
            content = text[start:end]
            chunks.append(
                ContentChunk(
                    id=f"{context.source_id}_chunk_{index}",
                    content=content,
                    metadata=ChunkMetadata(
                        chunk_index=index,
                        total_chunks=len(spans),
                        token_count=estimate_tokens(content),
                        start_offset=start,
                        end_offset=end,
                        context_type=context.context_type,
                        source_id=context.source_id,
                        parent_topic=context.parent_topic,
                        subtopic=context.subtopic,
                        difficulty=context.difficulty,
                        hierarchy=context.hierarchy,
                        agent_source=context.agent_source,
                        content_type=content_type,
                    ),
                )
            )
        return chunks

    def split(self, text: str, config: ChunkingConfig) -> list[Span]:
        """Return ``(start, end)`` offsets of each chunk in ``text``."""
        max_tokens = config.max_tokens
        if config.strategy == ChunkStrategy.SLIDING_WINDOW:
            return self._sliding_window(text, max_tokens, config.overlap)
        if config.strategy == ChunkStrategy.PARAGRAPH:
            units = []
            for start, end in self._paragraph_spans(text):
                if estimate_tokens(text[start:end]) <= max_tokens:
                    units.append((start, end))
                else:
                    units.extend(self._sentence_units(text, start, end, max_tokens))
            return self._pack(text, units, max_tokens, overlap=0)
        units = self._sentence_units(text, 0, len(text), max_tokens)
        if config.strategy == ChunkStrategy.SEMANTIC:
            return self._pack(text, units, max_tokens, config.overlap, semantic=True)
        return self._pack(text, units, max_tokens, config.overlap)

    @staticmethod
    def _paragraph_spans(text: str) -> list[Span]:
        spans = []
        for match in _PARAGRAPH_RE.finditer(text):
            start, end = match.start(), match.end()
            while end > start and text[end - 1].isspace():
                end -= 1
            spans.append((start, end))
        return spans

    def _sentence_units(self, text: str, start: int, end: int, max_tokens: int) -> list[Span]:
        """Sentence spans inside ``text[start:end]``, word-split when one is too long."""
        units: list[Span] = []
        for match in _SENTENCE_RE.finditer(text, start, end):
            s, e = match.start(), match.end()
            while s < e and text[s].isspace():
                s += 1
            while e > s and text[e - 1].isspace():
                e -= 1
            if s >= e:
                continue
            if estimate_tokens(text[s:e]) <= max_tokens:
                units.append((s, e))
            else:
                units.extend(self._split_oversized(text, s, e, max_tokens))
        return units

    @staticmethod
    def _split_oversized(text: str, start: int, end: int, max_tokens: int) -> list[Span]:
        max_chars = max_tokens * 4
        pieces: list[Span] = []
        piece_start: int | None = None
        piece_end = start
        for word in _WORD_RE.finditer(text, start, end):
            ws, we = word.start(), word.end()
            if piece_start is None:
                piece_start = ws
            elif we - piece_start > max_chars:
                pieces.append((piece_start, piece_end))
                piece_start = ws
            # A single word longer than the budget is cut at the character level
            while we - piece_start > max_chars:
                pieces.append((piece_start, piece_start + max_chars))
                piece_start += max_chars
            piece_end = we
        if piece_start is not None and piece_end > piece_start:
            pieces.append((piece_start, piece_end))
        return pieces

    @staticmethod
    def _pack(
        text: str,
        units: list[Span],
        max_tokens: int,
        overlap: int,
        semantic: bool = False,
    ) -> list[Span]:
        """Greedily pack consecutive units into chunks of at most ``max_tokens``.

        After closing a chunk, trailing units totalling at most ``overlap`` tokens
        are carried into the next chunk. At least one unit is always left out of
        the carry so every chunk makes progress.
        """
        chunks: list[Span] = []
        current: list[int] = []
        fresh = 0

        def close() -> list[int]:
            first, last = current[0], current[-1]
            chunk_end = units[last][1]
            chunks.append((units[first][0], chunk_end))
            carry: list[int] = []
            if overlap > 0:
                for j in range(last, first, -1):
                    if estimate_tokens(text[units[j][0] : chunk_end]) > overlap:
                        break
                    carry.insert(0, j)
            return carry

        i = 0
        while i < len(units):
            if not current:
                current, fresh = [i], 1
                i += 1
                continue
            start = units[current[0]][0]
            candidate_tokens = estimate_tokens(text[start : units[i][1]])
            if candidate_tokens > max_tokens:
                if fresh == 0:
                    current = []
                    continue
                current, fresh = close(), 0
                continue

            gap = text[units[current[-1]][1] : units[i][0]]
            current_tokens = estimate_tokens(text[start : units[current[-1]][1]])
            if (
                semantic
                and fresh > 0
                and _PARAGRAPH_BREAK_RE.search(gap)
                and current_tokens >= max_tokens * SEMANTIC_PARAGRAPH_RATIO
            ):
                current, fresh = close(), 0
                continue

            current.append(i)
            fresh += 1
            i += 1
            if semantic and candidate_tokens >= max_tokens * SEMANTIC_CLOSE_RATIO:
                current, fresh = close(), 0

        if current and fresh > 0:
            close()
        return chunks

    @staticmethod
    def _sliding_window(text: str, max_tokens: int, overlap: int) -> list[Span]:
        words = [(m.start(), m.end()) for m in _WORD_RE.finditer(text)]
        if not words:
            return []
        per_chunk = max(1, math.floor(max_tokens * WORDS_PER_TOKEN))
        overlap_words = min(per_chunk - 1, math.floor(overlap * WORDS_PER_TOKEN))

        spans: list[Span] = []
        i = 0
        while i < len(words):
            window = words[i : i + per_chunk]
            while len(window) > 1 and estimate_tokens(text[window[0][0] : window[-1][1]]) > max_tokens:
                window = window[:-1]
            spans.append((window[0][0], window[-1][1]))
            if i + len(window) >= len(words):
                break
            i += max(1, len(window) - overlap_words)
        return spans


__all__ = [
    "TextChunker",
    "build_embedding_text",
    "classify_content_type",
    "estimate_tokens",
]
