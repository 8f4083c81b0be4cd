# =============================================================================
# Sentence-Aware Text Chunker
# =============================================================================
#
# Splits a document into overlapping character windows, preferring to cut
# right after a sentence terminator.
#
# DESIGN DECISION: Character offsets, not token windows.
# Spans carry exact [start, end) offsets into the source text, so the
# original can be rebuilt from the chunks and the overlap:
#
#     chunks[0] + "".join(c[overlap:] for c in chunks[1:]) == text
#
# Token counts are still computed (tiktoken, cl100k_base) and stored on each
# chunk for accounting, but they do not drive the cut positions.
#
# ALGORITHM (per chunk):
#   1. hard_end = start + max_len
#   2. If hard_end >= len(text): the remainder is the final chunk
#   3. Search [hard_end - boundary_window, hard_end] backwards for the last
#      terminator (plus trailing closers and whitespace); cut after it
#   4. Otherwise cut at hard_end
#   5. Next start = end - overlap
#
# The lower edge of the search window is clamped to start + overlap + 1 so
# every chunk advances by at least one character.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

import tiktoken

logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = frozenset(".!?。！？")
# Characters that still belong to the sentence after its terminator
_CLOSERS = frozenset("\"')]}»”’」』）")


@dataclass(frozen=True)
class ChunkSpan:
    """One chunk: its position in the sequence and its slice of the source."""

    ordinal: int
    start: int
    end: int
    text: str


# ---------------------------------------------------------------------------
# Tiktoken Encoder: Cached Singleton
# ---------------------------------------------------------------------------
# cl100k_base is the encoding of text-embedding-3-small, so the counts match
# what the embedding model sees.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    """Exact cl100k_base token count of `text`."""
    if not text:
        return 0
    return len(_get_encoder().encode(text))


# ---------------------------------------------------------------------------
# Chunk Sequence
# ---------------------------------------------------------------------------


class ChunkSequence:
    """
    Lazy, restartable sequence of chunks over one text.

    Each `iter()` starts from the beginning, so iterating twice yields the
    same spans. Nothing is computed until iteration.
    """

    def __init__(
        self,
        text: str,
        max_len: int,
        overlap: int,
        boundary_window: int,
    ) -> None:
        self.text = text
        self.max_len = max_len
        self.overlap = overlap
        self.boundary_window = boundary_window

    def __iter__(self) -> Iterator[ChunkSpan]:
        text = self.text
        length = len(text)
        start = 0
        ordinal = 0

        while start < length:
            hard_end = start + self.max_len
            if hard_end >= length:
                yield ChunkSpan(ordinal, start, length, text[start:length])
                return

            end = self._boundary_before(start, hard_end)
            yield ChunkSpan(ordinal, start, end, text[start:end])
            ordinal += 1
            start = end - self.overlap

    def __repr__(self) -> str:
        return (
            f"ChunkSequence(len(text)={len(self.text)}, max_len={self.max_len}, "
            f"overlap={self.overlap})"
        )

    def _boundary_before(self, start: int, hard_end: int) -> int:
        """Best cut position in (start + overlap, hard_end]."""
        text = self.text
        floor = max(start + self.overlap + 1, hard_end - self.boundary_window)

        # Walk back from the hard limit looking for a terminator whose
        # trailing closers/whitespace still fit before hard_end.
        for pos in range(hard_end - 1, floor - 2, -1):
            if text[pos] not in SENTENCE_TERMINATORS:
                continue
            cut = pos + 1
            while cut < hard_end and (text[cut] in _CLOSERS or text[cut].isspace()):
                cut += 1
            if floor <= cut <= hard_end:
                return cut
        return hard_end


def chunk_text(
    text: str,
    max_len: int = 500,
    overlap: int = 50,
    boundary_window: int = 100,
) -> ChunkSequence:
    """
    Split `text` into overlapping, sentence-aligned chunks.

    Args:
        text: The source text. Empty text yields no chunks.
        max_len: Maximum characters per chunk (>= 1).
        overlap: Characters shared between consecutive chunks (0 <= overlap < max_len).
        boundary_window: How far back from the hard limit to look for a
            sentence end.

    Returns:
        A restartable ChunkSequence of ChunkSpan.

    Raises:
        ValueError: On invalid sizes.
    """
    if max_len < 1:
        raise ValueError(f"max_len must be >= 1, got {max_len}")
    if not 0 <= overlap < max_len:
        raise ValueError(
            f"overlap must satisfy 0 <= overlap < max_len, got overlap={overlap}, "
            f"max_len={max_len}"
        )
    if boundary_window < 0:
        raise ValueError(f"boundary_window must be >= 0, got {boundary_window}")

    return ChunkSequence(text, max_len, overlap, boundary_window)


def reconstruct(chunks: list[str] | list[ChunkSpan], overlap: int) -> str:
    """Rebuild the source text from consecutive chunks and their overlap."""
    texts = [c.text if isinstance(c, ChunkSpan) else c for c in chunks]
    if not texts:
        return ""
    return texts[0] + "".join(t[overlap:] for t in texts[1:])
