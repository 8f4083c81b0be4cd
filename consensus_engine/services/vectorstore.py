# =============================================================================
# Similarity Index: In-Memory Cosine Search Over Document Chunks
# =============================================================================
#
# Holds (chunk, embedding) pairs and answers "which k chunks are most similar
# to this query vector".
#
# DESIGN DECISION: In-process index, database as the durable copy.
# Corpora here are a few documents per deployment, so a linear scan with
# heapq top-k is fast enough and fully deterministic. Chunks (embeddings as
# JSON) are persisted through SQLAlchemy and reloaded at start-up by the
# retriever.
#
# DESIGN DECISION: Append-only.
# A chunk id can be added once. Re-ingesting a document gets a new
# document id, so existing ids never change meaning.
#
# CONCURRENCY:
#   add()    - serialised by a threading.Lock; publishes a new tuple
#   search() - reads the current tuple without locking; a concurrent add()
#              is either fully visible or not at all
#
# ORDERING: score descending, ties by insertion order. Two searches with the
# same query against the same corpus return identical lists.
# =============================================================================

from __future__ import annotations

import heapq
import logging
import math
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from consensus_engine.errors import EmptyCorpus, InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentChunk:
    """An immutable chunk as stored in the index."""

    chunk_id: str
    document_id: str
    document_name: str
    ordinal: int
    text: str
    embedding: tuple[float, ...]
    token_count: int = 0

    @staticmethod
    def make_id(document_id: str, ordinal: int) -> str:
        return f"{document_id}:{ordinal}"


@dataclass(frozen=True)
class _Entry:
    position: int
    chunk: DocumentChunk
    norm: float


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(v * v for v in vector))


class SimilarityIndex:
    """
    Append-only cosine-similarity index.

    Usage:
        index = SimilarityIndex()
        index.add(chunks)
        hits = index.search(query_vector, k=5)   # [(chunk_id, score), ...]
    """

    def __init__(self, dimensions: int | None = None) -> None:
        self._dimensions = dimensions
        self._entries: tuple[_Entry, ...] = ()
        self._by_id: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def add(self, chunks: Iterable[DocumentChunk]) -> int:
        """
        Append chunks to the index.

        The whole batch is validated before anything is published.

        Returns:
            Number of chunks added.

        Raises:
            InvalidArgument: On a duplicate chunk id or a dimension mismatch.
        """
        batch = list(chunks)
        if not batch:
            return 0

        with self._lock:
            dimensions = self._dimensions
            seen: set[str] = set()
            for chunk in batch:
                if chunk.chunk_id in self._by_id or chunk.chunk_id in seen:
                    raise InvalidArgument(f"duplicate chunk id '{chunk.chunk_id}'")
                if not chunk.embedding:
                    raise InvalidArgument(f"chunk '{chunk.chunk_id}' has no embedding")
                if dimensions is None:
                    dimensions = len(chunk.embedding)
                elif len(chunk.embedding) != dimensions:
                    raise InvalidArgument(
                        f"chunk '{chunk.chunk_id}' has {len(chunk.embedding)} "
                        f"dimensions, index expects {dimensions}"
                    )
                seen.add(chunk.chunk_id)

            start = len(self._entries)
            new_entries = tuple(
                _Entry(position=start + i, chunk=chunk, norm=_norm(chunk.embedding))
                for i, chunk in enumerate(batch)
            )
            for entry in new_entries:
                self._by_id[entry.chunk.chunk_id] = entry
            self._dimensions = dimensions
            self._entries = self._entries + new_entries

        logger.debug("Indexed %d chunks (total=%d)", len(batch), len(self._entries))
        return len(batch)

    def get(self, chunk_id: str) -> DocumentChunk | None:
        entry = self._by_id.get(chunk_id)
        return entry.chunk if entry else None

    def snapshot(self) -> tuple[DocumentChunk, ...]:
        """All chunks in insertion order."""
        return tuple(entry.chunk for entry in self._entries)

    def search(self, query_vector: Sequence[float], k: int) -> list[tuple[str, float]]:
        """
        Top-k chunks by cosine similarity.

        Returns:
            [(chunk_id, score), ...] sorted by score descending, ties by
            insertion order; at most min(k, len(index)) items.

        Raises:
            InvalidArgument: k <= 0, zero-norm query, or wrong dimension.
            EmptyCorpus: Nothing has been indexed.
        """
        if k <= 0:
            raise InvalidArgument(f"k must be positive, got {k}")

        entries = self._entries
        if not entries:
            raise EmptyCorpus("similarity index is empty")

        if len(query_vector) != self._dimensions:
            raise InvalidArgument(
                f"query has {len(query_vector)} dimensions, index expects "
                f"{self._dimensions}"
            )
        query_norm = _norm(query_vector)
        if query_norm == 0.0:
            raise InvalidArgument("query vector has zero norm")

        def score(entry: _Entry) -> float:
            if entry.norm == 0.0:
                return 0.0
            dot = sum(q * v for q, v in zip(query_vector, entry.chunk.embedding))
            return dot / (query_norm * entry.norm)

        scored = ((score(entry), entry.position, entry.chunk.chunk_id) for entry in entries)
        top = heapq.nsmallest(k, scored, key=lambda item: (-item[0], item[1]))
        return [(chunk_id, value) for value, _, chunk_id in top]
