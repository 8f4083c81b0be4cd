# =============================================================================
# Retriever: Ingestion and Similarity Search Over Documents
# =============================================================================
#
# Ties the chunker, the embedding endpoint and the similarity index together.
#
# INGESTION:  text → chunk_text() → embed() → DocumentChunk → index (+ DB rows)
# SEARCH:     query → embed_query() → index.search() → RetrievalResult
# START-UP:   chunks table → DocumentChunk → index (load_from_db)
#
# DESIGN DECISION: Retrieval failures are typed.
# Every failure on the search path is a RetrievalError subclass, so the
# coordinator can treat "no context" uniformly without catching broad
# exceptions.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consensus_engine.db.models import Chunk, Document
from consensus_engine.errors import EmbeddingFailed, InvalidArgument
from consensus_engine.models.records import RetrievalSummary
from consensus_engine.services.chunker import chunk_text, count_tokens
from consensus_engine.services.embedder import EmbeddingEndpoint
from consensus_engine.services.vectorstore import DocumentChunk, SimilarityIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkingConfig:
    max_len: int = 500
    overlap: int = 50
    boundary_window: int = 100


@dataclass(frozen=True)
class ScoredChunk:
    chunk: DocumentChunk
    score: float


@dataclass(frozen=True)
class RetrievalResult:
    """Ranked chunks for one query, best first."""

    hits: tuple[ScoredChunk, ...] = ()

    def __len__(self) -> int:
        return len(self.hits)

    def filtered(self, min_score: float) -> RetrievalResult:
        return RetrievalResult(tuple(h for h in self.hits if h.score >= min_score))

    def summary(self) -> RetrievalSummary:
        names: list[str] = []
        for hit in self.hits:
            if hit.chunk.document_name not in names:
                names.append(hit.chunk.document_name)
        return RetrievalSummary(
            enabled=True,
            chunk_count=len(self.hits),
            document_names=tuple(names),
        )

    def format_context(self) -> str:
        """
        Numbered context block for role prompts.

        Example output:
            [1] (q3-report, chunk 4):
            Revenue for Q3 was $4.2 billion...

            ---

            [2] (q3-report, chunk 7):
            ...
        """
        sections = []
        for i, hit in enumerate(self.hits, 1):
            label = f" ({hit.chunk.document_name}, chunk {hit.chunk.ordinal})"
            sections.append(f"[{i}]{label}:\n{hit.chunk.text}")
        return "\n\n---\n\n".join(sections)


@dataclass(frozen=True)
class IngestedDocument:
    document_id: str
    document_name: str
    chunk_count: int


class Retriever:
    """
    Entry point for the retrieval subsystem.

    Args:
        index: The in-memory similarity index searched by `search()`.
        embedder: Embeds both chunks and queries (must be the same model).
        chunking: Chunk sizes used by `ingest()`.
    """

    def __init__(
        self,
        index: SimilarityIndex,
        embedder: EmbeddingEndpoint,
        chunking: ChunkingConfig | None = None,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.chunking = chunking or ChunkingConfig()

    async def ingest(
        self,
        document_name: str,
        text: str,
        *,
        document_id: str | None = None,
        session: AsyncSession | None = None,
    ) -> IngestedDocument:
        """
        Chunk, embed and index a plain-text document.

        When `session` is given, the document and its rows are committed
        before the chunks are added to the index, so a failed commit leaves
        the index unchanged.

        Raises:
            InvalidArgument: Empty text.
            EmbeddingFailed: The embedding endpoint failed.
        """
        if not text.strip():
            raise InvalidArgument(f"document '{document_name}' has no text")

        document_id = document_id or uuid.uuid4().hex
        spans = list(chunk_text(
            text,
            max_len=self.chunking.max_len,
            overlap=self.chunking.overlap,
            boundary_window=self.chunking.boundary_window,
        ))

        try:
            vectors = await self.embedder.embed([span.text for span in spans])
        except Exception as exc:
            raise EmbeddingFailed(f"embedding '{document_name}' failed: {exc}") from exc

        if len(vectors) != len(spans):
            raise EmbeddingFailed(
                f"embedder returned {len(vectors)} vectors for {len(spans)} chunks"
            )

        chunks = [
            DocumentChunk(
                chunk_id=DocumentChunk.make_id(document_id, span.ordinal),
                document_id=document_id,
                document_name=document_name,
                ordinal=span.ordinal,
                text=span.text,
                embedding=tuple(vector),
                token_count=count_tokens(span.text),
            )
            for span, vector in zip(spans, vectors)
        ]

        if session is not None:
            session.add(Document(
                id=document_id,
                name=document_name,
                char_count=len(text),
                chunk_count=len(chunks),
            ))
            session.add_all([
                Chunk(
                    id=chunk.chunk_id,
                    document_id=document_id,
                    ordinal=chunk.ordinal,
                    content=chunk.text,
                    token_count=chunk.token_count,
                    embedding=list(chunk.embedding),
                )
                for chunk in chunks
            ])
            await session.commit()

        self.index.add(chunks)

        logger.info(
            "Ingested '%s' (id=%s): %d chunks, %d tokens",
            document_name, document_id, len(chunks),
            sum(c.token_count for c in chunks),
        )
        return IngestedDocument(document_id, document_name, len(chunks))

    async def search(self, query_text: str, k: int = 5) -> RetrievalResult:
        """
        Embed `query_text` and return the top-k chunks.

        Raises:
            InvalidArgument: Empty query or k <= 0.
            EmptyCorpus: Nothing has been ingested.
            EmbeddingFailed: The embedding endpoint failed.
        """
        if not query_text.strip():
            raise InvalidArgument("query text is empty")
        if k <= 0:
            raise InvalidArgument(f"k must be positive, got {k}")

        try:
            query_vector = await self.embedder.embed_query(query_text)
        except Exception as exc:
            raise EmbeddingFailed(f"embedding the query failed: {exc}") from exc

        ranked = self.index.search(query_vector, k)
        hits = []
        for chunk_id, score in ranked:
            chunk = self.index.get(chunk_id)
            if chunk is not None:
                hits.append(ScoredChunk(chunk=chunk, score=score))

        logger.info(
            "Retrieved %d chunks (k=%d, top score=%.3f)",
            len(hits), k, hits[0].score if hits else 0.0,
        )
        return RetrievalResult(tuple(hits))

    async def load_from_db(self, session: AsyncSession) -> int:
        """
        Rebuild the index from the chunks table.

        Chunks already present in the index are skipped, so calling this on
        a warm index is harmless.

        Returns:
            Number of chunks added.
        """
        stmt = (
            select(Chunk, Document.name)
            .join(Document, Chunk.document_id == Document.id)
            .order_by(Document.created_at, Document.id, Chunk.ordinal)
        )
        result = await session.execute(stmt)

        chunks = [
            DocumentChunk(
                chunk_id=row.id,
                document_id=row.document_id,
                document_name=name,
                ordinal=row.ordinal,
                text=row.content,
                embedding=tuple(row.embedding),
                token_count=row.token_count,
            )
            for row, name in result.all()
            if self.index.get(row.id) is None
        ]
        added = self.index.add(chunks)
        logger.info("Loaded %d chunks from the database into the index", added)
        return added
