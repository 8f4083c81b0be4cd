# =============================================================================
# Database Models: SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────┐       ┌──────────────────────────────────┐
# │  documents       │       │  chunks                          │
# ├──────────────────┤       ├──────────────────────────────────┤
# │ id (PK, str)     │──1:N─▶│ id (PK, "{document_id}:{ordinal}")│
# │ name             │       │ document_id (FK → documents.id)  │
# │ char_count       │       │ ordinal (int)                    │
# │ chunk_count      │       │ content (text)                   │
# │ created_at       │       │ token_count (int)                │
# └──────────────────┘       │ embedding (json list[float])     │
#                            │ created_at                       │
#                            └──────────────────────────────────┘
#
# ┌──────────────────────────────┐
# │  orchestration_records       │
# ├──────────────────────────────┤
# │ id (PK, uuid hex)            │
# │ category / complexity        │
# │ consensus_score (float)      │
# │ validation_degraded (bool)   │
# │ total_duration_ms (int)      │
# │ payload (json: full record)  │
# │ created_at                   │
# └──────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. Embeddings as portable JSON, not a vector column.
#    Similarity search runs in the in-memory index; the database is the
#    durable copy used to rebuild it. JSON keeps the schema portable across
#    PostgreSQL and SQLite.
#
# 2. The orchestration record is stored whole in `payload`.
#    The record is immutable once assembled, so there is nothing to
#    normalise. A few scalar columns are lifted out for listing/filtering.
# =============================================================================

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Document(Base):
    """A plain-text document ingested for retrieval."""

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    char_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    chunks: Mapped[list["Chunk"]] = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="Chunk.ordinal",
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, name='{self.name}', chunks={self.chunk_count})>"


class Chunk(Base):
    """One chunk of a document with its embedding."""

    __tablename__ = "chunks"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    document_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    embedding: Mapped[list[float]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="chunks")

    __table_args__ = (
        Index("ix_chunks_document_ordinal", "document_id", "ordinal", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Chunk(id={self.id}, tokens={self.token_count})>"


class OrchestrationRecordRow(Base):
    """A persisted orchestration record."""

    __tablename__ = "orchestration_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    complexity: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    consensus_score: Mapped[float] = mapped_column(Float, nullable=False)
    validation_degraded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_orchestration_records_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrchestrationRecordRow(id={self.id}, "
            f"consensus={self.consensus_score:.2f})>"
        )
