"""knowledge_rag.retrieval.store_models

SQLAlchemy ORM models for the knowledge-base store.

Two tables are defined: ``documents`` (one row per indexed file, unique on
``file_path``) and ``document_chunks`` (one row per chunk, owned by its
document and deleted with it). Embeddings are stored as JSON float arrays
alongside their dimensionality.

Classes
-------
Base
    Declarative base for the knowledge-base tables.
DocumentRecord
    Row of the ``documents`` table.
ChunkRecord
    Row of the ``document_chunks`` table.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DocumentRecord(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("file_path", name="uq_documents_file_path"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    indexed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    chunks: Mapped[list["ChunkRecord"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChunkRecord.chunk_index",
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord(id={self.id!r}, file_path={self.file_path!r}, chunks={self.chunk_count})>"


class ChunkRecord(Base):
    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),
        Index("ix_document_chunks_document_id", "document_id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    document_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    end_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(JSON, nullable=False)
    embedding_dim: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    document: Mapped[DocumentRecord] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return f"<ChunkRecord(id={self.id!r}, document_id={self.document_id!r}, index={self.chunk_index})>"


__all__ = ["Base", "DocumentRecord", "ChunkRecord"]
