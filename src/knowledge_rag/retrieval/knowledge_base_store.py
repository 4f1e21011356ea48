"""knowledge_rag.retrieval.knowledge_base_store

Persistence for indexed documents, chunks and their embeddings.

The store is the single point of mutation in the system. It upserts documents
by their normalised file path, replaces a document's chunk set wholesale on
re-indexing, enforces one embedding dimensionality across all chunks, and
exposes a streaming scan used by brute-force similarity search.

Classes
-------
BaseKnowledgeBaseStore
    Abstract interface used by the indexer and the search service.
SQLKnowledgeBaseStore
    Relational implementation on top of SQLAlchemy.

Functions
---------
create_knowledge_base_store
    Create a store implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import create_engine, delete, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from knowledge_rag.common.exceptions import EmbeddingDimensionError, StorageError
from knowledge_rag.common.schemas import (
    Document,
    DocumentChunk,
    KnowledgeBaseStatistics,
    normalize_file_path,
)
from knowledge_rag.retrieval.store_models import Base, ChunkRecord, DocumentRecord

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///knowledge_base.db"


class BaseKnowledgeBaseStore(ABC):
    """Abstract interface for knowledge-base persistence."""

    @abstractmethod
    def save_document(self, document: Document) -> Document:
        """Insert or update a document keyed by ``file_path``; return the stored record."""

    @abstractmethod
    def save_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        """Insert chunks, replacing any existing chunks of the same documents."""

    @abstractmethod
    def save_document_with_chunks(self, document: Document, chunks: Sequence[DocumentChunk]) -> Document:
        """Upsert ``document`` and replace its chunk set in a single transaction."""

    @abstractmethod
    def get_document(self, document_id: str) -> Document | None: ...

    @abstractmethod
    def get_document_by_path(self, file_path: str) -> Document | None: ...

    @abstractmethod
    def get_documents_by_ids(self, document_ids: Iterable[str]) -> dict[str, Document]: ...

    @abstractmethod
    def get_all_documents(self) -> list[Document]: ...

    @abstractmethod
    def get_chunks_by_document(self, document_id: str) -> list[DocumentChunk]: ...

    @abstractmethod
    def count_chunks(self, document_id: str) -> int: ...

    @abstractmethod
    def delete_document(self, document_id: str) -> bool: ...

    @abstractmethod
    def get_statistics(self) -> KnowledgeBaseStatistics: ...

    @abstractmethod
    def scan_all_chunks(self) -> Iterator[DocumentChunk]:
        """Yield every stored chunk with its embedding."""

    @abstractmethod
    def embedding_dimension(self) -> int | None:
        """Return the dimensionality of stored embeddings, or ``None`` if empty."""


class SQLKnowledgeBaseStore(BaseKnowledgeBaseStore):
    """Knowledge-base store backed by a SQLAlchemy engine.

    Any SQLAlchemy URL works; SQLite is the default. Write operations are
    serialised with a process-wide lock and each runs in its own transaction.
    All SQLAlchemy failures surface as
    :class:`~knowledge_rag.common.exceptions.StorageError`.

    Parameters
    ----------
    engine : sqlalchemy.engine.Engine
        Engine to use. Tables are created if missing.
    scan_batch_size : int, optional
        Rows fetched per round trip during :meth:`scan_all_chunks`.
    """

    def __init__(self, engine: Engine, *, scan_batch_size: int = 500):
        self.engine = engine
        self.scan_batch_size = int(scan_batch_size)
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._write_lock = threading.RLock()
        # A StaticPool hands every session the same connection.
        self._read_lock = self._write_lock if isinstance(engine.pool, StaticPool) else nullcontext()
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialise knowledge-base schema: {e}") from e

    @classmethod
    def from_url(cls, database_url: str, *, echo: bool = False, **kwargs: Any) -> "SQLKnowledgeBaseStore":
        """Create a store for ``database_url``.

        In-memory SQLite URLs share a single connection across threads so
        every session sees the same database.
        """
        engine_kwargs: dict[str, Any] = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in {"sqlite://", "sqlite:///:memory:"} or "mode=memory" in database_url:
                engine_kwargs["poolclass"] = StaticPool

        engine = create_engine(database_url, **engine_kwargs)

        if engine.dialect.name == "sqlite":
            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, _record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        return cls(engine, **kwargs)

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any] | None) -> "SQLKnowledgeBaseStore":
        """Create a store from the ``knowledge_base`` configuration section."""
        cfg = dict(config or {})
        url = cfg.get("database_url") or cfg.get("url") or DEFAULT_DATABASE_URL
        return cls.from_url(
            str(url),
            echo=bool(cfg.get("echo", False)),
            scan_batch_size=int(cfg.get("scan_batch_size", 500)),
        )

    # ------------------------------------------------------------------ #
    # Session helpers
    # ------------------------------------------------------------------ #

    @contextmanager
    def _read(self) -> Iterator[Session]:
        with self._read_lock:
            try:
                with self._session_factory() as session:
                    yield session
            except SQLAlchemyError as e:
                raise StorageError(f"Knowledge-base read failed: {e}") from e

    @contextmanager
    def _write(self) -> Iterator[Session]:
        with self._write_lock:
            try:
                with self._session_factory.begin() as session:
                    yield session
            except SQLAlchemyError as e:
                raise StorageError(f"Knowledge-base write failed: {e}") from e

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def save_document(self, document: Document) -> Document:
        with self._write() as session:
            record = self._upsert_document(session, document)
            return _to_document(record)

    def save_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        with self._write() as session:
            document_ids = {c.document_id for c in chunks}
            found = set(
                session.scalars(select(DocumentRecord.id).where(DocumentRecord.id.in_(sorted(document_ids))))
            )
            missing = document_ids - found
            if missing:
                raise StorageError(f"Cannot save chunks for unknown documents: {sorted(missing)}")
            self._replace_chunks(session, document_ids, chunks)

    def save_document_with_chunks(self, document: Document, chunks: Sequence[DocumentChunk]) -> Document:
        with self._write() as session:
            record = self._upsert_document(session, document)
            rekeyed = [
                c if c.document_id == record.id else c.with_document_id(record.id)
                for c in chunks
            ]
            self._replace_chunks(session, {record.id}, rekeyed)
            return _to_document(record)

    def delete_document(self, document_id: str) -> bool:
        with self._write() as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return False
            session.execute(delete(ChunkRecord).where(ChunkRecord.document_id == document_id))
            session.delete(record)
        logger.info("Deleted document %s", document_id)
        return True

    def _upsert_document(self, session: Session, document: Document) -> DocumentRecord:
        path = normalize_file_path(document.file_path)
        record = session.scalars(
            select(DocumentRecord).where(DocumentRecord.file_path == path)
        ).first()

        if record is None:
            record = DocumentRecord(
                id=document.id,
                file_path=path,
                title=document.title,
                content=document.content,
                indexed_at=document.indexed_at,
                chunk_count=document.chunk_count,
            )
            session.add(record)
        else:
            record.title = document.title
            record.content = document.content
            record.indexed_at = document.indexed_at
            record.chunk_count = document.chunk_count

        session.flush()
        return record

    def _replace_chunks(
        self,
        session: Session,
        document_ids: set[str],
        chunks: Sequence[DocumentChunk],
    ) -> None:
        dims = {len(c.embedding) for c in chunks}
        if len(dims) > 1:
            raise EmbeddingDimensionError(min(dims), max(dims))

        if dims:
            (dim,) = dims
            existing = session.scalars(
                select(ChunkRecord.embedding_dim)
                .where(ChunkRecord.document_id.not_in(sorted(document_ids)))
                .limit(1)
            ).first()
            if existing is not None and existing != dim:
                raise EmbeddingDimensionError(existing, dim)

        session.execute(delete(ChunkRecord).where(ChunkRecord.document_id.in_(sorted(document_ids))))
        session.add_all(
            ChunkRecord(
                id=c.id,
                document_id=c.document_id,
                chunk_index=c.chunk_index,
                content=c.content,
                start_offset=c.start_offset,
                end_offset=c.end_offset,
                token_count=c.token_count,
                embedding=[float(x) for x in c.embedding],
                embedding_dim=len(c.embedding),
                created_at=c.created_at,
            )
            for c in chunks
        )

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get_document(self, document_id: str) -> Document | None:
        with self._read() as session:
            record = session.get(DocumentRecord, document_id)
            return _to_document(record) if record is not None else None

    def get_document_by_path(self, file_path: str) -> Document | None:
        path = normalize_file_path(file_path)
        with self._read() as session:
            record = session.scalars(
                select(DocumentRecord).where(DocumentRecord.file_path == path)
            ).first()
            return _to_document(record) if record is not None else None

    def get_documents_by_ids(self, document_ids: Iterable[str]) -> dict[str, Document]:
        ids = set(document_ids)
        if not ids:
            return {}
        with self._read() as session:
            records = session.scalars(select(DocumentRecord).where(DocumentRecord.id.in_(sorted(ids))))
            return {r.id: _to_document(r) for r in records}

    def get_all_documents(self) -> list[Document]:
        with self._read() as session:
            records = session.scalars(
                select(DocumentRecord).order_by(
                    DocumentRecord.indexed_at.desc(),
                    DocumentRecord.file_path.asc(),
                )
            )
            return [_to_document(r) for r in records]

    def get_chunks_by_document(self, document_id: str) -> list[DocumentChunk]:
        with self._read() as session:
            records = session.scalars(
                select(ChunkRecord)
                .where(ChunkRecord.document_id == document_id)
                .order_by(ChunkRecord.chunk_index)
            )
            return [_to_chunk(r) for r in records]

    def count_chunks(self, document_id: str) -> int:
        with self._read() as session:
            return int(
                session.scalar(
                    select(func.count()).select_from(ChunkRecord).where(ChunkRecord.document_id == document_id)
                )
                or 0
            )

    def get_statistics(self) -> KnowledgeBaseStatistics:
        with self._read() as session:
            documents = session.scalar(select(func.count()).select_from(DocumentRecord)) or 0
            chunks = session.scalar(select(func.count()).select_from(ChunkRecord)) or 0
        return KnowledgeBaseStatistics(documents_count=int(documents), chunks_count=int(chunks))

    def scan_all_chunks(self) -> Iterator[DocumentChunk]:
        stmt = select(ChunkRecord).execution_options(yield_per=self.scan_batch_size)
        with self._read() as session:
            for record in session.scalars(stmt):
                yield _to_chunk(record)

    def embedding_dimension(self) -> int | None:
        with self._read() as session:
            return session.scalars(select(ChunkRecord.embedding_dim).limit(1)).first()


def _aware(ts: datetime) -> datetime:
    # SQLite drops tzinfo on round trip.
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _to_document(record: DocumentRecord) -> Document:
    return Document(
        id=record.id,
        file_path=record.file_path,
        title=record.title,
        content=record.content,
        indexed_at=_aware(record.indexed_at),
        chunk_count=record.chunk_count,
    )


def _to_chunk(record: ChunkRecord) -> DocumentChunk:
    return DocumentChunk(
        id=record.id,
        document_id=record.document_id,
        chunk_index=record.chunk_index,
        content=record.content,
        start_offset=record.start_offset,
        end_offset=record.end_offset,
        token_count=record.token_count,
        embedding=list(record.embedding),
        created_at=_aware(record.created_at),
    )


def create_knowledge_base_store(config: Mapping[str, Any] | None) -> BaseKnowledgeBaseStore:
    """Create a knowledge-base store from the ``knowledge_base`` section.

    Parameters
    ----------
    config : Mapping[str, Any] or None
        Mapping with an optional ``type`` (only ``sql``/``sqlalchemy``/``sqlite``
        is supported) and ``database_url``.

    Returns
    -------
    BaseKnowledgeBaseStore
        Configured store.

    Raises
    ------
    ValueError
        If ``type`` names an unsupported backend.
    """
    cfg = dict(config or {})
    kind = str(cfg.get("type") or "sql").strip().lower()
    if kind in {"sql", "sqlalchemy", "sqlite", "postgres", "postgresql"}:
        return SQLKnowledgeBaseStore.from_config_dict(cfg)
    raise ValueError(f"Unsupported knowledge_base type {kind!r}. Supported: ['sql'].")


__all__ = [
    "BaseKnowledgeBaseStore",
    "SQLKnowledgeBaseStore",
    "create_knowledge_base_store",
    "DEFAULT_DATABASE_URL",
]
