"""
Record stores.

Every store keeps JSON payloads grouped by namespace ("students",
"display_settings", ...) and keyed by a string id. Listing returns records in
insertion order; overwriting a key keeps its position.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import Column, DateTime, Integer, JSON, String, UniqueConstraint, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

Base = declarative_base()


class RecordRow(Base):
    __tablename__ = "records"

    id = Column(Integer, primary_key=True, index=True)
    namespace = Column(String(64), nullable=False, index=True)
    key = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("namespace", "key", name="uq_records_namespace_key"),)


class RecordStore:
    """Persistence contract used by the registry, settings and election stores."""

    def get(self, namespace: str, key: str) -> Optional[Record]:
        raise NotImplementedError

    def list(self, namespace: str) -> List[Record]:
        raise NotImplementedError

    def put(self, namespace: str, key: str, record: Record) -> None:
        raise NotImplementedError

    def delete(self, namespace: str, key: str) -> bool:
        raise NotImplementedError

    def clear(self, namespace: str) -> int:
        raise NotImplementedError

    def replace_all(self, namespace: str, records: Iterable[Tuple[str, Record]]) -> None:
        """Atomically replace every record in ``namespace``."""
        raise NotImplementedError

    def put_many(self, writes: Iterable[Tuple[str, str, Record]]) -> None:
        """Write ``(namespace, key, record)`` triples together; all land or none do."""
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Process-local store. Payloads are kept serialized so callers never share state."""

    def __init__(self) -> None:
        self._namespaces: Dict[str, Dict[str, str]] = {}

    def get(self, namespace: str, key: str) -> Optional[Record]:
        raw = self._namespaces.get(namespace, {}).get(str(key))
        return json.loads(raw) if raw is not None else None

    def list(self, namespace: str) -> List[Record]:
        return [json.loads(raw) for raw in self._namespaces.get(namespace, {}).values()]

    def put(self, namespace: str, key: str, record: Record) -> None:
        self._namespaces.setdefault(namespace, {})[str(key)] = json.dumps(record)

    def delete(self, namespace: str, key: str) -> bool:
        return self._namespaces.get(namespace, {}).pop(str(key), None) is not None

    def clear(self, namespace: str) -> int:
        removed = self._namespaces.pop(namespace, {})
        return len(removed)

    def replace_all(self, namespace: str, records: Iterable[Tuple[str, Record]]) -> None:
        # Serialize everything first; a bad payload leaves the old namespace intact.
        staged = {str(key): json.dumps(record) for key, record in records}
        self._namespaces[namespace] = staged

    def put_many(self, writes: Iterable[Tuple[str, str, Record]]) -> None:
        staged = [(namespace, str(key), json.dumps(record)) for namespace, key, record in writes]
        for namespace, key, raw in staged:
            self._namespaces.setdefault(namespace, {})[key] = raw


def create_sql_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


class SqlRecordStore(RecordStore):
    """SQLAlchemy-backed store. Each call runs in its own transaction."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        Base.metadata.create_all(bind=engine)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SqlRecordStore":
        return cls(create_sql_engine(database_url))

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _find(db: Session, namespace: str, key: str) -> Optional[RecordRow]:
        return db.query(RecordRow).filter(
            RecordRow.namespace == namespace,
            RecordRow.key == str(key)
        ).first()

    def get(self, namespace: str, key: str) -> Optional[Record]:
        with self._session() as db:
            row = self._find(db, namespace, key)
            return dict(row.payload) if row else None

    def list(self, namespace: str) -> List[Record]:
        with self._session() as db:
            rows = db.query(RecordRow).filter(
                RecordRow.namespace == namespace
            ).order_by(RecordRow.id).all()
            return [dict(row.payload) for row in rows]

    def put(self, namespace: str, key: str, record: Record) -> None:
        with self._session() as db:
            row = self._find(db, namespace, key)
            if row:
                row.payload = record
            else:
                db.add(RecordRow(namespace=namespace, key=str(key), payload=record))

    def delete(self, namespace: str, key: str) -> bool:
        with self._session() as db:
            deleted = db.query(RecordRow).filter(
                RecordRow.namespace == namespace,
                RecordRow.key == str(key)
            ).delete(synchronize_session=False)
            return deleted > 0

    def clear(self, namespace: str) -> int:
        with self._session() as db:
            return db.query(RecordRow).filter(
                RecordRow.namespace == namespace
            ).delete(synchronize_session=False)

    def replace_all(self, namespace: str, records: Iterable[Tuple[str, Record]]) -> None:
        staged = [(str(key), record) for key, record in records]
        with self._session() as db:
            db.query(RecordRow).filter(
                RecordRow.namespace == namespace
            ).delete(synchronize_session=False)
            for key, record in staged:
                db.add(RecordRow(namespace=namespace, key=key, payload=record))

    def put_many(self, writes: Iterable[Tuple[str, str, Record]]) -> None:
        with self._session() as db:
            for namespace, key, record in writes:
                row = self._find(db, namespace, key)
                if row:
                    row.payload = record
                else:
                    db.add(RecordRow(namespace=namespace, key=str(key), payload=record))
                    db.flush()


def build_record_store(settings: Settings) -> RecordStore:
    if settings.uses_memory_store:
        logger.info("Using in-memory record store")
        return InMemoryRecordStore()
    logger.info("Using SQL record store")
    return SqlRecordStore.from_url(settings.database_url)
