"""SQLAlchemy-backed document store."""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine

from rollcall.core.clock import Clock
from rollcall.core.exceptions import StoreUnavailable
from rollcall.core.logging_config import get_logger
from rollcall.db import Base, make_session_factory, session_scope
from rollcall.db.models import Document
from rollcall.store.base import DocumentStore, Index, collection_of, document_id

logger = get_logger(__name__)


class SqlDocumentStore(DocumentStore):
    """Persists documents as JSON rows keyed by (collection, doc_id).

    Change notifications are fanned out in-process by the base class, so live
    subscriptions only see writes made through this store instance.
    Database errors surface as ``StoreUnavailable``.
    """

    def __init__(
        self,
        clock: Clock,
        engine: Engine,
        indexes: Optional[Sequence[Index]] = None,
    ):
        super().__init__(clock, indexes)
        self._engine = engine
        self._session_factory = make_session_factory(engine)

    def create_all(self) -> None:
        """Create the documents table if it does not exist."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Could not initialise document table: {exc}") from exc

    def ping(self) -> None:
        try:
            with session_scope(self._session_factory) as db:
                db.query(Document.id).limit(1).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc

    async def _load(self, path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = collection_of(path), document_id(path)
        try:
            with session_scope(self._session_factory) as db:
                row = db.query(Document).filter(
                    Document.collection == collection,
                    Document.doc_id == doc_id,
                ).first()
                return dict(row.data) if row else None
        except SQLAlchemyError as exc:
            logger.warning("store_read_failed", path=path, error=str(exc))
            raise StoreUnavailable(f"Could not read {path}") from exc

    async def _save(self, path: str, data: Dict[str, Any]) -> None:
        collection, doc_id = collection_of(path), document_id(path)
        try:
            with session_scope(self._session_factory) as db:
                row = db.query(Document).filter(
                    Document.collection == collection,
                    Document.doc_id == doc_id,
                ).first()
                if row is None:
                    db.add(Document(collection=collection, doc_id=doc_id, data=data))
                else:
                    row.data = data
        except SQLAlchemyError as exc:
            logger.warning("store_write_failed", path=path, error=str(exc))
            raise StoreUnavailable(f"Could not write {path}") from exc

    async def _remove(self, path: str) -> bool:
        collection, doc_id = collection_of(path), document_id(path)
        try:
            with session_scope(self._session_factory) as db:
                deleted = db.query(Document).filter(
                    Document.collection == collection,
                    Document.doc_id == doc_id,
                ).delete()
                return deleted > 0
        except SQLAlchemyError as exc:
            logger.warning("store_delete_failed", path=path, error=str(exc))
            raise StoreUnavailable(f"Could not delete {path}") from exc

    async def _scan(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        collection = collection.strip("/")
        try:
            with session_scope(self._session_factory) as db:
                rows = db.query(Document).filter(Document.collection == collection).all()
                return [(f"{collection}/{row.doc_id}", dict(row.data)) for row in rows]
        except SQLAlchemyError as exc:
            logger.warning("store_scan_failed", collection=collection, error=str(exc))
            raise StoreUnavailable(f"Could not read {collection}") from exc
