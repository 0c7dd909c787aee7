"""Document model."""
from sqlalchemy import JSON, Column, Index, Integer, String, UniqueConstraint

from rollcall.db.base import Base


class Document(Base):
    """One JSON document of the SQL-backed real-time store."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(255), nullable=False)
    doc_id = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False)

    __table_args__ = (
        Index("idx_documents_collection", "collection"),
        UniqueConstraint("collection", "doc_id", name="uq_collection_doc"),
    )
