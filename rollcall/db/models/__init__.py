"""Database models."""
from rollcall.db.models.document import Document

__all__ = ["Document"]
