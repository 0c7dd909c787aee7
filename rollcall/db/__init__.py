"""Database package."""
from rollcall.db.base import Base
from rollcall.db.session import make_engine, make_session_factory, session_scope

__all__ = ["Base", "make_engine", "make_session_factory", "session_scope"]
