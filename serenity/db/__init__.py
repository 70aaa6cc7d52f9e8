"""Database helpers (engine lifecycle, status and models)."""

from .session import Base, Database, DatabaseStatus

__all__ = ["Base", "Database", "DatabaseStatus"]
