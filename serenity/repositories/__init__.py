"""
Persistence adapters.

Services and routers depend on the repository instead of opening SQLAlchemy
sessions themselves.
"""

from .sql_repository import SQLRepository

__all__ = ["SQLRepository"]
