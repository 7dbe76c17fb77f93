"""
Database Module Initialization
"""

from resource_api.db.base import Base, resolve_model
from resource_api.db.session import get_db, init_db, AsyncSessionLocal

__all__ = [
    "Base",
    "resolve_model",
    "get_db",
    "init_db",
    "AsyncSessionLocal",
]
