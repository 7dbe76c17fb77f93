"""
Resource API

Generic CRUD resource controllers for SQLAlchemy models.
"""

from resource_api.controllers.base import ResourceController
from resource_api.db.base import Base

__all__ = [
    "Base",
    "ResourceController",
]

__version__ = "0.1.0"
