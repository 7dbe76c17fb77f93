"""
API Router Module Initialization
"""

from resource_api.api.deps import DbSession, get_db
from resource_api.api.resources import build_resource_router

__all__ = [
    "DbSession",
    "get_db",
    "build_resource_router",
]
