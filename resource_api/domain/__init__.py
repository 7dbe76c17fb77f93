"""
Domain Model Module Initialization
"""

from resource_api.domain.resource import (
    AffectedMeta,
    AffectedRows,
    ResourceItem,
    ResourceList,
    ResourceMeta,
)

__all__ = [
    "AffectedMeta",
    "AffectedRows",
    "ResourceItem",
    "ResourceList",
    "ResourceMeta",
]
