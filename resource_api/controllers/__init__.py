"""
Controller Module Initialization
"""

from resource_api.controllers.base import ResourceController
from resource_api.controllers.options import (
    IncludeOption,
    OrderOption,
    QueryOptions,
    apply_options,
    build_query_options,
    build_where,
)

__all__ = [
    "ResourceController",
    "IncludeOption",
    "OrderOption",
    "QueryOptions",
    "apply_options",
    "build_query_options",
    "build_where",
]
