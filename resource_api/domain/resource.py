"""
Resource Response Models

Envelopes returned by resource endpoints.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ResourceMeta(BaseModel):
    """Paging information of a list response"""

    # Number of records in this page
    count: int = Field(..., ge=0, description="Records in this page")
    # Number of records matching the filters
    total: int = Field(..., ge=0, description="Records matching the filters")
    limit: int = Field(..., ge=0, description="Applied limit")
    offset: int = Field(..., ge=0, description="Applied offset")


class ResourceList(BaseModel):
    """List Response"""

    data: list[dict[str, Any]]
    meta: ResourceMeta


class ResourceItem(BaseModel):
    """Single Record Response"""

    data: Optional[dict[str, Any]]


class CreatedMeta(BaseModel):
    created: bool = Field(..., description="False when an existing record was returned")


class CreatedItem(BaseModel):
    """Create Response"""

    data: dict[str, Any]
    meta: CreatedMeta


class AffectedMeta(BaseModel):
    affected: int = Field(..., ge=0, description="Rows written")


class AffectedRows(BaseModel):
    """Update / Delete Response"""

    meta: AffectedMeta
