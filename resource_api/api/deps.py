"""
API Dependency Injection Module

Provides dependencies required by FastAPI routes.
"""

from typing import Annotated, Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resource_api.controllers.base import ResourceController
from resource_api.db.session import get_db as _get_db


async def get_db():
    """
    Get database session dependency

    Yields:
        AsyncSession: Async database session
    """
    async for session in _get_db():
        yield session


# Database session dependency type
DbSession = Annotated[AsyncSession, Depends(get_db)]


def controller_dependency(
    controller_cls: type[ResourceController],
) -> Callable[[AsyncSession], ResourceController]:
    """Dependency building a controller bound to the request session"""

    def get_controller(db: DbSession) -> ResourceController:
        return controller_cls(db)

    return get_controller
