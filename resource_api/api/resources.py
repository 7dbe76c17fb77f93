"""
Resource Router Factory

Exposes any ``ResourceController`` subclass as REST endpoints.
"""

from typing import Annotated, Any, Optional, Sequence

from fastapi import APIRouter, Body, Depends, Request, Response, params, status

from resource_api.api.deps import controller_dependency
from resource_api.common.params import params_to_tree
from resource_api.controllers.base import ResourceController
from resource_api.domain.resource import (
    AffectedMeta,
    AffectedRows,
    CreatedItem,
    ResourceItem,
    ResourceList,
)


def build_resource_router(
    controller_cls: type[ResourceController],
    prefix: str,
    tags: Optional[list[str]] = None,
    dependencies: Optional[Sequence[params.Depends]] = None,
) -> APIRouter:
    """
    Build CRUD routes for a controller

    Args:
        controller_cls: Controller subclass, instantiated per request
        prefix: Route prefix, e.g. "/books"
        tags: OpenAPI tags, defaults to the controller name
        dependencies: Extra route dependencies (e.g. authentication)

    Returns:
        APIRouter: Router with list / get / create / update / delete routes
    """
    router = APIRouter(
        prefix=prefix,
        tags=tags or [controller_cls.__name__],
        dependencies=list(dependencies or []),
    )
    Controller = Annotated[ResourceController, Depends(controller_dependency(controller_cls))]

    @router.get("", response_model=ResourceList)
    async def find_resources(request: Request, controller: Controller):
        """
        Get record list

        Filtering, includes, ordering and paging come from the query string.
        """
        return await controller.find(request.query_params)

    @router.get("/{id}", response_model=ResourceItem)
    async def get_resource(id: str, request: Request, controller: Controller):
        """
        Get single record
        """
        return await controller.find_by_id(id, request.query_params)

    @router.post("", response_model=CreatedItem, status_code=status.HTTP_201_CREATED)
    async def create_resource(
        response: Response, controller: Controller, data: dict[str, Any] = Body(...)
    ):
        """
        Create record

        Answers 200 with the existing record when the payload collides with a
        unique constraint.
        """
        result = await controller.create(data)
        if not result["meta"]["created"]:
            response.status_code = status.HTTP_200_OK
        return result

    @router.put("/{id}", response_model=AffectedRows)
    async def update_resource(id: str, controller: Controller, data: dict[str, Any] = Body(...)):
        """
        Update record
        """
        affected = await controller.update(id, data)
        return AffectedRows(meta=AffectedMeta(affected=affected))

    @router.delete("/{id}", response_model=AffectedRows)
    async def delete_resource(id: str, request: Request, controller: Controller):
        """
        Delete record

        Extra query parameters narrow the condition, e.g. ``?status=draft``.
        """
        condition = params_to_tree(request.query_params)
        condition[controller.primary_key] = id
        affected = await controller.remove(condition)
        return AffectedRows(meta=AffectedMeta(affected=affected))

    return router
