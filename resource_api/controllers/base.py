"""
Base CRUD Resource Controller

Subclass ``ResourceController`` once per model to get find / find_by_id /
create / update / remove driven by request parameters.
"""

import logging
from typing import Any, Collection, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from resource_api.common.errors import (
    ConflictError,
    NotFoundError,
    NothingDeletedError,
    NothingUpdatedError,
    ValidationError,
)
from resource_api.common.params import params_to_tree
from resource_api.config import get_settings
from resource_api.controllers.options import (
    QueryOptions,
    apply_options,
    build_query_options,
    build_where,
    coerce_value,
    column_names,
    count_statement,
    is_structured_column,
    primary_key_name,
    relationships,
)
from resource_api.db.base import resolve_model

logger = logging.getLogger(__name__)


def is_unique_violation(exc: IntegrityError) -> bool:
    """Whether an IntegrityError was raised by a UNIQUE constraint"""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code == "23505"
    return "unique" in str(orig).lower()


class ResourceController:
    """
    Base CRUD Resource Controller

    The model is taken from the ``model`` class attribute, or resolved from the
    declarative registry by the subclass name::

        class Book(ResourceController):
            default_exclude = ["internal_notes"]

    Query parameters (after ``params_to_tree``):

    - ``limit`` / ``offset``: paging, defaults ``LIMIT`` / ``OFFSET``
    - ``order``: ``order[year]=desc``, ``order[author][name]=asc`` or ``order=-year``
    - ``include``: relations to load, ``include=author,tags``
    - ``attributes`` / ``exclude``: column selection
    - ``<relation>.<field>``: filter on a related model, ``<relation>.attributes`` selects its columns
    - ``<field>``: filter on the model's own columns, ``year[gte]=1990``
    """

    model: Optional[type] = None
    # Relation names usable in requests, None allows every relationship
    relations: Optional[Collection[str]] = None
    default_attributes: Optional[list[str]] = None
    default_exclude: Optional[list[str]] = None

    # None falls back to the settings
    LIMIT: Optional[int] = None
    OFFSET: Optional[int] = None
    MAX_LIMIT: Optional[int] = None

    def __init__(self, session: AsyncSession):
        """
        Initialize Controller

        Args:
            session: Async database session

        Raises:
            LookupError: No model attribute and no mapped class named like the controller
        """
        self.session = session
        self.model = type(self).model or resolve_model(type(self).__name__)
        self.model_name = self.model.__name__

        all_relations = list(relationships(self.model))
        if type(self).relations is None:
            self.relations = all_relations
        else:
            self.relations = [name for name in type(self).relations if name in all_relations]

        self.primary_key = primary_key_name(self.model)

        settings = get_settings()
        self.limit = self.LIMIT if self.LIMIT is not None else settings.DEFAULT_LIMIT
        self.offset = self.OFFSET if self.OFFSET is not None else settings.DEFAULT_OFFSET
        self.max_limit = self.MAX_LIMIT if self.MAX_LIMIT is not None else settings.MAX_LIMIT

    # ============ Read ============

    async def find(self, params: Any = None) -> dict[str, Any]:
        """
        Find a page of records

        Args:
            params: Flat or nested request parameters

        Returns:
            dict: {"data": [...], "meta": {"count", "total", "limit", "offset"}}

        Raises:
            ValidationError: Malformed parameters
        """
        options = self.get_options(params_to_tree(params))

        result = await self.session.execute(
            apply_options(select(self.model), self.model, options)
        )
        data = [self.serialize(entity, options) for entity in result.scalars().all()]

        total_result = await self.session.execute(count_statement(self.model, options))
        total = total_result.scalar() or 0

        return {
            "data": data,
            "meta": {
                "count": len(data),
                "total": total,
                "limit": options.limit,
                "offset": options.offset,
            },
        }

    async def find_by_id(self, id: Any, params: Any = None) -> dict[str, Any]:
        """
        Find one record by primary key

        Filters, includes and attribute selection apply as in ``find``.

        Raises:
            NotFoundError: No record matches
        """
        options = self.get_options(params_to_tree(params))
        pk = getattr(self.model, self.primary_key)

        stmt = apply_options(select(self.model), self.model, options, paginate=False)
        stmt = stmt.where(pk == coerce_value(self.model, self.primary_key, id))
        result = await self.session.execute(stmt)
        entity = result.scalar_one_or_none()

        if entity is None:
            raise NotFoundError(
                message=f"{self.model_name} with id {id} not found",
                code=f"{self.model_name.lower()}_not_found",
            )
        return {"data": self.serialize(entity, options)}

    # ============ Write ============

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create a record

        If the insert violates a unique constraint, the existing record
        matching ``data`` is returned instead, with ``meta.created`` false.

        Returns:
            dict: {"data": item, "meta": {"created": bool}}

        Raises:
            ValidationError: Unknown fields or values of the wrong shape
            ConflictError: Any other integrity error, or no existing record found
        """
        values = self._prepare_payload(data)
        entity = self.model(**values)
        self.session.add(entity)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if not is_unique_violation(exc):
                raise ConflictError(
                    message=f"Cannot create {self.model_name}: {exc.orig}",
                    code="integrity_error",
                ) from exc

            logger.info("%s already exists, returning existing record", self.model_name)
            existing = await self._find_one(values)
            if existing is None:
                raise ConflictError(
                    message=f"{self.model_name} conflicts with an existing record",
                    code="duplicate",
                ) from exc
            return {"data": self.serialize(existing), "meta": {"created": False}}
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        await self.session.refresh(entity)
        return {"data": self.serialize(entity), "meta": {"created": True}}

    async def update(self, id: Any, data: dict[str, Any]) -> int:
        """
        Update the record with the given primary key

        Returns:
            int: Number of affected rows

        Raises:
            ValidationError: Unknown fields or empty payload
            ConflictError: Integrity error
            NothingUpdatedError: No row matched (204)
        """
        values = self._prepare_payload(data)
        if not values:
            raise ValidationError(message="Nothing to update", code="empty_update")

        pk = getattr(self.model, self.primary_key)
        stmt = (
            update(self.model)
            .where(pk == coerce_value(self.model, self.primary_key, id))
            .values({getattr(self.model, key): value for key, value in values.items()})
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(
                message=f"Cannot update {self.model_name} {id}: {exc.orig}",
                code="integrity_error",
            ) from exc
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        if not result.rowcount:
            logger.info("Update of %s %s matched no rows", self.model_name, id)
            raise NothingUpdatedError(message=f"{self.model_name} {id} not updated")
        return result.rowcount

    async def remove(self, condition: Any) -> int:
        """
        Delete every record matching the condition

        Args:
            condition: Filters in the same grammar as ``find``

        Returns:
            int: Number of deleted rows

        Raises:
            ValidationError: Empty or malformed condition
            ConflictError: Rows still referenced
            NothingDeletedError: No row matched (202)
        """
        condition = params_to_tree(condition)
        if not condition:
            raise ValidationError(
                message=f"Refusing to delete {self.model_name} without a condition",
                code="empty_condition",
            )

        stmt = delete(self.model).where(*build_where(self.model, condition))
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError(
                message=f"Cannot delete {self.model_name}: {exc.orig}",
                code="integrity_error",
            ) from exc
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        if not result.rowcount:
            logger.info("Delete of %s matched no rows condition=%s", self.model_name, condition)
            raise NothingDeletedError(message=f"No {self.model_name} deleted")
        return result.rowcount

    # ============ Helpers ============

    def get_options(self, params: dict[str, Any]) -> QueryOptions:
        """Build query options; override to add per-resource defaults"""
        return build_query_options(
            self.model,
            params,
            relations=self.relations,
            default_limit=self.limit,
            default_offset=self.offset,
            max_limit=self.max_limit,
            default_attributes=self.default_attributes,
            default_exclude=self.default_exclude,
        )

    def serialize(self, entity: Any, options: Optional[QueryOptions] = None) -> dict[str, Any]:
        """
        Convert an entity to a plain dict

        Only selected attributes and included relations are read, so nothing
        triggers a lazy load.
        """
        if options is None:
            options = self.get_options({})

        data = {name: getattr(entity, name) for name in options.attributes}

        rels = relationships(self.model)
        for include in options.include.values():
            target = rels[include.name].mapper.class_
            attributes = include.attributes or column_names(target)
            related = getattr(entity, include.name)
            if related is None:
                data[include.name] = None
            elif rels[include.name].uselist:
                data[include.name] = [
                    {name: getattr(item, name) for name in attributes} for item in related
                ]
            else:
                data[include.name] = {name: getattr(related, name) for name in attributes}
        return data

    def _prepare_payload(self, data: Any) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError(message="Payload must be an object", code="invalid_payload")
        known = set(column_names(self.model))
        unknown = [key for key in data if key not in known]
        if unknown:
            raise ValidationError(
                message=f"Unknown fields for {self.model_name}: {', '.join(unknown)}",
                code="unknown_field",
                details={"fields": unknown},
            )
        malformed = [
            key
            for key, value in data.items()
            if isinstance(value, (dict, list)) and not is_structured_column(self.model, key)
        ]
        if malformed:
            raise ValidationError(
                message=f"Fields of {self.model_name} need scalar values: {', '.join(malformed)}",
                code="invalid_value",
                details={"fields": malformed},
            )
        return {
            key: coerce_value(self.model, key, value, null_string=False)
            for key, value in data.items()
        }

    async def _find_one(self, values: dict[str, Any]) -> Optional[Any]:
        criteria = [
            getattr(self.model, key) == value
            for key, value in values.items()
            if not isinstance(value, (dict, list))
        ]
        result = await self.session.execute(select(self.model).where(*criteria).limit(1))
        return result.scalars().first()
