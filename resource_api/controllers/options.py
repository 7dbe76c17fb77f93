"""
Query Option Builder

Translates a normalized parameter tree into ``QueryOptions`` and applies them
to SQLAlchemy ``select()`` statements.

Reserved parameters: limit, offset, order, include, attributes, exclude.
Any other top-level key is either a relation name (filter on the related
model) or a column of the model itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Collection, Optional

from sqlalchemy import Select, and_, inspect, select, func
from sqlalchemy.orm import aliased, load_only, selectinload
from sqlalchemy.orm.relationships import RelationshipProperty

from resource_api.common.errors import ValidationError
from resource_api.common.params import as_list

logger = logging.getLogger(__name__)

LIMIT = "limit"
OFFSET = "offset"
ORDER = "order"
INCLUDE = "include"
ATTRIBUTES = "attributes"
EXCLUDE = "exclude"
RESERVED = frozenset([LIMIT, OFFSET, ORDER, INCLUDE, ATTRIBUTES, EXCLUDE])

ASC = "ASC"
DESC = "DESC"

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


@dataclass(frozen=True)
class IncludeOption:
    """Eager loaded relation with optional filter and column selection"""

    name: str
    where: dict[str, Any] = field(default_factory=dict)
    attributes: Optional[list[str]] = None


@dataclass(frozen=True)
class OrderOption:
    """ORDER BY entry; ``relation`` is None for the model's own columns"""

    column: str
    direction: str = ASC
    relation: Optional[str] = None


@dataclass(frozen=True)
class QueryOptions:
    attributes: list[str]
    where: dict[str, Any]
    include: dict[str, IncludeOption]
    order: list[OrderOption]
    limit: int
    offset: int


# ============ Model introspection ============

def column_names(model: type) -> list[str]:
    """Attribute names of every mapped column, in declaration order"""
    return [attr.key for attr in inspect(model).column_attrs]


def relationships(model: type) -> dict[str, RelationshipProperty]:
    """Relationship properties of the model keyed by attribute name"""
    return {rel.key: rel for rel in inspect(model).relationships}


def primary_key_name(model: type) -> str:
    """
    Attribute name of the model's primary key

    Raises:
        TypeError: The model has a composite primary key
    """
    mapper = inspect(model)
    if len(mapper.primary_key) != 1:
        raise TypeError(f"{model.__name__} must have exactly one primary key column")
    return mapper.get_property_by_column(mapper.primary_key[0]).key


def _check_columns(model: type, names: Collection[str], what: str) -> None:
    known = set(column_names(model))
    unknown = [name for name in names if name not in known]
    if unknown:
        raise ValidationError(
            message=f"Unknown {what} for {model.__name__}: {', '.join(map(str, unknown))}",
            code=f"unknown_{what}",
            details={"model": model.__name__, what: unknown},
        )


# ============ Value coercion ============

def is_structured_column(model: type, key: str) -> bool:
    """Whether a column stores mappings or sequences (JSON, ARRAY)"""
    column = inspect(model).columns[key]
    try:
        return column.type.python_type in (dict, list)
    except NotImplementedError:
        return True


def coerce_value(model: type, key: str, value: Any, null_string: bool = True) -> Any:
    """
    Convert a query string value to the Python type of a column

    With ``null_string`` the string "null" (any case) becomes None.
    Non-string values pass through.

    Raises:
        ValidationError: The value cannot be converted
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    if null_string and value.lower() == "null":
        return None

    column = inspect(model).columns[key]
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    try:
        if python_type is bool:
            lowered = value.lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(value)
        if python_type is datetime:
            return datetime.fromisoformat(value)
        if python_type is date:
            return date.fromisoformat(value)
        if python_type in (int, float, Decimal):
            return python_type(value)
    except (ValueError, ArithmeticError):
        raise ValidationError(
            message=f"Invalid value for {model.__name__}.{key}: {value!r}",
            code="invalid_value",
            details={"field": key, "value": value},
        )
    return value


# ============ Filters ============

def _values(operand: Any) -> list:
    if isinstance(operand, (list, tuple)):
        return list(operand)
    return as_list(operand)


def _eq(column, operand, coerce):
    value = coerce(operand)
    return column.is_(None) if value is None else column == value


def _ne(column, operand, coerce):
    value = coerce(operand)
    return column.is_not(None) if value is None else column != value


def _between(column, operand, coerce):
    values = _values(operand)
    if len(values) != 2:
        raise ValidationError(
            message="'between' needs exactly two values",
            code="invalid_operator",
            details={"operator": "between", "value": operand},
        )
    return column.between(coerce(values[0]), coerce(values[1]))


def _is(column, operand, coerce):
    if coerce(operand) is not None:
        raise ValidationError(
            message="'is' only accepts null",
            code="invalid_operator",
            details={"operator": "is", "value": operand},
        )
    return column.is_(None)


_OPERATORS: dict[str, Callable[[Any, Any, Callable[[Any], Any]], Any]] = {
    "eq": _eq,
    "ne": _ne,
    "gt": lambda column, operand, coerce: column > coerce(operand),
    "gte": lambda column, operand, coerce: column >= coerce(operand),
    "lt": lambda column, operand, coerce: column < coerce(operand),
    "lte": lambda column, operand, coerce: column <= coerce(operand),
    "in": lambda column, operand, coerce: column.in_([coerce(v) for v in _values(operand)]),
    "notIn": lambda column, operand, coerce: column.not_in([coerce(v) for v in _values(operand)]),
    "like": lambda column, operand, coerce: column.like(operand),
    "notLike": lambda column, operand, coerce: column.not_like(operand),
    "iLike": lambda column, operand, coerce: column.ilike(operand),
    "between": _between,
    "is": _is,
}


def build_where(model: type, where: dict[str, Any]) -> list:
    """
    Build SQL criteria for filters on the model's own columns

    A scalar means equality, a list means IN and a mapping holds operators,
    e.g. ``{"year": {"gte": "1990", "lt": "2000"}}``.

    Returns:
        list: SQLAlchemy boolean clauses (joined with AND by the caller)

    Raises:
        ValidationError: Unknown column, unknown operator or bad value
    """
    _check_columns(model, list(where), "field")
    clauses = []
    for key, condition in where.items():
        column = getattr(model, key)

        def coerce(value, _key=key):
            return coerce_value(model, _key, value)

        if isinstance(condition, dict):
            for operator, operand in condition.items():
                build = _OPERATORS.get(operator)
                if build is None:
                    raise ValidationError(
                        message=f"Unknown operator '{operator}' for {model.__name__}.{key}",
                        code="invalid_operator",
                        details={"field": key, "operator": operator},
                    )
                clauses.append(build(column, operand, coerce))
        elif isinstance(condition, (list, tuple)):
            clauses.append(column.in_([coerce(v) for v in condition]))
        else:
            clauses.append(_eq(column, condition, coerce))
    return clauses


# ============ Option building ============

def _direction(value: Any, name: str) -> str:
    direction = str(value).strip().upper() if isinstance(value, str) else ""
    if direction not in (ASC, DESC):
        raise ValidationError(
            message=f"Invalid order direction for '{name}': {value!r}",
            code="invalid_order",
            details={"field": name, "direction": value},
        )
    return direction


def _to_int(value: Any, name: str, maximum: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            message=f"'{name}' must be an integer",
            code="invalid_pagination",
            details={name: value},
        )
    if number < 0 or (maximum is not None and number > maximum):
        raise ValidationError(
            message=f"'{name}' out of range: {number}",
            code="invalid_pagination",
            details={name: number, "max": maximum},
        )
    return number


def _parse_order(order_param: Any) -> list[tuple[str, Any]]:
    """``order=-year,title`` as well as ``order[year]=desc``"""
    if isinstance(order_param, dict):
        return list(order_param.items())
    pairs = []
    for name in as_list(order_param):
        if name.startswith("-"):
            pairs.append((name[1:], DESC))
        else:
            pairs.append((name, ASC))
    return pairs


def build_query_options(
    model: type,
    params: dict[str, Any],
    *,
    relations: Optional[Collection[str]] = None,
    default_limit: int = 100,
    default_offset: int = 0,
    max_limit: Optional[int] = None,
    default_attributes: Optional[Collection[str]] = None,
    default_exclude: Optional[Collection[str]] = None,
) -> QueryOptions:
    """
    Build query options from a parameter tree

    Args:
        model: Mapped class being queried
        params: Output of ``params_to_tree``
        relations: Relation names allowed for include/filter/order, all by default
        default_limit: Limit when the parameter is absent
        default_offset: Offset when the parameter is absent
        max_limit: Largest accepted limit
        default_attributes: Columns returned when "attributes" is absent
        default_exclude: Columns always removed from the selection

    Returns:
        QueryOptions: Validated options

    Raises:
        ValidationError: Any unknown name or malformed value
    """
    rels = relationships(model)
    if relations is not None:
        rels = {name: rel for name, rel in rels.items() if name in relations}

    include_where: dict[str, dict[str, Any]] = {}
    include_attributes: dict[str, Optional[list[str]]] = {}

    def add_include(name: str) -> None:
        include_where.setdefault(name, {})
        include_attributes.setdefault(name, None)

    # Relation filters: ?author.name=Ann&author.attributes=name
    for name, value in params.items():
        if name in RESERVED or name not in rels:
            continue
        if not isinstance(value, dict):
            raise ValidationError(
                message=f"Relation filter '{name}' needs nested fields, e.g. {name}.id=1",
                code="invalid_relation_filter",
                details={"relation": name},
            )
        target = rels[name].mapper.class_
        value = dict(value)
        attributes = value.pop(ATTRIBUTES, None)
        add_include(name)
        if attributes is not None:
            attributes = as_list(attributes)
            _check_columns(target, attributes, "attribute")
            include_attributes[name] = attributes
        build_where(target, value)
        include_where[name].update(value)

    for name in as_list(params.get(INCLUDE)):
        if name not in rels:
            raise ValidationError(
                message=f"Unknown relation '{name}' for {model.__name__}",
                code="unknown_relation",
                details={"relation": name, "relations": sorted(rels)},
            )
        add_include(name)

    order: list[OrderOption] = []
    if params.get(ORDER) is not None:
        for name, direction in _parse_order(params[ORDER]):
            if name in rels:
                rel = rels[name]
                if not isinstance(direction, dict):
                    raise ValidationError(
                        message=f"Order on relation '{name}' needs a field, e.g. order[{name}][id]=asc",
                        code="invalid_order",
                        details={"relation": name},
                    )
                if rel.uselist:
                    raise ValidationError(
                        message=f"Cannot order by collection relation '{name}'",
                        code="invalid_order",
                        details={"relation": name},
                    )
                target = rel.mapper.class_
                _check_columns(target, list(direction), "field")
                add_include(name)
                for column, value in direction.items():
                    order.append(OrderOption(column, _direction(value, column), relation=name))
            else:
                _check_columns(model, [name], "field")
                order.append(OrderOption(name, _direction(direction, name)))

    where = {
        name: value
        for name, value in params.items()
        if name not in RESERVED and name not in include_where
    }
    build_where(model, where)

    limit = _to_int(params.get(LIMIT, default_limit), LIMIT, max_limit)
    offset = _to_int(params.get(OFFSET, default_offset), OFFSET)

    attributes = (
        as_list(params.get(ATTRIBUTES))
        or list(default_attributes or [])
        or column_names(model)
    )
    excluded = set(as_list(params.get(EXCLUDE))) | set(default_exclude or [])
    _check_columns(model, attributes + sorted(excluded), "attribute")
    attributes = [name for name in attributes if name not in excluded]
    if not attributes:
        raise ValidationError(
            message=f"No attributes of {model.__name__} left to select",
            code="empty_selection",
            details={"model": model.__name__, "exclude": sorted(excluded)},
        )

    include = {
        name: IncludeOption(name, include_where[name], include_attributes[name])
        for name in include_where
    }
    logger.debug(
        "Query options for %s: where=%s include=%s order=%s limit=%s offset=%s",
        model.__name__,
        where,
        list(include),
        order,
        limit,
        offset,
    )
    return QueryOptions(
        attributes=attributes,
        where=where,
        include=include,
        order=order,
        limit=limit,
        offset=offset,
    )


# ============ Statement building ============

def _include_criteria(model: type, include: IncludeOption) -> list:
    target = relationships(model)[include.name].mapper.class_
    return build_where(target, include.where)


def apply_filters(stmt: Select, model: type, options: QueryOptions) -> Select:
    """
    Apply own-column filters and relation filters

    Relation filters become EXISTS subqueries so parent rows are never
    duplicated and counts match the page.
    """
    criteria = build_where(model, options.where)
    if criteria:
        stmt = stmt.where(*criteria)

    rels = relationships(model)
    for include in options.include.values():
        related = _include_criteria(model, include)
        if not related:
            continue
        attr = getattr(model, include.name)
        if rels[include.name].uselist:
            stmt = stmt.where(attr.any(and_(*related)))
        else:
            stmt = stmt.where(attr.has(and_(*related)))
    return stmt


def apply_options(
    stmt: Select,
    model: type,
    options: QueryOptions,
    *,
    paginate: bool = True,
) -> Select:
    """
    Apply filters, eager loading, column selection, ordering and paging

    Args:
        stmt: ``select(model)`` statement
        model: Mapped class
        options: Output of ``build_query_options``
        paginate: Apply LIMIT/OFFSET

    Returns:
        Select: New statement
    """
    stmt = apply_filters(stmt, model, options)

    rels = relationships(model)
    for include in options.include.values():
        attr = getattr(model, include.name)
        target = rels[include.name].mapper.class_
        related = _include_criteria(model, include)
        loader = selectinload(attr.and_(*related) if related else attr)
        if include.attributes:
            loader = loader.load_only(*[getattr(target, name) for name in include.attributes])
        stmt = stmt.options(loader)

    if options.attributes:
        stmt = stmt.options(load_only(*[getattr(model, name) for name in options.attributes]))

    joined: dict[str, Any] = {}
    for item in options.order:
        if item.relation is None:
            column = getattr(model, item.column)
        else:
            if item.relation not in joined:
                alias = aliased(rels[item.relation].mapper.class_)
                stmt = stmt.outerjoin(getattr(model, item.relation).of_type(alias))
                joined[item.relation] = alias
            column = getattr(joined[item.relation], item.column)
        stmt = stmt.order_by(column.desc() if item.direction == DESC else column.asc())

    if paginate:
        stmt = stmt.limit(options.limit).offset(options.offset)

    # Relation filters restrict loaded collections; refresh objects already in the session
    return stmt.execution_options(populate_existing=True)


def count_statement(model: type, options: QueryOptions) -> Select:
    """SELECT COUNT(*) over the same filters, ignoring order and paging"""
    return apply_filters(select(func.count()).select_from(model), model, options)
