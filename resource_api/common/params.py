"""
Request Parameter Normalization

Turns flat query string pairs such as ``author.name=Ann`` or
``order[author][name]=desc`` into a nested dictionary.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from resource_api.common.errors import ValidationError


def _iter_pairs(params: Any) -> Iterable[tuple[str, Any]]:
    if params is None:
        return []
    # starlette QueryParams / MultiDict keep repeated keys
    if hasattr(params, "multi_items"):
        return params.multi_items()
    if isinstance(params, Mapping):
        return params.items()
    return params


def split_key(key: str) -> tuple[list[str], bool]:
    """
    Split a parameter key into path segments

    Both dotted and bracket notation are accepted and may be mixed.

    Returns:
        tuple[list[str], bool]: (Path segments, whether the key ends with "[]")

    Example:
        >>> split_key("order[author].name")
        (['order', 'author', 'name'], False)
        >>> split_key("include[]")
        (['include'], True)
    """
    force_list = key.endswith("[]")
    normalized = key.replace("]", "").replace("[", ".")
    return [segment for segment in normalized.split(".") if segment], force_list


def _assign(tree: dict, path: list[str], value: Any, force_list: bool, key: str) -> None:
    if isinstance(value, Mapping):
        for child_key, child_value in value.items():
            child_path, child_list = split_key(str(child_key))
            _assign(tree, path + child_path, child_value, child_list, key)
        return

    node = tree
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ValidationError(
                message=f"Parameter '{key}' conflicts with a plain value",
                code="invalid_parameter",
                details={"parameter": key},
            )
        node = child

    leaf = path[-1]
    values = list(value) if isinstance(value, (list, tuple)) else [value]

    if leaf not in node:
        node[leaf] = values if force_list or isinstance(value, (list, tuple)) else value
        return

    existing = node[leaf]
    if isinstance(existing, dict):
        raise ValidationError(
            message=f"Parameter '{key}' conflicts with nested parameters",
            code="invalid_parameter",
            details={"parameter": key},
        )
    if isinstance(existing, list):
        existing.extend(values)
    else:
        node[leaf] = [existing, *values]


def params_to_tree(params: Any) -> dict[str, Any]:
    """
    Normalize request parameters into a tree

    Repeated keys accumulate into a list in arrival order; nested mappings
    passed in directly are merged with dotted keys.

    Args:
        params: Mapping, starlette QueryParams, or iterable of (key, value) pairs

    Returns:
        dict: Nested parameter tree

    Raises:
        ValidationError: A key is used both as a value and as a branch

    Example:
        >>> params_to_tree([("author.name", "Ann"), ("limit", "5")])
        {'author': {'name': 'Ann'}, 'limit': '5'}
    """
    tree: dict[str, Any] = {}
    for key, value in _iter_pairs(params):
        path, force_list = split_key(str(key))
        if not path:
            continue
        _assign(tree, path, value, force_list, str(key))
    return tree


def as_list(value: Any) -> list:
    """
    Coerce a parameter value into a list of names

    Strings are split on commas and blank entries dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        result = []
        for item in value:
            result.extend(as_list(item))
        return result
    return [value]
