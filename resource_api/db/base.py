"""
SQLAlchemy Declarative Base

Models exposed through resource controllers subclass ``Base`` so that
controllers can resolve them from the shared registry by class name.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy ORM Base Class"""
    pass


def resolve_model(name: str, base: type[DeclarativeBase] = Base) -> type:
    """
    Find a mapped class by its class name

    Args:
        name: Class name, e.g. "Book"
        base: Declarative base whose registry is searched

    Returns:
        type: The mapped class

    Raises:
        LookupError: No mapped class has that name
    """
    for mapper in base.registry.mappers:
        if mapper.class_.__name__ == name:
            return mapper.class_
    raise LookupError(f"No mapped model named '{name}'")
