"""SQLAlchemy declarative base with common mixins."""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ScenarioMixin:
    """
    Mixin that gives an owner model a lifecycle scenario.

    The scenario is a plain instance attribute (not a column). Juncture
    relationships can be restricted to, or excluded from, named scenarios such
    as "create", "update" or "search".
    """

    scenario = "default"
