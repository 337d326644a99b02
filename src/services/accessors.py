"""
Explicit field accessors for values that are not mapped attributes.

Some owner fields live outside the model, e.g. the ids of a symmetric
self-relation. Instead of intercepting attribute access on the model, services
register accessor factories per model class. Generic display code then reads a
field through the registry and does not need to know how it is stored.
"""
from collections.abc import Callable
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession


class FieldAccessor(Protocol):
    """Capabilities an accessor exposes for an owner instance."""

    def has_field(self, name: str) -> bool: ...

    def get_field(self, name: str) -> Any: ...

    async def load_field(self, db: AsyncSession, name: str) -> Any: ...

    def set_field(self, name: str, value: Any) -> None: ...

    def has_relation(self, name: str) -> bool: ...

    async def fetch_relation(self, db: AsyncSession, name: str) -> list[Any]: ...


AccessorFactory = Callable[[Any], FieldAccessor]


class AccessorRegistry:
    """Maps model classes to accessor factories."""

    def __init__(self) -> None:
        self._factories: dict[type, list[AccessorFactory]] = {}

    def register(self, model: type, factory: AccessorFactory) -> None:
        """Register an accessor factory for a model and its subclasses."""
        self._factories.setdefault(model, []).append(factory)

    def accessors_for(self, owner: Any) -> list[FieldAccessor]:
        """Build the accessors registered for an owner's class hierarchy."""
        return [
            factory(owner)
            for cls in type(owner).__mro__
            for factory in self._factories.get(cls, [])
        ]

    def read_field(self, owner: Any, name: str) -> Any:
        """
        Read a field from an owner.

        Registered accessors take precedence; anything else is read as a plain
        attribute. Accessors that load lazily may raise if the field was not
        loaded yet; see `load_field`.

        Raises:
            AttributeError: If neither an accessor nor the owner has the field.
        """
        for accessor in self.accessors_for(owner):
            if accessor.has_field(name):
                return accessor.get_field(name)
        return getattr(owner, name)

    async def load_field(self, db: AsyncSession, owner: Any, name: str) -> Any:
        """
        Read a field from an owner, loading it first if an accessor needs to.

        Use this for owners that did not come through `load_owner`, e.g. ones
        fetched with `db.get`.

        Raises:
            AttributeError: If neither an accessor nor the owner has the field.
        """
        for accessor in self.accessors_for(owner):
            if accessor.has_field(name):
                return await accessor.load_field(db, name)
        return getattr(owner, name)

    def write_field(self, owner: Any, name: str, value: Any) -> None:
        """Write a field on an owner, through a registered accessor if one has it."""
        for accessor in self.accessors_for(owner):
            if accessor.has_field(name):
                accessor.set_field(name, value)
                return
        setattr(owner, name, value)

    async def read_relation(self, db: AsyncSession, owner: Any, name: str) -> list[Any]:
        """
        Load a relation of an owner through a registered accessor.

        Raises:
            AttributeError: If no registered accessor provides the relation.
        """
        for accessor in self.accessors_for(owner):
            if accessor.has_relation(name):
                return await accessor.fetch_relation(db, name)
        raise AttributeError(f"{type(owner).__name__} has no registered relation {name!r}")


accessors = AccessorRegistry()
