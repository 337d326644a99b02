"""
Load and save pipeline for owners with reconciled relationships.

Reconcilers do not subscribe to ORM events. Services load and save owners
through these functions, which call each hook explicitly:

    load_owner: select (with eager-load options) -> on_load
    save_owner: before_validate -> add + flush -> after_insert | after_update
"""
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, TypeVar

from sqlalchemy import inspect, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

OwnerT = TypeVar("OwnerT")


class OwnerLifecycleHook(Protocol):
    """Hooks a reconciler implements to take part in an owner's lifecycle."""

    async def on_load(self, db: AsyncSession, owner: Any) -> None: ...

    async def before_validate(
        self,
        db: AsyncSession,
        owner: Any,
        params: Mapping[str, Any] | None = None,
    ) -> None: ...

    async def after_insert(self, db: AsyncSession, owner: Any) -> None: ...

    async def after_update(self, db: AsyncSession, owner: Any) -> None: ...


async def load_owner(
    db: AsyncSession,
    model: type[OwnerT],
    pk: Any,
    hooks: Sequence[OwnerLifecycleHook] = (),
) -> OwnerT | None:
    """
    Load an owner by primary key and run each hook's on_load.

    Hooks that provide `eager_load_options()` get their juncture relations
    loaded by the same query. Existing identities are repopulated so a reload
    always reflects the database.

    Args:
        db: Database session.
        model: Owner model class.
        pk: Primary key value, or a tuple of values for a composite key.
        hooks: Reconcilers attached to the model.

    Returns:
        The owner, or None if not found.
    """
    primary_key = inspect(model).primary_key
    if len(primary_key) == 1:
        condition = primary_key[0] == pk
    else:
        condition = tuple_(*primary_key) == tuple(pk)

    options = [
        option
        for hook in hooks
        if hasattr(hook, "eager_load_options")
        for option in hook.eager_load_options()
    ]
    result = await db.execute(
        select(model)
        .where(condition)
        .options(*options)
        .execution_options(populate_existing=True),
    )
    owner = result.scalar_one_or_none()
    if owner is None:
        return None

    for hook in hooks:
        await hook.on_load(db, owner)
    return owner


async def save_owner(
    db: AsyncSession,
    owner: OwnerT,
    hooks: Sequence[OwnerLifecycleHook] = (),
    params: Mapping[str, Any] | None = None,
) -> OwnerT:
    """
    Save an owner and reconcile its relationships.

    Note: Does not commit. Caller (session generator) handles commit at request end,
    so the owner row and its juncture rows commit or roll back together.

    Args:
        db: Database session.
        owner: New or loaded owner instance.
        hooks: Reconcilers attached to the owner's model.
        params: The owner's request parameters, for hooks that read them.

    Raises:
        PersistenceError: If a juncture row cannot be saved.
    """
    is_new = inspect(owner).identity is None
    for hook in hooks:
        await hook.before_validate(db, owner, params)

    db.add(owner)
    await db.flush()

    for hook in hooks:
        if is_new:
            await hook.after_insert(db, owner)
        else:
            await hook.after_update(db, owner)

    logger.debug("Saved %s (%s)", type(owner).__name__, "insert" if is_new else "update")
    return owner
