"""
Symmetric many-to-many relationships between records of the same model.

A self-relation juncture table has two columns that both reference the owner's
table. A row (a, b) relates a to b and b to a, so related records are read as
the union of both directions and removed with a condition matching either
orientation. New rows store the partner in the first column and the owner in
the second.

The submitted ids are only applied when present in the request parameters. A
missing key leaves the relation untouched; a present but empty value removes
every relation.
"""
import logging
import weakref
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy import Select, and_, delete, inspect, or_, select, union
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schemas.juncture import SelfRelationConfig
from services.accessors import AccessorRegistry, accessors
from services.exceptions import ConfigurationError, PersistenceError, RelationNotLoadedError
from services.juncture_descriptor import coerce_key, column_python_type, table_name
from services.utils import is_id_collection, singularize, unique_in_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelfRelationDescriptor:
    """Fully resolved configuration for one self-relation."""

    relation_name: str
    owner_model: type
    relation_model: type
    juncture_model: type
    first_key_column: str
    second_key_column: str
    related_ids_field: str
    owner_key: str
    owner_key_type: type | None
    related_key: str
    request_param: str | None
    raise_on_failed_save: bool


@dataclass
class SelfRelationState:
    ids: list[Any] | None = None
    original_ids: list[Any] = field(default_factory=list)
    populated: bool = False
    marked_for_save: bool = False
    cached_relation: list[Any] | None = None


def _single_primary_key(model: type) -> str:
    mapper = inspect(model)
    if len(mapper.primary_key) != 1:
        raise ConfigurationError(
            f"{model.__name__} must have a single-column primary key to relate to itself",
        )
    return mapper.get_property_by_column(mapper.primary_key[0]).key


def resolve_self_relation(
    owner_model: type,
    config: SelfRelationConfig | Mapping[str, Any],
) -> SelfRelationDescriptor:
    """
    Resolve a self-relation configuration against an owner model.

    Raises:
        ConfigurationError: If an option is invalid or a column does not exist
            on the juncture model.
    """
    if not isinstance(config, SelfRelationConfig):
        try:
            config = SelfRelationConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid self-relation configuration on {owner_model.__name__}: {e}",
            ) from e

    owner_table = singularize(table_name(owner_model))
    first_key_column = config.first_key_column or f"{owner_table}_id_a"
    second_key_column = config.second_key_column or f"{owner_table}_id_b"
    juncture_mapper = inspect(config.juncture_model)
    for option, column in (
        ("first_key_column", first_key_column),
        ("second_key_column", second_key_column),
    ):
        if column not in juncture_mapper.column_attrs:
            raise ConfigurationError(
                f"`{option}` value `{column}` is not a column of "
                f"{config.juncture_model.__name__} (self-relation `{config.relation_name}` "
                f"on {owner_model.__name__})",
            )
    if first_key_column == second_key_column:
        raise ConfigurationError("`first_key_column` and `second_key_column` must differ")

    if hasattr(owner_model, config.relation_name):
        raise ConfigurationError(
            f"Self-relation `{config.relation_name}` clashes with an existing attribute "
            f"of {owner_model.__name__}",
        )

    relation_model = config.relation_model or owner_model
    owner_key = _single_primary_key(owner_model)
    return SelfRelationDescriptor(
        relation_name=config.relation_name,
        owner_model=owner_model,
        relation_model=relation_model,
        juncture_model=config.juncture_model,
        first_key_column=first_key_column,
        second_key_column=second_key_column,
        related_ids_field=config.related_ids_field or f"{singularize(config.relation_name)}_ids",
        owner_key=owner_key,
        owner_key_type=column_python_type(inspect(owner_model), owner_key),
        related_key=_single_primary_key(relation_model),
        request_param=config.request_param,
        raise_on_failed_save=config.raise_on_failed_save,
    )


class SelfRelationReconciler:
    """
    Reads and saves symmetric self-relations of an owner model.

    Create one per owner model with `SelfRelationReconciler.attach()`, which
    also registers a SelfRelationView for the model so the ids and related
    records can be read like ordinary fields through the accessor registry.
    """

    def __init__(self, descriptors: Sequence[SelfRelationDescriptor]) -> None:
        self.descriptors = tuple(descriptors)
        self._by_name = {d.relation_name: d for d in self.descriptors}
        self._states: weakref.WeakKeyDictionary[Any, dict[str, SelfRelationState]] = (
            weakref.WeakKeyDictionary()
        )

    @classmethod
    def attach(
        cls,
        owner_model: type,
        configs: Sequence[SelfRelationConfig | Mapping[str, Any]],
        *,
        registry: AccessorRegistry = accessors,
    ) -> "SelfRelationReconciler":
        """
        Resolve self-relation configs for an owner model and register its view.

        Raises:
            ConfigurationError: If no self-relation is configured or one is invalid.
        """
        if not configs:
            raise ConfigurationError(
                f"At least one self-relation must be configured for {owner_model.__name__}",
            )
        reconciler = cls([resolve_self_relation(owner_model, config) for config in configs])
        registry.register(owner_model, lambda owner: SelfRelationView(owner, reconciler))
        return reconciler

    def descriptor(self, relation_name: str) -> SelfRelationDescriptor:
        """
        Get the descriptor of a self-relation by name.

        Raises:
            KeyError: If the relation is not configured.
        """
        try:
            return self._by_name[relation_name]
        except KeyError:
            raise KeyError(f"No self-relation named {relation_name!r}") from None

    def state_for(self, owner: Any, relation_name: str) -> SelfRelationState:
        """Get (or start) the state of one owner/self-relation pair."""
        states = self._states.setdefault(owner, {})
        if relation_name not in states:
            states[relation_name] = SelfRelationState()
        return states[relation_name]

    # --- Reads ---

    def _partner_ids_query(self, descriptor: SelfRelationDescriptor, owner_id: Any):  # noqa: ANN202
        juncture = descriptor.juncture_model
        first = getattr(juncture, descriptor.first_key_column)
        second = getattr(juncture, descriptor.second_key_column)
        return union(
            select(second.label("partner_id")).where(first == owner_id),
            select(first.label("partner_id")).where(second == owner_id),
        )

    def related_query(self, owner: Any, relation_name: str) -> Select:
        """
        Query for the records related to an owner in either direction.

        Given rows (1, 2) and (3, 1), the query for owner 1 returns records 2 and 3.
        """
        descriptor = self.descriptor(relation_name)
        owner_id = getattr(owner, descriptor.owner_key)
        partner_ids = self._partner_ids_query(descriptor, owner_id).subquery()
        related_key = getattr(descriptor.relation_model, descriptor.related_key)
        return (
            select(descriptor.relation_model)
            .where(related_key.in_(select(partner_ids.c.partner_id)))
            .order_by(related_key)
        )

    async def fetch_related(
        self,
        db: AsyncSession,
        owner: Any,
        relation_name: str,
    ) -> list[Any]:
        """Load the related records of an owner. Cached until the relation is saved."""
        state = self.state_for(owner, relation_name)
        if state.cached_relation is None:
            if inspect(owner).identity is None:
                state.cached_relation = []
            else:
                result = await db.execute(self.related_query(owner, relation_name))
                state.cached_relation = list(result.scalars().all())
        return state.cached_relation

    async def ensure_populated(
        self,
        db: AsyncSession,
        owner: Any,
        relation_name: str,
    ) -> None:
        """
        Snapshot the stored partner ids of an owner once.

        An owner that is not persisted yet has no partners. Ids already set
        (e.g. from request parameters) are kept; otherwise they start as the
        stored ids.
        """
        descriptor = self.descriptor(relation_name)
        state = self.state_for(owner, relation_name)
        if state.populated:
            return
        if inspect(owner).identity is None:
            original_ids = []
        else:
            owner_id = getattr(owner, descriptor.owner_key)
            result = await db.execute(self._partner_ids_query(descriptor, owner_id))
            original_ids = sorted(result.scalars().all())
        state.original_ids = original_ids
        if state.ids is None:
            state.ids = list(original_ids)
        state.populated = True

    async def on_load(self, db: AsyncSession, owner: Any) -> None:
        """Reset and snapshot every self-relation after the owner is loaded."""
        states = self._states.setdefault(owner, {})
        for descriptor in self.descriptors:
            states[descriptor.relation_name] = SelfRelationState()
            await self.ensure_populated(db, owner, descriptor.relation_name)

    def get_ids(self, owner: Any, relation_name: str) -> list[Any]:
        """
        Current partner ids of an owner (submitted ids once set).

        Raises:
            RelationNotLoadedError: If the owner is stored but its partner ids
                were neither loaded nor set.
        """
        state = self.state_for(owner, relation_name)
        if state.ids is None and not state.populated and inspect(owner).identity is not None:
            raise RelationNotLoadedError(type(owner).__name__, relation_name)
        return list(state.ids or [])

    def set_ids(self, owner: Any, relation_name: str, values: Any) -> None:
        """
        Set the desired partner ids and mark the relation for saving.

        A value that is not a collection (an empty form field) means no partners.
        """
        descriptor = self.descriptor(relation_name)
        state = self.state_for(owner, relation_name)
        state.ids = self._coerce_ids(descriptor, values) if is_id_collection(values) else []
        state.marked_for_save = True

    # --- Request parameters ---

    def load_request_params(self, owner: Any, params: Mapping[str, Any]) -> list[str]:
        """
        Apply the ids fields present in an owner's request parameters.

        Returns:
            Names of the relations that were set.
        """
        applied = []
        for descriptor in self.descriptors:
            if descriptor.related_ids_field not in params:
                continue
            self.set_ids(owner, descriptor.relation_name, params[descriptor.related_ids_field])
            applied.append(descriptor.relation_name)
        return applied

    async def before_validate(
        self,
        db: AsyncSession,
        owner: Any,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        """Snapshot stored ids for every relation present in params, then apply params."""
        if not params:
            return
        for descriptor in self.descriptors:
            if descriptor.related_ids_field in params:
                await self.ensure_populated(db, owner, descriptor.relation_name)
        self.load_request_params(owner, params)

    # --- Saves ---

    async def after_insert(self, db: AsyncSession, owner: Any) -> None:
        await self.after_save(db, owner)

    async def after_update(self, db: AsyncSession, owner: Any) -> None:
        await self.after_save(db, owner)

    async def after_save(self, db: AsyncSession, owner: Any) -> None:
        """
        Write the difference between stored and desired partner ids.

        Removed partners are deleted with one statement matching both
        orientations. Added partners are inserted one row at a time.

        Raises:
            PersistenceError: If a row cannot be saved and the relation raises
                on failed saves (the default).
        """
        for descriptor in self.descriptors:
            state = self.state_for(owner, descriptor.relation_name)
            if not state.marked_for_save:
                continue
            await self.ensure_populated(db, owner, descriptor.relation_name)

            owner_id = getattr(owner, descriptor.owner_key)
            desired = list(state.ids or [])
            desired_set = set(desired)
            original = set(state.original_ids)
            to_remove = [i for i in state.original_ids if i not in desired_set]
            to_add = [i for i in desired if i not in original]

            if to_remove:
                await self._delete_partners(db, descriptor, owner_id, to_remove)

            failed = []
            for partner_id in to_add:
                if not await self._insert_partner(db, descriptor, owner_id, partner_id):
                    failed.append(partner_id)

            state.original_ids = [i for i in desired if i not in failed]
            state.ids = list(state.original_ids)
            state.marked_for_save = False
            state.cached_relation = None

    def _coerce_ids(self, descriptor: SelfRelationDescriptor, values: Any) -> list[Any]:
        coerced = []
        for value in values:
            try:
                coerced.append(coerce_key(value, descriptor.owner_key_type))
            except (TypeError, ValueError) as e:
                raise PersistenceError(
                    descriptor.relation_name, value, "create", f"Invalid related id: {e}",
                ) from e
        return unique_in_order(coerced)

    async def _delete_partners(
        self,
        db: AsyncSession,
        descriptor: SelfRelationDescriptor,
        owner_id: Any,
        partner_ids: list[Any],
    ) -> None:
        juncture = descriptor.juncture_model
        first = getattr(juncture, descriptor.first_key_column)
        second = getattr(juncture, descriptor.second_key_column)
        try:
            await db.execute(
                delete(juncture).where(
                    or_(
                        and_(first == owner_id, second.in_(partner_ids)),
                        and_(second == owner_id, first.in_(partner_ids)),
                    ),
                ),
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                descriptor.relation_name, partner_ids, "delete", str(getattr(e, "orig", e)),
            ) from e
        logger.debug(
            "Deleted %s rows between %r and %r",
            juncture.__name__,
            owner_id,
            partner_ids,
        )

    async def _insert_partner(
        self,
        db: AsyncSession,
        descriptor: SelfRelationDescriptor,
        owner_id: Any,
        partner_id: Any,
    ) -> bool:
        row = descriptor.juncture_model(
            **{
                descriptor.first_key_column: partner_id,
                descriptor.second_key_column: owner_id,
            },
        )
        if descriptor.raise_on_failed_save:
            try:
                db.add(row)
                await db.flush()
            except SQLAlchemyError as e:
                raise PersistenceError(
                    descriptor.relation_name, partner_id, "create", str(getattr(e, "orig", e)),
                ) from e
            return True

        # Savepoint so a failed row does not invalidate the owner's transaction
        try:
            async with db.begin_nested():
                db.add(row)
        except SQLAlchemyError as e:
            logger.error(
                "Could not relate %s %r to %r via %s: %s",
                descriptor.owner_model.__name__,
                owner_id,
                partner_id,
                descriptor.relation_name,
                getattr(e, "orig", e),
            )
            return False
        return True


class SelfRelationView:
    """
    Explicit accessors for an owner's self-relations.

    Exposes the ids field (e.g. `related_article_ids`) as a field and the
    relation (e.g. `related_articles`) as a relation, for use through the
    accessor registry.
    """

    def __init__(self, owner: Any, reconciler: SelfRelationReconciler) -> None:
        self.owner = owner
        self.reconciler = reconciler
        self._by_ids_field = {d.related_ids_field: d for d in reconciler.descriptors}

    @property
    def field_names(self) -> list[str]:
        return list(self._by_ids_field)

    @property
    def relation_names(self) -> list[str]:
        return [d.relation_name for d in self.reconciler.descriptors]

    def get_ids(self, relation_name: str) -> list[Any]:
        return self.reconciler.get_ids(self.owner, relation_name)

    def set_ids(self, relation_name: str, values: Any) -> None:
        self.reconciler.set_ids(self.owner, relation_name, values)

    def has_field(self, name: str) -> bool:
        return name in self._by_ids_field

    def get_field(self, name: str) -> Any:
        return self.get_ids(self._by_ids_field[name].relation_name)

    async def load_field(self, db: AsyncSession, name: str) -> Any:
        relation_name = self._by_ids_field[name].relation_name
        await self.reconciler.ensure_populated(db, self.owner, relation_name)
        return self.get_ids(relation_name)

    def set_field(self, name: str, value: Any) -> None:
        self.set_ids(self._by_ids_field[name].relation_name, value)

    def has_relation(self, name: str) -> bool:
        return name in self.relation_names

    async def fetch_relation(self, db: AsyncSession, name: str) -> list[Any]:
        return await self.reconciler.fetch_related(db, self.owner, name)
