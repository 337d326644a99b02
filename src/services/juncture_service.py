"""
Reconciliation of many-to-many juncture rows with an owner's submitted ids.

The owner carries a list of related ids (e.g. `Card.benefit_ids`) and,
optionally, a map of extra juncture data keyed by related id
(e.g. `Card.benefits_data`). The reconciler snapshots the stored rows when the
owner is loaded and, after the owner is saved, inserts, deletes and updates
juncture rows so the table matches what was submitted.

Hooks are called explicitly by the owner pipeline (services.owner_lifecycle):

    on_load -> before_validate -> after_insert | after_update

Every juncture write is flushed on its own and nothing is committed here. The
request session commits or rolls back the whole save.
"""
import logging
import weakref
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import flag_modified

from schemas.juncture import JunctureFieldBinding, RelationshipConfig
from services.exceptions import ConfigurationError, PersistenceError
from services.juncture_descriptor import RelationshipDescriptor, resolve_relationship
from services.utils import is_id_collection, unique_in_order

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationState:
    """
    Per-owner, per-relationship bookkeeping for one owner instance.

    original_ids: related ids stored in the juncture table when loaded, minus
        the ones removed since.
    original_rows_by_id: loaded rows by related id, kept only when the
        relationship has an extra data field.
    loaded_rows: every known stored row by related id, used for deletes.
    added_ids: ids inserted during this owner's lifetime.
    """

    original_ids: list[Any] = field(default_factory=list)
    original_rows_by_id: dict[Any, Any] = field(default_factory=dict)
    loaded_rows: dict[Any, Any] = field(default_factory=dict)
    added_ids: list[Any] = field(default_factory=list)

    def stored_ids(self) -> list[Any]:
        """Ids believed to be in the juncture table right now."""
        return unique_in_order([*self.original_ids, *self.added_ids])

    def forget(self, related_id: Any) -> None:
        """Drop every trace of a related id after its row was deleted."""
        self.original_ids = [i for i in self.original_ids if i != related_id]
        self.added_ids = [i for i in self.added_ids if i != related_id]
        self.original_rows_by_id.pop(related_id, None)
        self.loaded_rows.pop(related_id, None)


def _error_summary(error: Exception) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


def _submitted_values(entry: Any, names: Iterable[str]) -> dict[str, Any]:
    """
    Values explicitly set on a submitted juncture entry.

    Entries are raw mappings or juncture rows. For rows only attributes present
    in the instance state count, so an unset column is not copied as None.
    """
    if isinstance(entry, Mapping):
        return {name: entry[name] for name in names if name in entry}
    state_dict = inspect(entry).dict
    return {name: state_dict[name] for name in names if name in state_dict}


class JunctureReconciler:
    """
    Keeps juncture rows in sync with the related ids declared on an owner.

    Create one per owner model with `JunctureReconciler.attach()`. State is
    kept per owner instance in a weak mapping, so it disappears together with
    the instance.
    """

    def __init__(
        self,
        descriptors: Sequence[RelationshipDescriptor],
        *,
        skip_unchanged_rows: bool = True,
    ) -> None:
        self.descriptors = tuple(descriptors)
        self.skip_unchanged_rows = skip_unchanged_rows
        self._states: weakref.WeakKeyDictionary[Any, dict[RelationshipDescriptor, ReconciliationState]] = (  # noqa: E501
            weakref.WeakKeyDictionary()
        )

    @classmethod
    def attach(
        cls,
        owner_model: type,
        configs: Sequence[RelationshipConfig | Mapping[str, Any]],
        *,
        skip_unchanged_rows: bool = True,
    ) -> "JunctureReconciler":
        """
        Resolve relationship configs for an owner model.

        Raises:
            ConfigurationError: If no relationship is configured or one is invalid.
        """
        if not configs:
            raise ConfigurationError(
                f"At least one relationship must be configured for {owner_model.__name__}",
            )
        descriptors = [resolve_relationship(owner_model, config) for config in configs]
        return cls(descriptors, skip_unchanged_rows=skip_unchanged_rows)

    # --- State ---

    def state_for(self, owner: Any, descriptor: RelationshipDescriptor) -> ReconciliationState:
        """Get (or start) the reconciliation state of one owner/relationship pair."""
        states = self._states.setdefault(owner, {})
        if descriptor not in states:
            states[descriptor] = ReconciliationState()
        return states[descriptor]

    def eager_load_options(self) -> list:
        """Loader options that populate every juncture relation in the owner query."""
        return [
            selectinload(getattr(descriptor.owner_model, descriptor.juncture_relation_name))
            for descriptor in self.descriptors
        ]

    def field_bindings(self) -> list[JunctureFieldBinding]:
        """Resolved field names for each relationship, for form rendering."""
        return [descriptor.field_binding() for descriptor in self.descriptors]

    # --- Lifecycle hooks ---

    async def on_load(self, db: AsyncSession, owner: Any) -> None:
        """
        Snapshot stored juncture rows after the owner is loaded.

        Fills the owner's related ids field (and extra data field) so they
        reflect the database, and records the originals used for diffing on
        update. The juncture relation should be eager-loaded by the owner query
        (see eager_load_options); otherwise it is loaded here with one query
        per relationship.
        """
        states = self._states.setdefault(owner, {})
        for descriptor in self.descriptors:
            rows = await self._juncture_rows(db, owner, descriptor)
            state = ReconciliationState()
            states[descriptor] = state

            related_ids = []
            extra_data = {}
            for row in rows:
                related_id = descriptor.related_id_of(row)
                state.original_ids.append(related_id)
                state.loaded_rows[related_id] = row
                related_ids.append(related_id)
                if descriptor.extra_data_field is not None:
                    state.original_rows_by_id[related_id] = row
                    extra_data[related_id] = row

            setattr(owner, descriptor.related_ids_field, related_ids)
            if descriptor.extra_data_field is not None:
                setattr(owner, descriptor.extra_data_field, extra_data)

    async def before_validate(
        self,
        db: AsyncSession,  # noqa: ARG002
        owner: Any,
        params: Mapping[str, Any] | None = None,  # noqa: ARG002
    ) -> None:
        """Pipeline hook; see coerce_extra_data."""
        self.coerce_extra_data(owner)

    def coerce_extra_data(self, owner: Any) -> None:
        """
        Turn raw extra juncture data into juncture rows.

        Each entry of the extra data field that is still a mapping (as posted)
        becomes a transient juncture row with the allowed attributes assigned
        and the owner key stamped. Entries that are already rows are left as
        they are, so a form can be re-submitted after a failed validation.
        Keys are converted to the related key type.

        Raises:
            PersistenceError: If a key is not a valid related id or a value is
                rejected by the juncture model's validators.
        """
        for descriptor in self.descriptors:
            if descriptor.extra_data_field is None:
                continue
            data = getattr(owner, descriptor.extra_data_field, None)
            if not data:
                continue
            if not isinstance(data, Mapping):
                logger.warning(
                    "Ignoring %s.%s: expected a mapping of related id to data, got %s",
                    type(owner).__name__,
                    descriptor.extra_data_field,
                    type(data).__name__,
                )
                continue

            coerced = {}
            for key, entry in data.items():
                related_id = self._coerce_id(descriptor, key)
                if isinstance(entry, Mapping):
                    entry = self._build_row_from_data(descriptor, owner, related_id, entry)
                coerced[related_id] = entry
            setattr(owner, descriptor.extra_data_field, coerced)

    async def after_insert(self, db: AsyncSession, owner: Any) -> None:
        """
        Insert a juncture row for every submitted id of a newly created owner.

        Raises:
            PersistenceError: On the first row that cannot be saved.
        """
        for descriptor in self.descriptors:
            if not self._is_active(owner, descriptor):
                continue
            submitted = getattr(owner, descriptor.related_ids_field, None)
            # Forms may post an empty value instead of a list
            if not is_id_collection(submitted):
                continue
            state = self.state_for(owner, descriptor)
            for related_id in self._coerce_ids(descriptor, submitted):
                await self._create_row(db, owner, descriptor, state, related_id)

    async def after_update(self, db: AsyncSession, owner: Any) -> None:
        """
        Apply the difference between stored and submitted ids of an existing owner.

        A related ids field that is not a collection means the user wants no
        relations at all, so every stored row is deleted. Rows that are neither
        added nor removed get their extra attributes updated from the extra
        data field.

        Raises:
            PersistenceError: On the first row that cannot be saved or deleted.
        """
        for descriptor in self.descriptors:
            if not self._is_active(owner, descriptor):
                continue
            state = self.state_for(owner, descriptor)
            submitted = getattr(owner, descriptor.related_ids_field, None)
            desired = (
                self._coerce_ids(descriptor, submitted) if is_id_collection(submitted) else []
            )
            desired_set = set(desired)

            to_remove = [i for i in state.stored_ids() if i not in desired_set]
            for related_id in to_remove:
                await self._delete_row(db, descriptor, state, related_id)

            existing = set(state.stored_ids())
            to_add = [i for i in desired if i not in existing]
            for related_id in to_add:
                await self._create_row(db, owner, descriptor, state, related_id)

            if descriptor.extra_data_field is not None:
                await self._update_unchanged_rows(
                    db, owner, descriptor, state, skip=set(to_add) | set(to_remove),
                )

    # --- Internals ---

    def _is_active(self, owner: Any, descriptor: RelationshipDescriptor) -> bool:
        scenario = getattr(owner, "scenario", None)
        if descriptor.is_active_for_scenario(scenario):
            return True
        logger.debug(
            "Skipping %s.%s in scenario %r",
            type(owner).__name__,
            descriptor.relation_name,
            scenario,
        )
        return False

    def _coerce_id(self, descriptor: RelationshipDescriptor, value: Any) -> Any:
        try:
            return descriptor.coerce_related_id(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                descriptor.relation_name, value, "create", f"Invalid related id: {e}",
            ) from e

    def _coerce_ids(self, descriptor: RelationshipDescriptor, values: Iterable[Any]) -> list[Any]:
        return unique_in_order(self._coerce_id(descriptor, value) for value in values)

    async def _juncture_rows(
        self,
        db: AsyncSession,
        owner: Any,
        descriptor: RelationshipDescriptor,
    ) -> list[Any]:
        name = descriptor.juncture_relation_name
        if name in inspect(owner).unloaded:
            logger.warning(
                "Juncture relation %s.%s was not eager-loaded; loading it with an extra query",
                type(owner).__name__,
                name,
            )
            await db.refresh(owner, attribute_names=[name])
        return list(getattr(owner, name))

    def _build_row_from_data(
        self,
        descriptor: RelationshipDescriptor,
        owner: Any,
        related_id: Any,
        data: Mapping[str, Any],
    ) -> Any:
        row = descriptor.juncture_model()
        try:
            for name, value in data.items():
                if name in descriptor.extra_attributes:
                    setattr(row, name, value)
                else:
                    logger.debug(
                        "Ignoring attribute %r not allowed on %s",
                        name,
                        descriptor.juncture_model.__name__,
                    )
        except ValueError as e:
            raise PersistenceError(
                descriptor.relation_name, related_id, "create", _error_summary(e),
            ) from e
        descriptor.stamp_owner_keys(row, owner)
        return row

    def _extra_values(
        self,
        owner: Any,
        descriptor: RelationshipDescriptor,
        related_id: Any,
    ) -> dict[str, Any]:
        if not descriptor.extra_attributes or descriptor.extra_data_field is None:
            return {}
        data = getattr(owner, descriptor.extra_data_field, None)
        if not data or not isinstance(data, Mapping):
            return {}
        entry = data.get(related_id)
        if not entry:
            return {}
        return _submitted_values(entry, descriptor.extra_attributes)

    async def _create_row(
        self,
        db: AsyncSession,
        owner: Any,
        descriptor: RelationshipDescriptor,
        state: ReconciliationState,
        related_id: Any,
    ) -> None:
        row = descriptor.juncture_model()
        try:
            descriptor.stamp_owner_keys(row, owner)
            descriptor.stamp_related_id(row, related_id)
            for name, value in self._extra_values(owner, descriptor, related_id).items():
                setattr(row, name, value)
            db.add(row)
            await db.flush()
        except (SQLAlchemyError, ValueError) as e:
            logger.error(
                "Could not create %s row for %s.%s related id %r: %s",
                descriptor.juncture_model.__name__,
                type(owner).__name__,
                descriptor.relation_name,
                related_id,
                _error_summary(e),
            )
            raise PersistenceError(
                descriptor.relation_name, related_id, "create", _error_summary(e),
            ) from e

        logger.debug(
            "Created %s row for related id %r", descriptor.juncture_model.__name__, related_id,
        )
        state.added_ids.append(related_id)
        state.loaded_rows[related_id] = row

    async def _delete_row(
        self,
        db: AsyncSession,
        descriptor: RelationshipDescriptor,
        state: ReconciliationState,
        related_id: Any,
    ) -> None:
        row = state.loaded_rows.get(related_id)
        if row is None:
            logger.warning(
                "No loaded %s row for related id %r; nothing to delete",
                descriptor.juncture_model.__name__,
                related_id,
            )
        else:
            # Delete through the session so the juncture model's delete events run
            try:
                await db.delete(row)
                await db.flush()
            except SQLAlchemyError as e:
                raise PersistenceError(
                    descriptor.relation_name, related_id, "delete", _error_summary(e),
                ) from e
            logger.debug(
                "Deleted %s row for related id %r", descriptor.juncture_model.__name__, related_id,
            )
        state.forget(related_id)

    async def _update_unchanged_rows(
        self,
        db: AsyncSession,
        owner: Any,
        descriptor: RelationshipDescriptor,
        state: ReconciliationState,
        skip: set[Any],
    ) -> None:
        data = getattr(owner, descriptor.extra_data_field, None)
        if not data or not isinstance(data, Mapping):
            return

        for related_id, submitted in data.items():
            if related_id in skip:
                continue
            original = state.original_rows_by_id.get(related_id)
            if original is None:
                # Rows inserted earlier in this owner's lifetime
                original = state.loaded_rows.get(related_id)
            if original is None:
                continue

            changes = {
                name: value
                for name, value in _submitted_values(submitted, descriptor.extra_attributes).items()
                if getattr(original, name) != value
            }
            if not changes and self.skip_unchanged_rows:
                continue

            try:
                for name, value in changes.items():
                    setattr(original, name, value)
                if not self.skip_unchanged_rows:
                    for name in descriptor.extra_attributes:
                        flag_modified(original, name)
                await db.flush()
            except (SQLAlchemyError, ValueError) as e:
                raise PersistenceError(
                    descriptor.relation_name, related_id, "update", _error_summary(e),
                ) from e
            logger.debug(
                "Updated %s row for related id %r: %s",
                descriptor.juncture_model.__name__,
                related_id,
                sorted(changes),
            )
