"""
Resolution of juncture relationship configuration into descriptors.

A RelationshipConfig only requires the juncture model. Everything else is
derived from table names and checked against the owner and juncture mappers
when the relationship is attached, so a typo fails at startup instead of in the
middle of a save.
"""
from collections.abc import Mapping
from dataclasses import dataclass
from numbers import Real
from typing import Any

from pydantic import ValidationError
from sqlalchemy import inspect
from sqlalchemy.orm import Mapper

from schemas.juncture import JunctureFieldBinding, RelationshipConfig
from services.exceptions import ConfigurationError
from services.utils import pluralize, singularize


@dataclass(frozen=True)
class RelationshipDescriptor:
    """Fully resolved configuration for one juncture relationship."""

    owner_model: type
    juncture_model: type
    related_model: type | None
    relation_name: str
    juncture_relation_name: str
    related_ids_field: str
    # Juncture columns holding the related key, with their python types
    # (None when the column type has no python equivalent).
    related_key_columns: tuple[str, ...]
    related_key_types: tuple[type | None, ...]
    # (owner attribute, juncture column) pairs
    owner_key_columns: tuple[tuple[str, str], ...]
    extra_data_field: str | None
    extra_attributes: tuple[str, ...]
    save_scenarios: frozenset[str]
    exclude_scenarios: frozenset[str]

    def is_active_for_scenario(self, scenario: str | None) -> bool:
        """
        Whether the relationship is saved in the given owner scenario.

        With neither list set the relationship always saves. With
        save_scenarios it only saves in those scenarios, with exclude_scenarios
        it saves in every scenario except those.
        """
        if not self.save_scenarios and not self.exclude_scenarios:
            return True
        if self.save_scenarios:
            return scenario in self.save_scenarios
        return scenario not in self.exclude_scenarios

    def related_id_of(self, row: Any) -> Any:
        """Read the related key of a juncture row (a tuple for composite keys)."""
        if len(self.related_key_columns) == 1:
            return getattr(row, self.related_key_columns[0])
        return tuple(getattr(row, column) for column in self.related_key_columns)

    def stamp_related_id(self, row: Any, related_id: Any) -> None:
        """Write a related key onto a juncture row."""
        if len(self.related_key_columns) == 1:
            setattr(row, self.related_key_columns[0], related_id)
            return
        for column, value in zip(self.related_key_columns, related_id, strict=True):
            setattr(row, column, value)

    def stamp_owner_keys(self, row: Any, owner: Any) -> None:
        """Copy the owner's key attribute(s) onto a juncture row."""
        for owner_attribute, juncture_column in self.owner_key_columns:
            setattr(row, juncture_column, getattr(owner, owner_attribute))

    def coerce_related_id(self, value: Any) -> Any:
        """
        Convert a submitted id to the related key's python type.

        Form and JSON input often carries ids as strings ("3") while loaded
        juncture rows hold ints, and the two must compare equal.

        Raises:
            ValueError: If the value cannot be converted.
        """
        if len(self.related_key_columns) == 1:
            return coerce_key(value, self.related_key_types[0])
        if not isinstance(value, (list, tuple)) or len(value) != len(self.related_key_columns):
            raise ValueError(
                f"expected {len(self.related_key_columns)} key values, got {value!r}",
            )
        return tuple(
            coerce_key(item, python_type)
            for item, python_type in zip(value, self.related_key_types, strict=True)
        )

    def field_binding(self) -> JunctureFieldBinding:
        """Field names a form layer binds its inputs to."""
        return JunctureFieldBinding(
            relation_name=self.relation_name,
            juncture_relation_name=self.juncture_relation_name,
            related_ids_field=self.related_ids_field,
            extra_data_field=self.extra_data_field,
            extra_attributes=list(self.extra_attributes),
        )


def coerce_key(value: Any, python_type: type | None) -> Any:
    """Convert one key value to a python type, rejecting booleans and lossy conversions."""
    if isinstance(value, bool):
        raise ValueError(f"invalid id: {value!r}")
    if python_type is None or isinstance(value, python_type):
        return value
    converted = python_type(value)
    if isinstance(value, Real) and isinstance(converted, Real) and converted != value:
        raise ValueError(f"invalid id: {value!r}")
    return converted


def table_name(model: type) -> str:
    return inspect(model).local_table.name


def column_python_type(mapper: Mapper, column_name: str) -> type | None:
    column = mapper.column_attrs[column_name].columns[0]
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def resolve_relationship(
    owner_model: type,
    config: RelationshipConfig | Mapping[str, Any],
) -> RelationshipDescriptor:
    """
    Resolve a relationship configuration against an owner model.

    Args:
        owner_model: The mapped owner class.
        config: A RelationshipConfig or a mapping of its options.

    Returns:
        The resolved RelationshipDescriptor.

    Raises:
        ConfigurationError: If an option is missing or invalid, or a derived
            name does not exist on the owner or juncture model.
    """
    if not isinstance(config, RelationshipConfig):
        try:
            config = RelationshipConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid relationship configuration on {owner_model.__name__}: {e}",
            ) from e

    owner_mapper = inspect(owner_model)
    juncture_model = config.juncture_model
    juncture_mapper = inspect(juncture_model)
    juncture_name = juncture_model.__name__

    def related_singular(option: str) -> str:
        if config.related_model is None:
            raise ConfigurationError(
                f"`{option}` is not set on {owner_model.__name__} for the relationship to "
                f"{juncture_name} and there is no `related_model` to determine a default from",
            )
        return singularize(table_name(config.related_model))

    def check_owner_attribute(option: str, name: str) -> None:
        if not hasattr(owner_model, name):
            raise ConfigurationError(
                f"`{option}` value `{name}` is not an attribute of {owner_model.__name__} "
                f"(relationship to {juncture_name})",
            )

    def check_juncture_column(option: str, name: str) -> None:
        if name not in juncture_mapper.column_attrs:
            raise ConfigurationError(
                f"`{option}` value `{name}` is not a column of {juncture_name} "
                f"(relationship on {owner_model.__name__})",
            )

    juncture_relation_name = (
        config.juncture_relation_name
        or pluralize(singularize(table_name(juncture_model)))
    )
    if juncture_relation_name not in owner_mapper.relationships:
        raise ConfigurationError(
            f"`juncture_relation_name` value `{juncture_relation_name}` is not a relationship "
            f"of {owner_model.__name__} (relationship to {juncture_name})",
        )

    related_ids_field = config.related_ids_field or f"{related_singular('related_ids_field')}_ids"
    check_owner_attribute("related_ids_field", related_ids_field)

    relation_name = config.relation_name or pluralize(related_singular("relation_name"))
    check_owner_attribute("relation_name", relation_name)

    if config.related_key_columns is None:
        related_key_columns: tuple[str, ...] = (
            f"{related_singular('related_key_columns')}_id",
        )
    elif isinstance(config.related_key_columns, str):
        related_key_columns = (config.related_key_columns,)
    else:
        related_key_columns = tuple(config.related_key_columns)
    if not related_key_columns:
        raise ConfigurationError("`related_key_columns` must name at least one column")
    for column in related_key_columns:
        check_juncture_column("related_key_columns", column)

    if config.owner_key_columns is None or isinstance(config.owner_key_columns, str):
        owner_column = config.owner_key_columns or f"{singularize(table_name(owner_model))}_id"
        primary_key = owner_mapper.get_property_by_column(owner_mapper.primary_key[0]).key
        owner_key_columns: tuple[tuple[str, str], ...] = ((primary_key, owner_column),)
    else:
        owner_key_columns = tuple(config.owner_key_columns.items())
    if not owner_key_columns:
        raise ConfigurationError("`owner_key_columns` must map at least one column")
    for owner_attribute, juncture_column in owner_key_columns:
        check_owner_attribute("owner_key_columns", owner_attribute)
        check_juncture_column("owner_key_columns", juncture_column)

    if config.extra_data_field is not None and not config.extra_attributes:
        raise ConfigurationError(
            f"`extra_data_field` `{config.extra_data_field}` needs at least one "
            "`extra_attributes` value",
        )
    extra_data_field = config.extra_data_field
    if extra_data_field is None and config.extra_attributes:
        extra_data_field = f"{pluralize(related_singular('extra_data_field'))}_data"
    if extra_data_field is not None:
        check_owner_attribute("extra_data_field", extra_data_field)
    for attribute in config.extra_attributes:
        if not hasattr(juncture_model, attribute):
            raise ConfigurationError(
                f"`extra_attributes` value `{attribute}` is not an attribute of {juncture_name}",
            )

    return RelationshipDescriptor(
        owner_model=owner_model,
        juncture_model=juncture_model,
        related_model=config.related_model,
        relation_name=relation_name,
        juncture_relation_name=juncture_relation_name,
        related_ids_field=related_ids_field,
        related_key_columns=related_key_columns,
        related_key_types=tuple(
            column_python_type(juncture_mapper, column) for column in related_key_columns
        ),
        owner_key_columns=owner_key_columns,
        extra_data_field=extra_data_field,
        extra_attributes=tuple(config.extra_attributes),
        save_scenarios=frozenset(config.save_scenarios),
        exclude_scenarios=frozenset(config.exclude_scenarios),
    )
