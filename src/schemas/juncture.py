"""Pydantic schemas for juncture relationship configuration."""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import DeclarativeBase


class RelationshipConfig(BaseModel):
    """
    Configuration for one many-to-many relationship stored in a juncture table.

    Only `juncture_model` is required. Every other name is derived from the
    owner, related and juncture table names when not given:

    - juncture_relation_name: plural of the juncture table (card_benefit -> card_benefits)
    - related_ids_field: related table + `_ids` (benefit -> benefit_ids)
    - relation_name: plural of the related table (benefit -> benefits)
    - related_key_columns: related table + `_id` (benefit -> benefit_id)
    - owner_key_columns: owner table + `_id` (card -> card_id)
    - extra_data_field: plural of the related table + `_data`, only when
      extra_attributes are configured (benefit -> benefits_data)

    `owner_key_columns` can also be a mapping of owner attribute to juncture
    column for owners with a composite primary key.
    """

    model_config = ConfigDict(extra="forbid")

    juncture_model: type[DeclarativeBase]
    related_model: type[DeclarativeBase] | None = None
    relation_name: str | None = None
    related_ids_field: str | None = None
    juncture_relation_name: str | None = None
    related_key_columns: str | list[str] | None = None
    owner_key_columns: str | dict[str, str] | None = None
    extra_data_field: str | None = None
    extra_attributes: list[str] = Field(default_factory=list)
    save_scenarios: list[str] = Field(default_factory=list)
    exclude_scenarios: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_scenarios(self) -> "RelationshipConfig":
        """Only one of save_scenarios and exclude_scenarios may be set."""
        if self.save_scenarios and self.exclude_scenarios:
            raise ValueError(
                "`save_scenarios` and `exclude_scenarios` should not both be set "
                "for a relationship",
            )
        return self


class SelfRelationConfig(BaseModel):
    """
    Configuration for a symmetric relationship between records of one model.

    The juncture table holds two columns that both reference the owner's table.
    Column defaults are the owner table + `_id_a` / `_id_b`, and the ids field
    defaults to the singular relation name + `_ids`
    (related_articles -> related_article_ids).
    """

    model_config = ConfigDict(extra="forbid")

    relation_name: str
    juncture_model: type[DeclarativeBase]
    first_key_column: str | None = None
    second_key_column: str | None = None
    related_ids_field: str | None = None
    # Defaults to the owner model. Set it when the owner is a subclass and the
    # related rows should be loaded as the base model.
    relation_model: type[DeclarativeBase] | None = None
    # Request namespace checked when the owner's form name is not present.
    request_param: str | None = None
    raise_on_failed_save: bool = True


class JunctureFieldBinding(BaseModel):
    """Resolved field names a form layer binds its inputs to."""

    relation_name: str
    juncture_relation_name: str
    related_ids_field: str
    extra_data_field: str | None = None
    extra_attributes: list[str] = Field(default_factory=list)
