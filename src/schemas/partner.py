"""Pydantic schemas for partner endpoints."""
from pydantic import BaseModel, ConfigDict, field_validator


class PartnerSave(BaseModel):
    """
    Schema for creating or updating a partner.

    `name` is required when the partner does not exist yet. Omitting
    `benefit_ids` on an existing partner keeps its benefits.
    """

    name: str | None = None
    benefit_ids: list[int] | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        """Names must not be blank."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Partner name must not be empty")
        return v


class PartnerResponse(BaseModel):
    """Schema for partner responses."""

    model_config = ConfigDict(from_attributes=True)

    network: str
    code: str
    name: str
    benefit_ids: list[int]
