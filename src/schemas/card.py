"""Pydantic schemas for card and benefit endpoints."""
from pydantic import BaseModel, ConfigDict, field_validator


class BenefitCreate(BaseModel):
    """Schema for creating a benefit."""

    name: str

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Names must not be blank."""
        v = v.strip()
        if not v:
            raise ValueError("Benefit name must not be empty")
        return v


class BenefitResponse(BaseModel):
    """Schema for benefit responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class CardBenefitData(BaseModel):
    """Extra juncture data submitted for one of a card's benefits."""

    compares: str | None = None


class CardCreate(BaseModel):
    """Schema for creating a card with its benefits."""

    name: str
    benefit_ids: list[int] = []
    benefits_data: dict[int, CardBenefitData] = {}


class CardUpdate(BaseModel):
    """
    Schema for updating a card.

    Omitted fields are left untouched. An explicit `benefit_ids: null` removes
    every benefit, the same as an empty list.
    """

    name: str | None = None
    benefit_ids: list[int] | None = None
    benefits_data: dict[int, CardBenefitData] | None = None
    scenario: str | None = None


class CardBenefitResponse(BaseModel):
    """A card's juncture row."""

    model_config = ConfigDict(from_attributes=True)

    benefit_id: int
    compares: str | None


class CardResponse(BaseModel):
    """Schema for card responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    benefit_ids: list[int]
    card_benefits: list[CardBenefitResponse]

