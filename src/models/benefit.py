"""Benefit model and the card/benefit juncture table."""
from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from models.base import Base

MAX_COMPARES_LENGTH = 50


class Benefit(Base):
    """A benefit that can be attached to cards and partners."""

    __tablename__ = "benefit"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class CardBenefit(Base):
    """
    Juncture row linking a card to a benefit.

    Carries one extra attribute, `compares`, describing how the card's benefit
    compares to the market.
    """

    __tablename__ = "card_benefit"

    card_id: Mapped[int] = mapped_column(
        ForeignKey("card.id", ondelete="CASCADE"),
        primary_key=True,
    )
    benefit_id: Mapped[int] = mapped_column(
        ForeignKey("benefit.id", ondelete="CASCADE"),
        primary_key=True,
    )
    compares: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @validates("compares")
    def validate_compares(self, key: str, value: str | None) -> str | None:
        if value is not None and len(value) > MAX_COMPARES_LENGTH:
            raise ValueError(
                f"{key} must be at most {MAX_COMPARES_LENGTH} characters",
            )
        return value
