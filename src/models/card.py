"""Card model - the owner side of the card/benefit relationship."""
from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, ScenarioMixin

if TYPE_CHECKING:
    from models.benefit import Benefit, CardBenefit


class Card(Base, ScenarioMixin):
    """Card model - benefits are linked through the card_benefit juncture table."""

    __tablename__ = "card"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Juncture rows are written by the reconciler, never through these collections.
    card_benefits: Mapped[list["CardBenefit"]] = relationship(
        viewonly=True,
        order_by="CardBenefit.benefit_id",
    )
    benefits: Mapped[list["Benefit"]] = relationship(
        secondary="card_benefit",
        viewonly=True,
        order_by="Benefit.id",
    )

    # Form-bound fields (not columns): submitted benefit ids and per-benefit
    # juncture data keyed by benefit id.
    benefit_ids = None
    benefits_data = None
