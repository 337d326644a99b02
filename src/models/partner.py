"""Partner model (composite primary key) and its benefit juncture table."""
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, ForeignKeyConstraint, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, ScenarioMixin

if TYPE_CHECKING:
    from models.benefit import Benefit


class Partner(Base, ScenarioMixin):
    """A partner network member, identified by (network, code)."""

    __tablename__ = "partner"

    network: Mapped[str] = mapped_column(String(20), primary_key=True)
    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    partner_benefits: Mapped[list["PartnerBenefit"]] = relationship(
        viewonly=True,
        order_by="PartnerBenefit.benefit_id",
    )
    benefits: Mapped[list["Benefit"]] = relationship(
        secondary="partner_benefit",
        viewonly=True,
    )

    benefit_ids = None


class PartnerBenefit(Base):
    """Juncture row linking a partner to a benefit."""

    __tablename__ = "partner_benefit"
    __table_args__ = (
        ForeignKeyConstraint(
            ["partner_network", "partner_code"],
            ["partner.network", "partner.code"],
            ondelete="CASCADE",
        ),
    )

    partner_network: Mapped[str] = mapped_column(String(20), primary_key=True)
    partner_code: Mapped[str] = mapped_column(String(20), primary_key=True)
    benefit_id: Mapped[int] = mapped_column(
        ForeignKey("benefit.id", ondelete="CASCADE"),
        primary_key=True,
    )
