"""Service layer for cards, benefits and their juncture rows."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from models.benefit import Benefit, CardBenefit
from models.card import Card
from schemas.card import BenefitCreate, CardBenefitData, CardCreate, CardUpdate
from schemas.juncture import RelationshipConfig
from services.juncture_service import JunctureReconciler
from services.owner_lifecycle import load_owner, save_owner

logger = logging.getLogger(__name__)

# Cards saved while searching never touch their benefits.
card_relationships = JunctureReconciler.attach(
    Card,
    [
        RelationshipConfig(
            juncture_model=CardBenefit,
            related_model=Benefit,
            extra_attributes=["compares"],
            exclude_scenarios=["search"],
        ),
    ],
    skip_unchanged_rows=get_settings().juncture_skip_unchanged_rows,
)


def _benefits_data(data: dict[int, CardBenefitData] | None) -> dict[int, dict]:
    """Raw juncture data as posted; the reconciler turns it into rows."""
    if not data:
        return {}
    return {
        benefit_id: entry.model_dump(exclude_unset=True)
        for benefit_id, entry in data.items()
    }


async def get_card(db: AsyncSession, card_id: int) -> Card | None:
    """Get a card with its benefit ids and juncture data loaded. Returns None if not found."""
    return await load_owner(db, Card, card_id, [card_relationships])


async def create_card(db: AsyncSession, data: CardCreate) -> Card:
    """
    Create a card and a juncture row for each of its benefits.

    Note: Does not commit. Caller (session generator) handles commit at request end.

    Raises:
        PersistenceError: If a benefit cannot be linked.
    """
    card = Card(name=data.name)
    card.scenario = "create"
    card.benefit_ids = data.benefit_ids
    card.benefits_data = _benefits_data(data.benefits_data)
    await save_owner(db, card, [card_relationships])
    logger.info("Created card %s with %d benefits", card.id, len(data.benefit_ids))
    return await get_card(db, card.id)


async def update_card(db: AsyncSession, card_id: int, data: CardUpdate) -> Card | None:
    """
    Update a card and reconcile its benefits. Returns None if not found.

    Benefits are only changed when `benefit_ids` or `benefits_data` were sent.

    Raises:
        PersistenceError: If a benefit cannot be linked, updated or unlinked.
    """
    card = await get_card(db, card_id)
    if card is None:
        return None

    fields_set = data.model_fields_set
    card.scenario = data.scenario or "update"
    if "name" in fields_set and data.name is not None:
        card.name = data.name
    if "benefit_ids" in fields_set:
        card.benefit_ids = data.benefit_ids
    if "benefits_data" in fields_set:
        card.benefits_data = _benefits_data(data.benefits_data)

    await save_owner(db, card, [card_relationships])
    return await get_card(db, card.id)


async def create_benefit(db: AsyncSession, data: BenefitCreate) -> Benefit:
    """Create a benefit."""
    benefit = Benefit(name=data.name)
    db.add(benefit)
    await db.flush()
    await db.refresh(benefit)
    return benefit


async def get_benefits(db: AsyncSession) -> list[Benefit]:
    """Get all benefits ordered by id."""
    result = await db.execute(select(Benefit).order_by(Benefit.id))
    return list(result.scalars().all())
