"""Service layer for partners, whose benefit juncture rows use a composite owner key."""
import logging

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from models.benefit import Benefit
from models.partner import Partner, PartnerBenefit
from schemas.juncture import RelationshipConfig
from schemas.partner import PartnerSave
from services.juncture_service import JunctureReconciler
from services.owner_lifecycle import load_owner, save_owner

logger = logging.getLogger(__name__)

partner_relationships = JunctureReconciler.attach(
    Partner,
    [
        RelationshipConfig(
            juncture_model=PartnerBenefit,
            related_model=Benefit,
            owner_key_columns={"network": "partner_network", "code": "partner_code"},
            save_scenarios=["create", "update"],
        ),
    ],
)


async def get_partner(db: AsyncSession, network: str, code: str) -> Partner | None:
    """Get a partner with its benefit ids loaded. Returns None if not found."""
    return await load_owner(db, Partner, (network, code), [partner_relationships])


async def save_partner(
    db: AsyncSession,
    partner: Partner,
    benefit_ids: list[int] | None,
) -> Partner:
    """
    Save a new or loaded partner with the given benefit ids.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    partner.scenario = "create" if inspect(partner).identity is None else "update"
    partner.benefit_ids = benefit_ids
    await save_owner(db, partner, [partner_relationships])
    return partner


async def put_partner(
    db: AsyncSession,
    network: str,
    code: str,
    data: PartnerSave,
) -> Partner:
    """
    Create the partner identified by (network, code), or update it if it exists.

    Note: Does not commit. Caller (session generator) handles commit at request end.

    Raises:
        ValueError: If the partner is new and no name is given.
        PersistenceError: If a benefit cannot be linked or unlinked.
    """
    partner = await get_partner(db, network, code)
    if partner is None:
        if data.name is None:
            raise ValueError("Partner name is required")
        partner = Partner(network=network, code=code, name=data.name)
        benefit_ids = data.benefit_ids or []
    else:
        if data.name is not None:
            partner.name = data.name
        if "benefit_ids" in data.model_fields_set:
            benefit_ids = data.benefit_ids
        else:
            benefit_ids = partner.benefit_ids
    await save_partner(db, partner, benefit_ids)
    logger.info("Saved partner %s/%s", network, code)
    return await get_partner(db, network, code)
