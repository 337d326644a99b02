"""Partner endpoints. Partners are addressed by their (network, code) key."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from schemas.partner import PartnerResponse, PartnerSave
from services import partner_service
from services.exceptions import PersistenceError

router = APIRouter(prefix="/partners", tags=["partners"])


@router.get("/{network}/{code}", response_model=PartnerResponse)
async def get_partner(
    network: str,
    code: str,
    db: AsyncSession = Depends(get_async_session),
) -> PartnerResponse:
    """Get a partner with its benefit ids."""
    partner = await partner_service.get_partner(db, network, code)
    if partner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Partner not found")
    return PartnerResponse.model_validate(partner)


@router.put("/{network}/{code}", response_model=PartnerResponse)
async def put_partner(
    network: str,
    code: str,
    data: PartnerSave,
    db: AsyncSession = Depends(get_async_session),
) -> PartnerResponse:
    """
    Create or update a partner and reconcile its benefits.

    Returns 422 if a new partner has no name, 400 if a benefit cannot be saved.
    """
    try:
        partner = await partner_service.put_partner(db, network, code, data)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return PartnerResponse.model_validate(partner)
