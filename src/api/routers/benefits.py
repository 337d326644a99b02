"""Benefit endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from schemas.card import BenefitCreate, BenefitResponse
from services import card_service

router = APIRouter(prefix="/benefits", tags=["benefits"])


@router.post("/", response_model=BenefitResponse, status_code=201)
async def create_benefit(
    data: BenefitCreate,
    db: AsyncSession = Depends(get_async_session),
) -> BenefitResponse:
    """Create a benefit that cards can be linked to."""
    benefit = await card_service.create_benefit(db, data)
    return BenefitResponse.model_validate(benefit)


@router.get("/", response_model=list[BenefitResponse])
async def list_benefits(
    db: AsyncSession = Depends(get_async_session),
) -> list[BenefitResponse]:
    """Get all benefits."""
    benefits = await card_service.get_benefits(db)
    return [BenefitResponse.model_validate(b) for b in benefits]
