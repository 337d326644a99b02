"""Card endpoints, including their benefit juncture rows."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from schemas.card import CardCreate, CardResponse, CardUpdate
from schemas.juncture import JunctureFieldBinding
from services import card_service
from services.exceptions import PersistenceError

router = APIRouter(prefix="/cards", tags=["cards"])


@router.post("/", response_model=CardResponse, status_code=201)
async def create_card(
    data: CardCreate,
    db: AsyncSession = Depends(get_async_session),
) -> CardResponse:
    """
    Create a card linked to the given benefits.

    `benefits_data` maps a benefit id to extra juncture data, e.g.
    `{"3": {"compares": "better"}}`.

    Returns 400 if a benefit cannot be linked.
    """
    try:
        card = await card_service.create_card(db, data)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return CardResponse.model_validate(card)


@router.get("/form-fields", response_model=list[JunctureFieldBinding])
async def get_card_form_fields() -> list[JunctureFieldBinding]:
    """Field names a card form binds its benefit inputs to."""
    return card_service.card_relationships.field_bindings()


@router.get("/{card_id}", response_model=CardResponse)
async def get_card(
    card_id: int,
    db: AsyncSession = Depends(get_async_session),
) -> CardResponse:
    """Get a card with its benefit ids and juncture data."""
    card = await card_service.get_card(db, card_id)
    if card is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Card not found")
    return CardResponse.model_validate(card)


@router.patch("/{card_id}", response_model=CardResponse)
async def update_card(
    card_id: int,
    data: CardUpdate,
    db: AsyncSession = Depends(get_async_session),
) -> CardResponse:
    """
    Update a card and reconcile its benefits.

    Omitting `benefit_ids` leaves the benefits untouched; an empty list or null
    removes them all.

    Returns 404 if the card doesn't exist, 400 if a benefit cannot be saved.
    """
    try:
        card = await card_service.update_card(db, card_id, data)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if card is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Card not found")
    return CardResponse.model_validate(card)
