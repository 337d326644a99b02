"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from models import ArticleRelation, CardBenefit, PartnerBenefit


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

JUNCTURE_MODELS = (CardBenefit, PartnerBenefit, ArticleRelation)


class HealthResponse(BaseModel):
    """Health check response with row counts of each juncture table."""

    status: str
    database: str
    juncture_rows: dict[str, int]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """Check that the database and every juncture table can be queried."""
    db_status = "healthy"
    juncture_rows = {}
    try:
        for model in JUNCTURE_MODELS:
            result = await db.execute(select(func.count()).select_from(model))
            juncture_rows[model.__tablename__] = result.scalar_one()
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        database=db_status,
        juncture_rows=juncture_rows,
    )
