"""FastAPI application entry point."""
import logging

from fastapi import FastAPI

from api.routers import articles, benefits, cards, health, partners
from core.config import get_settings


settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="Juncture Catalog API",
    description=(
        "Cards, partners, benefits and articles whose many-to-many links are reconciled on save."
    ),
    version="0.1.0",
)

app.include_router(health.router)
app.include_router(benefits.router)
app.include_router(cards.router)
app.include_router(partners.router)
app.include_router(articles.router)
