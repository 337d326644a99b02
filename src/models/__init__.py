"""SQLAlchemy models."""
from models.base import Base, ScenarioMixin
from models.benefit import Benefit, CardBenefit
from models.card import Card
from models.partner import Partner, PartnerBenefit
from models.article import Article, ArticleRelation

__all__ = [
    "Article",
    "ArticleRelation",
    "Base",
    "Benefit",
    "Card",
    "CardBenefit",
    "Partner",
    "PartnerBenefit",
    "ScenarioMixin",
]
