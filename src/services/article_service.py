"""Service layer for articles and their symmetric related-article links."""
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from models.article import Article, ArticleRelation
from schemas.article import ArticleFields
from schemas.juncture import SelfRelationConfig
from services.accessors import accessors
from services.owner_lifecycle import load_owner, save_owner
from services.self_relation_service import SelfRelationReconciler

logger = logging.getLogger(__name__)

article_relations = SelfRelationReconciler.attach(
    Article,
    [
        SelfRelationConfig(
            relation_name="related_articles",
            juncture_model=ArticleRelation,
            request_param="article",
        ),
    ],
)


async def get_article(db: AsyncSession, article_id: int) -> Article | None:
    """Get an article with its related article ids loaded. Returns None if not found."""
    return await load_owner(db, Article, article_id, [article_relations])


async def create_article(
    db: AsyncSession,
    fields: ArticleFields,
    params: Mapping[str, Any],
) -> Article:
    """
    Create an article and link the related articles present in params.

    Note: Does not commit. Caller (session generator) handles commit at request end.

    Raises:
        ValueError: If no title is given.
        PersistenceError: If a related article cannot be linked.
    """
    if fields.title is None:
        raise ValueError("Article title is required")
    article = Article(title=fields.title)
    article.scenario = "create"
    await save_owner(db, article, [article_relations], params)
    logger.info("Created article %s", article.id)
    return article


async def update_article(
    db: AsyncSession,
    article_id: int,
    fields: ArticleFields,
    params: Mapping[str, Any],
) -> Article | None:
    """
    Update an article. Returns None if not found.

    Related articles are only changed when `related_article_ids` is present in
    params; an empty value unlinks every related article.

    Raises:
        PersistenceError: If a related article cannot be linked.
    """
    article = await get_article(db, article_id)
    if article is None:
        return None
    article.scenario = "update"
    if fields.title is not None:
        article.title = fields.title
    await save_owner(db, article, [article_relations], params)
    return article


async def article_detail(db: AsyncSession, article: Article) -> dict[str, Any]:
    """Read an article's fields and related articles through the accessor registry."""
    return {
        "id": article.id,
        "title": article.title,
        "related_article_ids": await accessors.load_field(db, article, "related_article_ids"),
        "related_articles": await accessors.read_relation(db, article, "related_articles"),
    }
