"""
Article endpoints.

Related articles are read from the `Article` namespace of the request
parameters (JSON body, form body or, for bodiless requests, the query string):

    {"Article": {"title": "...", "related_article_ids": [2, 3]}}
    Article[related_article_ids][]=2&Article[related_article_ids][]=3

Leaving out `related_article_ids` keeps the current links; sending an empty
value removes them all.
"""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session
from api.request_params import collect_request_params, owner_params
from models.article import Article
from schemas.article import ArticleFields, ArticleResponse, ArticleSummary
from services import article_service
from services.exceptions import PersistenceError

router = APIRouter(prefix="/articles", tags=["articles"])

FORM_NAME = "Article"


async def _article_params(request: Request) -> dict[str, Any]:
    params = await collect_request_params(request)
    fallback = article_service.article_relations.descriptor("related_articles").request_param
    return owner_params(params, FORM_NAME, fallback)


def _validate_fields(params: dict[str, Any]) -> ArticleFields:
    try:
        return ArticleFields.model_validate(params)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        ) from e


async def _response(db: AsyncSession, article: Article) -> ArticleResponse:
    detail = await article_service.article_detail(db, article)
    return ArticleResponse(
        id=detail["id"],
        title=detail["title"],
        related_article_ids=detail["related_article_ids"],
        related_articles=[ArticleSummary.model_validate(a) for a in detail["related_articles"]],
    )


@router.post("/", response_model=ArticleResponse, status_code=201)
async def create_article(
    request: Request,
    db: AsyncSession = Depends(get_async_session),
) -> ArticleResponse:
    """
    Create an article and link it to related articles.

    Returns 422 if the title is missing, 400 if a related article cannot be linked.
    """
    params = await _article_params(request)
    fields = _validate_fields(params)
    try:
        article = await article_service.create_article(db, fields, params)
    except ValueError as e:
        raise HTTPException(
            status_code=422, detail=str(e),
        ) from e
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return await _response(db, article)


@router.get("/{article_id}", response_model=ArticleResponse)
async def get_article(
    article_id: int,
    db: AsyncSession = Depends(get_async_session),
) -> ArticleResponse:
    """Get an article with the articles related to it in either direction."""
    article = await article_service.get_article(db, article_id)
    if article is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Article not found")
    return await _response(db, article)


@router.patch("/{article_id}", response_model=ArticleResponse)
async def update_article(
    article_id: int,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
) -> ArticleResponse:
    """
    Update an article and, when submitted, its related articles.

    Returns 404 if the article doesn't exist, 400 if a related article cannot be linked.
    """
    params = await _article_params(request)
    fields = _validate_fields(params)
    try:
        article = await article_service.update_article(db, article_id, fields, params)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if article is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Article not found")
    return await _response(db, article)
