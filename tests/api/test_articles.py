"""Tests for article endpoints and their related-article links."""
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.article import Article, ArticleRelation


@pytest.fixture
async def articles(db_session: AsyncSession) -> list[Article]:
    """Create articles 1 to 3 with 1 related to 2, stored as (2, 1)."""
    rows = [Article(id=i, title=f"Article {i}") for i in range(1, 4)]
    db_session.add_all(rows)
    await db_session.flush()
    db_session.add(ArticleRelation(article_id_a=2, article_id_b=1))
    await db_session.flush()
    return rows


async def stored_pairs(db: AsyncSession) -> set[tuple[int, int]]:
    result = await db.execute(
        select(ArticleRelation.article_id_a, ArticleRelation.article_id_b),
    )
    return {tuple(row) for row in result.all()}


async def test_get_article_reads_both_directions(
    client: AsyncClient,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.get("/articles/2")
    assert response.status_code == 200
    data = response.json()
    assert data["related_article_ids"] == [1]
    assert data["related_articles"] == [{"id": 1, "title": "Article 1"}]


async def test_get_article_not_found(client: AsyncClient) -> None:
    response = await client.get("/articles/404")
    assert response.status_code == 404


async def test_create_article_json(
    client: AsyncClient,
    db_session: AsyncSession,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.post(
        "/articles/",
        json={"Article": {"title": "Fresh", "related_article_ids": [1, 3]}},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Fresh"
    assert data["related_article_ids"] == [1, 3]
    assert (1, data["id"]) in await stored_pairs(db_session)


async def test_create_article_form(
    client: AsyncClient,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.post(
        "/articles/",
        data={"Article[title]": "From a form", "Article[related_article_ids][]": ["2", "3"]},
    )
    assert response.status_code == 201
    assert response.json()["related_article_ids"] == [2, 3]


async def test_create_article_fallback_param(
    client: AsyncClient,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.post(
        "/articles/",
        json={"article": {"title": "Lowercase", "related_article_ids": [3]}},
    )
    assert response.status_code == 201
    assert response.json()["related_article_ids"] == [3]


async def test_create_article_requires_title(client: AsyncClient) -> None:
    response = await client.post("/articles/", json={"Article": {"related_article_ids": []}})
    assert response.status_code == 422


async def test_create_article_blank_title(client: AsyncClient) -> None:
    response = await client.post("/articles/", json={"Article": {"title": "  "}})
    assert response.status_code == 422


async def test_update_article_replaces_related(
    client: AsyncClient,
    db_session: AsyncSession,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.patch(
        "/articles/1",
        json={"Article": {"related_article_ids": [3]}},
    )
    assert response.status_code == 200
    assert response.json()["related_article_ids"] == [3]
    assert await stored_pairs(db_session) == {(3, 1)}


async def test_update_article_without_field_keeps_related(
    client: AsyncClient,
    db_session: AsyncSession,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.patch("/articles/1", json={"Article": {"title": "Renamed"}})
    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["related_article_ids"] == [2]
    assert await stored_pairs(db_session) == {(2, 1)}


async def test_update_article_empty_form_value_removes_all(
    client: AsyncClient,
    db_session: AsyncSession,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.patch(
        "/articles/1",
        data={"Article[related_article_ids]": ""},
    )
    assert response.status_code == 200
    assert response.json()["related_article_ids"] == []
    assert await stored_pairs(db_session) == set()


async def test_update_article_self_reference(
    client: AsyncClient,
    articles: list[Article],  # noqa: ARG001
) -> None:
    response = await client.patch(
        "/articles/1",
        json={"Article": {"related_article_ids": [1]}},
    )
    assert response.status_code == 400
    assert response.json()["detail"].startswith("There was a problem creating a relationship")


async def test_update_article_not_found(client: AsyncClient) -> None:
    response = await client.patch("/articles/404", json={"Article": {"title": "x"}})
    assert response.status_code == 404
