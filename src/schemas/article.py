"""Pydantic schemas for article endpoints."""
from pydantic import BaseModel, ConfigDict, field_validator


class ArticleFields(BaseModel):
    """
    Column fields of an article as submitted.

    Related articles are not part of this schema: they are read from the raw
    request parameters so that an omitted field can be told apart from an
    empty one.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str | None) -> str | None:
        """Titles must not be blank when given."""
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Article title must not be empty")
        return v


class ArticleSummary(BaseModel):
    """A related article."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str


class ArticleResponse(BaseModel):
    """Schema for article responses."""

    id: int
    title: str
    related_article_ids: list[int]
    related_articles: list[ArticleSummary]
