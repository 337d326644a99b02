"""Article model and its self-referential juncture table."""
from sqlalchemy import CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, ScenarioMixin


class Article(Base, ScenarioMixin):
    """
    Article model.

    Articles relate to other articles through article_relation. The relation is
    symmetric: a row (a, b) relates a to b and b to a, so there is no mapped
    relationship here. Use the self-relation reconciler to read or write it.
    """

    __tablename__ = "article"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)


class ArticleRelation(Base):
    """Symmetric juncture row between two articles."""

    __tablename__ = "article_relation"
    __table_args__ = (
        CheckConstraint(
            "article_id_a <> article_id_b",
            name="ck_article_relation_no_self_reference",
        ),
    )

    article_id_a: Mapped[int] = mapped_column(
        ForeignKey("article.id", ondelete="CASCADE"),
        primary_key=True,
    )
    article_id_b: Mapped[int] = mapped_column(
        ForeignKey("article.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
