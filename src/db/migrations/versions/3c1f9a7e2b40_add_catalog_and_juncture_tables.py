"""
Add catalog and juncture tables.

Creates cards, benefits, partners and articles together with the juncture
tables linking them: card_benefit (with the `compares` extra column),
partner_benefit (composite partner key) and the symmetric article_relation.

Revision ID: 3c1f9a7e2b40
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c1f9a7e2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "benefit",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "card",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "partner",
        sa.Column("network", sa.String(length=20), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.PrimaryKeyConstraint("network", "code"),
    )
    op.create_table(
        "article",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "card_benefit",
        sa.Column("card_id", sa.Integer(), nullable=False),
        sa.Column("benefit_id", sa.Integer(), nullable=False),
        sa.Column("compares", sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(["benefit_id"], ["benefit.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["card_id"], ["card.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("card_id", "benefit_id"),
    )
    op.create_table(
        "partner_benefit",
        sa.Column("partner_network", sa.String(length=20), nullable=False),
        sa.Column("partner_code", sa.String(length=20), nullable=False),
        sa.Column("benefit_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["benefit_id"], ["benefit.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["partner_network", "partner_code"],
            ["partner.network", "partner.code"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("partner_network", "partner_code", "benefit_id"),
    )
    op.create_table(
        "article_relation",
        sa.Column("article_id_a", sa.Integer(), nullable=False),
        sa.Column("article_id_b", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "article_id_a <> article_id_b",
            name="ck_article_relation_no_self_reference",
        ),
        sa.ForeignKeyConstraint(["article_id_a"], ["article.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["article_id_b"], ["article.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("article_id_a", "article_id_b"),
    )
    op.create_index(
        op.f("ix_article_relation_article_id_b"),
        "article_relation",
        ["article_id_b"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_article_relation_article_id_b"), table_name="article_relation")
    op.drop_table("article_relation")
    op.drop_table("partner_benefit")
    op.drop_table("card_benefit")
    op.drop_table("article")
    op.drop_table("partner")
    op.drop_table("card")
    op.drop_table("benefit")
