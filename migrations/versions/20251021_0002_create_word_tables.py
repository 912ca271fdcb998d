"""Create vocabulary, schedule and review history tables."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251021_0002"
down_revision: Union[str, None] = "20251020_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "words",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("term", sa.Text(), nullable=False),
        sa.Column("translation", sa.Text(), nullable=False),
        sa.Column("example", sa.Text(), nullable=True),
        sa.Column("source_lang", sa.String(length=32), nullable=True),
        sa.Column("target_lang", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "term",
            "translation",
            "source_lang",
            "target_lang",
            name="uq_words_term_lang",
        ),
    )

    op.create_table(
        "user_words",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("word_id", sa.Integer(), nullable=False),
        sa.Column("easiness_factor", sa.Float(), server_default=sa.text("2.5"), nullable=False),
        sa.Column("interval_days", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("repetition_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "next_review_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ("chat_id",),
            ("users.chat_id",),
            name="fk_user_words_chat_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ("word_id",),
            ("words.id",),
            name="fk_user_words_word_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("chat_id", "word_id", name="uq_user_words_user_word"),
    )
    op.create_index(
        "ix_user_words_chat_id_next_review_at",
        "user_words",
        ("chat_id", "next_review_at"),
    )

    op.create_table(
        "word_reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("user_word_id", sa.Integer(), nullable=False),
        sa.Column("repetition_after", sa.Integer(), nullable=False),
        sa.Column("easiness_before", sa.Float(), nullable=False),
        sa.Column("easiness_after", sa.Float(), nullable=False),
        sa.Column("interval_before", sa.Integer(), nullable=False),
        sa.Column("interval_after", sa.Integer(), nullable=False),
        sa.Column(
            "reviewed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ("user_word_id",),
            ("user_words.id",),
            name="fk_word_reviews_user_word_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_word_reviews_user_word_id",
        "word_reviews",
        ("user_word_id",),
    )


def downgrade() -> None:
    op.drop_index("ix_word_reviews_user_word_id", table_name="word_reviews")
    op.drop_table("word_reviews")
    op.drop_index("ix_user_words_chat_id_next_review_at", table_name="user_words")
    op.drop_table("user_words")
    op.drop_table("words")
