import logging
import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""


class User(Base):
    """A learner, identified by the Telegram chat they review in."""

    __tablename__ = "users"

    chat_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    words_added: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    words_reviewed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        server_onupdate=func.now(),
    )
    words: Mapped[list["UserWord"]] = relationship(
        "UserWord",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Word(Base):
    """Vocabulary entry shared by every learner that studies it."""

    __tablename__ = "words"
    __table_args__ = (
        UniqueConstraint(
            "term",
            "translation",
            "source_lang",
            "target_lang",
            name="uq_words_term_lang",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    term: Mapped[str] = mapped_column(Text, nullable=False)
    translation: Mapped[str] = mapped_column(Text, nullable=False)
    example: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_lang: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    target_lang: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        server_onupdate=func.now(),
    )
    user_links: Mapped[list["UserWord"]] = relationship(
        "UserWord",
        back_populates="word",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class UserWord(Base):
    """A learner's review schedule for one word."""

    __tablename__ = "user_words"
    __table_args__ = (
        UniqueConstraint("chat_id", "word_id", name="uq_user_words_user_word"),
        Index("ix_user_words_chat_id_next_review_at", "chat_id", "next_review_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.chat_id", ondelete="CASCADE"), nullable=False
    )
    word_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("words.id", ondelete="CASCADE"), nullable=False
    )
    easiness_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    repetition_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_review_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        server_onupdate=func.now(),
    )
    user: Mapped["User"] = relationship("User", back_populates="words")
    word: Mapped["Word"] = relationship("Word", back_populates="user_links")
    reviews: Mapped[list["WordReview"]] = relationship(
        "WordReview",
        back_populates="user_word",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class WordReview(Base):
    """Schedule change caused by one graded review of a learner's word."""

    __tablename__ = "word_reviews"
    __table_args__ = (Index("ix_word_reviews_user_word_id", "user_word_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_word_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_words.id", ondelete="CASCADE"), nullable=False
    )
    repetition_after: Mapped[int] = mapped_column(Integer, nullable=False)
    easiness_before: Mapped[float] = mapped_column(Float, nullable=False)
    easiness_after: Mapped[float] = mapped_column(Float, nullable=False)
    interval_before: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    user_word: Mapped["UserWord"] = relationship("UserWord", back_populates="reviews")


_TRUTHY = {"1", "true", "yes", "on"}
_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def get_database_url() -> str:
    """Return ``DATABASE_URL`` with ``$VARS`` expanded, or raise if it is unset."""
    raw_url = os.getenv("DATABASE_URL")
    if not raw_url:
        raise RuntimeError("DATABASE_URL environment variable is required to connect to the database.")
    return os.path.expandvars(raw_url)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return create_async_engine(get_database_url(), echo=_env_flag("SQLALCHEMY_ECHO", False))


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the bot and every per-chat item repository."""
    return async_sessionmaker(get_engine(), expire_on_commit=False)


def should_run_migrations() -> bool:
    return _env_flag("RUN_MIGRATIONS_ON_STARTUP", True)


def _build_alembic_config() -> Config:
    alembic_cfg = Config(str(_PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(_PROJECT_ROOT / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", get_database_url())
    return alembic_cfg


def run_migrations(target: str = "head") -> None:
    command.upgrade(_build_alembic_config(), target)


def run_migrations_if_needed(target: str = "head") -> None:
    """Upgrade the schema before the bot starts unless RUN_MIGRATIONS_ON_STARTUP is off."""
    if not should_run_migrations():
        LOGGER.info("RUN_MIGRATIONS_ON_STARTUP is disabled; leaving the schema as it is.")
        return

    LOGGER.info("Upgrading database schema to %s.", target)
    run_migrations(target)
    LOGGER.info("Database schema is at %s.", target)
