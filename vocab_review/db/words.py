"""Helpers for working with vocabulary persistence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Hashable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from vocab_review.review.errors import RepositoryError, StaleScheduleWrite
from vocab_review.review.repository import ItemSnapshot
from vocab_review.review.srs import DEFAULT_EASINESS_FACTOR, ScheduleState

from . import UserWord, Word, WordReview
from .users import increment_user_statistics


LOGGER = logging.getLogger(__name__)

# Driver-level failures (refused connections, pool timeouts) are not wrapped by SQLAlchemy.
_STORAGE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class WordPayload:
    """Definition of a word that may be persisted or re-used."""

    term: str
    translation: str
    example: Optional[str] = None
    source_lang: Optional[str] = None
    target_lang: Optional[str] = None

    def normalized(self) -> "WordPayload":
        """Return a payload with leading/trailing whitespace stripped."""
        return WordPayload(
            term=self.term.strip(),
            translation=self.translation.strip(),
            example=self.example.strip() if isinstance(self.example, str) else self.example,
            source_lang=self.source_lang.strip() if isinstance(self.source_lang, str) else self.source_lang,
            target_lang=self.target_lang.strip() if isinstance(self.target_lang, str) else self.target_lang,
        )


async def get_or_create_word(session: AsyncSession, payload: WordPayload) -> tuple[Word, bool]:
    """Fetch a shared word or create it when missing."""
    normalized = payload.normalized()

    stmt = select(Word).where(
        Word.term == normalized.term,
        Word.translation == normalized.translation,
        Word.source_lang.is_(None) if normalized.source_lang is None else Word.source_lang == normalized.source_lang,
        Word.target_lang.is_(None) if normalized.target_lang is None else Word.target_lang == normalized.target_lang,
    )
    result = await session.execute(stmt)
    word = result.scalars().first()

    if word is not None:
        if normalized.example and not word.example:
            word.example = normalized.example
            await session.flush()
        return word, False

    word = Word(
        term=normalized.term,
        translation=normalized.translation,
        example=normalized.example,
        source_lang=normalized.source_lang,
        target_lang=normalized.target_lang,
    )
    session.add(word)
    await session.flush()
    return word, True


async def ensure_user_word(
    session: AsyncSession,
    chat_id: int,
    word: Word,
    now: Optional[datetime] = None,
) -> tuple[UserWord, bool, bool]:
    """Attach a shared word to a learner, re-activating it if previously disabled.

    Returns the link together with ``created`` and ``reactivated`` flags. The
    schedule of an existing link is never touched here.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    stmt = select(UserWord).where(UserWord.chat_id == chat_id, UserWord.word_id == word.id)
    result = await session.execute(stmt)
    user_word = result.scalars().first()

    if user_word is not None:
        was_inactive = not user_word.is_active
        if was_inactive:
            user_word.is_active = True
            await session.flush()
        return user_word, False, was_inactive

    user_word = UserWord(
        chat_id=chat_id,
        word_id=word.id,
        easiness_factor=DEFAULT_EASINESS_FACTOR,
        interval_days=1,
        repetition_count=0,
        next_review_at=now,
        last_reviewed_at=None,
        is_active=True,
    )
    session.add(user_word)
    await session.flush()
    return user_word, True, False


async def get_user_word_by_term(
    session: AsyncSession,
    chat_id: int,
    term: str,
    source_lang: Optional[str] = None,
) -> Optional[UserWord]:
    """Return the learner's link for a term regardless of its translation."""
    stmt = (
        select(UserWord)
        .join(Word, UserWord.word_id == Word.id)
        .options(selectinload(UserWord.word))
        .where(UserWord.chat_id == chat_id, Word.term == term.strip())
        .order_by(UserWord.id)
    )
    if source_lang is not None:
        stmt = stmt.where(Word.source_lang == source_lang)
    result = await session.execute(stmt)
    return result.scalars().first()


async def count_due_words(
    session: AsyncSession,
    chat_id: int,
    now: Optional[datetime] = None,
) -> int:
    """Return how many active words are waiting for review."""
    if now is None:
        now = datetime.now(timezone.utc)

    stmt = (
        select(func.count())
        .select_from(UserWord)
        .where(
            UserWord.chat_id == chat_id,
            UserWord.is_active.is_(True),
            UserWord.next_review_at <= now,
        )
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


def to_schedule_state(user_word: UserWord) -> ScheduleState:
    return ScheduleState(
        item_id=user_word.id,
        interval_days=user_word.interval_days,
        repetition_count=user_word.repetition_count,
        easiness_factor=user_word.easiness_factor,
        next_review_at=_as_utc(user_word.next_review_at),
        last_reviewed_at=_as_utc(user_word.last_reviewed_at),
    )


def to_snapshot(user_word: UserWord) -> ItemSnapshot:
    word = user_word.word
    return ItemSnapshot(
        schedule=to_schedule_state(user_word),
        term=word.term,
        translation=word.translation,
        example=word.example,
        source_lang=word.source_lang,
        target_lang=word.target_lang,
    )


class SqlItemRepository:
    """Item repository backed by the ``user_words`` table of a single learner.

    Every schedule write runs in its own transaction and is applied at most
    once per review timestamp: replaying a write that is already stored is a
    no-op, while a write older than the stored review raises
    :class:`StaleScheduleWrite`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], chat_id: int) -> None:
        self._session_factory = session_factory
        self._chat_id = chat_id

    @property
    def chat_id(self) -> int:
        return self._chat_id

    async def due_items(self, now: datetime) -> List[ItemSnapshot]:
        stmt = (
            select(UserWord)
            .options(selectinload(UserWord.word))
            .where(
                UserWord.chat_id == self._chat_id,
                UserWord.is_active.is_(True),
                UserWord.next_review_at <= now,
            )
            .order_by(UserWord.next_review_at, UserWord.id)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [to_snapshot(user_word) for user_word in result.scalars().all()]
        except _STORAGE_ERRORS as exc:
            LOGGER.exception("Failed to load due words for chat %s.", self._chat_id)
            raise RepositoryError(f"Could not load due words for chat {self._chat_id}.") from exc

    async def update_schedule(self, item_id: Hashable, new_state: ScheduleState) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._apply_schedule(session, item_id, new_state)
        except RepositoryError:
            raise
        except _STORAGE_ERRORS as exc:
            LOGGER.exception("Failed to store schedule for word %s.", item_id)
            raise RepositoryError(f"Could not store schedule for word {item_id!r}.") from exc

    async def _apply_schedule(
        self,
        session: AsyncSession,
        item_id: Hashable,
        new_state: ScheduleState,
    ) -> None:
        user_word = await session.get(UserWord, item_id)
        if user_word is None or user_word.chat_id != self._chat_id:
            raise RepositoryError(f"Word {item_id!r} does not belong to chat {self._chat_id}.")

        reviewed_at = _as_utc(new_state.last_reviewed_at)
        if reviewed_at is None:
            raise RepositoryError(f"Schedule for word {item_id!r} has no review time.")

        stored_at = _as_utc(user_word.last_reviewed_at)
        if stored_at is not None:
            if reviewed_at == stored_at:
                LOGGER.debug("Schedule for word %s is already stored; skipping.", item_id)
                return
            if reviewed_at < stored_at:
                raise StaleScheduleWrite(
                    f"Word {item_id!r} was reviewed at {stored_at.isoformat()}, "
                    f"after the incoming review at {reviewed_at.isoformat()}."
                )

        session.add(
            WordReview(
                user_word_id=user_word.id,
                repetition_after=new_state.repetition_count,
                easiness_before=user_word.easiness_factor,
                easiness_after=new_state.easiness_factor,
                interval_before=user_word.interval_days,
                interval_after=new_state.interval_days,
                reviewed_at=reviewed_at,
            )
        )
        user_word.easiness_factor = new_state.easiness_factor
        user_word.interval_days = new_state.interval_days
        user_word.repetition_count = new_state.repetition_count
        user_word.next_review_at = new_state.next_review_at
        user_word.last_reviewed_at = reviewed_at
        user_word.updated_at = reviewed_at
        await increment_user_statistics(session, self._chat_id, reviewed=1)
