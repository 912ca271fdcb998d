"""Telegram handlers that drive vocabulary review sessions."""

from __future__ import annotations

import logging
import re
from contextlib import suppress
from datetime import datetime, timezone
from html import escape
from typing import Dict, Hashable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from vocab_review.db.users import (
    UserStatistics,
    get_user_statistics,
    increment_user_statistics,
    upsert_user,
)
from vocab_review.db.words import (
    SqlItemRepository,
    WordPayload,
    count_due_words,
    ensure_user_word,
    get_or_create_word,
    get_user_word_by_term,
)
from vocab_review.review import (
    QUALITY_LABELS,
    AlreadyGraded,
    EmptySession,
    InvalidGrade,
    ItemSnapshot,
    RepositoryError,
    ReviewSessionManager,
    SessionProgress,
    SubmissionResult,
    SubmissionStatus,
)
from vocab_review.review.session import DEFAULT_MAX_CONSECUTIVE_FAILURES
from vocab_review.review.srs import MAX_INTERVAL_DAYS


LOGGER = logging.getLogger(__name__)

_DEFINITION_SEPARATOR_RE = re.compile(r"\s+(?:-|–|—|=)\s+")

_GRADE_BUTTON_TEXT = {
    "again": "Again",
    "hard": "Hard",
    "good": "Good",
    "easy": "Easy",
}


def parse_word_definition(
    text: str,
    source_lang: Optional[str] = None,
    target_lang: Optional[str] = None,
) -> Optional[WordPayload]:
    """Parse ``term - translation | example`` into a payload, or ``None`` when malformed."""
    body, _, example = text.partition("|")
    parts = _DEFINITION_SEPARATOR_RE.split(body.strip(), maxsplit=1)
    if len(parts) != 2:
        return None
    term, translation = (part.strip() for part in parts)
    if not term or not translation:
        return None
    return WordPayload(
        term=term,
        translation=translation,
        example=example.strip() or None,
        source_lang=source_lang,
        target_lang=target_lang,
    )


class ReviewBot:
    """Telegram front-end for adding words and reviewing them on schedule.

    Each chat gets its own :class:`ReviewSessionManager`; the bot only reads
    session state through it and never edits schedules directly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        source_language: str = "Dutch",
        target_language: str = "English",
        max_interval_days: int = MAX_INTERVAL_DAYS,
        max_persist_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
    ) -> None:
        self._session_factory = session_factory
        self._source_language = source_language
        self._target_language = target_language
        self._max_interval_days = max_interval_days
        self._max_persist_failures = max_persist_failures
        self._managers: Dict[int, ReviewSessionManager] = {}

    def get_manager(self, chat_id: int) -> ReviewSessionManager:
        """Return the review session manager for a chat, creating it when needed."""
        manager = self._managers.get(chat_id)
        if manager is None:
            manager = ReviewSessionManager(
                SqlItemRepository(self._session_factory, chat_id),
                max_consecutive_failures=self._max_persist_failures,
                max_interval_days=self._max_interval_days,
            )
            self._managers[chat_id] = manager
        return manager

    async def shutdown(self) -> None:
        """Let outstanding schedule writes finish before the process exits."""
        for manager in self._managers.values():
            await manager.drain()

    async def _store_user_profile(
        self,
        chat_id: int,
        first_name: Optional[str],
        last_name: Optional[str],
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await upsert_user(session, chat_id, first_name, last_name)

    async def _fetch_user_statistics(self, chat_id: int) -> Optional[UserStatistics]:
        async with self._session_factory() as session:
            return await get_user_statistics(session, chat_id)

    async def handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Greet the learner and list the available commands."""
        if not update.message:
            return

        chat = update.effective_chat
        if chat is None:
            return

        user = update.effective_user
        if user is not None:
            await self._store_user_profile(
                chat.id,
                getattr(user, "first_name", None),
                getattr(user, "last_name", None),
            )

        greeting = (
            f"Hi! I help you memorise {self._source_language} vocabulary with spaced repetition.\n"
            "/add word - translation | example: add a word\n"
            "/review: start reviewing the words that are due\n"
            "/due: how many words are waiting\n"
            "/progress: where you are in the current session\n"
            "/stat: your learning statistics\n"
            "/end: finish the current session"
        )
        await update.message.reply_text(greeting)

    async def handle_add_word(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or update.effective_chat is None:
            return

        chat_id = update.effective_chat.id
        raw_definition = " ".join(getattr(context, "args", None) or [])
        payload = parse_word_definition(raw_definition, self._source_language, self._target_language)
        if payload is None:
            await update.message.reply_text("Usage: /add word - translation | optional example")
            return

        user = update.effective_user
        await self._store_user_profile(
            chat_id,
            getattr(user, "first_name", None),
            getattr(user, "last_name", None),
        )

        async with self._session_factory() as session:
            async with session.begin():
                existing = await get_user_word_by_term(
                    session, chat_id, payload.term, payload.source_lang
                )
                if existing is not None and existing.is_active:
                    status = "existing"
                else:
                    word, _ = await get_or_create_word(session, payload)
                    _, created, reactivated = await ensure_user_word(session, chat_id, word)
                    status = "created" if created else "reactivated" if reactivated else "existing"
                    if created:
                        await increment_user_statistics(session, chat_id, added=1)

        if status == "existing":
            text = f"<b>{escape(payload.term)}</b> is already in your vocabulary."
        else:
            text = (
                f"Added <b>{escape(payload.term)}</b> — {escape(payload.translation)}. "
                "It is ready for review."
            )
        await update.message.reply_text(text, parse_mode=ParseMode.HTML)

    async def handle_due(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or update.effective_chat is None:
            return

        async with self._session_factory() as session:
            due = await count_due_words(session, update.effective_chat.id)

        if due == 0:
            await update.message.reply_text("Nothing is due right now. Come back later!")
            return
        await update.message.reply_text(
            f"{due} word(s) are waiting for review.",
            reply_markup=InlineKeyboardMarkup(
                [[InlineKeyboardButton("Start review", callback_data="rv_start")]]
            ),
        )

    async def handle_review(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Start a fresh review session from a command or the "Start review" button."""
        query = update.callback_query
        if query is not None:
            await query.answer()
            message = query.message
        else:
            message = update.message
        if message is None or message.chat is None:
            return

        manager = self.get_manager(message.chat.id)
        try:
            result = await manager.start_session(datetime.now(timezone.utc))
        except RepositoryError:
            LOGGER.exception("Could not start review session for chat %s.", message.chat.id)
            await message.reply_text("Could not load your words. Please try again later.")
            return

        if isinstance(result, EmptySession):
            await message.reply_text("Nothing is due right now. Come back later!")
            return

        await self._send_current_item(message, manager)

    async def handle_progress(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or update.effective_chat is None:
            return
        progress = self.get_manager(update.effective_chat.id).session_progress()
        await update.message.reply_text(self._format_progress(progress))

    async def handle_end(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or update.effective_chat is None:
            return
        manager = self.get_manager(update.effective_chat.id)
        progress = manager.session_progress()
        manager.end_session()
        await update.message.reply_text(
            f"Session finished. You graded {progress.completed} of {progress.total} word(s)."
        )

    async def handle_stat(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Present a short progress dashboard for the learner."""
        if not update.message or update.effective_chat is None:
            return

        stats = await self._fetch_user_statistics(update.effective_chat.id)
        if stats is None:
            await update.message.reply_text("Statistics will appear after your first words.")
            return

        now = datetime.now(timezone.utc)
        lines = [
            "<b>Learning statistics</b>",
            escape(stats.display_name),
            f"Since {stats.created_at.strftime('%d.%m.%Y')}",
            "",
            f"<b>Words added:</b> {stats.words_added}",
            f"<b>Words in rotation:</b> {stats.vocabulary_size}",
            f"<b>Reviews graded:</b> {stats.words_reviewed}",
            f"<b>Average pace:</b> {stats.reviews_per_day(now):.2f} per day",
        ]
        await update.message.reply_text("\n".join(lines), parse_mode=ParseMode.HTML)

    async def handle_show_answer(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        message = query.message
        if message is None or message.chat is None:
            await query.answer()
            return

        manager = self.get_manager(message.chat.id)
        item_id = self._parse_item_id(query.data, "rv_show")
        current = manager.current_item()
        if current is None or item_id is None or str(current.item_id) != item_id:
            await query.answer("This card is no longer current.", show_alert=True)
            if current is not None:
                await self._send_current_item(message, manager)
            return

        await query.answer()
        try:
            await query.edit_message_text(
                self._format_answer(current, manager.session_progress()),
                parse_mode=ParseMode.HTML,
                reply_markup=self._build_grade_keyboard(current.item_id),
            )
        except Exception:  # pragma: no cover - best effort update
            LOGGER.debug("Could not reveal card answer.", exc_info=True)
            await message.reply_text(
                self._format_answer(current, manager.session_progress()),
                parse_mode=ParseMode.HTML,
                reply_markup=self._build_grade_keyboard(current.item_id),
            )

    async def handle_grade(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Apply one of the four quality labels, or the correct/incorrect shortcut."""
        query = update.callback_query
        if query is None or query.data is None:
            return

        parts = query.data.split(":")
        if len(parts) != 3 or parts[0] not in {"rv_grade", "rv_binary"}:
            await query.answer()
            return

        message = query.message
        if message is None or message.chat is None:
            await query.answer()
            return

        manager = self.get_manager(message.chat.id)
        current = manager.current_item()
        item_id: Hashable = parts[1]
        if current is not None and str(current.item_id) == parts[1]:
            item_id = current.item_id

        now = datetime.now(timezone.utc)
        if parts[0] == "rv_binary":
            if parts[2] == "correct":
                result = await manager.mark_correct(item_id, now)
            elif parts[2] == "incorrect":
                result = await manager.mark_incorrect(item_id, now)
            else:
                result = SubmissionResult(
                    SubmissionStatus.REJECTED, item_id, error=InvalidGrade(parts[2])
                )
        else:
            result = await manager.submit_assessment(item_id, parts[2], now)

        await self._deliver_submission_result(query, message, manager, result)

    async def handle_navigation(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        message = query.message
        if message is None or message.chat is None:
            await query.answer()
            return

        manager = self.get_manager(message.chat.id)
        direction = query.data.partition(":")[2]
        if direction == "next":
            manager.go_to_next()
        elif direction == "prev":
            manager.go_to_previous()

        await query.answer()
        current = manager.current_item()
        if current is None:
            return
        try:
            await query.edit_message_text(
                self._format_question(current, manager.session_progress()),
                parse_mode=ParseMode.HTML,
                reply_markup=self._build_question_keyboard(current.item_id),
            )
        except Exception:  # pragma: no cover - best effort update
            LOGGER.debug("Could not update card after navigation.", exc_info=True)

    async def _deliver_submission_result(
        self,
        query,
        message,
        manager: ReviewSessionManager,
        result: SubmissionResult,
    ) -> None:
        if result.status is SubmissionStatus.APPLIED:
            await query.answer("Saved.")
            with suppress(Exception):
                await query.edit_message_reply_markup(reply_markup=None)
            interval = result.state.interval_days if result.state is not None else 1
            await message.reply_text(f"Next review {self._describe_interval(interval)}.")
            await self._send_current_item(message, manager)
            return

        if result.status is SubmissionStatus.PENDING:
            await query.answer("Still saving your previous answer…")
            return

        if result.status is SubmissionStatus.FAILED:
            # The card stays ungraded and keeps its keyboard so the learner can retry.
            await query.answer("Could not save your answer. Tap again to retry.", show_alert=True)
            return

        if result.status is SubmissionStatus.FATAL:
            progress = manager.session_progress()
            manager.end_session()
            await query.answer()
            await message.reply_text(
                "Your answers cannot be saved right now, so the session was stopped. "
                f"{progress.completed} of {progress.total} word(s) were graded."
            )
            return

        if isinstance(result.error, InvalidGrade):
            await query.answer("Unknown grade.", show_alert=True)
            return

        if isinstance(result.error, AlreadyGraded):
            await query.answer("You have already graded this card.", show_alert=True)
            return

        await query.answer("This card is no longer current.", show_alert=True)
        await self._send_current_item(message, manager)

    async def _send_current_item(self, message, manager: ReviewSessionManager) -> None:
        current = manager.current_item()
        progress = manager.session_progress()
        if current is None:
            await message.reply_text(
                f"Session complete! You graded {progress.completed} of {progress.total} word(s)."
            )
            return

        await message.reply_text(
            self._format_question(current, progress),
            parse_mode=ParseMode.HTML,
            reply_markup=self._build_question_keyboard(current.item_id),
        )

    @staticmethod
    def _parse_item_id(data: str, prefix: str) -> Optional[str]:
        parts = data.split(":")
        if len(parts) != 2 or parts[0] != prefix or not parts[1]:
            return None
        return parts[1]

    @staticmethod
    def _navigation_row() -> List[InlineKeyboardButton]:
        return [
            InlineKeyboardButton("◀", callback_data="rv_nav:prev"),
            InlineKeyboardButton("▶", callback_data="rv_nav:next"),
        ]

    def _build_question_keyboard(self, item_id: Hashable) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            [
                [InlineKeyboardButton("Show answer", callback_data=f"rv_show:{item_id}")],
                self._navigation_row(),
            ]
        )

    def _build_grade_keyboard(self, item_id: Hashable) -> InlineKeyboardMarkup:
        grades = [
            InlineKeyboardButton(_GRADE_BUTTON_TEXT[label], callback_data=f"rv_grade:{item_id}:{label}")
            for label in QUALITY_LABELS
        ]
        binary = [
            InlineKeyboardButton("✗ I was wrong", callback_data=f"rv_binary:{item_id}:incorrect"),
            InlineKeyboardButton("✓ I knew it", callback_data=f"rv_binary:{item_id}:correct"),
        ]
        return InlineKeyboardMarkup([grades, binary, self._navigation_row()])

    @staticmethod
    def _format_progress(progress: SessionProgress) -> str:
        if progress.total == 0:
            return "No review session in progress. Send /review to start one."
        position = min(progress.index + 1, progress.total)
        return (
            f"Card {position} of {progress.total}, "
            f"{progress.completed} graded."
        )

    def _format_question(self, item: ItemSnapshot, progress: SessionProgress) -> str:
        lines = [
            f"<i>{escape(self._format_progress(progress))}</i>",
            "",
            f"<b>{escape(item.term)}</b>",
            "",
            "<i>Try to recall the translation, then tap «Show answer».</i>",
        ]
        return "\n".join(lines)

    def _format_answer(self, item: ItemSnapshot, progress: SessionProgress) -> str:
        lines = [
            f"<i>{escape(self._format_progress(progress))}</i>",
            "",
            f"<b>{escape(item.term)}</b> — {escape(item.translation)}",
        ]
        if item.example:
            lines.append(f"<i>Example:</i> {escape(item.example)}")
        lines.append("")
        lines.append("<i>How well did you remember it?</i>")
        return "\n".join(lines)

    @staticmethod
    def _describe_interval(interval_days: int) -> str:
        if interval_days <= 1:
            return "tomorrow"
        if interval_days < 7:
            return f"in {interval_days} days"
        if interval_days % 7 == 0:
            weeks = interval_days // 7
            if weeks == 1:
                return "in 1 week"
            return f"in {weeks} weeks"
        return f"in {interval_days} days"
