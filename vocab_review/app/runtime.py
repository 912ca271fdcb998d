"""Bootstrap logic for running the review bot."""

from __future__ import annotations

import asyncio
import logging

from vocab_review.app.settings import AppSettings
from vocab_review.bot import ReviewBot, build_application
from vocab_review.db import get_session_factory, run_migrations_if_needed


LOGGER = logging.getLogger(__name__)


def _configure_logging(log_level: str) -> None:
    """Set up project-wide logging configuration."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=log_level,
    )


def _ensure_event_loop() -> None:
    """Guarantee that an asyncio event loop exists for the current thread."""
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())


def build_bot(settings: AppSettings) -> ReviewBot:
    """Create the review bot with its database session factory."""
    return ReviewBot(
        get_session_factory(),
        source_language=settings.source_language,
        target_language=settings.target_language,
        max_interval_days=settings.max_interval_days,
        max_persist_failures=settings.max_persist_failures,
    )


def run_bot(settings: AppSettings) -> None:
    """Start the Telegram bot using the provided settings."""
    _configure_logging(settings.log_level)

    try:
        run_migrations_if_needed()
    except Exception:
        LOGGER.exception("Database migrations failed. Aborting startup.")
        raise

    application = build_application(settings.telegram_bot_token, build_bot(settings))

    _ensure_event_loop()

    LOGGER.info("Starting %s in %s mode.", settings.app_name, settings.app_env)
    application.run_polling()
