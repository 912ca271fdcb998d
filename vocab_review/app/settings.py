"""Configuration helpers for the vocabulary review runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

from vocab_review.review.session import DEFAULT_MAX_CONSECUTIVE_FAILURES
from vocab_review.review.srs import MAX_INTERVAL_DAYS


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


@dataclass(frozen=True)
class AppSettings:
    """Strongly typed application settings loaded from environment variables."""

    app_name: str
    app_env: str
    log_level: str
    telegram_bot_token: str
    max_interval_days: int
    max_persist_failures: int
    source_language: str
    target_language: str

    @classmethod
    def from_env(cls) -> AppSettings:
        """Construct settings directly from environment variables."""
        app_name = os.getenv("APP_NAME", "Vocabulary Review")
        app_env = os.getenv("APP_ENV", "development")
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN")

        if not telegram_bot_token:
            raise RuntimeError(
                "TELEGRAM_BOT_TOKEN environment variable is required to start the Telegram bot."
            )

        max_interval_days = _read_int("REVIEW_MAX_INTERVAL_DAYS", MAX_INTERVAL_DAYS)
        if max_interval_days < 1 or max_interval_days > 36500:
            raise RuntimeError("REVIEW_MAX_INTERVAL_DAYS must be between 1 and 36500.")

        max_persist_failures = _read_int(
            "REVIEW_MAX_PERSIST_FAILURES", DEFAULT_MAX_CONSECUTIVE_FAILURES
        )
        if max_persist_failures < 1:
            raise RuntimeError("REVIEW_MAX_PERSIST_FAILURES must be a positive integer.")

        source_language = os.getenv("REVIEW_SOURCE_LANGUAGE", "Dutch")
        target_language = os.getenv("REVIEW_TARGET_LANGUAGE", "English")

        return cls(
            app_name=app_name,
            app_env=app_env,
            log_level=log_level,
            telegram_bot_token=telegram_bot_token,
            max_interval_days=max_interval_days,
            max_persist_failures=max_persist_failures,
            source_language=source_language,
            target_language=target_language,
        )
