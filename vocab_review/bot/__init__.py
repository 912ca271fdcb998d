"""Telegram front-end for vocabulary review sessions."""

from .review_bot import ReviewBot
from .telegram import build_application

__all__ = ["ReviewBot", "build_application"]
