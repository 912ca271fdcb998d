"""Telegram application wiring for the vocabulary review bot."""

from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
)

from .review_bot import ReviewBot


def build_application(bot_token: str, bot: ReviewBot) -> Application:
    """Configure the Telegram application instance."""
    application = ApplicationBuilder().token(bot_token).post_shutdown(_drain_writes(bot)).build()
    application.add_handler(CommandHandler("start", bot.handle_start))
    application.add_handler(CommandHandler("add", bot.handle_add_word))
    application.add_handler(CommandHandler("due", bot.handle_due))
    application.add_handler(CommandHandler("review", bot.handle_review))
    application.add_handler(CommandHandler("progress", bot.handle_progress))
    application.add_handler(CommandHandler("stat", bot.handle_stat))
    application.add_handler(CommandHandler("end", bot.handle_end))
    application.add_handler(CallbackQueryHandler(bot.handle_review, pattern="^rv_start$"))
    application.add_handler(CallbackQueryHandler(bot.handle_show_answer, pattern=r"^rv_show:"))
    application.add_handler(CallbackQueryHandler(bot.handle_grade, pattern=r"^rv_(grade|binary):"))
    application.add_handler(CallbackQueryHandler(bot.handle_navigation, pattern=r"^rv_nav:"))
    return application


def _drain_writes(bot: ReviewBot):
    async def _post_shutdown(application: Application) -> None:
        await bot.shutdown()

    return _post_shutdown
