"""Telegram transport for the expense ledger bot."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from .completion import OpenAICompletion
from .config import Settings, get_settings
from .controller import (
    ACTION_ADD,
    ACTION_ANALYSIS,
    ACTION_CATEGORIZE,
    ACTION_HELP,
    ACTION_SUMMARY,
    ACTION_TOTAL,
    FIXED_ACTIONS,
    Button,
    ConversationController,
    Reply,
)
from .ledger import LedgerStore, zone_clock

logger = logging.getLogger(__name__)

settings = get_settings()

if not settings.telegram_bot_token:
    logger.warning(
        "Telegram bot token is not configured. Bot cannot start without TELEGRAM_BOT.")

CONTROLLER_KEY = "controller"


def render_keyboard(rows: list[list[Button]]) -> InlineKeyboardMarkup | None:
    if not rows:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(button.label, callback_data=button.data) for button in row] for row in rows]
    )


def _controller(context: ContextTypes.DEFAULT_TYPE) -> ConversationController:
    return context.application.bot_data[CONTROLLER_KEY]


def _parse_mode(reply: Reply) -> ParseMode | None:
    return ParseMode.MARKDOWN if reply.markdown else None


async def send_reply(bot, chat_id: int | str, reply: Reply) -> Message:
    try:
        return await bot.send_message(
            chat_id=chat_id,
            text=reply.text,
            reply_markup=render_keyboard(reply.keyboard),
            parse_mode=_parse_mode(reply),
        )
    except BadRequest as exc:
        if not reply.markdown:
            raise
        logger.warning("Markdown rejected for chat %s, sending plain text: %s", chat_id, exc)
        return await bot.send_message(
            chat_id=chat_id,
            text=reply.text,
            reply_markup=render_keyboard(reply.keyboard),
        )


async def edit_reply(update: Update, reply: Reply) -> None:
    query = update.callback_query
    try:
        await query.edit_message_text(
            reply.text,
            reply_markup=render_keyboard(reply.keyboard),
            parse_mode=_parse_mode(reply),
        )
    except BadRequest as exc:
        if "not modified" in str(exc).lower():
            return
        if not reply.markdown:
            raise
        logger.warning("Markdown rejected while editing, sending plain text: %s", exc)
        await query.edit_message_text(reply.text, reply_markup=render_keyboard(reply.keyboard))


def _chat_id(update: Update) -> str:
    return str(update.effective_chat.id)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await send_reply(context.bot, update.effective_chat.id, _controller(context).start())


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await send_reply(context.bot, update.effective_chat.id, _controller(context).help())


async def summary_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    reply = _controller(context).daily_summary(_chat_id(update))
    await send_reply(context.bot, update.effective_chat.id, reply)


async def total_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    reply = _controller(context).monthly_total(_chat_id(update))
    await send_reply(context.bot, update.effective_chat.id, reply)


async def analysis_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    waiting = await update.effective_message.reply_text("🧠 Analisando seus gastos... Aguarde um momento.")
    reply = await _controller(context).analysis(_chat_id(update))
    try:
        await waiting.delete()
    except BadRequest as exc:
        logger.warning("Could not delete waiting message: %s", exc)
    await send_reply(context.bot, update.effective_chat.id, reply)


async def remove_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    reply = _controller(context).remove_command(_chat_id(update), context.args or [])
    await send_reply(context.bot, update.effective_chat.id, reply)


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    text = update.effective_message.text or ""
    await context.bot.send_chat_action(chat_id=update.effective_chat.id, action=ChatAction.TYPING)
    reply = await _controller(context).handle_text(_chat_id(update), text)
    await send_reply(context.bot, update.effective_chat.id, reply)


async def handle_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer("Registrando gasto...")
    reply = await _controller(context).confirm(_chat_id(update), query.data or "")
    await send_reply(context.bot, update.effective_chat.id, reply)
    try:
        await query.delete_message()
    except BadRequest as exc:
        logger.warning("Could not delete confirmation message: %s", exc)


async def handle_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    reply = _controller(context).cancel()
    await update.callback_query.answer(reply.notice)
    await edit_reply(update, reply)


async def handle_remove(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    reply = _controller(context).remove_button(_chat_id(update), query.data or "")
    await query.answer(reply.notice)
    await edit_reply(update, reply)


async def handle_action(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    controller = _controller(context)
    chat_id = _chat_id(update)
    action = query.data or ""

    if action == ACTION_SUMMARY:
        reply = controller.daily_summary(chat_id)
    elif action == ACTION_TOTAL:
        reply = controller.monthly_total(chat_id)
    elif action == ACTION_HELP:
        reply = controller.help()
    elif action == ACTION_ADD:
        reply = controller.add_prompt()
        await query.answer(reply.notice)
        await send_reply(context.bot, update.effective_chat.id, reply)
        return
    elif action == ACTION_ANALYSIS:
        await query.answer()
        await query.edit_message_text("🧠 Analisando seus gastos... Aguarde um momento.")
        await edit_reply(update, await controller.analysis(chat_id))
        return
    elif action == ACTION_CATEGORIZE:
        await query.answer("Categorizando seus gastos...")
        await query.edit_message_text("🧠 Categorizando seus gastos... Aguarde um momento.")
        await edit_reply(update, await controller.categorize(chat_id))
        return
    else:
        await query.answer("Ação desconhecida.")
        return

    await query.answer(reply.notice)
    await edit_reply(update, reply)


async def daily_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    async def send(chat_id: str, reply: Reply) -> None:
        await send_reply(context.bot, chat_id, reply)

    await _controller(context).daily_broadcast(send)


async def weekly_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    async def send(chat_id: str, reply: Reply) -> None:
        await send_reply(context.bot, chat_id, reply)

    await _controller(context).weekly_broadcast(send)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %s", update, exc_info=context.error)


def build_controller(app_settings: Settings) -> ConversationController:
    """Wire the store and controller to one clock in the configured timezone."""
    clock = zone_clock(app_settings.timezone)
    return ConversationController(
        store=LedgerStore(clock=clock),
        completion=OpenAICompletion(app_settings),
        settings=app_settings,
        clock=clock,
    )


def build_application(controller: ConversationController | None = None) -> Application:
    if not settings.telegram_bot_token:
        raise RuntimeError("TELEGRAM_BOT is missing from configuration.")

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    application.bot_data[CONTROLLER_KEY] = controller or build_controller(settings)

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("ajuda", help_command))
    application.add_handler(CommandHandler("resumo", summary_command))
    application.add_handler(CommandHandler("total", total_command))
    application.add_handler(CommandHandler("analise", analysis_command))
    application.add_handler(CommandHandler("remove", remove_command))
    application.add_handler(CallbackQueryHandler(handle_confirm, pattern=r"^confirm_"))
    application.add_handler(CallbackQueryHandler(handle_cancel, pattern=r"^cancel_"))
    application.add_handler(CallbackQueryHandler(handle_remove, pattern=r"^remove_\d+$"))
    application.add_handler(
        CallbackQueryHandler(handle_action, pattern=rf"^(?:{'|'.join(FIXED_ACTIONS)})$")
    )
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    application.add_handler(MessageHandler(filters.COMMAND, help_command))
    application.add_error_handler(error_handler)

    tz = ZoneInfo(settings.timezone)
    job_queue = application.job_queue
    job_queue.run_daily(
        daily_job,
        time=settings.daily_summary_time.replace(tzinfo=tz),
        name="daily-summary",
    )
    job_queue.run_daily(
        weekly_job,
        time=settings.weekly_summary_time.replace(tzinfo=tz),
        days=(settings.weekly_summary_day,),
        name="weekly-summary",
    )
    return application


def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.telegram_bot_token:
        raise SystemExit(
            "Please set TELEGRAM_BOT in the environment to run the bot.")
    application = build_application()
    logger.info("Starting Telegram bot...")
    application.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
