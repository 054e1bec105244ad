"""Telegram bot adapter: commands, webhook, and the scheduled check cycle.

Uses python-telegram-bot v21+ async. Commands are thin: they parse the
arguments, call the MonitoringService and reply with its message. The owner
of a VAT number is the chat the command came from.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from fastapi import APIRouter, Request, Response
from telegram import Bot, Update
from telegram.ext import Application, CommandHandler, ContextTypes

from vatwatch.config import settings
from vatwatch.lifecycle.admission import MonitoringService
from vatwatch.lifecycle.engine import LifecycleEngine

logger = logging.getLogger(__name__)

# bot_data keys
MONITORING_KEY = "monitoring"
ENGINE_KEY = "engine"

CHECK_CYCLE_JOB = "vat-check-cycle"

HELP_TEXT = (
    "I watch VAT numbers that are not registered in VIES yet and tell you when they become valid.\n\n"
    "Commands:\n"
    "/check VAT_NUMBER - Check a VAT number and monitor it if it is not valid yet\n"
    "/uncheck VAT_NUMBER - Stop monitoring a VAT number\n"
    "/uncheckall - Stop monitoring all your VAT numbers\n"
    "/list - Show the VAT numbers you monitor\n"
    "/help - Show this message\n\n"
    "VAT numbers start with the country code, e.g. PL1234567890."
)

# ── Webhook router ───────────────────────────────────────────────────

telegram_router = APIRouter(prefix="/webhook", tags=["telegram"])

# The event loop only keeps weak references to tasks.
_update_tasks: set[asyncio.Task[None]] = set()


def _update_task_done(task: asyncio.Task[None]) -> None:
    _update_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Telegram update processing failed", exc_info=exc)


def spawn_update_task(coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
    """Process an update in the background, holding the task until it finishes."""
    task = asyncio.create_task(coro)
    _update_tasks.add(task)
    task.add_done_callback(_update_task_done)
    return task


@telegram_router.post("/telegram")
async def telegram_webhook(request: Request) -> Response:
    """Receive Telegram updates via webhook (production mode)."""
    secret = settings.telegram.tg_webhook_secret
    if not secret:
        return Response(status_code=404)
    header_secret = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if header_secret != secret:
        return Response(status_code=403)

    telegram_app: Application | None = getattr(request.app.state, "telegram_app", None)
    if telegram_app is None:
        return Response(status_code=503)
    bot: Bot = telegram_app.bot

    data = await request.json()
    update = Update.de_json(data, bot)

    # Return 200 immediately so Telegram doesn't retry
    spawn_update_task(telegram_app.process_update(update))

    return Response(status_code=200)


# ── Commands ─────────────────────────────────────────────────────────


def _monitoring(context: ContextTypes.DEFAULT_TYPE) -> MonitoringService:
    return context.bot_data[MONITORING_KEY]


def _chat_id(update: Update) -> str | None:
    if update.effective_chat is None:
        return None
    return str(update.effective_chat.id)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/start and /help: show the command list."""
    if update.message is None:
        return
    await update.message.reply_text(HELP_TEXT)


async def check_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/check VAT_NUMBER: check now, monitor if not valid yet."""
    if update.message is None:
        return
    args = context.args or []
    if len(args) != 1:
        await update.message.reply_text(
            "Please provide a single VAT number prefixed by country code: "
            "/check VAT_NUMBER (example: /check PL1234567890)."
        )
        logger.info("/check called with %d arguments", len(args))
        return

    reply = await _monitoring(context).submit(_chat_id(update), args[0])
    await update.message.reply_text(reply.message)


async def uncheck_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/uncheck VAT_NUMBER: stop monitoring one VAT number."""
    if update.message is None:
        return
    args = context.args or []
    if len(args) != 1:
        await update.message.reply_text(
            "Please provide a single VAT number prefixed by country code: "
            "/uncheck VAT_NUMBER (example: /uncheck PL1234567890)."
        )
        return

    reply = await _monitoring(context).remove(_chat_id(update), args[0])
    await update.message.reply_text(reply.message)


async def uncheck_all_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/uncheckall: stop monitoring everything."""
    if update.message is None:
        return
    reply = await _monitoring(context).remove_all(_chat_id(update))
    await update.message.reply_text(reply.message)


async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/list: show monitored VAT numbers."""
    if update.message is None:
        return
    reply = await _monitoring(context).list_mine(_chat_id(update))
    await update.message.reply_text(reply.message)


# ── Scheduled check cycle ────────────────────────────────────────────


async def check_cycle_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """JobQueue callback running one check cycle."""
    engine: LifecycleEngine = context.bot_data[ENGINE_KEY]
    try:
        await engine.run_check_cycle()
    except Exception:
        logger.exception("Check cycle aborted")


def schedule_check_cycle(app: Application, interval_seconds: int) -> None:
    """Run the check cycle every ``interval_seconds`` on the bot's job queue."""
    if app.job_queue is None:
        msg = "JobQueue unavailable; install python-telegram-bot[job-queue]"
        raise RuntimeError(msg)
    app.job_queue.run_repeating(
        check_cycle_job,
        interval=interval_seconds,
        first=10,
        name=CHECK_CYCLE_JOB,
    )
    logger.info("Check cycle scheduled every %d seconds", interval_seconds)


def bind_services(app: Application, monitoring: MonitoringService, engine: LifecycleEngine) -> None:
    """Make the services reachable from command handlers and jobs."""
    app.bot_data[MONITORING_KEY] = monitoring
    app.bot_data[ENGINE_KEY] = engine


def create_telegram_app(token: str) -> Application:
    """Build and configure the Telegram bot application.

    Returns the Application instance (not yet started). Call bind_services()
    before starting it.
    """
    if not token:
        msg = "TG_BOT_TOKEN not set in environment"
        raise ValueError(msg)

    app = Application.builder().token(token).build()

    app.add_handler(CommandHandler("start", help_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("check", check_command))
    app.add_handler(CommandHandler("uncheck", uncheck_command))
    app.add_handler(CommandHandler("uncheckall", uncheck_all_command))
    app.add_handler(CommandHandler("list", list_command))

    logger.info("Telegram bot application created")
    return app
