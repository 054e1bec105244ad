"""FastAPI application entry point: wires everything together.

Usage:
    python -m vatwatch.main

Starts FastAPI (public + admin API) and the Telegram bot (long-polling, or
webhook when TG_WEBHOOK_SECRET is set). The check cycle runs on the bot's
job queue.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vatwatch.api.admin import router as admin_router
from vatwatch.api.public import router as public_router
from vatwatch.channels.telegram import (
    bind_services,
    create_telegram_app,
    schedule_check_cycle,
    telegram_router,
)
from vatwatch.config import settings
from vatwatch.db.engine import Database, db_lifespan
from vatwatch.errors import StoreError
from vatwatch.integrations.vies.client import ViesClient
from vatwatch.lifecycle.admission import MonitoringService
from vatwatch.lifecycle.engine import LifecycleEngine
from vatwatch.notifications.telegram import TelegramNotifier
from vatwatch.store.requests import RequestStore

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


def _build_database() -> Database:
    options: dict[str, object] = {"echo": settings.log_level == "DEBUG", "pool_pre_ping": True}
    if not settings.db.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db.pool_size,
            max_overflow=settings.db.max_overflow,
            pool_recycle=3600,
        )
    return Database(settings.db.database_url, create_tables=not settings.is_production, **options)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting VatWatch (env=%s)", settings.environment)

    database = _build_database()
    vies = ViesClient(settings.vies.vies_url, timeout=settings.vies.vies_timeout)

    # 1. Database
    async with db_lifespan(database):
        logger.info("Database initialized")

        # 2. VIES
        await vies.connect()

        # 3. Telegram bot (only if token configured)
        telegram_app = None
        if settings.telegram.tg_bot_token:
            telegram_app = create_telegram_app(settings.telegram.tg_bot_token)
        else:
            logger.warning("TG_BOT_TOKEN not set, bot, notifications and check cycle disabled")

        notifier = TelegramNotifier(
            telegram_app.bot if telegram_app is not None else None,
            admin_chat_id=settings.telegram.tg_admin_chat_id,
        )

        # 4. Core services
        store = RequestStore(database, expiration_days=settings.monitoring.vat_number_expiration_days)
        engine = LifecycleEngine(
            store,
            vies,
            notifier,
            notify_admin_on_unrecoverable_errors=settings.telegram.notify_admin_on_unrecoverable_errors,
        )
        monitoring = MonitoringService(
            store,
            vies,
            max_pending_per_owner=settings.monitoring.max_pending_vat_numbers_per_user,
            expiration_days=settings.monitoring.vat_number_expiration_days,
        )
        app.state.store = store
        app.state.engine = engine
        app.state.monitoring = monitoring
        app.state.telegram_app = telegram_app

        # 5. Start the bot and schedule the check cycle
        if telegram_app is not None:
            bind_services(telegram_app, monitoring, engine)
            await telegram_app.initialize()
            await telegram_app.start()
            if not settings.telegram.tg_webhook_secret:
                await telegram_app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
                logger.info("Telegram bot polling started")
            schedule_check_cycle(telegram_app, settings.monitoring.check_interval_seconds)

        try:
            yield
        finally:
            # Shutdown in reverse order
            logger.info("Shutting down VatWatch...")

            if telegram_app is not None:
                if telegram_app.updater and telegram_app.updater.running:
                    await telegram_app.updater.stop()
                await telegram_app.stop()
                await telegram_app.shutdown()
                logger.info("Telegram bot stopped")

            await vies.close()
            logger.info("VIES client closed")

    logger.info("VatWatch shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Storage error, please try again later"})


def create_app(*, with_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI app; tests build it without lifespan and fill app.state."""
    app = FastAPI(
        title="VatWatch API",
        description="VIES VAT number monitoring with Telegram notifications",
        version="0.1.0",
        lifespan=lifespan if with_lifespan else None,
    )
    app.include_router(public_router)
    app.include_router(admin_router)
    app.include_router(telegram_router)
    app.add_exception_handler(StoreError, store_error_handler)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "vatwatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
