"""
Flat Association Bot — Entry Point

FastAPI webhook server + python-telegram-bot Application.
Handles expense/income entry (quick entry + receipt OCR), flat records,
monthly/quarterly reports and recurring collections.

Local dev:   uvicorn flatbot.main:api --host 0.0.0.0 --port 8000 --reload
Production:  set WEBHOOK_URL + WEBHOOK_SECRET and run the same command
"""

import hmac
import json as _json
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request, Response
from telegram import BotCommand, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from flatbot.config import (
    COLLECTION_SPREADSHEET_ID,
    GOOGLE_DRIVE_FOLDER_ID,
    GOOGLE_SHEETS_CREDS_JSON,
    GOOGLE_VISION_API_KEY,
    SESSION_TTL_HOURS,
    SPREADSHEET_ID,
    TELEGRAM_BOT_TOKEN,
    WEBHOOK_SECRET,
    WEBHOOK_URL,
    ConfigError,
    validate_config,
)
from flatbot.handlers.common import (
    handle_callback_router,
    handle_cancel,
    handle_collection,
    handle_error,
    handle_expense,
    handle_flats,
    handle_help,
    handle_income,
    handle_maintenance,
    handle_photo_router,
    handle_report,
    handle_start,
    handle_text_router,
)
from flatbot.handlers.dialogue import DialogueEngine
from flatbot.handlers.menus import MenuHandler
from flatbot.services.drive import DriveStorage
from flatbot.services.extraction import FieldExtractor
from flatbot.services.scheduler import setup_scheduler, shutdown_scheduler
from flatbot.services.sheets import SheetsLedger
from flatbot.utils.state import SessionStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Suppress httpx INFO logs — they contain the bot token in URLs
logging.getLogger("httpx").setLevel(logging.WARNING)

BOT_COMMANDS = [
    BotCommand("start", "Main menu"),
    BotCommand("expense", "Record an expense"),
    BotCommand("income", "Record an income"),
    BotCommand("report", "This month's report"),
    BotCommand("flats", "Manage flats"),
    BotCommand("maintenance", "Collect maintenance"),
    BotCommand("collection", "Create or view collections"),
    BotCommand("cancel", "Cancel the current operation"),
    BotCommand("help", "Help"),
]

# ---------------------------------------------------------------------------
# Telegram bot application (global — initialized on startup)
# ---------------------------------------------------------------------------
bot_app: Optional[Application] = None


def build_application() -> Application:
    """Wire adapters, engine and handlers into a python-telegram-bot Application."""
    store = SessionStore(ttl=timedelta(hours=SESSION_TTL_HOURS))
    ledger = SheetsLedger(SPREADSHEET_ID, COLLECTION_SPREADSHEET_ID, GOOGLE_SHEETS_CREDS_JSON)
    storage = DriveStorage(GOOGLE_DRIVE_FOLDER_ID, GOOGLE_SHEETS_CREDS_JSON)
    extractor = FieldExtractor(GOOGLE_VISION_API_KEY)

    app = Application.builder().token(TELEGRAM_BOT_TOKEN).build()
    app.bot_data["store"] = store
    app.bot_data["engine"] = DialogueEngine(store, ledger, storage, extractor)
    app.bot_data["menus"] = MenuHandler(ledger)

    # Commands (Telegram only allows Latin letters, digits, underscores)
    app.add_handler(CommandHandler("start", handle_start))
    app.add_handler(CommandHandler("help", handle_help))
    app.add_handler(CommandHandler("expense", handle_expense))
    app.add_handler(CommandHandler("income", handle_income))
    app.add_handler(CommandHandler("report", handle_report))
    app.add_handler(CommandHandler("flats", handle_flats))
    app.add_handler(CommandHandler("maintenance", handle_maintenance))
    app.add_handler(CommandHandler("collection", handle_collection))
    app.add_handler(CommandHandler("cancel", handle_cancel))

    # Callbacks (inline keyboard button presses)
    app.add_handler(CallbackQueryHandler(handle_callback_router))

    # Photos (receipts)
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo_router))

    # Text (quick entry, answers, yes/no, greetings)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text_router))

    app.add_error_handler(handle_error)
    return app


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — replaces deprecated on_event startup/shutdown."""
    global bot_app

    # --- STARTUP ---
    # 1. Configuration
    missing = validate_config()
    if missing:
        raise ConfigError("Missing required configuration: " + ", ".join(missing))

    # 2. Build bot application
    bot_app = build_application()

    # 3. Initialize and start bot
    await bot_app.initialize()
    await bot_app.start()
    await bot_app.bot.set_my_commands(BOT_COMMANDS)

    # 4. Set webhook (production) or polling (local dev)
    if WEBHOOK_URL:
        if not WEBHOOK_URL.startswith("https://"):
            raise ConfigError("WEBHOOK_URL must use HTTPS for security — got: %s" % WEBHOOK_URL[:30])
        webhook_url = f"{WEBHOOK_URL}/webhook"
        await bot_app.bot.set_webhook(
            url=webhook_url,
            secret_token=WEBHOOK_SECRET,
        )
        logger.info("Webhook set: %s", webhook_url)
    else:
        # Local dev: delete any old webhook and start polling
        await bot_app.bot.delete_webhook(drop_pending_updates=True)
        await bot_app.updater.start_polling(drop_pending_updates=True)
        logger.info("No WEBHOOK_URL — running in polling mode (local dev)")

    # 5. Start session cleanup scheduler
    setup_scheduler(bot_app.bot_data["store"])

    logger.info("Flat Association Bot started successfully")

    yield  # Application runs here

    # --- SHUTDOWN ---
    shutdown_scheduler()
    if bot_app:
        if bot_app.updater and bot_app.updater.running:
            await bot_app.updater.stop()
        await bot_app.stop()
        await bot_app.shutdown()
    logger.info("Flat Association Bot shut down")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
api = FastAPI(title="Flat Association Bot", version="1.0.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Rate limiter (simple in-memory, per-IP)
# ---------------------------------------------------------------------------
_rate_limit_window = 60  # seconds
_rate_limit_max = 60     # max requests per window
_rate_buckets: dict[str, list[float]] = {}


def _is_rate_limited(client_ip: str) -> bool:
    """Check if a client IP has exceeded the rate limit."""
    now = time.monotonic()
    recent = [ts for ts in _rate_buckets.get(client_ip, ()) if now - ts < _rate_limit_window]
    if len(recent) >= _rate_limit_max:
        _rate_buckets[client_ip] = recent
        return True
    recent.append(now)
    _rate_buckets[client_ip] = recent
    _prune_rate_buckets(now)
    return False


def _prune_rate_buckets(now: float) -> None:
    """Forget clients with no request inside the window."""
    idle = [ip for ip, stamps in _rate_buckets.items() if not stamps or now - stamps[-1] >= _rate_limit_window]
    for ip in idle:
        del _rate_buckets[ip]


# ---------------------------------------------------------------------------
# Webhook endpoint
# ---------------------------------------------------------------------------

@api.post("/webhook")
async def webhook(request: Request) -> Response:
    """Telegram webhook endpoint — receives updates from Telegram servers."""
    # Rate limiting (per client IP)
    client_ip = request.client.host if request.client else "unknown"
    if _is_rate_limited(client_ip):
        logger.warning("Rate limited: %s", client_ip)
        return Response(status_code=429)

    # SECURITY: Reject if webhook secret is not configured
    if not WEBHOOK_SECRET:
        logger.error("WEBHOOK_SECRET not configured — rejecting all webhook requests")
        return Response(status_code=500)

    # Verify secret token (constant-time comparison to prevent timing attacks)
    secret = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not hmac.compare_digest(secret, WEBHOOK_SECRET):
        logger.warning("Webhook secret mismatch from %s", client_ip)
        return Response(status_code=403)

    # Guard against bot_app not initialized
    if bot_app is None:
        logger.error("Bot application not initialized")
        return Response(status_code=503)

    # Limit request body size (1 MB — Telegram updates are typically < 100 KB)
    body = await request.body()
    if len(body) > 1_048_576:
        logger.warning("Webhook payload too large: %d bytes", len(body))
        return Response(status_code=413)

    try:
        data = _json.loads(body)
    except ValueError:
        logger.warning("Webhook body is not JSON (from %s)", client_ip)
        return Response(status_code=400)

    update = Update.de_json(data, bot_app.bot)
    await bot_app.process_update(update)
    return Response(status_code=200)


@api.get("/health")
async def health():
    """Health check endpoint. Minimal response to avoid leaking identity."""
    return {"status": "ok"}
