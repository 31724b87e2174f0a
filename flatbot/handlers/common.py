"""
Telegram handlers — the only code that talks to python-telegram-bot.

- Authorization against ALLOWED_TELEGRAM_USER_IDS (refusal + audit log)
- Commands (/start, /help, /expense, /income, /report, /flats,
  /maintenance, /collection, /cancel)
- Callback router (inline buttons → Action → engine / menus)
- Text router (greetings, then the dialogue engine)
- Photo router (download → dialogue engine)

Every turn runs under the chat's session lock, so updates from one chat are
handled strictly one after another.
"""

import functools
import logging
from typing import Optional

from telegram import Update, User
from telegram.ext import ContextTypes

from flatbot.config import ALLOWED_USER_IDS
from flatbot.handlers.dialogue import DialogueEngine, Reply
from flatbot.handlers.menus import MenuHandler
from flatbot.models import Mode
from flatbot.utils import actions
from flatbot.utils.actions import Action, ActionError
from flatbot.utils.formatters import (
    format_processing_receipt,
    format_select_entry_type,
    format_unauthorized,
)
from flatbot.utils.keyboards import entry_type_menu, to_markup
from flatbot.utils.state import SessionStore

logger = logging.getLogger(__name__)

GREETINGS = {"hi", "hello", "hey", "start"}


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

def is_authorized(update: Update) -> bool:
    """Check the sender against the allow-list; log refused attempts."""
    user = update.effective_user
    if user is not None and user.id in ALLOWED_USER_IDS:
        return True
    logger.warning(
        "Unauthorized access attempt: user_id=%s username=%s name=%s",
        user.id if user else None,
        user.username if user else None,
        display_name(user) if user else None,
    )
    return False


def display_name(user: Optional[User]) -> str:
    """First + last name, falling back to username or id."""
    if user is None:
        return "Unknown"
    name = " ".join(part for part in (user.first_name, user.last_name) if part)
    return name or user.username or str(user.id)


# ---------------------------------------------------------------------------
# Turn plumbing
# ---------------------------------------------------------------------------

async def send_replies(context: ContextTypes.DEFAULT_TYPE, chat_id: int, replies: list[Reply]) -> None:
    for reply in replies:
        await context.bot.send_message(
            chat_id=chat_id,
            text=reply.text,
            reply_markup=to_markup(reply.layout),
        )


def chat_turn(handler):
    """Authorize, hold the chat's lock for the whole turn and send the replies."""

    @functools.wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat_id = update.effective_chat.id
        if not is_authorized(update):
            if update.callback_query:
                await update.callback_query.answer()
            await context.bot.send_message(chat_id=chat_id, text=format_unauthorized())
            return

        store: SessionStore = context.bot_data["store"]
        async with store.lock(chat_id):
            replies = await handler(update, context)
            await send_replies(context, chat_id, replies)

    return wrapper


def _engine(context: ContextTypes.DEFAULT_TYPE) -> DialogueEngine:
    return context.bot_data["engine"]


def _menus(context: ContextTypes.DEFAULT_TYPE) -> MenuHandler:
    return context.bot_data["menus"]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@chat_turn
async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    """Handle /start command."""
    return _menus(context).main_menu()


@chat_turn
async def handle_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return _menus(context).help()


@chat_turn
async def handle_expense(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return _engine(context).start_entry(update.effective_chat.id, Mode.EXPENSE, display_name(update.effective_user))


@chat_turn
async def handle_income(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return _engine(context).start_entry(update.effective_chat.id, Mode.INCOME, display_name(update.effective_user))


@chat_turn
async def handle_report(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return await _menus(context).monthly_report()


@chat_turn
async def handle_flats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return _menus(context).flats_menu()


@chat_turn
async def handle_maintenance(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return await _menus(context).collect_maintenance()


@chat_turn
async def handle_collection(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    return _menus(context).collections_menu()


@chat_turn
async def handle_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    """Handle /cancel — clear session, return to idle."""
    return _engine(context).cancel(update.effective_chat.id)


# ---------------------------------------------------------------------------
# Callback router
# ---------------------------------------------------------------------------

async def route_action(
    act: Action,
    chat_id: int,
    user_name: str,
    engine: DialogueEngine,
    menus: MenuHandler,
) -> list[Reply]:
    """Dispatch one inline-button Action."""
    name = act.name

    if name == actions.MAIN_MENU:
        return menus.main_menu()
    if name == actions.CANCEL:
        return engine.cancel(chat_id)

    # Expense / income
    if name == actions.ADD_EXPENSE:
        return engine.start_entry(chat_id, Mode.EXPENSE, user_name)
    if name == actions.ADD_INCOME:
        return engine.start_entry(chat_id, Mode.INCOME, user_name)

    # Reports
    if name == actions.MONTHLY_REPORT:
        return await menus.monthly_report()
    if name == actions.QUARTERLY_REPORT:
        return await menus.quarterly_report()

    # Flats
    if name == actions.MANAGE_FLATS:
        return menus.flats_menu()
    if name == actions.ADD_FLAT:
        return engine.start_flat_info(chat_id, user_name)
    if name == actions.UPDATE_FLAT_MENU:
        return await menus.pick_flat(actions.EDIT_FLAT, "update")
    if name == actions.EDIT_FLAT:
        return engine.start_flat_info(chat_id, user_name, flat_number=act.get("flat"))
    if name == actions.VIEW_FLATS:
        return await menus.view_flats()
    if name == actions.SEARCH_FLAT:
        return await menus.pick_flat(actions.SHOW_FLAT, "view")
    if name == actions.SHOW_FLAT:
        return await menus.show_flat(act.get("flat"))

    # Collections
    if name in (actions.COLLECT_MAINTENANCE, actions.CREATE_MAINTENANCE_COLLECTION):
        return await menus.collect_maintenance()
    if name == actions.CREATE_COLLECTION:
        return menus.collections_menu()
    if name == actions.CREATE_WATER_COLLECTION:
        return engine.start_collection(chat_id, "water", user_name)
    if name == actions.CREATE_OTHER_COLLECTION:
        return engine.start_collection(chat_id, "other", user_name)
    if name == actions.VIEW_COLLECTIONS:
        return await menus.list_collections()
    if name == actions.VIEW_COLLECTION:
        return await menus.view_collection(act.period)
    if name == actions.UPDATE_COLLECTION:
        return await menus.payment_picker(act.period)
    if name == actions.UPDATE_FLAT:
        return await menus.toggle_payment(act.period, act.get("flat"), user_name)

    raise ActionError(f"Unknown action: {name}")


@chat_turn
async def handle_callback_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    """Decode the button's callback data and dispatch it."""
    query = update.callback_query
    await query.answer()
    try:
        act = actions.decode(query.data or "")
        return await route_action(
            act,
            update.effective_chat.id,
            display_name(update.effective_user),
            _engine(context),
            _menus(context),
        )
    except ActionError as e:
        logger.warning("Ignoring callback %r: %s", query.data, e)
        return _menus(context).main_menu()


# ---------------------------------------------------------------------------
# Text router
# ---------------------------------------------------------------------------

@chat_turn
async def handle_text_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    """Greetings open the main menu when no flow is active; everything else goes to the engine."""
    chat_id = update.effective_chat.id
    text = update.message.text or ""
    store: SessionStore = context.bot_data["store"]

    if text.strip().lower() in GREETINGS and chat_id not in store:
        return _menus(context).main_menu()
    return await _engine(context).handle_text(chat_id, text, display_name(update.effective_user))


# ---------------------------------------------------------------------------
# Photo router
# ---------------------------------------------------------------------------

@chat_turn
async def handle_photo_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> list[Reply]:
    """Download the largest photo size and hand it to the engine as a receipt."""
    chat_id = update.effective_chat.id
    engine = _engine(context)

    # Nothing to attach the receipt to: ask expense or income before downloading
    if not engine.expects_receipt(chat_id):
        return [Reply(format_select_entry_type(), entry_type_menu())]

    await context.bot.send_message(chat_id=chat_id, text=format_processing_receipt())

    # Download photo (highest resolution)
    photo = update.message.photo[-1]
    file = await photo.get_file()
    image_bytes = bytes(await file.download_as_bytearray())

    async def notify(text: str) -> None:
        await context.bot.send_message(chat_id=chat_id, text=text)

    return await engine.handle_photo(chat_id, image_bytes, display_name(update.effective_user), notify=notify)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log exceptions raised by handlers (Telegram API errors, downloads)."""
    logger.error("Error while handling update %s", update, exc_info=context.error)
