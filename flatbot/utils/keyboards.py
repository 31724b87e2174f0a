"""
Inline keyboard layouts.

Layouts are built from Button objects carrying an Action, so handlers and
tests never deal with raw callback strings. to_markup() turns a layout into
a Telegram InlineKeyboardMarkup at send time.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from flatbot.models import CollectionEntry, CollectionPeriod, FlatInfo, PaymentStatus
from flatbot.utils import actions
from flatbot.utils.actions import Action, ActionError, action, period_action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Button:
    label: str
    action: Action


Layout = list[list[Button]]


def to_markup(layout: Optional[Layout]) -> Optional[InlineKeyboardMarkup]:
    """Layout → InlineKeyboardMarkup (None passes through).

    A button whose action cannot be encoded as callback data is dropped and
    logged; the rest of the keyboard is still sent.
    """
    if not layout:
        return None
    rows = []
    for row in layout:
        buttons = []
        for button in row:
            try:
                data = actions.encode(button.action)
            except ActionError as e:
                logger.warning("Dropping button %r: %s", button.label, e)
                continue
            buttons.append(InlineKeyboardButton(button.label, callback_data=data))
        if buttons:
            rows.append(buttons)
    return InlineKeyboardMarkup(rows) if rows else None


def _btn(label: str, name: str) -> Button:
    return Button(label, action(name))


# ---------------------------------------------------------------------------
# Main menu
# ---------------------------------------------------------------------------

def main_menu() -> Layout:
    return [
        [_btn("➕ Add Expense", actions.ADD_EXPENSE), _btn("➕ Add Income", actions.ADD_INCOME)],
        [_btn("📊 Monthly Report", actions.MONTHLY_REPORT), _btn("📈 Quarterly Report", actions.QUARTERLY_REPORT)],
        [_btn("🏢 Manage Flats", actions.MANAGE_FLATS), _btn("💰 Collect Maintenance", actions.COLLECT_MAINTENANCE)],
        [_btn("📋 Create Collection", actions.CREATE_COLLECTION)],
    ]


def entry_type_menu() -> Layout:
    """Expense or income — shown when input arrives with no flow active."""
    return [[_btn("➕ Add Expense", actions.ADD_EXPENSE), _btn("➕ Add Income", actions.ADD_INCOME)]]


def back_to_main() -> Layout:
    return [[_btn("🔙 Back to Main Menu", actions.MAIN_MENU)]]


def cancel_keyboard() -> Layout:
    """Cancel button — available at every step."""
    return [[_btn("❌ Cancel", actions.CANCEL)]]


# ---------------------------------------------------------------------------
# Flats
# ---------------------------------------------------------------------------

def flats_menu() -> Layout:
    return [
        [_btn("➕ Add Flat", actions.ADD_FLAT), _btn("📝 Update Flat", actions.UPDATE_FLAT_MENU)],
        [_btn("👥 View All Flats", actions.VIEW_FLATS), _btn("🔍 Search Flat", actions.SEARCH_FLAT)],
        [_btn("🔙 Back to Main Menu", actions.MAIN_MENU)],
    ]


def flat_picker(flats: Iterable[FlatInfo], action_name: str) -> Layout:
    """One button per flat, three per row, plus a back button."""
    buttons = [Button(f"Flat {f.flat_number}", action(action_name, flat=f.flat_number)) for f in flats]
    rows = [buttons[i:i + 3] for i in range(0, len(buttons), 3)]
    rows.append([_btn("🔙 Back to Flat Management", actions.MANAGE_FLATS)])
    return rows


def back_to_flats() -> Layout:
    return [[_btn("🔙 Back to Flat Management", actions.MANAGE_FLATS)]]


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

def collections_menu() -> Layout:
    return [
        [_btn("💧 Water Bill", actions.CREATE_WATER_COLLECTION),
         _btn("🔧 Maintenance", actions.CREATE_MAINTENANCE_COLLECTION)],
        [_btn("📝 Other Collection", actions.CREATE_OTHER_COLLECTION)],
        [_btn("📊 View Existing Collections", actions.VIEW_COLLECTIONS)],
        [_btn("🔙 Back to Main Menu", actions.MAIN_MENU)],
    ]


def collection_list(periods: Iterable[CollectionPeriod]) -> Layout:
    rows = [
        [Button(f"{p.display_name} - {p.month} {p.year}", period_action(actions.VIEW_COLLECTION, p))]
        for p in periods
    ]
    rows.append([_btn("🔙 Back", actions.CREATE_COLLECTION)])
    return rows


def collection_view(period: CollectionPeriod) -> Layout:
    return [
        [Button("📝 Update Payment Status", period_action(actions.UPDATE_COLLECTION, period))],
        [_btn("🔙 Back to Collections", actions.VIEW_COLLECTIONS)],
    ]


def payment_picker(period: CollectionPeriod, entries: Iterable[CollectionEntry]) -> Layout:
    """One button per flat; pressing it toggles that flat's status."""
    rows = [
        [Button(
            f"Flat {e.flat_number} ({'✅' if e.status is PaymentStatus.PAID else '⏳'})",
            period_action(actions.UPDATE_FLAT, period, flat=e.flat_number),
        )]
        for e in entries
    ]
    rows.append([Button("🔙 Back", period_action(actions.VIEW_COLLECTION, period))])
    return rows


def after_payment_update(period: CollectionPeriod) -> Layout:
    return [
        [Button("🔄 Update Another Flat", period_action(actions.UPDATE_COLLECTION, period))],
        [Button("🔙 Back to Collection", period_action(actions.VIEW_COLLECTION, period))],
    ]


def maintenance_menu(period: CollectionPeriod) -> Layout:
    return [
        [Button("📝 Update Payment Status", period_action(actions.UPDATE_COLLECTION, period)),
         Button("📊 Collection Report", period_action(actions.VIEW_COLLECTION, period))],
        [_btn("🔙 Back to Main Menu", actions.MAIN_MENU)],
    ]
