"""
Menus, reports and one-shot actions.

Nothing here touches a Session: every method reads or writes the sheets in
a single step and returns the Reply objects to send.
"""

import asyncio
import logging
from datetime import date
from typing import Callable

from flatbot.models import CollectionPeriod
from flatbot.services.sheets import SheetsError, ledger_totals
from flatbot.handlers.dialogue import Reply
from flatbot.utils.formatters import (
    format_collection_empty,
    format_collection_failed,
    format_collection_view,
    format_collections_menu,
    format_flat_details,
    format_flat_not_found,
    format_flat_not_in_collection,
    format_flats_list,
    format_flats_menu,
    format_help,
    format_maintenance_summary,
    format_no_collections,
    format_no_entries,
    format_payment_updated,
    format_pick_collection,
    format_pick_flat,
    format_read_failed,
    format_report,
    format_report_entry,
    format_report_failed,
    format_welcome,
)
from flatbot.utils.keyboards import (
    after_payment_update,
    back_to_flats,
    back_to_main,
    collection_list,
    collection_view,
    collections_menu,
    flat_picker,
    flats_menu,
    main_menu,
    maintenance_menu,
    payment_picker,
)
from flatbot.utils.parsers import month_label, quarter_of, quarter_months

logger = logging.getLogger(__name__)

RECENT_ENTRIES = 5


class MenuHandler:
    def __init__(self, ledger, today: Callable[[], date] = date.today):
        self._ledger = ledger
        self._today = today

    # -----------------------------------------------------------------------
    # Static menus
    # -----------------------------------------------------------------------

    def main_menu(self) -> list[Reply]:
        return [Reply(format_welcome(), main_menu())]

    def help(self) -> list[Reply]:
        return [Reply(format_help(), back_to_main())]

    def flats_menu(self) -> list[Reply]:
        return [Reply(format_flats_menu(), flats_menu())]

    def collections_menu(self) -> list[Reply]:
        return [Reply(format_collections_menu(), collections_menu())]

    # -----------------------------------------------------------------------
    # Reports
    # -----------------------------------------------------------------------

    async def monthly_report(self) -> list[Reply]:
        """Totals and recent entries of the current month's ledger sheet."""
        label = month_label(self._today())
        return await self._report(f"Monthly Report - {label}", [label], label)

    async def quarterly_report(self) -> list[Reply]:
        """Totals across the three month sheets of the current quarter."""
        today = self._today()
        quarter = f"Q{quarter_of(today)} {today.year}"
        sheets = [month_label(m) for m in quarter_months(today)]
        return await self._report(f"Quarterly Report - {quarter}", sheets, quarter)

    async def _report(self, title: str, sheet_titles: list[str], period_label: str) -> list[Reply]:
        rows: list[list[str]] = []
        try:
            for sheet_title in sheet_titles:
                rows.extend(await asyncio.to_thread(self._ledger.read_records, sheet_title))
        except SheetsError:
            return [Reply(format_report_failed(), back_to_main())]

        if not rows:
            return [Reply(format_no_entries(period_label), back_to_main())]

        income, expenses = ledger_totals(rows)
        recent = [format_report_entry(row) for row in rows[-RECENT_ENTRIES:]]
        logger.info("%s: %d rows", title, len(rows))
        return [Reply(format_report(title, income, expenses, recent), back_to_main())]

    # -----------------------------------------------------------------------
    # Flats
    # -----------------------------------------------------------------------

    async def view_flats(self) -> list[Reply]:
        try:
            flats = await asyncio.to_thread(self._ledger.get_all_flats)
        except SheetsError:
            return [Reply(format_read_failed(), back_to_flats())]
        return [Reply(format_flats_list(flats), back_to_flats())]

    async def pick_flat(self, action_name: str, purpose: str) -> list[Reply]:
        """Flat buttons leading to action_name (edit or show)."""
        try:
            flats = await asyncio.to_thread(self._ledger.get_all_flats)
        except SheetsError:
            return [Reply(format_read_failed(), back_to_flats())]
        if not flats:
            return [Reply(format_flats_list([]), back_to_flats())]
        return [Reply(format_pick_flat(purpose), flat_picker(flats, action_name))]

    async def show_flat(self, flat_number: str) -> list[Reply]:
        try:
            flat = await asyncio.to_thread(self._ledger.get_flat, flat_number)
        except SheetsError:
            return [Reply(format_read_failed(), back_to_flats())]
        if flat is None:
            return [Reply(format_flat_not_found(flat_number), back_to_flats())]
        return [Reply(format_flat_details(flat), back_to_flats())]

    # -----------------------------------------------------------------------
    # Collections
    # -----------------------------------------------------------------------

    async def collect_maintenance(self) -> list[Reply]:
        """Set up this month's maintenance collection from each flat's own amount."""
        period = CollectionPeriod.current("maintenance", today=self._today())
        try:
            flats = await asyncio.to_thread(self._ledger.get_all_flats)
            if not flats:
                return [Reply(format_flats_list([]), back_to_main())]
            await asyncio.to_thread(self._ledger.initialize_collection, period, None)
        except SheetsError:
            return [Reply(format_collection_failed(), back_to_main())]
        return [Reply(format_maintenance_summary(period, flats), maintenance_menu(period))]

    async def list_collections(self) -> list[Reply]:
        try:
            periods = await asyncio.to_thread(self._ledger.list_collections)
        except SheetsError:
            return [Reply(format_read_failed(), collections_menu())]
        if not periods:
            return [Reply(format_no_collections(), collections_menu())]
        return [Reply(format_pick_collection(), collection_list(periods))]

    async def view_collection(self, period: CollectionPeriod) -> list[Reply]:
        try:
            period, entries = await asyncio.to_thread(self._ledger.get_collection, period)
        except SheetsError:
            return [Reply(format_read_failed(), back_to_main())]
        if not entries:
            return [Reply(format_collection_empty(), collections_menu())]
        return [Reply(format_collection_view(period, entries), collection_view(period))]

    async def payment_picker(self, period: CollectionPeriod) -> list[Reply]:
        try:
            period, entries = await asyncio.to_thread(self._ledger.get_collection, period)
        except SheetsError:
            return [Reply(format_read_failed(), back_to_main())]
        if not entries:
            return [Reply(format_collection_empty(), collections_menu())]
        return [Reply(format_pick_flat("update payment status"), payment_picker(period, entries))]

    async def toggle_payment(self, period: CollectionPeriod, flat_number: str, user_name: str) -> list[Reply]:
        """Flip one flat between Pending and Paid, stamped with user and date."""
        try:
            entry = await asyncio.to_thread(
                self._ledger.toggle_payment,
                period,
                flat_number,
                user_name,
                self._today().isoformat(),
            )
        except SheetsError:
            return [Reply(format_read_failed(), collection_view(period))]
        if entry is None:
            return [Reply(format_flat_not_in_collection(), collection_view(period))]
        return [Reply(format_payment_updated(entry), after_payment_update(period))]
