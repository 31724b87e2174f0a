"""
Google Sheets service using gspread.

Two spreadsheets:
- SPREADSHEET_ID: the ledger (one "<Month> <Year>" tab per month) and the
  "Flat Information" tab.
- COLLECTION_SPREADSHEET_ID: one tab per collection period
  ("Maintenance - October 2026", "Other: Lift repair - October 2026").

All calls are synchronous (gspread limitation) — handlers must wrap
in asyncio.to_thread() to avoid blocking the event loop. Every gspread or
auth failure is re-raised as SheetsError.
"""

import base64
import dataclasses
import json
import logging
import re
from typing import Optional

import gspread
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials

from flatbot.models import (
    CollectionEntry,
    CollectionPeriod,
    FlatInfo,
    PaymentStatus,
    Transaction,
)
from flatbot.utils.formatters import format_money, format_number
from flatbot.utils.parsers import parse_ledger_amount

logger = logging.getLogger(__name__)

# Characters that trigger formula interpretation in Google Sheets
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r", "\n")

_ERRORS = (gspread.exceptions.GSpreadException, GoogleAuthError, OSError, ValueError)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

LEDGER_HEADER = ["Date", "Type", "Category", "Description", "Amount", "Receipt", "Added By", "Timestamp"]
LEDGER_DATA_START = 2  # rows 0-1 are header and totals

FLAT_SHEET = "Flat Information"
FLAT_HEADER = [
    "Flat Number", "Floor Number", "Owner Name", "Tenant Name", "Maintenance Amount",
    "Phone Number", "Email", "Is Occupied", "Last Updated",
]

COLLECTION_HEADER = ["Flat Number", "Owner Name", "Amount", "Status", "Payment Date", "Marked By"]
# Collection description lives beside the header row, outside the A:F table
COLLECTION_DESCRIPTION_CELL = "H1"

_HEADER_FORMAT = {
    "backgroundColor": {"red": 0.8, "green": 0.8, "blue": 0.8},
    "textFormat": {"bold": True},
}

_COLLECTION_TITLE = re.compile(r"^(Maintenance|Water) - ([A-Za-z]+) (\d{4})$")
_OTHER_COLLECTION_TITLE = re.compile(r"^Other: (.+) - ([A-Za-z]+) (\d{4})$")


class SheetsError(Exception):
    """A spreadsheet read or write failed."""


def _sanitize_cell(value):
    """Prevent Google Sheets formula injection.

    If a string value starts with =, +, -, @, or control characters,
    prefix with a single quote so Sheets treats it as plain text.
    Numeric values are passed through unchanged.
    """
    if isinstance(value, (int, float)):
        return value
    s = str(value)
    if s and s[0] in _FORMULA_PREFIXES:
        return f"'{s}"
    return s


def _sanitize_row(row: list) -> list:
    """Sanitize all cells in a row to prevent formula injection."""
    return [_sanitize_cell(cell) for cell in row]


def _pad(row: list, width: int) -> list:
    return (list(row) + [""] * width)[:width]


def parse_collection_title(title: str) -> Optional[CollectionPeriod]:
    """Worksheet title → CollectionPeriod, or None for unrelated tabs."""
    match = _COLLECTION_TITLE.match(title)
    if match:
        kind, month, year = match.groups()
        return CollectionPeriod(kind=kind.lower(), month=month, year=int(year))
    match = _OTHER_COLLECTION_TITLE.match(title)
    if match:
        label, month, year = match.groups()
        return CollectionPeriod(kind="other", month=month, year=int(year), label=label)
    return None


class SheetsLedger:
    def __init__(
        self,
        spreadsheet_id: str,
        collection_spreadsheet_id: str,
        creds_json_b64: str = "",
        client: Optional[gspread.Client] = None,
    ):
        self._spreadsheet_id = spreadsheet_id
        self._collection_spreadsheet_id = collection_spreadsheet_id
        self._creds_json_b64 = creds_json_b64
        self._client = client

    # -----------------------------------------------------------------------
    # Client
    # -----------------------------------------------------------------------

    def _get_client(self) -> gspread.Client:
        """Initialize or return cached gspread client.

        Credentials decoded from base64-encoded service account JSON.
        """
        if self._client is None:
            creds_json = json.loads(base64.b64decode(self._creds_json_b64))
            credentials = Credentials.from_service_account_info(creds_json, scopes=SCOPES)
            self._client = gspread.authorize(credentials)
            logger.info("gspread client initialized")
        return self._client

    def _ledger(self) -> gspread.Spreadsheet:
        return self._get_client().open_by_key(self._spreadsheet_id)

    def _collections(self) -> gspread.Spreadsheet:
        return self._get_client().open_by_key(self._collection_spreadsheet_id)

    # -----------------------------------------------------------------------
    # Monthly ledger
    # -----------------------------------------------------------------------

    def _monthly_worksheet(self, title: str) -> gspread.Worksheet:
        """Get the month's tab, creating it with header and totals rows."""
        spreadsheet = self._ledger()
        try:
            return spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            pass

        worksheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=len(LEDGER_HEADER))
        worksheet.update(
            range_name="A1:H2",
            values=[LEDGER_HEADER, ["Totals", "", "", "", "", "", "", ""]],
            value_input_option="USER_ENTERED",
        )
        worksheet.format("A1:H2", _HEADER_FORMAT)
        logger.info("Created ledger sheet %r", title)
        return worksheet

    def append_transaction(self, tx: Transaction, sheet_title: str) -> None:
        """Append one ledger row to the given month tab and refresh its totals row.

        Column mapping:
            A: Date         — YYYY-MM-DD
            B: Type         — expense / income
            C: Category
            D: Description
            E: Amount       — formatted with currency symbol
            F: Receipt      — Drive link or empty
            G: Added By
            H: Timestamp    — ISO 8601

        Raises:
            SheetsError: any Sheets failure.
        """
        try:
            worksheet = self._monthly_worksheet(sheet_title)
            row = _sanitize_row([
                tx.date,                        # A: Date
                tx.type,                        # B: Type
                tx.category,                    # C: Category
                tx.description,                 # D: Description
                format_money(tx.amount),        # E: Amount
                tx.receipt_url or "",           # F: Receipt
                tx.added_by or "Unknown",       # G: Added By
                tx.timestamp,                   # H: Timestamp
            ])
            worksheet.append_row(row, value_input_option="USER_ENTERED")
            self._update_totals(worksheet)
        except _ERRORS as e:
            logger.error("Failed to write %s to Sheets: %s", tx.type, e)
            raise SheetsError("Failed to add entry to Google Sheets") from e

        logger.info("Ledger row appended to %r: %s %s %s", sheet_title, tx.date, tx.type, tx.amount)

    def _update_totals(self, worksheet: gspread.Worksheet) -> None:
        """Rewrite row 2 with net balance and income/expense totals."""
        rows = worksheet.get_all_values()[LEDGER_DATA_START:]
        income, expenses = ledger_totals(rows)
        net = income - expenses
        worksheet.update(
            range_name="A2:H2",
            values=[[
                "Totals",
                "",
                "",
                f"Net Balance: {'+' if net >= 0 else ''}{format_money(net)}",
                f"Income: {format_money(income)}\nExpenses: {format_money(expenses)}",
                "",
                "",
                "",
            ]],
            value_input_option="USER_ENTERED",
        )

    def read_records(self, sheet_title: str) -> list[list[str]]:
        """Data rows (below header and totals) of a month tab; [] if the tab does not exist.

        Raises:
            SheetsError: any Sheets failure other than a missing tab.
        """
        try:
            worksheet = self._ledger().worksheet(sheet_title)
            rows = worksheet.get_all_values()
        except gspread.exceptions.WorksheetNotFound:
            return []
        except _ERRORS as e:
            logger.error("Failed to read ledger sheet %r: %s", sheet_title, e)
            raise SheetsError("Failed to get sheet data") from e
        return [row for row in rows[LEDGER_DATA_START:] if any(cell.strip() for cell in row)]

    # -----------------------------------------------------------------------
    # Flat Information
    # -----------------------------------------------------------------------

    def _flat_worksheet(self) -> gspread.Worksheet:
        spreadsheet = self._ledger()
        try:
            return spreadsheet.worksheet(FLAT_SHEET)
        except gspread.exceptions.WorksheetNotFound:
            pass
        worksheet = spreadsheet.add_worksheet(title=FLAT_SHEET, rows=1000, cols=len(FLAT_HEADER))
        worksheet.update(range_name="A1:I1", values=[FLAT_HEADER], value_input_option="RAW")
        worksheet.format("A1:I1", _HEADER_FORMAT)
        logger.info("Created %r sheet", FLAT_SHEET)
        return worksheet

    def upsert_flat(self, flat: FlatInfo) -> None:
        """Update the flat's row in place, or append it if the flat is new.

        Raises:
            SheetsError: any Sheets failure.
        """
        row = [
            flat.flat_number,
            flat.floor_number,
            flat.owner_name,
            flat.tenant_name or "",
            format_number(flat.maintenance_amount),
            flat.phone_number,
            flat.email or "",
            "Yes" if flat.is_occupied else "No",
            flat.last_updated,
        ]
        try:
            worksheet = self._flat_worksheet()
            existing = [r[0] if r else "" for r in worksheet.get_all_values()[1:]]
            if flat.flat_number in existing:
                n = existing.index(flat.flat_number) + 2  # header row + 1-based
                worksheet.update(range_name=f"A{n}:I{n}", values=[row], value_input_option="RAW")
                logger.info("Flat %s updated (row %d)", flat.flat_number, n)
            else:
                worksheet.append_row(row, value_input_option="RAW")
                logger.info("Flat %s added", flat.flat_number)
        except _ERRORS as e:
            logger.error("Failed to save flat %s: %s", flat.flat_number, e)
            raise SheetsError("Failed to update flat information") from e

    def get_all_flats(self) -> list[FlatInfo]:
        """All flats in sheet order; [] if the sheet does not exist yet."""
        try:
            rows = self._ledger().worksheet(FLAT_SHEET).get_all_values()
        except gspread.exceptions.WorksheetNotFound:
            return []
        except _ERRORS as e:
            logger.error("Failed to read flats: %s", e)
            raise SheetsError("Failed to get flat information") from e
        return [_flat_from_row(row) for row in rows[1:] if row and row[0].strip()]

    def get_flat(self, flat_number: str) -> Optional[FlatInfo]:
        for flat in self.get_all_flats():
            if flat.flat_number == flat_number:
                return flat
        return None

    # -----------------------------------------------------------------------
    # Collections
    # -----------------------------------------------------------------------

    def _collection_worksheet(self, period: CollectionPeriod) -> gspread.Worksheet:
        """Get or create the period's tab, with header and description."""
        spreadsheet = self._collections()
        title = period.sheet_title
        try:
            return spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            pass
        worksheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=8)
        worksheet.update(range_name="A1:F1", values=[COLLECTION_HEADER], value_input_option="RAW")
        worksheet.format("A1:F1", _HEADER_FORMAT)
        if period.description:
            worksheet.update(
                range_name=COLLECTION_DESCRIPTION_CELL,
                values=[[period.description]],
                value_input_option="RAW",
            )
        logger.info("Created collection sheet %r", title)
        return worksheet

    def initialize_collection(self, period: CollectionPeriod, amount: Optional[float] = None) -> int:
        """Add one Pending entry per known flat that is not in the period yet.

        Args:
            period: Collection to populate (tab created if missing).
            amount: Amount per flat. None means each flat's own maintenance amount.

        Returns:
            Number of entries added (0 when every flat is already present).

        Raises:
            SheetsError: any Sheets failure.
        """
        try:
            flats = self.get_all_flats()
            worksheet = self._collection_worksheet(period)
            present = {r[0] for r in worksheet.get_all_values()[1:] if r}
            new_rows = [
                [
                    flat.flat_number,
                    flat.owner_name,
                    format_number(flat.maintenance_amount if amount is None else amount),
                    PaymentStatus.PENDING.value,
                    "",
                    "",
                ]
                for flat in flats
                if flat.flat_number not in present
            ]
            if new_rows:
                worksheet.append_rows(new_rows, value_input_option="RAW", table_range="A1:F1")
        except _ERRORS as e:
            logger.error("Failed to initialize collection %r: %s", period.sheet_title, e)
            raise SheetsError("Failed to initialize collection") from e

        logger.info("Collection %r: %d new entries", period.sheet_title, len(new_rows))
        return len(new_rows)

    def get_collection(self, period: CollectionPeriod) -> tuple[CollectionPeriod, list[CollectionEntry]]:
        """Entries of a collection, plus the period with its stored description.

        A missing tab yields no entries.
        """
        try:
            rows = self._collections().worksheet(period.sheet_title).get_all_values()
        except gspread.exceptions.WorksheetNotFound:
            return period, []
        except _ERRORS as e:
            logger.error("Failed to read collection %r: %s", period.sheet_title, e)
            raise SheetsError("Failed to get collection data") from e

        description = _pad(rows[0], 8)[7] if rows else ""
        if description:
            period = dataclasses.replace(period, description=description)
        entries = [_entry_from_row(r) for r in rows[1:] if r and r[0].strip()]
        return period, entries

    def list_collections(self) -> list[CollectionPeriod]:
        """Every collection tab in the collection spreadsheet, in tab order."""
        try:
            worksheets = self._collections().worksheets()
        except _ERRORS as e:
            logger.error("Failed to list collections: %s", e)
            raise SheetsError("Failed to list collections") from e
        periods = (parse_collection_title(ws.title) for ws in worksheets)
        return [p for p in periods if p is not None]

    def toggle_payment(
        self,
        period: CollectionPeriod,
        flat_number: str,
        marked_by: str,
        today: str,
    ) -> Optional[CollectionEntry]:
        """Flip one flat between Pending and Paid.

        Paid stamps today's date; reverting to Pending clears it. The acting
        user is recorded either way.

        Returns:
            The updated entry, or None if the flat is not in the collection.

        Raises:
            SheetsError: any Sheets failure.
        """
        try:
            worksheet = self._collections().worksheet(period.sheet_title)
            rows = worksheet.get_all_values()
            for index, row in enumerate(rows[1:], start=2):
                if row and row[0] == flat_number:
                    break
            else:
                return None

            entry = _entry_from_row(row)
            if entry.status is PaymentStatus.PAID:
                entry.status = PaymentStatus.PENDING
                entry.payment_date = None
            else:
                entry.status = PaymentStatus.PAID
                entry.payment_date = today
            entry.marked_by = marked_by

            worksheet.update(
                range_name=f"D{index}:F{index}",
                values=[[entry.status.value, entry.payment_date or "", marked_by]],
                value_input_option="RAW",
            )
        except gspread.exceptions.WorksheetNotFound:
            return None
        except _ERRORS as e:
            logger.error("Failed to update payment for flat %s in %r: %s", flat_number, period.sheet_title, e)
            raise SheetsError("Failed to update payment status") from e

        logger.info("Flat %s in %r → %s by %s", flat_number, period.sheet_title, entry.status.value, marked_by)
        return entry


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def ledger_totals(rows: list[list[str]]) -> tuple[float, float]:
    """(income, expenses) summed over ledger data rows."""
    income = expenses = 0.0
    for row in rows:
        cells = _pad(row, 5)
        amount = parse_ledger_amount(cells[4])
        kind = cells[1].strip().lower()
        if kind == "income":
            income += amount
        elif kind == "expense":
            expenses += amount
    return income, expenses


def _flat_from_row(row: list[str]) -> FlatInfo:
    cells = _pad(row, len(FLAT_HEADER))
    return FlatInfo(
        flat_number=cells[0],
        floor_number=cells[1],
        owner_name=cells[2],
        tenant_name=cells[3] or None,
        maintenance_amount=parse_ledger_amount(cells[4]),
        phone_number=cells[5],
        email=cells[6] or None,
        is_occupied=cells[7] == "Yes",
        last_updated=cells[8],
    )


def _entry_from_row(row: list[str]) -> CollectionEntry:
    cells = _pad(row, len(COLLECTION_HEADER))
    status = PaymentStatus.PAID if cells[3] == PaymentStatus.PAID.value else PaymentStatus.PENDING
    return CollectionEntry(
        flat_number=cells[0],
        owner_name=cells[1],
        amount=parse_ledger_amount(cells[2]),
        status=status,
        payment_date=cells[4] or None,
        marked_by=cells[5] or None,
    )
