from __future__ import annotations

import dataclasses
from typing import Optional

import gspread
from gspread.utils import a1_to_rowcol

from flatbot.models import CollectionEntry, CollectionPeriod, ExtractedFields, FlatInfo, PaymentStatus, Transaction
from flatbot.services.drive import StorageError
from flatbot.services.extraction import ExtractionError
from flatbot.services.ocr import OCRError
from flatbot.services.sheets import SheetsError


def make_flat(flat_number: str, owner: str = "Owner", amount: float = 2500.0) -> FlatInfo:
    return FlatInfo(
        flat_number=flat_number,
        floor_number="1",
        owner_name=owner,
        maintenance_amount=amount,
        phone_number="9876543210",
        is_occupied=True,
        last_updated="2026-10-01T10:00:00",
    )


# ---------------------------------------------------------------------------
# Adapter fakes for the dialogue engine and menus
# ---------------------------------------------------------------------------

class FakeLedger:
    def __init__(self, flats: Optional[list[FlatInfo]] = None) -> None:
        self.flats: dict[str, FlatInfo] = {f.flat_number: f for f in flats or []}
        self.transactions: list[tuple[Transaction, str]] = []
        self.records: dict[str, list[list[str]]] = {}
        self.collections: dict[str, list[CollectionEntry]] = {}
        self.periods: dict[str, CollectionPeriod] = {}
        self.initialize_calls: list[tuple[CollectionPeriod, Optional[float]]] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise SheetsError("sheets unavailable")

    def append_transaction(self, tx: Transaction, sheet_title: str) -> None:
        self._check()
        self.transactions.append((tx, sheet_title))

    def read_records(self, sheet_title: str) -> list[list[str]]:
        self._check()
        return self.records.get(sheet_title, [])

    def upsert_flat(self, flat: FlatInfo) -> None:
        self._check()
        self.flats[flat.flat_number] = flat

    def get_all_flats(self) -> list[FlatInfo]:
        self._check()
        return list(self.flats.values())

    def get_flat(self, flat_number: str) -> Optional[FlatInfo]:
        self._check()
        return self.flats.get(flat_number)

    def initialize_collection(self, period: CollectionPeriod, amount: Optional[float] = None) -> int:
        self._check()
        self.initialize_calls.append((dataclasses.replace(period), amount))
        entries = self.collections.setdefault(period.sheet_title, [])
        self.periods[period.sheet_title] = dataclasses.replace(period)
        present = {e.flat_number for e in entries}
        added = 0
        for flat in self.flats.values():
            if flat.flat_number in present:
                continue
            entries.append(CollectionEntry(
                flat_number=flat.flat_number,
                owner_name=flat.owner_name,
                amount=flat.maintenance_amount if amount is None else amount,
            ))
            added += 1
        return added

    def get_collection(self, period: CollectionPeriod) -> tuple[CollectionPeriod, list[CollectionEntry]]:
        self._check()
        stored = self.periods.get(period.sheet_title, period)
        return stored, list(self.collections.get(period.sheet_title, []))

    def list_collections(self) -> list[CollectionPeriod]:
        self._check()
        return list(self.periods.values())

    def toggle_payment(self, period: CollectionPeriod, flat_number: str, marked_by: str, today: str) -> Optional[CollectionEntry]:
        self._check()
        for entry in self.collections.get(period.sheet_title, []):
            if entry.flat_number == flat_number:
                if entry.status is PaymentStatus.PAID:
                    entry.status, entry.payment_date = PaymentStatus.PENDING, None
                else:
                    entry.status, entry.payment_date = PaymentStatus.PAID, today
                entry.marked_by = marked_by
                return entry
        return None


class FakeStorage:
    def __init__(self, url: str = "https://drive.google.com/file/d/abc/view", fail: bool = False) -> None:
        self.url = url
        self.fail = fail
        self.uploads: list[bytes] = []

    def upload_receipt(self, image_bytes: bytes) -> str:
        if self.fail:
            raise StorageError("drive unavailable")
        self.uploads.append(image_bytes)
        return self.url


class FakeExtractor:
    def __init__(
        self,
        text: str = "TOTAL 1000",
        fields: Optional[ExtractedFields] = None,
        ocr_fails: bool = False,
        extraction_fails: bool = False,
    ) -> None:
        self.text = text
        self.fields = fields or ExtractedFields(confidence=0.0)
        self.ocr_fails = ocr_fails
        self.extraction_fails = extraction_fails
        self.ocr_calls = 0
        self.extract_calls = 0

    async def recognize_text(self, image_bytes: bytes) -> str:
        self.ocr_calls += 1
        if self.ocr_fails:
            raise OCRError("vision unavailable")
        return self.text

    async def extract_fields(self, raw_text: str) -> ExtractedFields:
        self.extract_calls += 1
        if self.extraction_fails:
            raise ExtractionError("malformed reply")
        return self.fields


# ---------------------------------------------------------------------------
# gspread fakes for SheetsLedger
# ---------------------------------------------------------------------------

class FakeWorksheet:
    def __init__(self, title: str) -> None:
        self.title = title
        self.grid: list[list[str]] = []
        self.formats: list[str] = []

    def _last_row(self) -> int:
        for index in range(len(self.grid), 0, -1):
            if any(str(c) for c in self.grid[index - 1]):
                return index
        return 0

    def _write(self, row: int, col: int, values: list[list]) -> None:
        for r_offset, values_row in enumerate(values):
            r = row - 1 + r_offset
            while len(self.grid) <= r:
                self.grid.append([])
            line = self.grid[r]
            for c_offset, value in enumerate(values_row):
                c = col - 1 + c_offset
                while len(line) <= c:
                    line.append("")
                line[c] = str(value)

    def get_all_values(self) -> list[list[str]]:
        rows = self.grid[:self._last_row()]
        width = max((len(r) for r in rows), default=0)
        return [list(r) + [""] * (width - len(r)) for r in rows]

    def update(self, range_name=None, values=None, value_input_option=None) -> None:
        row, col = a1_to_rowcol(range_name.split(":")[0])
        self._write(row, col, values)

    def append_row(self, values, value_input_option=None) -> None:
        self._write(self._last_row() + 1, 1, [values])

    def append_rows(self, values, value_input_option=None, table_range=None) -> None:
        self._write(self._last_row() + 1, 1, values)

    def format(self, ranges, fmt) -> None:
        self.formats.append(ranges)


class FakeSpreadsheet:
    def __init__(self) -> None:
        self.tabs: dict[str, FakeWorksheet] = {}

    def worksheet(self, title: str) -> FakeWorksheet:
        if title not in self.tabs:
            raise gspread.exceptions.WorksheetNotFound(title)
        return self.tabs[title]

    def add_worksheet(self, title: str, rows: int, cols: int) -> FakeWorksheet:
        self.tabs[title] = FakeWorksheet(title)
        return self.tabs[title]

    def worksheets(self) -> list[FakeWorksheet]:
        return list(self.tabs.values())


class FakeClient:
    def __init__(self) -> None:
        self.spreadsheets: dict[str, FakeSpreadsheet] = {}
        self.fail = False

    def open_by_key(self, key: str) -> FakeSpreadsheet:
        if self.fail:
            raise gspread.exceptions.GSpreadException("quota exceeded")
        return self.spreadsheets.setdefault(key, FakeSpreadsheet())
