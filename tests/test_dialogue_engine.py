from __future__ import annotations

import unittest
from datetime import date, datetime

from fakes import FakeExtractor, FakeLedger, FakeStorage, make_flat

from flatbot.handlers.dialogue import DialogueEngine
from flatbot.models import ExtractedFields, Field, Mode, PaymentStatus
from flatbot.utils import formatters
from flatbot.utils.state import SessionStore

CHAT = 42
USER = "Asha Rao"
TODAY = date(2026, 10, 16)
NOW = datetime(2026, 10, 16, 12, 30, 0)
RECEIPT = b"\xff\xd8receipt"


def _texts(replies) -> str:
    return "\n".join(r.text for r in replies)


class DialogueEngineTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = SessionStore()
        self.ledger = FakeLedger(flats=[make_flat("A-101", "Ravi Kumar"), make_flat("A-102", "Meera Iyer", 3000.0)])
        self.storage = FakeStorage()
        self.extractor = FakeExtractor()
        self.engine = self._engine()

    def _engine(self) -> DialogueEngine:
        return DialogueEngine(
            self.store,
            self.ledger,
            self.storage,
            self.extractor,
            today=lambda: TODAY,
            now=lambda: NOW,
        )

    def session(self):
        return self.store.get(CHAT)


class QuickEntryTest(DialogueEngineTestCase):
    async def test_quick_entry_confirm_and_commit(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_text(CHAT, "500, Maintenance, Lobby cleaning")

        text = _texts(replies)
        self.assertIn("Amount: 500", text)
        self.assertIn("Category: Maintenance", text)
        self.assertIn("Description: Lobby cleaning", text)
        self.assertIn("Type: expense", text)
        self.assertIn("Added By: Asha Rao", text)
        self.assertEqual(self.session().pending, [])
        self.assertTrue(self.session().awaiting_confirmation)
        self.assertEqual(self.session().draft.confidence, 1.0)

        replies = await self.engine.handle_text(CHAT, "yes")

        self.assertEqual(len(self.ledger.transactions), 1)
        tx, sheet_title = self.ledger.transactions[0]
        self.assertEqual(tx.type, "expense")
        self.assertEqual(tx.amount, 500.0)
        self.assertEqual(tx.category, "Maintenance")
        self.assertEqual(tx.description, "Lobby cleaning")
        self.assertEqual(tx.date, "2026-10-16")
        self.assertEqual(tx.added_by, USER)
        self.assertEqual(sheet_title, "October 2026")
        self.assertIsNone(self.session())
        self.assertEqual(replies[0].text, formatters.format_entry_saved())

    async def test_income_mode_commits_income(self) -> None:
        self.engine.start_entry(CHAT, Mode.INCOME, USER)
        await self.engine.handle_text(CHAT, "5000, Dues, Monthly maintenance")
        await self.engine.handle_text(CHAT, "YES")

        self.assertEqual(len(self.ledger.transactions), 1)
        self.assertEqual(self.ledger.transactions[0][0].type, "income")
        self.assertIsNone(self.session())

    async def test_quick_entry_with_two_fields_is_rejected(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_text(CHAT, "500, Maintenance")

        self.assertEqual(replies[0].text, formatters.format_invalid_entry_format())
        self.assertIs(self.session().mode, Mode.EXPENSE)
        self.assertFalse(self.session().awaiting_confirmation)

    async def test_unparseable_amount_keeps_session(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_text(CHAT, "five hundred, Maintenance, Lobby")

        self.assertEqual(replies[0].text, formatters.format_invalid_amount())
        self.assertIs(self.session().mode, Mode.EXPENSE)
        self.assertIsNone(self.session().draft.amount)

    async def test_confirmation_requires_yes_or_no(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_text(CHAT, "500, Maintenance, Lobby cleaning")
        replies = await self.engine.handle_text(CHAT, "maybe")

        self.assertEqual(replies[0].text, formatters.format_answer_yes_no())
        self.assertTrue(self.session().awaiting_confirmation)
        self.assertEqual(self.ledger.transactions, [])

    async def test_no_with_complete_draft_starts_over(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_text(CHAT, "500, Maintenance, Lobby cleaning")
        replies = await self.engine.handle_text(CHAT, "no")

        self.assertEqual(replies[0].text, formatters.format_reenter_details())
        self.assertIs(self.session().mode, Mode.EXPENSE)
        self.assertIsNone(self.session().draft.amount)
        self.assertFalse(self.session().awaiting_confirmation)

    async def test_commit_failure_keeps_session_for_retry(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_text(CHAT, "500, Maintenance, Lobby cleaning")

        self.ledger.fail = True
        replies = await self.engine.handle_text(CHAT, "yes")
        self.assertEqual(replies[0].text, formatters.format_entry_save_failed())
        self.assertIsNotNone(self.session())
        self.assertTrue(self.session().awaiting_confirmation)

        self.ledger.fail = False
        await self.engine.handle_text(CHAT, "yes")
        self.assertEqual(len(self.ledger.transactions), 1)
        self.assertIsNone(self.session())

    async def test_yes_with_missing_category_asks_instead_of_committing(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_text(CHAT, "500, , Lobby cleaning")
        replies = await self.engine.handle_text(CHAT, "yes")

        self.assertEqual(self.ledger.transactions, [])
        self.assertEqual(replies[0].text, formatters.format_details_missing())
        self.assertEqual([q.field for q in self.session().pending], [Field.CATEGORY])

    async def test_idle_text_shows_main_menu(self) -> None:
        replies = await self.engine.handle_text(CHAT, "500, Maintenance, Lobby")

        self.assertEqual(replies[0].text, formatters.format_welcome())
        self.assertEqual(self.ledger.transactions, [])


class ReceiptTest(DialogueEngineTestCase):
    async def test_low_confidence_asks_missing_fields_in_order(self) -> None:
        self.extractor.fields = ExtractedFields(confidence=0.4, amount=1000.0)
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)

        replies = await self.engine.handle_photo(CHAT, RECEIPT)
        self.assertTrue(replies[-1].text.startswith("What is the category?"))
        self.assertEqual(
            [q.field for q in self.session().pending],
            [Field.CATEGORY, Field.DESCRIPTION, Field.DATE],
        )

        replies = await self.engine.handle_text(CHAT, "Utilities")
        self.assertEqual(replies[-1].text, "What is this expense/income for?")
        replies = await self.engine.handle_text(CHAT, "Water pump repair")
        self.assertEqual(replies[-1].text, "What is the date? (YYYY-MM-DD)")
        replies = await self.engine.handle_text(CHAT, "2026-10-01")

        text = _texts(replies)
        self.assertIn("Amount: 1000", text)
        self.assertIn("Category: Utilities", text)
        self.assertIn("Date: 2026-10-01", text)
        self.assertIn(f"Receipt: {self.storage.url}", text)

        await self.engine.handle_text(CHAT, "yes")
        tx = self.ledger.transactions[0][0]
        self.assertEqual(tx.receipt_url, self.storage.url)
        self.assertEqual(tx.description, "Water pump repair")

    async def test_question_count_matches_empty_fields(self) -> None:
        self.extractor.fields = ExtractedFields(confidence=0.7, category="Utilities", date="2026-10-02")
        self.engine.start_entry(CHAT, Mode.INCOME, USER)
        await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertEqual([q.field for q in self.session().pending], [Field.AMOUNT, Field.DESCRIPTION])

    async def test_follow_up_amount_must_be_numeric(self) -> None:
        self.extractor.fields = ExtractedFields(confidence=0.1)
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_photo(CHAT, RECEIPT)

        replies = await self.engine.handle_text(CHAT, "lots")
        self.assertIn(formatters.format_invalid_amount(), replies[0].text)
        self.assertEqual(len(self.session().pending), 4)

        await self.engine.handle_text(CHAT, "1,250.50")
        self.assertEqual(self.session().draft.amount, 1250.5)
        self.assertEqual(len(self.session().pending), 3)

    async def test_high_confidence_goes_straight_to_confirmation(self) -> None:
        self.extractor.fields = ExtractedFields(
            confidence=0.9, amount=750.0, category="Utilities", description="Electricity", type="income",
        )
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertTrue(self.session().awaiting_confirmation)
        self.assertIn("Type: expense", replies[-1].text)
        self.assertIn("Date: 2026-10-16", replies[-1].text)

    async def test_progress_messages_are_sent_in_order(self) -> None:
        sent = []

        async def notify(text: str) -> None:
            sent.append(text)

        self.extractor.fields = ExtractedFields(confidence=0.9, amount=1.0, category="c", description="d")
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_photo(CHAT, RECEIPT, notify=notify)

        self.assertEqual(sent, [
            formatters.format_uploading_receipt(),
            formatters.format_running_ocr(),
            formatters.format_analyzing_text(),
        ])

    async def test_upload_failure_clears_session(self) -> None:
        self.storage.fail = True
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertEqual(replies[0].text, formatters.format_upload_failed())
        self.assertIsNone(self.session())
        self.assertEqual(self.extractor.ocr_calls, 0)

    async def test_ocr_failure_clears_session(self) -> None:
        self.extractor.ocr_fails = True
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertEqual(replies[0].text, formatters.format_ocr_failed())
        self.assertIsNone(self.session())
        self.assertEqual(self.extractor.extract_calls, 0)

    async def test_extraction_failure_allows_manual_entry_with_receipt(self) -> None:
        self.extractor.extraction_fails = True
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertEqual(replies[0].text, formatters.format_extraction_failed())
        self.assertIs(self.session().mode, Mode.EXPENSE)
        self.assertEqual(self.session().receipt_url, self.storage.url)

        replies = await self.engine.handle_text(CHAT, "900, Repairs, Gate hinge")
        self.assertIn(f"Receipt: {self.storage.url}", replies[0].text)

    async def test_blank_ocr_text_keeps_session(self) -> None:
        self.extractor.text = "  \n"
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertEqual(replies[0].text, formatters.format_no_text_found())
        self.assertIs(self.session().mode, Mode.EXPENSE)
        self.assertEqual(self.extractor.extract_calls, 0)

    async def test_photo_without_entry_asks_for_type(self) -> None:
        replies = await self.engine.handle_photo(CHAT, RECEIPT)

        self.assertEqual(replies[0].text, formatters.format_select_entry_type())
        self.assertEqual(self.storage.uploads, [])


class FlowSwitchTest(DialogueEngineTestCase):
    async def test_new_flow_discards_draft_but_keeps_name_and_receipt(self) -> None:
        self.extractor.extraction_fails = True
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        await self.engine.handle_photo(CHAT, RECEIPT)
        await self.engine.handle_text(CHAT, "500, Maintenance, Lobby cleaning")

        replies = self.engine.start_collection(CHAT, "water", "Someone Else")

        self.assertEqual(replies[0].text, formatters.format_flow_discarded())
        session = self.session()
        self.assertIs(session.mode, Mode.COLLECTION_INFO)
        self.assertFalse(session.awaiting_confirmation)
        self.assertEqual(session.user_display_name, USER)
        self.assertEqual(session.receipt_url, self.storage.url)

    def test_restarting_untouched_flow_has_no_notice(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = self.engine.start_entry(CHAT, Mode.INCOME, USER)

        self.assertEqual(len(replies), 1)
        self.assertIs(self.session().mode, Mode.INCOME)

    def test_cancel_clears_session(self) -> None:
        self.engine.start_entry(CHAT, Mode.EXPENSE, USER)
        replies = self.engine.cancel(CHAT)

        self.assertEqual(replies[0].text, formatters.format_cancel_message())
        self.assertIsNone(self.session())


class FlatScriptTest(DialogueEngineTestCase):
    async def test_required_field_rejects_skip(self) -> None:
        self.engine.start_flat_info(CHAT, USER)
        replies = await self.engine.handle_text(CHAT, "skip")

        self.assertIn(formatters.format_required_field(), replies[0].text)
        self.assertIn("Enter flat number:", replies[0].text)
        self.assertEqual(self.session().pending[0].field, Field.FLAT_NUMBER)
        self.assertIsNone(self.session().draft.flat_number)

    async def test_flat_number_must_fit_in_button_data(self) -> None:
        self.engine.start_flat_info(CHAT, USER)

        for answer in ["Tower B - Flat 1204 East Wing", "A|1"]:
            replies = await self.engine.handle_text(CHAT, answer)
            self.assertIn(formatters.format_invalid_flat_number(), replies[0].text)
            self.assertEqual(self.session().pending[0].field, Field.FLAT_NUMBER)
            self.assertIsNone(self.session().draft.flat_number)

        await self.engine.handle_text(CHAT, "TB-1204E")
        self.assertEqual(self.session().draft.flat_number, "TB-1204E")
        self.assertEqual(self.session().pending[0].field, Field.FLOOR_NUMBER)

    async def test_full_script_upserts_normalized_flat(self) -> None:
        self.engine.start_flat_info(CHAT, USER)
        answers = ["B-201", "2", "sunil  MEHTA", "2,750", "9988776655", "maybe", "Yes", "priya sharma", "skip"]
        for answer in answers:
            replies = await self.engine.handle_text(CHAT, answer)

        flat = self.ledger.flats["B-201"]
        self.assertEqual(flat.floor_number, "2")
        self.assertEqual(flat.owner_name, "Sunil Mehta")
        self.assertEqual(flat.tenant_name, "Priya Sharma")
        self.assertEqual(flat.maintenance_amount, 2750.0)
        self.assertTrue(flat.is_occupied)
        self.assertIsNone(flat.email)
        self.assertEqual(flat.last_updated, "2026-10-16T12:30:00")
        self.assertIsNone(self.session())
        self.assertIn(formatters.format_flat_saved(), replies[0].text)

    async def test_occupied_answer_must_be_yes_or_no(self) -> None:
        self.engine.start_flat_info(CHAT, USER)
        for answer in ["B-201", "2", "Sunil", "2000", "99"]:
            await self.engine.handle_text(CHAT, answer)

        replies = await self.engine.handle_text(CHAT, "maybe")

        self.assertIn(formatters.format_invalid_yes_no(), replies[0].text)
        self.assertEqual(self.session().pending[0].field, Field.IS_OCCUPIED)

    async def test_update_starts_after_flat_number(self) -> None:
        replies = self.engine.start_flat_info(CHAT, USER, flat_number="A-101")

        self.assertIn("Enter floor number:", replies[-1].text)
        self.assertEqual(self.session().draft.flat_number, "A-101")
        for answer in ["3", "ravi kumar", "2600", "9000000000", "no", "skip", "ravi@example.com"]:
            await self.engine.handle_text(CHAT, answer)

        flat = self.ledger.flats["A-101"]
        self.assertEqual(flat.floor_number, "3")
        self.assertFalse(flat.is_occupied)
        self.assertEqual(flat.email, "ravi@example.com")
        self.assertEqual(len(self.ledger.flats), 2)

    async def test_save_failure_clears_session(self) -> None:
        self.ledger.fail = True
        self.engine.start_flat_info(CHAT, USER, flat_number="A-101")
        for answer in ["3", "Ravi", "2600", "9000000000", "no", "skip", "skip"]:
            replies = await self.engine.handle_text(CHAT, answer)

        self.assertEqual(replies[0].text, formatters.format_flat_save_failed())
        self.assertIsNone(self.session())


class CollectionScriptTest(DialogueEngineTestCase):
    async def test_water_collection_creates_pending_entry_per_flat(self) -> None:
        replies = self.engine.start_collection(CHAT, "water", USER)
        self.assertIn("Enter any additional description", replies[-1].text)
        self.assertEqual(self.session().collection_context.sheet_title, "Water - October 2026")

        await self.engine.handle_text(CHAT, "skip")
        replies = await self.engine.handle_text(CHAT, "0")
        self.assertIn(formatters.format_invalid_collection_amount(), replies[0].text)
        self.assertEqual(self.session().pending[0].field, Field.COLLECTION_AMOUNT)

        replies = await self.engine.handle_text(CHAT, "300")

        period, amount = self.ledger.initialize_calls[0]
        self.assertEqual(period.kind, "water")
        self.assertIsNone(period.description)
        self.assertEqual(amount, 300.0)
        entries = self.ledger.collections["Water - October 2026"]
        self.assertEqual([e.flat_number for e in entries], ["A-101", "A-102"])
        self.assertTrue(all(e.status is PaymentStatus.PENDING for e in entries))
        self.assertEqual(replies[0].text, formatters.format_collection_created(2))
        self.assertIsNone(self.session())

    async def test_other_collection_label_and_description(self) -> None:
        self.engine.start_collection(CHAT, "other", USER)

        replies = await self.engine.handle_text(CHAT, "An exceptionally long label")
        self.assertIn(formatters.format_invalid_collection_label(), replies[0].text)
        replies = await self.engine.handle_text(CHAT, "Lift | repair")
        self.assertIn(formatters.format_invalid_collection_label(), replies[0].text)

        await self.engine.handle_text(CHAT, "Lift repair")
        await self.engine.handle_text(CHAT, "Annual servicing")
        await self.engine.handle_text(CHAT, "1,000")

        period, amount = self.ledger.initialize_calls[0]
        self.assertEqual(period.label, "Lift repair")
        self.assertEqual(period.description, "Annual servicing")
        self.assertEqual(period.sheet_title, "Other: Lift repair - October 2026")
        self.assertEqual(amount, 1000.0)

    async def test_initializing_twice_adds_nothing_new(self) -> None:
        for _ in range(2):
            self.engine.start_collection(CHAT, "water", USER)
            await self.engine.handle_text(CHAT, "skip")
            replies = await self.engine.handle_text(CHAT, "300")

        self.assertEqual(replies[0].text, formatters.format_collection_created(0))
        self.assertEqual(len(self.ledger.collections["Water - October 2026"]), 2)


if __name__ == "__main__":
    unittest.main()
