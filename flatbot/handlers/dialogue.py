"""
Dialogue engine — the multi-turn data-entry state machine.

Turns (command, button, text, photo) for one chat are applied to that chat's
Session and produce Reply objects; the Telegram layer only delivers them.
The caller must hold store.lock(chat_id) for the whole turn.

Flows:
1. Expense / Income:  quick entry "amount, category, description" or receipt
   photo (upload → OCR → AI extraction) → follow-up questions for missing
   fields when confidence is low → yes/no confirmation → ledger row.
2. Flat info:         fixed question script → upsert by flat number.
3. Collection info:   [name] → description → amount per flat → one Pending
   entry per flat.

Adapters are synchronous (gspread / googleapiclient) and are run with
asyncio.to_thread(); OCR and extraction are natively async.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, Optional

from flatbot.config import CONFIDENCE_THRESHOLD, MAX_COLLECTION_LABEL_LENGTH, MAX_FLAT_NUMBER_LENGTH
from flatbot.models import (
    CollectionDraft,
    CollectionPeriod,
    Field,
    FlatDraft,
    FlatInfo,
    Mode,
    Question,
    Session,
    Transaction,
    TransactionDraft,
)
from flatbot.services.drive import StorageError
from flatbot.services.extraction import ExtractionError
from flatbot.services.ocr import OCRError
from flatbot.services.sheets import SheetsError
from flatbot.utils import actions
from flatbot.utils.formatters import (
    COLLECTION_PROMPTS,
    FLAT_PROMPTS,
    TRANSACTION_PROMPTS,
    format_analyzing_text,
    format_answer_yes_no,
    format_cancel_message,
    format_collection_created,
    format_collection_failed,
    format_collection_start,
    format_confirmation,
    format_details_missing,
    format_entry_prompt,
    format_entry_save_failed,
    format_entry_saved,
    format_extraction_failed,
    format_flat_details,
    format_flat_save_failed,
    format_flat_saved,
    format_flow_discarded,
    format_invalid_amount,
    format_invalid_collection_amount,
    format_invalid_collection_label,
    format_invalid_entry_format,
    format_invalid_flat_number,
    format_invalid_yes_no,
    format_new_flat,
    format_no_text_found,
    format_ocr_failed,
    format_reenter_details,
    format_required_field,
    format_running_ocr,
    format_select_entry_type,
    format_updating_flat,
    format_upload_failed,
    format_uploading_receipt,
    format_welcome,
)
from flatbot.utils.keyboards import (
    Layout,
    back_to_flats,
    back_to_main,
    cancel_keyboard,
    collection_view,
    entry_type_menu,
    main_menu,
)
from flatbot.utils.parsers import (
    capitalize_name,
    is_skip,
    month_label,
    parse_amount,
    parse_yes_no,
    split_manual_entry,
)
from flatbot.utils.state import SessionStore

logger = logging.getLogger(__name__)

Notify = Callable[[str], Awaitable[None]]

# Flat script, in the order the questions are asked
FLAT_SCRIPT = (
    Question(Field.FLAT_NUMBER, FLAT_PROMPTS[Field.FLAT_NUMBER]),
    Question(Field.FLOOR_NUMBER, FLAT_PROMPTS[Field.FLOOR_NUMBER]),
    Question(Field.OWNER_NAME, FLAT_PROMPTS[Field.OWNER_NAME]),
    Question(Field.MAINTENANCE_AMOUNT, FLAT_PROMPTS[Field.MAINTENANCE_AMOUNT]),
    Question(Field.PHONE_NUMBER, FLAT_PROMPTS[Field.PHONE_NUMBER]),
    Question(Field.IS_OCCUPIED, FLAT_PROMPTS[Field.IS_OCCUPIED]),
    Question(Field.TENANT_NAME, FLAT_PROMPTS[Field.TENANT_NAME], required=False),
    Question(Field.EMAIL, FLAT_PROMPTS[Field.EMAIL], required=False),
)

TRANSACTION_MODES = (Mode.EXPENSE, Mode.INCOME)


@dataclass
class Reply:
    """One outbound message, optionally with an inline keyboard."""
    text: str
    layout: Optional[Layout] = None


class DialogueEngine:
    def __init__(
        self,
        store: SessionStore,
        ledger,
        storage,
        extractor,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Session store shared with the handlers.
            ledger: SheetsLedger (append_transaction, upsert_flat, initialize_collection).
            storage: DriveStorage (upload_receipt).
            extractor: FieldExtractor (recognize_text, extract_fields).
        """
        self._store = store
        self._ledger = ledger
        self._storage = storage
        self._extractor = extractor
        self._today = today
        self._now = now

    # -----------------------------------------------------------------------
    # Flow entry points
    # -----------------------------------------------------------------------

    def start_entry(self, chat_id: int, mode: Mode, user_name: Optional[str] = None) -> list[Reply]:
        """Begin an expense or income entry."""
        session, notice = self._begin(chat_id, user_name)
        session.start(mode, TransactionDraft(type=mode.value))
        self._store.set(chat_id, session)
        logger.info("chat_id=%d started %s entry", chat_id, mode.value)
        return notice + [Reply(format_entry_prompt(mode), cancel_keyboard())]

    def start_flat_info(
        self,
        chat_id: int,
        user_name: Optional[str] = None,
        flat_number: Optional[str] = None,
    ) -> list[Reply]:
        """Begin the flat script; a given flat_number updates that flat."""
        session, notice = self._begin(chat_id, user_name)
        questions = list(FLAT_SCRIPT)
        if flat_number:
            questions = questions[1:]
            header = format_updating_flat(flat_number)
        else:
            header = format_new_flat()
        session.start(Mode.FLAT_INFO, FlatDraft(flat_number=flat_number), questions)
        self._store.set(chat_id, session)
        return notice + [Reply(f"{header}\n\n{questions[0].prompt}", cancel_keyboard())]

    def start_collection(self, chat_id: int, kind: str, user_name: Optional[str] = None) -> list[Reply]:
        """Begin a water or other collection for the current month."""
        session, notice = self._begin(chat_id, user_name)
        period = CollectionPeriod.current(kind, today=self._today())
        questions = [
            Question(Field.COLLECTION_DESCRIPTION, COLLECTION_PROMPTS[Field.COLLECTION_DESCRIPTION], required=False),
            Question(Field.COLLECTION_AMOUNT, COLLECTION_PROMPTS[Field.COLLECTION_AMOUNT]),
        ]
        if kind == "other":
            questions.insert(0, Question(Field.COLLECTION_LABEL, COLLECTION_PROMPTS[Field.COLLECTION_LABEL]))
        session.start(Mode.COLLECTION_INFO, CollectionDraft(period=period), questions)
        self._store.set(chat_id, session)
        text = f"{format_collection_start(period)}\n\n{questions[0].prompt}"
        return notice + [Reply(text, cancel_keyboard())]

    def cancel(self, chat_id: int) -> list[Reply]:
        self._store.delete(chat_id)
        return [Reply(format_cancel_message(), back_to_main())]

    def _begin(self, chat_id: int, user_name: Optional[str]) -> tuple[Session, list[Reply]]:
        """Session for a new flow, plus a notice if unsaved input is being dropped."""
        session = self._store.get_or_create(chat_id, user_name)
        if session.has_unsaved_input:
            logger.info("chat_id=%d discarded unsaved %s draft", chat_id, session.mode.value)
            return session, [Reply(format_flow_discarded())]
        return session, []

    # -----------------------------------------------------------------------
    # Text
    # -----------------------------------------------------------------------

    async def handle_text(self, chat_id: int, text: str, user_name: Optional[str] = None) -> list[Reply]:
        session = self._store.get(chat_id)
        if session is None or session.mode is Mode.IDLE:
            return [Reply(format_welcome(), main_menu())]
        if user_name and not session.user_display_name:
            session.user_display_name = user_name

        if session.mode in TRANSACTION_MODES:
            return await self._transaction_text(session, text)
        if not session.pending:
            # Script exhausted without completing; nothing sensible to resume
            self._store.delete(chat_id)
            return [Reply(format_welcome(), main_menu())]
        if session.mode is Mode.FLAT_INFO:
            return await self._flat_text(session, text)
        return await self._collection_text(session, text)

    async def _transaction_text(self, session: Session, text: str) -> list[Reply]:
        if session.pending:
            return self._answer_question(session, text)

        if session.awaiting_confirmation:
            answer = parse_yes_no(text)
            if answer is True:
                return await self._commit(session)
            if answer is False:
                return self._reject(session)
            if "," not in text:
                return [Reply(format_answer_yes_no())]

        if "," in text:
            return self._manual_entry(session, text)
        return [Reply(format_invalid_entry_format(), cancel_keyboard())]

    def _manual_entry(self, session: Session, text: str) -> list[Reply]:
        """Quick entry: "amount, category, description" — trusted as-is."""
        parts = split_manual_entry(text)
        if parts is None:
            return [Reply(format_invalid_entry_format(), cancel_keyboard())]
        raw_amount, category, description = parts
        amount = parse_amount(raw_amount)
        if amount is None:
            return [Reply(format_invalid_amount(), cancel_keyboard())]

        draft = TransactionDraft(
            type=session.mode.value,
            amount=amount,
            category=category,
            description=description,
            date=self._today().isoformat(),
            confidence=1.0,
        )
        session.start(session.mode, draft)
        return self._after_fill(session)

    def _after_fill(self, session: Session) -> list[Reply]:
        """High confidence goes straight to confirmation; otherwise ask what is missing."""
        if session.draft.confidence > CONFIDENCE_THRESHOLD:
            return self._confirm(session)
        return self._ask_missing(session)

    def _ask_missing(self, session: Session) -> list[Reply]:
        missing = session.draft.missing_fields()
        session.pending = [Question(f, TRANSACTION_PROMPTS[f]) for f in missing]
        session.awaiting_confirmation = False
        if not session.pending:
            return self._confirm(session)
        self._store.set(session.chat_id, session)
        return [Reply(session.pending[0].prompt, cancel_keyboard())]

    def _answer_question(self, session: Session, text: str) -> list[Reply]:
        question = session.pending[0]
        draft = session.draft
        value = text.strip()
        if not value:
            return [Reply(question.prompt)]

        if question.field is Field.AMOUNT:
            amount = parse_amount(value)
            if amount is None:
                return [Reply(f"{format_invalid_amount()}\n\n{question.prompt}")]
            draft.amount = amount
        else:
            setattr(draft, question.field.value, value)

        session.pending.pop(0)
        if session.pending:
            self._store.set(session.chat_id, session)
            return [Reply(session.pending[0].prompt, cancel_keyboard())]
        return self._confirm(session)

    def _confirm(self, session: Session) -> list[Reply]:
        draft = session.draft
        if not draft.date:
            draft.date = self._today().isoformat()
        session.pending = []
        session.awaiting_confirmation = True
        self._store.set(session.chat_id, session)
        text = format_confirmation(draft, session.receipt_url, session.user_display_name or "Unknown")
        return [Reply(text, cancel_keyboard())]

    def _reject(self, session: Session) -> list[Reply]:
        """'no': ask for whatever is still empty, or start the entry over."""
        session.awaiting_confirmation = False
        if session.draft.missing_fields():
            return self._ask_missing(session)
        session.start(session.mode, TransactionDraft(type=session.mode.value))
        self._store.set(session.chat_id, session)
        return [Reply(format_reenter_details(), cancel_keyboard())]

    async def _commit(self, session: Session) -> list[Reply]:
        draft = session.draft
        if draft.missing_fields():
            return [Reply(format_details_missing())] + self._ask_missing(session)

        now = self._now()
        tx = Transaction(
            date=draft.date,
            type=draft.type,
            category=draft.category,
            description=draft.description,
            amount=draft.amount,
            added_by=session.user_display_name or "Unknown",
            timestamp=now.isoformat(timespec="seconds"),
            receipt_url=session.receipt_url,
        )
        try:
            await asyncio.to_thread(self._ledger.append_transaction, tx, month_label(now.date()))
        except SheetsError:
            logger.warning("chat_id=%d commit failed; session kept for retry", session.chat_id)
            self._store.set(session.chat_id, session)
            return [Reply(format_entry_save_failed(), cancel_keyboard())]

        self._store.delete(session.chat_id)
        logger.info("chat_id=%d committed %s %s", session.chat_id, tx.type, tx.amount)
        return [Reply(format_entry_saved(), back_to_main())]

    # -----------------------------------------------------------------------
    # Photo
    # -----------------------------------------------------------------------

    def expects_receipt(self, chat_id: int) -> bool:
        """True while an expense or income entry is in progress."""
        session = self._store.get(chat_id)
        return session is not None and session.mode in TRANSACTION_MODES

    async def handle_photo(
        self,
        chat_id: int,
        image_bytes: bytes,
        user_name: Optional[str] = None,
        notify: Optional[Notify] = None,
    ) -> list[Reply]:
        """Receipt photo: upload → OCR → extraction → confirmation or follow-ups.

        Args:
            notify: Optional coroutine for progress messages sent mid-turn.
        """
        session = self._store.get(chat_id)
        if session is None or session.mode not in TRANSACTION_MODES:
            return [Reply(format_select_entry_type(), entry_type_menu())]
        if user_name and not session.user_display_name:
            session.user_display_name = user_name

        async def progress(text: str) -> None:
            if notify is not None:
                await notify(text)

        await progress(format_uploading_receipt())
        try:
            session.receipt_url = await asyncio.to_thread(self._storage.upload_receipt, image_bytes)
        except StorageError:
            self._store.delete(chat_id)
            return [Reply(format_upload_failed(), back_to_main())]

        await progress(format_running_ocr())
        try:
            raw_text = await self._extractor.recognize_text(image_bytes)
        except OCRError:
            self._store.delete(chat_id)
            return [Reply(format_ocr_failed(), back_to_main())]

        session.start(session.mode, TransactionDraft(type=session.mode.value))
        if not raw_text.strip():
            self._store.set(chat_id, session)
            return [Reply(format_no_text_found(), cancel_keyboard())]

        await progress(format_analyzing_text())
        try:
            fields = await self._extractor.extract_fields(raw_text)
        except ExtractionError:
            # Receipt stays attached; the user can still type the details
            self._store.set(chat_id, session)
            return [Reply(format_extraction_failed(), cancel_keyboard())]

        session.draft = TransactionDraft(
            type=session.mode.value,
            amount=fields.amount,
            category=fields.category,
            description=fields.description,
            date=fields.date,
            confidence=fields.confidence,
        )
        logger.info(
            "chat_id=%d receipt extracted (confidence %.2f, missing %s)",
            chat_id, fields.confidence, [f.value for f in session.draft.missing_fields()],
        )
        return self._after_fill(session)

    # -----------------------------------------------------------------------
    # Flat script
    # -----------------------------------------------------------------------

    async def _flat_text(self, session: Session, text: str) -> list[Reply]:
        question = session.pending[0]
        draft: FlatDraft = session.draft
        value = text.strip()

        if question.required:
            if not value or is_skip(value):
                return [Reply(f"{format_required_field()}\n\n{question.prompt}")]
            if question.field is Field.FLAT_NUMBER:
                # Flat numbers travel in button callback data
                if len(value.encode("utf-8")) > MAX_FLAT_NUMBER_LENGTH or actions.SEPARATOR in value:
                    return [Reply(f"{format_invalid_flat_number()}\n\n{question.prompt}")]
                draft.flat_number = value
            elif question.field is Field.MAINTENANCE_AMOUNT:
                amount = parse_amount(value)
                if amount is None or amount < 0:
                    return [Reply(f"{format_invalid_amount()}\n\n{question.prompt}")]
                draft.maintenance_amount = amount
            elif question.field is Field.IS_OCCUPIED:
                occupied = parse_yes_no(value)
                if occupied is None:
                    return [Reply(f"{format_invalid_yes_no()}\n\n{question.prompt}")]
                draft.is_occupied = occupied
            else:
                setattr(draft, question.field.value, value)
        else:
            setattr(draft, question.field.value, None if is_skip(value) or not value else value)

        session.pending.pop(0)
        if session.pending:
            self._store.set(session.chat_id, session)
            return [Reply(session.pending[0].prompt, cancel_keyboard())]
        return await self._save_flat(session)

    async def _save_flat(self, session: Session) -> list[Reply]:
        draft: FlatDraft = session.draft
        flat = FlatInfo(
            flat_number=draft.flat_number,
            floor_number=draft.floor_number,
            owner_name=capitalize_name(draft.owner_name),
            maintenance_amount=draft.maintenance_amount,
            phone_number=draft.phone_number,
            is_occupied=bool(draft.is_occupied),
            last_updated=self._now().isoformat(timespec="seconds"),
            tenant_name=capitalize_name(draft.tenant_name) if draft.tenant_name else None,
            email=draft.email,
        )
        self._store.delete(session.chat_id)
        try:
            await asyncio.to_thread(self._ledger.upsert_flat, flat)
        except SheetsError:
            return [Reply(format_flat_save_failed(), back_to_flats())]
        return [Reply(f"{format_flat_saved()}\n\n{format_flat_details(flat)}", back_to_flats())]

    # -----------------------------------------------------------------------
    # Collection script
    # -----------------------------------------------------------------------

    async def _collection_text(self, session: Session, text: str) -> list[Reply]:
        question = session.pending[0]
        draft: CollectionDraft = session.draft
        period = draft.period
        value = text.strip()

        if question.field is Field.COLLECTION_LABEL:
            if not value or is_skip(value):
                return [Reply(f"{format_required_field()}\n\n{question.prompt}")]
            if len(value.encode("utf-8")) > MAX_COLLECTION_LABEL_LENGTH or actions.SEPARATOR in value:
                return [Reply(f"{format_invalid_collection_label()}\n\n{question.prompt}")]
            period.label = value
        elif question.field is Field.COLLECTION_DESCRIPTION:
            period.description = None if is_skip(value) or not value else value
        elif question.field is Field.COLLECTION_AMOUNT:
            amount = parse_amount(value)
            if amount is None or amount <= 0:
                return [Reply(f"{format_invalid_collection_amount()}\n\n{question.prompt}")]
            draft.amount = amount

        session.pending.pop(0)
        if session.pending:
            self._store.set(session.chat_id, session)
            return [Reply(session.pending[0].prompt, cancel_keyboard())]
        return await self._initialize_collection(session)

    async def _initialize_collection(self, session: Session) -> list[Reply]:
        draft: CollectionDraft = session.draft
        self._store.delete(session.chat_id)
        try:
            added = await asyncio.to_thread(self._ledger.initialize_collection, draft.period, draft.amount)
        except SheetsError:
            return [Reply(format_collection_failed(), back_to_main())]
        return [Reply(format_collection_created(added), collection_view(draft.period))]
