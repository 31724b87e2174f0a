"""
Data classes for conversation state and the records the bot persists.

Drafts are a tagged union keyed by Session.mode: each mode carries only the
fields of the record it is building. Records are the complete shapes handed
to the Sheets adapter.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union


class Mode(str, Enum):
    """Which record shape a session is building."""
    IDLE = "idle"
    EXPENSE = "expense"
    INCOME = "income"
    FLAT_INFO = "flat_info"
    COLLECTION_INFO = "collection_info"


class Field(str, Enum):
    """Draft field a queued question fills."""
    # Transactions
    AMOUNT = "amount"
    CATEGORY = "category"
    DESCRIPTION = "description"
    DATE = "date"
    # Flats
    FLAT_NUMBER = "flat_number"
    FLOOR_NUMBER = "floor_number"
    OWNER_NAME = "owner_name"
    MAINTENANCE_AMOUNT = "maintenance_amount"
    PHONE_NUMBER = "phone_number"
    IS_OCCUPIED = "is_occupied"
    TENANT_NAME = "tenant_name"
    EMAIL = "email"
    # Collections
    COLLECTION_LABEL = "collection_label"
    COLLECTION_DESCRIPTION = "collection_description"
    COLLECTION_AMOUNT = "collection_amount"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"


@dataclass(frozen=True)
class Question:
    """A prompt queued in Session.pending, tagged with the field it fills."""
    field: Field
    prompt: str
    required: bool = True


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------

# Checked in this order when building follow-up questions
TRANSACTION_REQUIRED_FIELDS = (Field.AMOUNT, Field.CATEGORY, Field.DESCRIPTION, Field.DATE)


@dataclass
class TransactionDraft:
    """In-progress expense or income."""
    type: str                              # 'expense' | 'income'
    amount: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None             # YYYY-MM-DD
    confidence: float = 0.0

    def missing_fields(self) -> list[Field]:
        """Required fields still empty, in question order."""
        values = {
            Field.AMOUNT: self.amount,
            Field.CATEGORY: self.category,
            Field.DESCRIPTION: self.description,
            Field.DATE: self.date,
        }
        return [f for f in TRANSACTION_REQUIRED_FIELDS if values[f] in (None, "")]


@dataclass
class FlatDraft:
    """In-progress flat record."""
    flat_number: Optional[str] = None
    floor_number: Optional[str] = None
    owner_name: Optional[str] = None
    maintenance_amount: Optional[float] = None
    phone_number: Optional[str] = None
    is_occupied: Optional[bool] = None
    tenant_name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class CollectionPeriod:
    """Identifies one recurring-collection sheet: kind + month + year.

    Collections of kind 'other' also carry a label, which is part of the
    sheet title so several can exist in the same month.
    """
    kind: str                              # 'maintenance' | 'water' | 'other'
    month: str                             # 'October'
    year: int
    label: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def current(cls, kind: str, today: Optional[date] = None, label: Optional[str] = None) -> "CollectionPeriod":
        today = today or date.today()
        return cls(kind=kind, month=today.strftime("%B"), year=today.year, label=label)

    @property
    def display_name(self) -> str:
        if self.kind == "other" and self.label:
            return self.label
        return self.kind.capitalize()

    @property
    def sheet_title(self) -> str:
        if self.kind == "other":
            return f"Other: {self.label or 'Collection'} - {self.month} {self.year}"
        return f"{self.kind.capitalize()} - {self.month} {self.year}"


@dataclass
class CollectionDraft:
    """In-progress collection period setup."""
    period: CollectionPeriod
    amount: Optional[float] = None


Draft = Union[TransactionDraft, FlatDraft, CollectionDraft]


@dataclass
class Session:
    """Conversation state for one chat."""
    chat_id: int
    mode: Mode = Mode.IDLE
    draft: Optional[Draft] = None
    pending: list[Question] = field(default_factory=list)
    awaiting_confirmation: bool = False
    receipt_url: Optional[str] = None
    user_display_name: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def collection_context(self) -> Optional[CollectionPeriod]:
        """Collection being populated; only set in COLLECTION_INFO mode."""
        if self.mode is Mode.COLLECTION_INFO and isinstance(self.draft, CollectionDraft):
            return self.draft.period
        return None

    @property
    def has_unsaved_input(self) -> bool:
        """True once the user has supplied anything for the current draft."""
        draft = self.draft
        if self.mode is Mode.IDLE or draft is None:
            return False
        if isinstance(draft, CollectionDraft):
            period = draft.period
            return bool(period.label or period.description or draft.amount is not None)
        values = asdict(draft)
        values.pop("type", None)
        values.pop("confidence", None)
        return any(v not in (None, "") for v in values.values())

    def start(self, mode: Mode, draft: Optional[Draft] = None, questions: Optional[list[Question]] = None) -> None:
        """Begin a new flow. Drops draft and questions, keeps user name and receipt."""
        self.mode = mode
        self.draft = draft
        self.pending = list(questions or [])
        self.awaiting_confirmation = False

    def touch(self) -> None:
        self.updated_at = datetime.now()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Transaction:
    """One ledger row."""
    date: str
    type: str                              # 'expense' | 'income'
    category: str
    description: str
    amount: float
    added_by: str
    timestamp: str
    receipt_url: Optional[str] = None


@dataclass
class FlatInfo:
    """One row of the Flat Information sheet; flat_number is the key."""
    flat_number: str
    floor_number: str
    owner_name: str
    maintenance_amount: float
    phone_number: str
    is_occupied: bool
    last_updated: str
    tenant_name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class CollectionEntry:
    """One flat's row in a collection sheet."""
    flat_number: str
    owner_name: str
    amount: float
    status: PaymentStatus = PaymentStatus.PENDING
    payment_date: Optional[str] = None
    marked_by: Optional[str] = None


@dataclass
class ExtractedFields:
    """Best-effort guess produced by the field extractor."""
    confidence: float
    amount: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    type: Optional[str] = None
