"""
Parsers for user input, ledger cells and AI responses.

- parse_amount(): user-typed amounts ("1,200.50", "₹ 500")
- split_manual_entry(): "amount, category, description" quick entry
- parse_ledger_amount(): formatted amounts read back from Sheets
- parse_ai_json(): JSON object from a model reply, fenced or not
- capitalize_name(), month/quarter helpers
"""

import json
import logging
import re
from datetime import date
from typing import Optional

logger = logging.getLogger(__name__)

_CURRENCY_CHARS = re.compile(r"[₹$€£\s ]")
_JSON_FENCE = re.compile(r"```(?:json)?\s*|\s*```")


def parse_amount(text: str) -> Optional[float]:
    """Parse a user-typed amount. Returns None when it is not a number.

    Commas are treated as thousands separators ("1,200" → 1200.0).
    """
    if text is None:
        return None
    cleaned = _CURRENCY_CHARS.sub("", str(text)).replace(",", "")
    if not cleaned:
        return None
    try:
        amount = float(cleaned)
    except ValueError:
        return None
    if amount != amount or amount in (float("inf"), float("-inf")):  # NaN / inf
        return None
    return amount


def split_manual_entry(text: str) -> Optional[tuple[str, str, str]]:
    """Split quick entry "amount, category, description" into three trimmed tokens.

    Returns None unless there are exactly three comma-separated parts.
    """
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 3:
        return None
    return parts[0], parts[1], parts[2]


def parse_ledger_amount(cell: str) -> float:
    """Amount cell from the ledger ("₹1,23,456") → float; unreadable cells count as 0."""
    value = parse_amount(cell or "")
    return value if value is not None else 0.0


def parse_ai_json(text: str) -> dict:
    """Decode the JSON object in a model reply, tolerating ```json fences.

    Raises ValueError if the reply is not a JSON object.
    """
    cleaned = _JSON_FENCE.sub("", text or "").strip()
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def capitalize_name(name: str) -> str:
    """Title-case every whitespace-separated word: 'rAVI kumar' → 'Ravi Kumar'."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in name.split())


def is_skip(text: str) -> bool:
    return text.strip().lower() == "skip"


def parse_yes_no(text: str) -> Optional[bool]:
    """'yes' → True, 'no' → False, anything else → None."""
    answer = text.strip().lower()
    if answer == "yes":
        return True
    if answer == "no":
        return False
    return None


def month_label(d: Optional[date] = None) -> str:
    """'October 2026' — also the title of that month's ledger sheet."""
    d = d or date.today()
    return d.strftime("%B %Y")


def quarter_of(d: date) -> int:
    return (d.month - 1) // 3 + 1


def quarter_months(d: Optional[date] = None) -> list[date]:
    """First day of each month in d's quarter."""
    d = d or date.today()
    first = (quarter_of(d) - 1) * 3 + 1
    return [date(d.year, m, 1) for m in range(first, first + 3)]
