"""
Field extraction: OCR text → structured transaction fields via Gemini.

extract_fields() asks the model for a JSON object and validates it field by
field. Anything unusable (timeout, API error, non-JSON reply, no confidence)
becomes ExtractionError so callers never see a raw parse exception.

FieldExtractor bundles OCR and extraction behind one object so the dialogue
engine can be given fakes in tests.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Optional

import google.generativeai as genai

from flatbot.config import EXTRACTION_TIMEOUT_SECONDS, GEMINI_API_KEY, GEMINI_MODEL
from flatbot.models import ExtractedFields
from flatbot.services.ocr import recognize_text
from flatbot.utils.parsers import parse_ai_json, parse_amount

logger = logging.getLogger(__name__)

_PROMPT = """Extract financial information from the following text. Return a JSON object with these fields:
- amount: number (the monetary value)
- category: string (e.g., Maintenance, Utilities, Dues)
- description: string (what the expense/income is for)
- date: string (in YYYY-MM-DD format, if found)
- type: 'expense' or 'income'
- confidence: number (0-1, how confident you are in the extraction)

Text: {text}

Return ONLY the JSON object, no other text or formatting. If any field is unclear, set it to null. Only include fields you're confident about."""

_GENERATION_CONFIG = {
    "temperature": 0.1,
    "top_k": 1,
    "top_p": 1,
    "max_output_tokens": 2048,
}

_model = None


class ExtractionError(Exception):
    """The AI reply could not be turned into fields."""


def _get_model():
    """Initialize or return cached Gemini model."""
    global _model
    if _model is None:
        genai.configure(api_key=GEMINI_API_KEY)
        _model = genai.GenerativeModel(GEMINI_MODEL)
        logger.info("Gemini model initialized: %s", GEMINI_MODEL)
    return _model


async def extract_fields(
    raw_text: str,
    model=None,
    timeout: float = EXTRACTION_TIMEOUT_SECONDS,
) -> ExtractedFields:
    """Ask the model to pull amount/category/description/date/type out of raw text.

    Raises:
        ExtractionError: timeout, API failure or malformed reply.
    """
    model = model or _get_model()
    prompt = _PROMPT.format(text=raw_text)

    try:
        response = await asyncio.wait_for(
            model.generate_content_async(prompt, generation_config=_GENERATION_CONFIG),
            timeout=timeout,
        )
        reply = response.text
    except asyncio.TimeoutError as e:
        logger.error("Gemini request timed out after %.0fs", timeout)
        raise ExtractionError("Request timed out") from e
    except Exception as e:
        logger.error("Gemini request failed: %s", e)
        raise ExtractionError("Model request failed") from e

    try:
        data = parse_ai_json(reply)
    except ValueError as e:
        logger.error("Gemini reply is not a JSON object: %r", reply[:200])
        raise ExtractionError("Malformed model reply") from e

    fields = fields_from_dict(data)
    logger.info(
        "Extracted fields: amount=%s category=%r date=%r confidence=%.2f",
        fields.amount, fields.category, fields.date, fields.confidence,
    )
    return fields


def fields_from_dict(data: dict[str, Any]) -> ExtractedFields:
    """Validate a decoded model reply. Unusable fields become None.

    A missing or non-numeric confidence makes the whole reply unusable.
    """
    raw_confidence = data.get("confidence")
    if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, (int, float, str)):
        raise ExtractionError("Model reply has no confidence")
    try:
        confidence = float(raw_confidence)
    except ValueError as e:
        raise ExtractionError("Model reply has no confidence") from e
    if confidence != confidence:  # NaN
        raise ExtractionError("Model reply has no confidence")
    confidence = min(max(confidence, 0.0), 1.0)

    amount = data.get("amount")
    if isinstance(amount, bool):
        amount = None
    elif isinstance(amount, (int, float)):
        amount = float(amount)
    elif isinstance(amount, str):
        amount = parse_amount(amount)
    else:
        amount = None

    entry_type = data.get("type")
    if entry_type not in ("expense", "income"):
        entry_type = None

    return ExtractedFields(
        confidence=confidence,
        amount=amount,
        category=_clean_str(data.get("category")),
        description=_clean_str(data.get("description")),
        date=_clean_date(data.get("date")),
        type=entry_type,
    )


def _clean_str(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _clean_date(value) -> Optional[str]:
    value = _clean_str(value)
    if value is None:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        logger.debug("Dropping unparseable date from model: %r", value)
        return None


class FieldExtractor:
    """OCR + AI extraction for receipt images."""

    def __init__(self, vision_api_key: str, model=None, timeout: float = EXTRACTION_TIMEOUT_SECONDS):
        self._vision_api_key = vision_api_key
        self._model = model
        self._timeout = timeout

    async def recognize_text(self, image_bytes: bytes) -> str:
        """Raises OCRError."""
        return await recognize_text(image_bytes, self._vision_api_key)

    async def extract_fields(self, raw_text: str) -> ExtractedFields:
        """Raises ExtractionError."""
        return await extract_fields(raw_text, model=self._model, timeout=self._timeout)
