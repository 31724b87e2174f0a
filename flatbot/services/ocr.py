"""
Google Vision OCR service.

Sends receipt images to TEXT_DETECTION and returns the full recognised text.
Uses raw HTTP via httpx for true async (no thread pool needed).
"""

import base64
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

VISION_API_URL = "https://vision.googleapis.com/v1/images:annotate"


class OCRError(Exception):
    """Text recognition could not be performed."""


async def recognize_text(
    image_bytes: bytes,
    api_key: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Run Google Vision TEXT_DETECTION on image bytes.

    Args:
        image_bytes: Raw image binary data.
        api_key: Google Cloud Vision API key.
        transport: Optional httpx transport (tests).

    Returns:
        Full OCR text from the image. Empty string if the image has no text.

    Raises:
        OCRError: the API call failed or returned an error payload.
    """
    payload = {
        "requests": [
            {
                "image": {"content": base64.b64encode(image_bytes).decode("utf-8")},
                "features": [{"type": "TEXT_DETECTION", "maxResults": 1}],
                "imageContext": {"languageHints": ["en"]},
            }
        ]
    }

    try:
        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            response = await client.post(
                VISION_API_URL,
                params={"key": api_key},
                json=payload,
            )
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        logger.error("Vision API HTTP error: %s %s", e.response.status_code, e.response.text)
        raise OCRError(f"Vision API returned {e.response.status_code}") from e
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Vision API error: %s", e)
        raise OCRError("Vision API request failed") from e

    annotations = (data.get("responses") or [{}])[0]
    if "error" in annotations:
        logger.error("Vision API annotation error: %s", annotations["error"])
        raise OCRError(annotations["error"].get("message", "Vision API error"))

    text = annotations.get("fullTextAnnotation", {}).get("text", "")
    logger.info("OCR extracted %d characters", len(text))
    return text
