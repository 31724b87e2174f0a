"""
Google Drive upload service for receipts.

Receipt photos go into a "<Month> <Year>" folder under the configured root
folder (created on first use), are shared as anyone-with-link reader, and the
view link is stored on the ledger row.

All calls are synchronous (googleapiclient) — handlers must wrap
in asyncio.to_thread() to avoid blocking the event loop.
"""

import base64
import io
import json
import logging
from datetime import datetime
from typing import Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from flatbot.utils.parsers import month_label

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/drive",
]

FOLDER_MIMETYPE = "application/vnd.google-apps.folder"


class StorageError(Exception):
    """Receipt could not be stored."""


def detect_mimetype(image_bytes: bytes) -> tuple[str, str]:
    """Detect image MIME type from magic bytes. Returns (mimetype, extension)."""
    if image_bytes[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png", ".png"
    if image_bytes[:2] == b'\xff\xd8':
        return "image/jpeg", ".jpg"
    if image_bytes[:4] == b'RIFF' and image_bytes[8:12] == b'WEBP':
        return "image/webp", ".webp"
    # Default to JPEG (most common from Telegram)
    return "image/jpeg", ".jpg"


class DriveStorage:
    def __init__(self, root_folder_id: str, creds_json_b64: str, service=None):
        self._root_folder_id = root_folder_id
        self._creds_json_b64 = creds_json_b64
        self._service = service
        self._folder_cache: dict[str, str] = {}

    def _get_service(self):
        """Initialize or return cached Google Drive API v3 service."""
        if self._service is None:
            creds_json = json.loads(base64.b64decode(self._creds_json_b64))
            credentials = Credentials.from_service_account_info(creds_json, scopes=SCOPES)
            self._service = build("drive", "v3", credentials=credentials, cache_discovery=False)
            logger.info("Google Drive service initialized")
        return self._service

    def _month_folder_id(self, folder_name: str) -> str:
        """Find or create the month folder under the root folder."""
        cached = self._folder_cache.get(folder_name)
        if cached:
            return cached

        service = self._get_service()
        query = (
            f"name='{folder_name}' and mimeType='{FOLDER_MIMETYPE}' "
            f"and '{self._root_folder_id}' in parents and trashed=false"
        )
        found = service.files().list(q=query, fields="files(id, name)").execute()
        files = found.get("files", [])
        if files:
            folder_id = files[0]["id"]
        else:
            folder = service.files().create(
                body={
                    "name": folder_name,
                    "mimeType": FOLDER_MIMETYPE,
                    "parents": [self._root_folder_id],
                },
                fields="id",
            ).execute()
            folder_id = folder["id"]
            logger.info("Created Drive month folder %r: %s", folder_name, folder_id)

        self._folder_cache[folder_name] = folder_id
        return folder_id

    def upload_receipt(self, image_bytes: bytes, filename: Optional[str] = None) -> str:
        """Upload receipt photo into the current month's folder.

        Args:
            image_bytes: Raw image binary data.
            filename: Optional custom filename. Defaults to receipt_YYYYMMDD_HHMMSS.ext.

        Returns:
            Shareable link (anyone with link can view).

        Raises:
            StorageError: any Drive failure.
        """
        mimetype, ext = detect_mimetype(image_bytes)

        if not filename:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"receipt_{timestamp}{ext}"

        try:
            service = self._get_service()
            folder_id = self._month_folder_id(month_label())

            media = MediaIoBaseUpload(
                io.BytesIO(image_bytes),
                mimetype=mimetype,
                resumable=False,
            )

            file = service.files().create(
                body={"name": filename, "parents": [folder_id]},
                media_body=media,
                fields="id, webViewLink",
            ).execute()

            file_id = file.get("id")

            # Set permission: anyone with link can view
            service.permissions().create(
                fileId=file_id,
                body={"type": "anyone", "role": "reader"},
            ).execute()

        except (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError, ValueError) as e:
            logger.error("Failed to upload receipt to Drive: %s", e)
            raise StorageError("Failed to upload image to Google Drive") from e

        link = file.get("webViewLink", f"https://drive.google.com/file/d/{file_id}/view")
        logger.info("Receipt uploaded to Drive: %s → %s", filename, link)
        return link
