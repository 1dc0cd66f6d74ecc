import asyncio
from functools import lru_cache
from typing import Any, List, Optional

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

from core.config import settings
from core.errors import OrderLogError

logger = structlog.get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


class SheetsOrderLog:
    """Appends one row per order to a Google Sheet. Failures are raised, never retried."""

    def __init__(self, spreadsheet_id: str, sheet_name: str, credentials_info: dict):
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._credentials_info = credentials_info
        self._service = None

    def _sheets(self):
        if self._service is None:
            creds = service_account.Credentials.from_service_account_info(
                self._credentials_info, scopes=SCOPES
            )
            self._service = build("sheets", "v4", credentials=creds, cache_discovery=False)
        return self._service

    def _append_blocking(self, row: List[Any]) -> None:
        self._sheets().spreadsheets().values().append(
            spreadsheetId=self.spreadsheet_id,
            range=f"{self.sheet_name}!A1",
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [row]},
        ).execute()

    async def append(self, row: List[Any], order_id: Optional[str] = None) -> None:
        try:
            await asyncio.to_thread(self._append_blocking, row)
        except Exception as e:
            logger.error("Google Sheets error", order_id=order_id, error=str(e))
            raise OrderLogError("Failed to write order to Google Sheet.") from e
        logger.info("Order row appended", order_id=order_id)


@lru_cache
def get_order_log() -> SheetsOrderLog:
    return SheetsOrderLog(
        settings.google_sheet_id,
        settings.google_sheet_name,
        {
            "type": "service_account",
            "project_id": settings.google_project_id,
            "private_key_id": settings.google_private_key_id,
            "private_key": settings.google_private_key,
            "client_email": settings.google_client_email,
            "token_uri": "https://oauth2.googleapis.com/token",
        },
    )
