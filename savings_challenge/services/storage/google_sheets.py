"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets can back the shared document store because:
1. Group members can look at the raw ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each collection is one worksheet. Each document is one row:
    id | revision | updated_at | document_json | document_json ...

A cell holds at most 50,000 characters, so the JSON is split across as
many columns as it needs and joined back on read.

TRADEOFFS:
- Not suitable for high-volume data (a savings group is tiny)
- No transactions and no compare-and-set; writes are last-writer-wins,
  exactly like the realtime store this stands in for
- Subscriptions are polled, not pushed

The implementation follows the abstract interface, so the rest of the
package never knows which backend it is talking to.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Optional

import gspread
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from savings_challenge.config import get_settings
from savings_challenge.services.storage.interface import (
    ConnectionError,
    DocumentStore,
    StorageError,
)


DOCUMENT_COLUMNS = [
    "id",
    "revision",
    "updated_at",
    "document_json",
]

# Google Sheets rejects cells longer than 50,000 characters
MAX_CELL_CHARS = 49_000


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @property
    def poll_interval(self) -> float:
        return self._settings.poll_interval_seconds

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet holding a collection."""
        if collection not in self._worksheets:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(collection)
            except gspread.WorksheetNotFound:
                # Create the sheet with headers
                sheet = spreadsheet.add_worksheet(
                    title=collection,
                    rows=1000,
                    cols=len(DOCUMENT_COLUMNS),
                )
                sheet.append_row(DOCUMENT_COLUMNS)
            self._worksheets[collection] = sheet
        return self._worksheets[collection]


class GoogleSheetsDocumentStore(DocumentStore):
    """
    Google Sheets implementation of the document store.

    Documents are JSON-serialized into a single cell; the id and revision
    are duplicated into their own columns for humans reading the sheet.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _document_to_row(self, doc_id: str, document: dict[str, Any]) -> list:
        payload = json.dumps(document, ensure_ascii=False)
        chunks = [
            payload[start:start + MAX_CELL_CHARS]
            for start in range(0, len(payload), MAX_CELL_CHARS)
        ]
        return [
            doc_id,
            str(document.get("revision", "")),
            datetime.now(timezone.utc).isoformat(),
            *chunks,
        ]

    def _row_to_document(self, row: list) -> Optional[dict[str, Any]]:
        # Blank trailing cells (padding or stale chunks) join to nothing
        payload = "".join(row[len(DOCUMENT_COLUMNS) - 1:])
        return json.loads(payload) if payload else None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Retrieve a document by its ID."""
        try:
            sheet = self._client.get_collection_sheet(collection)
            # Get all data (excluding header)
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == doc_id:
                    return self._row_to_document(row)
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get {collection}/{doc_id}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """Overwrite (or create) a document row."""
        try:
            sheet = self._client.get_collection_sheet(collection)
            new_row = self._document_to_row(doc_id, document)
            if sheet.col_count < len(new_row):
                sheet.add_cols(len(new_row) - sheet.col_count)

            rows = sheet.get_all_values()
            for idx, existing in enumerate(rows[1:], start=2):  # Row 1 is header
                if existing and existing[0] == doc_id:
                    # Blank out chunks left over from a longer previous version
                    width = max(len(new_row), len(existing))
                    new_row += [""] * (width - len(new_row))
                    sheet.update(
                        range_name=f"A{idx}:{rowcol_to_a1(idx, width)}",
                        values=[new_row],
                        value_input_option="RAW",
                    )
                    return

            sheet.append_row(new_row, value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to put {collection}/{doc_id}: {e}")

    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        """Every document in the collection, skipping blank and malformed rows."""
        try:
            sheet = self._client.get_collection_sheet(collection)
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {collection}: {e}")

        documents = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                document = self._row_to_document(row)
            except json.JSONDecodeError:
                continue  # Skip malformed rows
            if document is not None:
                documents.append(document)
        return documents

    async def subscribe(self, collection: str) -> AsyncIterator[list[dict[str, Any]]]:
        """Poll the worksheet and yield whenever its content changes."""
        last_seen = None
        while True:
            snapshot = await self.list_documents(collection)
            if snapshot != last_seen:
                last_seen = snapshot
                yield snapshot
            await asyncio.sleep(self._client.poll_interval)
