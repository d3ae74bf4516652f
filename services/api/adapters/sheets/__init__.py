# services/api/adapters/sheets/__init__.py
from __future__ import annotations

import json
from typing import Any, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.errors import NotFoundError, StorageError
from models.selection import PAGE_SELECTIONS, STORAGE_FIELDS, SelectionRecord

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def _sa_client_from_json_or_path(google_sa_json: str) -> gspread.Client:
    """
    Accepts either:
      - absolute/relative path to a service-account JSON file, OR
      - a literal JSON string.
    Returns an authorized gspread Client.
    """
    if not google_sa_json:
        raise ValueError("GOOGLE_SA_JSON is required (path to file or inline JSON).")

    # Try to treat as inline JSON first
    try:
        parsed = json.loads(google_sa_json)
        creds = Credentials.from_service_account_info(parsed, scopes=SCOPES)
        return gspread.authorize(creds)
    except json.JSONDecodeError:
        # Not JSON; treat as file path
        creds = Credentials.from_service_account_file(google_sa_json, scopes=SCOPES)
        return gspread.authorize(creds)


# ========== Retry decorator for Google Sheets API calls ==========
def retry_sheets_api(func):
    """Decorator to retry Sheets API calls with exponential backoff on quota errors."""
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((gspread.exceptions.APIError,)),
        reraise=True,
    )
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def _cell(value: Any) -> Any:
    """Python value -> what we write into a cell."""
    if value is None:
        return ""
    if isinstance(value, list):
        return json.dumps(value)
    return value


class SheetsAdapter:
    """
    Google Sheets implementation of the `pageSelections` collection:
    - One tab, one row per selection, header row = storage keys
    - Retry logic for reliability
    - accessCount update is read-modify-write (Sheets has no atomic increment)
    """

    def __init__(self, worksheet: gspread.Worksheet) -> None:
        self.ws = worksheet
        self.colmap = self._ensure_headers()

    @classmethod
    def from_service_account(
        cls,
        google_sa_json: Optional[str],
        spreadsheet_id: Optional[str],
    ) -> "SheetsAdapter":
        if not google_sa_json or not spreadsheet_id:
            raise ValueError("SheetsAdapter requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")

        gc = _sa_client_from_json_or_path(google_sa_json)
        ss = gc.open_by_key(spreadsheet_id)
        try:
            ws = ss.worksheet(PAGE_SELECTIONS)
        except gspread.WorksheetNotFound:
            ws = ss.add_worksheet(
                title=PAGE_SELECTIONS,
                rows=1000,
                cols=len(STORAGE_FIELDS) + 2,
            )
        return cls(ws)

    # ========== Worksheet helpers ==========

    def _ensure_headers(self) -> dict[str, int]:
        existing = self.ws.row_values(1)

        base = STORAGE_FIELDS[:]
        if not existing:
            self.ws.update(range_name="A1", values=[base])
            header = base
        else:
            # If required base columns are missing, append them at the end.
            # If the sheet already has extra columns, KEEP them.
            missing = [c for c in base if c not in existing]
            header = existing + missing if missing else existing
            if header != existing:
                self.ws.update(range_name="1:1", values=[header])

        return {col: idx + 1 for idx, col in enumerate(header)}

    @retry_sheets_api
    def _append_row(self, data: dict[str, Any]) -> None:
        """Append one row using the sheet's header order. WITH RETRY."""
        row = [_cell(data.get(col)) for col in self.colmap]
        self.ws.append_rows([row], value_input_option="RAW")

    @retry_sheets_api
    def _find_row(self, selection_id: str) -> Optional[int]:
        """Find row index by id. WITH RETRY."""
        col_vals = self.ws.col_values(self.colmap["id"])
        for i, v in enumerate(col_vals[1:], start=2):  # skip header
            if v == selection_id:
                return i
        return None

    @retry_sheets_api
    def _row_dict(self, row_idx: int) -> dict[str, Any]:
        vals = self.ws.row_values(row_idx)
        return {
            col: (vals[idx - 1] if idx - 1 < len(vals) else "")
            for col, idx in self.colmap.items()
        }

    @retry_sheets_api
    def _update_cell(self, row_idx: int, col: str, value: Any) -> None:
        self.ws.update_cell(row_idx, self.colmap[col], value)

    # ========== SelectionStore API ==========

    def create(self, record: SelectionRecord) -> str:
        try:
            self._append_row(record.to_storage())
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to store selection {record.id}: {e}") from e
        return record.id

    def get(self, selection_id: str) -> Optional[SelectionRecord]:
        try:
            r = self._find_row(selection_id)
            if not r:
                return None
            row = self._row_dict(r)
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to load selection {selection_id}: {e}") from e

        try:
            return SelectionRecord.from_storage(row)
        except ValueError as e:
            raise StorageError(f"Malformed selection {selection_id}: {e}") from e

    def increment_access(self, selection_id: str) -> None:
        try:
            r = self._find_row(selection_id)
            if not r:
                raise NotFoundError(f"Selection {selection_id} not found")
            current = self._row_dict(r).get("accessCount") or 0
            try:
                count = int(float(str(current).strip() or 0))
            except ValueError:
                count = 0
            self._update_cell(r, "accessCount", count + 1)
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to update access count for {selection_id}: {e}") from e
