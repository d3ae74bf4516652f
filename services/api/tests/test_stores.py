"""
Tests for the selection record model and the storage backends.

Run with: pytest tests/test_stores.py -v
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import T0
from adapters import build_selection_store
from adapters.json import JsonAdapter
from adapters.sheets import SheetsAdapter
from adapters.sqlite import SqliteAdapter
from core.errors import NotFoundError, StorageError
from models.selection import SELECTION_TTL, STORAGE_FIELDS, SelectionRecord
from settings import Settings


def _record(**overrides):
    kwargs = dict(
        email=" a@b.com ",
        selected_pages=[9, 2, 5],
        product_id="prod-1",
        source_url="https://x/doc.pdf",
        source_name="Worksheet pack",
        now=T0,
    )
    kwargs.update(overrides)
    return SelectionRecord.new(**kwargs)


class TestSelectionRecord:
    """Model rules."""

    def test_new_record(self):
        """Fresh record: trimmed email, zero count, 7-day expiry."""
        r = _record()
        assert r.email == "a@b.com"
        assert r.access_count == 0
        assert r.expires_at - r.created_at == timedelta(days=7)
        assert len(r.id) == 36

    def test_is_expired(self):
        """Strictly after expiresAt."""
        r = _record()
        assert not r.is_expired(T0 + timedelta(days=7))
        assert r.is_expired(T0 + timedelta(days=7, microseconds=1))

    def test_empty_pages_rejected(self):
        """selectedPages is never empty."""
        with pytest.raises(ValueError):
            _record(selected_pages=[])

    def test_bad_expiry_rejected(self):
        """A stored expiry that isn't createdAt + 7d is malformed."""
        row = _record().to_storage()
        row["expiresAt"] = (T0 + timedelta(days=30)).isoformat()
        with pytest.raises(ValueError):
            SelectionRecord.from_storage(row)

    def test_missing_expiry_derived(self):
        """Rows without expiresAt get createdAt + 7d."""
        row = _record().to_storage()
        del row["expiresAt"]
        assert SelectionRecord.from_storage(row).expires_at == T0 + SELECTION_TTL

    def test_frozen(self):
        """Records are immutable."""
        r = _record()
        with pytest.raises(Exception):
            r.access_count = 5

    def test_storage_shape(self):
        """Persisted keys are exactly the storage fields."""
        row = _record().to_storage()
        assert list(row) == STORAGE_FIELDS
        assert row["selectedPages"] == [9, 2, 5]

    def test_sheet_style_row(self):
        """String cells from a spreadsheet parse back into a record."""
        r = _record(product_id=None)
        row = {k: ("" if v is None else str(v)) for k, v in r.to_storage().items()}
        row["selectedPages"] = json.dumps(r.selected_pages)
        row["extra"] = "ignored"
        back = SelectionRecord.from_storage(row)
        assert back == r
        assert back.product_id is None

    def test_naive_timestamps_are_utc(self):
        """SQLite hands back naive datetimes; they are read as UTC."""
        row = _record().to_storage()
        row["createdAt"] = datetime(2026, 3, 1, 12, 0, 0)
        row["expiresAt"] = datetime(2026, 3, 8, 12, 0, 0)
        back = SelectionRecord.from_storage(row)
        assert back.created_at == T0
        assert back.created_at.tzinfo == timezone.utc


class _StoreContract:
    """Behaviour every backend shares."""

    def make_store(self, tmp_path):
        raise NotImplementedError

    def test_round_trip(self, tmp_path):
        """What goes in comes out, expiry intact."""
        store = self.make_store(tmp_path)
        r = _record()
        assert store.create(r) == r.id
        back = store.get(r.id)
        assert back == r
        assert back.expires_at == back.created_at + timedelta(days=7)
        assert back.selected_pages == [9, 2, 5]

    def test_get_unknown(self, tmp_path):
        """Unknown id → None."""
        assert self.make_store(tmp_path).get("nope") is None

    def test_increment(self, tmp_path):
        """Each call adds exactly one."""
        store = self.make_store(tmp_path)
        r = _record()
        store.create(r)
        store.increment_access(r.id)
        store.increment_access(r.id)
        assert store.get(r.id).access_count == 2

    def test_increment_unknown(self, tmp_path):
        """Unknown id → NotFoundError."""
        with pytest.raises(NotFoundError):
            self.make_store(tmp_path).increment_access("nope")

    def test_without_source(self, tmp_path):
        """Optional fields survive as None."""
        store = self.make_store(tmp_path)
        r = _record(source_url=None, source_name=None, product_id=None)
        store.create(r)
        back = store.get(r.id)
        assert back.source_url is None
        assert back.source_name is None


class TestSqliteAdapter(_StoreContract):
    def make_store(self, tmp_path):
        return SqliteAdapter.from_url(f"sqlite:///{tmp_path}/selections.db")

    def test_duplicate_id(self, tmp_path):
        """Primary key clash → StorageError."""
        store = self.make_store(tmp_path)
        r = _record()
        store.create(r)
        with pytest.raises(StorageError):
            store.create(r)


class TestJsonAdapter(_StoreContract):
    def make_store(self, tmp_path):
        return JsonAdapter(str(tmp_path / "data"))

    def test_file_layout(self, tmp_path):
        """Rows land in pageSelections.json in camelCase."""
        store = self.make_store(tmp_path)
        r = _record()
        store.create(r)
        rows = json.loads((tmp_path / "data" / "pageSelections.json").read_text())
        assert rows[0]["id"] == r.id
        assert rows[0]["accessCount"] == 0

    def test_duplicate_id(self, tmp_path):
        """Same id twice → StorageError."""
        store = self.make_store(tmp_path)
        r = _record()
        store.create(r)
        with pytest.raises(StorageError):
            store.create(r)

    def test_corrupt_file(self, tmp_path):
        """Garbage on disk → StorageError."""
        store = self.make_store(tmp_path)
        (tmp_path / "data" / "pageSelections.json").write_text("{not json")
        with pytest.raises(StorageError):
            store.get("anything")


class FakeWorksheet:
    """Just enough of gspread.Worksheet; cells come back as strings like the API."""

    def __init__(self, header=None):
        self.rows = [list(header)] if header else []

    def row_values(self, row):
        return [str(v) for v in self.rows[row - 1]] if row <= len(self.rows) else []

    def col_values(self, col):
        return [str(r[col - 1]) if col <= len(r) else "" for r in self.rows]

    def update(self, range_name=None, values=None):
        if self.rows:
            self.rows[0] = list(values[0])
        else:
            self.rows.append(list(values[0]))

    def append_rows(self, rows, value_input_option=None):
        self.rows.extend([list(r) for r in rows])

    def update_cell(self, row, col, value):
        r = self.rows[row - 1]
        while len(r) < col:
            r.append("")
        r[col - 1] = value


class TestSheetsAdapter(_StoreContract):
    def make_store(self, tmp_path):
        return SheetsAdapter(FakeWorksheet())

    def test_headers_written(self):
        """An empty tab gets the storage header row."""
        ws = FakeWorksheet()
        SheetsAdapter(ws)
        assert ws.rows[0] == STORAGE_FIELDS

    def test_missing_headers_appended(self):
        """Extra columns are kept, missing ones added at the end."""
        ws = FakeWorksheet(header=["id", "notes"])
        store = SheetsAdapter(ws)
        assert ws.rows[0][:2] == ["id", "notes"]
        assert set(STORAGE_FIELDS) <= set(ws.rows[0])
        r = _record()
        store.create(r)
        assert store.get(r.id) == r

    def test_pages_stored_as_json(self):
        """selectedPages is one JSON cell."""
        ws = FakeWorksheet()
        store = SheetsAdapter(ws)
        store.create(_record())
        assert ws.rows[1][STORAGE_FIELDS.index("selectedPages")] == "[9, 2, 5]"

    def test_missing_credentials(self):
        """No service account → ValueError at startup."""
        with pytest.raises(ValueError):
            SheetsAdapter.from_service_account(google_sa_json="", spreadsheet_id="abc")


class TestBuildSelectionStore:
    """Backend selection from settings."""

    def test_json_backend(self, tmp_path):
        store = build_selection_store(Settings(storage_backend="json", json_data_dir=str(tmp_path)))
        assert isinstance(store, JsonAdapter)

    def test_sqlite_backend(self, tmp_path):
        store = build_selection_store(Settings(storage_backend="SQLite", db_url=f"sqlite:///{tmp_path}/x.db"))
        assert isinstance(store, SqliteAdapter)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_selection_store(Settings(storage_backend="firestore"))
