"""
JSON file storage adapter for page selections.
Simple file-based storage for quick demos and testing.
One process only: the lock serializes writers inside this process, not across processes.
"""
import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.errors import NotFoundError, StorageError
from models.selection import PAGE_SELECTIONS, SelectionRecord


class JsonAdapter:
    """
    JSON file-based storage adapter.
    Stores every record in <data_dir>/pageSelections.json.
    Uses atomic file operations for basic consistency.
    """

    def __init__(self, data_dir: str = "data"):
        """
        Initialize the JSON adapter.

        Args:
            data_dir: Directory to store JSON files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.selections_file = self.data_dir / f"{PAGE_SELECTIONS}.json"
        self._lock = threading.Lock()

        if not self.selections_file.exists():
            self._write_file(self.selections_file, [])

    def _read_file(self, filepath: Path) -> List[Dict[str, Any]]:
        """Read and parse a JSON file."""
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt selections file {filepath}: {e}") from e

    def _write_file(self, filepath: Path, data: List[Dict[str, Any]]) -> None:
        """Write data to a JSON file atomically."""
        # Write to temporary file first
        tmp_file = filepath.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        # Atomic rename
        tmp_file.replace(filepath)

    def create(self, record: SelectionRecord) -> str:
        """Append a new selection record."""
        with self._lock:
            try:
                rows = self._read_file(self.selections_file)
                if any(r.get("id") == record.id for r in rows):
                    raise StorageError(f"Selection {record.id} already exists")
                rows.append(record.to_storage())
                self._write_file(self.selections_file, rows)
            except OSError as e:
                raise StorageError(f"Failed to store selection {record.id}: {e}") from e
        return record.id

    def get(self, selection_id: str) -> Optional[SelectionRecord]:
        """Fetch a selection record by id."""
        try:
            rows = self._read_file(self.selections_file)
        except OSError as e:
            raise StorageError(f"Failed to load selection {selection_id}: {e}") from e

        row = next((r for r in rows if r.get("id") == selection_id), None)
        if row is None:
            return None
        try:
            return SelectionRecord.from_storage(row)
        except ValueError as e:
            raise StorageError(f"Malformed selection {selection_id}: {e}") from e

    def increment_access(self, selection_id: str) -> None:
        """Bump accessCount by one (read-modify-write under the lock)."""
        with self._lock:
            try:
                rows = self._read_file(self.selections_file)
                row = next((r for r in rows if r.get("id") == selection_id), None)
                if row is None:
                    raise NotFoundError(f"Selection {selection_id} not found")
                row["accessCount"] = int(row.get("accessCount") or 0) + 1
                self._write_file(self.selections_file, rows)
            except OSError as e:
                raise StorageError(f"Failed to update access count for {selection_id}: {e}") from e
