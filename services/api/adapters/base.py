"""
Storage adapter interface for page selections.
Defines the contract that all selection-record backends must implement.
"""

from typing import Optional, Protocol

from models.selection import SelectionRecord


class SelectionStore(Protocol):
    """
    Protocol for the `pageSelections` collection.

    This allows swapping between SQLite, a JSON file and Google Sheets
    without changing the pipeline, the viewer or the routers.

    NOTE:
    - Backend failures surface as core.errors.StorageError.
    - Records are never deleted here; expiry is enforced when the viewer
      reads them.
    """

    def create(self, record: SelectionRecord) -> str:
        """
        Persist a new record.

        Returns:
            The record id (the public viewer key).
        """
        ...

    def get(self, selection_id: str) -> Optional[SelectionRecord]:
        """
        Fetch a record by id.

        Returns:
            The record, or None if there is no such id.
        """
        ...

    def increment_access(self, selection_id: str) -> None:
        """
        Add exactly 1 to accessCount.

        Raises:
            NotFoundError if the id does not exist.
        """
        ...
