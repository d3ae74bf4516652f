# services/api/adapters/__init__.py
from __future__ import annotations

import logging

from settings import Settings

from .base import SelectionStore

logger = logging.getLogger(__name__)


def build_selection_store(settings: Settings) -> SelectionStore:
    """Construct the configured backend once, at process start."""
    backend = settings.storage_backend.lower()
    logger.info(f"🔧 Storage Backend: {backend.upper()}")

    if backend == "sqlite":
        from .sqlite import SqliteAdapter

        store = SqliteAdapter.from_url(settings.db_url)
        logger.info(f"✓ SQLite adapter initialized ({settings.db_url.split('://')[0]})")
        return store

    if backend == "json":
        from .json import JsonAdapter

        store = JsonAdapter(settings.json_data_dir)
        logger.info(f"✓ JSON adapter initialized ({settings.json_data_dir})")
        return store

    if backend == "sheets":
        from .sheets import SheetsAdapter

        try:
            store = SheetsAdapter.from_service_account(
                google_sa_json=settings.resolved_google_sa_json(),
                spreadsheet_id=settings.sheets_spreadsheet_id,
            )
        except Exception as e:
            logger.error(f"✗ Failed to initialize Google Sheets: {e}")
            raise
        logger.info("✓ Google Sheets adapter initialized")
        return store

    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


__all__ = ["SelectionStore", "build_selection_store"]
