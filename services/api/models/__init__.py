"""
Domain models for the page delivery service.
"""
from .selection import (
    PAGE_SELECTIONS,
    SELECTION_TTL,
    STORAGE_FIELDS,
    SelectionRecord,
    utcnow,
)

__all__ = [
    "PAGE_SELECTIONS",
    "SELECTION_TTL",
    "STORAGE_FIELDS",
    "SelectionRecord",
    "utcnow",
]
