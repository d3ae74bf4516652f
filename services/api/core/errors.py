# services/api/core/errors.py
"""
Error taxonomy for the page delivery pipeline and the secure viewer.

Every error carries a human-readable message and the HTTP status the API
reports for it. Per-page render failures are NOT errors at this level; they
are collected by the rasterizer as PageFailure entries.
"""
from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class. `status_code` is what the API boundary returns."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class ValidationError(PipelineError):
    """Missing email, empty/invalid page selection, missing or invalid source."""

    status_code = 400


class FetchError(PipelineError):
    """Source document could not be retrieved."""

    def __init__(self, message: str, *, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class ConversionError(PipelineError):
    """Every requested page failed to rasterize."""


class StorageError(PipelineError):
    """Selection record could not be persisted or read."""


class DeliveryError(PipelineError):
    """SMTP verification (stage="verify") or send (stage="send") failed."""

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage


class ExpiredLinkError(PipelineError):
    status_code = 410


class NotFoundError(PipelineError):
    status_code = 404
