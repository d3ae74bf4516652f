# services/api/core/renderer.py
"""
Page rendering capability.

Both the email pipeline and the secure viewer depend on the Renderer
protocol, not on pdfium directly. PdfiumRenderer loads the engine the first
time it is needed and reuses it for the life of the process.
"""
from __future__ import annotations

import importlib
import io
import logging
import threading
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class PageRenderError(Exception):
    """One page could not be rendered (bad page number, broken page, ...)."""


class Renderer(Protocol):
    def page_count(self, pdf_bytes: bytes) -> int:
        ...

    def render_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        *,
        scale: float,
        max_px: Optional[int] = None,
    ) -> bytes:
        """Render 1-based `page_number` to PNG bytes."""
        ...


class PdfiumRenderer:
    """
    Renderer backed by python-pdfium2 + Pillow.

    scale is a zoom factor, not DPI: DPI ≈ 72 * scale.

    pdfium itself is not thread-safe. Callers render from worker threads,
    so every call into the engine holds _render_lock.
    """

    def __init__(self) -> None:
        self._engine: Any = None
        self._lock = threading.Lock()
        self._render_lock = threading.Lock()

    def _pdfium(self) -> Any:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = importlib.import_module("pypdfium2")
                    logger.info("✓ PDF rendering engine initialized (pypdfium2)")
        return self._engine

    def _open(self, pdf_bytes: bytes) -> Any:
        pdfium = self._pdfium()
        try:
            return pdfium.PdfDocument(pdf_bytes)
        except pdfium.PdfiumError as e:
            raise PageRenderError(f"Unable to open PDF: {e}") from e

    def page_count(self, pdf_bytes: bytes) -> int:
        with self._render_lock:
            doc = self._open(pdf_bytes)
            try:
                return len(doc)
            finally:
                doc.close()

    def render_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        *,
        scale: float,
        max_px: Optional[int] = None,
    ) -> bytes:
        with self._render_lock:
            doc = self._open(pdf_bytes)
            try:
                total = len(doc)
                if page_number < 1 or page_number > total:
                    raise PageRenderError(
                        f"Page {page_number} is out of range (document has {total} pages)"
                    )
                page = doc[page_number - 1]
                try:
                    image = page.render(scale=scale).to_pil()
                finally:
                    page.close()
            finally:
                doc.close()

        image = image.convert("RGB")
        if max_px and max(image.size) > max_px:
            # Keep aspect ratio, longest side == max_px
            image.thumbnail((max_px, max_px))

        bio = io.BytesIO()
        image.save(bio, format="PNG")
        return bio.getvalue()


_renderer_instance: Optional[PdfiumRenderer] = None

def get_renderer() -> PdfiumRenderer:
    """Singleton pattern for the renderer."""
    global _renderer_instance
    if _renderer_instance is None:
        _renderer_instance = PdfiumRenderer()
    return _renderer_instance
