# services/api/core/viewer.py
"""
Secure viewer: turn a selection id back into page images.

    loading -> not_found | expired | error | ready

Only a load of an unexpired record bumps accessCount. Pages are rendered
one at a time in stored order; a page that fails becomes a placeholder and
the rest carry on.
"""
from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Union

from adapters.base import SelectionStore
from core.errors import PipelineError
from core.rasterizer import PageAsset
from core.renderer import Renderer
from models.selection import SelectionRecord, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 1.5
DEFAULT_DOWNLOAD_DELAY = 0.5
NO_SOURCE_MESSAGE = "No PDF URL available for this selection"

ProgressCallback = Callable[[int, int], None]
FetchSource = Callable[[str], Awaitable[bytes]]


class ViewerState(str, Enum):
    LOADING = "loading"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    ERROR = "error"
    READY = "ready"


@dataclass
class ViewerSession:
    selection_id: str
    state: ViewerState = ViewerState.LOADING
    record: Optional[SelectionRecord] = None
    assets: List[PageAsset] = field(default_factory=list)
    error: Optional[str] = None
    access_count: int = 0

    @property
    def ready_assets(self) -> List[PageAsset]:
        return [a for a in self.assets if a.ok]

    def asset_for(self, page_number: int) -> Optional[PageAsset]:
        return next((a for a in self.assets if a.page_number == page_number), None)


# ---------- download sinks ----------

class DownloadSink(Protocol):
    async def save(self, filename: str, data: bytes, content_type: str) -> None:
        ...


class ZipDownloadSink:
    """Collects saved files into one in-memory ZIP archive."""

    def __init__(self) -> None:
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_DEFLATED)
        self.filenames: List[str] = []

    async def save(self, filename: str, data: bytes, content_type: str) -> None:
        self._zip.writestr(filename, data)
        self.filenames.append(filename)

    def getvalue(self) -> bytes:
        self._zip.close()
        return self._buffer.getvalue()


class DirectoryDownloadSink:
    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    async def save(self, filename: str, data: bytes, content_type: str) -> None:
        (self.directory / Path(filename).name).write_bytes(data)


def wants_bulk_download(query: Mapping[str, str]) -> bool:
    return (query.get("download") or "").strip().lower() == "all"


# ---------- viewer ----------

class SecureViewer:
    def __init__(
        self,
        store: SelectionStore,
        fetch_source: FetchSource,
        renderer: Renderer,
        *,
        scale: float = DEFAULT_SCALE,
        download_delay: float = DEFAULT_DOWNLOAD_DELAY,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.fetch_source = fetch_source
        self.renderer = renderer
        self.scale = scale
        self.download_delay = download_delay
        self.clock = clock
        self.sleep = sleep

    async def load(
        self,
        selection_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ViewerSession:
        session = ViewerSession(selection_id=selection_id)

        try:
            record = self.store.get(selection_id)
        except PipelineError as e:
            logger.error(f"Error fetching selection {selection_id}: {e.message}")
            return self._fail(session, ViewerState.ERROR, "Failed to load selected pages")

        if record is None:
            return self._fail(session, ViewerState.NOT_FOUND, "Selection not found")
        session.record = record

        if record.is_expired(self.clock()):
            logger.info(f"Selection {selection_id} expired at {record.expires_at.isoformat()}")
            return self._fail(session, ViewerState.EXPIRED, "This link has expired")

        session.access_count = record.access_count
        try:
            self.store.increment_access(selection_id)
            session.access_count += 1
        except PipelineError as e:
            logger.warning(f"Could not update access count for {selection_id}: {e.message}")

        if not record.source_url:
            return self._fail(session, ViewerState.ERROR, NO_SOURCE_MESSAGE)

        try:
            pdf_bytes = await self.fetch_source(record.source_url)
        except PipelineError as e:
            logger.error(f"Error loading PDF for {selection_id}: {e.message}")
            return self._fail(session, ViewerState.ERROR, f"Failed to load PDF: {e.message}")

        total = len(record.selected_pages)
        for done, page_number in enumerate(record.selected_pages, start=1):
            session.assets.append(await self._render(pdf_bytes, page_number))
            if on_progress:
                on_progress(done, total)

        session.state = ViewerState.READY
        logger.info(
            f"✓ Selection {selection_id} ready: "
            f"{len(session.ready_assets)}/{total} pages rendered"
        )
        return session

    async def _render(self, pdf_bytes: bytes, page_number: int) -> PageAsset:
        try:
            data = await asyncio.to_thread(
                self.renderer.render_page, pdf_bytes, page_number, scale=self.scale
            )
        except Exception as e:
            logger.error(f"Error rendering page {page_number}: {e}")
            return PageAsset(page_number=page_number)
        return PageAsset(page_number=page_number, data=data)

    @staticmethod
    def _fail(session: ViewerSession, state: ViewerState, message: str) -> ViewerSession:
        session.state = state
        session.error = message
        return session

    # ---------- downloads ----------

    async def download_page(self, session: ViewerSession, page_number: int, sink: DownloadSink) -> bool:
        asset = session.asset_for(page_number)
        if asset is None or not asset.ok:
            return False
        await sink.save(asset.filename, asset.read_bytes(), asset.content_type)
        return True

    async def download_all(
        self,
        session: ViewerSession,
        sink: DownloadSink,
        on_progress: Optional[Callable[[int], None]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """
        Save every rendered page, one by one, `download_delay` seconds apart.
        Placeholders are skipped. Returns how many pages were saved.
        """
        if session.state is not ViewerState.READY:
            return 0

        saved = 0
        for i, asset in enumerate(session.ready_assets):
            if cancel is not None and cancel.is_set():
                logger.info(f"Bulk download cancelled after {saved} pages")
                break
            if i > 0:
                await self.sleep(self.download_delay)
            await sink.save(asset.filename, asset.read_bytes(), asset.content_type)
            saved += 1
            if on_progress:
                on_progress(saved)
        return saved


def session_payload(session: ViewerSession, proxy_url: Optional[str] = None) -> Dict:
    """JSON body for a ready session (matches schemas.selection.ViewerOut)."""
    record = session.record
    return {
        "state": session.state.value,
        "selectionId": session.selection_id,
        "sourceName": record.source_name,
        "selectedPages": list(record.selected_pages),
        "expiresAt": record.expires_at,
        "accessCount": session.access_count,
        "proxyUrl": proxy_url,
        "pages": [
            {
                "pageNumber": a.page_number,
                "ok": a.ok,
                "filename": a.filename,
                "dataUrl": a.data_url() or None,
            }
            for a in session.assets
        ],
    }
