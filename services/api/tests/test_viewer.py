"""
Tests for the secure viewer: states, access counting, rendering, downloads.

Run with: pytest tests/test_viewer.py -v
"""
import asyncio
import io
import threading
import zipfile
from datetime import timedelta

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import (
    PDF_URL,
    T0,
    FailingStore,
    FakeRenderer,
    FixedClock,
    RecordingSleep,
    fake_png,
)
from core.errors import FetchError
from core.viewer import (
    NO_SOURCE_MESSAGE,
    DirectoryDownloadSink,
    SecureViewer,
    ViewerState,
    ZipDownloadSink,
    wants_bulk_download,
)
from models.selection import SelectionRecord


def _record(store, pages=(2, 5, 9), source_url=PDF_URL):
    record = SelectionRecord.new(
        email="a@b.com",
        selected_pages=list(pages),
        source_url=source_url,
        source_name="Worksheet pack",
        now=T0,
    )
    store.create(record)
    return record


class FakeSource:
    def __init__(self, error=None):
        self.error = error
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if self.error:
            raise self.error
        return b"%PDF-1.4 fake"


def _viewer(store, renderer=None, source=None, now=T0 + timedelta(days=1), sleep=None):
    return SecureViewer(
        store,
        source or FakeSource(),
        renderer or FakeRenderer(),
        clock=FixedClock(now),
        sleep=sleep or RecordingSleep(),
    )


class TestViewerLoad:
    """load() state transitions."""

    def test_ready_and_counted(self, store):
        """Scenario D: unexpired load → ready, accessCount 0 → 1, one asset per page."""
        record = _record(store)
        session = asyncio.run(_viewer(store).load(record.id))

        assert session.state is ViewerState.READY
        assert store.get(record.id).access_count == 1
        assert session.access_count == 1
        assert [a.page_number for a in session.assets] == [2, 5, 9]
        assert all(a.ok for a in session.assets)
        assert session.assets[0].read_bytes() == fake_png(2)

    def test_expired(self, store):
        """Scenario E: 8 days later → expired, counter untouched, nothing fetched."""
        record = _record(store)
        source = FakeSource()
        session = asyncio.run(_viewer(store, source=source, now=T0 + timedelta(days=8)).load(record.id))

        assert session.state is ViewerState.EXPIRED
        assert store.get(record.id).access_count == 0
        assert source.urls == []
        assert session.assets == []

    def test_expiry_boundary(self, store):
        """Exactly at expiresAt is still valid; one second later is not."""
        record = _record(store)
        at = asyncio.run(_viewer(store, now=record.expires_at).load(record.id))
        after = asyncio.run(_viewer(store, now=record.expires_at + timedelta(seconds=1)).load(record.id))
        assert at.state is ViewerState.READY
        assert after.state is ViewerState.EXPIRED

    def test_each_load_counts_once(self, store):
        """Two loads, two increments."""
        record = _record(store)
        viewer = _viewer(store)
        asyncio.run(viewer.load(record.id))
        asyncio.run(viewer.load(record.id))
        assert store.get(record.id).access_count == 2

    def test_not_found(self, store):
        """Unknown id → not_found."""
        session = asyncio.run(_viewer(store).load("missing"))
        assert session.state is ViewerState.NOT_FOUND

    def test_store_read_failure(self):
        """A broken store → error, not an exception."""
        store = FailingStore(fail_get=True)
        session = asyncio.run(_viewer(store).load("whatever"))
        assert session.state is ViewerState.ERROR

    def test_increment_failure_does_not_block(self):
        """Counting is best-effort; rendering still happens."""
        store = FailingStore(fail_increment=True)
        record = _record(store)
        session = asyncio.run(_viewer(store).load(record.id))
        assert session.state is ViewerState.READY
        assert len(session.assets) == 3
        assert session.access_count == 0

    def test_no_source_url(self, store):
        """Pre-rendered selections can't be re-rendered."""
        record = _record(store, source_url=None)
        session = asyncio.run(_viewer(store).load(record.id))
        assert session.state is ViewerState.ERROR
        assert session.error == NO_SOURCE_MESSAGE
        assert store.get(record.id).access_count == 1

    def test_source_fetch_failure(self, store):
        """Upstream trouble → error state."""
        record = _record(store)
        source = FakeSource(error=FetchError("Failed to download PDF: 404 Not Found", upstream_status=404))
        session = asyncio.run(_viewer(store, source=source).load(record.id))
        assert session.state is ViewerState.ERROR
        assert "404" in session.error

    def test_page_failure_gives_placeholder(self, store):
        """A broken page becomes an empty asset; the others render."""
        record = _record(store)
        session = asyncio.run(_viewer(store, renderer=FakeRenderer(fail_pages=[5])).load(record.id))
        assert session.state is ViewerState.READY
        assert [a.ok for a in session.assets] == [True, False, True]
        assert session.assets[1].data_url() == ""

    def test_stored_order_and_progress(self, store):
        """Pages render in stored order, reporting progress after each."""
        record = _record(store, pages=(9, 1, 4))
        renderer = FakeRenderer()
        progress = []
        asyncio.run(_viewer(store, renderer=renderer).load(record.id, on_progress=lambda d, t: progress.append((d, t))))
        assert renderer.calls == [9, 1, 4]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_renders_on_worker_thread(self, store):
        """The loop thread never runs the renderer."""
        record = _record(store)
        renderer = FakeRenderer()
        asyncio.run(_viewer(store, renderer=renderer).load(record.id))
        assert len(renderer.threads) == 3
        assert threading.get_ident() not in renderer.threads

    def test_data_url(self, store):
        """Rendered assets can be inlined as data URLs."""
        record = _record(store, pages=(1,))
        session = asyncio.run(_viewer(store).load(record.id))
        assert session.assets[0].data_url().startswith("data:image/png;base64,")


class TestViewerDownloads:
    """Single and bulk downloads."""

    def test_download_all_sequential_with_delay(self, store):
        """Every page saved once, delay between consecutive saves."""
        record = _record(store)
        sleep = RecordingSleep()
        viewer = _viewer(store, sleep=sleep)
        session = asyncio.run(viewer.load(record.id))

        sink = ZipDownloadSink()
        counts = []
        saved = asyncio.run(viewer.download_all(session, sink, on_progress=counts.append))

        assert saved == 3
        assert counts == [1, 2, 3]
        assert sleep.delays == [0.5, 0.5]
        with zipfile.ZipFile(io.BytesIO(sink.getvalue())) as zf:
            assert zf.namelist() == ["page-2.png", "page-5.png", "page-9.png"]
            assert zf.read("page-5.png") == fake_png(5)

    def test_download_all_skips_placeholders(self, store):
        """Failed pages aren't downloaded."""
        record = _record(store)
        viewer = _viewer(store, renderer=FakeRenderer(fail_pages=[2]))
        session = asyncio.run(viewer.load(record.id))
        sink = ZipDownloadSink()
        assert asyncio.run(viewer.download_all(session, sink)) == 2
        assert sink.filenames == ["page-5.png", "page-9.png"]

    def test_download_all_cancel(self, store):
        """A set cancel event stops the loop before the next save."""
        record = _record(store)
        viewer = _viewer(store)
        session = asyncio.run(viewer.load(record.id))
        sink = ZipDownloadSink()

        async def run():
            cancel = asyncio.Event()
            return await viewer.download_all(
                session, sink, on_progress=lambda n: cancel.set() if n == 1 else None, cancel=cancel
            )

        assert asyncio.run(run()) == 1
        assert sink.filenames == ["page-2.png"]

    def test_download_all_not_ready(self, store):
        """Nothing to download from an expired session."""
        record = _record(store)
        viewer = _viewer(store, now=T0 + timedelta(days=8))
        session = asyncio.run(viewer.load(record.id))
        assert asyncio.run(viewer.download_all(session, ZipDownloadSink())) == 0

    def test_download_page_to_directory(self, store, tmp_path):
        """Single-page download writes page-<n>.png."""
        record = _record(store)
        viewer = _viewer(store)
        session = asyncio.run(viewer.load(record.id))
        sink = DirectoryDownloadSink(tmp_path / "out")

        assert asyncio.run(viewer.download_page(session, 5, sink)) is True
        assert (tmp_path / "out" / "page-5.png").read_bytes() == fake_png(5)
        assert asyncio.run(viewer.download_page(session, 7, sink)) is False

    def test_wants_bulk_download(self):
        """Only download=all triggers the bulk action."""
        assert wants_bulk_download({"download": "all"})
        assert wants_bulk_download({"download": "ALL"})
        assert not wants_bulk_download({"download": "1"})
        assert not wants_bulk_download({})
