"""
Shared fixtures and fakes for the API tests.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import httpx
import pytest

from core.errors import DeliveryError, NotFoundError, StorageError
from core.fetcher import DocumentFetcher
from core.rasterizer import PageAsset
from core.renderer import PageRenderError
from models.selection import SelectionRecord

PDF_URL = "https://x/doc.pdf"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def fake_png(page_number: int) -> bytes:
    return b"\x89PNG\r\n\x1a\n" + f"fake-page-{page_number}".encode()


class FakeRenderer:
    """Pretends every document has `pages` pages; `fail_pages` always blow up."""

    def __init__(self, pages: int = 10, fail_pages: Sequence[int] = ()):
        self.pages = pages
        self.fail_pages = set(fail_pages)
        self.calls: List[int] = []
        self.threads: List[int] = []

    def page_count(self, pdf_bytes: bytes) -> int:
        return self.pages

    def render_page(self, pdf_bytes, page_number, *, scale, max_px=None):
        self.calls.append(page_number)
        self.threads.append(threading.get_ident())
        if page_number in self.fail_pages:
            raise RuntimeError(f"boom on page {page_number}")
        if page_number < 1 or page_number > self.pages:
            raise PageRenderError(f"Page {page_number} is out of range")
        return fake_png(page_number)


class FakeMailer:
    def __init__(self, error: Optional[DeliveryError] = None):
        self.error = error
        self.sent: List[Dict] = []

    async def send(self, *, recipient, subject, text_body, html_body, assets: Sequence[PageAsset]):
        if self.error is not None:
            raise self.error
        self.sent.append(
            {
                "recipient": recipient,
                "subject": subject,
                "text_body": text_body,
                "html_body": html_body,
                "filenames": [a.filename for a in assets],
                "payloads": [a.read_bytes() for a in assets],
                "content_types": [a.content_type for a in assets],
            }
        )
        return f"<msg-{len(self.sent)}@test>"


class InMemoryStore:
    """Keeps rows in the persisted (camelCase) shape, like the real backends."""

    def __init__(self):
        self.rows: Dict[str, Dict] = {}

    def create(self, record: SelectionRecord) -> str:
        self.rows[record.id] = record.to_storage()
        return record.id

    def get(self, selection_id: str) -> Optional[SelectionRecord]:
        row = self.rows.get(selection_id)
        return SelectionRecord.from_storage(row) if row else None

    def increment_access(self, selection_id: str) -> None:
        if selection_id not in self.rows:
            raise NotFoundError(f"Selection {selection_id} not found")
        self.rows[selection_id]["accessCount"] += 1


class FailingStore(InMemoryStore):
    def __init__(self, fail_create=False, fail_get=False, fail_increment=False):
        super().__init__()
        self.fail_create = fail_create
        self.fail_get = fail_get
        self.fail_increment = fail_increment

    def create(self, record):
        if self.fail_create:
            raise StorageError("database is locked")
        return super().create(record)

    def get(self, selection_id):
        if self.fail_get:
            raise StorageError("database is locked")
        return super().get(selection_id)

    def increment_access(self, selection_id):
        if self.fail_increment:
            raise StorageError("database is locked")
        super().increment_access(selection_id)


class FixedClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_fetcher(handler) -> DocumentFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return DocumentFetcher(client)


def pdf_handler(pdf: bytes, *, url: str = PDF_URL, calls: Optional[List[str]] = None):
    """Serves `pdf` at `url`, 404 for anything else."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        if str(request.url) == url:
            return httpx.Response(200, content=pdf, headers={"content-type": "application/pdf"})
        return httpx.Response(404, content=b"not here")

    return handler


@pytest.fixture(scope="session")
def pdf_bytes() -> bytes:
    """A real 10-page PDF, one big label per page."""
    from fpdf import FPDF

    pdf = FPDF()
    for n in range(1, 11):
        pdf.add_page()
        pdf.set_font("Helvetica", size=24)
        pdf.cell(0, 10, f"Page {n}")
    return bytes(pdf.output())


@pytest.fixture
def scratch_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def renderer():
    return FakeRenderer()
