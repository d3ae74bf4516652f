# services/api/core/pipeline.py
"""
POST /api/send-pdf-pages, minus HTTP.

intake() validates the body before anything touches the network or disk.
PageDeliveryPipeline.run() then opens a scratch scope and walks the steps:

    fetch_document -> rasterize_pages -> persist_selection -> send_email

Each step returns Ok or Fatal. The first Fatal stops the run; the scope is
closed on every exit path. Per-page failures are collected in ctx.failures
and never stop the run on their own.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from core.email_sender import (
    EmailDispatcher,
    attached_assets,
    build_download_all_url,
    build_subject,
    build_view_url,
    render_html_body,
    render_text_body,
)
from core.errors import PipelineError, StorageError, ValidationError
from core.fetcher import DocumentFetcher, is_valid_source_url, normalize_source_url
from core.rasterizer import PageAsset, PageFailure, PageRasterizer
from core.scratch import ScratchManager, ScratchScope, new_job_id
from adapters.base import SelectionStore
from models.selection import SelectionRecord, utcnow
from schemas.selection import SelectionRequest

logger = logging.getLogger(__name__)


# ---------- Intake ----------

@dataclass(frozen=True)
class ValidatedSelection:
    email: str
    selected_pages: List[int]
    source_url: Optional[str] = None
    source_name: Optional[str] = None
    product_id: Optional[str] = None
    page_images: Optional[List[Optional[str]]] = None

    @property
    def prerendered(self) -> bool:
        return bool(self.page_images)


def _coerce_page(value) -> int:
    # bool is an int subclass; true/false are not page numbers
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, int):
        page = value
    elif isinstance(value, float) and value.is_integer():
        page = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        page = int(value.strip())
    else:
        raise ValueError(value)
    if page < 1:
        raise ValueError(value)
    return page


def dedupe_pages(pages: Sequence[int]) -> List[int]:
    """Drop repeats, first occurrence wins, caller order kept."""
    seen = set()
    out = []
    for p in pages:
        if p not in seen:
            seen.add(p)
            out.append(p)
    return out


def dedupe_page_images(
    pages: Sequence[int],
    images: Sequence[Optional[str]],
) -> Tuple[List[int], List[Optional[str]]]:
    """
    Image i belongs to pages[i]. A repeated page is dropped together with
    its image so the two lists stay aligned. Images past the end of the
    page list are kept; the rasterizer reports them.
    """
    seen = set()
    kept_pages: List[int] = []
    kept_images: List[Optional[str]] = []
    for i, page in enumerate(pages):
        if page in seen:
            continue
        seen.add(page)
        kept_pages.append(page)
        if i < len(images):
            kept_images.append(images[i])
    kept_images.extend(images[len(pages):])
    return kept_pages, kept_images


def intake(request: SelectionRequest) -> ValidatedSelection:
    email = (request.email or "").strip()
    if not email:
        raise ValidationError("Missing email address")

    if not request.selected_pages:
        raise ValidationError("No pages selected")
    try:
        pages = [_coerce_page(p) for p in request.selected_pages]
    except ValueError as e:
        raise ValidationError(f"Invalid page number: {e}")

    images = request.page_images or None
    if images:
        pages, images = dedupe_page_images(pages, images)
    else:
        pages = dedupe_pages(pages)
    source_url = (request.pdf_url or "").strip() or None

    if source_url:
        if not is_valid_source_url(source_url):
            if not images:
                raise ValidationError("Invalid PDF URL format")
            # Pre-rendered pages still go out; the viewer just won't have a source.
            logger.warning(f"Ignoring invalid PDF URL for pre-rendered request: {source_url}")
            source_url = None
        else:
            source_url = normalize_source_url(source_url)
    elif not images:
        raise ValidationError("Missing PDF URL")

    return ValidatedSelection(
        email=email,
        selected_pages=pages,
        source_url=source_url,
        source_name=(request.pdf_name or "").strip() or None,
        product_id=(request.product_id or "").strip() or None,
        page_images=list(images) if images else None,
    )


# ---------- Step plumbing ----------

@dataclass(frozen=True)
class Ok:
    pass


@dataclass(frozen=True)
class Fatal:
    error: PipelineError


StepOutcome = Union[Ok, Fatal]


@dataclass
class PipelineContext:
    selection: ValidatedSelection
    scope: ScratchScope
    started_at: datetime
    document_path: Optional[Path] = None
    assets: List[PageAsset] = field(default_factory=list)
    failures: List[PageFailure] = field(default_factory=list)
    record: Optional[SelectionRecord] = None
    record_stored: bool = False
    message_id: Optional[str] = None


Step = Callable[[PipelineContext], Awaitable[StepOutcome]]


@dataclass
class DeliveryResult:
    email: str
    pages: List[int]
    selection_id: str
    view_url: str
    sent_at: datetime
    images_attached: int
    failed_pages: List[int]
    record_stored: bool
    message_id: Optional[str]

    def details(self) -> dict:
        return {
            "email": self.email,
            "pages": self.pages,
            "viewUrl": self.view_url,
            "selectionId": self.selection_id,
            "sentAt": self.sent_at,
            "imagesAttached": self.images_attached,
            "failedPages": self.failed_pages,
            "recordStored": self.record_stored,
            "messageId": self.message_id,
        }


# ---------- Driver ----------

class PageDeliveryPipeline:
    def __init__(
        self,
        *,
        store: SelectionStore,
        mailer: EmailDispatcher,
        fetcher: DocumentFetcher,
        rasterizer: PageRasterizer,
        scratch: ScratchManager,
        base_url: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.fetcher = fetcher
        self.rasterizer = rasterizer
        self.scratch = scratch
        self.base_url = base_url
        self.clock = clock

    @property
    def steps(self) -> List[Step]:
        return [
            self.fetch_document,
            self.rasterize_pages,
            self.persist_selection,
            self.send_email,
        ]

    async def run(self, request: Union[SelectionRequest, ValidatedSelection]) -> DeliveryResult:
        """
        Raises the PipelineError of the first Fatal step. ValidationError is
        raised before a scope exists, so a rejected request leaves nothing
        behind.
        """
        selection = request if isinstance(request, ValidatedSelection) else intake(request)
        logger.info(
            f"Processing request: email={selection.email} pages={selection.selected_pages} "
            f"prerendered={selection.prerendered}"
        )

        job_id = new_job_id()
        with self.scratch.open_scope(job_id) as scope:
            ctx = PipelineContext(selection=selection, scope=scope, started_at=self.clock())
            for step in self.steps:
                outcome = await step(ctx)
                if isinstance(outcome, Fatal):
                    logger.error(f"✗ {step.__name__} failed: {outcome.error.message}")
                    raise outcome.error

        record = ctx.record
        return DeliveryResult(
            email=selection.email,
            pages=selection.selected_pages,
            selection_id=record.id,
            view_url=build_view_url(self.base_url, record.id),
            sent_at=self.clock(),
            images_attached=len(ctx.assets),
            failed_pages=[f.page_number for f in ctx.failures],
            record_stored=ctx.record_stored,
            message_id=ctx.message_id,
        )

    # ---------- steps ----------

    async def fetch_document(self, ctx: PipelineContext) -> StepOutcome:
        if ctx.selection.prerendered:
            logger.info("Pre-rendered images supplied, skipping PDF download")
            return Ok()
        logger.info(f"Fetching PDF from: {ctx.selection.source_url}")
        try:
            ctx.document_path = await self.fetcher.fetch_into(ctx.selection.source_url, ctx.scope)
        except PipelineError as e:
            return Fatal(e)
        return Ok()

    async def rasterize_pages(self, ctx: PipelineContext) -> StepOutcome:
        selection = ctx.selection
        try:
            if selection.prerendered:
                result = await asyncio.to_thread(
                    self.rasterizer.persist_prerendered,
                    selection.page_images, selection.selected_pages, ctx.scope,
                )
            else:
                # pdfium rendering is CPU-bound; keep it off the event loop
                result = await asyncio.to_thread(
                    self.rasterizer.rasterize,
                    ctx.document_path, selection.selected_pages, ctx.scope,
                )
        except PipelineError as e:
            return Fatal(e)

        ctx.assets.extend(result.assets)
        ctx.failures.extend(result.failures)
        if result.failures:
            logger.warning(f"Pages that failed to convert: {result.failed_pages}")
        return Ok()

    async def persist_selection(self, ctx: PipelineContext) -> StepOutcome:
        selection = ctx.selection
        ctx.record = SelectionRecord.new(
            email=selection.email,
            selected_pages=selection.selected_pages,
            product_id=selection.product_id,
            source_url=selection.source_url,
            source_name=selection.source_name,
            now=ctx.started_at,
        )
        try:
            self.store.create(ctx.record)
            ctx.record_stored = True
            logger.info(f"✓ Selection stored: {ctx.record.id}")
        except StorageError as e:
            # The email still goes out; its link just won't resolve.
            logger.error(f"✗ Failed to store selection {ctx.record.id}: {e.message}")
        return Ok()

    async def send_email(self, ctx: PipelineContext) -> StepOutcome:
        selection = ctx.selection
        record = ctx.record
        assets = attached_assets(ctx.assets)
        view_url = build_view_url(self.base_url, record.id)
        download_url = build_download_all_url(self.base_url, record.id)

        text_body = render_text_body(
            recipient=selection.email,
            source_name=selection.source_name,
            selected_pages=selection.selected_pages,
            view_url=view_url,
            download_url=download_url,
            expires_at=record.expires_at,
            attached_count=len(assets),
        )
        html_body = render_html_body(
            recipient=selection.email,
            source_name=selection.source_name,
            selected_pages=selection.selected_pages,
            view_url=view_url,
            download_url=download_url,
            expires_at=record.expires_at,
            assets=assets,
        )
        try:
            ctx.message_id = await self.mailer.send(
                recipient=selection.email,
                subject=build_subject(selection.source_name),
                text_body=text_body,
                html_body=html_body,
                assets=assets,
            )
        except PipelineError as e:
            return Fatal(e)
        return Ok()
