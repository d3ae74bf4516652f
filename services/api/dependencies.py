# services/api/dependencies.py
"""
Request-scoped access to the collaborators create_app() put on app.state.
"""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from adapters.base import SelectionStore
from core.fetcher import DocumentFetcher
from core.pipeline import PageDeliveryPipeline
from core.rasterizer import PageRasterizer
from core.scratch import ScratchManager
from core.viewer import SecureViewer
from settings import Settings


def get_store(request: Request) -> SelectionStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage backend not initialized",
        )
    return store


def get_fetcher(request: Request) -> DocumentFetcher:
    return request.app.state.fetcher


def get_pipeline(
    request: Request,
    store: SelectionStore = Depends(get_store),
) -> PageDeliveryPipeline:
    state = request.app.state
    settings: Settings = state.settings
    return PageDeliveryPipeline(
        store=store,
        mailer=state.mailer,
        fetcher=state.fetcher,
        rasterizer=PageRasterizer(
            state.renderer,
            dpi=settings.raster_dpi,
            max_px=settings.raster_max_px,
        ),
        scratch=ScratchManager(settings.resolved_scratch_root()),
        base_url=settings.base_url,
        clock=state.clock,
    )


def get_viewer(
    request: Request,
    store: SelectionStore = Depends(get_store),
) -> SecureViewer:
    state = request.app.state
    settings: Settings = state.settings
    return SecureViewer(
        store,
        state.fetcher.fetch,
        state.renderer,
        scale=settings.viewer_scale,
        download_delay=settings.download_delay_seconds,
        clock=state.clock,
        sleep=state.sleep,
    )


# DI aliases
Fetcher = Annotated[DocumentFetcher, Depends(get_fetcher)]
Pipeline = Annotated[PageDeliveryPipeline, Depends(get_pipeline)]
Viewer = Annotated[SecureViewer, Depends(get_viewer)]
