# services/api/routers/viewer.py
from __future__ import annotations

import logging
import urllib.parse

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from core.errors import ExpiredLinkError, NotFoundError
from core.viewer import ViewerState, ZipDownloadSink, session_payload, wants_bulk_download
from dependencies import Viewer
from schemas.selection import ViewerOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/view", tags=["viewer"])

STATE_STATUS = {
    ViewerState.NOT_FOUND: NotFoundError.status_code,
    ViewerState.EXPIRED: ExpiredLinkError.status_code,
    ViewerState.ERROR: status.HTTP_502_BAD_GATEWAY,
}


@router.get("/{selection_id}", response_model=ViewerOut)
async def view_selection(selection_id: str, request: Request, viewer: Viewer):
    """
    Load a shared selection and render its pages.

      • not found → 404, expired → 410, source/storage trouble → 502
      • ?download=all → ZIP of every rendered page instead of JSON
    """
    session = await viewer.load(selection_id)

    if session.state is not ViewerState.READY:
        return JSONResponse(
            status_code=STATE_STATUS.get(session.state, status.HTTP_500_INTERNAL_SERVER_ERROR),
            content={"state": session.state.value, "error": session.error},
        )

    if wants_bulk_download(request.query_params):
        sink = ZipDownloadSink()
        count = await viewer.download_all(session, sink)
        logger.info(f"Bulk download for {selection_id}: {count} pages")
        return Response(
            content=sink.getvalue(),
            media_type="application/zip",
            headers={
                "Content-Disposition": f'attachment; filename="selected-pages-{selection_id}.zip"',
                "X-Pages-Downloaded": str(count),
            },
        )

    proxy_url = f"/pdf-proxy?url={urllib.parse.quote(session.record.source_url, safe='')}"
    return session_payload(session, proxy_url=proxy_url)
