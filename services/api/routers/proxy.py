# services/api/routers/proxy.py
import logging
from typing import Optional

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse, StreamingResponse

from core.errors import FetchError, ValidationError
from core.fetcher import is_valid_source_url
from dependencies import Fetcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}

NO_STORE_HEADERS = {
    "Content-Disposition": "inline",
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
    "X-Content-Type-Options": "nosniff",
}


@router.get("/pdf-proxy")
async def pdf_proxy(fetcher: Fetcher, url: Optional[str] = Query(None)):
    """
    Same-origin access to a remote PDF for the viewer.
    Upstream status is passed through; the source URL is never echoed back.
    """
    if not url or not is_valid_source_url(url):
        raise ValidationError("Missing or invalid url parameter")

    try:
        upstream = await fetcher.open_upstream(url)
    except FetchError as e:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": e.message},
            headers=CORS_HEADERS,
        )

    if not upstream.is_success:
        logger.error(f"[pdf-proxy] upstream returned {upstream.status_code}")
        return JSONResponse(
            status_code=upstream.status_code,
            content={"error": f"Failed to fetch document: {upstream.reason_phrase}".strip()},
            headers=CORS_HEADERS,
        )

    content = upstream.content
    content_type = upstream.headers.get("content-type") or "application/pdf"
    if "pdf" not in content_type.lower() and "octet-stream" not in content_type.lower():
        logger.warning(f"[pdf-proxy] upstream returned non-PDF content: {content_type}")

    logger.info(f"[pdf-proxy] proxied {len(content)} bytes")
    return StreamingResponse(
        iter([content]),
        media_type=content_type,
        headers={
            **CORS_HEADERS,
            **NO_STORE_HEADERS,
            "Content-Length": str(len(content)),
        },
    )
