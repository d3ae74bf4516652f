# services/api/core/fetcher.py
"""
Source document retrieval.

One GET per call, no retries. The httpx client is created once at process
start (see main.create_app) and shared by the pipeline, the viewer and the
/pdf-proxy route.
"""
from __future__ import annotations

import logging
import urllib.parse
from pathlib import Path

import httpx

from core.errors import FetchError, ValidationError
from core.scratch import ScratchScope

logger = logging.getLogger(__name__)

DOCUMENT_FILENAME = "document.pdf"


def is_valid_source_url(url: str | None) -> bool:
    if not url or not url.strip():
        return False
    parsed = urllib.parse.urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_source_url(url: str) -> str:
    """
    Convert Google Drive share links to direct-download links.
    Anything else is returned stripped but otherwise untouched.
    """
    url = url.strip()
    if "drive.google.com" not in url:
        return url

    if "/folders/" in url:
        raise ValidationError(
            "This is a Google Drive FOLDER URL. Please provide a FILE URL instead."
        )
    if "/file/d/" in url:
        file_id = url.split("/file/d/")[1].split("/")[0].split("?")[0]
    elif "id=" in url:
        file_id = url.split("id=")[1].split("&")[0]
    else:
        raise ValidationError("Invalid Google Drive URL format. Please use a direct file link.")

    direct = f"https://drive.google.com/uc?export=download&id={file_id}"
    logger.info(f"Converted Google Drive URL to: {direct}")
    return direct


def make_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


class DocumentFetcher:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def open_upstream(self, url: str) -> httpx.Response:
        """
        Single GET, body fully read. Returns the response whatever its status
        so the proxy can forward it; transport failures raise FetchError.
        """
        target = normalize_source_url(url)
        try:
            return await self.client.get(target)
        except httpx.TimeoutException:
            logger.error(f"Timeout fetching PDF: {target}")
            raise FetchError(f"Failed to download PDF: timeout fetching {target}")
        except httpx.RequestError as e:
            logger.error(f"Error fetching PDF: {e}")
            raise FetchError(f"Failed to download PDF: {e}")

    async def fetch(self, url: str) -> bytes:
        response = await self.open_upstream(url)
        if not response.is_success:
            logger.error(f"Failed to fetch PDF: {response.status_code}")
            raise FetchError(
                f"Failed to download PDF: {response.status_code} {response.reason_phrase}".strip(),
                upstream_status=response.status_code,
            )
        data = response.content
        logger.info(f"PDF downloaded successfully: {len(data) / 1024:.2f} KB")
        return data

    async def fetch_into(self, url: str, scope: ScratchScope) -> Path:
        data = await self.fetch(url)
        path = scope.file(DOCUMENT_FILENAME)
        path.write_bytes(data)
        logger.info(f"PDF saved to: {path}")
        return path
