# services/api/core/rasterizer.py
"""
Turns selected page numbers into page image assets.

Two modes:
  - render mode: rasterize pages of the fetched PDF one at a time
  - pre-rendered mode: persist images the client already rendered

A failure on one page is logged, recorded and skipped. Only a run where
NO page succeeds raises ConversionError.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from core.errors import ConversionError
from core.renderer import Renderer
from core.scratch import ScratchScope

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+)?;base64,", re.IGNORECASE)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/svg+xml": "svg",
}

DEFAULT_DPI = 300
DEFAULT_MAX_PX = 2000


@dataclass
class PageAsset:
    """
    One rendered page. Server-side assets point at a file inside the
    scratch scope; viewer assets carry their bytes in memory. A viewer
    placeholder for a failed page has neither.
    """
    page_number: int
    path: Optional[Path] = None
    data: Optional[bytes] = None
    content_type: str = "image/png"

    @property
    def filename(self) -> str:
        return f"page-{self.page_number}.{image_extension(self.content_type)}"

    @property
    def content_id(self) -> str:
        return f"page-{self.page_number}@pdf"

    @property
    def ok(self) -> bool:
        return bool(self.data) or (self.path is not None and self.path.exists())

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is not None:
            return self.path.read_bytes()
        return b""

    def data_url(self) -> str:
        if not self.ok:
            return ""
        encoded = base64.b64encode(self.read_bytes()).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


@dataclass
class PageFailure:
    page_number: int
    reason: str


@dataclass
class RasterResult:
    assets: List[PageAsset] = field(default_factory=list)
    failures: List[PageFailure] = field(default_factory=list)

    @property
    def failed_pages(self) -> List[int]:
        return [f.page_number for f in self.failures]


def image_extension(content_type: str) -> str:
    content_type = content_type.lower()
    return _EXTENSIONS.get(content_type, content_type.split("/")[-1])


def image_content_type(value: str) -> str:
    """MIME type named by a data URL; bare base64 is taken as PNG."""
    match = _DATA_URL_RE.match(value.strip())
    if match and match.group(1):
        return match.group(1).lower()
    return "image/png"


def decode_image_data(value: str) -> bytes:
    """Accepts data:image/...;base64,<...> or bare base64."""
    payload = _DATA_URL_RE.sub("", value.strip(), count=1)
    return base64.b64decode(payload, validate=True)


class PageRasterizer:
    def __init__(
        self,
        renderer: Renderer,
        *,
        dpi: int = DEFAULT_DPI,
        max_px: Optional[int] = DEFAULT_MAX_PX,
    ) -> None:
        self.renderer = renderer
        self.dpi = dpi
        self.max_px = max_px

    @property
    def scale(self) -> float:
        return self.dpi / 72.0

    def rasterize(
        self,
        document_path: Path,
        page_numbers: Sequence[int],
        scope: ScratchScope,
    ) -> RasterResult:
        """
        Render each page in the order given. Output assets keep that order;
        failed pages are left out of `assets` and listed in `failures`.
        """
        pdf_bytes = document_path.read_bytes()
        result = RasterResult()

        logger.info(f"Converting {len(page_numbers)} pages to images at {self.dpi} DPI...")
        for page_number in page_numbers:
            try:
                png = self.renderer.render_page(
                    pdf_bytes,
                    page_number,
                    scale=self.scale,
                    max_px=self.max_px,
                )
                path = scope.file(f"page-{page_number}.png")
                path.write_bytes(png)
                result.assets.append(PageAsset(page_number=page_number, path=path))
                logger.info(f"Generated image: {path}")
            except Exception as e:
                logger.error(f"Failed to convert page {page_number}: {e}")
                result.failures.append(PageFailure(page_number, str(e) or type(e).__name__))

        return self._finish(result, len(page_numbers))

    def persist_prerendered(
        self,
        images: Sequence[Optional[str]],
        page_numbers: Sequence[int],
        scope: ScratchScope,
    ) -> RasterResult:
        """
        Image i belongs to page_numbers[i]. A page with no image is a
        failure; images past the last page number are ignored. No network
        or rendering work happens here.
        """
        result = RasterResult()
        logger.info(f"Using {len(images)} pre-rendered page images from client")
        if len(images) > len(page_numbers):
            logger.warning(
                f"Ignoring {len(images) - len(page_numbers)} pre-rendered images "
                f"beyond the {len(page_numbers)} selected pages"
            )

        for i, page_number in enumerate(page_numbers):
            image = images[i] if i < len(images) else None
            if not image:
                result.failures.append(PageFailure(page_number, "no image supplied"))
                continue
            try:
                data = decode_image_data(image)
            except (binascii.Error, ValueError) as e:
                logger.error(f"Invalid image data for page {page_number}: {e}")
                result.failures.append(PageFailure(page_number, f"invalid image data: {e}"))
                continue

            asset = PageAsset(page_number=page_number, content_type=image_content_type(image))
            asset.path = scope.file(asset.filename)
            asset.path.write_bytes(data)
            result.assets.append(asset)

        return self._finish(result, len(page_numbers))

    @staticmethod
    def _finish(result: RasterResult, requested: int) -> RasterResult:
        logger.info(f"Successfully converted {len(result.assets)} of {requested} pages")
        if not result.assets:
            raise ConversionError(
                f"Failed to convert any of the {requested} selected pages to images"
            )
        return result
