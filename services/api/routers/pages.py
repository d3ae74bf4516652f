# services/api/routers/pages.py
import logging

from fastapi import APIRouter, status

from dependencies import Pipeline
from schemas.selection import DeliveryResponse, SelectionRequest

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["pages"],
)


@router.post(
    "/send-pdf-pages",
    response_model=DeliveryResponse,
    status_code=status.HTTP_200_OK,
)
async def send_pdf_pages(body: SelectionRequest, pipeline: Pipeline):
    """
    Rasterize the selected pages, store the selection and email the images.

    Expects:
    {
      "email": "a@b.com",
      "pdfUrl": "https://.../doc.pdf",      # optional when pageImages given
      "pdfName": "Worksheet pack",
      "productId": "...",
      "selectedPages": [2, 5, 9],
      "pageImages": ["data:image/png;base64,..."]   # optional
    }

    Errors come back as {"error": "..."} via the PipelineError handler.
    """
    result = await pipeline.run(body)

    message = f"Email sent successfully with {result.images_attached} page images"
    if result.failed_pages:
        message += f" ({len(result.failed_pages)} pages could not be converted)"
    logger.info(f"✅ {message} to {result.email}")

    return {
        "success": True,
        "message": message,
        "details": result.details(),
    }
