"""
Pydantic schemas for the page delivery and viewer endpoints.
"""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SelectionRequest(BaseModel):
    """
    Body of POST /api/send-pdf-pages.

    Deliberately lenient: presence and shape checks for email/pages/source
    happen in pipeline.intake so the API can answer with specific messages.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: Optional[str] = Field(None, description="Recipient address")
    product_id: Optional[str] = Field(None, alias="productId", description="Catalog product id")
    pdf_url: Optional[str] = Field(None, alias="pdfUrl", description="Source PDF URL")
    pdf_name: Optional[str] = Field(None, alias="pdfName", description="Display name of the document")
    selected_pages: Optional[List[Any]] = Field(
        None,
        alias="selectedPages",
        description="1-based page numbers, caller order",
    )
    page_images: Optional[List[Optional[str]]] = Field(
        None,
        alias="pageImages",
        description="Pre-rendered page images as data URLs, aligned with selectedPages",
    )


class DeliveryDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    pages: List[int]
    view_url: str = Field(..., alias="viewUrl")
    selection_id: str = Field(..., alias="selectionId")
    sent_at: datetime = Field(..., alias="sentAt")
    images_attached: int = Field(..., alias="imagesAttached")
    failed_pages: List[int] = Field(default_factory=list, alias="failedPages")
    record_stored: bool = Field(..., alias="recordStored")
    message_id: Optional[str] = Field(None, alias="messageId")


class DeliveryResponse(BaseModel):
    success: bool = True
    message: str
    details: DeliveryDetails


class ViewerPageOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_number: int = Field(..., alias="pageNumber")
    ok: bool
    filename: str
    data_url: Optional[str] = Field(None, alias="dataUrl")


class ViewerOut(BaseModel):
    """Ready viewer session as returned by GET /view/{selection_id}."""
    model_config = ConfigDict(populate_by_name=True)

    state: str
    selection_id: str = Field(..., alias="selectionId")
    source_name: Optional[str] = Field(None, alias="sourceName")
    selected_pages: List[int] = Field(..., alias="selectedPages")
    expires_at: datetime = Field(..., alias="expiresAt")
    access_count: int = Field(..., alias="accessCount")
    proxy_url: Optional[str] = Field(None, alias="proxyUrl")
    pages: List[ViewerPageOut] = Field(default_factory=list)
